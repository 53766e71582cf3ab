"""
Share specification parsing.

A share spec names a server, a share on it and an optional starting
subdirectory: ``//nas/docs/projects/2024`` or ``\\\\nas\\docs\\projects``.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from app.utils.helpers import normalize_remote_path, to_backslash_path
from domains.share_ingest.errors import ShareValidationError


@dataclass(frozen=True, slots=True)
class Credentials:
    """Username/password pair for a share. The password never appears in repr."""

    username: str
    password: str = field(repr=False)


@dataclass(frozen=True, slots=True)
class ShareSpec:
    """Parsed share location."""

    server: str
    share: str
    subdirectory: str = ""

    @property
    def share_key(self) -> str:
        """Normalized ``server/share[/subdir]`` key used for ledger placement."""
        parts = [self.server, self.share]
        if self.subdirectory:
            parts.append(self.subdirectory)
        return "/".join(parts)

    @property
    def target(self) -> str:
        """Forward-slash share target (``//server/share``) for CLI tools."""
        return f"//{self.server}/{self.share}"

    @property
    def unc_root(self) -> str:
        """UNC root of the share (``\\\\server\\share``)."""
        return f"\\\\{self.server}\\{self.share}"

    def unc(self, path: str = "") -> str:
        """UNC path for ``path`` relative to the share root."""
        relative = to_backslash_path(path)
        return f"{self.unc_root}\\{relative}" if relative else self.unc_root


def parse_share_spec(raw: str) -> ShareSpec:
    """
    Validate and split a raw share spec.

    Args:
        raw: Share path in either separator convention

    Returns:
        ShareSpec with server, share and optional subdirectory

    Raises:
        ShareValidationError: If the spec is empty, lacks a share name
            or contains relative segments
    """
    if not raw or not isinstance(raw, str):
        raise ShareValidationError("Invalid share path: must be a non-empty string.")

    normalized = normalize_remote_path(raw)
    parts = [part for part in normalized.split("/") if part]

    if len(parts) < 2:
        raise ShareValidationError(f"Invalid share path: {raw!r} must include server and share name.")

    if any(part in (".", "..") for part in parts):
        raise ShareValidationError(f"Invalid share path: {raw!r} contains relative segments.")

    return ShareSpec(server=parts[0], share=parts[1], subdirectory="/".join(parts[2:]))
