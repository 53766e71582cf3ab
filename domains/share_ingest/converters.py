"""
Type-converter registry for staged files.

Maps a normalized file extension to the converter that extracts content
from a local copy. Extraction itself lives outside this package: every
extension starts out bound to a hand-off converter that only describes the
staged file, and real extractors replace it through ``register``.
"""

from __future__ import annotations

import mimetypes
import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from loguru import logger

from app.utils.helpers import generate_uuid, get_file_extension
from domains.share_ingest.errors import UnsupportedFileError

TEXT_FALLBACK_EXTENSION = ".txt"

# extension -> converter name
SUPPORTED_FILETYPE_CONVERTERS: Dict[str, str] = {
    ".txt": "text",
    ".md": "text",
    ".org": "text",
    ".adoc": "text",
    ".rst": "text",
    ".csv": "text",
    ".json": "text",
    ".html": "text",
    ".pdf": "pdf",
    ".docx": "docx",
    ".pptx": "office",
    ".odt": "office",
    ".odp": "office",
    ".xlsx": "xlsx",
    ".mbox": "mbox",
    ".epub": "epub",
    ".mp3": "audio",
    ".wav": "audio",
    ".mp4": "audio",
    ".mpeg": "audio",
    ".png": "image",
    ".jpg": "image",
    ".jpeg": "image",
    ".webp": "image",
    # RAW camera formats
    ".nef": "image",
    ".cr2": "image",
    ".arw": "image",
    ".orf": "image",
    ".rw2": "image",
    ".raf": "image",
    ".dng": "image",
    ".pef": "image",
    ".srw": "image",
    ".tga": "image",
}

BAD_MIMES = {"application/octet-stream", "application/zip", "application/pkcs8", "application/vnd.microsoft.portable-executable"}
NON_TEXT_TYPES = {"multipart", "image", "model", "audio", "video", "font"}
CONTROL_CHARS = frozenset(chr(c) for c in [*range(0x00, 0x09), 0x0B, 0x0C, *range(0x0E, 0x20)])


@dataclass
class ConversionResult:
    """Outcome of one converter call."""

    success: bool
    reason: Optional[str] = None
    documents: List[Dict[str, Any]] = field(default_factory=list)


Converter = Callable[..., ConversionResult]


def handoff_converter(name: str) -> Converter:
    """Build a converter that describes the staged file for downstream extraction."""

    def convert(local_path: Path, filename: str, options: Optional[Dict[str, Any]] = None) -> ConversionResult:
        return ConversionResult(
            success=True,
            documents=[
                {
                    "id": generate_uuid(),
                    "location": str(local_path),
                    "filename": filename,
                    "converter": name,
                    "extension": get_file_extension(filename),
                    **(options or {}),
                }
            ],
        )

    return convert


class ConverterRegistry:
    """Extension to converter lookup."""

    def __init__(self, table: Optional[Dict[str, str]] = None):
        table = SUPPORTED_FILETYPE_CONVERTERS if table is None else table
        self._converters: Dict[str, Converter] = {
            extension.lower(): handoff_converter(name) for extension, name in table.items()
        }

    def register(self, extension: str, converter: Converter) -> None:
        """Bind ``converter`` to ``extension`` (with or without the dot)."""
        extension = extension.lower()
        if not extension.startswith("."):
            extension = f".{extension}"
        self._converters[extension] = converter

    def supports(self, extension: str) -> bool:
        return extension.lower() in self._converters

    def extensions(self) -> List[str]:
        return sorted(self._converters)

    def resolve(self, local_path: Path) -> tuple[str, Converter]:
        """
        Pick the converter for a staged file.

        Unsupported extensions whose content looks like text are handled
        as plain text.

        Returns:
            Tuple of (extension processed as, converter)

        Raises:
            UnsupportedFileError: If neither the extension nor the text
                fallback applies
        """
        extension = get_file_extension(local_path.name)
        if extension in self._converters:
            return extension, self._converters[extension]

        if TEXT_FALLBACK_EXTENSION in self._converters and is_text_type(local_path):
            logger.info(f"Processing {extension or local_path.name} as {TEXT_FALLBACK_EXTENSION}")
            return TEXT_FALLBACK_EXTENSION, self._converters[TEXT_FALLBACK_EXTENSION]

        raise UnsupportedFileError(f"Unsupported file extension: {extension or '(none)'}")


def is_text_type(path: Path) -> bool:
    """
    Check whether a file is text.

    Looks at the guessed mime type first; when the type is unknown, falls
    back to inspecting the first kilobyte for NUL and control characters.
    """
    if not path.is_file():
        return False

    mime, _ = mimetypes.guess_type(path.name)
    if mime:
        if mime in BAD_MIMES:
            return False
        return mime.split("/")[0] not in NON_TEXT_TYPES

    return parseable_as_text(path)


def parseable_as_text(path: Path) -> bool:
    """Whether the first 1KB decodes as UTF-8 with few control characters."""
    try:
        with path.open("rb") as handle:
            head = handle.read(1024)
    except OSError:
        return False

    if not head:
        return False

    content = head.decode("utf-8", errors="replace")
    nulls = content.count("\0")
    control = sum(1 for char in content if char in CONTROL_CHARS)
    return nulls + control < len(head) * 0.1


def trash_file(path: Path, trash_dir: Path) -> Optional[Path]:
    """
    Move a staged file into the quarantine directory.

    Directories and missing paths are left alone.

    Returns:
        New location, or None if nothing was moved
    """
    if not path.exists() or path.is_dir():
        return None

    trash_dir.mkdir(parents=True, exist_ok=True)
    destination = trash_dir / path.name
    shutil.move(str(path), str(destination))
    logger.info(f"Trashed {path} -> {destination}")
    return destination
