import pytest

from domains.share_ingest.errors import ShareValidationError
from domains.share_ingest.share import Credentials, parse_share_spec


@pytest.mark.parametrize(
    "raw",
    ["//nas/docs/projects/2024", "\\\\nas\\docs\\projects\\2024", "nas/docs/projects/2024/", "//nas//docs\\projects/2024"],
)
def test_parse_share_spec_normalizes_separators(raw):
    spec = parse_share_spec(raw)

    assert spec.server == "nas"
    assert spec.share == "docs"
    assert spec.subdirectory == "projects/2024"
    assert spec.share_key == "nas/docs/projects/2024"


def test_share_spec_paths():
    spec = parse_share_spec("//nas/docs")

    assert spec.subdirectory == ""
    assert spec.share_key == "nas/docs"
    assert spec.target == "//nas/docs"
    assert spec.unc_root == "\\\\nas\\docs"
    assert spec.unc("reports/q1.pdf") == "\\\\nas\\docs\\reports\\q1.pdf"
    assert spec.unc("") == "\\\\nas\\docs"


@pytest.mark.parametrize("raw", ["", "   ", "//nas", "//nas/docs/../etc", None, 42])
def test_parse_share_spec_rejects_malformed(raw):
    with pytest.raises(ShareValidationError):
        parse_share_spec(raw)


def test_credentials_repr_hides_password():
    credentials = Credentials(username="svc-ingest", password="hunter2")

    assert "hunter2" not in repr(credentials)
    assert "svc-ingest" in repr(credentials)
