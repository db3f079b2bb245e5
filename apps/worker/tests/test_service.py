import zipfile
from io import BytesIO
from pathlib import Path

import pytest
from docx import Document
from PIL import Image
from pypdf import PdfReader, PdfWriter

from pagesmith_worker.config import WorkerSettings
from pagesmith_worker.errors import FormatError, RangeError, StorageError, ValidationError
from pagesmith_worker.service import ArtifactResult, DocumentService, InputFile
from pagesmith_worker.storage import ArtifactStore


def _pdf(name: str, pages: int, base_width: int = 100) -> InputFile:
    """Create an uploaded PDF whose page widths identify each page."""
    writer = PdfWriter()
    for index in range(pages):
        writer.add_blank_page(width=base_width + index, height=300)
    buffer = BytesIO()
    writer.write(buffer)
    return InputFile(name, buffer.getvalue())


def _page_counts_in_zip(path: Path) -> list:
    with zipfile.ZipFile(path) as archive:
        return [len(PdfReader(BytesIO(archive.read(name))).pages) for name in archive.namelist()]


@pytest.fixture
def downloads(tmp_path: Path) -> Path:
    return tmp_path / "downloads"


@pytest.fixture
def service(downloads: Path) -> DocumentService:
    return DocumentService(ArtifactStore(downloads))


def test_merge_writes_one_pdf(service: DocumentService, downloads: Path) -> None:
    """Merge two PDFs into one artifact, first file first."""
    result = service.merge([_pdf("a.pdf", 2, 100), _pdf("b.pdf", 3, 200)])
    assert result.file_name.startswith("merged-")
    assert result.download_url == f"/downloads/{result.file_name}"
    assert result.message == "Merged 2 PDFs successfully"
    reader = PdfReader(str(downloads / result.file_name))
    assert [int(page.mediabox.width) for page in reader.pages] == [100, 101, 200, 201, 202]


def test_merge_requires_two_files(service: DocumentService, downloads: Path) -> None:
    """One file is not enough to merge."""
    with pytest.raises(ValidationError, match="At least 2 files required"):
        service.merge([_pdf("only.pdf", 3)])
    assert not downloads.exists()


def test_merge_rejects_corrupt_pdf(service: DocumentService, downloads: Path) -> None:
    """A corrupt input aborts the merge before anything is written."""
    with pytest.raises(FormatError):
        service.merge([_pdf("a.pdf", 1), InputFile("b.pdf", b"garbage")])
    assert not downloads.exists()


def test_split_by_pages_packages_parts(service: DocumentService, downloads: Path) -> None:
    """Range split returns only the archive; parts persist beside it."""
    result = service.split(_pdf("doc.pdf", 10), "pages", page_ranges="1-3, 5, 7-10")
    assert result.file_name.startswith("split-files-")
    assert result.file_name.endswith(".zip")
    assert result.message == "Split into 3 files"
    archive_path = downloads / result.file_name
    assert _page_counts_in_zip(archive_path) == [3, 1, 4]
    with zipfile.ZipFile(archive_path) as archive:
        names = archive.namelist()
    assert [name.split("-")[1] for name in names] == ["part1", "part2", "part3"]
    for name in names:
        assert (downloads / name).is_file()


def test_split_by_pages_clamps_past_the_end(service: DocumentService, downloads: Path) -> None:
    """'9-12' over ten pages gives one part of two pages."""
    result = service.split(_pdf("doc.pdf", 10), "pages", page_ranges="9-12")
    assert _page_counts_in_zip(downloads / result.file_name) == [2]


def test_split_by_pages_keeps_empty_parts(service: DocumentService, downloads: Path) -> None:
    """Out-of-range tokens still produce a (blank) part."""
    result = service.split(_pdf("doc.pdf", 3), "pages", page_ranges="1, 7, 2-3")
    assert _page_counts_in_zip(downloads / result.file_name) == [1, 0, 2]


def test_split_by_size(service: DocumentService, downloads: Path) -> None:
    """Four parts over ten pages gives 3, 3, 3, 1."""
    result = service.split(_pdf("doc.pdf", 10), "size", num_parts=4)
    assert result.message == "Split into 4 files"
    assert _page_counts_in_zip(downloads / result.file_name) == [3, 3, 3, 1]


def test_split_validates_parameters(service: DocumentService) -> None:
    """Missing file, mode or mode parameter are caller errors."""
    with pytest.raises(ValidationError, match="No file uploaded"):
        service.split(None, "pages", page_ranges="1")
    with pytest.raises(ValidationError):
        service.split(_pdf("doc.pdf", 2), None)
    with pytest.raises(ValidationError):
        service.split(_pdf("doc.pdf", 2), "pages", page_ranges="  ")
    with pytest.raises(ValidationError):
        service.split(_pdf("doc.pdf", 2), "size")
    with pytest.raises(ValidationError):
        service.split(_pdf("doc.pdf", 2), "size", num_parts=0)


def test_split_respects_part_cap(downloads: Path) -> None:
    """The configured part cap is enforced."""
    service = DocumentService(ArtifactStore(downloads), WorkerSettings(max_split_parts=3))
    with pytest.raises(ValidationError):
        service.split(_pdf("doc.pdf", 10), "size", num_parts=4)


def test_split_by_pages_respects_part_cap(downloads: Path) -> None:
    """A long range expression cannot bypass the part cap."""
    service = DocumentService(ArtifactStore(downloads), WorkerSettings(max_split_parts=3))
    with pytest.raises(ValidationError):
        service.split(_pdf("doc.pdf", 10), "pages", page_ranges=",".join(["1"] * 50))
    assert not downloads.exists()


def test_split_strict_ranges(downloads: Path) -> None:
    """Strict mode fails fast and writes nothing."""
    service = DocumentService(ArtifactStore(downloads), WorkerSettings(strict_ranges=True))
    with pytest.raises(RangeError):
        service.split(_pdf("doc.pdf", 10), "pages", page_ranges="1-3, 9-12")
    assert not downloads.exists()


def test_split_corrupt_pdf_writes_nothing(service: DocumentService, downloads: Path) -> None:
    """A corrupt source is a format error with no partial output."""
    with pytest.raises(FormatError):
        service.split(InputFile("doc.pdf", b"%PDF-broken"), "size", num_parts=2)
    assert not downloads.exists()


def test_split_storage_failure_removes_partial_artifacts(
    service: DocumentService, downloads: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    """A failing write removes the parts already written."""
    store = service.store
    original = store.write_artifact
    calls = {"count": 0}

    def _flaky_write(name: str, data: bytes) -> str:
        calls["count"] += 1
        if calls["count"] == 3:
            raise StorageError("disk full")
        return original(name, data)

    monkeypatch.setattr(store, "write_artifact", _flaky_write)
    with pytest.raises(StorageError):
        service.split(_pdf("doc.pdf", 4), "size", num_parts=4)
    assert list(downloads.iterdir()) == []


def test_convert_txt_to_docx(service: DocumentService, downloads: Path) -> None:
    """Convert text to a Word document."""
    result = service.convert(InputFile("notes.txt", b"Hello"), "docx")
    assert result.file_name.startswith("converted-")
    assert result.file_name.endswith(".docx")
    assert result.message == "Converted to DOCX"
    document = Document(str(downloads / result.file_name))
    assert document.paragraphs[0].text == "Hello"


def test_convert_requires_target(service: DocumentService) -> None:
    """A target format is required."""
    with pytest.raises(ValidationError):
        service.convert(InputFile("notes.txt", b"Hello"), None)


def test_compress_reports_sizes(service: DocumentService) -> None:
    """Compression results include a size summary."""
    image = Image.new("RGB", (300, 300), color=(10, 200, 30))
    buffer = BytesIO()
    image.save(buffer, format="JPEG", quality=100)
    result = service.compress(InputFile("photo.jpg", buffer.getvalue()), "high")
    assert result.file_name.endswith(".jpg")
    assert result.message == "Compressed with high quality"
    assert "KB →" in result.size
    assert result.to_payload()["size"] == result.size

    pdf_result = service.compress(_pdf("doc.pdf", 2), None)
    assert pdf_result.message == "Compressed PDF"


def test_security_watermark(service: DocumentService, downloads: Path) -> None:
    """Watermarking writes a PDF named after the action."""
    result = service.security(_pdf("doc.pdf", 2), "watermark", "DRAFT")
    assert result.file_name.startswith("watermark-")
    assert result.message == "watermark applied successfully"
    assert len(PdfReader(str(downloads / result.file_name)).pages) == 2
    with pytest.raises(ValidationError):
        service.security(_pdf("doc.pdf", 1), "encrypt")


def test_edit_image(service: DocumentService, downloads: Path) -> None:
    """Image edits keep the source extension."""
    image = Image.new("RGB", (40, 20))
    buffer = BytesIO()
    image.save(buffer, format="PNG")
    result = service.edit_image(InputFile("pic.png", buffer.getvalue()), "rotate", 90)
    assert result.file_name.endswith(".png")
    assert result.message == "Image rotated successfully"
    assert Image.open(downloads / result.file_name).size == (20, 40)
    with pytest.raises(ValidationError):
        service.edit_image(InputFile("pic.png", buffer.getvalue()), None)


def test_artifact_result_payload() -> None:
    """Payloads carry the response fields, size only when known."""
    payload = ArtifactResult("merged-1.pdf", "/downloads/merged-1.pdf", "ok").to_payload()
    assert payload == {
        "success": True,
        "fileName": "merged-1.pdf",
        "downloadUrl": "/downloads/merged-1.pdf",
        "message": "ok",
    }
