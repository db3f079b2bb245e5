"""Operations exposed to the job worker, one per supported tool."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple

from .archive import zip_files
from .assembler import merge_documents, split_by_ranges, split_by_size
from .config import WorkerSettings
from .documents import OutputDocument, load_document
from .errors import ValidationError
from .storage import ArtifactStore
from .tools import (
    apply_security,
    compress_file,
    convert_file,
    edit_image,
    normalize_extension,
    size_summary,
)

logger = logging.getLogger(__name__)

IMAGE_OPERATION_VERBS = {
    "rotate": "rotated",
    "resize": "resized",
    "crop": "cropped",
    "filter": "filtered",
}


@dataclass(frozen=True)
class InputFile:
    """An uploaded file held in memory."""

    filename: str
    data: bytes

    @property
    def extension(self) -> str:
        """Lower-case extension without the dot."""
        return normalize_extension(Path(self.filename).suffix)


@dataclass(frozen=True)
class ArtifactResult:
    """The deliverable produced by one operation."""

    file_name: str
    download_url: str
    message: str
    size: Optional[str] = None

    def to_payload(self) -> Dict[str, Any]:
        """Render the result as a response payload."""
        payload: Dict[str, Any] = {
            "success": True,
            "fileName": self.file_name,
            "downloadUrl": self.download_url,
            "message": self.message,
        }
        if self.size is not None:
            payload["size"] = self.size
        return payload


def _require_file(file: Optional[InputFile]) -> InputFile:
    if file is None:
        raise ValidationError("No file uploaded")
    return file


class DocumentService:
    """Run document operations and persist their artifacts."""

    def __init__(self, store: ArtifactStore, settings: Optional[WorkerSettings] = None) -> None:
        """Bind the service to an artifact store and settings."""
        self.store = store
        self.settings = settings or WorkerSettings()

    def _write_single(self, stem: str, extension: str, data: bytes) -> Tuple[str, str]:
        name = self.store.unique_name(stem, extension)
        return name, self.store.write_artifact(name, data)

    def merge(self, files: Sequence[InputFile]) -> ArtifactResult:
        """
        Merge PDFs into a single document, in upload order.

        Raises:
            ValidationError: If fewer than two files are given.
            FormatError: If any file is not a readable PDF.
        """
        if len(files) < 2:
            raise ValidationError("At least 2 files required for merging")
        sources = [load_document(item.data, item.filename) for item in files]
        merged = merge_documents(sources)
        name, url = self._write_single("merged", ".pdf", merged.to_bytes())
        logger.info("Merged %d PDFs into %s", len(files), name)
        return ArtifactResult(name, url, f"Merged {len(files)} PDFs successfully")

    def split(
        self,
        file: Optional[InputFile],
        split_option: Optional[str],
        page_ranges: Optional[str] = None,
        num_parts: Optional[int] = None,
    ) -> ArtifactResult:
        """
        Split a PDF and package the parts into one zip archive.

        ``split_option`` selects the mode: ``"pages"`` uses ``page_ranges``
        (one part per comma-separated token) and ``"size"`` uses ``num_parts``
        (even partition). Every part is written to storage next to the
        archive, but only the archive is returned.

        Parameters:
            file (InputFile | None): The PDF to split.
            split_option (str | None): ``"pages"`` or ``"size"``.
            page_ranges (str | None): Range expression for ``"pages"``.
            num_parts (int | None): Part count for ``"size"``.

        Returns:
            ArtifactResult: The archive.

        Raises:
            ValidationError: If the mode or its parameter is missing or invalid.
            FormatError: If the file is not a readable PDF.
            StorageError: If artifacts cannot be written; nothing partial is kept.
        """
        source_file = _require_file(file)
        if split_option == "pages":
            if not page_ranges or not page_ranges.strip():
                raise ValidationError("Page ranges are required")
            source = load_document(source_file.data, source_file.filename)
            parts = split_by_ranges(
                source,
                page_ranges,
                strict=self.settings.strict_ranges,
                max_parts=self.settings.max_split_parts,
            )
        elif split_option == "size":
            if num_parts is None:
                raise ValidationError("Number of parts is required")
            source = load_document(source_file.data, source_file.filename)
            parts = split_by_size(source, num_parts, max_parts=self.settings.max_split_parts)
        else:
            raise ValidationError("Split option must be 'pages' or 'size'")

        items = self._serialize_parts(parts)
        archive_name = self.store.unique_name("split-files", ".zip")
        archive = zip_files(items)
        urls = self.store.write_batch(items + [(archive_name, archive)])
        logger.info("Split %s into %d files (%s)", source_file.filename, len(parts), archive_name)
        return ArtifactResult(archive_name, urls[-1], f"Split into {len(parts)} files")

    def _serialize_parts(self, parts: Sequence[OutputDocument]) -> List[Tuple[str, bytes]]:
        items: List[Tuple[str, bytes]] = []
        for index, part in enumerate(parts, start=1):
            name = self.store.unique_name(f"split-part{index}", ".pdf")
            items.append((name, part.to_bytes()))
        return items

    def convert(self, file: Optional[InputFile], to_format: Optional[str]) -> ArtifactResult:
        """Convert a file to ``to_format``."""
        source_file = _require_file(file)
        target = normalize_extension(to_format or "")
        if not target:
            raise ValidationError("Target format is required")
        data = convert_file(source_file.data, source_file.extension, target)
        name, url = self._write_single("converted", target, data)
        return ArtifactResult(name, url, f"Converted to {target.upper()}")

    def compress(
        self, file: Optional[InputFile], compression_level: Optional[str]
    ) -> ArtifactResult:
        """Compress an image or PDF and report the size change."""
        source_file = _require_file(file)
        extension = source_file.extension
        data = compress_file(source_file.data, extension, compression_level)
        name, url = self._write_single("compressed", extension, data)
        if extension == "pdf":
            message = "Compressed PDF"
        else:
            message = f"Compressed with {compression_level or 'medium'} quality"
        return ArtifactResult(
            name, url, message, size=size_summary(len(source_file.data), len(data))
        )

    def security(
        self,
        file: Optional[InputFile],
        action: Optional[str],
        watermark_text: Optional[str] = None,
    ) -> ArtifactResult:
        """Apply a security action to a PDF."""
        source_file = _require_file(file)
        data = apply_security(source_file.data, action, watermark_text)
        name, url = self._write_single(str(action), ".pdf", data)
        return ArtifactResult(name, url, f"{action} applied successfully")

    def edit_image(
        self,
        file: Optional[InputFile],
        operation: Optional[str],
        rotation_angle: int = 90,
        width: Optional[int] = None,
        height: Optional[int] = None,
    ) -> ArtifactResult:
        """Rotate, resize, crop or grayscale an image."""
        source_file = _require_file(file)
        if operation not in IMAGE_OPERATION_VERBS:
            raise ValidationError(f"Unsupported image operation: {operation}")
        extension = source_file.extension
        data = edit_image(
            source_file.data, extension, operation, rotation_angle, width, height
        )
        name, url = self._write_single("edited", extension, data)
        return ArtifactResult(
            name, url, f"Image {IMAGE_OPERATION_VERBS[operation]} successfully"
        )
