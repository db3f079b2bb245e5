"""Single-call conversions and edits backing the non-PDF-assembly operations."""

from __future__ import annotations

import logging
import os
import zipfile
from io import BytesIO
from pathlib import Path
from typing import Callable, Optional

from docx import Document
from docx.opc.exceptions import PackageNotFoundError
from fpdf import FPDF
from PIL import Image, ImageOps, UnidentifiedImageError
from pypdf import PdfReader, PdfWriter
from pypdf.errors import PdfReadError

from .errors import FormatError, ValidationError

logger = logging.getLogger(__name__)

IMAGE_FORMATS = {
    "jpg": "JPEG",
    "jpeg": "JPEG",
    "png": "PNG",
    "webp": "WEBP",
    "gif": "GIF",
    "bmp": "BMP",
}
COMPRESSIBLE_IMAGES = {"jpg", "jpeg", "png", "webp"}
COMPRESSION_QUALITY = {"low": 90, "medium": 75, "high": 60, "extreme": 40}
DEFAULT_QUALITY = 75

TEXT_PAGE_SIZE = (600, 800)
WATERMARK_FONT_SIZE = 48
WATERMARK_OPACITY = 0.2
CROP_OFFSET = (100, 100)
DEFAULT_CROP_SIZE = 400

UNICODE_FONT_PATHS = (
    Path(__file__).resolve().parent / "assets" / "DejaVuSans.ttf",
    Path("/usr/share/fonts/truetype/dejavu/DejaVuSans.ttf"),
    Path("/usr/share/fonts/DejaVuSans.ttf"),
)


def normalize_extension(value: str) -> str:
    """Lower-case an extension and strip its leading dot."""
    return value.strip().lower().lstrip(".")


def _resolve_unicode_font_path() -> Path | None:
    """
    Locate a Unicode-compatible TrueType font file if one is available.

    Checks the PAGESMITH_TTF_PATH environment variable first, then falls back to known candidate paths.

    Returns:
        Path | None: Path to the font file if found, `None` otherwise.
    """
    env_path = os.getenv("PAGESMITH_TTF_PATH")
    if env_path:
        candidate = Path(env_path)
        if candidate.is_file():
            return candidate
    for candidate in UNICODE_FONT_PATHS:
        if candidate.is_file():
            return candidate
    return None


def _set_font(pdf: FPDF, text: str, size: int) -> None:
    """
    Select a font able to render ``text``.

    Uses DejaVu Sans when it can be found, otherwise Helvetica for Latin-1 text.

    Raises:
        ValidationError: If the text needs a Unicode font and none is available.
    """
    font_path = _resolve_unicode_font_path()
    if font_path:
        pdf.add_font("DejaVuSans", fname=str(font_path))
        pdf.set_font("DejaVuSans", size=size)
        return
    try:
        text.encode("latin-1")
    except UnicodeEncodeError as error:
        raise ValidationError(
            "Unicode font unavailable. Set PAGESMITH_TTF_PATH to a DejaVuSans.ttf path."
        ) from error
    pdf.set_font("Helvetica", size=size)


def _open_image(data: bytes) -> Image.Image:
    try:
        image = Image.open(BytesIO(data))
        image.load()
    except (UnidentifiedImageError, OSError) as error:
        raise FormatError("Image appears to be corrupted or unreadable.") from error
    return image


def _save_image(image: Image.Image, image_format: str, **options) -> bytes:
    buffer = BytesIO()
    try:
        if image_format in {"JPEG", "BMP"} and image.mode not in {"RGB", "L"}:
            image = image.convert("RGB")
        image.save(buffer, format=image_format, **options)
    except (ValueError, OSError) as error:
        raise FormatError(
            f"Image in mode {image.mode} cannot be saved as {image_format}."
        ) from error
    return buffer.getvalue()


def _read_pdf(data: bytes) -> PdfReader:
    """Load PDF bytes, refusing encrypted input."""
    try:
        reader = PdfReader(BytesIO(data))
        encrypted = reader.is_encrypted
    except (PdfReadError, ValueError) as error:
        raise FormatError("PDF appears to be corrupted or unreadable.") from error
    if encrypted:
        raise FormatError("PDF is encrypted")
    return reader


def _copy_metadata(writer: PdfWriter, reader: PdfReader) -> None:
    """Copy string metadata from a PDF reader into a writer."""
    metadata = reader.metadata or {}
    safe_metadata = {
        str(key): str(value) for key, value in metadata.items() if value is not None
    }
    if safe_metadata:
        writer.add_metadata(safe_metadata)


def _writer_bytes(writer: PdfWriter) -> bytes:
    buffer = BytesIO()
    writer.write(buffer)
    return buffer.getvalue()


def text_to_pdf(text: str) -> bytes:
    """Lay out plain text on 600x800 point pages."""
    pdf = FPDF(orientation="P", unit="pt", format=TEXT_PAGE_SIZE)
    pdf.set_margins(50, 50, 50)
    pdf.set_auto_page_break(auto=True, margin=50)
    pdf.add_page()
    _set_font(pdf, text, 12)
    max_width = pdf.w - pdf.l_margin - pdf.r_margin
    for line in text.splitlines():
        if line.strip():
            pdf.multi_cell(max_width, 16, line)
        else:
            pdf.ln(12)
    return bytes(pdf.output())


def docx_to_text(data: bytes) -> str:
    """Extract raw paragraph text from a .docx file."""
    try:
        document = Document(BytesIO(data))
    except (PackageNotFoundError, zipfile.BadZipFile, KeyError, ValueError) as error:
        raise FormatError("Word document appears to be corrupted or unreadable.") from error
    return "\n".join(paragraph.text for paragraph in document.paragraphs)


def text_to_docx(text: str) -> bytes:
    """Wrap plain text into a single-paragraph .docx file."""
    document = Document()
    document.add_paragraph(text)
    buffer = BytesIO()
    document.save(buffer)
    return buffer.getvalue()


def _decode_text(data: bytes) -> str:
    try:
        return data.decode("utf-8")
    except UnicodeDecodeError as error:
        raise FormatError("Text file is not valid UTF-8") from error


def convert_file(data: bytes, from_ext: str, to_format: str) -> bytes:
    """
    Convert a file between supported formats.

    Supported pairs: image to image (jpg, jpeg, png, webp, gif, bmp), txt to pdf,
    docx to txt and txt to docx.

    Parameters:
        data (bytes): Source file contents.
        from_ext (str): Source extension, e.g. ``"png"``.
        to_format (str): Target extension, e.g. ``"webp"``.

    Returns:
        bytes: The converted file.

    Raises:
        ValidationError: If the conversion pair is not supported.
        FormatError: If the source cannot be decoded.
    """
    source = normalize_extension(from_ext)
    target = normalize_extension(to_format)
    if source in IMAGE_FORMATS and target in IMAGE_FORMATS:
        return _save_image(_open_image(data), IMAGE_FORMATS[target])
    if source == "pdf" and target in {"jpg", "png"}:
        raise ValidationError("PDF to image conversion is not supported")
    if source == "txt" and target == "pdf":
        return text_to_pdf(_decode_text(data))
    if source == "docx" and target == "txt":
        return docx_to_text(data).encode("utf-8")
    if source == "txt" and target == "docx":
        return text_to_docx(_decode_text(data))
    raise ValidationError(f"Conversion from {source} to {target} not supported")


def compression_quality(level: Optional[str]) -> int:
    """Map a compression level name to an encoder quality."""
    return COMPRESSION_QUALITY.get((level or "").strip().lower(), DEFAULT_QUALITY)


def compress_pdf(data: bytes) -> bytes:
    """Rewrite a PDF with compressed content streams and deduplicated objects."""
    reader = _read_pdf(data)
    writer = PdfWriter()
    for page in reader.pages:
        writer.add_page(page)
    for page in writer.pages:
        page.compress_content_streams()
    dedupe = getattr(writer, "compress_identical_objects", None)
    if callable(dedupe):
        dedupe()
    _copy_metadata(writer, reader)
    return _writer_bytes(writer)


def compress_file(data: bytes, ext: str, level: Optional[str]) -> bytes:
    """
    Re-encode an image or PDF to reduce its size.

    Parameters:
        data (bytes): Source file contents.
        ext (str): Source extension.
        level (str | None): One of low, medium, high or extreme; anything else means medium.

    Returns:
        bytes: The compressed file, in the source format.

    Raises:
        ValidationError: If the format cannot be compressed.
    """
    source = normalize_extension(ext)
    if source in COMPRESSIBLE_IMAGES:
        quality = compression_quality(level)
        image_format = IMAGE_FORMATS[source]
        if image_format == "PNG":
            return _save_image(_open_image(data), image_format, optimize=True)
        return _save_image(_open_image(data), image_format, quality=quality, optimize=True)
    if source == "pdf":
        return compress_pdf(data)
    raise ValidationError("Unsupported file format for compression")


def size_summary(original_size: int, compressed_size: int) -> str:
    """Describe a size change, e.g. ``"120 KB → 80 KB (33% reduction)"``."""
    reduction = round((1 - compressed_size / original_size) * 100) if original_size else 0
    return (
        f"{original_size / 1024:.0f} KB → {compressed_size / 1024:.0f} KB "
        f"({reduction}% reduction)"
    )


def _points_to_mm(points: float) -> float:
    return points * 25.4 / 72


def _build_overlay_page(
    width_points: float,
    height_points: float,
    draw_fn: Callable[[FPDF, float, float], None],
):
    """
    Create a single-page PDF overlay sized to the given page dimensions.

    Parameters:
        width_points (float): Page width in PDF points.
        height_points (float): Page height in PDF points.
        draw_fn (Callable[[FPDF, float, float], None]): Draws onto the overlay; receives the
            FPDF object and the page width and height in millimeters.

    Returns:
        page: The overlay as a pypdf page object.
    """
    width_mm = _points_to_mm(width_points)
    height_mm = _points_to_mm(height_points)
    orientation = "L" if width_mm > height_mm else "P"
    pdf = FPDF(orientation=orientation, unit="mm", format=(width_mm, height_mm))
    pdf.set_margins(0, 0, 0)
    pdf.set_auto_page_break(auto=False)
    pdf.add_page()
    draw_fn(pdf, width_mm, height_mm)
    overlay_reader = PdfReader(BytesIO(bytes(pdf.output())))
    return overlay_reader.pages[0]


def watermark_pdf(data: bytes, text: str) -> bytes:
    """
    Stamp semi-transparent text across the middle of every page.

    Source pages are copied into a new writer before the overlay is merged, so
    the input document is left untouched.

    Parameters:
        data (bytes): Source PDF.
        text (str): Watermark text.

    Returns:
        bytes: The watermarked PDF.
    """
    reader = _read_pdf(data)
    writer = PdfWriter()
    overlays = {}
    for page in reader.pages:
        copied = writer.add_page(page)
        width = float(copied.mediabox.width)
        height = float(copied.mediabox.height)
        key = (round(width, 2), round(height, 2))
        if key not in overlays:

            def _draw(pdf: FPDF, width_mm: float, height_mm: float) -> None:
                _set_font(pdf, text, WATERMARK_FONT_SIZE)
                pdf.set_text_color(128, 128, 128)
                with pdf.local_context(fill_opacity=WATERMARK_OPACITY):
                    pdf.set_xy(0, height_mm / 2)
                    pdf.cell(width_mm, 10, text, align="C")

            overlays[key] = _build_overlay_page(width, height, _draw)
        copied.merge_page(overlays[key])
    _copy_metadata(writer, reader)
    return _writer_bytes(writer)


def apply_security(
    data: bytes,
    action: Optional[str],
    watermark_text: Optional[str] = None,
) -> bytes:
    """Run a security action on a PDF; only ``watermark`` is supported."""
    if action == "watermark":
        text = (watermark_text or "").strip()
        if not text:
            raise ValidationError("Watermark text is required")
        return watermark_pdf(data, text)
    if action == "encrypt":
        raise ValidationError("PDF encryption is not supported")
    raise ValidationError(f"Unsupported security action: {action}")


def edit_image(
    data: bytes,
    ext: str,
    operation: str,
    angle: int = 90,
    width: Optional[int] = None,
    height: Optional[int] = None,
) -> bytes:
    """
    Apply one edit to an image and return it in its original format.

    Parameters:
        data (bytes): Source image.
        ext (str): Source extension.
        operation (str): ``rotate`` (clockwise by ``angle``), ``resize`` (to ``width`` x ``height``),
            ``crop`` (a ``width`` x ``height`` box at offset 100,100, 400x400 by default)
            or ``filter`` (grayscale).

    Raises:
        ValidationError: For unknown operations, unsupported formats or impossible sizes.
    """
    source = normalize_extension(ext)
    if source not in IMAGE_FORMATS:
        raise ValidationError(f"Unsupported image format: {source}")
    image = _open_image(data)
    if operation == "rotate":
        result = image.rotate(-angle, expand=True)
    elif operation == "resize":
        if not width or not height or width < 1 or height < 1:
            raise ValidationError("Resize width and height are required")
        result = image.resize((width, height))
    elif operation == "crop":
        crop_width = width or DEFAULT_CROP_SIZE
        crop_height = height or DEFAULT_CROP_SIZE
        left, top = CROP_OFFSET
        if left + crop_width > image.width or top + crop_height > image.height:
            raise ValidationError("Crop area exceeds image bounds")
        result = image.crop((left, top, left + crop_width, top + crop_height))
    elif operation == "filter":
        result = ImageOps.grayscale(image)
    else:
        raise ValidationError(f"Unsupported image operation: {operation}")
    logger.debug("Applied %s to %dx%d image", operation, image.width, image.height)
    return _save_image(result, IMAGE_FORMATS[source])
