"""PDF document codec built on pypdf."""

from __future__ import annotations

import logging
from io import BytesIO
from typing import Iterable, Tuple

from pypdf import PageObject, PdfReader, PdfWriter
from pypdf.errors import PdfReadError

from .errors import FormatError

logger = logging.getLogger(__name__)


class SourceDocument:
    """A parsed input PDF. Pages are only ever read, never modified."""

    def __init__(self, reader: PdfReader, name: str) -> None:
        """Wrap an already parsed reader."""
        self._reader = reader
        self.name = name
        self._pages: Tuple[PageObject, ...] = tuple(reader.pages)

    @property
    def page_count(self) -> int:
        """Total number of pages."""
        return len(self._pages)

    @property
    def pages(self) -> Tuple[PageObject, ...]:
        """Pages in document order."""
        return self._pages


def load_document(data: bytes, name: str = "document.pdf") -> SourceDocument:
    """
    Parse PDF bytes into a source document.

    Parameters:
        data (bytes): Raw file contents.
        name (str): Original filename, used in messages.

    Returns:
        SourceDocument: The parsed document.

    Raises:
        FormatError: If the bytes are not a readable PDF or the PDF is encrypted.
    """
    try:
        reader = PdfReader(BytesIO(data))
        if reader.is_encrypted:
            raise FormatError(f"{name}: PDF is encrypted")
        document = SourceDocument(reader, name)
    except FormatError:
        raise
    except (PdfReadError, ValueError, KeyError, TypeError, AttributeError) as error:
        raise FormatError(f"{name}: PDF appears to be corrupted or unreadable.") from error
    logger.debug("Loaded %s with %d pages", name, document.page_count)
    return document


class OutputDocument:
    """A new PDF assembled from copies of source pages."""

    def __init__(self, name: str = "output.pdf") -> None:
        """Create an empty document."""
        self.name = name
        self._writer = PdfWriter()

    @property
    def page_count(self) -> int:
        """Number of pages added so far."""
        return len(self._writer.pages)

    def add_pages(self, source: SourceDocument, indices: Iterable[int]) -> None:
        """
        Append copies of the given source pages, in the order given.

        pypdf clones each page into this document's own object tree, so later
        changes on either side are not shared.

        Parameters:
            source (SourceDocument): Document to copy from.
            indices (Iterable[int]): 0-based page indices; each must be valid for ``source``.

        Raises:
            FormatError: If a page cannot be copied.
        """
        pages = source.pages
        for index in indices:
            try:
                self._writer.add_page(pages[index])
            except (PdfReadError, ValueError, KeyError, TypeError, AttributeError) as error:
                raise FormatError(
                    f"{source.name}: page {index + 1} could not be copied"
                ) from error

    def add_document(self, source: SourceDocument) -> None:
        """Append copies of every page of ``source``."""
        self.add_pages(source, range(source.page_count))

    def to_bytes(self) -> bytes:
        """
        Serialize the document.

        Raises:
            FormatError: If copied content cannot be written out.
        """
        buffer = BytesIO()
        try:
            self._writer.write(buffer)
        except (PdfReadError, ValueError, KeyError, TypeError, AttributeError) as error:
            raise FormatError(f"{self.name}: document could not be serialized") from error
        return buffer.getvalue()
