"""Assembly of new PDFs from whole documents or selected page groups."""

from __future__ import annotations

import logging
import math
from typing import List, Optional, Sequence

from .documents import OutputDocument, SourceDocument
from .errors import ValidationError
from .ranges import parse, resolve

logger = logging.getLogger(__name__)


def merge_documents(
    sources: Sequence[SourceDocument], name: str = "merged.pdf"
) -> OutputDocument:
    """
    Merge documents into one, preserving the given order.

    Parameters:
        sources (Sequence[SourceDocument]): Documents to merge, in output order.
        name (str): Name of the merged document.

    Returns:
        OutputDocument: Every page of every source, source by source.

    Raises:
        ValidationError: If fewer than two sources are provided.
    """
    if len(sources) < 2:
        raise ValidationError("At least 2 files required for merging")
    merged = OutputDocument(name)
    for source in sources:
        merged.add_document(source)
    logger.info("Merged %d documents into %d pages", len(sources), merged.page_count)
    return merged


def split_by_ranges(
    source: SourceDocument,
    expression: str,
    strict: bool = False,
    max_parts: Optional[int] = None,
) -> List[OutputDocument]:
    """
    Split a document into one part per range token.

    Parts keep the token order, and tokens that select nothing still produce
    an empty part.

    Parameters:
        source (SourceDocument): Document to split.
        expression (str): Range expression such as ``"1-3, 5, 7-10"``.
        strict (bool): Reject malformed or out-of-bounds ranges instead of dropping them.
        max_parts (int | None): Upper bound on the number of tokens, if any.

    Returns:
        list[OutputDocument]: One part per comma-separated token.

    Raises:
        ValidationError: If the expression has more tokens than ``max_parts``.
    """
    specs = parse(expression, strict)
    if max_parts is not None and len(specs) > max_parts:
        raise ValidationError(f"Number of page ranges must not exceed {max_parts}")
    groups = [resolve(spec, source.page_count, strict) for spec in specs]
    parts: List[OutputDocument] = []
    for index, group in enumerate(groups, start=1):
        part = OutputDocument(f"part{index}.pdf")
        part.add_pages(source, group)
        parts.append(part)
    logger.info(
        "Split %s by ranges into %d parts: %s",
        source.name,
        len(parts),
        [part.page_count for part in parts],
    )
    return parts


def split_by_size(
    source: SourceDocument, parts: int, max_parts: Optional[int] = None
) -> List[OutputDocument]:
    """
    Split a document into ``parts`` contiguous parts of ``ceil(total / parts)`` pages.

    The last parts are shorter, or empty, when the page count does not fill them.

    Parameters:
        source (SourceDocument): Document to split.
        parts (int): Number of parts to produce.
        max_parts (int | None): Upper bound on ``parts``, if any.

    Returns:
        list[OutputDocument]: Exactly ``parts`` documents, in page order.

    Raises:
        ValidationError: If ``parts`` is below 1 or above ``max_parts``.
    """
    if parts < 1:
        raise ValidationError("Number of parts must be at least 1")
    if max_parts is not None and parts > max_parts:
        raise ValidationError(f"Number of parts must not exceed {max_parts}")
    total_pages = source.page_count
    pages_per_part = math.ceil(total_pages / parts)
    outputs: List[OutputDocument] = []
    for index in range(parts):
        start = index * pages_per_part
        end = min(start + pages_per_part, total_pages)
        part = OutputDocument(f"part{index + 1}.pdf")
        part.add_pages(source, range(start, end))
        outputs.append(part)
    logger.info(
        "Split %s into %d parts of up to %d pages",
        source.name,
        parts,
        pages_per_part,
    )
    return outputs
