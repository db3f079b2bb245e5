"""Parsing and resolution of page range expressions such as ``"1-3, 5, 7-10"``."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import List, Union

from .errors import RangeError


@dataclass(frozen=True)
class Single:
    """One 1-based page number as written by the user."""

    page: int


@dataclass(frozen=True)
class Interval:
    """A 1-based inclusive page interval as written by the user."""

    start: int
    end: int


@dataclass(frozen=True)
class Unparsed:
    """A token that is not a page number or interval."""

    token: str


RangeSpec = Union[Single, Interval, Unparsed]

# int() also accepts signs, underscores and non-ASCII digits; page numbers do not.
_NUMBER = re.compile(r"[0-9]+")


def _page_number(text: str) -> int:
    text = text.strip()
    if not _NUMBER.fullmatch(text):
        raise ValueError(f"not a page number: {text!r}")
    return int(text)


def _parse_token(token: str) -> RangeSpec:
    if "-" in token:
        start, end = token.split("-", 1)
        try:
            return Interval(_page_number(start), _page_number(end))
        except ValueError:
            return Unparsed(token)
    try:
        return Single(_page_number(token))
    except ValueError:
        return Unparsed(token)


def parse(expression: str, strict: bool = False) -> List[RangeSpec]:
    """
    Parse a comma-separated page range expression into range specs.

    Every comma-separated token yields exactly one spec, in input order, so
    ``"1-3,,5"`` produces three specs. Tokens are not sorted, merged or
    deduplicated.

    Parameters:
        expression (str): The user-supplied expression, e.g. ``"1-3, 5, 7-10"``.
        strict (bool): Raise instead of degrading unparseable tokens to ``Unparsed``.

    Returns:
        list[RangeSpec]: One spec per token.

    Raises:
        RangeError: In strict mode, when a token is not a page number or interval.
    """
    specs: List[RangeSpec] = []
    for part in expression.split(","):
        spec = _parse_token(part.strip())
        if strict and isinstance(spec, Unparsed):
            raise RangeError(f"Invalid page range: '{spec.token}'")
        specs.append(spec)
    return specs


def resolve(spec: RangeSpec, total_pages: int, strict: bool = False) -> List[int]:
    """
    Resolve a range spec into 0-based page indices for a document.

    Out-of-bounds pages are dropped: ``Interval(9, 12)`` over 10 pages gives
    ``[8, 9]``. Reversed intervals and intervals starting below page 1 give an
    empty group.

    Parameters:
        spec (RangeSpec): The spec to resolve.
        total_pages (int): Page count of the source document.
        strict (bool): Raise instead of dropping out-of-bounds or malformed references.

    Returns:
        list[int]: Ascending 0-based indices, possibly empty.

    Raises:
        RangeError: In strict mode, when the spec refers to pages outside ``1..total_pages``.
    """
    if isinstance(spec, Single):
        if 1 <= spec.page <= total_pages:
            return [spec.page - 1]
        if strict:
            raise RangeError(
                f"Page {spec.page} is out of range (document has {total_pages} pages)"
            )
        return []
    if isinstance(spec, Interval):
        if spec.start < 1 or spec.start > spec.end:
            if strict:
                raise RangeError(f"Invalid page interval: {spec.start}-{spec.end}")
            return []
        if strict and spec.end > total_pages:
            raise RangeError(
                f"Page interval {spec.start}-{spec.end} exceeds "
                f"document length ({total_pages} pages)"
            )
        return list(range(spec.start - 1, min(spec.end, total_pages)))
    if strict:
        raise RangeError(f"Invalid page range: '{spec.token}'")
    return []


def parse_groups(expression: str, total_pages: int, strict: bool = False) -> List[List[int]]:
    """Parse an expression and resolve every spec against ``total_pages``."""
    return [resolve(spec, total_pages, strict) for spec in parse(expression, strict)]
