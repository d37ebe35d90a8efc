# =============================================================================
# Citation Spans — <claim> Tag Tokenizer
# =============================================================================
#
# Synthesized reports wrap every factual statement in a citation span:
#
#   <claim source="Doc.pdf" page="10" quote="Project starts June"
#          logic="Inferred from Q2 timeline">Start Date: June</claim>
#
# `tokenize_claims` scans the text left to right and yields an ordered
# sequence of TextSegment / ClaimSegment values so a presentation layer can
# render interactive citations. Markdown pipe tables carry the same tags in
# their cells; `parse_markdown_table` splits a table into cell token lists.
#
# Malformed markup (an opening tag with no closing tag) is kept as plain
# text rather than dropped.
# =============================================================================

from __future__ import annotations

import re
from dataclasses import dataclass, field

_OPEN_TAG = "<claim"
_CLOSE_TAG = "</claim>"
_ATTR_RE = re.compile(r'(\w+)\s*=\s*"([^"]*)"')


@dataclass(frozen=True)
class TextSegment:
    """Plain text between citation spans."""

    text: str
    kind: str = "text"


@dataclass(frozen=True)
class ClaimSegment:
    """One cited claim with its source attributes."""

    content: str
    source: str = ""
    page: str = ""
    quote: str = ""
    logic: str = ""
    extra: dict[str, str] = field(default_factory=dict)
    kind: str = "claim"

    @property
    def is_derived(self) -> bool:
        """True when the claim carries an explicit reasoning annotation."""
        return bool(self.logic)


Segment = TextSegment | ClaimSegment


def parse_attributes(raw: str) -> dict[str, str]:
    """Parse `name="value"` pairs from the inside of an opening tag."""
    return {name: value for name, value in _ATTR_RE.findall(raw)}


def _find_tag_end(text: str, start: int) -> int:
    """Index of the ">" closing an opening tag, skipping quoted values."""
    in_quotes = False
    for i in range(start, len(text)):
        char = text[i]
        if char == '"':
            in_quotes = not in_quotes
        elif char == ">" and not in_quotes:
            return i
    return -1


def tokenize_claims(text: str) -> list[Segment]:
    """
    Split `text` into plain-text and claim segments, in order.

    Adjacent plain text is merged; empty plain segments are omitted.
    """
    segments: list[Segment] = []
    buffer: list[str] = []
    pos = 0

    def flush() -> None:
        if buffer:
            joined = "".join(buffer)
            buffer.clear()
            if joined:
                segments.append(TextSegment(joined))

    while pos < len(text):
        open_at = text.find(_OPEN_TAG, pos)
        if open_at == -1:
            buffer.append(text[pos:])
            break

        # "<claims" or "<claimant" are not claim tags
        after = text[open_at + len(_OPEN_TAG):open_at + len(_OPEN_TAG) + 1]
        if after and not (after.isspace() or after == ">"):
            buffer.append(text[pos:open_at + len(_OPEN_TAG)])
            pos = open_at + len(_OPEN_TAG)
            continue

        tag_end = _find_tag_end(text, open_at + len(_OPEN_TAG))
        close_at = text.find(_CLOSE_TAG, tag_end + 1) if tag_end != -1 else -1
        if tag_end == -1 or close_at == -1:
            buffer.append(text[pos:])
            break

        buffer.append(text[pos:open_at])
        flush()

        attrs = parse_attributes(text[open_at + len(_OPEN_TAG):tag_end])
        segments.append(ClaimSegment(
            content=text[tag_end + 1:close_at],
            source=attrs.pop("source", ""),
            page=attrs.pop("page", ""),
            quote=attrs.pop("quote", ""),
            logic=attrs.pop("logic", ""),
            extra=attrs,
        ))
        pos = close_at + len(_CLOSE_TAG)

    flush()
    return segments


def extract_citations(text: str) -> list[ClaimSegment]:
    """All claim segments of `text`, in order of appearance."""
    return [s for s in tokenize_claims(text) if isinstance(s, ClaimSegment)]


def strip_claims(text: str) -> str:
    """Render `text` with claim tags removed, keeping their content."""
    return "".join(
        s.text if isinstance(s, TextSegment) else s.content
        for s in tokenize_claims(text)
    )


def _split_row(row: str) -> list[str]:
    cells = row.strip()
    if cells.startswith("|"):
        cells = cells[1:]
    if cells.endswith("|"):
        cells = cells[:-1]
    return [cell.strip() for cell in cells.split("|")]


def parse_markdown_table(block: str) -> tuple[list[list[Segment]], list[list[list[Segment]]]]:
    """
    Tokenize a markdown pipe table.

    Returns (header_cells, body_rows), each cell a segment list. The
    separator row (`|---|---|`) is skipped.
    """
    lines = [line for line in block.strip().splitlines() if line.strip()]
    if not lines:
        return [], []

    headers = [tokenize_claims(cell) for cell in _split_row(lines[0])]
    body = [
        [tokenize_claims(cell) for cell in _split_row(line)]
        for line in lines[1:]
        if not re.fullmatch(r"[\s|:\-]+", line)
    ]
    return headers, body
