from __future__ import annotations

import logging
import re
from typing import Dict, Iterable, List, Optional

import pysam

from .models import Span

logger = logging.getLogger(__name__)

_INTERVAL_RE = re.compile(r"^(?P<contig>.+?):(?P<start>[\d,]+)(?:-(?P<end>[\d,]+))?$")


def contig_order(header: pysam.AlignmentHeader) -> Dict[str, int]:
    """Map contig name -> rank in the header's sequence dictionary."""
    return {name: i for i, name in enumerate(header.references)}


def is_after(first: Span, second: Span, order: Dict[str, int]) -> bool:
    """True if ``first`` starts strictly after ``second`` ends, in sequence-dictionary order."""
    first_rank = order[first.contig]
    second_rank = order[second.contig]
    return first_rank > second_rank or (first_rank == second_rank and first.start > second.end)


def is_before(first: Span, second: Span, order: Dict[str, int]) -> bool:
    """True if ``first`` ends strictly before ``second`` starts."""
    first_rank = order[first.contig]
    second_rank = order[second.contig]
    return first_rank < second_rank or (first_rank == second_rank and first.end < second.start)


def parse_interval(text: str, header: pysam.AlignmentHeader) -> Span:
    """Parse ``contig``, ``contig:pos`` or ``contig:start-end`` (1-based, inclusive)."""
    text = text.strip()
    if text in header.references:
        return Span(text, 1, header.get_reference_length(text))

    m = _INTERVAL_RE.match(text)
    if m is None or m.group("contig") not in header.references:
        raise ValueError(f"Cannot parse interval '{text}': unknown contig or malformed coordinates")

    contig = m.group("contig")
    length = header.get_reference_length(contig)
    start = int(m.group("start").replace(",", ""))
    end = int(m.group("end").replace(",", "")) if m.group("end") else start
    if start < 1 or end < start:
        raise ValueError(f"Invalid interval '{text}': start must be >= 1 and <= end")
    if end > length:
        logger.warning("Interval %s extends past the end of %s (%d); clipping.", text, contig, length)
        end = length
        if start > end:
            raise ValueError(f"Interval '{text}' starts past the end of {contig}")
    return Span(contig, start, end)


def whole_genome_intervals(header: pysam.AlignmentHeader) -> List[Span]:
    return [Span(name, 1, header.get_reference_length(name)) for name in header.references]


def sort_and_merge(
    intervals: Iterable[Span],
    order: Dict[str, int],
    *,
    padding: int = 0,
    lengths: Optional[Dict[str, int]] = None,
) -> List[Span]:
    """Pad, sort by sequence-dictionary order, and merge overlapping or abutting intervals."""
    padded: List[Span] = []
    for iv in intervals:
        if padding and lengths is not None:
            iv = iv.expand_within_contig(padding, lengths[iv.contig])
        padded.append(iv)
    padded.sort(key=lambda iv: (order[iv.contig], iv.start, iv.end))

    merged: List[Span] = []
    for iv in padded:
        if merged and merged[-1].contig == iv.contig and iv.start <= merged[-1].end + 1:
            last = merged[-1]
            merged[-1] = Span(last.contig, last.start, max(last.end, iv.end))
        else:
            merged.append(iv)
    return merged
