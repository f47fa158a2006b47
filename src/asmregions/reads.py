from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, Iterator, List, Optional

import pysam

from .intervals import contig_order, sort_and_merge
from .models import Span

logger = logging.getLogger(__name__)


def passes_read_filters(
    read: pysam.AlignedSegment,
    *,
    skip_duplicates: bool = True,
    include_secondary: bool = False,
    include_supplementary: bool = False,
    counts: Optional[Dict[str, int]] = None,
) -> bool:
    """Keep only mapped, well-formed reads suitable for an assembly region traversal.

    If ``counts`` is given, the reason for each rejection is tallied into it.
    """
    reason: Optional[str] = None
    if read.is_unmapped:
        reason = "reads_unmapped"
    elif read.cigartuples is None or read.reference_end is None or read.reference_length == 0:
        reason = "reads_malformed"
    elif read.is_secondary and not include_secondary:
        reason = "reads_skipped_secondary"
    elif read.is_supplementary and not include_supplementary:
        reason = "reads_skipped_supplementary"
    elif skip_duplicates and read.is_duplicate:
        reason = "reads_skipped_duplicates"

    if reason is None:
        return True
    if counts is not None:
        counts[reason] = counts.get(reason, 0) + 1
    return False


class ReadCachingIterator:
    """Pass reads through unchanged while remembering every read handed out.

    The locus walk pulls reads through this iterator; the region iterator later
    collects them with ``consume_cached_reads`` in the order they were pulled.
    """

    def __init__(self, reads: Iterable[pysam.AlignedSegment]) -> None:
        self._reads = iter(reads)
        self._cache: List[pysam.AlignedSegment] = []

    def __iter__(self) -> "ReadCachingIterator":
        return self

    def __next__(self) -> pysam.AlignedSegment:
        read = next(self._reads)
        self._cache.append(read)
        return read

    def consume_cached_reads(self) -> List[pysam.AlignedSegment]:
        reads = self._cache
        self._cache = []
        return reads


@dataclass
class ReadShard:
    """Traversal intervals plus the coordinate-sorted, pre-filtered reads that cover them."""

    intervals: List[Span]
    reads: Iterable[pysam.AlignedSegment]
    filter_counts: Dict[str, int] = field(default_factory=dict)

    def __iter__(self) -> Iterator[pysam.AlignedSegment]:
        return iter(self.reads)

    @classmethod
    def from_alignment_file(
        cls,
        bam: pysam.AlignmentFile,
        intervals: Iterable[Span],
        *,
        padding: int = 0,
        skip_duplicates: bool = True,
        include_secondary: bool = False,
        include_supplementary: bool = False,
    ) -> "ReadShard":
        """Build a shard over an indexed BAM/CRAM.

        Reads are fetched for the merged, padded intervals. A read overlapping two
        fetch windows is returned only once.
        """
        header = bam.header
        order = contig_order(header)
        intervals = sort_and_merge(intervals, order)
        lengths = {name: header.get_reference_length(name) for name in header.references}
        fetch_windows = sort_and_merge(intervals, order, padding=padding, lengths=lengths)

        counts: Dict[str, int] = {}
        reads = _iter_shard_reads(
            bam,
            fetch_windows,
            counts,
            skip_duplicates=skip_duplicates,
            include_secondary=include_secondary,
            include_supplementary=include_supplementary,
        )
        return cls(intervals=list(intervals), reads=reads, filter_counts=counts)


def _iter_shard_reads(
    bam: pysam.AlignmentFile,
    windows: List[Span],
    counts: Dict[str, int],
    *,
    skip_duplicates: bool,
    include_secondary: bool,
    include_supplementary: bool,
) -> Iterator[pysam.AlignedSegment]:
    counts.setdefault("reads_total", 0)
    counts.setdefault("reads_kept", 0)

    prev: Optional[Span] = None
    for window in windows:
        for read in bam.fetch(window.contig, window.start - 1, window.end):
            # already returned by the previous window's fetch
            if prev is not None and prev.contig == window.contig and read.reference_start < prev.end:
                continue
            counts["reads_total"] += 1
            if not passes_read_filters(
                read,
                skip_duplicates=skip_duplicates,
                include_secondary=include_secondary,
                include_supplementary=include_supplementary,
                counts=counts,
            ):
                continue
            counts["reads_kept"] += 1
            yield read
        prev = window

    logger.info(
        "Shard reads: %d seen, %d kept over %d fetch window(s)",
        counts["reads_total"],
        counts["reads_kept"],
        len(windows),
    )
