"""Per-locus pileups built lazily from a coordinate-sorted read stream.

``LocusPileupIterator`` walks reads with their CIGARs and yields one pileup per
covered reference position. ``IntervalPileupIterator`` lays that stream over a set
of traversal intervals, filling uncovered positions with empty pileups so that
every locus of every interval is visited exactly once.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, Iterator, List, Optional, Sequence

import pysam

from .intervals import contig_order, is_before
from .models import Span

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PileupElement:
    """One read's contribution at a locus; ``query_position`` is None for a deletion."""

    read: pysam.AlignedSegment
    query_position: Optional[int]

    @property
    def is_deletion(self) -> bool:
        return self.query_position is None

    @property
    def base(self) -> str:
        if self.query_position is None:
            return "-"
        seq = self.read.query_sequence
        if seq is None:
            return "N"
        return seq[self.query_position].upper()

    @property
    def base_quality(self) -> int:
        quals = self.read.query_qualities
        if self.query_position is None or quals is None:
            return 0
        return int(quals[self.query_position])


@dataclass(frozen=True)
class Pileup:
    """Read bases aligned to one locus. An empty pileup marks an uncovered locus."""

    locus: Span
    elements: Sequence[PileupElement] = field(default_factory=tuple)

    @classmethod
    def empty(cls, locus: Span) -> "Pileup":
        return cls(locus, ())

    def __len__(self) -> int:
        return len(self.elements)

    def __iter__(self) -> Iterator[PileupElement]:
        return iter(self.elements)

    def __repr__(self) -> str:
        return f"Pileup({self.locus}, depth={len(self.elements)})"

    @property
    def contig(self) -> str:
        return self.locus.contig

    @property
    def position(self) -> int:
        return self.locus.start

    def reads(self) -> List[pysam.AlignedSegment]:
        return [e.read for e in self.elements]


def _aligned_positions(read: pysam.AlignedSegment) -> Dict[int, Optional[int]]:
    """Map each 0-based reference position the read covers to its query position.

    Deleted positions map to None; reference skips (N) are left out.
    """
    out: Dict[int, Optional[int]] = {}
    ref_pos = read.reference_start
    query_pos = 0
    for op, length in read.cigartuples or ():
        if op in (0, 7, 8):  # M, =, X: consumes query and ref
            for i in range(length):
                out[ref_pos + i] = query_pos + i
            ref_pos += length
            query_pos += length
        elif op == 2:  # D: ref only, shows up in the pileup
            for i in range(length):
                out[ref_pos + i] = None
            ref_pos += length
        elif op == 3:  # N: ref only, not part of the pileup
            ref_pos += length
        elif op in (1, 4):  # I, S: query only
            query_pos += length
        else:  # H, P
            continue
    return out


class _ReadState:
    __slots__ = ("read", "end0", "positions")

    def __init__(self, read: pysam.AlignedSegment) -> None:
        self.read = read
        self.end0 = int(read.reference_end)
        self.positions = _aligned_positions(read)


class LocusPileupIterator:
    """Yield a ``Pileup`` for every covered position of a coordinate-sorted read stream.

    Reads are pulled only when the walk reaches their start (plus one read of
    look-ahead), so anything wrapping ``reads`` sees them in step with the loci.
    """

    def __init__(self, reads: Iterable[pysam.AlignedSegment], header: pysam.AlignmentHeader) -> None:
        self._reads = iter(reads)
        self._header = header
        self._lookahead: Optional[pysam.AlignedSegment] = None
        self._exhausted = False
        self._active: List[_ReadState] = []
        self._tid = -1
        self._pos0 = 0

    def __iter__(self) -> "LocusPileupIterator":
        return self

    def __next__(self) -> Pileup:
        pileup = self._advance()
        if pileup is None:
            raise StopIteration
        return pileup

    def _peek_read(self) -> Optional[pysam.AlignedSegment]:
        if self._lookahead is None and not self._exhausted:
            try:
                self._lookahead = next(self._reads)
            except StopIteration:
                self._exhausted = True
        return self._lookahead

    def _pop_read(self) -> Optional[pysam.AlignedSegment]:
        read = self._peek_read()
        self._lookahead = None
        return read

    def _check_sorted(self, read: pysam.AlignedSegment) -> None:
        if self._tid >= 0 and (read.reference_id, read.reference_start) < (self._tid, self._pos0):
            raise ValueError(
                f"Reads are not coordinate sorted: {read.query_name} at "
                f"{read.reference_name}:{read.reference_start + 1}"
            )

    def _advance(self) -> Optional[Pileup]:
        while True:
            if not self._active:
                read = self._pop_read()
                if read is None:
                    return None
                self._check_sorted(read)
                self._tid = read.reference_id
                self._pos0 = read.reference_start
                self._active.append(_ReadState(read))

            # admit every read starting at the current position
            while True:
                nxt = self._peek_read()
                if nxt is None:
                    break
                self._check_sorted(nxt)
                if nxt.reference_id != self._tid or nxt.reference_start > self._pos0:
                    break
                self._active.append(_ReadState(self._pop_read()))

            elements = []
            for state in self._active:
                if self._pos0 in state.positions:
                    elements.append(PileupElement(state.read, state.positions[self._pos0]))

            pos0 = self._pos0
            self._pos0 += 1
            self._active = [s for s in self._active if s.end0 > self._pos0]

            if elements:
                contig = self._header.get_reference_name(self._tid)
                return Pileup(Span.locus(contig, pos0 + 1), tuple(elements))


def iter_interval_loci(intervals: Iterable[Span]) -> Iterator[Span]:
    """Every single-base locus of each interval, in order."""
    for iv in intervals:
        for pos in range(iv.start, iv.end + 1):
            yield Span.locus(iv.contig, pos)


class IntervalPileupIterator:
    """Visit every locus of the traversal intervals, using empty pileups where nothing is covered."""

    def __init__(
        self,
        pileups: Iterator[Pileup],
        loci: Iterator[Span],
        header: pysam.AlignmentHeader,
    ) -> None:
        self._pileups = pileups
        self._loci = loci
        self._order = contig_order(header)
        self._current: Optional[Pileup] = None
        self._pileups_done = False

    def __iter__(self) -> "IntervalPileupIterator":
        return self

    def _next_pileup(self) -> Optional[Pileup]:
        if self._pileups_done:
            return None
        try:
            return next(self._pileups)
        except StopIteration:
            self._pileups_done = True
            return None

    def __next__(self) -> Pileup:
        locus = next(self._loci)

        if self._current is None:
            self._current = self._next_pileup()
        while self._current is not None and is_before(self._current.locus, locus, self._order):
            self._current = self._next_pileup()

        if self._current is not None and self._current.locus == locus:
            pileup = self._current
            self._current = None
            return pileup
        return Pileup.empty(locus)
