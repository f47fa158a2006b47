from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, List, Optional, Sequence

import pysam

if TYPE_CHECKING:
    from .context import ReferenceContext
    from .pileup import Pileup


@dataclass(frozen=True)
class Span:
    """A stretch of one contig.

    Coordinates are 1-based and inclusive. A span of size 1 is a single locus.
    """

    contig: str
    start: int
    end: int

    def __post_init__(self) -> None:
        if self.start < 1:
            raise ValueError(f"Span start must be >= 1, got {self.start} ({self.contig})")
        if self.end < self.start:
            raise ValueError(f"Span end ({self.end}) must be >= start ({self.start}) on {self.contig}")

    def __str__(self) -> str:
        return f"{self.contig}:{self.start}-{self.end}"

    @classmethod
    def locus(cls, contig: str, pos: int) -> "Span":
        return cls(contig, pos, pos)

    @classmethod
    def from_read(cls, read: pysam.AlignedSegment) -> "Span":
        """Reference span covered by an aligned read (pysam uses 0-based half-open)."""
        return cls(str(read.reference_name), int(read.reference_start) + 1, int(read.reference_end))

    @property
    def size(self) -> int:
        return self.end - self.start + 1

    def overlaps(self, other: "Span") -> bool:
        return self.contig == other.contig and self.start <= other.end and other.start <= self.end

    def contains(self, other: "Span") -> bool:
        return self.contig == other.contig and self.start <= other.start and other.end <= self.end

    def expand_within_contig(self, padding: int, contig_length: int) -> "Span":
        """Extend both sides by ``padding`` bases, clipped to [1, contig_length]."""
        if padding < 0:
            raise ValueError(f"padding must be >= 0, got {padding}")
        return Span(
            self.contig,
            max(1, self.start - padding),
            min(contig_length, self.end + padding),
        )


class ResultState(enum.Enum):
    """Extra information an activity classifier may attach to a state."""

    NONE = "none"
    HIGH_QUALITY_SOFT_CLIPS = "high_quality_soft_clips"


@dataclass(frozen=True)
class ActivityProfileState:
    """Raw activity judgment for one locus.

    Attributes
    ----------
    loc:
        The locus (a size-1 span).
    is_active_prob:
        Probability that the locus is active.
    result_state:
        Optional extra signal; ``HIGH_QUALITY_SOFT_CLIPS`` asks the profile to spread
        the probability to neighbouring loci.
    result_value:
        Magnitude for ``result_state`` (for soft clips: the number of clipped bases).
    """

    loc: Span
    is_active_prob: float
    result_state: ResultState = ResultState.NONE
    result_value: Optional[float] = None

    def __post_init__(self) -> None:
        if self.loc.size != 1:
            raise ValueError(f"ActivityProfileState must be for a single locus, got {self.loc}")
        if self.is_active_prob < 0.0:
            raise ValueError(f"is_active_prob must be >= 0, got {self.is_active_prob}")
        if self.result_value is not None and self.result_value < 0:
            raise ValueError(f"result_value must be >= 0, got {self.result_value}")

    def offset(self, other: Span) -> int:
        """Distance in bases from the start of ``other`` to this locus."""
        return self.loc.start - other.start


@dataclass(frozen=True)
class AlignmentAndReferenceContext:
    """A buffered pileup with the reference context it was evaluated against."""

    pileup: "Pileup"
    reference_context: "ReferenceContext"

    @property
    def locus(self) -> Span:
        return self.pileup.locus


@dataclass(eq=False)
class AssemblyRegion:
    """A decided region of the genome plus the reads needed to reassemble it.

    ``padded_span`` is ``span`` extended by ``padding`` on both sides and clipped to
    the contig. Reads are kept in non-decreasing start order and every read overlaps
    ``padded_span``. A read may also belong to the previous or next region.
    """

    span: Span
    is_active: bool
    padding: int
    contig_length: int
    supporting_states: List[ActivityProfileState] = field(default_factory=list)
    reads: List[pysam.AlignedSegment] = field(default_factory=list)
    alignment_data: List[AlignmentAndReferenceContext] = field(default_factory=list)
    padded_span: Span = field(init=False)

    def __post_init__(self) -> None:
        if self.span.end > self.contig_length:
            raise ValueError(f"Region {self.span} extends past contig length {self.contig_length}")
        self.padded_span = self.span.expand_within_contig(self.padding, self.contig_length)

    def __repr__(self) -> str:
        return (
            f"AssemblyRegion({self.span} active={self.is_active} "
            f"padded={self.padded_span} reads={len(self.reads)})"
        )

    @property
    def contig(self) -> str:
        return self.span.contig

    @property
    def start(self) -> int:
        return self.span.start

    @property
    def end(self) -> int:
        return self.span.end

    def read_overlaps(self, read: pysam.AlignedSegment) -> bool:
        return self.padded_span.overlaps(Span.from_read(read))

    def add(self, read: pysam.AlignedSegment) -> None:
        read_span = Span.from_read(read)
        if not self.padded_span.overlaps(read_span):
            raise ValueError(f"Read at {read_span} does not overlap padded span {self.padded_span}")
        if self.reads and read.reference_start < self.reads[-1].reference_start:
            raise ValueError(
                f"Read at {read_span} added out of order (previous read starts at "
                f"{self.reads[-1].reference_start + 1})"
            )
        self.reads.append(read)

    def add_all_alignment_data(self, data: Sequence[AlignmentAndReferenceContext]) -> None:
        self.alignment_data.extend(data)

    def get_reference_bases(self, reference: Any) -> str:
        """Upper-case reference bases of the padded span from a ``pysam.FastaFile``."""
        padded = self.padded_span
        return str(reference.fetch(padded.contig, padded.start - 1, padded.end)).upper()
