from __future__ import annotations

import itertools
from pathlib import Path
from typing import Callable, Iterable, List, Optional, Sequence, Tuple

import pysam
import pytest

from asmregions.models import ActivityProfileState

CONTIGS: List[Tuple[str, int]] = [("chr1", 100), ("chr2", 60)]
CHR1_SEQ = ("ACGT" * 25)[:100]
CHR2_SEQ = ("GGCA" * 15)[:60]


def _write_fasta(path: Path, records: Sequence[Tuple[str, str]]) -> None:
    lines: List[str] = []
    for contig, seq in records:
        lines.append(f">{contig}")
        for i in range(0, len(seq), 60):
            lines.append(seq[i : i + 60])
    path.write_text("\n".join(lines) + "\n", encoding="utf-8")


@pytest.fixture
def header() -> pysam.AlignmentHeader:
    return pysam.AlignmentHeader.from_dict(
        {
            "HD": {"VN": "1.6", "SO": "coordinate"},
            "SQ": [{"SN": name, "LN": length} for name, length in CONTIGS],
        }
    )


@pytest.fixture
def make_read(header: pysam.AlignmentHeader) -> Callable[..., pysam.AlignedSegment]:
    """Factory for mapped reads; ``start`` is 1-based."""
    names = itertools.count()

    def _make(
        contig: str,
        start: int,
        length: int = 10,
        *,
        cigar: Optional[List[Tuple[int, int]]] = None,
        seq: Optional[str] = None,
        qual: str = "I",
        name: Optional[str] = None,
        flag: int = 0,
    ) -> pysam.AlignedSegment:
        if cigar is None:
            cigar = [(0, length)]
        qlen = sum(n for op, n in cigar if op in (0, 1, 4, 7, 8))
        a = pysam.AlignedSegment(header)
        a.query_name = name if name is not None else f"r{next(names)}"
        a.flag = flag
        a.reference_id = header.get_tid(contig)
        a.reference_start = start - 1
        a.mapping_quality = 60
        a.cigartuples = cigar
        a.query_sequence = seq if seq is not None else "A" * qlen
        a.query_qualities = pysam.qualitystring_to_array(qual * qlen)
        return a

    return _make


@pytest.fixture
def positions_evaluator() -> Callable[[Iterable[Tuple[str, int]]], Callable]:
    """Build an evaluator that reports probability 1 at the given (contig, pos) loci."""

    def _build(active: Iterable[Tuple[str, int]]) -> Callable:
        active_set = set(active)

        def evaluate(pileup, ref_context, feature_context) -> ActivityProfileState:
            prob = 1.0 if (pileup.contig, pileup.position) in active_set else 0.0
            return ActivityProfileState(pileup.locus, prob)

        return evaluate

    return _build


@pytest.fixture
def reference_fasta(tmp_path: Path) -> Path:
    fa = tmp_path / "ref.fa"
    _write_fasta(fa, [("chr1", CHR1_SEQ), ("chr2", CHR2_SEQ)])
    pysam.faidx(str(fa))
    return fa


@pytest.fixture
def write_bam(tmp_path: Path, header: pysam.AlignmentHeader) -> Callable[..., Path]:
    """Write reads to a sorted, indexed BAM under tmp_path."""

    def _write(reads: Iterable[pysam.AlignedSegment], name: str = "reads.bam") -> Path:
        bam_path = tmp_path / name
        ordered = sorted(reads, key=lambda r: (r.reference_id, r.reference_start))
        with pysam.AlignmentFile(str(bam_path), "wb", header=header) as bam:
            for r in ordered:
                bam.write(r)
        pysam.index(str(bam_path))
        return bam_path

    return _write
