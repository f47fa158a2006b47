import pysam
import pytest

from asmregions.context import FeatureContext, ReferenceContext
from asmregions.evaluators import ReferenceMismatchEvaluator
from asmregions.models import ResultState, Span
from asmregions.pileup import Pileup, PileupElement


@pytest.fixture
def fasta(reference_fasta):
    with pysam.FastaFile(str(reference_fasta)) as fa:
        yield fa


def _evaluate(evaluator, fasta, elements, pos, contig="chr1"):
    locus = Span.locus(contig, pos)
    pileup = Pileup(locus, tuple(elements))
    return evaluator(pileup, ReferenceContext(fasta, locus), FeatureContext(None, locus))


def test_mismatch_fraction(make_read, fasta):
    # chr1 is ACGTACGT..., position 3 is G
    match = make_read("chr1", 1, 5, seq="ACGTA")
    mismatch = make_read("chr1", 1, 5, seq="ACCTA")
    state = _evaluate(
        ReferenceMismatchEvaluator(),
        fasta,
        [PileupElement(match, 2), PileupElement(mismatch, 2)],
        3,
    )
    assert state.loc == Span.locus("chr1", 3)
    assert state.is_active_prob == pytest.approx(0.5)
    assert state.result_state is ResultState.NONE


def test_low_quality_and_n_bases_are_not_informative(make_read, fasta):
    match = make_read("chr1", 1, 5, seq="ACGTA")
    low_quality = make_read("chr1", 1, 5, seq="ACCTA", qual="#")
    n_base = make_read("chr1", 1, 5, seq="ACNTA")
    state = _evaluate(
        ReferenceMismatchEvaluator(),
        fasta,
        [PileupElement(match, 2), PileupElement(low_quality, 2), PileupElement(n_base, 2)],
        3,
    )
    assert state.is_active_prob == 0.0


def test_deletions_count_as_mismatches(make_read, fasta):
    match = make_read("chr1", 1, 5, seq="ACGTA")
    deleted = make_read("chr1", 1, cigar=[(0, 2), (2, 1), (0, 2)], seq="ACTA")
    state = _evaluate(
        ReferenceMismatchEvaluator(),
        fasta,
        [PileupElement(match, 2), PileupElement(deleted, None)],
        3,
    )
    assert state.is_active_prob == pytest.approx(0.5)


def test_inactive_without_reference_or_reads(make_read):
    evaluator = ReferenceMismatchEvaluator()
    read = make_read("chr1", 1, 5, seq="TTTTT")
    locus = Span.locus("chr1", 1)
    state = evaluator(
        Pileup(locus, (PileupElement(read, 0),)), ReferenceContext(None, locus), FeatureContext(None, locus)
    )
    assert state.is_active_prob == 0.0
    assert state.result_state is ResultState.NONE


def test_empty_pileup_is_inactive(fasta):
    state = _evaluate(ReferenceMismatchEvaluator(), fasta, [], 7)
    assert state.is_active_prob == 0.0


def test_high_quality_soft_clips_are_flagged(make_read, fasta):
    leading = make_read("chr1", 11, cigar=[(4, 6), (0, 10)])
    trailing = make_read("chr1", 11, cigar=[(0, 10), (4, 6)])
    hard_then_soft = make_read("chr1", 11, cigar=[(5, 3), (4, 8), (0, 10)])
    evaluator = ReferenceMismatchEvaluator()

    first_base = _evaluate(evaluator, fasta, [PileupElement(leading, 6)], 11)
    assert first_base.result_state is ResultState.HIGH_QUALITY_SOFT_CLIPS
    assert first_base.result_value == pytest.approx(6.0)

    last_base = _evaluate(evaluator, fasta, [PileupElement(trailing, 9)], 20)
    assert last_base.result_state is ResultState.HIGH_QUALITY_SOFT_CLIPS

    both = _evaluate(evaluator, fasta, [PileupElement(leading, 6), PileupElement(hard_then_soft, 8)], 11)
    assert both.result_value == pytest.approx(7.0)

    inner = _evaluate(evaluator, fasta, [PileupElement(leading, 8)], 13)
    assert inner.result_state is ResultState.NONE


def test_short_or_low_quality_soft_clips_are_ignored(make_read, fasta):
    short = make_read("chr1", 11, cigar=[(4, 2), (0, 10)])
    low_quality = make_read("chr1", 11, cigar=[(4, 6), (0, 10)], qual="#")
    evaluator = ReferenceMismatchEvaluator()
    assert _evaluate(evaluator, fasta, [PileupElement(short, 2)], 11).result_state is ResultState.NONE
    assert _evaluate(evaluator, fasta, [PileupElement(low_quality, 6)], 11).result_state is ResultState.NONE


def test_evaluator_rejects_bad_thresholds():
    with pytest.raises(ValueError):
        ReferenceMismatchEvaluator(min_soft_clip_length=0)
    with pytest.raises(ValueError):
        ReferenceMismatchEvaluator(min_base_quality=-1)
