from __future__ import annotations

from typing import Callable, List, Optional, Tuple

import pysam

from .context import FeatureContext, ReferenceContext
from .models import ActivityProfileState, ResultState
from .pileup import Pileup, PileupElement
from .utils import clamp

# Any callable (pileup, reference context, feature context) -> state. It must return
# the same state for the same inputs within one traversal.
ActivityClassifier = Callable[[Pileup, ReferenceContext, FeatureContext], ActivityProfileState]

_CIGAR_SOFT_CLIP = 4
_CIGAR_HARD_CLIP = 5


def _soft_clip_lengths(read: pysam.AlignedSegment) -> Tuple[int, int]:
    """(leading, trailing) soft-clip lengths, looking through hard clips."""
    ops = [t for t in (read.cigartuples or []) if t[0] != _CIGAR_HARD_CLIP]
    lead = ops[0][1] if ops and ops[0][0] == _CIGAR_SOFT_CLIP else 0
    trail = ops[-1][1] if len(ops) > 1 and ops[-1][0] == _CIGAR_SOFT_CLIP else 0
    return lead, trail


def _mean_quality(read: pysam.AlignedSegment, start: int, end: int) -> float:
    quals = read.query_qualities
    if quals is None or end <= start:
        return 0.0
    window = quals[start:end]
    return float(sum(window)) / len(window)


class ReferenceMismatchEvaluator:
    """Flag loci where covering reads disagree with the reference.

    The activity probability is the fraction of informative pileup elements that
    are deletions or carry a non-reference base. A base is informative when its
    quality is at least ``min_base_quality``.

    Reads whose aligned block ends at this locus next to a soft clip of at least
    ``min_soft_clip_length`` bases with mean quality ``>= min_soft_clip_quality``
    are counted as high-quality soft clips. The state then carries
    ``HIGH_QUALITY_SOFT_CLIPS`` with the mean clip length, so the profile spreads
    its probability to neighbouring loci.

    Without reference bases every locus is inactive.
    """

    def __init__(
        self,
        *,
        min_base_quality: int = 10,
        min_soft_clip_length: int = 5,
        min_soft_clip_quality: int = 28,
    ) -> None:
        if min_base_quality < 0 or min_soft_clip_length < 1 or min_soft_clip_quality < 0:
            raise ValueError("Evaluator thresholds must be non-negative (soft clip length >= 1)")
        self.min_base_quality = int(min_base_quality)
        self.min_soft_clip_length = int(min_soft_clip_length)
        self.min_soft_clip_quality = int(min_soft_clip_quality)

    def __call__(
        self,
        pileup: Pileup,
        ref_context: ReferenceContext,
        feature_context: FeatureContext,
    ) -> ActivityProfileState:
        ref_base = ref_context.base_at(pileup.position)
        if ref_base is None or len(pileup) == 0:
            return ActivityProfileState(pileup.locus, 0.0)

        informative = 0
        mismatches = 0
        clip_lengths: List[int] = []
        for element in pileup:
            clip = self._high_quality_soft_clip(element)
            if clip is not None:
                clip_lengths.append(clip)

            if element.is_deletion:
                informative += 1
                mismatches += 1
                continue
            if element.base_quality < self.min_base_quality:
                continue
            base = element.base
            if base == "N":
                continue
            informative += 1
            if base != ref_base:
                mismatches += 1

        prob = clamp(mismatches / informative, 0.0, 1.0) if informative else 0.0
        if clip_lengths:
            mean_clip = float(sum(clip_lengths)) / len(clip_lengths)
            return ActivityProfileState(
                pileup.locus, prob, ResultState.HIGH_QUALITY_SOFT_CLIPS, mean_clip
            )
        return ActivityProfileState(pileup.locus, prob)

    def _high_quality_soft_clip(self, element: PileupElement) -> Optional[int]:
        qpos = element.query_position
        if qpos is None:
            return None
        read = element.read
        lead, trail = _soft_clip_lengths(read)
        if lead >= self.min_soft_clip_length and qpos == lead:
            if _mean_quality(read, 0, lead) >= self.min_soft_clip_quality:
                return lead
        qlen = read.query_length
        if trail >= self.min_soft_clip_length and qpos == qlen - trail - 1:
            if _mean_quality(read, qlen - trail, qlen) >= self.min_soft_clip_quality:
                return trail
        return None
