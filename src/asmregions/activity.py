"""Activity profiles: turn per-locus activity probabilities into region boundaries.

A profile holds a contiguous window of loci. Each raw state may spread its
probability to neighbouring loci (soft clips, band-pass smoothing), so the
probability held for a locus keeps changing until the profile has moved far
enough past it. ``pop_ready_assembly_regions`` only cuts regions out of the part
of the window that can no longer change, unless it is forced to flush.
"""

from __future__ import annotations

import logging
from typing import List, Optional, Tuple

import numpy as np
import pysam

from .models import ActivityProfileState, AssemblyRegion, ResultState, Span

logger = logging.getLogger(__name__)


class ActivityProfile:
    """Ordered window of activity states for one contiguous run of loci."""

    def __init__(
        self,
        max_prob_propagation_distance: int,
        active_prob_threshold: float,
        header: pysam.AlignmentHeader,
    ) -> None:
        if max_prob_propagation_distance < 0:
            raise ValueError("max_prob_propagation_distance must be >= 0")
        if header is None:
            raise ValueError("header must not be None")
        self._max_prob_propagation_distance = int(max_prob_propagation_distance)
        self.active_prob_threshold = float(active_prob_threshold)
        self._header = header

        self._states: List[ActivityProfileState] = []
        self._region_start: Optional[Span] = None
        self._region_stop: Optional[Span] = None
        self._contig_length = 0

    def __repr__(self) -> str:
        return f"{type(self).__name__}(span={self.span}, states={len(self._states)})"

    def __len__(self) -> int:
        return len(self._states)

    @property
    def max_prob_propagation_distance(self) -> int:
        return self._max_prob_propagation_distance

    def is_empty(self) -> bool:
        return not self._states

    @property
    def contig(self) -> Optional[str]:
        return None if self._region_stop is None else self._region_stop.contig

    @property
    def end(self) -> Optional[int]:
        """Position of the most recently added locus."""
        return None if self._region_stop is None else self._region_stop.end

    @property
    def span(self) -> Optional[Span]:
        if self._region_start is None or self._region_stop is None:
            return None
        return Span(self._region_start.contig, self._region_start.start, self._region_stop.end)

    def probabilities(self) -> List[float]:
        return [s.is_active_prob for s in self._states]

    def add(self, state: ActivityProfileState) -> None:
        """Add the raw state for the locus immediately after the current end."""
        loc = state.loc
        if state.is_active_prob > 1.0:
            raise ValueError(f"Raw activity probability must be in [0,1], got {state.is_active_prob} at {loc}")

        if self._region_start is None:
            self._region_start = loc
            self._region_stop = loc
            self._contig_length = self._header.get_reference_length(loc.contig)
        else:
            assert self._region_stop is not None
            if loc.contig != self._region_stop.contig or loc.start != self._region_stop.start + 1:
                raise ValueError(
                    f"Bad add call to {type(self).__name__}: locus {loc} is not immediately "
                    f"after last locus {self._region_stop}"
                )
            self._region_stop = loc

        for processed in self._process_state(state):
            self._incorporate_single_state(processed)

    def _incorporate_single_state(self, state: ActivityProfileState) -> None:
        assert self._region_start is not None
        position = state.offset(self._region_start)
        if position > len(self._states):
            raise RuntimeError(
                f"Activity profile of size {len(self._states)} cannot hold a state at offset {position}"
            )
        if position < 0:
            # already emitted as part of an earlier region
            return
        if position < len(self._states):
            held = self._states[position]
            self._states[position] = ActivityProfileState(
                held.loc,
                held.is_active_prob + state.is_active_prob,
                held.result_state,
                held.result_value,
            )
        else:
            self._states.append(state)

    def _process_state(self, state: ActivityProfileState) -> List[ActivityProfileState]:
        """Expand one raw state into the states to incorporate."""
        if state.result_state is ResultState.HIGH_QUALITY_SOFT_CLIPS:
            n_bases = min(int(state.result_value or 0), self._max_prob_propagation_distance)
            states: List[ActivityProfileState] = []
            for offset in range(-n_bases, n_bases + 1):
                loc = self._loc_for_offset(state.loc, offset)
                if loc is not None:
                    states.append(ActivityProfileState(loc, state.is_active_prob))
            return states
        return [state]

    def _loc_for_offset(self, loc: Span, offset: int) -> Optional[Span]:
        start = loc.start + offset
        if start < 1 or start > self._contig_length:
            return None
        return Span.locus(loc.contig, start)

    # ------------------------------------------------------------------
    # region cutting
    # ------------------------------------------------------------------

    def pop_ready_assembly_regions(
        self,
        padding: int,
        min_region_size: int,
        max_region_size: int,
        force_conversion: bool,
    ) -> List[AssemblyRegion]:
        """Remove and return every region whose extent is final, in locus order.

        With ``force_conversion`` no more loci will follow this contiguous stretch, so
        everything held is flushed regardless of size thresholds.
        """
        regions: List[AssemblyRegion] = []
        while True:
            region = self._pop_next_ready_assembly_region(
                padding, min_region_size, max_region_size, force_conversion
            )
            if region is None:
                return regions
            logger.debug("Popped %r", region)
            regions.append(region)

    def _pop_next_ready_assembly_region(
        self,
        padding: int,
        min_region_size: int,
        max_region_size: int,
        force_conversion: bool,
    ) -> Optional[AssemblyRegion]:
        if not self._states:
            return None

        if force_conversion:
            # drop probability that spilled past the last added locus
            span = self.span
            assert span is not None
            del self._states[span.size :]

        first = self._states[0]
        is_active = self._is_active_at(0)
        last_offset, is_active = self._find_end_of_region(
            is_active, min_region_size, max_region_size, force_conversion
        )
        if last_offset is None:
            return None

        supporting = self._states[: last_offset + 1]
        del self._states[: last_offset + 1]
        if self._states:
            self._region_start = self._states[0].loc
        else:
            self._region_start = None
            self._region_stop = None

        region_span = Span(first.loc.contig, first.loc.start, first.loc.start + last_offset)
        return AssemblyRegion(
            span=region_span,
            is_active=is_active,
            padding=padding,
            contig_length=self._contig_length,
            supporting_states=supporting,
        )

    def _find_end_of_region(
        self,
        is_active: bool,
        min_region_size: int,
        max_region_size: int,
        force_conversion: bool,
    ) -> Tuple[Optional[int], bool]:
        """Return (offset of the region's last locus, region activeness).

        The offset is None while the probability mass that could still change the
        decision has not been seen.
        """
        if not force_conversion and len(self._states) < max_region_size + self.max_prob_propagation_distance:
            return None, is_active

        limit = min(len(self._states), max_region_size)
        end = self._find_first_activity_boundary(is_active, 0, max_region_size)

        if not is_active and end < min_region_size and end < limit:
            # short inactive lead-in joins the active run that follows it
            is_active = True
            end = self._find_first_activity_boundary(True, end, max_region_size)

        if is_active:
            end = self._absorb_short_inactive_runs(end, min_region_size, max_region_size)
            if end == max_region_size:
                end = self._find_split_point(end, min_region_size, force_conversion)
                if end is None:
                    return None, is_active

        # end is one past the last locus
        return end - 1, is_active

    def _find_split_point(self, max_end: int, min_region_size: int, force_conversion: bool) -> Optional[int]:
        """Where to cut an active run longer than the maximum region size.

        The part of the run left after the cut must be at least ``min_region_size``
        long. Only loci whose probability can no longer change are used to find
        the end of the run. Returns None when that is not yet known.
        """
        n_states = len(self._states)
        known = n_states if force_conversion else n_states - self.max_prob_propagation_distance
        run_end = self._find_first_activity_boundary(True, max_end, known)
        run_end = self._absorb_short_inactive_runs(run_end, min_region_size, known)
        if run_end <= max_end and (run_end < known or force_conversion):
            # the whole run fits in one region
            return max_end

        latest_cut = min(max_end, run_end - min_region_size)
        if latest_cut >= min_region_size:
            return self._find_best_cut_site(latest_cut, min_region_size)
        if run_end >= known and not force_conversion:
            # the run may continue; wait until the tail is long enough
            return None
        # no split leaves both parts >= min size
        return self._find_best_cut_site(max_end, min_region_size)

    def _absorb_short_inactive_runs(self, end: int, min_region_size: int, max_region_size: int) -> int:
        limit = min(len(self._states), max_region_size)
        while end < limit:
            gap_end = self._find_first_activity_boundary(False, end, max_region_size)
            if gap_end >= limit or gap_end - end >= min_region_size:
                break
            end = self._find_first_activity_boundary(True, gap_end, max_region_size)
        return end

    def _find_first_activity_boundary(self, is_active: bool, start: int, max_region_size: int) -> int:
        n_states = len(self._states)
        end = start
        while end < n_states and end < max_region_size:
            if self._is_active_at(end) != is_active:
                break
            end += 1
        return end

    def _find_best_cut_site(self, end: int, min_region_size: int) -> int:
        """Cut at the lowest local probability minimum that keeps the region >= min size."""
        min_i = end - 1
        min_p = float("inf")
        for i in range(end - 1, min_region_size - 2, -1):
            cur = self._prob(i)
            if cur < min_p and self._is_minimum(i):
                min_p = cur
                min_i = i
        return min_i + 1

    def _prob(self, index: int) -> float:
        if index < 0 or index >= len(self._states):
            raise IndexError(f"Activity profile index {index} out of range (size {len(self._states)})")
        return self._states[index].is_active_prob

    def _is_active_at(self, index: int) -> bool:
        return self._prob(index) > self.active_prob_threshold

    def _is_minimum(self, index: int) -> bool:
        if index == len(self._states) - 1 or index < 1:
            return False
        p = self._prob(index)
        return p < self._prob(index + 1) and p < self._prob(index - 1)


class BandPassActivityProfile(ActivityProfile):
    """Activity profile that smooths each state with a Gaussian band-pass kernel."""

    MAX_FILTER_SIZE = 50
    DEFAULT_SIGMA = 17.0
    MIN_PROB_TO_KEEP_IN_FILTER = 1e-5

    def __init__(
        self,
        max_prob_propagation_distance: int,
        active_prob_threshold: float,
        header: pysam.AlignmentHeader,
        *,
        max_filter_size: int = MAX_FILTER_SIZE,
        sigma: float = DEFAULT_SIGMA,
        adaptive_filter_size: bool = True,
    ) -> None:
        super().__init__(max_prob_propagation_distance, active_prob_threshold, header)
        if max_filter_size < 0:
            raise ValueError(f"max_filter_size must be >= 0, got {max_filter_size}")
        if sigma <= 0 and max_filter_size > 0:
            raise ValueError(f"sigma must be > 0, got {sigma}")

        self.sigma = float(sigma)
        full_kernel = make_kernel(max_filter_size, self.sigma)
        if adaptive_filter_size:
            self.filter_size = determine_filter_size(full_kernel, self.MIN_PROB_TO_KEEP_IN_FILTER)
        else:
            self.filter_size = int(max_filter_size)
        self.kernel = make_kernel(self.filter_size, self.sigma)
        logger.debug("Band-pass kernel: filter_size=%d sigma=%.2f", self.filter_size, self.sigma)

    @property
    def max_prob_propagation_distance(self) -> int:
        return self._max_prob_propagation_distance + self.filter_size

    def _process_state(self, state: ActivityProfileState) -> List[ActivityProfileState]:
        states: List[ActivityProfileState] = []
        for spread in super()._process_state(state):
            if state.is_active_prob > 0.0:
                for offset in range(-self.filter_size, self.filter_size + 1):
                    loc = self._loc_for_offset(spread.loc, offset)
                    if loc is not None:
                        weight = float(self.kernel[offset + self.filter_size])
                        states.append(ActivityProfileState(loc, spread.is_active_prob * weight))
            else:
                states.append(spread)
        return states


def make_kernel(filter_size: int, sigma: float) -> np.ndarray:
    """Gaussian kernel of 2 * filter_size + 1 taps centred on filter_size, summing to one."""
    if filter_size == 0:
        return np.ones(1, dtype=np.float64)
    x = np.arange(2 * filter_size + 1, dtype=np.float64)
    kernel = np.exp(-0.5 * ((x - filter_size) / sigma) ** 2)
    return kernel / kernel.sum()


def determine_filter_size(kernel: np.ndarray, min_prob_to_keep: float) -> int:
    """Half-width of the central part of ``kernel`` whose taps are all >= min_prob_to_keep."""
    middle = (len(kernel) - 1) // 2
    filter_end = middle
    while filter_end > 0:
        if kernel[filter_end - 1] < min_prob_to_keep:
            break
        filter_end -= 1
    return middle - filter_end
