"""Pull-based traversal of a read shard, one assembly region at a time.

Loads reads from the shard as lazily as possible: a region is only handed out
once the locus walk has moved past its padded span, which guarantees that every
read overlapping the padded span has been pulled from the shard.

The shard must already be filtered for this traversal (unmapped and malformed
reads removed) and sorted by coordinate.
"""

from __future__ import annotations

import logging
from collections import deque
from typing import Any, Deque, List, Optional

import pysam

from .activity import ActivityProfile, BandPassActivityProfile
from .config import AssemblyRegionArgs
from .context import FeatureContext, ReferenceContext
from .evaluators import ActivityClassifier
from .intervals import contig_order, is_after, is_before
from .models import AlignmentAndReferenceContext, AssemblyRegion, Span
from .pileup import IntervalPileupIterator, LocusPileupIterator, Pileup, iter_interval_loci
from .reads import ReadCachingIterator, ReadShard

logger = logging.getLogger(__name__)


class AssemblyRegionIterator:
    """Iterate the assembly regions of a ``ReadShard``.

    Parameters
    ----------
    read_shard:
        Intervals to traverse and the coordinate-sorted reads covering them.
    header:
        Alignment header; its sequence dictionary defines contig order and lengths.
    reference:
        Source of reference bases (``pysam.FastaFile``), or None.
    features:
        Source of side-channel features (pysam-style ``fetch``), or None.
    evaluator:
        Callable deciding how active each locus is.
    args:
        Region shaping parameters; validated here.
    track_pileups:
        Also attach each region's pileups and reference contexts to it.
    """

    def __init__(
        self,
        read_shard: ReadShard,
        header: pysam.AlignmentHeader,
        reference: Optional[pysam.FastaFile],
        features: Optional[Any],
        evaluator: ActivityClassifier,
        args: AssemblyRegionArgs,
        track_pileups: bool = False,
    ) -> None:
        if read_shard is None:
            raise ValueError("read_shard must not be None")
        if header is None:
            raise ValueError("header must not be None")
        if evaluator is None:
            raise ValueError("evaluator must not be None")
        if args is None:
            raise ValueError("args must not be None")
        args.validate()

        self.read_shard = read_shard
        self.header = header
        self.reference = reference
        self.features = features
        self.evaluator = evaluator
        self.args = args
        self._order = contig_order(header)

        self._previous_region_reads: Optional[List[pysam.AlignedSegment]] = None
        self._pending_regions: Deque[AssemblyRegion] = deque()
        self._read_caching_iterator = ReadCachingIterator(read_shard)
        self._read_cache: Deque[pysam.AlignedSegment] = deque()
        self._activity_profile: ActivityProfile = BandPassActivityProfile(
            args.max_prob_propagation_distance,
            args.active_prob_threshold,
            header,
            max_filter_size=args.band_pass_filter_size,
            sigma=args.band_pass_sigma,
        )
        self._pending_alignment_data: Optional[Deque[AlignmentAndReferenceContext]] = (
            deque() if track_pileups else None
        )

        # Wrap the covered-locus walk so uncovered positions still get (empty) pileups;
        # region boundaries depend on every locus being visited.
        self._locus_pileups = LocusPileupIterator(self._read_caching_iterator, header)
        self._locus_iterator = IntervalPileupIterator(
            self._locus_pileups, iter_interval_loci(read_shard.intervals), header
        )
        self._next_pileup = self._pull_pileup()

        self._ready_region: Optional[AssemblyRegion] = self._load_next_assembly_region()

    def __iter__(self) -> "AssemblyRegionIterator":
        return self

    def has_next(self) -> bool:
        return self._ready_region is not None

    def __next__(self) -> AssemblyRegion:
        if self._ready_region is None:
            raise StopIteration
        to_return = self._ready_region
        self._previous_region_reads = to_return.reads
        self._ready_region = self._load_next_assembly_region()
        return to_return

    def remove(self) -> None:
        raise NotImplementedError("remove() is not supported by AssemblyRegionIterator")

    def _pull_pileup(self) -> Optional[Pileup]:
        return next(self._locus_iterator, None)

    def _loci_remaining(self) -> bool:
        return self._next_pileup is not None

    def _load_next_assembly_region(self) -> Optional[AssemblyRegion]:
        next_region: Optional[AssemblyRegion] = None
        args = self.args
        profile = self._activity_profile

        while self._loci_remaining() and next_region is None:
            pileup = self._next_pileup
            self._next_pileup = self._pull_pileup()
            locus = pileup.locus
            logger.debug("AssemblyRegionIterator pileup: %r", pileup)

            # Pending regions only become ready once every read belonging to them has been
            # seen. The force check must happen before this locus enters the profile.
            if not profile.is_empty():
                force_conversion = locus.contig != profile.contig or locus.start != profile.end + 1
                self._pending_regions.extend(
                    profile.pop_ready_assembly_regions(
                        args.assembly_region_padding,
                        args.min_assembly_region_size,
                        args.max_assembly_region_size,
                        force_conversion,
                    )
                )

            ref_context = ReferenceContext(self.reference, locus)
            feature_context = FeatureContext(self.features, locus)
            if self._pending_alignment_data is not None:
                self._pending_alignment_data.append(AlignmentAndReferenceContext(pileup, ref_context))

            state = self.evaluator(pileup, ref_context, feature_context)
            logger.debug("Activity state: %s", state)
            profile.add(state)

            # The locus walk has moved past the head region's padded span, so all of
            # its reads have been loaded.
            if self._pending_regions and is_after(locus, self._pending_regions[0].padded_span, self._order):
                next_region = self._pending_regions.popleft()

        if not self._loci_remaining():
            # The interval walk may stop before the underlying pileup walk does; drain it
            # so the reads of the final padded region reach the read cache.
            for _ in self._locus_pileups:
                pass

            if not profile.is_empty():
                self._pending_regions.extend(
                    profile.pop_ready_assembly_regions(
                        args.assembly_region_padding,
                        args.min_assembly_region_size,
                        args.max_assembly_region_size,
                        True,
                    )
                )

            # A region may already be ready if one was finalized on the last locus.
            if self._pending_regions and next_region is None:
                next_region = self._pending_regions.popleft()

        if next_region is not None:
            self._fill_next_assembly_region_with_reads(next_region)
            self._fill_next_assembly_region_with_pileup_data(next_region)
            logger.debug("Ready region: %r", next_region)

        return next_region

    def _fill_next_assembly_region_with_reads(self, region: AssemblyRegion) -> None:
        padded = region.padded_span

        # reads of the previous region may also belong here
        if self._previous_region_reads is not None:
            for read in self._previous_region_reads:
                if padded.overlaps(Span.from_read(read)):
                    region.add(read)

        # the cache stays in coordinate order
        self._read_cache.extend(self._read_caching_iterator.consume_cached_reads())

        while self._read_cache:
            read_span = Span.from_read(self._read_cache[0])

            # starts after this region: leave it for a later one
            if is_after(read_span, padded, self._order):
                break

            read = self._read_cache.popleft()
            # anything not overlapping must end before the padded start; drop it
            if padded.overlaps(read_span):
                region.add(read)

    def _fill_next_assembly_region_with_pileup_data(self, region: AssemblyRegion) -> None:
        pending = self._pending_alignment_data
        if pending is None:
            return

        region_start = Span.locus(region.contig, region.start)
        while pending and is_before(pending[0].locus, region_start, self._order):
            pending.popleft()

        overlapping: List[AlignmentAndReferenceContext] = []
        while pending:
            locus = pending[0].locus
            if locus.contig != region.contig or locus.start > region.end:
                break
            overlapping.append(pending.popleft())

        region.add_all_alignment_data(overlapping)
