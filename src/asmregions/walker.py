from __future__ import annotations

import logging
import time
from contextlib import ExitStack
from pathlib import Path
from typing import Iterable, Iterator, Optional

import pysam
from tqdm import tqdm

from .config import AssemblyRegionArgs
from .evaluators import ActivityClassifier
from .intervals import parse_interval, whole_genome_intervals
from .iterator import AssemblyRegionIterator
from .models import AssemblyRegion
from .reads import ReadShard
from .validation import check_alignment_index, check_fasta_index, check_feature_index

logger = logging.getLogger(__name__)


def iter_assembly_regions(
    bam_path: str | Path,
    evaluator: ActivityClassifier,
    *,
    intervals: Optional[Iterable[str]] = None,
    reference_path: Optional[str | Path] = None,
    features_path: Optional[str | Path] = None,
    args: Optional[AssemblyRegionArgs] = None,
    track_pileups: bool = False,
    skip_duplicates: bool = True,
    include_secondary: bool = False,
    include_supplementary: bool = False,
    progress: bool = False,
) -> Iterator[AssemblyRegion]:
    """Open the inputs and yield every assembly region over ``intervals``.

    Parameters
    ----------
    bam_path:
        Coordinate-sorted, indexed BAM/CRAM.
    evaluator:
        Activity classifier called once per locus.
    intervals:
        Interval strings (``chr1``, ``chr1:100-200``). None traverses every contig in
        the BAM header.
    reference_path:
        Optional indexed FASTA for reference contexts.
    features_path:
        Optional indexed VCF for feature contexts.
    args:
        Region shaping parameters (defaults to ``AssemblyRegionArgs()``).
    progress:
        Show a tqdm progress bar counting regions.

    Files stay open while the generator is alive and are closed when it finishes
    or is closed.
    """
    if args is None:
        args = AssemblyRegionArgs()
    args.validate()
    check_alignment_index(bam_path)
    if reference_path is not None:
        check_fasta_index(reference_path)
    if features_path is not None:
        check_feature_index(features_path)
    t0 = time.time()

    with ExitStack() as stack:
        bam = stack.enter_context(pysam.AlignmentFile(str(bam_path), "rb"))
        reference = None
        if reference_path is not None:
            reference = stack.enter_context(pysam.FastaFile(str(reference_path)))
        features = None
        if features_path is not None:
            features = stack.enter_context(pysam.VariantFile(str(features_path)))

        header = bam.header
        if intervals is None:
            spans = whole_genome_intervals(header)
        else:
            spans = [parse_interval(text, header) for text in intervals]
        if not spans:
            raise ValueError("No intervals to traverse")

        shard = ReadShard.from_alignment_file(
            bam,
            spans,
            padding=args.assembly_region_padding,
            skip_duplicates=skip_duplicates,
            include_secondary=include_secondary,
            include_supplementary=include_supplementary,
        )
        logger.info(
            "Traversing %d interval(s) of %s with padding=%d min=%d max=%d",
            len(shard.intervals),
            bam_path,
            args.assembly_region_padding,
            args.min_assembly_region_size,
            args.max_assembly_region_size,
        )

        regions: Iterable[AssemblyRegion] = AssemblyRegionIterator(
            shard,
            header,
            reference,
            features,
            evaluator,
            args,
            track_pileups=track_pileups,
        )
        if progress:
            regions = tqdm(regions, unit="region", desc="Assembly regions")

        n_regions = 0
        n_active = 0
        for region in regions:
            n_regions += 1
            if region.is_active:
                n_active += 1
            yield region

        logger.info(
            "Done: %d region(s), %d active, filter counts %s, %.1fs",
            n_regions,
            n_active,
            shard.filter_counts,
            time.time() - t0,
        )
