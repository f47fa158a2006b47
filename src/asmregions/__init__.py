"""asmregions: streaming segmentation of aligned reads into padded assembly regions.

Public API is intentionally small; most users should iterate regions through
the driver:

    from asmregions.walker import iter_assembly_regions

    for region in iter_assembly_regions("sample.bam", evaluator, intervals=["chr1:1-100000"]):
        ...

"""

from __future__ import annotations

__all__ = [
    "__version__",
    "ActivityProfile",
    "ActivityProfileState",
    "AssemblyRegion",
    "AssemblyRegionArgs",
    "AssemblyRegionIterator",
    "BandPassActivityProfile",
    "ReadShard",
    "ResultState",
    "Span",
]

__version__ = "0.2.0"

from .activity import ActivityProfile, BandPassActivityProfile
from .config import AssemblyRegionArgs
from .iterator import AssemblyRegionIterator
from .models import ActivityProfileState, AssemblyRegion, ResultState, Span
from .reads import ReadShard
