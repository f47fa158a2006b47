from __future__ import annotations

import logging
from typing import Any, List, Optional

import pysam

from .models import Span

logger = logging.getLogger(__name__)


class ReferenceContext:
    """Reference bases around an interval, fetched lazily from an optional FASTA.

    Without a reference, ``bases`` is the empty string and classifiers are expected
    to cope with that.
    """

    def __init__(
        self,
        reference: Optional[pysam.FastaFile],
        interval: Span,
        *,
        leading_bases: int = 0,
        trailing_bases: int = 0,
    ) -> None:
        if leading_bases < 0 or trailing_bases < 0:
            raise ValueError("leading_bases and trailing_bases must be >= 0")
        self.reference = reference
        self.interval = interval
        self.leading_bases = leading_bases
        self.trailing_bases = trailing_bases
        self._bases: Optional[str] = None

    def __repr__(self) -> str:
        return f"ReferenceContext({self.interval}, backed={self.has_backing_data_source()})"

    def has_backing_data_source(self) -> bool:
        return self.reference is not None

    @property
    def window(self) -> Span:
        if self.reference is None:
            return self.interval
        length = self.reference.get_reference_length(self.interval.contig)
        return Span(
            self.interval.contig,
            max(1, self.interval.start - self.leading_bases),
            min(length, self.interval.end + self.trailing_bases),
        )

    @property
    def bases(self) -> str:
        if self.reference is None:
            return ""
        if self._bases is None:
            w = self.window
            self._bases = str(self.reference.fetch(w.contig, w.start - 1, w.end)).upper()
        return self._bases

    def base_at(self, pos: int) -> Optional[str]:
        """Reference base at a 1-based position inside the window, or None."""
        bases = self.bases
        if not bases:
            return None
        idx = pos - self.window.start
        if idx < 0 or idx >= len(bases):
            return None
        return bases[idx]


class FeatureContext:
    """Side-channel features overlapping an interval.

    ``features`` is anything with a pysam-style ``fetch(contig, start0, end0)``,
    e.g. ``pysam.VariantFile`` or ``pysam.TabixFile``.
    """

    def __init__(self, features: Optional[Any], interval: Span) -> None:
        self.features = features
        self.interval = interval

    def __repr__(self) -> str:
        return f"FeatureContext({self.interval}, backed={self.has_backing_data_source()})"

    def has_backing_data_source(self) -> bool:
        return self.features is not None

    def get_values(self) -> List[Any]:
        if self.features is None:
            return []
        iv = self.interval
        try:
            return list(self.features.fetch(iv.contig, iv.start - 1, iv.end))
        except ValueError:
            # contig absent from the feature source's index
            logger.debug("No features indexed for contig %s", iv.contig)
            return []
