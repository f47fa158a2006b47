import pysam
import pytest

from asmregions.context import FeatureContext, ReferenceContext
from asmregions.models import Span

VCF_TEXT = """##fileformat=VCFv4.2
##contig=<ID=chr1,length=100>
##contig=<ID=chr2,length=60>
#CHROM\tPOS\tID\tREF\tALT\tQUAL\tFILTER\tINFO
chr1\t10\tv1\tC\tT\t50\tPASS\t.
chr1\t12\tv2\tA\tG\t50\tPASS\t.
chr1\t40\tv3\tA\tC\t50\tPASS\t.
"""


@pytest.fixture
def variants(tmp_path):
    vcf = tmp_path / "features.vcf"
    vcf.write_text(VCF_TEXT, encoding="utf-8")
    indexed = pysam.tabix_index(str(vcf), preset="vcf", force=True)
    with pysam.VariantFile(indexed) as vf:
        yield vf


def test_reference_context_window_is_clipped(reference_fasta):
    with pysam.FastaFile(str(reference_fasta)) as fa:
        ctx = ReferenceContext(fa, Span("chr1", 2, 3), leading_bases=5, trailing_bases=200)
        assert ctx.has_backing_data_source()
        assert ctx.window == Span("chr1", 1, 100)
        assert len(ctx.bases) == 100
        assert ctx.base_at(2) == "C"
        assert ctx.base_at(101) is None

        plain = ReferenceContext(fa, Span.locus("chr2", 4))
        assert plain.bases == "A"
        assert plain.base_at(4) == "A"
        assert plain.base_at(5) is None


def test_reference_context_without_reference():
    ctx = ReferenceContext(None, Span.locus("chr1", 7))
    assert not ctx.has_backing_data_source()
    assert ctx.window == Span.locus("chr1", 7)
    assert ctx.bases == ""
    assert ctx.base_at(7) is None


def test_reference_context_rejects_negative_flanks():
    with pytest.raises(ValueError):
        ReferenceContext(None, Span.locus("chr1", 7), leading_bases=-1)


def test_feature_context_fetches_overlapping_records(variants):
    records = FeatureContext(variants, Span("chr1", 10, 12)).get_values()
    assert [r.id for r in records] == ["v1", "v2"]
    assert FeatureContext(variants, Span.locus("chr1", 11)).get_values() == []


def test_feature_context_without_source():
    ctx = FeatureContext(None, Span.locus("chr1", 1))
    assert not ctx.has_backing_data_source()
    assert ctx.get_values() == []


def test_feature_context_tolerates_unindexed_contig():
    class NoContigs:
        def fetch(self, contig, start, end):
            raise ValueError(f"invalid contig `{contig}`")

    assert FeatureContext(NoContigs(), Span.locus("chr2", 5)).get_values() == []
