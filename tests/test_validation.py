import logging

import pysam
import pytest

from asmregions.validation import check_alignment_index, check_fasta_index, check_feature_index


def test_alignment_index_required(tmp_path, make_read, write_bam):
    bam = write_bam([make_read("chr1", 1)])
    check_alignment_index(bam)

    bai = bam.with_suffix(bam.suffix + ".bai")
    bai.unlink()
    with pytest.raises(ValueError, match="samtools index"):
        check_alignment_index(bam)

    with pytest.raises(ValueError, match="not found"):
        check_alignment_index(tmp_path / "missing.bam")


def test_fasta_without_index_only_warns(tmp_path, caplog):
    fa = tmp_path / "plain.fa"
    fa.write_text(">chr1\nACGT\n", encoding="utf-8")
    with caplog.at_level(logging.WARNING):
        check_fasta_index(fa)
    assert "no .fai index" in caplog.text

    pysam.faidx(str(fa))
    caplog.clear()
    check_fasta_index(fa)
    assert caplog.text == ""


def test_feature_file_must_be_indexed(tmp_path):
    vcf = tmp_path / "f.vcf"
    vcf.write_text("##fileformat=VCFv4.2\n#CHROM\tPOS\tID\tREF\tALT\tQUAL\tFILTER\tINFO\n", encoding="utf-8")
    with pytest.raises(ValueError, match="bgzip"):
        check_feature_index(vcf)

    indexed = pysam.tabix_index(str(vcf), preset="vcf", force=True)
    check_feature_index(indexed)
