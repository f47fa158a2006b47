from __future__ import annotations

import logging
from pathlib import Path

logger = logging.getLogger(__name__)


def _has_sidecar(path: Path, *suffixes: str) -> bool:
    for suffix in suffixes:
        if path.with_suffix(path.suffix + suffix).exists() or path.with_suffix(suffix).exists():
            return True
    return False


def check_alignment_index(bam_path: str | Path) -> None:
    """Ensure a BAM/CRAM has an index for region fetches; raise ValueError with fix instructions."""
    aln = Path(bam_path)
    if not aln.exists():
        raise ValueError(f"Alignment file not found: {aln}")
    if aln.suffix == ".cram":
        if _has_sidecar(aln, ".crai"):
            return
    elif _has_sidecar(aln, ".bai", ".csi"):
        return
    raise ValueError("Alignment file is not indexed. Run: samtools index " + str(aln))


def check_fasta_index(fasta_path: str | Path) -> None:
    """Warn when a FASTA has no .fai; pysam builds one on open, which needs a writable directory."""
    fasta = Path(fasta_path)
    if not fasta.exists():
        raise ValueError(f"Reference FASTA not found: {fasta}")
    if not _has_sidecar(fasta, ".fai"):
        logger.warning(
            "Reference %s has no .fai index; it will be built on open (samtools faidx %s)",
            fasta,
            fasta,
        )


def check_feature_index(vcf_path: str | Path) -> None:
    """Ensure a feature VCF can be queried by region; raise ValueError with fix instructions."""
    vcf = Path(vcf_path)
    if not vcf.exists():
        raise ValueError(f"Feature file not found: {vcf}")
    if vcf.suffix in (".gz", ".bcf"):
        if not _has_sidecar(vcf, ".tbi", ".csi"):
            raise ValueError("Feature file is not indexed. Run: bcftools index " + str(vcf))
        return
    raise ValueError(
        "Features must be bgzip-compressed and indexed for region queries. Run: bgzip "
        + str(vcf)
        + "; tabix -p vcf "
        + str(vcf)
        + ".gz"
    )
