from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class AssemblyRegionArgs:
    """Region-shaping parameters for an assembly region traversal.

    Attributes
    ----------
    assembly_region_padding:
        Bases of context added on both sides of every region.
    min_assembly_region_size:
        Smallest region the activity profile will cut when it has a choice.
    max_assembly_region_size:
        Largest region the activity profile will emit.
    max_prob_propagation_distance:
        How far (bases) an activity state may spread probability to its
        neighbours, for example through high-quality soft clips.
    active_prob_threshold:
        A smoothed probability strictly above this marks a locus active.
    band_pass_filter_size:
        Half-width of the Gaussian smoothing kernel (0 disables smoothing).
    band_pass_sigma:
        Standard deviation of the smoothing kernel; must be positive when smoothing is on.
    """

    assembly_region_padding: int = 100
    min_assembly_region_size: int = 50
    max_assembly_region_size: int = 300
    max_prob_propagation_distance: int = 50
    active_prob_threshold: float = 0.002
    band_pass_filter_size: int = 50
    band_pass_sigma: float = 17.0

    def validate(self) -> None:
        if self.min_assembly_region_size <= 0 or self.max_assembly_region_size <= 0:
            raise ValueError("min_assembly_region_size and max_assembly_region_size must be > 0")
        if self.min_assembly_region_size > self.max_assembly_region_size:
            raise ValueError(
                f"min_assembly_region_size ({self.min_assembly_region_size}) must be <= "
                f"max_assembly_region_size ({self.max_assembly_region_size})"
            )
        if self.assembly_region_padding < 0:
            raise ValueError(f"assembly_region_padding must be >= 0, got {self.assembly_region_padding}")
        if self.max_prob_propagation_distance < 0:
            raise ValueError(
                f"max_prob_propagation_distance must be >= 0, got {self.max_prob_propagation_distance}"
            )
        if not (0.0 <= self.active_prob_threshold <= 1.0):
            raise ValueError(f"active_prob_threshold must be in [0,1], got {self.active_prob_threshold}")
        if self.band_pass_filter_size < 0:
            raise ValueError(f"band_pass_filter_size must be >= 0, got {self.band_pass_filter_size}")
        if self.band_pass_filter_size > 0 and self.band_pass_sigma <= 0:
            raise ValueError(f"band_pass_sigma must be > 0, got {self.band_pass_sigma}")
