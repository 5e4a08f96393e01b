"""
DosiFlow: Syringe Grid Rounding
===============================
Volumes are always rounded DOWN to a printed graduation of the smallest
syringe that holds them: slightly less drug is safer than slightly more.
"""

from decimal import Decimal, ROUND_FLOOR
from typing import Sequence

from constants import SYRINGE_LIBRARY, SyringeTier
from models import SnapInfo


class SnapGrid:

    def __init__(self, tiers: Sequence[SyringeTier] = SYRINGE_LIBRARY.TIERS):
        if not tiers:
            raise ValueError("SnapGrid needs at least one syringe tier")
        self.tiers = tuple(sorted(tiers, key=lambda t: t.capacity_ml))

    def tier_for(self, volume_ml: float) -> SyringeTier:
        """Smallest syringe that holds the volume (the largest one if none does)."""
        if volume_ml <= 0:
            return self.tiers[0]
        for tier in self.tiers:
            if volume_ml <= tier.capacity_ml:
                return tier
        return self.tiers[-1]

    def snap(self, volume_ml: float) -> float:
        """
        Floors to the tier's step. Non-positive input snaps to 0; a positive
        volume never collapses to 0 (one step is returned instead).
        """
        if volume_ml <= 0:
            return 0.0
        tier = self.tier_for(volume_ml)
        # Decimal keeps exact graduations exact (0.3 / 0.05 is 6, not 5.999...)
        value = Decimal(repr(float(volume_ml)))
        step = Decimal(repr(tier.step_ml))
        steps = (value / step).to_integral_value(rounding=ROUND_FLOOR)
        snapped = float(steps * step)
        if snapped <= 0:
            return tier.step_ml
        return snapped

    def info(self, volume_ml: float) -> SnapInfo:
        """Diagnostic view of a rounding, for display and audit."""
        if volume_ml is None or volume_ml <= 0:
            return SnapInfo(original=0.0, snapped=0.0, tier=self.tiers[0],
                            percent_difference=0.0, was_rounded=False)
        tier = self.tier_for(volume_ml)
        snapped = self.snap(volume_ml)
        diff = volume_ml - snapped
        return SnapInfo(
            original=round(volume_ml, 3),
            snapped=snapped,
            tier=tier,
            percent_difference=round(diff / volume_ml * 100, 1),
            was_rounded=abs(diff) > SYRINGE_LIBRARY.ROUNDING_TOLERANCE_ML,
        )


DEFAULT_GRID = SnapGrid()


def snap(volume_ml: float) -> float:
    return DEFAULT_GRID.snap(volume_ml)


def snap_info(volume_ml: float) -> SnapInfo:
    return DEFAULT_GRID.info(volume_ml)
