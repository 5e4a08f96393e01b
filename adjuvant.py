"""
DosiFlow: Adjuvant (Local Anesthetic) Volume Calculator
=======================================================
1% lidocaine added to an IM syringe to reduce injection pain.

Phase 1, compatibility, is all-or-nothing: one drug without a positive
guide entry makes the whole syringe incompatible.
Phase 2, volume, runs only on a compatible syringe: per-drug breakpoint
contributions are summed, then capped by the 4.5 mg/kg ceiling and snapped
DOWN to the syringe grid.

Both phases ignore the order of the selection.
"""

import logging
import math
from dataclasses import replace
from typing import List, Mapping, Optional, Sequence

from constants import ADJUVANT_CONSTANTS
from catalog import Catalog
from models import (
    AdjuvantCompatibility, AdjuvantContribution, AdjuvantGuideEntry, AdjuvantNote,
    AdjuvantOption, AdjuvantPlan, PatientContext, Session, VolumeBreakpoint,
)
from snap_grid import DEFAULT_GRID, SnapGrid

logger = logging.getLogger(__name__)


def pick_breakpoint(breakpoints: Sequence[VolumeBreakpoint], dose: Optional[float]) -> Optional[VolumeBreakpoint]:
    """
    Largest threshold not above the dose. A missing dose, or one below every
    threshold, takes the smallest breakpoint.
    """
    if not breakpoints:
        return None
    if dose is not None and dose > 0:
        eligible = [b for b in breakpoints if b.dose_threshold <= dose]
        if eligible:
            return max(eligible, key=lambda b: b.dose_threshold)
    return min(breakpoints, key=lambda b: b.dose_threshold)


class AdjuvantVolumeCalculator:

    @staticmethod
    def compatibility(catalog: Catalog, drug_ids: Sequence[str], conditions: Sequence[str]) -> AdjuvantCompatibility:
        if ADJUVANT_CONSTANTS.ALLERGY_CONDITION in conditions:
            return AdjuvantCompatibility(
                compatible=False,
                reasons=["Patient is allergic to local anesthetics"],
                summary="Contraindicated by allergy",
            )

        blocking = {}
        any_recommended = False
        for drug_id in sorted(set(drug_ids)):
            entry = catalog.adjuvant_entry(drug_id)
            if entry is None or not entry.recommended:
                cause = (entry.not_recommended_reason if entry else None) or "No evidence of compatibility with lidocaine"
                blocking[drug_id] = cause
            else:
                any_recommended = True

        if blocking:
            return AdjuvantCompatibility(
                compatible=False,
                reasons=[f"{drug_id}: {cause}" for drug_id, cause in blocking.items()],
                summary="Incompatible with " + ", ".join(blocking),
            )
        if not any_recommended:
            return AdjuvantCompatibility(
                compatible=False,
                reasons=["No selected drug is compatible with lidocaine"],
                summary="No compatible drugs",
            )
        return AdjuvantCompatibility(compatible=True, summary="Lidocaine available for this combination")

    @staticmethod
    def _restriction(entry: AdjuvantGuideEntry, patient: PatientContext) -> Optional[str]:
        note = f" ({entry.restriction_note})" if entry.restriction_note else ""
        if entry.weight_min_kg is not None and patient.weight_kg < entry.weight_min_kg:
            return f"{entry.drug_id}: no lidocaine below {entry.weight_min_kg:g} kg{note}"
        if entry.age_min_months is not None and patient.age_months < entry.age_min_months:
            return f"{entry.drug_id}: no lidocaine below {entry.age_min_months:g} months{note}"
        return None

    @staticmethod
    def volume(catalog: Catalog, drug_ids: Sequence[str], doses: Mapping[str, Optional[float]],
               patient: PatientContext, grid: SnapGrid = DEFAULT_GRID) -> AdjuvantPlan:
        """Phase 2. Assumes the syringe already passed the compatibility phase."""
        breakdown: List[AdjuvantContribution] = []
        advisories: List[str] = []
        contributions = []

        for drug_id in sorted(set(drug_ids)):
            entry = catalog.adjuvant_entry(drug_id)
            if entry is None or not entry.recommended or not entry.volume_breakpoints:
                continue

            restriction = AdjuvantVolumeCalculator._restriction(entry, patient)
            if restriction:
                advisories.append(restriction)
                breakdown.append(AdjuvantContribution(drug_id=drug_id, volume_ml=0.0, restriction=restriction))
                continue

            match = pick_breakpoint(entry.volume_breakpoints, doses.get(drug_id))
            breakdown.append(AdjuvantContribution(drug_id=drug_id, volume_ml=match.volume_ml,
                                                  dose_reference=match.dose_threshold))
            contributions.append(match.volume_ml)

        raw = math.fsum(contributions)
        max_safe = grid.snap(ADJUVANT_CONSTANTS.MAX_VOLUME_ML_PER_KG * patient.weight_kg)
        was_capped = raw > max_safe
        recommended = grid.snap(min(raw, max_safe))
        if was_capped:
            advisories.append(
                f"Volume adjusted from {raw:.1f} mL to {recommended:g} mL by the safety limit "
                f"({ADJUVANT_CONSTANTS.MAX_DOSE_MG_PER_KG:g} mg/kg = {max_safe:g} mL for {patient.weight_kg:g} kg)"
            )

        reduced = None
        if raw > ADJUVANT_CONSTANTS.REDUCED_OFFER_THRESHOLD_ML:
            reduced = grid.snap(min(raw * ADJUVANT_CONSTANTS.REDUCTION_FACTOR, max_safe))

        return AdjuvantPlan(
            compatible=True, raw_combined_volume=raw, max_safe_volume=max_safe,
            recommended_volume=recommended, reduced_volume=reduced, was_capped=was_capped,
            breakdown=breakdown, advisories=advisories,
        )

    @staticmethod
    def plan(catalog: Catalog, session: Session, doses: Mapping[str, Optional[float]],
             grid: SnapGrid = DEFAULT_GRID) -> AdjuvantPlan:
        """Both phases for the session's syringe."""
        if session.patient.route != ADJUVANT_CONSTANTS.ROUTE:
            return AdjuvantPlan(compatible=False, summary=f"Lidocaine only applies to {ADJUVANT_CONSTANTS.ROUTE.value} injections")

        drug_ids = session.selection.drug_ids
        compat = AdjuvantVolumeCalculator.compatibility(catalog, drug_ids, session.conditions)
        if not compat.compatible:
            return AdjuvantPlan(compatible=False, summary=compat.summary, reasons=compat.reasons)

        plan = AdjuvantVolumeCalculator.volume(catalog, drug_ids, doses, session.patient, grid)
        plan.summary = compat.summary
        return plan

    @staticmethod
    def notes(catalog: Catalog, drug_ids: Sequence[str]) -> List[AdjuvantNote]:
        return [
            AdjuvantNote(
                drug_id=entry.drug_id, recommended=entry.recommended, evidence_level=entry.evidence_level,
                note=entry.note, warning=entry.warning, not_recommended_reason=entry.not_recommended_reason,
            )
            for entry in (catalog.adjuvant_entry(d) for d in drug_ids)
            if entry is not None
        ]

    @staticmethod
    def reconcile(session: Session, plan: AdjuvantPlan) -> Session:
        """Force-clears the caller's adjuvant flag once the syringe turns incompatible."""
        if session.adjuvant_active and not plan.compatible:
            logger.info("Adjuvant deactivated: syringe no longer compatible")
            return replace(session, adjuvant_active=False)
        return session

    @staticmethod
    def volume_in_use(session: Session, plan: AdjuvantPlan) -> float:
        if not (session.adjuvant_active and plan.compatible):
            return 0.0
        if session.adjuvant_option == AdjuvantOption.REDUCED and plan.reduced_volume is not None:
            return plan.reduced_volume
        return plan.recommended_volume or 0.0
