"""
DosiFlow: Dose Calculator
=========================
Resolves a single drug's dose and volume from its structured tiers.

Adults (>= 18 y) use the standard rule; elderly patients (>= 65 y) use the
explicit elderly rule or the standard dose times a reduction factor.
Children use the first pediatric tier whose age window contains them.
Legacy free text is never parsed here: a drug that only carries text comes
back as an UNSTRUCTURED result with the text verbatim.
"""

import logging
from typing import Dict, Optional, Sequence

from constants import AGE_CONSTANTS, AgeUnit, Route
from catalog import Catalog
from models import (
    AdultStandardRule, DoseAmount, DoseOutcome, DoseResult, DoseSource, DoseUnit,
    Drug, FixedDose, PatientContext, PediatricTier, Presentation, Session,
)
from snap_grid import DEFAULT_GRID, SnapGrid

logger = logging.getLogger(__name__)


def mean_dose(amount: DoseAmount, weight_kg: float) -> float:
    """Midpoint of the range; per-weight amounts are scaled by weight."""
    if isinstance(amount, FixedDose):
        upper = amount.dose_max if amount.dose_max is not None else amount.dose_min
        return (amount.dose_min + upper) / 2
    upper = amount.dose_max_per_kg if amount.dose_max_per_kg is not None else amount.dose_min_per_kg
    return (amount.dose_min_per_kg + upper) / 2 * weight_kg


def frequency_text(hours: Sequence[int]) -> str:
    if not hours:
        return ""
    if len(hours) == 1:
        return f"every {hours[0]} hours"
    return f"every {hours[0]}-{hours[-1]} hours"


def format_dose(dose: float, unit: DoseUnit) -> str:
    if unit == DoseUnit.IU:
        return f"{dose:,.0f} {unit.value}"
    return f"{dose:.1f} {unit.value}"


def _routes_text(routes: Sequence[Route]) -> str:
    return " or ".join(r.value for r in routes)


class DoseCalculator:
    """
    Stateless: every call is a pure function of catalog + patient + presentation.
    """

    @staticmethod
    def calculate(catalog: Catalog, drug_id: str, patient: PatientContext,
                  presentation: Optional[Presentation] = None,
                  grid: SnapGrid = DEFAULT_GRID) -> DoseResult:
        drug = catalog.drug(drug_id)
        if drug is None:
            return DoseResult(drug_id=drug_id, outcome=DoseOutcome.NOT_FOUND, blocked=True,
                              message=f"Drug '{drug_id}' not found")

        presentation = presentation or catalog.default_presentation(drug_id)
        if presentation is None:
            return DoseResult(drug_id=drug_id, outcome=DoseOutcome.MISSING_PRESENTATION, blocked=True,
                              message="Commercial presentation not available; volume cannot be computed")

        months = patient.age_months
        is_adult = months >= AGE_CONSTANTS.ADULT_MONTHS
        is_elderly = months >= AGE_CONSTANTS.ELDERLY_MONTHS

        advisories = []
        route_allowed_by_drug = not drug.routes or patient.route in drug.routes
        if not route_allowed_by_drug:
            advisories.append(f"Not recommended by {patient.route.value} route: "
                              f"administer only {_routes_text(drug.routes)}")

        result = None
        rule = drug.dose_rule
        if rule is not None:
            if is_adult:
                result = DoseCalculator._adult(drug, patient, presentation, is_elderly)
            elif rule.pediatric:
                tier = DoseCalculator.find_tier(rule.pediatric, months)
                if tier is not None:
                    route_allowed_by_tier = not tier.allowed_routes or patient.route in tier.allowed_routes
                    if not route_allowed_by_tier and not route_allowed_by_drug:
                        return DoseResult(
                            drug_id=drug_id, outcome=DoseOutcome.NO_DOSING, blocked=True,
                            presentation=presentation, advisories=advisories,
                            message=f"No pediatric dosing available by {patient.route.value} route",
                        )
                    if not route_allowed_by_tier:
                        advisories.append(f"Pediatric tier lists {_routes_text(tier.allowed_routes)}; "
                                          f"{patient.route.value} selected")
                    result = DoseCalculator._pediatric(drug, patient, presentation, tier)

        if result is None:
            result = DoseCalculator._unstructured_or_missing(drug, patient, presentation, is_adult)

        result.advisories = advisories + result.advisories
        if result.volume_ml is not None:
            result.snap = grid.info(result.volume_ml)
        return result

    @staticmethod
    def find_tier(tiers: Sequence[PediatricTier], age_months: float) -> Optional[PediatricTier]:
        for tier in tiers:
            if tier.age_min_months <= age_months <= tier.age_max_months:
                return tier
        return None

    @staticmethod
    def _apply_cap(dose: float, cap: Optional[float], unit: DoseUnit, advisories: list) -> float:
        if cap is not None and dose > cap:
            advisories.append(f"Capped at maximum {format_dose(cap, unit)} per administration")
            return cap
        return dose

    @staticmethod
    def _volume(dose: float, presentation: Presentation) -> float:
        return dose / (presentation.concentration / presentation.volume_ml)

    @staticmethod
    def _standard_dose(standard: AdultStandardRule, weight_kg: float) -> float:
        return mean_dose(standard.amount, weight_kg)

    @staticmethod
    def _adult(drug: Drug, patient: PatientContext, presentation: Presentation,
               is_elderly: bool) -> Optional[DoseResult]:
        rule = drug.dose_rule
        standard = rule.adult_standard
        elderly = rule.adult_elderly
        unit = presentation.unit
        advisories = []

        if is_elderly and elderly is not None:
            if elderly.amount is not None:
                dose = mean_dose(elderly.amount, patient.weight_kg)
            elif standard is not None:
                dose = DoseCalculator._standard_dose(standard, patient.weight_kg) * elderly.reduction_factor
            else:
                return None
            cap = elderly.max_dose_per_administration
            if cap is None and standard is not None:
                cap = standard.max_dose_per_administration
            dose = DoseCalculator._apply_cap(dose, cap, unit, advisories)
            volume = DoseCalculator._volume(dose, presentation)
            hours = elderly.frequency_hours or (standard.frequency_hours if standard else ())
            return DoseResult(
                drug_id=drug.id, outcome=DoseOutcome.OK, dose=dose, unit=unit, volume_ml=volume,
                presentation=presentation, is_adult=True, is_elderly=True, precaution=True,
                frequency_text=frequency_text(hours), message="Elderly dose: reduced",
                advisories=advisories, source=DoseSource.STRUCTURED,
            )

        if standard is None:
            return None

        dose = DoseCalculator._standard_dose(standard, patient.weight_kg)
        dose = DoseCalculator._apply_cap(dose, standard.max_dose_per_administration, unit, advisories)
        volume = DoseCalculator._volume(dose, presentation)
        return DoseResult(
            drug_id=drug.id, outcome=DoseOutcome.OK, dose=dose, unit=unit, volume_ml=volume,
            presentation=presentation, is_adult=True, is_elderly=is_elderly,
            frequency_text=frequency_text(standard.frequency_hours), message="Adult standard dose",
            advisories=advisories, source=DoseSource.STRUCTURED,
        )

    @staticmethod
    def _pediatric(drug: Drug, patient: PatientContext, presentation: Presentation,
                   tier: PediatricTier) -> DoseResult:
        unit = presentation.unit
        advisories = []
        dose = mean_dose(tier.amount, patient.weight_kg)
        dose = DoseCalculator._apply_cap(dose, tier.max_dose_per_administration, unit, advisories)
        volume = DoseCalculator._volume(dose, presentation)
        freq = frequency_text(tier.frequency_hours)
        parts = [f"Dose: {format_dose(dose, unit)}", _routes_text(tier.allowed_routes), freq]
        return DoseResult(
            drug_id=drug.id, outcome=DoseOutcome.OK, dose=dose, unit=unit, volume_ml=volume,
            presentation=presentation, frequency_text=freq,
            message=" ".join(p for p in parts if p),
            advisories=advisories, source=DoseSource.STRUCTURED,
        )

    @staticmethod
    def _unstructured_or_missing(drug: Drug, patient: PatientContext, presentation: Presentation,
                                 is_adult: bool) -> DoseResult:
        legacy_text = None
        if is_adult:
            legacy_text = drug.legacy_adult_dose
        else:
            for entry in drug.legacy_pediatric_doses:
                factor = AGE_CONSTANTS.MONTHS_PER_YEAR if entry.age_unit == AgeUnit.YEARS else 1
                if entry.age_min * factor <= patient.age_months <= entry.age_max * factor:
                    legacy_text = entry.text
                    break

        if legacy_text:
            logger.debug(f"{drug.id}: no structured tier, returning legacy text verbatim")
            return DoseResult(
                drug_id=drug.id, outcome=DoseOutcome.UNSTRUCTURED, presentation=presentation,
                is_adult=is_adult, source=DoseSource.LEGACY_TEXT, legacy_text=legacy_text,
                message="Unstructured dose text: verify manually before administering",
            )

        population = "adult" if is_adult else "pediatric"
        return DoseResult(
            drug_id=drug.id, outcome=DoseOutcome.NO_DOSING, blocked=True, presentation=presentation,
            is_adult=is_adult, message=f"No {population} dosing available for this patient",
        )

    @staticmethod
    def calculate_selection(catalog: Catalog, session: Session,
                            grid: SnapGrid = DEFAULT_GRID) -> Dict[str, DoseResult]:
        """Dose map for every selected drug, using each drug's chosen presentation."""
        return {
            drug_id: DoseCalculator.calculate(
                catalog, drug_id, session.patient,
                session.selection.presentations.get(drug_id), grid,
            )
            for drug_id in session.selection.drug_ids
        }
