"""
DosiFlow: Legacy Dose Migration (offline)
=========================================
One-time conversion of legacy free-text doses into structured rules.

The runtime calculator never parses text: a drug that still carries only
legacy text is shown verbatim as UNSTRUCTURED. This module is run by hand
against the catalog, and its output is reviewed and pasted back as
structured JSON. Anything that does not fit the patterns below is reported
as unsupported, never guessed.

Pediatric entries are parsed:
    "10-15 mg/kg", "50,000 IU/kg", "25 to 50 mg", "every 6 hours",
    "every 4-6 hours", "daily", "maximum 25 mg", route tokens IM/IV/SC.
    The age window keeps the legacy bounds exactly (17 years ends at 204 months).
Adult entries are not parsed for a dose: the legacy adult dose is the full
principal vial, reduced to 60% from 65 years. Only the frequency is read.
Rejected:
    multi-phase regimens ("... then weekly"), daily maxima as the only cap
    when no dose is found, units other than mg/IU, unit/presentation mismatch.

    python legacy_migration.py --catalog data/catalog.json
"""

import json
import logging
import re
from dataclasses import dataclass
from typing import List, Optional, Tuple, Union

from constants import AGE_CONSTANTS, LEGACY_CONSTANTS, AgeUnit, Route
from catalog import Catalog, load_catalog
from models import (
    AdultStandardRule, DoseAmount, DoseUnit, Drug, ElderlyRule, FixedDose, LegacyPediatricDose,
    PediatricTier, PerWeightIUDose, PerWeightMgDose,
)

logger = logging.getLogger(__name__)

_NUMBER = r"\d[\d,]*(?:\.\d+)?"
_UNIT = r"(mg|IU|UI|mcg|µg|g)"

DOSE_RE = re.compile(rf"({_NUMBER})\s*(?:-|–|to)\s*({_NUMBER})\s*{_UNIT}(/kg)?|({_NUMBER})\s*{_UNIT}(/kg)?", re.IGNORECASE)
FREQUENCY_RE = re.compile(rf"every\s+({_NUMBER})(?:\s*(?:-|–|to)\s*({_NUMBER}))?\s*h(?:ours?|rs?)?\b", re.IGNORECASE)
DAILY_RE = re.compile(r"\b(?:daily|once a day|every day)\b", re.IGNORECASE)
MAX_RE = re.compile(rf"max(?:imum)?\.?\s*({_NUMBER})\s*{_UNIT}(\s*(?:per|/)\s*day)?", re.IGNORECASE)
ROUTE_RE = re.compile(r"\b(IM|IV|SC)\b")
PHASED_RE = re.compile(r"\bthen\b", re.IGNORECASE)


@dataclass
class MigrationResult:
    drug_id: str
    population: str                   # "adult" or "pediatric"
    text: str
    supported: bool
    rule: Optional[Union[AdultStandardRule, PediatricTier]] = None
    reason: Optional[str] = None
    elderly: Optional[ElderlyRule] = None


def _number(raw: str) -> float:
    return float(raw.replace(",", ""))


def _unit(raw: str) -> Optional[DoseUnit]:
    raw = raw.lower()
    if raw == "mg":
        return DoseUnit.MG
    if raw in ("iu", "ui"):
        return DoseUnit.IU
    return None


def parse_amount(text: str) -> Tuple[Optional[DoseAmount], Optional[str]]:
    """First dose expression in the text, or a reason why there is none."""
    match = DOSE_RE.search(text)
    if match is None:
        return None, "no numeric dose found"

    if match.group(1) is not None:
        low, high = _number(match.group(1)), _number(match.group(2))
        unit_raw, per_kg = match.group(3), bool(match.group(4))
    else:
        low, high = _number(match.group(5)), None
        unit_raw, per_kg = match.group(6), bool(match.group(7))

    unit = _unit(unit_raw)
    if unit is None:
        return None, f"unsupported unit '{unit_raw}'"
    if high is not None and high < low:
        return None, f"inverted range {low:g}-{high:g}"

    if not per_kg:
        return FixedDose(dose_min=low, dose_max=high, unit=unit), None
    if unit == DoseUnit.IU:
        return PerWeightIUDose(dose_min_per_kg=low, dose_max_per_kg=high), None
    return PerWeightMgDose(dose_min_per_kg=low, dose_max_per_kg=high), None


def parse_frequency(text: str) -> Tuple[int, ...]:
    match = FREQUENCY_RE.search(text)
    if match:
        hours = [int(_number(match.group(1)))]
        if match.group(2):
            hours.append(int(_number(match.group(2))))
        return tuple(hours)
    if DAILY_RE.search(text):
        return (24,)
    return ()


def parse_max(text: str) -> Optional[float]:
    """Per-administration ceiling only; a daily maximum is not a per-dose cap."""
    for match in MAX_RE.finditer(text):
        if match.group(3):
            continue
        return _number(match.group(1))
    return None


def parse_routes(text: str) -> Tuple[Route, ...]:
    return tuple(dict.fromkeys(Route(r) for r in ROUTE_RE.findall(text)))


def _parse(drug: Drug, text: str) -> Tuple[Optional[DoseAmount], Optional[str]]:
    if PHASED_RE.search(text):
        return None, "multi-phase regimen"
    amount, reason = parse_amount(text)
    if amount is None:
        return None, reason
    units = {p.unit for p in drug.presentations}
    if units and amount.unit not in units:
        return None, f"dose unit {amount.unit.value} does not match presentation unit"
    return amount, None


def principal_presentation(drug: Drug):
    for presentation in drug.presentations:
        if presentation.is_principal:
            return presentation
    return drug.presentations[0] if drug.presentations else None


def migrate_adult(drug: Drug) -> Optional[MigrationResult]:
    """The legacy adult dose is the whole principal vial, whatever the text says."""
    text = drug.legacy_adult_dose
    if not text:
        return None
    if PHASED_RE.search(text):
        return MigrationResult(drug_id=drug.id, population="adult", text=text, supported=False,
                               reason="multi-phase regimen")
    vial = principal_presentation(drug)
    if vial is None:
        return MigrationResult(drug_id=drug.id, population="adult", text=text, supported=False,
                               reason="no presentation to take the vial dose from")
    rule = AdultStandardRule(amount=FixedDose(dose_min=vial.concentration, unit=vial.unit),
                             frequency_hours=parse_frequency(text))
    elderly = ElderlyRule(reduction_factor=LEGACY_CONSTANTS.ELDERLY_VIAL_FACTOR)
    return MigrationResult(drug_id=drug.id, population="adult", text=text, supported=True,
                           rule=rule, elderly=elderly)


def migrate_pediatric(drug: Drug, entry: LegacyPediatricDose) -> MigrationResult:
    amount, reason = _parse(drug, entry.text)
    if amount is None:
        return MigrationResult(drug_id=drug.id, population="pediatric", text=entry.text, supported=False, reason=reason)

    # Same window the runtime legacy lookup matches: "2 to 17 years" is 24-204 months
    factor = AGE_CONSTANTS.MONTHS_PER_YEAR if entry.age_unit == AgeUnit.YEARS else 1
    tier = PediatricTier(
        age_min_months=entry.age_min * factor,
        age_max_months=entry.age_max * factor,
        amount=amount,
        max_dose_per_administration=parse_max(entry.text),
        allowed_routes=parse_routes(entry.text),
        frequency_hours=parse_frequency(entry.text),
    )
    return MigrationResult(drug_id=drug.id, population="pediatric", text=entry.text, supported=True, rule=tier)


def migrate_drug(drug: Drug) -> List[MigrationResult]:
    results = []
    adult = migrate_adult(drug)
    if adult is not None:
        results.append(adult)
    results.extend(migrate_pediatric(drug, entry) for entry in drug.legacy_pediatric_doses)
    return results


def migrate_catalog(catalog: Catalog) -> List[MigrationResult]:
    """Every legacy-only drug; drugs that already carry a structured rule are skipped."""
    results = []
    for drug in catalog.drugs:
        if drug.dose_rule is not None:
            continue
        results.extend(migrate_drug(drug))
    return results


# --- Output in catalog JSON shape ---

def amount_to_json(amount: DoseAmount) -> dict:
    if isinstance(amount, FixedDose):
        data = {"kind": "fixed", "min": amount.dose_min, "unit": amount.unit.value}
        if amount.dose_max is not None:
            data["max"] = amount.dose_max
        return data
    kind = "per_weight_iu" if isinstance(amount, PerWeightIUDose) else "per_weight_mg"
    data = {"kind": kind, "minPerKg": amount.dose_min_per_kg}
    if amount.dose_max_per_kg is not None:
        data["maxPerKg"] = amount.dose_max_per_kg
    return data


def rule_to_json(rule: Union[AdultStandardRule, PediatricTier]) -> dict:
    data = {"dose": amount_to_json(rule.amount)}
    if rule.max_dose_per_administration is not None:
        data["maxDosePerAdministration"] = rule.max_dose_per_administration
    if rule.frequency_hours:
        data["frequencyHours"] = list(rule.frequency_hours)
    if isinstance(rule, PediatricTier):
        data = {"ageMinMonths": rule.age_min_months, "ageMaxMonths": rule.age_max_months, **data}
        if rule.allowed_routes:
            data["routes"] = [r.value for r in rule.allowed_routes]
    return data


def _converted(result: MigrationResult) -> dict:
    data = {"drugId": result.drug_id, "population": result.population, "text": result.text,
            "rule": rule_to_json(result.rule)}
    if result.elderly is not None:
        data["elderly"] = {"reductionFactor": result.elderly.reduction_factor}
    return data


def report(results: List[MigrationResult]) -> dict:
    return {
        "converted": [_converted(r) for r in results if r.supported],
        "unsupported": [
            {"drugId": r.drug_id, "population": r.population, "text": r.text, "reason": r.reason}
            for r in results if not r.supported
        ],
    }


if __name__ == "__main__":
    import argparse
    from constants import CATALOG_PATH

    parser = argparse.ArgumentParser(description="Extract structured dose rules from legacy free text")
    parser.add_argument("--catalog", default=CATALOG_PATH, help="Catalog JSON to scan")
    parser.add_argument("--output", help="Write the report here instead of stdout")
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO)
    migration = report(migrate_catalog(load_catalog(args.catalog)))
    logger.info(f"{len(migration['converted'])} converted, {len(migration['unsupported'])} unsupported")
    if args.output:
        with open(args.output, "w", encoding="utf-8") as f:
            json.dump(migration, f, indent=2)
    else:
        print(json.dumps(migration, indent=2))
