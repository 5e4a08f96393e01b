"""
DosiFlow: Reference Catalog
===========================
Loads the static drug catalog (drugs, interaction/mix/condition tables,
syndrome rules, adjuvant guide, special dilutions) from JSON into typed,
immutable records and validates cross-references once, at load.
"""

import json
import logging
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Dict, FrozenSet, List, Optional, Tuple

from constants import CATALOG_PATH, AgeUnit, Route
from models import (
    AdjuvantGuideEntry, AdultStandardRule, AgeBand, CatalogValidationError,
    ClinicalSyndromeRule, CommonCombination, Condition, ConditionInteractionRecord,
    ConditionSeverity, DiluentOption, DiluentProportion, DoseAmount, DoseRule,
    DoseUnit, Drug, ElderlyRule, FixedDose, ForbiddenDrug, InteractionLevel,
    InteractionRecord, LegacyPediatricDose, MixCompatibilityRecord,
    PediatricInteractionRecord, PediatricTier, PerWeightIUDose, PerWeightMgDose,
    Presentation, RedFlag, SpecialDilution, Symptom, SymptomGroup, SyndromeRule,
    VolumeBreakpoint,
)

logger = logging.getLogger(__name__)

PairKey = FrozenSet[str]


def pair_key(a: str, b: str) -> PairKey:
    return frozenset((a, b))


@dataclass(frozen=True)
class Catalog:
    drugs: Tuple[Drug, ...]
    interactions: Tuple[InteractionRecord, ...] = ()
    pediatric_interactions: Tuple[PediatricInteractionRecord, ...] = ()
    mix_compatibility: Tuple[MixCompatibilityRecord, ...] = ()
    conditions: Tuple[Condition, ...] = ()
    condition_interactions: Tuple[ConditionInteractionRecord, ...] = ()
    symptom_groups: Tuple[SymptomGroup, ...] = ()
    syndromes: Tuple[SyndromeRule, ...] = ()
    clinical_syndromes: Tuple[ClinicalSyndromeRule, ...] = ()
    adjuvant_guide: Tuple[AdjuvantGuideEntry, ...] = ()
    special_dilutions: Tuple[SpecialDilution, ...] = ()
    combinations: Tuple[CommonCombination, ...] = ()

    # Indexes, built in __post_init__
    _drugs_by_id: Dict[str, Drug] = field(default_factory=dict, repr=False, compare=False)
    _interactions_by_pair: Dict[PairKey, InteractionRecord] = field(default_factory=dict, repr=False, compare=False)
    _pediatric_by_pair: Dict[PairKey, PediatricInteractionRecord] = field(default_factory=dict, repr=False, compare=False)
    _mix_by_pair: Dict[PairKey, MixCompatibilityRecord] = field(default_factory=dict, repr=False, compare=False)
    _conditions_by_drug: Dict[str, Dict[str, ConditionInteractionRecord]] = field(default_factory=dict, repr=False, compare=False)
    _adjuvant_by_drug: Dict[str, AdjuvantGuideEntry] = field(default_factory=dict, repr=False, compare=False)
    _dilution_by_drug: Dict[str, SpecialDilution] = field(default_factory=dict, repr=False, compare=False)

    def __post_init__(self):
        # First occurrence wins for every index
        for drug in self.drugs:
            self._drugs_by_id.setdefault(drug.id, drug)
        for rec in self.interactions:
            self._interactions_by_pair.setdefault(rec.drug_ids, rec)
        for rec in self.pediatric_interactions:
            self._pediatric_by_pair.setdefault(rec.drug_ids, rec)
        for rec in self.mix_compatibility:
            self._mix_by_pair.setdefault(rec.drug_ids, rec)
        for rec in self.condition_interactions:
            self._conditions_by_drug.setdefault(rec.drug_id, {}).setdefault(rec.condition, rec)
        for entry in self.adjuvant_guide:
            self._adjuvant_by_drug.setdefault(entry.drug_id, entry)
        for dil in self.special_dilutions:
            self._dilution_by_drug.setdefault(dil.drug_id, dil)

    # --- Lookups (all total: absence returns None) ---

    def drug(self, drug_id: str) -> Optional[Drug]:
        return self._drugs_by_id.get(drug_id)

    def drug_name(self, drug_id: str) -> str:
        drug = self.drug(drug_id)
        return drug.name if drug else drug_id

    def default_presentation(self, drug_id: str) -> Optional[Presentation]:
        """Principal presentation, else the first one listed."""
        drug = self.drug(drug_id)
        if drug is None or not drug.presentations:
            return None
        for presentation in drug.presentations:
            if presentation.is_principal:
                return presentation
        return drug.presentations[0]

    def interaction(self, a: str, b: str) -> Optional[InteractionRecord]:
        return self._interactions_by_pair.get(pair_key(a, b))

    def pediatric_interaction(self, a: str, b: str) -> Optional[PediatricInteractionRecord]:
        return self._pediatric_by_pair.get(pair_key(a, b))

    def mix_record(self, a: str, b: str) -> Optional[MixCompatibilityRecord]:
        return self._mix_by_pair.get(pair_key(a, b))

    def condition_record(self, drug_id: str, condition: str) -> Optional[ConditionInteractionRecord]:
        return self._conditions_by_drug.get(drug_id, {}).get(condition)

    def adjuvant_entry(self, drug_id: str) -> Optional[AdjuvantGuideEntry]:
        return self._adjuvant_by_drug.get(drug_id)

    def dilution(self, drug_id: str) -> Optional[SpecialDilution]:
        return self._dilution_by_drug.get(drug_id)

    @property
    def drug_ids(self) -> List[str]:
        return [d.id for d in self.drugs]

    @property
    def symptom_ids(self) -> List[str]:
        return [s.id for g in self.symptom_groups for s in g.symptoms]


# --- Parsing (JSON -> typed records) ---

def _parse_amount(raw: dict) -> DoseAmount:
    kind = raw["kind"]
    if kind == "fixed":
        return FixedDose(dose_min=raw["min"], dose_max=raw.get("max"), unit=DoseUnit(raw.get("unit", "mg")))
    if kind == "per_weight_mg":
        return PerWeightMgDose(dose_min_per_kg=raw["minPerKg"], dose_max_per_kg=raw.get("maxPerKg"))
    if kind == "per_weight_iu":
        return PerWeightIUDose(dose_min_per_kg=raw["minPerKg"], dose_max_per_kg=raw.get("maxPerKg"))
    raise ValueError(f"Unknown dose kind '{kind}'")


def _parse_dose_rule(raw: Optional[dict]) -> Optional[DoseRule]:
    if not raw:
        return None
    adult = raw.get("adult", {})
    standard = None
    if adult.get("standard"):
        st = adult["standard"]
        standard = AdultStandardRule(
            amount=_parse_amount(st["dose"]),
            max_dose_per_administration=st.get("maxDosePerAdministration"),
            frequency_hours=tuple(st.get("frequencyHours", ())),
        )
    elderly = None
    if adult.get("elderly"):
        el = adult["elderly"]
        elderly = ElderlyRule(
            amount=_parse_amount(el["dose"]) if el.get("dose") else None,
            reduction_factor=el.get("reductionFactor"),
            max_dose_per_administration=el.get("maxDosePerAdministration"),
            frequency_hours=tuple(el.get("frequencyHours", ())),
        )
    tiers = tuple(
        PediatricTier(
            age_min_months=t["ageMinMonths"],
            age_max_months=t["ageMaxMonths"],
            amount=_parse_amount(t["dose"]),
            max_dose_per_administration=t.get("maxDosePerAdministration"),
            allowed_routes=tuple(Route(r) for r in t.get("routes", ())),
            frequency_hours=tuple(t.get("frequencyHours", ())),
        )
        for t in raw.get("pediatric", ())
    )
    return DoseRule(adult_standard=standard, adult_elderly=elderly, pediatric=tiers)


def _parse_drug(raw: dict) -> Drug:
    legacy = raw.get("legacy", {})
    label = raw.get("label", {})
    return Drug(
        id=raw["id"],
        name=raw["name"],
        drug_class=raw.get("class", ""),
        routes=tuple(Route(r) for r in raw.get("routes", ())),
        presentations=tuple(
            Presentation(
                name=p["name"],
                concentration=p["concentration"],
                volume_ml=p["volumeMl"],
                unit=DoseUnit(p.get("unit", "mg")),
                is_principal=p.get("principal", False),
            )
            for p in raw.get("presentations", ())
        ),
        dose_rule=_parse_dose_rule(raw.get("doseRule")),
        legacy_adult_dose=legacy.get("adult"),
        legacy_pediatric_doses=tuple(
            LegacyPediatricDose(
                age_min=d["ageMin"], age_max=d["ageMax"],
                age_unit=AgeUnit(d.get("ageUnit", "years")), text=d["text"],
            )
            for d in legacy.get("pediatric", ())
        ),
        label_generic_name=label.get("genericName"),
        label_brand_names=tuple(label.get("brandNames", ())),
        label_note=label.get("note"),
        label_approved=label.get("approved", True),
    )


def _parse_bands(raw_bands, level_parser) -> Tuple[AgeBand, ...]:
    return tuple(
        AgeBand(age_min_months=b["ageMinMonths"], age_max_months=b["ageMaxMonths"], level=level_parser(b["level"]))
        for b in raw_bands
    )


def _parse_forbidden(raw_list) -> Tuple[ForbiddenDrug, ...]:
    return tuple(ForbiddenDrug(drug_id=f["id"], reason=f["reason"]) for f in raw_list)


def _parse_section(data: dict, key: str, parser, problems: List[str]) -> tuple:
    records = []
    for idx, raw in enumerate(data.get(key, ())):
        try:
            records.append(parser(raw))
        except (KeyError, ValueError, TypeError) as e:
            problems.append(f"{key}[{idx}]: {e.__class__.__name__}: {e}")
    return tuple(records)


def _pair(raw: dict) -> PairKey:
    drugs = raw["drugs"]
    if len(drugs) != 2 or drugs[0] == drugs[1]:
        raise ValueError(f"pair must name two distinct drugs, got {drugs}")
    return pair_key(drugs[0], drugs[1])


def _parse_mix(raw: dict) -> MixCompatibilityRecord:
    has_flat = "compatibility" in raw
    has_bands = "bands" in raw
    if has_flat == has_bands:
        raise ValueError("mix record needs exactly one of 'compatibility' or 'bands'")
    return MixCompatibilityRecord(
        drug_ids=_pair(raw),
        comment=raw.get("comment", ""),
        compatibility=InteractionLevel.from_compatibility(raw["compatibility"]) if has_flat else None,
        bands=_parse_bands(raw.get("bands", ()), InteractionLevel.from_compatibility),
    )


def _parse_dilution(raw: dict) -> SpecialDilution:
    return SpecialDilution(
        drug_id=raw["drugId"],
        fallback_to_first=raw.get("fallbackToFirst", False),
        defines_volume=raw.get("definesVolume", False),
        options=tuple(
            DiluentOption(
                name=o["name"],
                label=o.get("label", o["name"]),
                age_min_months=o.get("ageMinMonths"),
                age_max_months=o.get("ageMaxMonths"),
                for_im=o.get("forIM", True),
                proportions=tuple(DiluentProportion(dose=p["dose"], volume_ml=p["volumeMl"]) for p in o["proportions"]),
            )
            for o in raw["options"]
        ),
    )


def catalog_from_dict(data: dict) -> Catalog:
    """
    Builds and validates a Catalog. Raises CatalogValidationError listing
    every parse or cross-reference problem, never just the first one.
    """
    problems: List[str] = []

    drugs = _parse_section(data, "drugs", _parse_drug, problems)
    interactions = _parse_section(data, "interactions", lambda r: InteractionRecord(
        drug_ids=_pair(r), level=InteractionLevel(r["level"]),
        description=r["description"], advice=r.get("advice", ""),
    ), problems)
    pediatric = _parse_section(data, "pediatricInteractions", lambda r: PediatricInteractionRecord(
        drug_ids=_pair(r), bands=_parse_bands(r["bands"], InteractionLevel),
        description=r["description"], advice=r.get("advice", ""),
    ), problems)
    mixes = _parse_section(data, "mixCompatibility", _parse_mix, problems)
    conditions = _parse_section(data, "conditions", lambda r: Condition(id=r["id"], label=r["label"]), problems)
    condition_interactions = _parse_section(data, "conditionInteractions", lambda r: ConditionInteractionRecord(
        drug_id=r["drugId"], condition=r["condition"], severity=ConditionSeverity(r["severity"]),
        blocks=bool(r.get("blocks", False)), message=r["message"], recommendation=r.get("recommendation", ""),
    ), problems)
    symptom_groups = _parse_section(data, "symptomGroups", lambda r: SymptomGroup(
        id=r["id"], label=r["label"],
        symptoms=tuple(Symptom(id=s["id"], label=s["label"]) for s in r["symptoms"]),
    ), problems)
    syndromes = _parse_section(data, "syndromes", lambda r: SyndromeRule(
        id=r["id"], name=r["name"],
        cardinal_symptoms=tuple(r["cardinalSymptoms"]),
        support_symptoms=tuple(r.get("supportSymptoms", ())),
        min_cardinal_threshold=int(r["minCardinalThreshold"]),
        red_flags=tuple(RedFlag(symptom=f["symptom"], message=f["message"]) for f in r.get("redFlags", ())),
        recommended_drugs=tuple(r.get("recommendedDrugs", ())),
        forbidden_drugs=_parse_forbidden(r.get("forbiddenDrugs", ())),
        differential_guide=r.get("differentialGuide", ""),
        management_guide=r.get("managementGuide", ""),
    ), problems)
    clinical = _parse_section(data, "clinicalSyndromes", lambda r: ClinicalSyndromeRule(
        id=r["id"], name=r["name"], description=r.get("description", ""),
        cardinal_symptoms=tuple(r["cardinalSymptoms"]),
        support_symptoms=tuple(r.get("supportSymptoms", ())),
        min_cardinal_threshold=int(r["minCardinalThreshold"]),
        recommended_drugs=tuple(r.get("recommendedDrugs", ())),
        forbidden_drugs=_parse_forbidden(r.get("forbiddenDrugs", ())),
        clinical_notes=r.get("clinicalNotes", ""),
        is_emergency=r.get("isEmergency", False),
    ), problems)
    adjuvant = _parse_section(data, "adjuvantGuide", lambda r: AdjuvantGuideEntry(
        drug_id=r["drugId"], recommended=bool(r["recommended"]),
        evidence_level=r.get("evidenceLevel"), note=r.get("note"), warning=r.get("warning"),
        not_recommended_reason=r.get("notRecommendedReason"),
        weight_min_kg=r.get("weightMinKg"), age_min_months=r.get("ageMinMonths"),
        restriction_note=r.get("restrictionNote"),
        volume_breakpoints=tuple(
            VolumeBreakpoint(dose_threshold=b["doseThreshold"], volume_ml=b["volumeMl"])
            for b in r.get("volumeBreakpoints", ())
        ),
    ), problems)
    dilutions = _parse_section(data, "specialDilutions", _parse_dilution, problems)
    combinations = _parse_section(data, "combinations", lambda r: CommonCombination(
        id=r["id"], name=r["name"], drug_ids=tuple(r["drugs"]), indication=r.get("indication", ""),
    ), problems)

    _check_references(
        problems, drugs, interactions, pediatric, mixes, conditions, condition_interactions,
        symptom_groups, syndromes, clinical, adjuvant, dilutions, combinations,
    )
    if problems:
        raise CatalogValidationError(problems)

    return Catalog(
        drugs=drugs, interactions=interactions, pediatric_interactions=pediatric,
        mix_compatibility=mixes, conditions=conditions, condition_interactions=condition_interactions,
        symptom_groups=symptom_groups, syndromes=syndromes, clinical_syndromes=clinical,
        adjuvant_guide=adjuvant, special_dilutions=dilutions, combinations=combinations,
    )


def _check_references(problems, drugs, interactions, pediatric, mixes, conditions,
                      condition_interactions, symptom_groups, syndromes, clinical,
                      adjuvant, dilutions, combinations):
    drug_ids = set()
    for drug in drugs:
        if drug.id in drug_ids:
            problems.append(f"duplicate drug id '{drug.id}'")
        drug_ids.add(drug.id)
        if not drug.presentations:
            problems.append(f"drug '{drug.id}' has no presentations")
        if sum(1 for p in drug.presentations if p.is_principal) > 1:
            problems.append(f"drug '{drug.id}' has more than one principal presentation")
        if drug.dose_rule is None and drug.legacy_adult_dose is None and not drug.legacy_pediatric_doses:
            problems.append(f"drug '{drug.id}' has neither a structured nor a legacy dose")
        if drug.dose_rule is not None:
            rule = drug.dose_rule
            amounts = [t.amount for t in rule.pediatric]
            if rule.adult_standard:
                amounts.append(rule.adult_standard.amount)
            if rule.adult_elderly and rule.adult_elderly.amount:
                amounts.append(rule.adult_elderly.amount)
            if rule.adult_elderly and rule.adult_elderly.reduction_factor and not rule.adult_standard:
                problems.append(f"drug '{drug.id}': elderly reduction factor without a standard adult dose")
            # Volume = dose / concentration only holds when both share a unit
            units = {a.unit for a in amounts} | {p.unit for p in drug.presentations}
            if len(units) > 1:
                problems.append(f"drug '{drug.id}' mixes dose units {sorted(u.value for u in units)}")

    def known(drug_id, where):
        if drug_id not in drug_ids:
            problems.append(f"{where}: unknown drug '{drug_id}'")

    for table, records in (("interactions", interactions), ("pediatricInteractions", pediatric),
                           ("mixCompatibility", mixes)):
        seen = set()
        for rec in records:
            for drug_id in sorted(rec.drug_ids):
                known(drug_id, table)
            if rec.drug_ids in seen:
                problems.append(f"{table}: duplicate pair {sorted(rec.drug_ids)}")
            seen.add(rec.drug_ids)
            for band in getattr(rec, "bands", ()):
                if band.age_min_months > band.age_max_months:
                    problems.append(f"{table}: inverted age band {band.age_min_months}-{band.age_max_months} "
                                    f"for {sorted(rec.drug_ids)}")

    condition_ids = {c.id for c in conditions}
    for rec in condition_interactions:
        known(rec.drug_id, "conditionInteractions")
        if rec.condition not in condition_ids:
            problems.append(f"conditionInteractions: unknown condition '{rec.condition}'")

    symptom_ids = {s.id for g in symptom_groups for s in g.symptoms}
    for rule in tuple(syndromes) + tuple(clinical):
        for symptom in rule.cardinal_symptoms + rule.support_symptoms:
            if symptom not in symptom_ids:
                problems.append(f"syndrome '{rule.id}': unknown symptom '{symptom}'")
        if not (0 <= rule.min_cardinal_threshold <= len(rule.cardinal_symptoms)):
            problems.append(f"syndrome '{rule.id}': threshold {rule.min_cardinal_threshold} out of range")
        for drug_id in rule.recommended_drugs:
            known(drug_id, f"syndrome '{rule.id}'")
        for forbidden in rule.forbidden_drugs:
            known(forbidden.drug_id, f"syndrome '{rule.id}'")
    for rule in syndromes:
        for flag in rule.red_flags:
            if flag.symptom not in symptom_ids:
                problems.append(f"syndrome '{rule.id}': unknown red-flag symptom '{flag.symptom}'")

    for entry in adjuvant:
        known(entry.drug_id, "adjuvantGuide")
    for dil in dilutions:
        known(dil.drug_id, "specialDilutions")
        if not dil.options:
            problems.append(f"specialDilutions: '{dil.drug_id}' has no diluent options")
    for combo in combinations:
        for drug_id in combo.drug_ids:
            known(drug_id, f"combination '{combo.id}'")


def load_catalog(path: str = CATALOG_PATH) -> Catalog:
    with open(path, "r", encoding="utf-8") as f:
        data = json.load(f)
    catalog = catalog_from_dict(data)
    logger.info(f"Catalog loaded from {path}: {len(catalog.drugs)} drugs, "
                f"{len(catalog.interactions)} interactions, {len(catalog.syndromes)} syndromes")
    return catalog


@lru_cache(maxsize=1)
def get_catalog() -> Catalog:
    """The process-wide catalog, loaded once."""
    return load_catalog(CATALOG_PATH)
