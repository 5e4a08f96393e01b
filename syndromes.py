"""
DosiFlow: Syndrome Matcher
==========================
Scores the active symptom set against two rule tables:
- epidemiological alerts (dengue, chikungunya...) with red flags,
- differential clinical pictures that drive drug-panel suggestions.

Cardinal symptoms weigh 2, support symptoms weigh 1:
    confidence = round(100 * (2c + s) / (2|C| + |S|))
A rule is active only when c >= its cardinal threshold.
"""

from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from catalog import Catalog
from models import (
    ClinicalSyndromeMatch, DrugPanelAnnotation, EpidemiologicalMatch, ForbiddenBy,
    ProhibitionCheck, SymptomGroup,
)


def confidence(cardinal_matched: int, support_matched: int, cardinal_total: int, support_total: int) -> int:
    """Integer percentage, halves rounded up; 0 for a rule with no symptoms."""
    denominator = 2 * cardinal_total + support_total
    if denominator <= 0:
        return 0
    numerator = 2 * cardinal_matched + support_matched
    # Exact integer form of floor(100 * n / d + 0.5)
    return (200 * numerator + denominator) // (2 * denominator)


def _matches(rule_symptoms: Sequence[str], active: Iterable[str]) -> List[str]:
    active = set(active)
    return [s for s in rule_symptoms if s in active]


def _score(cardinal: Sequence[str], support: Sequence[str], threshold: int,
           active: Sequence[str]) -> Optional[Tuple[List[str], List[str], int]]:
    cardinal_hits = _matches(cardinal, active)
    if len(cardinal_hits) < threshold:
        return None
    support_hits = _matches(support, active)
    score = confidence(len(cardinal_hits), len(support_hits), len(cardinal), len(support))
    return cardinal_hits, support_hits, score


class SyndromeMatcher:

    @staticmethod
    def epidemiological(catalog: Catalog, symptoms: Sequence[str]) -> List[EpidemiologicalMatch]:
        if not symptoms:
            return []
        active = set(symptoms)
        matches = []
        for rule in catalog.syndromes:
            scored = _score(rule.cardinal_symptoms, rule.support_symptoms, rule.min_cardinal_threshold, symptoms)
            if scored is None:
                continue
            cardinal_hits, support_hits, score = scored
            matches.append(EpidemiologicalMatch(
                rule_id=rule.id, name=rule.name, confidence=score,
                cardinal_matches=cardinal_hits, support_matches=support_hits,
                active_red_flags=[f for f in rule.red_flags if f.symptom in active],
                recommended_drugs=list(rule.recommended_drugs),
                forbidden_drugs=list(rule.forbidden_drugs),
                differential_guide=rule.differential_guide,
                management_guide=rule.management_guide,
            ))
        # sort() is stable: ties keep catalog order
        matches.sort(key=lambda m: -m.confidence)
        return matches

    @staticmethod
    def clinical(catalog: Catalog, symptoms: Sequence[str]) -> List[ClinicalSyndromeMatch]:
        if not symptoms:
            return []
        matches = []
        for rule in catalog.clinical_syndromes:
            scored = _score(rule.cardinal_symptoms, rule.support_symptoms, rule.min_cardinal_threshold, symptoms)
            if scored is None:
                continue
            cardinal_hits, support_hits, score = scored
            matches.append(ClinicalSyndromeMatch(
                rule_id=rule.id, name=rule.name, description=rule.description, confidence=score,
                cardinal_matches=cardinal_hits, support_matches=support_hits,
                recommended_drugs=list(rule.recommended_drugs),
                forbidden_drugs=list(rule.forbidden_drugs),
                clinical_notes=rule.clinical_notes, is_emergency=rule.is_emergency,
            ))
        matches.sort(key=lambda m: -m.confidence)
        return matches

    @staticmethod
    def prohibition(drug_id: str, matches: Sequence[EpidemiologicalMatch]) -> ProhibitionCheck:
        """Is the drug forbidden by any active epidemiological alert, and by which."""
        alerts = [
            ForbiddenBy(syndrome=m.name, reason=f.reason)
            for m in matches
            for f in m.forbidden_drugs
            if f.drug_id == drug_id
        ]
        return ProhibitionCheck(forbidden=bool(alerts), alerts=alerts)

    @staticmethod
    def annotate_drug_panel(epidemiological: Sequence[EpidemiologicalMatch],
                            clinical: Sequence[ClinicalSyndromeMatch]) -> Dict[str, DrugPanelAnnotation]:
        """
        Display-only recommended/forbidden marks merged from both scorers.
        Never touches the selection.
        """
        panel: Dict[str, DrugPanelAnnotation] = {}

        def entry(drug_id: str) -> DrugPanelAnnotation:
            if drug_id not in panel:
                panel[drug_id] = DrugPanelAnnotation(drug_id=drug_id)
            return panel[drug_id]

        for match in list(epidemiological) + list(clinical):
            for drug_id in match.recommended_drugs:
                if match.name not in entry(drug_id).recommended_by:
                    entry(drug_id).recommended_by.append(match.name)
            for forbidden in match.forbidden_drugs:
                entry(forbidden.drug_id).forbidden_by.append(ForbiddenBy(syndrome=match.name, reason=forbidden.reason))
        return panel

    @staticmethod
    def symptom_catalog(catalog: Catalog) -> List[SymptomGroup]:
        return list(catalog.symptom_groups)
