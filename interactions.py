"""
DosiFlow: Interaction Engine
============================
Pairwise drug-drug interaction and same-syringe mixing checks.

Resolution order per unordered pair:
1. Pediatric patient + pediatric record + matching age band -> band level.
2. Otherwise the general interaction table.
Mixing compatibility is looked up independently (children only) and reported
as its own finding.
"""

import logging
from itertools import combinations
from typing import List, Optional, Sequence, Tuple

from constants import AGE_CONSTANTS
from catalog import Catalog, pair_key
from models import AgeBand, InteractionFinding, InteractionLevel

logger = logging.getLogger(__name__)


def band_for(bands: Sequence[AgeBand], age_months: float) -> Optional[AgeBand]:
    for band in bands:
        if band.age_min_months <= age_months <= band.age_max_months:
            return band
    return None


def is_pediatric(age_months: float) -> bool:
    return age_months < AGE_CONSTANTS.ADULT_MONTHS


class InteractionEngine:

    @staticmethod
    def resolved_finding(catalog: Catalog, a: str, b: str, age_months: float) -> Optional[InteractionFinding]:
        """Pharmacologic interaction for one pair, pediatric bands first."""
        name = f"{catalog.drug_name(a)} + {catalog.drug_name(b)}"

        if is_pediatric(age_months):
            record = catalog.pediatric_interaction(a, b)
            if record is not None:
                band = band_for(record.bands, age_months)
                if band is not None:
                    if band.level == InteractionLevel.NONE:
                        return None
                    return InteractionFinding(
                        drug_ids=(a, b), name=name, level=band.level,
                        description=record.description, advice=record.advice, pediatric=True,
                    )

        record = catalog.interaction(a, b)
        if record is None or record.level == InteractionLevel.NONE:
            return None
        return InteractionFinding(
            drug_ids=(a, b), name=name, level=record.level,
            description=record.description, advice=record.advice,
        )

    @staticmethod
    def mix_finding(catalog: Catalog, a: str, b: str, age_months: float) -> Optional[InteractionFinding]:
        """Same-syringe compatibility; only evaluated for children."""
        if not is_pediatric(age_months):
            return None
        record = catalog.mix_record(a, b)
        if record is None:
            return None

        if record.bands:
            band = band_for(record.bands, age_months)
            level = band.level if band else InteractionLevel.NONE
        else:
            level = record.compatibility

        if level is None or level == InteractionLevel.NONE:
            return None
        return InteractionFinding(
            drug_ids=(a, b), name=f"{catalog.drug_name(a)} + {catalog.drug_name(b)} (same syringe)",
            level=level, description=record.comment,
            advice="Do not mix in the same syringe", pediatric=True, mix=True,
        )

    @staticmethod
    def evaluate(catalog: Catalog, drug_ids: Sequence[str], age_months: float) -> List[InteractionFinding]:
        """
        Every finding for the selection, deduplicated by (pair, level).
        Order follows the selection; it carries no severity meaning.
        """
        findings = []
        seen = set()
        for a, b in combinations(drug_ids, 2):
            if a == b:
                continue
            for finding in (InteractionEngine.resolved_finding(catalog, a, b, age_months),
                            InteractionEngine.mix_finding(catalog, a, b, age_months)):
                if finding is None:
                    continue
                key = (pair_key(a, b), finding.level)
                if key in seen:
                    continue
                seen.add(key)
                findings.append(finding)
        return findings

    @staticmethod
    def pair_level(catalog: Catalog, a: str, b: str, age_months: float) -> Tuple[InteractionLevel, Optional[InteractionFinding]]:
        """Gating level for a pair: the worse of the resolved interaction and the mix finding."""
        worst_level, worst = InteractionLevel.NONE, None
        for finding in (InteractionEngine.resolved_finding(catalog, a, b, age_months),
                        InteractionEngine.mix_finding(catalog, a, b, age_months)):
            if finding is not None and finding.level.rank > worst_level.rank:
                worst_level, worst = finding.level, finding
        return worst_level, worst

    @staticmethod
    def worst_against(catalog: Catalog, drug_id: str, selected: Sequence[str],
                      age_months: float) -> Tuple[InteractionLevel, Optional[InteractionFinding]]:
        """Worst pair level between a candidate and the current selection."""
        worst_level, worst = InteractionLevel.NONE, None
        for other in selected:
            if other == drug_id:
                continue
            level, finding = InteractionEngine.pair_level(catalog, drug_id, other, age_months)
            if level.rank > worst_level.rank:
                worst_level, worst = level, finding
        return worst_level, worst
