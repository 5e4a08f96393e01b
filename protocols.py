# protocols.py
import logging
from typing import List, Optional, Sequence

from constants import Route
from catalog import Catalog
from models import (
    CombinationCoverage, CombinationMatch, DiluentChoice, DiluentOption, DiluentProportion,
    PatientContext, Presentation, SpecialDilution,
)

logger = logging.getLogger(__name__)


class DiluentSelector:
    """
    Reconstitution diluent for drugs that ship as powder (ceftriaxone,
    benzathine penicillin). Options are catalog data, tried in order.
    """

    @staticmethod
    def option_fits(option: DiluentOption, patient: PatientContext) -> bool:
        months = patient.age_months
        if option.age_min_months is not None and months < option.age_min_months:
            return False
        if option.age_max_months is not None and months > option.age_max_months:
            return False
        # IM-only diluents (lidocaine) must never reach an IV line
        return option.for_im == (patient.route == Route.IM)

    @staticmethod
    def select_option(dilution: SpecialDilution, patient: PatientContext) -> Optional[DiluentOption]:
        for option in dilution.options:
            if DiluentSelector.option_fits(option, patient):
                return option
        if dilution.fallback_to_first and dilution.options:
            return dilution.options[0]
        return None

    @staticmethod
    def match_proportion(option: DiluentOption, presentation: Optional[Presentation]) -> DiluentProportion:
        """Proportion whose dose equals the vial strength, else the first one."""
        if presentation is not None:
            for proportion in option.proportions:
                if proportion.dose == presentation.concentration:
                    return proportion
        return option.proportions[0]

    @staticmethod
    def choose(catalog: Catalog, drug_id: str, patient: PatientContext,
               presentation: Optional[Presentation]) -> Optional[DiluentChoice]:
        dilution = catalog.dilution(drug_id)
        if dilution is None:
            return None
        option = DiluentSelector.select_option(dilution, patient)
        if option is None:
            logger.info(f"{drug_id}: no diluent option for {patient.age_months:g} months by {patient.route.value}")
            return None
        return DiluentChoice(option=option, proportion=DiluentSelector.match_proportion(option, presentation))

    @staticmethod
    def rematch(choice: DiluentChoice, presentation: Optional[Presentation]) -> DiluentChoice:
        """Keeps the diluent, re-picks the proportion for a new vial strength."""
        return DiluentChoice(option=choice.option, proportion=DiluentSelector.match_proportion(choice.option, presentation))


class CombinationMatcher:
    @staticmethod
    def identify(catalog: Catalog, drug_ids: Sequence[str]) -> List[CombinationMatch]:
        """A combination matches with two or more of its drugs selected; complete with all."""
        selected = set(drug_ids)
        matches = []
        for combo in catalog.combinations:
            matched = [d for d in combo.drug_ids if d in selected]
            if len(matched) < 2:
                continue
            coverage = CombinationCoverage.COMPLETE if len(matched) == len(combo.drug_ids) else CombinationCoverage.PARTIAL
            matches.append(CombinationMatch(combination=combo, coverage=coverage, matched_drug_ids=matched))
        return matches
