"""
DosiFlow: Engine Facade
=======================
One call re-derives everything the clinician sees from the current
Session. Nothing is cached between calls: a changed input always yields a
freshly computed output.
"""

import logging
import math
from typing import Dict, Mapping

from catalog import Catalog
from adjuvant import AdjuvantVolumeCalculator
from dosing import DoseCalculator
from interactions import InteractionEngine
from models import AuditLog, DoseResult, EngineOutput, Session, SyringeTotal
from protocols import CombinationMatcher
from safety import ConditionGate
from selection import SelectionStateMachine
from snap_grid import DEFAULT_GRID, SnapGrid
from syndromes import SyndromeMatcher

logger = logging.getLogger(__name__)


class DosiFlowEngine:

    @staticmethod
    def syringe_total(catalog: Catalog, session: Session, doses: Mapping[str, DoseResult],
                      adjuvant_volume_ml: float, grid: SnapGrid = DEFAULT_GRID) -> SyringeTotal:
        """Display volume of every selected drug plus the additive, and the syringe that holds it."""
        volumes = []
        for drug_id in session.selection.drug_ids:
            result = doses.get(drug_id)
            if result is None or result.volume_ml is None:
                continue
            dilution = catalog.dilution(drug_id)
            choice = session.selection.diluents.get(drug_id)
            if dilution is not None and dilution.defines_volume and choice is not None:
                volumes.append(choice.proportion.volume_ml)
            else:
                volumes.append(result.snap.snapped if result.snap else result.volume_ml)
        total = math.fsum(volumes) + adjuvant_volume_ml
        return SyringeTotal(volume_ml=round(total, 3), adjuvant_volume_ml=adjuvant_volume_ml,
                            capacity=grid.tier_for(total))

    @staticmethod
    def evaluate(catalog: Catalog, session: Session, grid: SnapGrid = DEFAULT_GRID) -> EngineOutput:
        patient = session.patient
        drug_ids = session.selection.drug_ids

        # 1. Doses
        doses: Dict[str, DoseResult] = DoseCalculator.calculate_selection(catalog, session, grid)

        # 2. Safety layers
        interactions = InteractionEngine.evaluate(catalog, drug_ids, patient.age_months)
        condition_alerts = ConditionGate.alerts(catalog, drug_ids, session.conditions)

        # 3. Symptoms
        epidemiological = SyndromeMatcher.epidemiological(catalog, session.symptoms)
        clinical = SyndromeMatcher.clinical(catalog, session.symptoms)
        panel = SyndromeMatcher.annotate_drug_panel(epidemiological, clinical)

        # 4. Additive
        plan = AdjuvantVolumeCalculator.plan(catalog, session, {d: r.dose for d, r in doses.items()}, grid)
        session = AdjuvantVolumeCalculator.reconcile(session, plan)
        adjuvant_volume = AdjuvantVolumeCalculator.volume_in_use(session, plan)

        output = EngineOutput(
            session=session,
            doses=doses,
            interactions=interactions,
            condition_alerts=condition_alerts,
            epidemiological_matches=epidemiological,
            clinical_matches=clinical,
            drug_panel=panel,
            combinations=CombinationMatcher.identify(catalog, drug_ids),
            adjuvant_plan=plan,
            adjuvant_notes=AdjuvantVolumeCalculator.notes(catalog, drug_ids),
            adjuvant_volume_ml=adjuvant_volume,
            syringe_total=DosiFlowEngine.syringe_total(catalog, session, doses, adjuvant_volume, grid),
            drug_statuses={d: SelectionStateMachine.drug_status(catalog, session, d) for d in catalog.drug_ids},
            audit_log=AuditLog(inputs_hash=hash(str(session))),
        )
        logger.debug(f"Evaluated {len(drug_ids)} drug(s): {len(interactions)} interaction(s), "
                     f"{len(condition_alerts)} condition alert(s)")
        return output
