"""
DosiFlow: Selection State Machine
=================================
Pure reducers over an immutable Session. Every transition returns a new
Session (or the unchanged one, with an alert, when rejected).

Gating on Select:
1. ConditionGate says BLOCKED                  -> rejected
2. Any selected drug pairs at dangerous or
   contraindicated (pediatric bands first,
   mixing included)                            -> rejected
3. Otherwise: added with its default presentation and, for powder drugs,
   an auto-selected diluent.
"""

import logging
from dataclasses import replace
from itertools import combinations
from typing import Sequence

from catalog import Catalog
from interactions import InteractionEngine
from models import (
    DrugStatus, GateStatus, InteractionLevel, PatientContext, Presentation,
    SelectionState, Session, Transition,
)
from protocols import DiluentSelector
from safety import ConditionGate

logger = logging.getLogger(__name__)


def _without(selection: SelectionState, drug_id: str) -> SelectionState:
    return SelectionState(
        drug_ids=tuple(d for d in selection.drug_ids if d != drug_id),
        presentations={k: v for k, v in selection.presentations.items() if k != drug_id},
        diluents={k: v for k, v in selection.diluents.items() if k != drug_id},
    )


class SelectionStateMachine:

    @staticmethod
    def select(catalog: Catalog, session: Session, drug_id: str) -> Transition:
        drug = catalog.drug(drug_id)
        if drug is None:
            return Transition(session=session, accepted=False, alert=f"Drug '{drug_id}' not found")
        if drug_id in session.selection.drug_ids:
            return Transition(session=session, accepted=True)

        if ConditionGate.status(catalog, drug_id, session.conditions) == GateStatus.BLOCKED:
            alert = f"Cannot select {drug.name}: contraindicated by a patient condition"
            logger.info(alert)
            return Transition(session=session, accepted=False, alert=alert)

        level, finding = InteractionEngine.worst_against(
            catalog, drug_id, session.selection.drug_ids, session.patient.age_months
        )
        if level.is_blocking:
            alert = f"Cannot select {drug.name}: {finding.description}"
            logger.info(alert)
            return Transition(session=session, accepted=False, alert=alert)

        presentation = catalog.default_presentation(drug_id)
        presentations = dict(session.selection.presentations)
        diluents = dict(session.selection.diluents)
        if presentation is not None:
            presentations[drug_id] = presentation
        choice = DiluentSelector.choose(catalog, drug_id, session.patient, presentation)
        if choice is not None:
            diluents[drug_id] = choice

        selection = SelectionState(
            drug_ids=session.selection.drug_ids + (drug_id,),
            presentations=presentations,
            diluents=diluents,
        )
        return Transition(session=replace(session, selection=selection), accepted=True)

    @staticmethod
    def deselect(session: Session, drug_id: str) -> Transition:
        """Always allowed; drops the drug's presentation and diluent with it."""
        if drug_id not in session.selection.drug_ids:
            return Transition(session=session, accepted=True)
        return Transition(session=replace(session, selection=_without(session.selection, drug_id)),
                          accepted=True, removed=[drug_id])

    @staticmethod
    def toggle(catalog: Catalog, session: Session, drug_id: str) -> Transition:
        if drug_id in session.selection.drug_ids:
            return SelectionStateMachine.deselect(session, drug_id)
        return SelectionStateMachine.select(catalog, session, drug_id)

    @staticmethod
    def change_presentation(catalog: Catalog, session: Session, drug_id: str,
                            presentation: Presentation) -> Transition:
        drug = catalog.drug(drug_id)
        if drug is None or drug_id not in session.selection.drug_ids:
            return Transition(session=session, accepted=False, alert=f"Drug '{drug_id}' is not selected")
        if presentation not in drug.presentations:
            return Transition(session=session, accepted=False,
                              alert=f"'{presentation.name}' is not a presentation of {drug.name}")

        presentations = dict(session.selection.presentations)
        presentations[drug_id] = presentation
        diluents = dict(session.selection.diluents)
        if drug_id in diluents:
            diluents[drug_id] = DiluentSelector.rematch(diluents[drug_id], presentation)

        selection = replace(session.selection, presentations=presentations, diluents=diluents)
        return Transition(session=replace(session, selection=selection), accepted=True)

    @staticmethod
    def set_conditions(catalog: Catalog, session: Session, conditions: Sequence[str]) -> Transition:
        """Replaces the condition list and drops every selected drug it now blocks."""
        conditions = tuple(dict.fromkeys(conditions))
        selection = session.selection
        removed = []
        for drug_id in session.selection.drug_ids:
            if ConditionGate.status(catalog, drug_id, conditions) == GateStatus.BLOCKED:
                selection = _without(selection, drug_id)
                removed.append(drug_id)

        alert = None
        if removed:
            alert = "Removed by patient condition: " + ", ".join(catalog.drug_name(d) for d in removed)
            logger.info(alert)
        return Transition(session=replace(session, conditions=conditions, selection=selection),
                          accepted=True, alert=alert, removed=removed)

    @staticmethod
    def set_symptoms(session: Session, symptoms: Sequence[str]) -> Transition:
        return Transition(session=replace(session, symptoms=tuple(dict.fromkeys(symptoms))), accepted=True)

    @staticmethod
    def update_patient(catalog: Catalog, session: Session, patient: PatientContext) -> Transition:
        """
        New bedside inputs; diluents depend on age and route so they are re-picked.
        Drugs are never dropped here. A pair the new age turns blocking (pediatric
        bands, same-syringe mixing) is reported in the alert for the clinician.
        """
        diluents = {}
        for drug_id in session.selection.drug_ids:
            choice = DiluentSelector.choose(catalog, drug_id, patient, session.selection.presentations.get(drug_id))
            if choice is not None:
                diluents[drug_id] = choice
        selection = replace(session.selection, diluents=diluents)

        conflicts = []
        for a, b in combinations(session.selection.drug_ids, 2):
            level, _ = InteractionEngine.pair_level(catalog, a, b, patient.age_months)
            if level.is_blocking:
                conflicts.append(f"{catalog.drug_name(a)} + {catalog.drug_name(b)}")
        alert = None
        if conflicts:
            alert = "Incompatible for this patient, review the selection: " + "; ".join(conflicts)
            logger.info(alert)
        return Transition(session=replace(session, patient=patient, selection=selection),
                          accepted=True, alert=alert)

    @staticmethod
    def drug_status(catalog: Catalog, session: Session, drug_id: str) -> DrugStatus:
        """Read-only: how the drug looks against the current selection."""
        gate = ConditionGate.status(catalog, drug_id, session.conditions)
        if gate == GateStatus.BLOCKED:
            return DrugStatus.BLOCKED_BY_CONDITION
        if drug_id in session.selection.drug_ids:
            return DrugStatus.SELECTED

        level, _ = InteractionEngine.worst_against(
            catalog, drug_id, session.selection.drug_ids, session.patient.age_months
        )
        if level.is_blocking:
            return DrugStatus.BLOCKED_BY_INTERACTION
        if level == InteractionLevel.CAUTION or gate == GateStatus.CAUTION:
            return DrugStatus.CAUTION
        return DrugStatus.AVAILABLE
