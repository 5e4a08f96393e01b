"""
DosiFlow: Preset Store
======================
Bounded key-value store (10 slots) for frequently used bedside setups.
A preset holds the patient, the selected drugs with their presentations,
and the active conditions. Loading replays the selection through the
normal reducers, so gating still applies to a restored preset.
"""

import json
import logging
import os
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional, Tuple

from constants import PRESET_CONSTANTS, PRESET_PATH, AgeUnit, Route
from catalog import Catalog
from models import PatientContext, PresetSlotError, Session
from selection import SelectionStateMachine

logger = logging.getLogger(__name__)


def patient_to_dict(patient: PatientContext) -> dict:
    return {
        "weight_kg": patient.weight_kg,
        "age": patient.age,
        "age_unit": patient.age_unit.value,
        "route": patient.route.value,
    }


def patient_from_dict(data: dict) -> PatientContext:
    return PatientContext(
        weight_kg=data["weight_kg"],
        age=data["age"],
        age_unit=AgeUnit(data.get("age_unit", AgeUnit.YEARS.value)),
        route=Route(data.get("route", Route.IM.value)),
    )


@dataclass
class Preset:
    name: str
    patient: PatientContext
    drug_ids: Tuple[str, ...] = ()
    presentations: Dict[str, str] = field(default_factory=dict)   # drug id -> presentation name
    conditions: Tuple[str, ...] = ()
    saved_at: Optional[str] = None

    @classmethod
    def from_session(cls, name: str, session: Session) -> "Preset":
        return cls(
            name=name,
            patient=session.patient,
            drug_ids=tuple(session.selection.drug_ids),
            presentations={d: p.name for d, p in session.selection.presentations.items()},
            conditions=tuple(session.conditions),
        )

    def to_session(self, catalog: Catalog) -> Session:
        """Rebuilds a Session; drugs the current gates reject are skipped with a log line."""
        session = Session(patient=self.patient)
        session = SelectionStateMachine.set_conditions(catalog, session, self.conditions).session
        for drug_id in self.drug_ids:
            transition = SelectionStateMachine.select(catalog, session, drug_id)
            if not transition.accepted:
                logger.warning(f"Preset '{self.name}': {transition.alert}")
                continue
            session = transition.session
            wanted = self.presentations.get(drug_id)
            drug = catalog.drug(drug_id)
            for presentation in drug.presentations:
                if presentation.name == wanted:
                    session = SelectionStateMachine.change_presentation(catalog, session, drug_id, presentation).session
                    break
        return session

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "patient": patient_to_dict(self.patient),
            "drug_ids": list(self.drug_ids),
            "presentations": dict(self.presentations),
            "conditions": list(self.conditions),
            "saved_at": self.saved_at,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Preset":
        return cls(
            name=data.get("name", ""),
            patient=patient_from_dict(data["patient"]),
            drug_ids=tuple(data.get("drug_ids", ())),
            presentations=dict(data.get("presentations", {})),
            conditions=tuple(data.get("conditions", ())),
            saved_at=data.get("saved_at"),
        )


class PresetStore(ABC):
    """Save/Load/Delete/List by slot index. Subclasses only move raw slot lists."""

    def __init__(self, max_slots: int = PRESET_CONSTANTS.MAX_SLOTS):
        self.max_slots = max_slots

    @abstractmethod
    def _read_all(self) -> List[Optional[dict]]:
        ...

    @abstractmethod
    def _write_all(self, slots: List[Optional[dict]]) -> None:
        ...

    def _check(self, slot: int) -> None:
        if not isinstance(slot, int) or not (0 <= slot < self.max_slots):
            raise PresetSlotError(f"Preset slot {slot} outside 0-{self.max_slots - 1}")

    def save(self, slot: int, preset: Preset) -> Preset:
        self._check(slot)
        preset.saved_at = datetime.now().isoformat()
        slots = self._read_all()
        slots[slot] = preset.to_dict()
        self._write_all(slots)
        logger.info(f"Preset '{preset.name}' saved to slot {slot}")
        return preset

    def load(self, slot: int) -> Optional[Preset]:
        self._check(slot)
        raw = self._read_all()[slot]
        return Preset.from_dict(raw) if raw else None

    def delete(self, slot: int) -> None:
        self._check(slot)
        slots = self._read_all()
        slots[slot] = None
        self._write_all(slots)

    def list(self) -> List[Optional[Preset]]:
        return [Preset.from_dict(raw) if raw else None for raw in self._read_all()]


class InMemoryPresetStore(PresetStore):

    def __init__(self, max_slots: int = PRESET_CONSTANTS.MAX_SLOTS):
        super().__init__(max_slots)
        self._slots: List[Optional[dict]] = [None] * max_slots

    def _read_all(self) -> List[Optional[dict]]:
        return list(self._slots)

    def _write_all(self, slots: List[Optional[dict]]) -> None:
        self._slots = list(slots)


class JsonFilePresetStore(PresetStore):
    """
    One JSON array on disk. Short arrays written by older versions are padded
    to the slot count and written back.
    """

    def __init__(self, path: str = PRESET_PATH, max_slots: int = PRESET_CONSTANTS.MAX_SLOTS):
        super().__init__(max_slots)
        self.path = path

    def _read_all(self) -> List[Optional[dict]]:
        if not os.path.exists(self.path):
            return [None] * self.max_slots
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                slots = json.load(f)
        except (OSError, ValueError) as e:
            logger.warning(f"Unreadable preset file {self.path}: {e}")
            return [None] * self.max_slots
        if not isinstance(slots, list):
            logger.warning(f"Preset file {self.path} does not hold a list; ignoring it")
            return [None] * self.max_slots

        if len(slots) < self.max_slots:
            slots = slots + [None] * (self.max_slots - len(slots))
            self._write_all(slots)
        return slots[:self.max_slots]

    def _write_all(self, slots: List[Optional[dict]]) -> None:
        directory = os.path.dirname(self.path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        with open(self.path, "w", encoding="utf-8") as f:
            json.dump(slots, f, indent=2)
