# safety.py
from typing import List, Sequence

from catalog import Catalog
from models import ConditionAlert, ConditionInteractionRecord, ConditionSeverity, GateStatus


class ConditionGate:
    """
    Drug-disease contraindications. Total: a drug or condition with no
    record has no effect.
    """

    @staticmethod
    def records(catalog: Catalog, drug_id: str, conditions: Sequence[str]) -> List[ConditionInteractionRecord]:
        found = []
        for condition in conditions:
            record = catalog.condition_record(drug_id, condition)
            if record is not None:
                found.append(record)
        return found

    @staticmethod
    def status(catalog: Catalog, drug_id: str, conditions: Sequence[str]) -> GateStatus:
        records = ConditionGate.records(catalog, drug_id, conditions)

        # 1. Any blocking record wins outright
        if any(r.blocks for r in records):
            return GateStatus.BLOCKED
        # 2. High severity without a block is a caution
        if any(r.severity == ConditionSeverity.HIGH for r in records):
            return GateStatus.CAUTION
        return GateStatus.NONE

    @staticmethod
    def alerts(catalog: Catalog, drug_ids: Sequence[str], conditions: Sequence[str]) -> List[ConditionAlert]:
        """Every matching record for the selection, high > medium > low (stable)."""
        alerts = [
            ConditionAlert(
                drug_id=r.drug_id, condition=r.condition, severity=r.severity,
                blocks=r.blocks, message=r.message, recommendation=r.recommendation,
            )
            for drug_id in drug_ids
            for r in ConditionGate.records(catalog, drug_id, conditions)
        ]
        alerts.sort(key=lambda a: -a.severity.rank)
        return alerts
