import unittest
from catalog import load_catalog
from models import ConditionSeverity, GateStatus
from safety import ConditionGate


class TestConditionGate(unittest.TestCase):

    def setUp(self):
        self.catalog = load_catalog()

    def test_01_block_caution_none(self):
        print("\nTEST 1: Gate status")
        self.assertEqual(ConditionGate.status(self.catalog, "ketorolac", ["pregnancy"]), GateStatus.BLOCKED)
        self.assertEqual(ConditionGate.status(self.catalog, "diclofenac", ["pregnancy"]), GateStatus.CAUTION)
        self.assertEqual(ConditionGate.status(self.catalog, "tramadol", ["pregnancy"]), GateStatus.NONE)
        self.assertEqual(ConditionGate.status(self.catalog, "metamizole", []), GateStatus.NONE)

    def test_02_unknown_inputs_have_no_effect(self):
        self.assertEqual(ConditionGate.status(self.catalog, "ketorolac", ["sunburn"]), GateStatus.NONE)
        self.assertEqual(ConditionGate.status(self.catalog, "unobtainium", ["pregnancy"]), GateStatus.NONE)

    def test_03_block_wins_over_caution(self):
        """Diclofenac: high non-blocking for heart failure, blocking for peptic ulcer."""
        status = ConditionGate.status(self.catalog, "diclofenac", ["heart_failure", "peptic_ulcer"])
        self.assertEqual(status, GateStatus.BLOCKED)

    def test_04_alerts_sorted_by_severity(self):
        print("\nTEST 4: Alert ordering")
        alerts = ConditionGate.alerts(
            self.catalog, ["ondansetron", "tramadol", "diclofenac"], ["pregnancy"]
        )
        for a in alerts:
            print(f"{a.severity.value:>6}  {a.drug_id}: {a.message}")
        self.assertEqual([a.drug_id for a in alerts], ["diclofenac", "tramadol", "ondansetron"])
        self.assertEqual(alerts[0].severity, ConditionSeverity.HIGH)

    def test_05_ties_keep_selection_order(self):
        alerts = ConditionGate.alerts(self.catalog, ["tramadol", "diazepam"], ["pregnancy"])
        self.assertEqual([a.drug_id for a in alerts], ["tramadol", "diazepam"])
        alerts = ConditionGate.alerts(self.catalog, ["diazepam", "tramadol"], ["pregnancy"])
        self.assertEqual([a.drug_id for a in alerts], ["diazepam", "tramadol"])


if __name__ == '__main__':
    unittest.main()
