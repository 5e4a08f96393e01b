import unittest
from dataclasses import replace

from catalog import load_catalog
from constants import VERSION, Route
from engine import DosiFlowEngine
from models import CombinationCoverage, DrugStatus, PatientContext, Session
from selection import SelectionStateMachine


class TestDosiFlowEngine(unittest.TestCase):

    def setUp(self):
        """A standard 70 kg adult with an empty selection."""
        self.catalog = load_catalog()
        self.adult = Session(patient=PatientContext(weight_kg=70.0, age=40))

    def _select(self, session, *drug_ids):
        for drug_id in drug_ids:
            transition = SelectionStateMachine.select(self.catalog, session, drug_id)
            self.assertTrue(transition.accepted, transition.alert)
            session = transition.session
        return session

    def test_01_full_evaluation(self):
        """
        Metamizole + dexamethasone: doses, combinations, statuses and the
        syringe total come back from one call.
        """
        print("\nTEST 1: Full evaluation")
        session = self._select(self.adult, "metamizole", "dexamethasone")
        out = DosiFlowEngine.evaluate(self.catalog, session)

        self.assertAlmostEqual(out.doses["metamizole"].volume_ml, 1.5)
        self.assertAlmostEqual(out.doses["dexamethasone"].dose, 6.0)
        self.assertAlmostEqual(out.doses["dexamethasone"].volume_ml, 1.5)
        self.assertEqual(out.interactions, [])

        combos = {m.combination.id: m.coverage for m in out.combinations}
        print(f"Combinations: {combos}")
        self.assertEqual(combos["inflammatory_pain"], CombinationCoverage.COMPLETE)
        self.assertEqual(combos["streptococcal_pharyngitis"], CombinationCoverage.PARTIAL)

        self.assertEqual(out.drug_statuses["metamizole"], DrugStatus.SELECTED)
        self.assertEqual(out.drug_statuses["ketorolac"], DrugStatus.CAUTION)
        self.assertEqual(out.drug_statuses["ceftriaxone"], DrugStatus.AVAILABLE)

        print(f"Syringe: {out.syringe_total.volume_ml} mL in {out.syringe_total.capacity.label}")
        self.assertAlmostEqual(out.syringe_total.volume_ml, 3.0)
        self.assertEqual(out.syringe_total.capacity.capacity_ml, 3.0)
        self.assertEqual(out.audit_log.model_version, VERSION)

    def test_02_incompatible_adjuvant_is_cleared(self):
        """Dexamethasone has no lidocaine evidence: an active additive flag is switched off."""
        print("\nTEST 2: Adjuvant reconcile")
        session = replace(self._select(self.adult, "metamizole", "dexamethasone"), adjuvant_active=True)
        out = DosiFlowEngine.evaluate(self.catalog, session)

        self.assertFalse(out.adjuvant_plan.compatible)
        self.assertIn("dexamethasone", out.adjuvant_plan.summary)
        self.assertFalse(out.session.adjuvant_active)
        self.assertEqual(out.adjuvant_volume_ml, 0.0)

    def test_03_adjuvant_volume_joins_syringe_total(self):
        """
        Ceftriaxone 1 g (diluent defines 3.5 mL) + ketorolac 45 mg (1.5 mL)
        + lidocaine 2.1 + 1.0 = 3.1 mL, snapped to 3.0 -> 8.0 mL in a 10 mL syringe.
        """
        print("\nTEST 3: Syringe total with adjuvant")
        session = replace(self._select(self.adult, "ceftriaxone", "ketorolac"), adjuvant_active=True)
        out = DosiFlowEngine.evaluate(self.catalog, session)

        self.assertTrue(out.adjuvant_plan.compatible)
        self.assertEqual(out.session.selection.diluents["ceftriaxone"].option.name, "lidocaine_1pct")
        self.assertAlmostEqual(out.adjuvant_plan.raw_combined_volume, 3.1)
        self.assertAlmostEqual(out.adjuvant_volume_ml, 3.0)
        print(f"Total: {out.syringe_total.volume_ml} mL")
        self.assertAlmostEqual(out.syringe_total.volume_ml, 8.0)
        self.assertEqual(out.syringe_total.capacity.capacity_ml, 10.0)

    def test_04_iv_route_disables_adjuvant(self):
        print("\nTEST 4: IV route")
        iv = Session(patient=PatientContext(weight_kg=70.0, age=40, route=Route.IV))
        session = replace(self._select(iv, "ketorolac"), adjuvant_active=True)
        out = DosiFlowEngine.evaluate(self.catalog, session)

        self.assertFalse(out.adjuvant_plan.compatible)
        self.assertEqual(out.adjuvant_plan.reasons, [])
        self.assertFalse(out.session.adjuvant_active)

    def test_05_output_recomputed_on_every_call(self):
        """Changing the weight changes the pediatric dose; nothing is cached."""
        print("\nTEST 5: No stale output")
        child = self._select(Session(patient=PatientContext(weight_kg=20.0, age=5)), "metamizole")
        first = DosiFlowEngine.evaluate(self.catalog, child)
        heavier = SelectionStateMachine.update_patient(
            self.catalog, child, PatientContext(weight_kg=30.0, age=5)
        ).session
        second = DosiFlowEngine.evaluate(self.catalog, heavier)

        print(f"20 kg: {first.doses['metamizole'].dose} mg, 30 kg: {second.doses['metamizole'].dose} mg")
        self.assertAlmostEqual(first.doses["metamizole"].dose, 250.0)
        self.assertAlmostEqual(second.doses["metamizole"].dose, 375.0)

    def test_06_symptoms_feed_the_panel(self):
        print("\nTEST 6: Symptom panel")
        session = SelectionStateMachine.set_symptoms(self.adult, ["fever", "myalgia", "headache"]).session
        out = DosiFlowEngine.evaluate(self.catalog, session)

        names = [m.rule_id for m in out.epidemiological_matches]
        self.assertIn("dengue", names)
        self.assertTrue(out.drug_panel["ketorolac"].forbidden)
        self.assertIn("Dengue", out.drug_panel["ondansetron"].recommended_by)


if __name__ == '__main__':
    unittest.main()
