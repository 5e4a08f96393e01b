import random
import unittest
from itertools import combinations

from catalog import load_catalog
from constants import AgeUnit, Route
from interactions import InteractionEngine
from models import DrugStatus, GateStatus, PatientContext, Session
from safety import ConditionGate
from selection import SelectionStateMachine


class TestSelectionStateMachine(unittest.TestCase):

    def setUp(self):
        self.catalog = load_catalog()
        self.adult = Session(patient=PatientContext(weight_kg=70.0, age=40))
        self.child = Session(patient=PatientContext(weight_kg=20.0, age=5))

    def _select(self, session, *drug_ids):
        for drug_id in drug_ids:
            transition = SelectionStateMachine.select(self.catalog, session, drug_id)
            self.assertTrue(transition.accepted, transition.alert)
            session = transition.session
        return session

    def test_01_select_sets_defaults(self):
        print("\nTEST 1: Defaults on select")
        session = self._select(self.adult, "ceftriaxone", "metamizole")
        self.assertEqual(session.selection.drug_ids, ("ceftriaxone", "metamizole"))
        self.assertEqual(session.selection.presentations["ceftriaxone"].name, "Ceftriaxone 1 g vial")
        self.assertEqual(session.selection.diluents["ceftriaxone"].option.name, "lidocaine_1pct")
        self.assertAlmostEqual(session.selection.diluents["ceftriaxone"].proportion.volume_ml, 3.5)
        self.assertNotIn("metamizole", session.selection.diluents)

        # Selecting again is a no-op
        again = SelectionStateMachine.select(self.catalog, session, "metamizole")
        self.assertTrue(again.accepted)
        self.assertIs(again.session, session)

    def test_02_condition_block(self):
        print("\nTEST 2: Blocked by condition")
        session = SelectionStateMachine.set_conditions(self.catalog, self.adult, ["renal_failure"]).session
        transition = SelectionStateMachine.select(self.catalog, session, "ketorolac")
        print(f"Alert: {transition.alert}")
        self.assertFalse(transition.accepted)
        self.assertIn("contraindicated by a patient condition", transition.alert)
        self.assertIs(transition.session, session)

    def test_03_interaction_block(self):
        print("\nTEST 3: Blocked by interaction")
        session = self._select(self.adult, "ketorolac")
        transition = SelectionStateMachine.select(self.catalog, session, "diclofenac")
        print(f"Alert: {transition.alert}")
        self.assertFalse(transition.accepted)
        self.assertTrue(transition.alert.startswith("Cannot select Diclofenac"))
        self.assertEqual(transition.session.selection.drug_ids, ("ketorolac",))

        # Caution is allowed
        self.assertTrue(SelectionStateMachine.select(self.catalog, session, "metamizole").accepted)

    def test_04_mix_block_for_children_only(self):
        print("\nTEST 4: Mixing gate")
        child = self._select(self.child, "diazepam")
        self.assertFalse(SelectionStateMachine.select(self.catalog, child, "ketorolac").accepted)
        adult = self._select(self.adult, "diazepam")
        self.assertTrue(SelectionStateMachine.select(self.catalog, adult, "ketorolac").accepted)

    def test_05_conditions_remove_blocked_drugs(self):
        print("\nTEST 5: Condition change removes drugs")
        session = self._select(self.adult, "ketorolac", "metamizole")
        transition = SelectionStateMachine.set_conditions(self.catalog, session, ["peptic_ulcer", "peptic_ulcer"])
        print(f"Alert: {transition.alert}")
        self.assertEqual(transition.removed, ["ketorolac"])
        self.assertEqual(transition.alert, "Removed by patient condition: Ketorolac")
        self.assertEqual(transition.session.selection.drug_ids, ("metamizole",))
        self.assertNotIn("ketorolac", transition.session.selection.presentations)
        self.assertEqual(transition.session.conditions, ("peptic_ulcer",))

    def test_06_deselect_and_toggle(self):
        print("\nTEST 6: Deselect and toggle")
        session = self._select(self.adult, "ceftriaxone")
        transition = SelectionStateMachine.deselect(session, "ceftriaxone")
        self.assertEqual(transition.removed, ["ceftriaxone"])
        self.assertEqual(transition.session.selection.drug_ids, ())
        self.assertEqual(transition.session.selection.presentations, {})
        self.assertEqual(transition.session.selection.diluents, {})

        on = SelectionStateMachine.toggle(self.catalog, self.adult, "metamizole").session
        self.assertEqual(on.selection.drug_ids, ("metamizole",))
        off = SelectionStateMachine.toggle(self.catalog, on, "metamizole").session
        self.assertEqual(off.selection.drug_ids, ())

    def test_07_change_presentation(self):
        print("\nTEST 7: Presentation change")
        session = self._select(self.adult, "ceftriaxone")
        small = self.catalog.drug("ceftriaxone").presentations[0]
        transition = SelectionStateMachine.change_presentation(self.catalog, session, "ceftriaxone", small)
        self.assertTrue(transition.accepted)
        self.assertEqual(transition.session.selection.presentations["ceftriaxone"], small)
        self.assertAlmostEqual(transition.session.selection.diluents["ceftriaxone"].proportion.volume_ml, 2.0)

        foreign = self.catalog.drug("metamizole").presentations[0]
        self.assertFalse(SelectionStateMachine.change_presentation(self.catalog, session, "ceftriaxone", foreign).accepted)
        self.assertFalse(SelectionStateMachine.change_presentation(self.catalog, session, "metamizole", foreign).accepted)

    def test_08_diluent_follows_age_and_route(self):
        print("\nTEST 8: Diluent choice")
        infant = Session(patient=PatientContext(weight_kg=7.0, age=6, age_unit=AgeUnit.MONTHS))
        session = self._select(infant, "benzathine_penicillin", "ceftriaxone")
        self.assertEqual(session.selection.diluents["benzathine_penicillin"].option.name, "sterile_water")
        self.assertEqual(session.selection.diluents["ceftriaxone"].option.name, "sterile_water_im")

        older = SelectionStateMachine.update_patient(
            self.catalog, session, PatientContext(weight_kg=14.0, age=3)
        ).session
        self.assertEqual(older.selection.diluents["benzathine_penicillin"].option.name, "lidocaine_1pct")
        self.assertEqual(older.selection.drug_ids, session.selection.drug_ids)

        iv = SelectionStateMachine.update_patient(
            self.catalog, session, PatientContext(weight_kg=14.0, age=3, route=Route.IV)
        ).session
        self.assertEqual(iv.selection.diluents["ceftriaxone"].option.name, "sterile_water_iv")
        self.assertNotIn("benzathine_penicillin", iv.selection.diluents)

    def test_09_drug_status(self):
        print("\nTEST 9: Drug status")
        session = self._select(self.adult, "ketorolac")
        session = SelectionStateMachine.set_conditions(self.catalog, session, ["epilepsy", "liver_failure"]).session
        status = lambda d: SelectionStateMachine.drug_status(self.catalog, session, d)

        self.assertEqual(status("ketorolac"), DrugStatus.SELECTED)
        self.assertEqual(status("tramadol"), DrugStatus.BLOCKED_BY_CONDITION)
        self.assertEqual(status("diclofenac"), DrugStatus.BLOCKED_BY_INTERACTION)
        self.assertEqual(status("metamizole"), DrugStatus.CAUTION)      # interaction caution
        self.assertEqual(status("diazepam"), DrugStatus.CAUTION)        # high non-blocking condition
        self.assertEqual(status("ceftriaxone"), DrugStatus.AVAILABLE)

    def test_10_gating_invariant_under_random_sequences(self):
        """
        After any sequence of toggles and condition changes, no selected pair is
        blocking and no selected drug is blocked by a condition.
        """
        print("\nTEST 10: Gating invariant")
        rng = random.Random(7)
        drug_ids = self.catalog.drug_ids
        condition_ids = [c.id for c in self.catalog.conditions]

        for start in (self.adult, self.child, Session(patient=PatientContext(weight_kg=9.0, age=14, age_unit=AgeUnit.MONTHS))):
            session = start
            for _ in range(200):
                if rng.random() < 0.1:
                    picked = rng.sample(condition_ids, rng.randint(0, 2))
                    session = SelectionStateMachine.set_conditions(self.catalog, session, picked).session
                else:
                    session = SelectionStateMachine.toggle(self.catalog, session, rng.choice(drug_ids)).session

                selected = session.selection.drug_ids
                age = session.patient.age_months
                self.assertEqual(len(selected), len(set(selected)))
                for drug_id in selected:
                    self.assertNotEqual(ConditionGate.status(self.catalog, drug_id, session.conditions), GateStatus.BLOCKED)
                    self.assertIn(drug_id, session.selection.presentations)
                for a, b in combinations(selected, 2):
                    level, _ = InteractionEngine.pair_level(self.catalog, a, b, age)
                    self.assertFalse(level.is_blocking, f"{a} + {b} at {age}m")

    def test_11_age_change_reports_new_conflicts(self):
        """
        Diazepam + ketorolac may share a syringe for an adult but not for a child.
        Switching the patient to a child keeps both drugs and says why they clash.
        """
        print("\nTEST 11: Age change")
        adult = self._select(self.adult, "diazepam", "ketorolac")
        self.assertIsNone(SelectionStateMachine.update_patient(
            self.catalog, adult, PatientContext(weight_kg=80.0, age=50)
        ).alert)

        transition = SelectionStateMachine.update_patient(self.catalog, adult, self.child.patient)
        print(f"Alert: {transition.alert}")
        self.assertTrue(transition.accepted)
        self.assertEqual(transition.removed, [])
        self.assertEqual(transition.alert, "Incompatible for this patient, review the selection: Diazepam + Ketorolac")
        self.assertEqual(transition.session.selection.drug_ids, ("diazepam", "ketorolac"))
        self.assertEqual(SelectionStateMachine.drug_status(self.catalog, transition.session, "ketorolac"),
                         DrugStatus.SELECTED)


if __name__ == '__main__':
    unittest.main()
