import unittest
from catalog import Catalog, load_catalog
from constants import AgeUnit, Route
from dosing import DoseCalculator, format_dose, frequency_text, mean_dose
from models import (
    DoseOutcome, DoseRule, DoseSource, DoseUnit, Drug, FixedDose, PatientContext,
    PediatricTier, PerWeightMgDose, DataTypeError, Session,
)
from selection import SelectionStateMachine


class TestDoseCalculator(unittest.TestCase):

    def setUp(self):
        self.catalog = load_catalog()
        self.adult = PatientContext(weight_kg=70.0, age=40)
        self.elderly = PatientContext(weight_kg=60.0, age=72)
        self.child = PatientContext(weight_kg=20.0, age=5)

    def test_01_helpers(self):
        print("\nTEST 1: Helpers")
        self.assertEqual(mean_dose(FixedDose(dose_min=500, dose_max=1000), 70), 750)
        self.assertEqual(mean_dose(FixedDose(dose_min=75), 70), 75)
        self.assertEqual(mean_dose(PerWeightMgDose(dose_min_per_kg=10, dose_max_per_kg=15), 20), 250)
        self.assertEqual(frequency_text(()), "")
        self.assertEqual(frequency_text((24,)), "every 24 hours")
        self.assertEqual(frequency_text((6, 8)), "every 6-8 hours")
        self.assertEqual(format_dose(1000000, DoseUnit.IU), "1,000,000 IU")
        self.assertEqual(format_dose(22.5, DoseUnit.MG), "22.5 mg")

    def test_02_patient_validation(self):
        print("\nTEST 2: Bedside input validation")
        with self.assertRaises(DataTypeError):
            PatientContext(weight_kg="70", age=40)
        with self.assertRaises(ValueError):
            PatientContext(weight_kg=0, age=40)
        with self.assertRaises(ValueError):
            PatientContext(weight_kg=70, age=130)
        self.assertEqual(PatientContext(weight_kg=8, age=9, age_unit=AgeUnit.MONTHS).age_months, 9)

    def test_03_elderly_explicit_and_factor(self):
        print("\nTEST 3: Elderly rules")
        diclo = DoseCalculator.calculate(self.catalog, "diclofenac", self.elderly)
        self.assertTrue(diclo.is_elderly)
        self.assertAlmostEqual(diclo.dose, 43.75)

        keto = DoseCalculator.calculate(self.catalog, "ketorolac", self.elderly)
        print(f"Ketorolac elderly: {keto.dose} mg")
        self.assertAlmostEqual(keto.dose, 22.5)
        self.assertEqual(keto.frequency_text, "every 6 hours")

        # No elderly rule: the standard dose applies, still flagged elderly
        ceftri = DoseCalculator.calculate(self.catalog, "ceftriaxone", self.elderly)
        self.assertAlmostEqual(ceftri.dose, 1000.0)
        self.assertTrue(ceftri.is_elderly)
        self.assertFalse(ceftri.precaution)

    def test_04_caps(self):
        """Per-administration ceilings are applied before the volume."""
        print("\nTEST 4: Caps")
        diazepam = DoseCalculator.calculate(self.catalog, "diazepam", self.adult)
        self.assertAlmostEqual(diazepam.dose, 10.0)       # 0.2 mg/kg x 70 = 14, capped
        self.assertAlmostEqual(diazepam.volume_ml, 2.0)
        self.assertTrue(any("Capped" in a for a in diazepam.advisories))

        teen = PatientContext(weight_kg=30.0, age=10)
        ceftri = DoseCalculator.calculate(self.catalog, "ceftriaxone", teen)
        self.assertAlmostEqual(ceftri.dose, 1000.0)       # 62.5 mg/kg x 30 = 1875, capped

    def test_05_iu_dose(self):
        print("\nTEST 5: IU dosing")
        res = DoseCalculator.calculate(self.catalog, "benzathine_penicillin", self.child)
        print(f"Benzathine: {format_dose(res.dose, res.unit)} in {res.volume_ml:.2f} mL -> {res.snap.snapped} mL")
        self.assertEqual(res.unit, DoseUnit.IU)
        self.assertAlmostEqual(res.dose, 1000000)
        self.assertAlmostEqual(res.volume_ml, 10 / 3)
        self.assertEqual(res.snap.snapped, 3.2)

    def test_06_no_tier_for_age(self):
        print("\nTEST 6: No pediatric tier")
        res = DoseCalculator.calculate(self.catalog, "tramadol", self.child)
        self.assertEqual(res.outcome, DoseOutcome.NO_DOSING)
        self.assertTrue(res.blocked)
        self.assertIsNone(res.dose)

        infant = PatientContext(weight_kg=5.0, age=3, age_unit=AgeUnit.MONTHS)
        self.assertEqual(DoseCalculator.calculate(self.catalog, "ondansetron", infant).outcome, DoseOutcome.NO_DOSING)

    def test_07_legacy_text_is_verbatim(self):
        """Legacy-only drugs are never parsed at runtime."""
        print("\nTEST 7: Legacy text")
        adult = DoseCalculator.calculate(self.catalog, "promethazine", self.adult)
        self.assertEqual(adult.outcome, DoseOutcome.UNSTRUCTURED)
        self.assertEqual(adult.source, DoseSource.LEGACY_TEXT)
        self.assertEqual(adult.legacy_text, "25 to 50 mg IM every 4 to 6 hours, maximum 100 mg per day")
        self.assertIsNone(adult.dose)
        self.assertIsNone(adult.volume_ml)

        child = DoseCalculator.calculate(self.catalog, "cyanocobalamin", self.child)
        self.assertEqual(child.legacy_text, "Per specialist indication")

        infant = PatientContext(weight_kg=8.0, age=1)
        res = DoseCalculator.calculate(self.catalog, "promethazine", infant)
        self.assertEqual(res.outcome, DoseOutcome.NO_DOSING)

    def test_08_route_mismatch(self):
        print("\nTEST 8: Route mismatch")
        # Tier lists IV only, the drug allows IM: advisory, still dosed
        diazepam = DoseCalculator.calculate(self.catalog, "diazepam", self.child)
        self.assertEqual(diazepam.outcome, DoseOutcome.OK)
        self.assertTrue(any("Pediatric tier lists IV" in a for a in diazepam.advisories))

        # Neither the drug nor the tier allows IV
        child_iv = PatientContext(weight_kg=20.0, age=5, route=Route.IV)
        diclo = DoseCalculator.calculate(self.catalog, "diclofenac", child_iv)
        self.assertEqual(diclo.outcome, DoseOutcome.NO_DOSING)
        self.assertTrue(diclo.blocked)

        adult_iv = PatientContext(weight_kg=70.0, age=40, route=Route.IV)
        diclo = DoseCalculator.calculate(self.catalog, "diclofenac", adult_iv)
        self.assertEqual(diclo.outcome, DoseOutcome.OK)
        self.assertTrue(any("Not recommended by IV" in a for a in diclo.advisories))

    def test_09_missing_drug_or_presentation(self):
        print("\nTEST 9: Missing data")
        res = DoseCalculator.calculate(self.catalog, "unobtainium", self.adult)
        self.assertEqual(res.outcome, DoseOutcome.NOT_FOUND)

        bare = Catalog(drugs=(Drug(
            id="y", name="Y", drug_class="", routes=(), presentations=(),
            dose_rule=DoseRule(pediatric=(PediatricTier(0, 216, PerWeightMgDose(1.0)),)),
        ),))
        res = DoseCalculator.calculate(bare, "y", self.child)
        self.assertEqual(res.outcome, DoseOutcome.MISSING_PRESENTATION)
        self.assertTrue(res.blocked)
        self.assertIsNone(res.volume_ml)

    def test_10_first_matching_tier_wins(self):
        tiers = (
            PediatricTier(0, 24, PerWeightMgDose(1.0)),
            PediatricTier(24, 216, PerWeightMgDose(2.0)),
        )
        self.assertIs(DoseCalculator.find_tier(tiers, 24), tiers[0])
        self.assertIs(DoseCalculator.find_tier(tiers, 25), tiers[1])
        self.assertIsNone(DoseCalculator.find_tier(tiers, 300))

    def test_11_selection_uses_chosen_presentation(self):
        print("\nTEST 11: Chosen presentation")
        session = SelectionStateMachine.select(self.catalog, Session(patient=self.adult), "hydrocortisone").session
        big_vial = self.catalog.drug("hydrocortisone").presentations[1]
        session = SelectionStateMachine.change_presentation(self.catalog, session, "hydrocortisone", big_vial).session

        doses = DoseCalculator.calculate_selection(self.catalog, session)
        print(f"Hydrocortisone 100 mg from {big_vial.name}: {doses['hydrocortisone'].volume_ml} mL")
        self.assertAlmostEqual(doses["hydrocortisone"].dose, 100.0)
        self.assertAlmostEqual(doses["hydrocortisone"].volume_ml, 0.8)


if __name__ == '__main__':
    unittest.main()
