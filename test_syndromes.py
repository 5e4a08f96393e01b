import unittest
from catalog import load_catalog
from syndromes import SyndromeMatcher, confidence


class TestSyndromeMatcher(unittest.TestCase):

    def setUp(self):
        self.catalog = load_catalog()

    def test_01_confidence_formula(self):
        print("\nTEST 1: Confidence")
        self.assertEqual(confidence(2, 1, 3, 2), 63)
        self.assertEqual(confidence(3, 2, 3, 2), 100)
        self.assertEqual(confidence(0, 1, 3, 2), 13)      # 12.5 rounds half up
        self.assertEqual(confidence(0, 0, 0, 0), 0)

    def test_02_no_symptoms_no_matches(self):
        self.assertEqual(SyndromeMatcher.epidemiological(self.catalog, []), [])
        self.assertEqual(SyndromeMatcher.clinical(self.catalog, []), [])

    def test_03_red_flags(self):
        print("\nTEST 3: Dengue warning signs")
        matches = SyndromeMatcher.epidemiological(
            self.catalog, ["fever", "headache", "severe_abdominal_pain"]
        )
        dengue = next(m for m in matches if m.rule_id == "dengue")
        for flag in dengue.active_red_flags:
            print(f"RED FLAG: {flag.message}")
        self.assertEqual([f.symptom for f in dengue.active_red_flags], ["severe_abdominal_pain"])
        self.assertEqual(dengue.cardinal_matches, ["fever", "headache"])
        self.assertEqual(dengue.confidence, 31)

    def test_04_sorted_by_confidence(self):
        """Influenza (3 of 3 cardinal) outranks dengue (2 of 4)."""
        print("\nTEST 4: Ordering")
        matches = SyndromeMatcher.epidemiological(self.catalog, ["fever", "myalgia", "cough"])
        print([(m.rule_id, m.confidence) for m in matches])
        self.assertEqual([m.rule_id for m in matches], ["influenza", "dengue"])
        self.assertEqual(matches[0].confidence, 55)

    def test_05_prohibition(self):
        print("\nTEST 5: Prohibition")
        matches = SyndromeMatcher.epidemiological(
            self.catalog, ["fever", "myalgia", "high_fever", "arthralgia"]
        )
        check = SyndromeMatcher.prohibition("ketorolac", matches)
        self.assertTrue(check.forbidden)
        self.assertEqual(sorted(a.syndrome for a in check.alerts), ["Chikungunya", "Dengue"])

        self.assertFalse(SyndromeMatcher.prohibition("metamizole", matches).forbidden)
        self.assertFalse(SyndromeMatcher.prohibition("ketorolac", []).forbidden)

    def test_06_clinical_and_panel(self):
        print("\nTEST 6: Clinical pictures drive the panel")
        clinical = SyndromeMatcher.clinical(self.catalog, ["seizure"])
        self.assertEqual([m.rule_id for m in clinical], ["status_epilepticus"])
        self.assertTrue(clinical[0].is_emergency)

        epi = SyndromeMatcher.epidemiological(self.catalog, ["fever", "headache"])
        panel = SyndromeMatcher.annotate_drug_panel(epi, clinical)
        self.assertEqual(panel["diazepam"].recommended_by, ["Status epilepticus"])
        self.assertTrue(panel["tramadol"].forbidden)
        self.assertTrue(panel["ketorolac"].forbidden)
        self.assertNotIn("ceftriaxone", panel)

    def test_07_symptom_catalog(self):
        groups = SyndromeMatcher.symptom_catalog(self.catalog)
        self.assertEqual(groups[0].id, "general")
        self.assertIn("petechiae", self.catalog.symptom_ids)


if __name__ == '__main__':
    unittest.main()
