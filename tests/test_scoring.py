from __future__ import annotations

import unittest

from learning.scoring import (
    confidence_level,
    confidence_score,
    effectiveness_percentage,
    effectiveness_ratio,
    occurrence_baseline,
)


class ConfidenceScoreTests(unittest.TestCase):
    def test_baseline_saturates_with_occurrences(self) -> None:
        self.assertEqual(occurrence_baseline(0), 0.0)
        self.assertAlmostEqual(occurrence_baseline(2), 0.5)
        self.assertAlmostEqual(occurrence_baseline(3), 0.6)
        self.assertLess(occurrence_baseline(1000), 1.0)

    def test_confirm_adds_bonus_and_caps_at_one(self) -> None:
        self.assertAlmostEqual(confidence_score(3, confirmed=True), 0.8)
        self.assertEqual(confidence_score(1_000_000, confirmed=True), 1.0)

    def test_deny_forces_zero_regardless_of_count(self) -> None:
        self.assertEqual(confidence_score(50, denied=True), 0.0)
        self.assertEqual(confidence_score(50, confirmed=True, denied=True), 0.0)

    def test_mixed_effectiveness_halves_confidence(self) -> None:
        self.assertAlmostEqual(confidence_score(2, effectiveness=0.5), 0.25)
        self.assertAlmostEqual(confidence_score(2, effectiveness=1.0), 0.5)
        self.assertAlmostEqual(confidence_score(2, effectiveness=0.0), 0.5)

    def test_score_always_within_unit_interval(self) -> None:
        for count in range(0, 40):
            for confirmed in (False, True):
                for denied in (False, True):
                    for effectiveness in (None, 0.0, 0.3, 0.5, 1.0):
                        score = confidence_score(
                            count,
                            confirmed=confirmed,
                            denied=denied,
                            effectiveness=effectiveness,
                        )
                        self.assertGreaterEqual(score, 0.0)
                        self.assertLessEqual(score, 1.0)

    def test_negative_count_treated_as_zero(self) -> None:
        self.assertEqual(confidence_score(-3), 0.0)


class ConfidenceLevelTests(unittest.TestCase):
    def test_fixed_thresholds(self) -> None:
        self.assertEqual(confidence_level(0.0), "low")
        self.assertEqual(confidence_level(0.39), "low")
        self.assertEqual(confidence_level(0.4), "medium")
        self.assertEqual(confidence_level(0.74), "medium")
        self.assertEqual(confidence_level(0.75), "high")
        self.assertEqual(confidence_level(1.0), "high")

    def test_out_of_range_scores_are_clamped(self) -> None:
        self.assertEqual(confidence_level(-1.0), "low")
        self.assertEqual(confidence_level(7.0), "high")


class EffectivenessTests(unittest.TestCase):
    def test_zero_total_is_zero_not_an_error(self) -> None:
        self.assertEqual(effectiveness_percentage(0, 0), 0)
        self.assertEqual(effectiveness_ratio(0, 0), 0.0)

    def test_percentage_rounds_half_up(self) -> None:
        self.assertEqual(effectiveness_percentage(1, 3), 33)
        self.assertEqual(effectiveness_percentage(2, 3), 67)
        self.assertEqual(effectiveness_percentage(1, 2), 50)
        self.assertEqual(effectiveness_percentage(1, 8), 13)
        self.assertEqual(effectiveness_percentage(4, 4), 100)


if __name__ == "__main__":
    unittest.main()
