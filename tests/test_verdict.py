"""Verdict scoring rules."""

from datetime import timedelta

from obscura.models import InvestigationProgress, LocationVisit
from obscura.verdict import MAX_SCORE, days_taken, is_correct, score_verdict

from tests.helpers import ist


def _progress(locations: int = 0, clues: int = 0) -> InvestigationProgress:
    visit = LocationVisit(visited_at_utc=ist(2024, 3, 1, 10, 0), last_visit_date_local="2024-03-01")
    return InvestigationProgress(
        visited_locations={f"L{i}": visit for i in range(locations)},
        discovered_clues=[f"clue-{i}" for i in range(clues)],
    )


def test_days_taken_rounds_up():
    start = ist(2024, 3, 1, 10, 0)
    assert days_taken(start, start) == 1
    assert days_taken(start, start + timedelta(hours=30)) == 2
    assert days_taken(start, start + timedelta(days=3)) == 3


def test_is_correct_ignores_case_and_padding():
    assert is_correct(" marcus CHEN ", "Marcus Chen")
    assert not is_correct("Marcus", "Marcus Chen")


def test_time_bonus_tiers():
    empty = InvestigationProgress()
    assert score_verdict(True, empty, "short", days=1) == 150
    assert score_verdict(True, empty, "short", days=3) == 130
    assert score_verdict(True, empty, "short", days=7) == 110
    assert score_verdict(True, empty, "short", days=8) == 100


def test_reasoning_bonus():
    empty = InvestigationProgress()
    assert score_verdict(True, empty, "x" * 201, days=30) == 120
    assert score_verdict(True, empty, "x" * 501, days=30) == 150
    assert score_verdict(False, empty, "x" * 201, days=1) == 30


def test_wrong_accusation_ignores_thoroughness():
    assert score_verdict(False, _progress(locations=3, clues=4), "short", days=1) == 20


def test_score_is_capped():
    assert score_verdict(True, _progress(locations=30, clues=40), "x" * 600, days=1) == MAX_SCORE
