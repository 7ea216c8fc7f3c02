"""Final verdict scoring.

A correct accusation starts at 100 points and earns more for a thorough
investigation, a detailed argument and a quick solve:

    +10 per visited location, +15 per interrogated suspect, +5 per clue
    +20 for reasoning over 200 characters, +30 more over 500
    +50 if solved within 1 day, +30 within 3, +10 within 7

A wrong accusation earns 20 points, plus 10 for reasoning over 200
characters. Scores are capped at 500.
"""

import math
from datetime import datetime

from obscura.models import InvestigationProgress

MAX_SCORE = 500
_WRONG_SCORE = 20
_TIME_BONUS = [(1, 50), (3, 30), (7, 10)]


def days_taken(created_at: datetime, now: datetime) -> int:
    """Whole days since the case was created, rounded up, at least 1."""
    elapsed = (now - created_at).total_seconds()
    return max(1, math.ceil(elapsed / 86400))


def is_correct(accused: str, killer: str) -> bool:
    return accused.strip().lower() == killer.strip().lower()


def score_verdict(
    correct: bool, progress: InvestigationProgress, reasoning: str, days: int
) -> int:
    if not correct:
        score = _WRONG_SCORE + (10 if len(reasoning) > 200 else 0)
        return min(score, MAX_SCORE)

    score = 100
    score += len(progress.visited_locations) * 10
    score += len(progress.interrogated_suspects) * 15
    score += len(progress.discovered_clues) * 5
    if len(reasoning) > 200:
        score += 20
    if len(reasoning) > 500:
        score += 30
    score += next((bonus for limit, bonus in _TIME_BONUS if days <= limit), 0)
    return min(score, MAX_SCORE)


def explain(correct: bool, killer: str) -> str:
    if correct:
        return f"Excellent detective work! You correctly identified {killer} as the culprit."
    return (
        f"The correct suspect was {killer}. "
        "Review the evidence and clues you may have missed."
    )
