"""Day-gated investigation.

Visiting a location and interrogating a suspect are each allowed once per
subject per calendar day in IST (UTC+5:30), independent of where the
server runs. The boundary is local midnight, not a rolling 24 hours.

No state enum is stored. Every check derives the state from the stored
local date of the last action:

    never-acted       no record for the subject         -> allowed
    acted-previously  record dated before today          -> allowed
    acted-today       record dated today                 -> CooldownActiveError

The pure functions below operate on an InvestigationProgress and return a
new one. The Investigation service wraps them: it re-checks the gate and
writes through Storage.update_progress (version compare-and-set) inside one
per-case critical section, so two racing requests cannot both pass the gate.
Clue discovery, location searches, findings and notes are never gated. The
final verdict is accepted once per case and completes it.
"""

from __future__ import annotations

import asyncio
import logging
import weakref
from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Literal

from obscura.errors import (
    CooldownActiveError,
    NotFoundError,
    PersistenceError,
    UpstreamGenerationError,
    ValidationError,
    VerdictAlreadySubmittedError,
)
from obscura.findings import analyze_observation, analyze_transcript
from obscura.llm import Generator
from obscura.models import (
    CaseRecord,
    Finding,
    FindingSource,
    Importance,
    InterrogationRecord,
    InvestigationProgress,
    Location,
    LocationVisit,
    Note,
    Suspect,
    Verdict,
)
from obscura.operations import JobRunner, ProgressReporter
from obscura.prompts import INTERROGATION_PROMPT, render_prompt
from obscura.storage import Storage
from obscura.verdict import days_taken, explain, is_correct, score_verdict

logger = logging.getLogger(__name__)

IST = timezone(timedelta(hours=5, minutes=30), "IST")

ActionKind = Literal["visit", "interrogation"]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def local_date(now: datetime) -> str:
    """Calendar date (YYYY-MM-DD) of `now` in IST."""
    return now.astimezone(IST).date().isoformat()


# ---------------------------------------------------------------------------
# Gate
# ---------------------------------------------------------------------------

class ActionState(str, Enum):
    NEVER_ACTED = "never-acted"
    ACTED_TODAY = "acted-today"
    ACTED_PREVIOUSLY = "acted-previously"


def _last_action_date(
    progress: InvestigationProgress, kind: ActionKind, subject_id: str
) -> str | None:
    if kind == "visit":
        visit = progress.visited_locations.get(subject_id)
        return visit.last_visit_date_local if visit else None
    record = progress.interrogated_suspects.get(subject_id)
    return record.last_interrogation_date_local if record else None


def action_state(
    progress: InvestigationProgress, kind: ActionKind, subject_id: str, today: str
) -> ActionState:
    last = _last_action_date(progress, kind, subject_id)
    if last is None:
        return ActionState.NEVER_ACTED
    if last == today:
        return ActionState.ACTED_TODAY
    return ActionState.ACTED_PREVIOUSLY


def can_act(
    progress: InvestigationProgress, kind: ActionKind, subject_id: str, today: str
) -> bool:
    return action_state(progress, kind, subject_id, today) != ActionState.ACTED_TODAY


def can_visit(progress: InvestigationProgress, location_id: str, today: str) -> bool:
    return can_act(progress, "visit", location_id, today)


def can_interrogate(progress: InvestigationProgress, suspect_name: str, today: str) -> bool:
    return can_act(progress, "interrogation", suspect_name, today)


def _check_gate(
    progress: InvestigationProgress, kind: ActionKind, subject_id: str, today: str
) -> None:
    if not can_act(progress, kind, subject_id, today):
        verb = "visited" if kind == "visit" else "interrogated"
        raise CooldownActiveError(verb, subject_id, today)


# ---------------------------------------------------------------------------
# Transitions (pure: return a new progress, never mutate the argument)
# ---------------------------------------------------------------------------

def record_visit(
    progress: InvestigationProgress, location_id: str, now: datetime
) -> InvestigationProgress:
    today = local_date(now)
    _check_gate(progress, "visit", location_id, today)
    updated = progress.model_copy(deep=True)
    updated.visited_locations[location_id] = LocationVisit(
        visited_at_utc=now.astimezone(timezone.utc), last_visit_date_local=today
    )
    return updated


def record_interrogation(
    progress: InvestigationProgress,
    suspect_name: str,
    now: datetime,
    questions: list[str],
    response: str,
) -> InvestigationProgress:
    """Append one session: the questions as a single newline-joined entry, plus its transcript."""
    today = local_date(now)
    _check_gate(progress, "interrogation", suspect_name, today)
    updated = progress.model_copy(deep=True)
    previous = updated.interrogated_suspects.get(suspect_name)
    updated.interrogated_suspects[suspect_name] = InterrogationRecord(
        interrogated_at_utc=now.astimezone(timezone.utc),
        last_interrogation_date_local=today,
        questions_asked=(previous.questions_asked if previous else []) + ["\n".join(questions)],
        responses=(previous.responses if previous else []) + [response],
    )
    return updated


def discover_clue(progress: InvestigationProgress, clue_id: str) -> InvestigationProgress:
    if clue_id in progress.discovered_clues:
        return progress
    updated = progress.model_copy(deep=True)
    updated.discovered_clues.append(clue_id)
    return updated


# ---------------------------------------------------------------------------
# Service
# ---------------------------------------------------------------------------

_CLUE_IMPORTANCE: dict[str, Importance] = {
    "direct": "critical",
    "indirect": "important",
    "red_herring": "minor",
}


def fallback_transcript(detective: str, suspect: Suspect, questions: list[str]) -> str:
    lines = []
    for question in questions:
        lines.append(f"{detective}: {question}")
        lines.append(f"{suspect.name}: I've told you everything I know. {suspect.alibi}".rstrip())
    return "\n".join(lines)


class Investigation:
    def __init__(
        self,
        storage: Storage,
        generator: Generator,
        clock: Callable[[], datetime] = _utcnow,
        max_attempts: int = 3,
        runner: JobRunner | None = None,
    ) -> None:
        self.storage = storage
        self.generator = generator
        self.runner = runner
        self._clock = clock
        self._max_attempts = max_attempts
        # an entry lives only while a request holds or waits on that case's lock
        self._locks = weakref.WeakValueDictionary()

    def _lock_for(self, case_id: str) -> asyncio.Lock:
        lock = self._locks.get(case_id)
        if lock is None:
            lock = self._locks[case_id] = asyncio.Lock()
        return lock

    def _case(self, case_id: str) -> CaseRecord:
        record = self.storage.get_case(case_id)
        if record is None:
            raise NotFoundError(f"Case not found: {case_id}")
        return record

    def _current_day(self, record: CaseRecord, now: datetime) -> int:
        started = record.created_at.astimezone(IST).date()
        return max(1, (now.astimezone(IST).date() - started).days + 1)

    async def _commit(
        self,
        record: CaseRecord,
        now: datetime,
        transition: Callable[[InvestigationProgress], InvestigationProgress],
    ) -> InvestigationProgress:
        """Reload, apply `transition` (which re-checks the gate) and write, as one step."""
        async with self._lock_for(record.id):
            for _ in range(self._max_attempts):
                current = self.storage.get_progress(record.id)
                updated = transition(current)
                updated.current_day = self._current_day(record, now)
                if self.storage.update_progress(record.id, updated, current.version):
                    return updated.model_copy(update={"version": current.version + 1})
        raise PersistenceError(f"Progress for case {record.id} kept changing, giving up")

    def get_progress(self, case_id: str) -> InvestigationProgress:
        record = self._case(case_id)
        progress = self.storage.get_progress(case_id)
        progress.current_day = self._current_day(record, self._clock())
        return progress

    # -- gated actions --------------------------------------------------

    async def visit_location(self, case_id: str, location_id: str) -> InvestigationProgress:
        record = self._case(case_id)
        location = record.bundle.map.find_location(location_id)
        if location is None:
            raise NotFoundError(f"Location not found: {location_id}")
        now = self._clock()
        _check_gate(self.storage.get_progress(case_id), "visit", location_id, local_date(now))

        progress = await self._commit(record, now, lambda p: record_visit(p, location_id, now))
        logger.info("Case %s: visited %s (%s)", case_id, location_id, location.display_name)
        return progress

    async def interrogate(
        self,
        case_id: str,
        suspect_name: str,
        questions: list[str],
        detective_name: str | None = None,
    ) -> dict[str, Any]:
        questions = [q.strip() for q in questions if q and q.strip()]
        if not questions:
            raise ValidationError("At least one question is required")
        record = self._case(case_id)
        story = record.bundle.enhanced_story
        suspect = story.find_suspect(suspect_name)
        if suspect is None:
            raise NotFoundError(f"Suspect not found: {suspect_name}")
        now = self._clock()
        today = local_date(now)
        current = self.storage.get_progress(case_id)
        _check_gate(current, "interrogation", suspect_name, today)

        detective = detective_name or "Detective"
        previous = current.interrogated_suspects.get(suspect_name)
        prompt = render_prompt(INTERROGATION_PROMPT, {
            "detective": detective,
            "suspect": suspect.model_dump(),
            "victim": story.victim.model_dump(),
            "setting": story.setting,
            "questions": questions,
            "previous": previous.questions_asked if previous else [],
        })
        try:
            transcript = (await self.generator.generate("interrogation", prompt)).strip()
        except UpstreamGenerationError as e:
            logger.warning("Interrogation of %s fell back to a canned transcript: %s", suspect_name, e)
            transcript = ""
        if not transcript:
            transcript = fallback_transcript(detective, suspect, questions)

        progress = await self._commit(
            record, now,
            lambda p: record_interrogation(p, suspect_name, now, questions, transcript),
        )

        existing = [f.text for f in self.storage.list_findings(case_id)]
        analyzed = await analyze_transcript(self.generator, story, suspect, transcript, existing)
        finding_ids = [
            self.storage.append_finding(
                case_id, "interrogation", suspect_name, f.finding, f.importance, f.is_new
            )
            for f in analyzed
        ]
        logger.info(
            "Case %s: interrogated %s, %d findings", case_id, suspect_name, len(finding_ids)
        )
        return {"progress": progress, "transcript": transcript, "finding_ids": finding_ids}

    # -- ungated --------------------------------------------------------

    async def discover_clue(self, case_id: str, clue_id: str) -> InvestigationProgress:
        record = self._case(case_id)
        found = record.bundle.find_clue(clue_id)
        if found is None:
            raise NotFoundError(f"Clue not found: {clue_id}")
        where, clue = found

        first_time = False

        def transition(current: InvestigationProgress) -> InvestigationProgress:
            nonlocal first_time
            first_time = clue_id not in current.discovered_clues
            return discover_clue(current, clue_id)

        progress = await self._commit(record, self._clock(), transition)
        if first_time:
            self.storage.append_finding(
                case_id, "clue_discovery", where, clue.content, _CLUE_IMPORTANCE[clue.category]
            )
        return progress

    def add_finding(
        self,
        case_id: str,
        source: FindingSource,
        source_details: str,
        text: str,
        importance: Importance = "minor",
    ) -> str:
        self._case(case_id)
        return self.storage.append_finding(case_id, source, source_details, text, importance)

    def list_findings(self, case_id: str, mark_read: bool = False) -> list[Finding]:
        """Findings in append order; `is_new` is false once the reader has seen them."""
        self._case(case_id)
        findings = self.storage.list_findings(case_id)
        seen = self.storage.get_findings_seen(case_id)
        listing = [
            f.model_copy(update={"is_new": f.is_new and i >= seen})
            for i, f in enumerate(findings)
        ]
        if mark_read and len(findings) > seen:
            self.storage.set_findings_seen(case_id, len(findings))
        return listing

    # -- location search ------------------------------------------------

    def _search_target(
        self, case_id: str, location_id: str, observation: str
    ) -> tuple[CaseRecord, Location]:
        if not observation.strip():
            raise ValidationError("An observation is required")
        record = self._case(case_id)
        location = record.bundle.map.find_location(location_id)
        if location is None:
            raise NotFoundError(f"Location not found: {location_id}")
        if location_id not in self.storage.get_progress(case_id).visited_locations:
            raise ValidationError(f"Visit {location.display_name} before searching it")
        return record, location

    async def search_location(
        self, case_id: str, location_id: str, observation: str
    ) -> dict[str, Any]:
        """Match an observation against the evidence at a visited location.

        Newly identified clues are marked discovered and each one becomes a
        location_visit finding. Searching is not day-gated.
        """
        record, location = self._search_target(case_id, location_id, observation)
        observation = observation.strip()
        clues = record.bundle.clue_set.get(location.display_name, [])
        matches, analysis = await analyze_observation(
            self.generator, record.bundle.enhanced_story,
            location.display_name, observation, clues,
        )

        new_ids: list[str] = []

        def transition(current: InvestigationProgress) -> InvestigationProgress:
            new_ids[:] = [c.id for c in matches if c.id not in current.discovered_clues]
            updated = current
            for clue_id in new_ids:
                updated = discover_clue(updated, clue_id)
            return updated

        progress = await self._commit(record, self._clock(), transition)
        finding_ids = [
            self.storage.append_finding(
                case_id, "location_visit", f"Search of {location.display_name}",
                clue.content, _CLUE_IMPORTANCE[clue.category],
            )
            for clue in matches if clue.id in new_ids
        ]
        logger.info(
            "Case %s: searched %s, %d of %d clues new",
            case_id, location_id, len(new_ids), len(matches),
        )
        return {
            "analysis": analysis,
            "matched_clues": matches,
            "new_clue_ids": new_ids,
            "finding_ids": finding_ids,
            "progress": progress,
        }

    def start_location_search(self, case_id: str, location_id: str, observation: str) -> str:
        """Run search_location as a background operation. Returns its operation id."""
        if self.runner is None:
            raise RuntimeError("Location search needs a job runner")
        _, location = self._search_target(case_id, location_id, observation)

        async def job(report: ProgressReporter) -> dict[str, Any]:
            report(20, f"Searching {location.display_name}")
            result = await self.search_location(case_id, location_id, observation)
            return {
                **result,
                "matched_clues": [c.model_dump(mode="json") for c in result["matched_clues"]],
                "progress": result["progress"].model_dump(mode="json"),
            }

        return self.runner.submit("investigate-location", job)

    # -- verdict --------------------------------------------------------

    def submit_verdict(self, case_id: str, suspect_name: str, reasoning: str) -> Verdict:
        """Accuse a suspect. Scores the case and completes it; one verdict per case."""
        suspect_name, reasoning = suspect_name.strip(), reasoning.strip()
        if not suspect_name or not reasoning:
            raise ValidationError("suspect_name and reasoning are required")
        record = self._case(case_id)
        if record.verdict is not None:
            raise VerdictAlreadySubmittedError(case_id)
        story = record.bundle.enhanced_story
        accused = next((s for s in story.suspects if is_correct(suspect_name, s.name)), None)
        if accused is None:
            raise NotFoundError(f"Suspect not found: {suspect_name}")

        now = self._clock()
        correct = is_correct(accused.name, story.killer)
        days = days_taken(record.created_at, now)
        verdict = Verdict(
            accused=accused.name,
            reasoning=reasoning,
            correct=correct,
            correct_suspect=story.killer,
            score=score_verdict(correct, self.storage.get_progress(case_id), reasoning, days),
            explanation=explain(correct, story.killer),
            submitted_at=now,
        )
        if self.storage.record_verdict(case_id, verdict) is None:
            raise NotFoundError(f"Case not found: {case_id}")
        return verdict

    # -- notes ----------------------------------------------------------

    def list_notes(self, case_id: str) -> list[Note]:
        self._case(case_id)
        return self.storage.get_notes(case_id)

    def add_note(self, case_id: str, content: str, page: int = 1) -> Note:
        self._case(case_id)
        return self.storage.add_note(case_id, content, page)

    def update_note(self, case_id: str, note_id: str, content: str) -> Note:
        self._case(case_id)
        note = self.storage.update_note(case_id, note_id, content)
        if note is None:
            raise NotFoundError(f"Note not found: {note_id}")
        return note

    def delete_note(self, case_id: str, note_id: str) -> None:
        self._case(case_id)
        if not self.storage.delete_note(case_id, note_id):
            raise NotFoundError(f"Note not found: {note_id}")
