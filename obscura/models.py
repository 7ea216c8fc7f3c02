"""Core domain models.

Generation steps, the orchestrator, storage and the investigation service
all exchange these types. Pydantic validates generator output on the way in
and serialises every record written to disk.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

Difficulty = Literal["easy", "medium", "hard"]
CaseStatus = Literal["active", "completed", "archived"]
OperationStatus = Literal["queued", "processing", "completed", "failed"]
Importance = Literal["minor", "important", "critical"]
FindingSource = Literal["interrogation", "location_visit", "clue_discovery"]

TERMINAL_STATUSES: frozenset[str] = frozenset({"completed", "failed"})


# ---------------------------------------------------------------------------
# Story
# ---------------------------------------------------------------------------

class Victim(BaseModel):
    name: str
    profession: str
    last_known_location: str = ""
    death_time_estimate: str = ""
    cause_of_death: str = ""


class ClueTrigger(BaseModel):
    """A clue a suspect may let slip when interrogated the right way."""

    clue: str
    trigger_type: Literal[
        "pressing", "gentle", "aggressive", "sympathetic", "specific_question"
    ] = "specific_question"
    trigger_level: int = Field(default=3, ge=1, le=5)
    trigger_description: str = ""
    is_red_herring: bool = False
    importance: Importance = "minor"
    revealed: bool = False


class Suspect(BaseModel):
    name: str
    role: str
    alibi: str = ""
    motives: list[str] = Field(default_factory=list)
    is_killer: bool = False
    personality: str = ""
    clue_triggers: list[ClueTrigger] = Field(default_factory=list)


class TimelineEvent(BaseModel):
    time: str
    event: str


class Story(BaseModel):
    title: str
    setting: str
    victim: Victim
    suspects: list[Suspect]
    killer: str
    locations: list[str]
    clues: dict[str, list[str]] = Field(default_factory=dict)
    timeline: list[TimelineEvent] = Field(default_factory=list)

    def find_suspect(self, name: str) -> Suspect | None:
        for suspect in self.suspects:
            if suspect.name == name:
                return suspect
        return None


# ---------------------------------------------------------------------------
# Intro, clues, map
# ---------------------------------------------------------------------------

class DisplayData(BaseModel):
    victim_name: str
    last_known_location: str
    cause_of_death: str
    initial_suspects: list[str]
    main_location: str


class CaseIntro(BaseModel):
    intro_narrative: str
    journal_entry: str
    display_data: DisplayData


ClueType = Literal[
    "Physical Object",
    "Digital Record",
    "Biological Trace",
    "Witness Testimony",
    "Environmental Anomaly",
]
ClueCategory = Literal["direct", "indirect", "red_herring"]


class Discovery(BaseModel):
    requires: Literal["observation", "deep_search", "witness_help"]
    difficulty: int = Field(ge=1, le=5)
    requires_action: str | None = None


class Clue(BaseModel):
    id: str
    type: ClueType
    content: str
    category: ClueCategory
    discovery: Discovery
    related_suspects: list[str] = Field(default_factory=list)
    time_relevance: str | None = None


# location name -> clues found there
ClueSet = dict[str, list[Clue]]


class ImageRef(BaseModel):
    """Durable reference to an uploaded image."""

    url: str
    asset_id: str


class Location(BaseModel):
    id: str
    display_name: str
    description: str = ""
    connections: list[str] = Field(default_factory=list)
    image_ref: ImageRef | None = None  # None is a valid, recoverable state


class CaseMap(BaseModel):
    locations: list[Location]
    diagram: str = ""

    def find_location(self, location_id: str) -> Location | None:
        for location in self.locations:
            if location.id == location_id:
                return location
        return None


# ---------------------------------------------------------------------------
# Case bundle + stored case
# ---------------------------------------------------------------------------

class CaseBundle(BaseModel):
    """Everything the pipeline generated for one case. Never mutated once stored."""

    model_config = ConfigDict(frozen=True)

    story: Story
    enhanced_story: Story
    intro: CaseIntro
    clue_set: ClueSet
    map: CaseMap
    map_image_ref: ImageRef | None = None
    location_image_refs: list[ImageRef] = Field(default_factory=list)

    def find_clue(self, clue_id: str) -> tuple[str, Clue] | None:
        """The clue with `clue_id` and the name of the location it is found at."""
        for location, clues in self.clue_set.items():
            for clue in clues:
                if clue.id == clue_id:
                    return location, clue
        return None

    def asset_ids(self) -> list[str]:
        ids = [ref.asset_id for ref in self.location_image_refs]
        if self.map_image_ref is not None:
            ids.append(self.map_image_ref.asset_id)
        return ids


class CaseMetadata(BaseModel):
    owner_id: str
    title: str
    difficulty: Difficulty = "medium"
    estimated_duration: int = 0  # minutes
    tags: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)


class Verdict(BaseModel):
    """The detective's one accusation and how it was scored."""

    accused: str
    reasoning: str
    correct: bool
    correct_suspect: str
    score: int
    explanation: str
    submitted_at: datetime


class CaseRecord(BaseModel):
    """A stored case: metadata plus its bundle."""

    id: str
    owner_id: str
    title: str
    status: CaseStatus = "active"
    difficulty: Difficulty = "medium"
    estimated_duration: int = 0
    tags: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
    created_at: datetime
    completed_at: datetime | None = None
    verdict: Verdict | None = None
    bundle: CaseBundle


# ---------------------------------------------------------------------------
# Operations
# ---------------------------------------------------------------------------

class Operation(BaseModel):
    """One tracked background job, as seen by pollers."""

    id: str
    kind: str
    status: OperationStatus = "queued"
    progress_percent: int = 0
    status_message: str = ""
    started_at: datetime
    completed_at: datetime | None = None
    result: Any = None
    error: str | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES


# ---------------------------------------------------------------------------
# Investigation
# ---------------------------------------------------------------------------

class LocationVisit(BaseModel):
    visited_at_utc: datetime
    last_visit_date_local: str  # YYYY-MM-DD in IST


class InterrogationRecord(BaseModel):
    interrogated_at_utc: datetime
    last_interrogation_date_local: str  # YYYY-MM-DD in IST
    questions_asked: list[str] = Field(default_factory=list)
    responses: list[str] = Field(default_factory=list)


class InvestigationProgress(BaseModel):
    visited_locations: dict[str, LocationVisit] = Field(default_factory=dict)
    interrogated_suspects: dict[str, InterrogationRecord] = Field(default_factory=dict)
    discovered_clues: list[str] = Field(default_factory=list)  # set semantics
    current_day: int = 1
    version: int = 0


class Finding(BaseModel):
    """Append-only investigative fact."""

    id: str
    case_id: str
    source: FindingSource
    source_details: str
    text: str
    importance: Importance = "minor"
    is_new: bool = True
    created_at: datetime


class Note(BaseModel):
    id: str
    case_id: str
    page: int = 1
    content: str
    created_at: datetime
    updated_at: datetime
