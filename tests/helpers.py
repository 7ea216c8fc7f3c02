"""Shared test doubles: a scripted generator, an in-memory uploader, a
pinned clock, and a ready-made case for investigation tests."""

import json
from datetime import datetime, timedelta, timezone

from obscura.errors import UpstreamGenerationError
from obscura.models import (
    CaseBundle,
    CaseIntro,
    CaseMap,
    CaseMetadata,
    DisplayData,
    ImageRef,
    Location,
    Story,
)
from obscura.pipeline.steps import build_clue_set, mermaid_diagram
from obscura.storage import Storage

IST = timezone(timedelta(hours=5, minutes=30))

VICTIM = {
    "name": "Dr. Elena Vasquez",
    "profession": "Xenobiologist",
    "last_known_location": "Hydroponics Bay",
    "death_time_estimate": "22:40",
    "cause_of_death": "Poisoning with a synthetic toxin",
}

SUSPECTS = [
    {
        "name": "Marcus Chen",
        "role": "Colony Administrator",
        "alibi": "Reviewing supply manifests in the command module",
        "motives": ["Budget dispute", "Career rivalry"],
        "is_killer": True,
        "personality": "Calm and calculating",
    },
    {
        "name": "Priya Nair",
        "role": "Chief Engineer",
        "alibi": "Repairing the oxygen scrubber",
        "motives": ["Research credit"],
        "is_killer": False,
        "personality": "Blunt, impatient",
    },
    {
        "name": "Tomas Okafor",
        "role": "Medic",
        "alibi": "On shift in the infirmary",
        "motives": ["Old grudge", "Debt", "Jealousy"],
        "is_killer": False,
        "personality": "Nervous talker",
    },
    {
        "name": "Lena Ivanova",
        "role": "Security Officer",
        "alibi": "Patrolling the outer ring",
        "motives": [],
        "is_killer": False,
        "personality": "Quiet",
    },
]

WORLD = {
    "title": "Death in the Red Dome",
    "locations": ["Hydroponics Bay", "Command Module", "Infirmary"],
    "clues": {
        "Hydroponics Bay": [
            "A shattered vial under the nutrient racks",
            "Blood stain on the airlock handle",
        ],
        "Command Module": ["Access log on a computer showing Marcus Chen at 22:30"],
        "Infirmary": ["A missing toxin ampoule signed out by Tomas Okafor"],
    },
    "timeline": [
        {"time": "22:00", "event": "Elena enters the hydroponics bay"},
        {"time": "22:40", "event": "Time of death"},
    ],
}

TRIGGERS = [
    {
        "clue": "Saw Marcus near the lab",
        "trigger_type": "pressing",
        "trigger_level": 2,
        "trigger_description": "Ask about 22:30",
        "is_red_herring": False,
        "importance": "important",
    }
]

TOPOLOGY = [
    {"id": "L1", "description": "Humid rows of crops", "connections": ["L2"]},
    {"id": "L2", "description": "Screens and consoles", "connections": ["L1", "L3"]},
    {"id": "L3", "description": "Sterile and cramped", "connections": ["L2"]},
]

TRANSCRIPT = (
    "Detective: Where were you at 22:40?\n"
    "Priya Nair: Fixing the scrubber, like I said."
)

ANALYSIS = {
    "findings": [
        {"finding": "Priya was alone at the scrubber", "importance": "important", "is_new": True},
    ]
}

SEARCH = {
    "matched_clue_indexes": [0],
    "analysis": "The vial matches the toxin that killed Elena.",
}

DEFAULT_RESPONSES = {
    "story.victim": VICTIM,
    "story.suspects": SUSPECTS,
    "story.world": WORLD,
    "triggers": TRIGGERS,
    "intro.narrative": "Red dust drifted over the dome the night Elena died.",
    "intro.journal": "Elena Vasquez was poisoned. Find out who did it.",
    "map.topology": TOPOLOGY,
    "interrogation": TRANSCRIPT,
    "transcript_analysis": ANALYSIS,
    "location_search": SEARCH,
}


class StubGenerator:
    """Answers by stage name; falls back to the part before the first dot.

    A response may be a str (returned as-is), JSON-able data (dumped) or an
    exception (raised). Image stages listed in `failing_images` raise.
    """

    def __init__(self, responses=None, failing_images=(), image=b"\x89PNG stub"):
        self.responses = {**DEFAULT_RESPONSES, **(responses or {})}
        self.failing_images = set(failing_images)
        self.image = image
        self.calls: list[tuple[str, str]] = []

    def stages(self) -> list[str]:
        return [stage for stage, _ in self.calls]

    async def generate(self, stage: str, prompt: str) -> str:
        self.calls.append((stage, prompt))
        for key in (stage, stage.split(".")[0]):
            if key in self.responses:
                value = self.responses[key]
                break
        else:
            raise KeyError(f"No stub response for {stage}")
        if isinstance(value, Exception):
            raise value
        return value if isinstance(value, str) else json.dumps(value)

    async def generate_image(self, stage: str, prompt: str) -> bytes:
        self.calls.append((stage, prompt))
        if stage in self.failing_images:
            raise UpstreamGenerationError(f"Image backend down ({stage})")
        return self.image


class StubUploader:
    def __init__(self):
        self.uploads: dict[str, bytes] = {}
        self.deleted: list[str] = []

    async def upload(self, data: bytes, name: str, folder: str) -> ImageRef:
        asset_id = f"{folder}/{name}"
        self.uploads[asset_id] = data
        return ImageRef(url=f"https://img.test/{asset_id}.png", asset_id=asset_id)

    async def delete(self, asset_id: str) -> None:
        self.deleted.append(asset_id)
        self.uploads.pop(asset_id, None)


class FixedClock:
    """Callable clock pinned to `now` until moved with advance()."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


def ist(year, month, day, hour=0, minute=0) -> datetime:
    return datetime(year, month, day, hour, minute, tzinfo=IST)


def make_story() -> Story:
    return Story(
        title=WORLD["title"],
        setting="Cyberpunk Mars Colony",
        victim=VICTIM,
        suspects=SUSPECTS,
        killer="Marcus Chen",
        locations=WORLD["locations"],
        clues=WORLD["clues"],
        timeline=WORLD["timeline"],
    )


def make_bundle() -> CaseBundle:
    story = make_story()
    locations = [
        Location(
            id=node["id"],
            display_name=name,
            description=node["description"],
            connections=node["connections"],
        )
        for node, name in zip(TOPOLOGY, story.locations)
    ]
    return CaseBundle(
        story=story,
        enhanced_story=story,
        intro=CaseIntro(
            intro_narrative="Red dust.",
            journal_entry="Find the killer.",
            display_data=DisplayData(
                victim_name=story.victim.name,
                last_known_location=story.victim.last_known_location,
                cause_of_death=story.victim.cause_of_death,
                initial_suspects=["Marcus Chen", "Tomas Okafor", "Priya Nair"],
                main_location=story.setting,
            ),
        ),
        clue_set=build_clue_set(story),
        map=CaseMap(locations=locations, diagram=mermaid_diagram(locations)),
    )


def store_case(storage: Storage, owner_id: str = "user-1", title: str = "Death in the Red Dome") -> str:
    return storage.put_case(make_bundle(), CaseMetadata(owner_id=owner_id, title=title))
