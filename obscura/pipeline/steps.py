"""Generation steps.

Each step takes the generator it should call and returns a typed artifact.
Steps know nothing about operations or failure policy: they raise
UpstreamGenerationError and the orchestrator decides whether that aborts
the case or only degrades it.
"""

from __future__ import annotations

import asyncio
import logging
import random
from typing import Any

from pydantic import BaseModel
from pydantic import ValidationError as ModelValidationError

from obscura.errors import UpstreamGenerationError
from obscura.llm import Generator
from obscura.models import (
    CaseIntro,
    CaseMap,
    Clue,
    ClueSet,
    ClueTrigger,
    Discovery,
    DisplayData,
    ImageRef,
    Location,
    Story,
    Suspect,
    TimelineEvent,
    Victim,
)
from obscura.prompts import (
    CLUE_TRIGGERS_PROMPT,
    INTRO_NARRATIVE_PROMPT,
    JOURNAL_PROMPT,
    LOCATION_IMAGE_PROMPT,
    MAP_IMAGE_PROMPT,
    MAP_TOPOLOGY_PROMPT,
    SUSPECTS_PROMPT,
    VICTIM_PROMPT,
    WORLD_PROMPT,
    render_prompt,
)
from obscura.uploads import Uploader

from .parsing import expect_list, expect_object, parse_json_output

logger = logging.getLogger(__name__)

SETTINGS = [
    "Cyberpunk Mars Colony",
    "Victorian Manor",
    "Space Station Outpost",
    "Tropical Island Resort",
    "Underground Research Facility",
    "Luxury Cruise Ship",
    "Ancient Archaeological Site",
    "High-Tech Corporate Tower",
    "Remote Mountain Lodge",
    "Desert Oasis Casino",
]

STORY_ARCHETYPES = [
    "Love Triangle Gone Wrong",
    "Corporate Espionage",
    "Revenge Plot",
    "Inheritance Dispute",
    "Scientific Discovery Cover-up",
    "Political Conspiracy",
    "Personal Vendetta",
    "Blackmail Gone Wrong",
    "Identity Theft Scheme",
    "Whistleblower Silencing",
]

LOCATION_FOLDER = "obscura/locations"
MAP_FOLDER = "obscura/maps"


def _validate(model: type[BaseModel], data: Any, stage: str):
    try:
        return model.model_validate(data)
    except ModelValidationError as e:
        raise UpstreamGenerationError(f"Malformed {stage} output: {e.error_count()} errors") from e


async def _generate_json(generator: Generator, stage: str, prompt: str) -> Any:
    return parse_json_output(await generator.generate(stage, prompt), stage)


# ---------------------------------------------------------------------------
# Step 1: base narrative
# ---------------------------------------------------------------------------

async def generate_story(
    generator: Generator, rng: random.Random | None = None, suspect_count: int = 4
) -> Story:
    """Victim, then suspects, then locations/clues/timeline; each reads the last."""
    rng = rng or random.Random()
    setting = rng.choice(SETTINGS)
    archetype = rng.choice(STORY_ARCHETYPES)

    data = await _generate_json(
        generator, "story.victim",
        render_prompt(VICTIM_PROMPT, {"setting": setting, "archetype": archetype}),
    )
    victim: Victim = _validate(Victim, expect_object(data, "story.victim"), "story.victim")

    data = await _generate_json(
        generator, "story.suspects",
        render_prompt(SUSPECTS_PROMPT, {
            "count": suspect_count,
            "setting": setting,
            "archetype": archetype,
            "victim": victim.model_dump(),
        }),
    )
    suspects = [
        _validate(Suspect, s, "story.suspects") for s in expect_list(data, "story.suspects")
    ]
    killers = [s for s in suspects if s.is_killer]
    if not killers:
        raise UpstreamGenerationError("Generated suspects contain no killer")
    killer = killers[0]
    for extra in killers[1:]:
        extra.is_killer = False

    data = await _generate_json(
        generator, "story.world",
        render_prompt(WORLD_PROMPT, {
            "setting": setting,
            "victim": victim.model_dump(),
            "suspects": [s.model_dump() for s in suspects],
        }),
    )
    world = expect_object(data, "story.world")
    locations: list[str] = []
    for name in world.get("locations") or []:
        name = str(name).strip()
        if name and name not in locations:
            locations.append(name)
    if not locations:
        raise UpstreamGenerationError("Generated story has no locations")
    raw_clues = world.get("clues") or {}
    clues = {
        loc: [str(c) for c in raw_clues.get(loc, []) if str(c).strip()]
        for loc in locations
    }
    timeline = [
        _validate(TimelineEvent, t, "story.timeline") for t in world.get("timeline") or []
    ]

    title = str(world.get("title") or "").strip()
    if not title:
        title = f"The {victim.profession} of {setting}: {victim.name}'s Case"

    return Story(
        title=title,
        setting=setting,
        victim=victim,
        suspects=suspects,
        killer=killer.name,
        locations=locations,
        clues=clues,
        timeline=timeline,
    )


# ---------------------------------------------------------------------------
# Step 2: clue-trigger annotations
# ---------------------------------------------------------------------------

async def _suspect_triggers(generator: Generator, story: Story, suspect: Suspect) -> list[ClueTrigger]:
    stage = f"triggers.{suspect.name}"
    prompt = render_prompt(CLUE_TRIGGERS_PROMPT, {
        "suspect": suspect.model_dump(),
        "victim": story.victim.model_dump(),
        "setting": story.setting,
        "others": [s.name for s in story.suspects if s.name != suspect.name],
    })
    data = await _generate_json(generator, stage, prompt)
    return [_validate(ClueTrigger, t, stage) for t in expect_list(data, stage)]


async def enhance_story(generator: Generator, story: Story) -> Story:
    """Return a copy of `story` with every suspect's clue triggers filled in."""
    triggers = await asyncio.gather(
        *(_suspect_triggers(generator, story, s) for s in story.suspects)
    )
    suspects = [
        suspect.model_copy(update={"clue_triggers": suspect_triggers})
        for suspect, suspect_triggers in zip(story.suspects, triggers)
    ]
    return story.model_copy(update={"suspects": suspects})


# ---------------------------------------------------------------------------
# Step 3a: case introduction
# ---------------------------------------------------------------------------

_COMPLEXITY = {
    "easy": "Keep language straightforward and clues obvious. Focus on clear connections.",
    "medium": "Use moderate complexity. Balance obvious and subtle hints.",
    "hard": "Use sophisticated language and layered narrative. Embed subtle clues and misdirection.",
}

_URGENCY = {
    "easy": "You have plenty of time to investigate thoroughly.",
    "medium": "Time is limited, but manageable.",
    "hard": "Time is critically short, and the pressure is intense.",
}


def narrative_style(setting: str) -> str:
    lower = setting.lower()
    if any(k in lower for k in ("space", "mars", "colony")):
        return "sci-fi"
    if any(k in lower for k in ("manor", "mansion", "estate")):
        return "gothic"
    if any(k in lower for k in ("island", "resort")):
        return "tropical noir"
    return "noir"


def initial_suspects(story: Story) -> list[str]:
    """The killer plus the two other suspects with the most motives."""
    others = sorted(
        (s for s in story.suspects if s.name != story.killer),
        key=lambda s: len(s.motives),
        reverse=True,
    )
    return [story.killer] + [s.name for s in others[:2]]


async def compose_intro(
    generator: Generator, story: Story, difficulty: str, detective: str | None = None
) -> CaseIntro:
    style = narrative_style(story.setting)
    names = initial_suspects(story)
    ctx = {
        "story": story.model_dump(),
        "style": style,
        "detective": detective or "",
        "suspects": [story.find_suspect(n).model_dump() for n in names],
        "complexity": _COMPLEXITY.get(difficulty, _COMPLEXITY["medium"]),
        "urgency": _URGENCY.get(difficulty, _URGENCY["medium"]),
    }
    narrative, journal = await asyncio.gather(
        generator.generate("intro.narrative", render_prompt(INTRO_NARRATIVE_PROMPT, ctx)),
        generator.generate("intro.journal", render_prompt(JOURNAL_PROMPT, ctx)),
    )
    return CaseIntro(
        intro_narrative=narrative.strip(),
        journal_entry=journal.strip(),
        display_data=DisplayData(
            victim_name=story.victim.name,
            last_known_location=story.victim.last_known_location,
            cause_of_death=story.victim.cause_of_death,
            initial_suspects=names,
            main_location=story.setting.split(",")[0].strip(),
        ),
    )


# ---------------------------------------------------------------------------
# Step 3b: structured clue set
# ---------------------------------------------------------------------------

_TYPE_KEYWORDS: list[tuple[str, tuple[str, ...]]] = [
    ("Biological Trace", ("blood", "stain")),
    ("Digital Record", ("phone", "camera", "computer", "screen", "device", "footage")),
    ("Witness Testimony", ("witness", "saw", "heard", "testimony", "observed")),
    ("Environmental Anomaly", (
        "footprint", "tire track", "handprint", "trampled", "disturbed", "mud",
        "dirt", "broken", "shattered", "overturned", "moved", "displaced",
        "burn", "scorch", "melted",
    )),
]

_CATEGORY_DIFFICULTY = {"direct": 4, "indirect": 3, "red_herring": 2}


def categorize_clue(story: Story, text: str) -> str:
    lower = text.lower()
    if story.killer.lower() in lower:
        return "direct"
    if any(s.name.lower() in lower for s in story.suspects if s.name != story.killer):
        return "red_herring"
    return "indirect"


def clue_type(text: str) -> str:
    lower = text.lower()
    for name, keywords in _TYPE_KEYWORDS:
        if any(k in lower for k in keywords):
            return name
    return "Physical Object"


def discovery_for(category: str, ctype: str) -> Discovery:
    difficulty = _CATEGORY_DIFFICULTY[category]
    if ctype == "Biological Trace":
        return Discovery(
            requires="observation", difficulty=min(difficulty + 1, 5),
            requires_action="Careful visual examination of stains and marks",
        )
    if ctype == "Digital Record":
        return Discovery(
            requires="deep_search", difficulty=difficulty,
            requires_action="Examine and potentially access electronic device",
        )
    if ctype == "Witness Testimony":
        return Discovery(
            requires="witness_help", difficulty=difficulty,
            requires_action="Build trust and ask questions",
        )
    if ctype == "Environmental Anomaly":
        return Discovery(
            requires="observation", difficulty=difficulty,
            requires_action="Observe environmental disturbances and disruptions",
        )
    return Discovery(
        requires="deep_search", difficulty=difficulty,
        requires_action="Search area thoroughly for physical evidence",
    )


def build_clue_set(story: Story) -> ClueSet:
    """Structure the enhanced story's clues per location.

    Reads the suspects' trigger annotations: a suspect is related to a clue
    when the clue names them or matches one of their triggers.
    """
    clue_set: ClueSet = {}
    counter = 0
    for location in story.locations:
        clues: list[Clue] = []
        for text in story.clues.get(location, []):
            counter += 1
            lower = text.lower()
            category = categorize_clue(story, text)
            ctype = clue_type(text)
            related = [
                s.name for s in story.suspects
                if s.name.lower() in lower
                or any(t.clue.lower() == lower for t in s.clue_triggers)
            ]
            time_relevance = next(
                (e.time for e in story.timeline if e.event.lower() in lower), None
            )
            clues.append(Clue(
                id=f"clue-{counter}",
                type=ctype,
                content=text,
                category=category,
                discovery=discovery_for(category, ctype),
                related_suspects=related,
                time_relevance=time_relevance,
            ))
        clue_set[location] = clues
    return clue_set


# ---------------------------------------------------------------------------
# Step 3c: location map (topology + descriptions)
# ---------------------------------------------------------------------------

def _chain(ids: list[str]) -> dict[str, list[str]]:
    links: dict[str, list[str]] = {i: [] for i in ids}
    for a, b in zip(ids, ids[1:]):
        links[a].append(b)
        links[b].append(a)
    return links


def _link(links: dict[str, list[str]], a: str, b: str) -> None:
    if b not in links[a]:
        links[a].append(b)
    if a not in links[b]:
        links[b].append(a)


def mermaid_diagram(locations: list[Location]) -> str:
    lines = ["graph TD"]
    for loc in locations:
        label = loc.display_name.replace('"', "'")
        lines.append(f'    {loc.id}["{label}"]')
    seen: set[tuple[str, str]] = set()
    for loc in locations:
        for other in loc.connections:
            edge = tuple(sorted((loc.id, other)))
            if edge not in seen:
                seen.add(edge)
                lines.append(f"    {edge[0]} --- {edge[1]}")
    return "\n".join(lines)


async def generate_map(generator: Generator, story: Story) -> CaseMap:
    ids = [f"L{i + 1}" for i in range(len(story.locations))]
    names = dict(zip(ids, story.locations))
    prompt = render_prompt(MAP_TOPOLOGY_PROMPT, {
        "story": story.model_dump(),
        "locations": [{"id": i, "name": n} for i, n in names.items()],
    })
    text = await generator.generate("map.topology", prompt)

    descriptions: dict[str, str] = {}
    links: dict[str, list[str]] = {i: [] for i in ids}
    try:
        nodes = expect_list(parse_json_output(text, "map.topology"), "map.topology")
    except UpstreamGenerationError:
        logger.warning("Map topology unparseable, falling back to a chain of locations")
        nodes = []
    for node in nodes:
        if not isinstance(node, dict) or node.get("id") not in names:
            continue
        node_id = node["id"]
        descriptions[node_id] = str(node.get("description") or "")
        for other in node.get("connections") or []:
            if other in names and other != node_id:
                _link(links, node_id, other)

    # isolated locations get their chain neighbours
    fallback = _chain(ids)
    for loc_id in ids:
        if not links[loc_id]:
            for other in fallback[loc_id]:
                _link(links, loc_id, other)

    locations = [
        Location(
            id=loc_id,
            display_name=names[loc_id],
            description=descriptions.get(loc_id, ""),
            connections=links[loc_id],
        )
        for loc_id in ids
    ]
    return CaseMap(locations=locations, diagram=mermaid_diagram(locations))


# ---------------------------------------------------------------------------
# Steps 4 and 5: images
# ---------------------------------------------------------------------------

async def render_location_image(
    generator: Generator,
    uploader: Uploader,
    story: Story,
    location: Location,
    name: str,
) -> ImageRef:
    prompt = render_prompt(LOCATION_IMAGE_PROMPT, {
        "location": location.display_name,
        "setting": story.setting,
        "victim": story.victim.model_dump(),
    })
    image = await generator.generate_image(f"location_image.{location.id}", prompt)
    return await uploader.upload(image, name, LOCATION_FOLDER)


def _map_style(setting: str) -> dict[str, str]:
    lower = setting.lower()
    if "mars" in lower or "space" in lower:
        return {"map_style": "futuristic", "colors": "red-tinted", "structure": "domes and modules"}
    if "manor" in lower or "mansion" in lower:
        return {"map_style": "vintage", "colors": "sepia", "structure": "Victorian rooms"}
    if "island" in lower or "resort" in lower:
        return {"map_style": "tropical", "colors": "vibrant", "structure": "resort facilities"}
    return {"map_style": "modern", "colors": "cool", "structure": "buildings"}


async def render_map_image(
    generator: Generator,
    uploader: Uploader,
    story: Story,
    case_map: CaseMap,
    name: str,
) -> ImageRef:
    prompt = render_prompt(MAP_IMAGE_PROMPT, {
        **_map_style(story.setting),
        "setting": story.setting,
        "count": len(case_map.locations),
        "hubs": sum(1 for loc in case_map.locations if len(loc.connections) > 2),
    })
    image = await generator.generate_image("map_image", prompt)
    return await uploader.upload(image, name, MAP_FOLDER)
