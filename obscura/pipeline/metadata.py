"""Derived case metadata: play-time estimate and descriptive tags."""

from obscura.models import ClueSet, Story

_BASE_MINUTES = {"easy": 15, "medium": 30, "hard": 45}

_CAUSE_TAGS = [
    ("poisoning", ("poison", "toxin", "venom")),
    ("firearms", ("gun", "shot", "bullet")),
    ("stabbing", ("stab", "knife", "blade")),
    ("blunt-force", ("blunt", "bludgeon", "struck")),
    ("strangulation", ("strangl", "choke", "asphyx")),
]


def estimate_duration(difficulty: str, clue_set: ClueSet, suspect_count: int) -> int:
    """Minutes: base for the difficulty + 2 per clue + 3 per suspect."""
    clue_count = sum(len(clues) for clues in clue_set.values())
    return _BASE_MINUTES.get(difficulty, 30) + clue_count * 2 + suspect_count * 3


def generate_tags(story: Story) -> list[str]:
    tags = [
        story.victim.profession.strip().lower(),
        story.setting.split(",")[0].strip().lower(),
    ]
    cause = story.victim.cause_of_death.lower()
    tags.extend(tag for tag, keywords in _CAUSE_TAGS if any(k in cause for k in keywords))
    tags.append("complex" if len(story.suspects) > 3 else "simple")
    tags.extend(["mystery", "investigation", "detective"])

    seen: set[str] = set()
    result = []
    for tag in tags:
        if tag and tag not in seen:
            seen.add(tag)
            result.append(tag)
    return result
