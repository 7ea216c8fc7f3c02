"""Turning detective work into findings: transcript and scene analysis."""

import logging

from pydantic import BaseModel
from pydantic import ValidationError as ModelValidationError

from obscura.errors import UpstreamGenerationError
from obscura.llm import Generator
from obscura.models import Clue, Importance, Story, Suspect
from obscura.pipeline.parsing import expect_list, expect_object, parse_json_output
from obscura.prompts import LOCATION_SEARCH_PROMPT, TRANSCRIPT_ANALYSIS_PROMPT, render_prompt

logger = logging.getLogger(__name__)


class AnalyzedFinding(BaseModel):
    finding: str
    importance: Importance = "minor"
    is_new: bool = True


def fallback_finding(suspect: Suspect) -> AnalyzedFinding:
    return AnalyzedFinding(
        finding=f"Interrogated {suspect.name}. Nothing notable stood out in their answers.",
        importance="minor",
    )


async def analyze_transcript(
    generator: Generator,
    story: Story,
    suspect: Suspect,
    transcript: str,
    existing: list[str],
) -> list[AnalyzedFinding]:
    """Extract findings from a transcript.

    Never raises for generator trouble: an unusable analysis yields a single
    minor finding so the interrogation itself still succeeds.
    """
    prompt = render_prompt(TRANSCRIPT_ANALYSIS_PROMPT, {
        "victim": story.victim.model_dump(),
        "setting": story.setting,
        "suspect": suspect.model_dump(),
        "existing": existing,
        "transcript": transcript,
    })
    try:
        text = await generator.generate("transcript_analysis", prompt)
        items = expect_list(parse_json_output(text, "transcript_analysis"), "transcript_analysis")
    except UpstreamGenerationError as e:
        logger.warning("Transcript analysis for %s failed: %s", suspect.name, e)
        return [fallback_finding(suspect)]

    findings = []
    for item in items:
        try:
            finding = AnalyzedFinding.model_validate(item)
        except ModelValidationError:
            logger.debug("Skipping malformed finding: %r", item)
            continue
        if finding.finding.strip() and finding.finding not in existing:
            findings.append(finding)
    return findings or [fallback_finding(suspect)]


def keyword_matches(observation: str, clues: list[Clue]) -> list[Clue]:
    """Clues sharing a word longer than three letters with the observation."""
    words = [w for w in observation.lower().split() if len(w) > 3]
    return [c for c in clues if any(w in c.content.lower() for w in words)]


async def analyze_observation(
    generator: Generator,
    story: Story,
    location_name: str,
    observation: str,
    clues: list[Clue],
) -> tuple[list[Clue], str]:
    """Decide which of `clues` a detective's observation identifies.

    Returns the matched clues and a line of feedback. When the analysis
    cannot be generated or parsed, a keyword match is used instead.
    """
    if not clues:
        return [], f"There is nothing more to find at {location_name}."

    prompt = render_prompt(LOCATION_SEARCH_PROMPT, {
        "location": location_name,
        "setting": story.setting,
        "observation": observation,
        "clues": [c.model_dump() for c in clues],
    })
    try:
        text = await generator.generate("location_search", prompt)
        data = expect_object(parse_json_output(text, "location_search"), "location_search")
    except UpstreamGenerationError as e:
        logger.warning("Search analysis at %s failed, matching keywords: %s", location_name, e)
        fallback = keyword_matches(observation, clues)
        hint = (
            "You may have identified some evidence!" if fallback
            else "Keep looking for more details."
        )
        return fallback, f'Your observation "{observation}" has been noted. {hint}'

    indexes = data.get("matched_clue_indexes")
    matches: list[Clue] = []
    for index in indexes if isinstance(indexes, list) else []:
        if isinstance(index, int) and not isinstance(index, bool) and 0 <= index < len(clues):
            if clues[index] not in matches:
                matches.append(clues[index])
    analysis = data.get("analysis")
    return matches, analysis if isinstance(analysis, str) and analysis else "Analysis completed."
