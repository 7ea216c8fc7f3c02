"""Handlebars prompt templates for the generation steps.

Free-text values (names, settings, transcripts) are inserted with triple
braces so quotes and ampersands reach the generator unescaped.
"""

from collections.abc import Callable
from typing import Any

import pybars


_compiler = pybars.Compiler()
_cache: dict[str, Callable] = {}


class PromptError(Exception):
    """Raised when a Handlebars template fails to compile or render."""


# ── Custom Handlebars helpers ────────────────────────────


def _helper_join(this, items, separator=", "):
    """{{join motives ", "}} joins a list into one string."""
    return str(separator).join(str(item) for item in items or [])


def _helper_last(this, options, items, count):
    """{{#last array N}}...{{/last}} iterates over the last N items."""
    result = []
    for item in list(items or [])[-int(count):]:
        result.extend(options["fn"](item))
    return result


_HELPERS: dict[str, Callable] = {
    "join": _helper_join,
    "last": _helper_last,
}


def render_prompt(template_str: str, context: dict[str, Any]) -> str:
    """Compile and render a Handlebars template with the given context.

    Templates are cached by source string to avoid recompilation.
    """
    try:
        compiled = _cache.get(template_str)
        if compiled is None:
            compiled = _compiler.compile(template_str)
            _cache[template_str] = compiled
        return str(compiled(context, helpers=_HELPERS))
    except Exception as e:
        raise PromptError(f"Template error: {e}") from e


# ── Story ────────────────────────────────────────────────

VICTIM_PROMPT = """\
Create a murder victim profile for a {{{setting}}} with a {{{archetype}}} storyline.
Include: full name, profession relevant to the setting, the location where they \
were last seen, time of death (HH:MM) and cause of death.

Return ONLY a JSON object:
{
  "name": "<name of victim>",
  "profession": "<profession>",
  "last_known_location": "<where they were last seen>",
  "death_time_estimate": "<HH:MM>",
  "cause_of_death": "<cause of death>"
}
Make it creative but believable within the setting.\
"""

SUSPECTS_PROMPT = """\
Create {{count}} detailed suspects for a murder mystery in {{{setting}}} where \
{{{victim.name}}} ({{{victim.profession}}}) was killed at \
{{{victim.death_time_estimate}}} by {{{victim.cause_of_death}}}. \
Story archetype: {{{archetype}}}.

Return ONLY a JSON array. Each element:
{
  "name": "<full name>",
  "role": "<their role in the setting>",
  "alibi": "<specific alibi for the time of death>",
  "motives": ["<primary motive>", "<secondary motive>"],
  "is_killer": <true for exactly one suspect>,
  "personality": "<personality, quirks and mannerisms>"
}
Give every suspect at least one motive and exactly one suspect is_killer=true.\
"""

WORLD_PROMPT = """\
Design the crime scene for a murder mystery.

Setting: {{{setting}}}
Victim: {{{victim.name}}} ({{{victim.profession}}}), last seen at \
{{{victim.last_known_location}}}, killed at {{{victim.death_time_estimate}}} \
by {{{victim.cause_of_death}}}
Suspects:
{{#each suspects}}
- {{{name}}} ({{{role}}}){{#if is_killer}} (the killer){{/if}}: {{{alibi}}}
{{/each}}

Return ONLY a JSON object:
{
  "title": "<case title>",
  "locations": ["<4 to 6 distinct locations>"],
  "clues": {"<location>": ["<visually observable clue>", "..."]},
  "timeline": [{"time": "HH:MM", "event": "<what happened>"}]
}
Every key of "clues" must be one of "locations". Clues must be things a \
crime-scene photo could show. The timeline covers the hours around the murder.\
"""

CLUE_TRIGGERS_PROMPT = """\
You are generating clue triggers for a suspect in a murder investigation. \
Based on their profile, create 3-5 clues they might reveal during interrogation.

SUSPECT PROFILE:
- Name: {{{suspect.name}}}
- Role: {{{suspect.role}}}
- Personality: {{{suspect.personality}}}
- Alibi: {{{suspect.alibi}}}
- Motives: {{{join suspect.motives ", "}}}
- Is killer: {{#if suspect.is_killer}}YES{{else}}NO{{/if}}

CASE CONTEXT:
- Victim: {{{victim.name}}}
- Setting: {{{setting}}}
- Other suspects: {{{join others ", "}}}

Focus on visually observable things: objects they handled, visible actions, \
clothing, tools, traces of their presence. A killer's clues include red \
herrings and make critical clues hard to get.

Return ONLY a JSON array. Each element:
{
  "clue": "<what they reveal>",
  "trigger_type": "pressing" | "gentle" | "aggressive" | "sympathetic" | "specific_question",
  "trigger_level": <1-5>,
  "trigger_description": "<what the detective must do>",
  "is_red_herring": <true|false>,
  "importance": "critical" | "important" | "minor"
}\
"""

# ── Intro ────────────────────────────────────────────────

INTRO_NARRATIVE_PROMPT = """\
Create a compelling {{style}} detective story introduction for a murder mystery:

Setting: {{{story.setting}}}
Victim: {{{story.victim.name}}}, a {{{story.victim.profession}}}
Time of death: {{{story.victim.death_time_estimate}}}
Cause of death: {{{story.victim.cause_of_death}}}
Last known location: {{{story.victim.last_known_location}}}
{{#if detective}}Investigator: Detective {{{detective}}}
{{/if}}
Key suspects:
{{#each suspects}}
- {{{name}}} ({{{role}}}): {{{personality}}}. Claims: {{{alibi}}}
{{/each}}

Earlier events:
{{#last story.timeline 2}}
{{{time}}}: {{{event}}}
{{/last}}

Write 3-5 paragraphs in {{style}} style. Open with atmosphere, introduce the \
death with intrigue, hint at each suspect's possible involvement and end with \
urgency. Never reveal the killer.
Complexity: {{complexity}}\
"""

JOURNAL_PROMPT = """\
Create a concise two-sentence mission briefing for a {{style}} detective case.

Victim: {{{story.victim.name}}} ({{{story.victim.profession}}})
Setting: {{{story.setting}}}
Circumstances: found dead at {{{story.victim.last_known_location}}}, killed by \
{{{story.victim.cause_of_death}}}
{{#if detective}}Assigned detective: {{{detective}}}
{{/if}}
Case urgency: {{urgency}}

First sentence: the core fact of the murder. Second sentence: the \
investigative challenge. Return only the two sentences.\
"""

# ── Map ──────────────────────────────────────────────────

MAP_TOPOLOGY_PROMPT = """\
Given these locations in a {{{story.setting}}}:
{{#each locations}}
{{id}}: {{{name}}}
{{/each}}

Suggest logical connections between them based on the setting's layout and \
this timeline:
{{#each story.timeline}}
{{{time}}}: {{{event}}}
{{/each}}

Return ONLY a JSON array, one object per location:
{
  "id": "L1",
  "description": "<one or two sentences describing the place>",
  "connections": ["L2", "L3"]
}
Use only the provided ids. Every location connects to at least one other.\
"""

MAP_IMAGE_PROMPT = """\
Create a {{map_style}} architectural map or blueprint showing exactly \
{{count}} distinct {{structure}} in a {{{setting}}} setting. All structures \
connected by paths or corridors, {{hubs}} of them major hubs. Use a \
{{colors}} color scheme, a professional blueprint style, a simple compass \
rose and coordinate grid lines. NO TEXT OR LABELS.\
"""

LOCATION_IMAGE_PROMPT = """\
Crime scene investigation at {{{location}}} in {{{setting}}}. Professional \
forensic photography style. Evidence markers, police tape, forensic \
equipment. Realistic, high detail, photographic quality. No people visible, \
focus on the location and investigation setup. Context: the murder of \
{{{victim.name}}} ({{{victim.profession}}}).\
"""

# ── Investigation ────────────────────────────────────────

INTERROGATION_PROMPT = """\
You are writing a realistic interrogation between {{{detective}}} and \
{{{suspect.name}}}, a suspect in a murder investigation.

CASE CONTEXT:
- Victim: {{{victim.name}}} ({{{victim.profession}}})
- Setting: {{{setting}}}
- Suspect role: {{{suspect.role}}}
- Suspect personality: {{{suspect.personality}}}
- Suspect alibi: {{{suspect.alibi}}}
- Suspect motives: {{{join suspect.motives ", "}}}
- {{#if suspect.is_killer}}{{{suspect.name}}} IS the killer but will NOT confess; \
they are evasive and misleading when pressed.{{else}}{{{suspect.name}}} is \
innocent and helpful but may seem nervous.{{/if}}

DETECTIVE'S PLANNED QUESTIONS:
{{#each questions}}
- {{{this}}}
{{/each}}
{{#if previous}}
Questions asked in earlier sessions:
{{#each previous}}
- {{{this}}}
{{/each}}
{{/if}}

Format every line as "Name: words". No text before or after the conversation.\
"""

TRANSCRIPT_ANALYSIS_PROMPT = """\
You are a detective analysing an interrogation transcript from a murder \
investigation. Extract key findings, new information and suspicious elements.

CASE CONTEXT:
- Victim: {{{victim.name}}}
- Setting: {{{setting}}}
- Suspect: {{{suspect.name}}} ({{{suspect.role}}})
- Existing findings: {{#if existing}}{{{join existing "; "}}}{{else}}None{{/if}}

TRANSCRIPT:
{{{transcript}}}

Return ONLY a JSON object:
{
  "findings": [
    {"finding": "<what was discovered>", "importance": "critical" | "important" | "minor", "is_new": true}
  ]
}
Only include information that is actually new.\
"""


LOCATION_SEARCH_PROMPT = """\
You are a forensic analyst helping a detective search a crime scene.

LOCATION: {{{location}}} ({{{setting}}})

DETECTIVE'S OBSERVATION: "{{{observation}}}"

EVIDENCE PRESENT AT THIS LOCATION:
{{#each clues}}{{@index}}. {{{content}}}
{{/each}}
Decide which pieces of evidence (if any) the observation actually identifies. \
Do not reward vague guesses.

Return ONLY a JSON object:
{
  "matched_clue_indexes": [<0-based indexes of the identified evidence>],
  "analysis": "<feedback on what the detective noticed and what it suggests>"
}\
"""
