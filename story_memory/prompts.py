"""Handlebars prompt rendering for the relevance classifier and the narrator.

Templates use triple braces for free text; pybars HTML-escapes `{{ }}` and
player input has to reach the classifier verbatim.
"""

from collections.abc import Callable
from typing import Any

import pybars

from .models import Consequence


_compiler = pybars.Compiler()
_cache: dict[str, Callable] = {}


class PromptError(Exception):
    """Raised when a Handlebars template fails to compile or render."""


def render_prompt(template_str: str, context: dict[str, Any]) -> str:
    """Compile and render a Handlebars template with the given context.

    Templates are cached by source string to avoid recompilation.
    """
    try:
        compiled = _cache.get(template_str)
        if compiled is None:
            compiled = _compiler.compile(template_str)
            _cache[template_str] = compiled
        return str(compiled(context))
    except Exception as e:
        raise PromptError(f"Template error: {e}") from e


# ── Templates ────────────────────────────────────────────

RELEVANCE_PROMPT = """\
You are checking if any pending consequences should trigger based on a \
player's action in a D&D game.

## Player Action
"{{{player_input}}}"

## Current Location
{{{current_location}}}

## Pending Consequences
{{{consequences}}}

## Instructions
Analyze the player's action and determine:
1. Which consequences (if any) should TRIGGER based on this action
2. Which entities/NPCs might be relevant even if not explicitly mentioned

A consequence should trigger if the player's action matches or is closely \
related to its trigger condition. Be generous with semantic matching - \
"I enter the village" should trigger a consequence about "entering \
Riverside" if Riverside is a village.

Respond with ONLY a JSON object (no markdown, no explanation outside the JSON):
{
  "triggered_consequences": ["id1", "id2"],
  "relevant_entities": ["Baron Aldric", "Town Guards"],
  "explanation": "Brief explanation of matches"
}

If nothing is relevant, return empty arrays.\
"""

TRIGGERED_CONSEQUENCES_PROMPT = """\
## TRIGGERED CONSEQUENCES - ACT ON THESE!
The following consequences have been triggered by the player's action:

{{#each consequences}}- **{{{severity}}}** ({{{trigger}}}): {{{effect}}}
{{/each}}
You MUST incorporate these consequences into your response!
"""


def build_relevance_prompt(player_input: str, current_location: str, consequences: str) -> str:
    return render_prompt(RELEVANCE_PROMPT, {
        "player_input": player_input,
        "current_location": current_location,
        "consequences": consequences,
    })


def build_triggered_context(consequences: list[Consequence]) -> str:
    """Narrator prompt block for consequences that just fired; empty when none did."""
    if not consequences:
        return ""
    return render_prompt(TRIGGERED_CONSEQUENCES_PROMPT, {
        "consequences": [
            {
                "severity": c.severity.capitalize(),
                "trigger": c.trigger_description,
                "effect": c.consequence_description,
            }
            for c in consequences
        ],
    })
