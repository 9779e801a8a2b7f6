from __future__ import annotations

from dataclasses import dataclass
from typing import Mapping, Sequence

from ai_designer.services.chat_intent import prompt_similarity
from ai_designer.services.theme_parser import BLOCK_DELIMITER
from ai_designer.services.theme_sections import (
    DEFAULT_THEME_VARIABLES,
    SECTION_DESCRIPTIONS,
    SECTION_VARIABLES,
    SectionKind,
    filter_theme_variables,
)

REFERENCE_PALETTE: dict[str, str] = {
    "blue": "217 91% 60%",
    "indigo": "239 84% 67%",
    "purple": "270 80% 60%",
    "pink": "330 81% 60%",
    "red": "0 84% 60%",
    "orange": "25 95% 53%",
    "amber": "38 92% 50%",
    "green": "142 71% 45%",
    "teal": "173 80% 40%",
    "slate": "215 25% 27%",
    "black": "222 47% 8%",
    "white": "0 0% 100%",
}

CAPABILITY_HINTS: tuple[str, ...] = (
    "bold / vibrant -> the COLOR also becomes the primary and accent color",
    "rounded / pill -> larger corner radius",
    "shadow -> soft drop shadow",
    "glass / blur -> frosted glass background",
    "gradient -> two-stop gradient starting at the COLOR",
    "glow / neon -> colored glow",
    "hover / lift -> lift on hover",
)

SIMILARITY_THRESHOLD = 0.3
MIN_SIMILAR_FAILURES = 2
HISTORY_CONTEXT_LIMIT = 10


@dataclass(frozen=True)
class HistoryEntry:
    prompt: str
    applied: bool


def _theme_context(current_variables: Mapping[str, str] | None) -> str:
    variables = filter_theme_variables(current_variables)
    if not variables:
        lines = [f"  {key}: {value}" for key, value in DEFAULT_THEME_VARIABLES.items()]
        return "CURRENT THEME: platform defaults (no customizations yet)\n" + "\n".join(lines)
    lines = [f"  {key}: {value}" for key, value in sorted(variables.items())]
    return (
        "CURRENT THEME (preserve everything the user does not ask to change):\n" + "\n".join(lines)
    )


def _sections_context() -> str:
    lines = ["STORE SECTIONS (use these exact names in SECTION lines):"]
    for kind in SectionKind:
        slots = ", ".join(SECTION_VARIABLES[kind])
        lines.append(
            f'- {kind.value} [data-ai="{kind.value}"]: {SECTION_DESCRIPTIONS[kind]} (COLOR sets {SECTION_VARIABLES[kind][0]}; uses {slots})'
        )
    return "\n".join(lines)


def _palette_context() -> str:
    lines = ["REFERENCE COLORS (HSL, no hsl() wrapper):"]
    lines.extend(f"- {name}: {value}" for name, value in REFERENCE_PALETTE.items())
    return "\n".join(lines)


def _history_context(history: Sequence[HistoryEntry], current_prompt: str) -> str:
    if not history:
        return ""
    recent = list(history)[:HISTORY_CONTEXT_LIMIT]
    parts = [f"RECENT DESIGN REQUESTS (last {len(recent)}):"]
    for index, entry in enumerate(recent, start=1):
        parts.append(f'{index}. "{entry.prompt}" (applied: {"yes" if entry.applied else "no"})')

    similar_failures = [
        entry
        for entry in history
        if not entry.applied and prompt_similarity(current_prompt, entry.prompt) > SIMILARITY_THRESHOLD
    ]
    if len(similar_failures) >= MIN_SIMILAR_FAILURES:
        parts.append("")
        parts.append(
            f"WARNING: a similar request was attempted {len(similar_failures)} times and the owner did not apply it. "
            "Take a clearly different approach this time (different sections, colors or effects)."
        )
        for entry in similar_failures[:2]:
            parts.append(f'- rejected: "{entry.prompt}"')
    return "\n".join(parts)


def output_grammar() -> str:
    return "\n".join(
        [
            "RESPONSE FORMAT (plain text, NOT JSON, no markdown):",
            "SUMMARY: one sentence describing the overall change",
            "SECTION: <section name>",
            "CHANGE: <what changes in this section>",
            "COLOR: <H S% L%>   (optional, e.g. 217 91% 60%)",
            BLOCK_DELIMITER,
            "SECTION: <next section>",
            "CHANGE: <what changes>",
            BLOCK_DELIMITER,
            "Rules: at least 2 sections, one SECTION and one CHANGE line per block, blocks separated by a line "
            f"containing only {BLOCK_DELIMITER}.",
        ]
    )


def build_design_system_prompt(
    *,
    store_name: str,
    store_description: str | None = None,
    current_variables: Mapping[str, str] | None = None,
    history: Sequence[HistoryEntry] = (),
    current_prompt: str = "",
) -> str:
    intro = f'You are an expert UI designer for the e-commerce store "{store_name}"'
    if store_description:
        intro += f" - {store_description}"
    intro += ". Turn the owner's request into section-level design changes."

    capabilities = "EFFECTS (mention these words in CHANGE to trigger them):\n" + "\n".join(
        f"- {hint}" for hint in CAPABILITY_HINTS
    )
    blocks = [
        intro,
        _theme_context(current_variables),
        _sections_context(),
        _palette_context(),
        capabilities,
    ]
    history_block = _history_context(history, current_prompt)
    if history_block:
        blocks.append(history_block)
    blocks.append(output_grammar())
    return "\n\n".join(blocks)


def build_chat_system_prompt(store_name: str) -> str:
    return "\n".join(
        [
            f"You are a friendly AI design assistant for the {store_name} e-commerce store.",
            "You help store owners customize their store appearance: colors, rounded corners, shadows,",
            "gradients, glass and glow effects, hover animations, for the header, hero, categories,",
            "products, reviews, CTA and footer sections.",
            "Reply conversationally in plain text. If the owner wants a design change, ask what they",
            "would like to change.",
        ]
    )


def condensed_reminder() -> str:
    colors = ", ".join(f"{name} {value}" for name, value in list(REFERENCE_PALETTE.items())[:6])
    sections = ", ".join(kind.value for kind in SectionKind)
    effects = "bold, rounded, shadow, glass, gradient, glow, hover"
    return f"Sections: {sections}. Colors: {colors}. Effects: {effects}."
