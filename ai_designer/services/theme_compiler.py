from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Mapping, Optional

from ai_designer.services.theme_parser import ParsedSection, parse_hsl_triple
from ai_designer.services.theme_sections import (
    DEFAULT_THEME_VARIABLES,
    SECTION_VARIABLES,
    SectionKind,
    filter_theme_variables,
    resolve_section,
)

ROUNDED_RADIUS = "1rem"
GRADIENT_HUE_OFFSET = 40

DARK_THEME_VARIABLES: dict[str, str] = {
    "background": "222 47% 8%",
    "foreground": "0 0% 95%",
    "card": "222 40% 12%",
    "muted": "217 33% 17%",
    "border": "217 33% 22%",
}


class ChangeEffect(str, Enum):
    PROMOTE_COLOR = "promote_color"
    ROUNDED = "rounded"
    SHADOW = "shadow"
    GLASS = "glass"
    GRADIENT = "gradient"
    GLOW = "glow"
    HOVER_LIFT = "hover_lift"


# Evaluated top to bottom; every matching rule applies once per section.
KEYWORD_RULES: tuple[tuple[tuple[str, ...], ChangeEffect], ...] = (
    (("bold", "vibrant"), ChangeEffect.PROMOTE_COLOR),
    (("rounded", "pill"), ChangeEffect.ROUNDED),
    (("shadow",), ChangeEffect.SHADOW),
    (("glass", "blur"), ChangeEffect.GLASS),
    (("gradient",), ChangeEffect.GRADIENT),
    (("glow", "neon"), ChangeEffect.GLOW),
    (("hover", "lift"), ChangeEffect.HOVER_LIFT),
)


@dataclass(frozen=True)
class DesignProposal:
    summary: str
    css_variables: dict[str, str]
    dark_css_variables: dict[str, str]
    css_overrides: str
    changes_list: tuple[str, ...] = field(default_factory=tuple)

    def to_dict(self) -> dict[str, Any]:
        return {
            "summary": self.summary,
            "css_variables": dict(self.css_variables),
            "dark_css_variables": dict(self.dark_css_variables),
            "css_overrides": self.css_overrides,
            "changes_list": list(self.changes_list),
        }

    def with_css_overrides(self, css_overrides: str) -> "DesignProposal":
        return DesignProposal(
            summary=self.summary,
            css_variables=dict(self.css_variables),
            dark_css_variables=dict(self.dark_css_variables),
            css_overrides=css_overrides,
            changes_list=self.changes_list,
        )


def matched_effects(change: str) -> list[ChangeEffect]:
    lowered = change.lower()
    return [effect for keywords, effect in KEYWORD_RULES if any(keyword in lowered for keyword in keywords)]


def _selector(kind: SectionKind) -> str:
    return f'[data-ai="{kind.value}"]'


def _base_hsl(color: Optional[str], variables: Mapping[str, str]) -> tuple[int, int, int]:
    for candidate in (color, variables.get("primary"), DEFAULT_THEME_VARIABLES["primary"]):
        parsed = parse_hsl_triple(candidate)
        if parsed is not None:
            return parsed
    return 217, 91, 60


def _css_rule(kind: SectionKind, effect: ChangeEffect, color: Optional[str], variables: Mapping[str, str]) -> str | None:
    selector = _selector(kind)
    if effect is ChangeEffect.SHADOW:
        return f"{selector} {{ box-shadow: 0 10px 30px -10px hsl(var(--primary) / 0.35) !important; }}"
    if effect is ChangeEffect.GLASS:
        return (
            f"{selector} {{ backdrop-filter: blur(12px); -webkit-backdrop-filter: blur(12px); "
            "background: hsl(var(--background) / 0.7) !important; }"
        )
    if effect is ChangeEffect.GRADIENT:
        hue, saturation, lightness = _base_hsl(color, variables)
        start = hue % 360
        end = (hue + GRADIENT_HUE_OFFSET) % 360
        return (
            f"{selector} {{ background: linear-gradient(135deg, hsl({start} {saturation}% {lightness}%), "
            f"hsl({end} {saturation}% {lightness}%)) !important; }}"
        )
    if effect is ChangeEffect.GLOW:
        hue, saturation, lightness = _base_hsl(color, variables)
        glow = f"{hue % 360} {saturation}% {lightness}%"
        return f"{selector} {{ box-shadow: 0 0 20px hsl({glow} / 0.5), 0 0 40px hsl({glow} / 0.3) !important; }}"
    if effect is ChangeEffect.HOVER_LIFT:
        return (
            f"{selector} {{ transition: transform 0.2s ease, box-shadow 0.2s ease; }}\n"
            f"{selector}:hover {{ transform: translateY(-4px); }}"
        )
    return None


def dark_variables_for(css_variables: Mapping[str, str]) -> dict[str, str]:
    dark = dict(DARK_THEME_VARIABLES)
    primary = css_variables.get("primary")
    if primary:
        dark["primary"] = primary
    return dark


def compile_design(
    sections: list[ParsedSection],
    *,
    current_variables: Mapping[str, Any] | None = None,
    summary: Optional[str] = None,
) -> DesignProposal:
    """Map validated sections onto theme variables plus scoped CSS rules.

    Sections whose name does not resolve are skipped; the validator rejects them earlier.
    """

    variables = filter_theme_variables(current_variables)
    rules: list[str] = []
    changes: list[str] = []

    for section in sections:
        kind = resolve_section(section.name)
        if kind is None:
            continue
        slots = SECTION_VARIABLES[kind]
        if section.color:
            variables[slots[0]] = section.color

        for effect in matched_effects(section.change):
            if effect is ChangeEffect.PROMOTE_COLOR:
                if section.color:
                    variables["primary"] = section.color
                    variables["accent"] = section.color
                continue
            if effect is ChangeEffect.ROUNDED:
                variables["radius"] = ROUNDED_RADIUS
                continue
            rule = _css_rule(kind, effect, section.color, variables)
            if rule:
                rules.append(rule)

        changes.append(f"{kind.value.capitalize()}: {section.change}")

    css_variables = filter_theme_variables(variables)
    return DesignProposal(
        summary=(summary or "; ".join(changes))[:300],
        css_variables=css_variables,
        dark_css_variables=dark_variables_for(css_variables),
        css_overrides="\n".join(rules),
        changes_list=tuple(changes),
    )
