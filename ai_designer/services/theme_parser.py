from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from ai_designer.services.theme_sections import allowed_section_names, resolve_section

logger = logging.getLogger(__name__)

BLOCK_DELIMITER = "---"
MIN_SECTIONS = 2
MIN_CHANGE_LENGTH = 3

_COLOR_TOKEN_PATTERNS = (
    re.compile(r"^\d+$"),
    re.compile(r"^\d+%$"),
    re.compile(r"^\d+%$"),
)
# Leading markdown noise the model tends to wrap around the grammar ("- **SECTION:** hero").
_LINE_NOISE_RE = re.compile(r"^[\s>*#`\-•]+")
_FIELD_RE = re.compile(r"^(SECTION|CHANGE|COLOR|COLOUR|SUMMARY)\s*\**\s*:\s*\**\s*(.*)$", re.IGNORECASE)


@dataclass(frozen=True)
class ParsedSection:
    name: str
    change: str
    color: Optional[str] = None


@dataclass(frozen=True)
class ParsedReply:
    sections: list[ParsedSection]
    summary: Optional[str] = None


@dataclass(frozen=True)
class ValidationResult:
    valid: bool
    errors: list[str] = field(default_factory=list)

    @property
    def last_error(self) -> str:
        return "; ".join(self.errors)


class ColorHarmony(str, Enum):
    SAME = "same"
    ANALOGOUS = "analogous"
    COMPLEMENTARY = "complementary"
    TRIADIC = "triadic"
    NOVEL = "novel"


def _strip_field_value(value: str) -> str:
    return value.strip().strip("*`\"'").strip()


def _scan_line(line: str) -> tuple[str, str] | None:
    cleaned = _LINE_NOISE_RE.sub("", line.strip())
    match = _FIELD_RE.match(cleaned)
    if not match:
        return None
    key = match.group(1).upper()
    if key == "COLOUR":
        key = "COLOR"
    return key, _strip_field_value(match.group(2))


def parse_design_reply(raw: str | None) -> ParsedReply:
    """Split the model reply on ``---`` and read SECTION / CHANGE / COLOR lines.

    First occurrence of a field wins inside a block. Blocks without both SECTION and CHANGE are
    dropped. An optional SUMMARY line may appear anywhere; the first one is kept.
    """

    if not raw:
        return ParsedReply(sections=[])

    sections: list[ParsedSection] = []
    summary: Optional[str] = None
    for block in raw.split(BLOCK_DELIMITER):
        fields: dict[str, str] = {}
        for line in block.splitlines():
            scanned = _scan_line(line)
            if scanned is None:
                continue
            key, value = scanned
            if key == "SUMMARY":
                if summary is None and value:
                    summary = value
                continue
            fields.setdefault(key, value)

        name = fields.get("SECTION")
        change = fields.get("CHANGE")
        if not name or not change:
            continue
        sections.append(ParsedSection(name=name, change=change, color=fields.get("COLOR") or None))
    return ParsedReply(sections=sections, summary=summary)


def is_valid_hsl_triple(value: str) -> bool:
    tokens = value.split()
    if len(tokens) != 3:
        return False
    return all(pattern.match(token) for pattern, token in zip(_COLOR_TOKEN_PATTERNS, tokens))


def parse_hsl_triple(value: str | None) -> tuple[int, int, int] | None:
    if not value or not is_valid_hsl_triple(value):
        return None
    hue, saturation, lightness = value.split()
    return int(hue), int(saturation.rstrip("%")), int(lightness.rstrip("%"))


def classify_color_harmony(color: str, reference: str | None) -> ColorHarmony | None:
    candidate = parse_hsl_triple(color)
    base = parse_hsl_triple(reference)
    if candidate is None or base is None:
        return None
    distance = abs(candidate[0] % 360 - base[0] % 360)
    distance = min(distance, 360 - distance)
    if distance <= 15:
        return ColorHarmony.SAME
    if distance <= 45:
        return ColorHarmony.ANALOGOUS
    if abs(distance - 180) <= 30:
        return ColorHarmony.COMPLEMENTARY
    if abs(distance - 120) <= 15:
        return ColorHarmony.TRIADIC
    return ColorHarmony.NOVEL


def validate_sections(
    sections: list[ParsedSection],
    *,
    current_primary: str | None = None,
) -> ValidationResult:
    errors: list[str] = []
    if len(sections) < MIN_SECTIONS:
        errors.append(
            f"Found {len(sections)} section(s); at least {MIN_SECTIONS} SECTION/CHANGE blocks are required"
        )

    allowed = ", ".join(allowed_section_names())
    for section in sections:
        if resolve_section(section.name) is None:
            errors.append(f"Unknown section '{section.name}'. Use one of: {allowed}")
        if len(section.change.strip()) < MIN_CHANGE_LENGTH:
            errors.append(f"CHANGE for section '{section.name}' is too short")
        if section.color is not None and not is_valid_hsl_triple(section.color):
            errors.append(
                f"COLOR '{section.color}' for section '{section.name}' must look like 'H S% L%' (e.g. 217 91% 60%)"
            )

    if not errors:
        for section in sections:
            if section.color is None:
                continue
            harmony = classify_color_harmony(section.color, current_primary)
            if harmony is not None:
                logger.info(
                    "theme_parser.color_harmony",
                    extra={"section": section.name, "color": section.color, "harmony": harmony.value},
                )

    return ValidationResult(valid=not errors, errors=errors)
