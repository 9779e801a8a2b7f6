from __future__ import annotations

import re
from enum import Enum
from typing import Any, Mapping


class SectionKind(str, Enum):
    HEADER = "header"
    HERO = "hero"
    CATEGORIES = "categories"
    PRODUCTS = "products"
    REVIEWS = "reviews"
    CTA = "cta"
    FOOTER = "footer"


THEME_VARIABLES: tuple[str, ...] = (
    "primary",
    "primary-foreground",
    "secondary",
    "secondary-foreground",
    "background",
    "foreground",
    "card",
    "card-foreground",
    "muted",
    "muted-foreground",
    "accent",
    "accent-foreground",
    "border",
    "input",
    "ring",
    "radius",
)

# Platform defaults the storefront falls back to when no design is applied.
DEFAULT_THEME_VARIABLES: dict[str, str] = {
    "primary": "217 91% 60%",
    "background": "0 0% 100%",
    "foreground": "222 47% 11%",
    "card": "0 0% 100%",
    "muted": "210 40% 96%",
    "muted-foreground": "215 16% 47%",
    "border": "214 32% 91%",
    "radius": "0.5rem",
}

# The first slot receives the section's COLOR.
SECTION_VARIABLES: dict[SectionKind, tuple[str, ...]] = {
    SectionKind.HEADER: ("background", "foreground", "border"),
    SectionKind.HERO: ("background", "primary"),
    SectionKind.CATEGORIES: ("muted", "card", "radius"),
    SectionKind.PRODUCTS: ("card", "primary", "radius"),
    SectionKind.REVIEWS: ("muted", "card"),
    SectionKind.CTA: ("primary", "accent"),
    SectionKind.FOOTER: ("card", "muted-foreground", "border"),
}

SECTION_DESCRIPTIONS: dict[SectionKind, str] = {
    SectionKind.HEADER: "Logo, navigation links, search and cart icon",
    SectionKind.HERO: "Main promotional banner with call-to-action",
    SectionKind.CATEGORIES: "\"Shop by Category\" cards in a horizontal scroller",
    SectionKind.PRODUCTS: "Featured / new-arrival product card grids",
    SectionKind.REVIEWS: "Customer reviews and testimonials",
    SectionKind.CTA: "\"Ready to Start Shopping?\" banner",
    SectionKind.FOOTER: "Links, contact info and copyright bar",
}

# Substring fallback takes the alias that starts earliest in the name; on a tie the longer one listed first wins.
_SECTION_ALIASES: tuple[tuple[str, SectionKind], ...] = (
    ("call-to-action", SectionKind.CTA),
    ("new-arrivals", SectionKind.PRODUCTS),
    ("product-card", SectionKind.PRODUCTS),
    ("testimonials", SectionKind.REVIEWS),
    ("categories", SectionKind.CATEGORIES),
    ("navigation", SectionKind.HEADER),
    ("featured", SectionKind.PRODUCTS),
    ("products", SectionKind.PRODUCTS),
    ("category", SectionKind.CATEGORIES),
    ("product", SectionKind.PRODUCTS),
    ("reviews", SectionKind.REVIEWS),
    ("review", SectionKind.REVIEWS),
    ("header", SectionKind.HEADER),
    ("navbar", SectionKind.HEADER),
    ("banner", SectionKind.HERO),
    ("footer", SectionKind.FOOTER),
    ("hero", SectionKind.HERO),
    ("cta", SectionKind.CTA),
)

_ALIAS_LOOKUP: dict[str, SectionKind] = dict(_SECTION_ALIASES)
_NAME_SEPARATORS_RE = re.compile(r"[\s_]+")


def normalize_section_name(name: str) -> str:
    return _NAME_SEPARATORS_RE.sub("-", name.strip().lower()).strip("-")


def resolve_section(name: str) -> SectionKind | None:
    normalized = normalize_section_name(name)
    if not normalized:
        return None
    exact = _ALIAS_LOOKUP.get(normalized)
    if exact is not None:
        return exact
    best: tuple[int, SectionKind] | None = None
    for alias, kind in _SECTION_ALIASES:
        position = normalized.find(alias)
        if position != -1 and (best is None or position < best[0]):
            best = (position, kind)
    return best[1] if best is not None else None


def allowed_section_names() -> list[str]:
    return [kind.value for kind in SectionKind]


def filter_theme_variables(variables: Mapping[str, Any] | None) -> dict[str, str]:
    """Keep only known theme variables; ``--primary`` style keys are accepted."""

    if not variables:
        return {}
    filtered: dict[str, str] = {}
    for key, value in variables.items():
        if not isinstance(key, str) or value is None:
            continue
        name = key.strip().lower()
        if name.startswith("--"):
            name = name[2:]
        if name in THEME_VARIABLES:
            filtered[name] = str(value).strip()
    return filtered
