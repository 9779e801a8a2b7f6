from __future__ import annotations

import re

DESIGN_KEYWORDS: tuple[str, ...] = (
    "color", "colour", "blue", "red", "green", "yellow", "purple", "pink", "orange",
    "design", "style", "layout", "change", "make", "update", "modify", "add",
    "button", "card", "section", "header", "footer", "banner", "product",
    "font", "text", "size", "padding", "margin", "border", "radius", "round",
    "shadow", "gradient", "background", "foreground", "theme",
    "dark", "light", "modern", "elegant", "minimalist", "bold",
    "spacing", "grid", "column", "row", "align", "center", "fix", "visible",
)

_REFUSAL_PHRASES: tuple[str, ...] = (
    "i'm sorry", "i cannot", "i can't", "i am not able", "i'm not able",
    "i'm unable", "i am unable", "not appropriate", "against my guidelines",
    "i must decline", "i will not", "harmful content", "as an ai",
)
_REFUSAL_RE = re.compile(r"\b(?:" + "|".join(re.escape(phrase) for phrase in _REFUSAL_PHRASES) + r")\b")

_STOP_WORDS = frozenset(
    {"the", "a", "an", "is", "are", "not", "to", "in", "on", "it", "make", "change", "please", "can", "you"}
)

DESIGN_SYNONYMS: dict[str, str] = {
    "colour": "color", "colours": "color", "colors": "color",
    "btn": "button", "buttons": "button",
    "bg": "background", "backgrounds": "background",
    "txt": "text", "texts": "text",
    "hdr": "header", "nav": "header", "navbar": "header",
    "ftr": "footer", "foot": "footer",
    "img": "image", "images": "image", "photo": "image",
    "card": "product-card", "cards": "product-card",
    "invisible": "visible", "hidden": "visible",
    "font": "text", "typography": "text",
    "padding": "spacing", "margin": "spacing", "space": "spacing",
    "round": "radius", "rounded": "radius", "circular": "radius",
    "dark": "theme", "light": "theme", "mode": "theme",
}

_NON_WORD_RE = re.compile(r"[^a-z0-9\s]")


def is_design_request(prompt: str) -> bool:
    lowered = prompt.lower()
    return any(keyword in lowered for keyword in DESIGN_KEYWORDS)


def is_refusal(content: str | None) -> bool:
    if not content:
        return False
    lowered = content.lower()
    if lowered.lstrip().startswith("section"):
        return False
    return _REFUSAL_RE.search(lowered) is not None


def extract_keywords(prompt: str) -> list[str]:
    words = _NON_WORD_RE.sub(" ", prompt.lower()).split()
    return [DESIGN_SYNONYMS.get(word, word) for word in words if len(word) > 2 and word not in _STOP_WORDS]


def prompt_similarity(first: str, second: str) -> float:
    """Jaccard similarity of the synonym-folded keyword sets."""

    left = set(extract_keywords(first))
    right = set(extract_keywords(second))
    if not left or not right:
        return 0.0
    return len(left & right) / len(left | right)
