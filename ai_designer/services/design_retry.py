"""Retry policy for unparsable model replies.

``next_action`` is a pure transition: given the attempt that just ran and its validation result it
decides whether to accept the reply, re-prompt, or give up. No I/O happens here so the policy can be
exercised without a model.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import IntEnum
from typing import Union

from ai_designer.services.theme_parser import ValidationResult
from ai_designer.services.theme_prompt import condensed_reminder

INITIAL_TEMPERATURE = 0.5
RETRY_TEMPERATURE = 0.3

CLARIFICATION_MESSAGE = (
    "I couldn't turn that into a design just now. Could you describe which sections you want to change "
    "(for example header, hero, products or footer) and the colors or effects you have in mind?"
)

RETRY_HINTS: tuple[str, ...] = (
    "FORMAT REMINDER: reply with plain text blocks only. Each block needs a 'SECTION:' line and a 'CHANGE:' "
    "line, optionally 'COLOR: H S% L%'. Separate blocks with a line containing only ---.",
    "STRICT FORMAT: no JSON, no markdown, no explanations. Give at least 2 blocks. COLOR must be three "
    "numbers like '217 91% 60%'.",
)


class Attempt(IntEnum):
    FIRST = 0
    SECOND = 1
    FINAL = 2


MAX_ATTEMPTS = len(Attempt)


@dataclass(frozen=True)
class Accept:
    attempt: Attempt


@dataclass(frozen=True)
class Retry:
    attempt: Attempt
    prompt: str
    temperature: float


@dataclass(frozen=True)
class Fallback:
    attempts: int
    last_error: str


NextAction = Union[Accept, Retry, Fallback]


def build_retry_prompt(original_prompt: str, *, failed_attempt: Attempt, last_error: str) -> str:
    parts = [original_prompt, "", RETRY_HINTS[int(failed_attempt) % len(RETRY_HINTS)]]
    if last_error:
        parts.append(f"Problems with your previous reply: {last_error}")
    parts.append(condensed_reminder())
    return "\n".join(parts)


def next_action(state: Attempt, result: ValidationResult, *, original_prompt: str) -> NextAction:
    if result.valid:
        return Accept(attempt=state)
    if state >= Attempt.FINAL:
        return Fallback(attempts=MAX_ATTEMPTS, last_error=result.last_error)
    return Retry(
        attempt=Attempt(state + 1),
        prompt=build_retry_prompt(original_prompt, failed_attempt=state, last_error=result.last_error),
        temperature=RETRY_TEMPERATURE,
    )
