"""
Turn a free-text Slack reply into per-question answers.

Tried in order: numbered list, bullet list, one answer per line, whole text
as the first answer.
"""
from __future__ import annotations

import re
from typing import TypedDict

_NUMBERED_RE = re.compile(r"^\s*(\d+)[.)]\s*(.+?)(?=\n\s*\d+[.)]|\Z)", re.MULTILINE | re.DOTALL)
_BULLET_RE = re.compile(r"^\s*[•\-*]\s*(.+?)(?=\n\s*[•\-*]|\n\s*\d+[.)]|\Z)", re.MULTILINE | re.DOTALL)
_INNER_BULLET_RE = re.compile(r"\n\s*[•\-*]\s*")

MAX_LINE_ANSWERS = 5


class ParsedAnswer(TypedDict):
    question_index: int
    text: str


def _empty(question_count: int) -> list[str]:
    return ["" for _ in range(question_count)]


def _to_answers(slots: list[str]) -> list[ParsedAnswer]:
    return [ParsedAnswer(question_index=i, text=t) for i, t in enumerate(slots)]


def _parse_numbered(text: str, question_count: int) -> list[str] | None:
    matches = list(_NUMBERED_RE.finditer(text))
    if not matches:
        return None
    if len(matches) == 1 and question_count != 1:
        return None

    slots = _empty(question_count)
    for m in matches:
        index = int(m.group(1)) - 1
        if 0 <= index < question_count:
            slots[index] = _INNER_BULLET_RE.sub("\n", m.group(2)).strip()
    return slots


def _parse_bullets(text: str, question_count: int) -> list[str] | None:
    matches = list(_BULLET_RE.finditer(text))
    if len(matches) <= 1:
        return None

    slots = _empty(question_count)
    for index, m in enumerate(matches[:question_count]):
        slots[index] = m.group(1).strip()
    return slots


def _parse_lines(text: str, question_count: int) -> list[str] | None:
    lines = [line.strip() for line in text.split("\n") if line.strip()]
    if not (1 < len(lines) <= question_count and len(lines) <= MAX_LINE_ANSWERS):
        return None

    slots = _empty(question_count)
    for index, line in enumerate(lines):
        slots[index] = line
    return slots


def parse_standup_response(text: str | None, question_count: int) -> list[ParsedAnswer]:
    """
    Always returns exactly `question_count` entries; unanswered slots are "".
    """
    if question_count <= 0:
        return []

    text = (text or "").replace("\r\n", "\n").strip()
    if not text:
        return _to_answers(_empty(question_count))

    for strategy in (_parse_numbered, _parse_bullets, _parse_lines):
        slots = strategy(text, question_count)
        if slots is not None:
            return _to_answers(slots)

    slots = _empty(question_count)
    slots[0] = text
    return _to_answers(slots)
