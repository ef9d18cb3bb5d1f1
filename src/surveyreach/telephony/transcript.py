"""
Answer extraction from voice call transcripts.

The assistant is instructed to finish with ``SURVEY_COMPLETE {"answers": {...}}``.
When that marker is missing, answers are recovered from the conversation:
each substantive ``User:`` line that follows an ``Assistant:`` question
becomes ``question_1``, ``question_2``, ...
"""

import json
import re
from collections.abc import Iterable, Mapping
from typing import Any

COMPLETION_MARKER = "SURVEY_COMPLETE"

_SKIP_WORDS = frozenset({"okay", "yes", "no", "sure", "hi", "hello", "great"})
_QUESTION_WORDS = ("what", "how", "why", "when", "where", "opinion", "think", "feel")
_SUMMARY_PATTERN = re.compile(r"question\s*(\d+)[,\s]+([^.]+)", re.IGNORECASE)


def rebuild_transcript(messages: Iterable[Any]) -> str:
    """Render provider artifact messages as ``User:``/``Assistant:`` lines."""
    lines = []
    for message in messages:
        if not isinstance(message, Mapping):
            continue
        role = message.get("role")
        if role not in ("user", "bot", "assistant"):
            continue
        text = message.get("message") or message.get("content") or ""
        speaker = "User" if role == "user" else "Assistant"
        lines.append(f"{speaker}: {text}")
    return "\n".join(lines)


def parse_survey_completion(transcript: str) -> dict[str, Any] | None:
    """Return the ``answers`` object following the last completion marker."""
    index = transcript.rfind(COMPLETION_MARKER)
    if index == -1:
        return None
    tail = transcript[index + len(COMPLETION_MARKER):]

    depth = 0
    start = -1
    for pos, char in enumerate(tail):
        if char == "{":
            if start == -1:
                start = pos
            depth += 1
        elif char == "}" and start != -1:
            depth -= 1
            if depth == 0:
                try:
                    parsed = json.loads(tail[start:pos + 1])
                except ValueError:
                    return None
                answers = parsed.get("answers") if isinstance(parsed, dict) else None
                return answers if isinstance(answers, dict) and answers else None
    return None


def _is_question(line: str) -> bool:
    lowered = line.lower()
    return "?" in line or any(word in lowered for word in _QUESTION_WORDS)


def _is_skippable(response: str) -> bool:
    return len(response) <= 5 or response.lower() in _SKIP_WORDS


def extract_answers(transcript: str | None) -> dict[str, Any] | None:
    """Extract structured answers from a call transcript.

    Returns None when nothing answer-like was found.
    """
    if not transcript or not transcript.strip():
        return None

    structured = parse_survey_completion(transcript)
    if structured:
        return structured

    answers: dict[str, Any] = {}
    last_assistant: str | None = None
    for raw in transcript.splitlines():
        line = raw.strip()
        if not line:
            continue
        if line.startswith("Assistant:"):
            last_assistant = line
            continue
        if not line.startswith("User:"):
            continue
        response = line[len("User:"):].strip()
        if _is_skippable(response):
            continue
        follows_question = last_assistant is not None and _is_question(last_assistant)
        if follows_question or not answers:
            answers[f"question_{len(answers) + 1}"] = response

    if not answers:
        for number, answer in _SUMMARY_PATTERN.findall(transcript):
            answers[f"question_{number}"] = answer.strip()

    return answers or None
