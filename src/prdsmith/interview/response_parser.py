"""Extract typed payloads from the assistant's free-form replies.

The assistant talks to the user in plain markdown and, when it needs to hand
over structured data, wraps a JSON payload in a marker block::

    <<<PRDSMITH v1 kind=question>>>
    {"header": "Auth", "question": "Which login methods?", "options": [...]}
    <<<END PRDSMITH>>>

Grammar (version 1):

- the opening line is ``<<<PRDSMITH v<N> kind=<kind>>>``, the closing line
  ``<<<END PRDSMITH>>>``; the body between them is JSON, optionally inside a
  markdown code fence;
- ``kind=question`` carries a StructuredQuestion (or a list of them, or
  ``{"questions": [...]}``; only the first valid one is used);
- ``kind=complete`` signals that exploration is over; the body is empty or
  ``{"summary": "..."}``;
- ``kind=prd`` carries ``{"slug": "...", "prd": {...}}`` or a bare PRD object.

Which kinds are honoured depends on the phase: ``question`` and ``complete``
while exploring or questioning, ``prd`` while generating. The first valid
block of an expected kind wins. Every other block is ignored and reported as
an anomaly. Parsing never raises.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from pydantic import ValidationError

from ..models import CompletionPayload, PRDDraft, StructuredQuestion
from ..prd import normalize_slug
from .state import Phase

logger = logging.getLogger(__name__)

MARKER_VERSION = "1"
MARKER_OPEN = "<<<PRDSMITH v{version} kind={kind}>>>"
MARKER_CLOSE = "<<<END PRDSMITH>>>"

MARKER_PATTERN = re.compile(
    r"<<<PRDSMITH\s+v(?P<version>\d+)\s+kind=(?P<kind>[A-Za-z_-]+)\s*>>>"
    r"(?P<body>.*?)"
    r"<<<END PRDSMITH>>>",
    re.DOTALL,
)
FENCE_PATTERN = re.compile(r"^\s*```[A-Za-z]*\s*\n?(.*?)\n?\s*```\s*$", re.DOTALL)

KIND_QUESTION = "question"
KIND_COMPLETE = "complete"
KIND_PRD = "prd"
KNOWN_KINDS = (KIND_QUESTION, KIND_COMPLETE, KIND_PRD)

EXPECTED_KINDS: Dict[Phase, tuple] = {
    Phase.EXPLORING: (KIND_QUESTION, KIND_COMPLETE),
    Phase.QUESTIONING: (KIND_QUESTION, KIND_COMPLETE),
    Phase.GENERATING: (KIND_PRD,),
}


@dataclass
class ParsedAIResponse:
    content: str
    question: Optional[StructuredQuestion] = None
    prd: Optional[PRDDraft] = None
    slug: Optional[str] = None
    summary: Optional[str] = None
    kind: Optional[str] = None
    is_complete: bool = False
    warnings: List[str] = field(default_factory=list)
    anomalies: List[str] = field(default_factory=list)


class _PayloadError(ValueError):
    pass


def format_marker(kind: str, payload: Any = None) -> str:
    """Render a marker block, as the assistant is asked to write it."""
    body = "" if payload is None else json.dumps(payload, indent=2)
    opening = MARKER_OPEN.format(version=MARKER_VERSION, kind=kind)
    return f"{opening}\n{body}\n{MARKER_CLOSE}"


def strip_fences(text: str) -> str:
    match = FENCE_PATTERN.match(text)
    if match:
        return match.group(1).strip()
    return text.strip()


def _load_json(body: str) -> Any:
    text = strip_fences(body)
    try:
        return json.loads(text)
    except json.JSONDecodeError as exc:
        raise _PayloadError(f"malformed JSON ({exc.msg} at line {exc.lineno})") from exc


def _describe(exc: ValidationError) -> str:
    first = exc.errors()[0]
    where = ".".join(str(part) for part in first["loc"]) or "payload"
    return f"{where}: {first['msg']}"


def _decode_question(body: str, result: ParsedAIResponse) -> None:
    data = _load_json(body)
    if isinstance(data, dict) and isinstance(data.get("questions"), list):
        data = data["questions"]
    candidates = data if isinstance(data, list) else [data]

    question = None
    problems = []
    for candidate in candidates:
        try:
            parsed = StructuredQuestion.model_validate(candidate)
        except ValidationError as exc:
            problems.append(_describe(exc))
            continue
        if question is None:
            question = parsed
        else:
            result.anomalies.append(f"extra question ignored: {parsed.question[:60]!r}")
    if question is None:
        detail = problems[0] if problems else "no question found"
        raise _PayloadError(f"invalid question payload ({detail})")
    result.question = question


def _decode_complete(body: str, result: ParsedAIResponse) -> None:
    if strip_fences(body):
        data = _load_json(body)
        if not isinstance(data, dict):
            raise _PayloadError("completion payload must be an object")
        summary = data.get("summary")
        if isinstance(summary, str) and summary.strip():
            result.summary = summary.strip()
    result.is_complete = True


def _decode_prd(body: str, result: ParsedAIResponse, feature: Optional[str]) -> None:
    data = _load_json(body)
    if not isinstance(data, dict):
        raise _PayloadError("PRD payload must be an object")
    if "prd" not in data:
        data = {"prd": data}
    try:
        payload = CompletionPayload.model_validate(data)
    except ValidationError as exc:
        raise _PayloadError(f"invalid PRD payload ({_describe(exc)})") from exc

    slug = normalize_slug(payload.slug) if payload.slug else ""
    if not slug and feature:
        slug = normalize_slug(feature)
    result.prd = payload.prd
    result.slug = slug or None
    result.is_complete = True


def _remove_block(raw: str, match: "re.Match[str]") -> str:
    text = raw[: match.start()].rstrip() + "\n\n" + raw[match.end() :].lstrip()
    return re.sub(r"\n{3,}", "\n\n", text).strip()


def parse_ai_response(
    raw: str,
    phase: Phase = Phase.QUESTIONING,
    feature: Optional[str] = None,
) -> ParsedAIResponse:
    """Parse one assistant reply.

    Args:
        raw: Text returned by the provider.
        phase: Interview phase the reply belongs to; decides which marker
            kinds are honoured.
        feature: Feature description, used to derive a slug when a PRD
            payload does not carry one.

    Returns:
        ParsedAIResponse with at most one of ``question`` or ``prd`` set.
        Without an honoured block, ``content`` is the whole reply.
    """
    raw = raw or ""
    result = ParsedAIResponse(content=raw.strip())
    expected = EXPECTED_KINDS[phase]
    honoured = None

    for match in MARKER_PATTERN.finditer(raw):
        version, kind = match.group("version"), match.group("kind").lower()
        if honoured is not None:
            result.anomalies.append(f"extra {kind} block ignored")
            continue
        if version != MARKER_VERSION:
            result.anomalies.append(f"unsupported marker version v{version} ({kind})")
            continue
        if kind not in KNOWN_KINDS:
            result.anomalies.append(f"unknown marker kind {kind!r}")
            continue
        if kind not in expected:
            result.anomalies.append(f"{kind} block not expected while {phase.value}")
            continue

        try:
            if kind == KIND_QUESTION:
                _decode_question(match.group("body"), result)
            elif kind == KIND_COMPLETE:
                _decode_complete(match.group("body"), result)
            else:
                _decode_prd(match.group("body"), result, feature)
        except _PayloadError as exc:
            result.warnings.append(f"{kind} block skipped: {exc}")
            continue
        honoured = match
        result.kind = kind

    if honoured is not None:
        result.content = _remove_block(raw, honoured)

    for message in result.warnings:
        logger.warning("Response parse warning: %s", message)
    for message in result.anomalies:
        logger.warning("Response marker anomaly: %s", message)
    return result
