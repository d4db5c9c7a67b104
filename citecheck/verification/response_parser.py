"""
Parse evaluator agent output into a constrained verdict.

Accepted shapes, tried in order:
1. JSON object: {"label": "INVALID", "reason": "volume_impossible"}
   ("verdict"/"reason_code" keys also accepted, markdown fences stripped)
2. A "VERDICT:" line: "VERDICT: UNCERTAIN mixed_signals"
3. A leading keyword: "INVALID reporter_court_mismatch"
4. A single verdict keyword anywhere in the text

Anything else is UNCERTAIN with reason "unparseable_response", so a
malformed answer still counts as a vote.
"""

import json
import re
from typing import Iterable, Optional

from pydantic import BaseModel, Field

from citecheck.citations.models import Verdict
from citecheck.verification.prompts import known_reason_codes

UNPARSEABLE_REASON = "unparseable_response"
EMPTY_RESPONSE_REASON = "empty_response"

_FENCE_PATTERN = re.compile(r"^```(?:json)?\s*|\s*```$", re.IGNORECASE)
_JSON_OBJECT_PATTERN = re.compile(r"\{.*\}", re.DOTALL)
_VERDICT_LINE_PATTERN = re.compile(r"^\s*verdict\s*[:\-]\s*(.+)$", re.IGNORECASE | re.MULTILINE)
_KEYWORD_PATTERN = re.compile(r"\b(VALID|INVALID|UNCERTAIN)\b", re.IGNORECASE)
_REASON_AFTER_KEYWORD = re.compile(
    r"^\W*(?:VALID|INVALID|UNCERTAIN)\b[\s:\-\[\(]*([a-z][a-z0-9_]*)",
    re.IGNORECASE,
)
_LABELLED_REASON = re.compile(r"(?:reason(?:_code)?|code)\s*[:=]\s*([a-z][a-z0-9_]*)", re.IGNORECASE)


class ParsedVerdict(BaseModel):
    """Result of parsing one agent response."""
    verdict: Verdict
    reason_code: Optional[str] = None
    parsed: bool = Field(default=True, description="False when the response could not be understood")


def normalize_reason_code(value: Optional[str]) -> Optional[str]:
    """Lowercase and snake_case a reason code; None for blanks."""
    if not value:
        return None
    code = re.sub(r"[^a-z0-9]+", "_", str(value).strip().lower()).strip("_")
    return code or None


def _find_known_reason(text: str, reasons: Iterable[str]) -> Optional[str]:
    lowered = text.lower()
    for code in reasons:
        if code in lowered:
            return code
    return None


def _from_json(text: str) -> Optional[ParsedVerdict]:
    cleaned = _FENCE_PATTERN.sub("", text.strip())
    match = _JSON_OBJECT_PATTERN.search(cleaned)
    if not match:
        return None
    try:
        payload = json.loads(match.group(0))
    except json.JSONDecodeError:
        return None
    if not isinstance(payload, dict):
        return None

    label = str(payload.get("label") or payload.get("verdict") or "").strip().upper()
    if label not in Verdict.__members__:
        return None

    verdict = Verdict(label)
    reason = payload.get("reason_code") or payload.get("reason")
    if verdict == Verdict.VALID:
        return ParsedVerdict(verdict=verdict)
    if reason and " " in str(reason).strip():
        # Free-text reason: keep a known code if one is mentioned
        reason = _find_known_reason(str(reason), known_reason_codes()) or str(reason)[:100]
    return ParsedVerdict(verdict=verdict, reason_code=normalize_reason_code(reason))


def _from_keyword_line(line: str) -> Optional[ParsedVerdict]:
    stripped = line.strip().strip("*`\"'")
    keyword = _KEYWORD_PATTERN.match(stripped)
    if not keyword:
        return None

    verdict = Verdict(keyword.group(1).upper())
    if verdict == Verdict.VALID:
        return ParsedVerdict(verdict=verdict)

    reason = _REASON_AFTER_KEYWORD.match(stripped)
    code = normalize_reason_code(reason.group(1)) if reason else None
    # A plain word after the keyword is prose, not a code
    if code and "_" not in code and code not in known_reason_codes():
        code = None
    return ParsedVerdict(verdict=verdict, reason_code=code)


def parse_agent_response(text: Optional[str]) -> ParsedVerdict:
    """
    Parse an agent's raw output.

    Args:
        text: Raw model output

    Returns:
        ParsedVerdict; never raises
    """
    if not text or not text.strip():
        return ParsedVerdict(verdict=Verdict.UNCERTAIN, reason_code=EMPTY_RESPONSE_REASON, parsed=False)

    parsed = _from_json(text)
    if parsed:
        return parsed

    verdict_line = _VERDICT_LINE_PATTERN.search(text)
    if verdict_line:
        parsed = _from_keyword_line(verdict_line.group(1))
        if parsed:
            return _with_fallback_reason(parsed, text)

    first_line = next((line for line in text.splitlines() if line.strip()), "")
    parsed = _from_keyword_line(first_line)
    if parsed:
        return _with_fallback_reason(parsed, text)

    keywords = {m.group(1).upper() for m in _KEYWORD_PATTERN.finditer(text)}
    if len(keywords) == 1:
        verdict = Verdict(keywords.pop())
        parsed = ParsedVerdict(verdict=verdict)
        return _with_fallback_reason(parsed, text)

    return ParsedVerdict(verdict=Verdict.UNCERTAIN, reason_code=UNPARSEABLE_REASON, parsed=False)


def _with_fallback_reason(parsed: ParsedVerdict, text: str) -> ParsedVerdict:
    if parsed.verdict == Verdict.VALID or parsed.reason_code:
        return parsed
    labelled = _LABELLED_REASON.search(text)
    code = labelled.group(1) if labelled else _find_known_reason(text, known_reason_codes())
    return parsed.model_copy(update={"reason_code": normalize_reason_code(code)})
