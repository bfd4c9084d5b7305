"""Text sanitization, injection detection and rationale bounding.

Model text passes through sanitize_text before it is logged or persisted.
Injection detection only flags: the decision is still used if it is
otherwise valid, and the flag lands in the seat's fidelity counts.
"""

import re

MAX_RATIONALE_CHARS = 2000
_TRUNCATION_MARK = " [truncated]"

# Control chars to strip (keep \t=0x09, \n=0x0a, \r=0x0d)
_CONTROL_RE = re.compile(
    r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]"
)

# Zero-width and BOM characters
_ZERO_WIDTH_RE = re.compile(
    r"[\u200b\u200c\u200d\u2060\ufeff\u00ad]"
)

_INJECTION_PATTERNS = [
    re.compile(r"ignore\s+(all\s+)?previous\s+instructions", re.IGNORECASE),
    re.compile(r"<\s*system\s*>", re.IGNORECASE),
    re.compile(r"\[\s*INST\s*\]", re.IGNORECASE),
    re.compile(r'"role"\s*:\s*"system"', re.IGNORECASE),
    re.compile(r"you\s+are\s+now\s+(a|an|the|free|unbound)", re.IGNORECASE),
    re.compile(r"new\s+instructions?\s*:", re.IGNORECASE),
    re.compile(r"disregard\s+(all\s+)?previous", re.IGNORECASE),
    re.compile(r"<\s*/?\s*human\s*>", re.IGNORECASE),
    re.compile(r"<\s*/?\s*assistant\s*>", re.IGNORECASE),
    re.compile(r"other\s+(players?|seats?|agents?)\s+must\s+(fold|call)", re.IGNORECASE),
]


def sanitize_text(text: str) -> str:
    """Strip control and zero-width characters. Normal unicode is kept."""
    text = _CONTROL_RE.sub("", text)
    text = _ZERO_WIDTH_RE.sub("", text)
    return text


def detect_injection(text: str) -> bool:
    """Heuristic check for prompt-injection patterns."""
    return any(p.search(text) for p in _INJECTION_PATTERNS)


def bound_rationale(
    reasoning: str,
    notes: list[str] | None = None,
    limit: int = MAX_RATIONALE_CHARS,
) -> str:
    """Sanitize reasoning and fit it, plus any appended notes, within limit.

    Notes (repair and fallback markers) are always kept whole; only the
    model's own text is cut.
    """
    text = sanitize_text(reasoning or "").strip()
    tail = "".join(f" [{n}]" for n in notes or [])
    room = limit - len(tail)
    if room <= 0:
        return tail.strip()[:limit]
    if len(text) > room:
        text = text[: max(0, room - len(_TRUNCATION_MARK))].rstrip() + _TRUNCATION_MARK
    return (text + tail).strip()
