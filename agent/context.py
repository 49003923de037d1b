"""
Context sizing helpers: token estimation, completion detection, and
graduated truncation of tool output.
"""

import re
from typing import Iterable, List

# Max characters kept per truncation level
TRUNCATION_LIMITS = {
    "light": 5000,
    "medium": 3000,
    "heavy": 1000,
}

_SEMANTIC_PATTERNS = [
    re.compile(r"error|failure|exception|bug|todo|fixme", re.IGNORECASE),
    re.compile(
        r"^(?:export\s+)?(?:async\s+)?(?:class|def|function|const|let|var|interface|type)\s+[A-Za-z0-9_$]+",
        re.MULTILINE,
    ),
]

_COMPLETION_RE = re.compile(
    r"\b(?:task (?:is )?complete|finished|all done|completed successfully|"
    r"task has been completed|work is done|implementation is complete)\b",
    re.IGNORECASE,
)


def estimate_tokens(text: str) -> int:
    """Token estimate: ~3.5 chars per token for mixed English/code."""
    if not text:
        return 0
    return max(1, int(len(text) / 3.5))


def estimate_messages_tokens(parts: Iterable[str]) -> int:
    return sum(estimate_tokens(p) for p in parts)


def signals_completion(text: str) -> bool:
    """Whether model text declares the goal done."""
    return bool(text and _COMPLETION_RE.search(text))


def truncation_level(used_tokens: int, budget: int) -> str:
    """Pick a truncation level from how full the context budget is."""
    ratio = used_tokens / budget if budget > 0 else 1.0
    if ratio < 0.5:
        return "light"
    if ratio < 0.8:
        return "medium"
    return "heavy"


def smart_truncate(text: str, level: str = "medium") -> str:
    """Keep head and tail lines, plus hints (errors, TODOs, signatures) from the dropped middle."""
    max_length = TRUNCATION_LIMITS[level]
    if not text or len(text) <= max_length:
        return text

    lines = text.split("\n")
    keep = 5 if level == "heavy" else 15
    if len(lines) <= keep * 2:
        # Few very long lines: cut by characters instead
        half = max_length // 2
        return f"{text[:half]}\n\n... [TRUNCATED {len(text) - 2 * half} chars] ...\n\n{text[-half:]}"

    head = "\n".join(lines[:keep])
    tail = "\n".join(lines[-keep:])
    middle = "\n".join(lines[keep:-keep])

    hints: List[str] = []
    for pattern in _SEMANTIC_PATTERNS:
        hints.extend(m.group(0) for m in list(pattern.finditer(middle))[:5])
    summary = f"\n[SEMANTIC HINTS: {', '.join(hints)}]\n" if hints else ""

    result = f"{head}\n\n... [TRUNCATED {len(lines) - 2 * keep} lines] ...{summary}\n\n{tail}"
    if len(result) > max_length:
        # Lines themselves can be huge; cap what we keep of them
        half = max_length // 2
        result = f"{result[:half]}\n...\n{result[-half:]}"
    return result
