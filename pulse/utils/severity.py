"""Keyword severity classification for escalation reasons."""

from dataclasses import dataclass
from typing import Iterable, Tuple

from pulse.models.triage import Severity


@dataclass(frozen=True)
class SeverityKeywords:
    """Keyword table, one tuple per non-default severity."""

    urgent: Tuple[str, ...]
    high: Tuple[str, ...]
    medium: Tuple[str, ...]

    def by_rank(self) -> Iterable[Tuple[Severity, Tuple[str, ...]]]:
        """Keyword sets from most to least severe."""
        return (
            (Severity.URGENT, self.urgent),
            (Severity.HIGH, self.high),
            (Severity.MEDIUM, self.medium),
        )


DEFAULT_SEVERITY_KEYWORDS = SeverityKeywords(
    urgent=(
        "chest pain",
        "heart attack",
        "stroke",
        "difficulty breathing",
        "severe bleeding",
        "unconscious",
        "suicide",
        "overdose",
    ),
    high=(
        "severe pain",
        "high fever",
        "infection",
        "allergic reaction",
        "swelling",
        "vomiting blood",
    ),
    medium=(
        "persistent pain",
        "worsening symptoms",
        "medication concerns",
        "new symptoms",
        "fever",
    ),
)


def classify(
    reason: str, keywords: SeverityKeywords = DEFAULT_SEVERITY_KEYWORDS
) -> Severity:
    """
    Map an escalation reason to a severity.

    The first severity (by rank, highest first) with any keyword appearing
    in the reason wins; no match means LOW.

    Args:
        reason: Free-text escalation reason

    Returns:
        Severity for the reason
    """
    text_lower = (reason or "").strip().lower()
    if not text_lower:
        return Severity.LOW

    for severity, phrases in keywords.by_rank():
        if any(phrase in text_lower for phrase in phrases):
            return severity

    return Severity.LOW
