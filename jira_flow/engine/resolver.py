"""
Rejection message classification and transition label resolution.

Jira's configured transition labels drift from the canonical stage names
("Back to Doing", "Return to Doing"). When a same-named transition is
rejected, the tracker's message usually lists the labels that are legal
right now; the resolver picks the one that leads to the wanted stage.

Both steps are pure functions over (target, rejection text). The text
patterns live in ``RejectionClassifier`` so they can be swapped when the
tracker's wording changes.

Example:
    >>> resolver = TransitionResolver()
    >>> resolver.resolve("Doing", "Available states for issue P-1: 'Return to Doing', 'Cancel'")
    'Return to Doing'
"""

from __future__ import annotations

import re

from jira_flow.config.settings import RejectionPatternsConfig

_FIELD_SEPARATORS = re.compile(r"[,;]|\band\b", re.IGNORECASE)
_QUOTES = "'\"`“”‘’"


class RejectionClassifier:
    """Text-pattern classifier for tracker rejection messages."""

    def __init__(self, patterns: RejectionPatternsConfig | None = None) -> None:
        """Initialize classifier.

        Args:
            patterns: Regular expressions to use; defaults match jira-cli
                and the messages produced by the REST store.
        """
        patterns = patterns or RejectionPatternsConfig()
        self._missing_fields = re.compile(patterns.missing_fields, re.IGNORECASE)
        self._available_labels = re.compile(patterns.available_labels, re.IGNORECASE)

    def missing_fields(self, text: str) -> list[str]:
        """Field names from a "please fill in X, Y" message, or []."""
        match = self._missing_fields.search(text or "")
        if not match:
            return []
        listing = match.group(1)
        names = (part.strip().rstrip(".").strip().strip(_QUOTES) for part in _FIELD_SEPARATORS.split(listing))
        return [name for name in names if name]

    def available_labels(self, text: str) -> list[str]:
        """Legal transition labels listed after the marker phrase, or []."""
        match = self._available_labels.search(text or "")
        if not match:
            return []
        listing = match.group(1).splitlines()[0]
        labels = (part.strip().rstrip(".").strip().strip(_QUOTES).strip() for part in listing.split(","))
        return [label for label in labels if label]


class TransitionResolver:
    """Finds the transition label to invoke for a canonical target stage."""

    def __init__(self, classifier: RejectionClassifier | None = None) -> None:
        self.classifier = classifier or RejectionClassifier()

    def candidates(self, rejection_text: str) -> list[str]:
        """Labels the tracker said are legal."""
        return self.classifier.available_labels(rejection_text)

    def resolve(self, target: str, rejection_text: str) -> str | None:
        """Pick the label for ``target`` from a rejection message.

        First match wins, case-insensitive:
        1. a label equal to the target
        2. "BACK TO " + target
        3. a label ending with the target (but not equal to it)

        Returns:
            The label as the tracker spelled it, or None.
        """
        return self.pick(target, self.candidates(rejection_text))

    @staticmethod
    def pick(target: str, labels: list[str]) -> str | None:
        """Apply the matching rules to an explicit label list."""
        wanted = target.strip().upper()
        if not wanted:
            return None
        folded = [(label, label.strip().upper()) for label in labels]

        for label, upper in folded:
            if upper == wanted:
                return label
        for label, upper in folded:
            if upper == f"BACK TO {wanted}":
                return label
        for label, upper in folded:
            if upper != wanted and upper.endswith(wanted):
                return label
        return None
