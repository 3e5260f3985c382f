"""Variant registry and keyword classifier.

The classifier is a plain substring scan over the lower-cased prompt. Group
order is the tie-break: "please test my debug fix" resolves to ``test`` because
the test group is checked before the debug group.
"""

from __future__ import annotations

import dataclasses
from collections.abc import Iterable
from typing import Any

import structlog

from bonsai.errors import UnknownVariantError
from bonsai.models.routing import Complexity, RoutingRequest
from bonsai.variants.definitions import DEFAULT_VARIANTS, Variant

log = structlog.get_logger(__name__)

PRIME_VARIANT_ID = "prime"

# Checked in order; first group with a matching keyword wins
CLASSIFIER_KEYWORDS: tuple[tuple[str, tuple[str, ...]], ...] = (
    ("research", ("research", "find", "analyze")),
    ("code", ("code", "function", "program")),
    ("design", ("design", "ui", "interface")),
    ("test", ("test", "qa", "quality")),
    ("deploy", ("deploy", "devops", "infrastructure")),
    ("document", ("document", "docs", "write")),
    ("debug", ("debug", "error", "fix")),
)

# Every matching group joins a collaboration, after prime
COLLABORATION_KEYWORDS: tuple[tuple[str, tuple[str, ...]], ...] = (
    ("research", ("research", "find")),
    ("code", ("code", "develop")),
    ("design", ("design", "ui")),
    ("test", ("test", "qa")),
    ("deploy", ("deploy", "devops")),
    ("debug", ("debug", "error")),
)

NEXT_STEPS: dict[str, tuple[str, ...]] = {
    "research": (
        "Review findings for accuracy",
        "Cross-reference with additional sources",
        "Consider documentation updates",
    ),
    "code": (
        "Test the implementation",
        "Review code for optimization",
        "Update documentation",
    ),
    "design": (
        "Create prototypes",
        "Gather user feedback",
        "Implement design system",
    ),
}

# Prompts longer than this also get the documentation variant suggested
LONG_PROMPT_CHARS = 500


class VariantCatalog:
    """In-memory registry of variants, keyed by id, in definition order."""

    def __init__(self, variants: Iterable[Variant] = DEFAULT_VARIANTS) -> None:
        self._variants: dict[str, Variant] = {}
        for variant in variants:
            if variant.id in self._variants:
                raise ValueError(f"Variant '{variant.id}' is already registered")
            self._variants[variant.id] = variant
        if PRIME_VARIANT_ID not in self._variants:
            raise ValueError("Catalog requires a 'prime' variant")

    def __contains__(self, variant_id: object) -> bool:
        return variant_id in self._variants

    def __len__(self) -> int:
        return len(self._variants)

    def get(self, variant_id: str) -> Variant:
        """Look up a variant.

        Raises:
            UnknownVariantError: If the id is not registered
        """
        try:
            return self._variants[variant_id]
        except KeyError:
            raise UnknownVariantError(variant_id) from None

    def list(self) -> list[Variant]:
        return list(self._variants.values())

    def classify(self, prompt: str) -> str:
        """Map a prompt to the best-fit variant id (``prime`` when nothing matches)."""
        text = prompt.lower()
        for variant_id, keywords in CLASSIFIER_KEYWORDS:
            if any(keyword in text for keyword in keywords):
                return variant_id
        return PRIME_VARIANT_ID

    def collaborators(self, prompt: str, complexity: Complexity = Complexity.MEDIUM) -> list[str]:
        """Variants that should take part in a collaboration, prime first, without duplicates."""
        text = prompt.lower()
        members = [PRIME_VARIANT_ID]
        for variant_id, keywords in COLLABORATION_KEYWORDS:
            if any(keyword in text for keyword in keywords):
                members.append(variant_id)
        if complexity == Complexity.COMPLEX:
            members.append("document")
        return [m for m in dict.fromkeys(members) if m in self._variants]

    def build_prompt(self, variant: Variant, request: RoutingRequest) -> str:
        """Frame the user prompt for a variant.

        Sections are joined by blank lines in the order context, previous
        conversation, framed instruction. Empty sections are omitted.
        """
        sections: list[str] = []
        if request.context:
            sections.append(f"Context: {request.context}")
        if request.previous_messages:
            history = "\n".join(f"{turn.role}: {turn.content}" for turn in request.previous_messages)
            sections.append(f"Previous conversation:\n{history}")
        sections.append(f"As the {variant.name}, {request.prompt}")
        return "\n\n".join(sections)

    def update_variant(self, variant_id: str, **updates: Any) -> Variant:
        """Merge field updates into a stored variant and return the new instance.

        Raises:
            UnknownVariantError: If the id is not registered
            TypeError: If an update names a field Variant does not have
        """
        current = self.get(variant_id)
        updates.pop("id", None)
        updated = dataclasses.replace(current, **updates)
        self._variants[variant_id] = updated
        log.info("variants.updated", variant_id=variant_id, fields=sorted(updates))
        return updated

    def next_steps(self, variant_id: str) -> list[str]:
        return list(NEXT_STEPS.get(variant_id, ()))

    def suggest_collaboration(self, variant_id: str, prompt: str) -> list[str]:
        """Other variants worth involving, given the current one and the prompt."""
        if variant_id == PRIME_VARIANT_ID:
            return []

        text = prompt.lower()
        suggestions: list[str] = []
        if variant_id == "code" and "test" in text:
            suggestions.append("test")
        if variant_id == "design" and "implement" in text:
            suggestions.append("code")
        if variant_id == "research" and "build" in text:
            suggestions.extend(["code", "design"])
        if len(prompt) > LONG_PROMPT_CHARS and "document" not in suggestions:
            suggestions.append("document")
        return suggestions

    def status(self) -> list[dict[str, Any]]:
        return [variant.summary() for variant in self._variants.values()]
