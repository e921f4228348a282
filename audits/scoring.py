"""Weighted category and overall scoring of check results."""
from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from typing import Dict, Iterable, Mapping, Sequence

from shared.models import CheckStatus

from .checks import CATALOGUE, Category, CheckDefinition, round_half_up
from .result import CheckResult


CATEGORY_WEIGHTS: Mapping[Category, int] = {
    Category.INDEXABILITY: 25,
    Category.SCHEMA: 25,
    Category.METADATA: 20,
    Category.CONTENT: 15,
    Category.VARIANT_RISK: 10,
    Category.AI_READINESS: 5,
}

STATUS_CREDIT: Mapping[CheckStatus, float] = {
    CheckStatus.PASS: 1.0,
    CheckStatus.WARN: 0.5,
    CheckStatus.FAIL: 0.0,
    # Skipped checks keep their weight in the denominator, so they cost as
    # much as a failure. Tests pin this down.
    CheckStatus.SKIP: 0.0,
}


@dataclass(frozen=True)
class AuditScoreCard:
    overall: int
    categories: Mapping[Category, int]

    def as_columns(self) -> Dict[str, int]:
        """Column values for ``shared.models.AuditScore``."""

        return {
            "overall": self.overall,
            "indexability": self.categories[Category.INDEXABILITY],
            "metadata_score": self.categories[Category.METADATA],
            "content": self.categories[Category.CONTENT],
            "schema": self.categories[Category.SCHEMA],
            "variant_risk": self.categories[Category.VARIANT_RISK],
            "ai_readiness": self.categories[Category.AI_READINESS],
        }

    def to_dict(self) -> Dict[str, int]:
        payload = {category.value: score for category, score in self.categories.items()}
        payload["overall"] = self.overall
        return payload


class ScoreCalculator:
    """Aggregates results using the full declared weight of each category."""

    def __init__(
        self,
        definitions: Sequence[CheckDefinition] = CATALOGUE,
        category_weights: Mapping[Category, int] = CATEGORY_WEIGHTS,
    ) -> None:
        self._definitions = {definition.id: definition for definition in definitions}
        self._category_weights = dict(category_weights)

    def calculate_score(self, results: Iterable[CheckResult]) -> AuditScoreCard:
        totals: Dict[Category, float] = defaultdict(float)
        earned: Dict[Category, float] = defaultdict(float)

        for definition in self._definitions.values():
            totals[definition.category] += definition.weight

        for result in results:
            definition = self._definitions.get(result.check_id)
            if definition is None:
                continue
            earned[definition.category] += definition.weight * STATUS_CREDIT[result.status]

        categories: Dict[Category, int] = {}
        weighted_sum = 0.0
        total_weight = 0
        for category, weight in self._category_weights.items():
            total = totals.get(category, 0.0)
            score = round_half_up(earned[category] / total * 100) if total > 0 else 100
            categories[category] = score
            weighted_sum += score * weight
            total_weight += weight

        overall = round_half_up(weighted_sum / total_weight) if total_weight else 100
        return AuditScoreCard(overall=overall, categories=categories)
