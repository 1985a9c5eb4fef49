"""Ranking policy: raw class scores to a top-K list of predictions.

Scores are mapped to whole percentages with round-half-away-from-zero on the
float product ``score * 100``. Zero percentages are dropped, the rest are
sorted by descending percentage with ties broken by ascending class id.
"""

from __future__ import annotations

import json
import math
from dataclasses import dataclass
from typing import TYPE_CHECKING

import numpy as np

from fungiscan.errors import InvalidScoreVector

if TYPE_CHECKING:
    from collections.abc import Iterable, Sequence

    from numpy.typing import ArrayLike


@dataclass(frozen=True)
class Prediction:
    """A single ranked class prediction."""

    class_id: int
    probability: int

    def __post_init__(self) -> None:
        if isinstance(self.class_id, bool) or not isinstance(self.class_id, int) or self.class_id < 0:
            raise InvalidScoreVector(f"class_id must be a non-negative int, got {self.class_id!r}")
        if isinstance(self.probability, bool) or not isinstance(self.probability, int):
            raise InvalidScoreVector(f"probability must be an int, got {self.probability!r}")
        if not 0 <= self.probability <= 100:
            raise InvalidScoreVector(f"probability must be in [0, 100], got {self.probability}")

    def to_dict(self) -> dict[str, int]:
        return {"id": self.class_id, "probability": self.probability}


RankedResult = tuple[Prediction, ...]


def round_half_away_from_zero(value: float) -> int:
    """Round to the nearest int, moving .5 away from zero (2.5 -> 3, -2.5 -> -3)."""
    magnitude = abs(value)
    whole = math.floor(magnitude)
    # adding 0.5 first would round 0.49999999999999994 up
    if magnitude - whole >= 0.5:
        whole += 1
    return int(math.copysign(whole, value))


def rank(scores: ArrayLike, k: int, *, num_classes: int | None = None) -> RankedResult:
    """Convert a raw score vector into at most ``k`` ranked predictions.

    Args:
        scores: One score per class index, typically softmax probabilities.
        k: Maximum number of predictions to return.
        num_classes: Expected vector length, checked when given.

    Returns:
        Predictions sorted by descending probability, then ascending class id.

    Raises:
        InvalidScoreVector: If the vector shape, length or values are invalid.
        ValueError: If ``k`` is negative.
    """
    if k < 0:
        raise ValueError(f"k must be >= 0, got {k}")

    vector = np.asarray(scores, dtype=np.float64)
    if vector.ndim != 1:
        raise InvalidScoreVector(f"Score vector must be one-dimensional, got shape {vector.shape}")
    if num_classes is not None and vector.shape[0] != num_classes:
        raise InvalidScoreVector(f"Expected {num_classes} scores, got {vector.shape[0]}")
    if not np.all(np.isfinite(vector)):
        raise InvalidScoreVector("Score vector contains non-finite values")

    predictions: list[Prediction] = []
    for class_id, score in enumerate(vector.tolist()):
        percent = round_half_away_from_zero(score * 100)
        if percent == 0:
            continue
        predictions.append(Prediction(class_id=class_id, probability=percent))

    predictions.sort(key=lambda p: (-p.probability, p.class_id))
    return tuple(predictions[:k])


# ---------------------------------------------------------------------------
# Stored JSON form: [{"id": int, "probability": int}, ...]
# ---------------------------------------------------------------------------


def dump_ranking(ranking: Iterable[Prediction]) -> str:
    """Serialize a ranked result to its compact stored JSON form."""
    return json.dumps([p.to_dict() for p in ranking], separators=(",", ":"))


def load_ranking(payload: str) -> RankedResult:
    """Parse the stored JSON form back into predictions, preserving order."""
    try:
        items = json.loads(payload)
    except (TypeError, ValueError) as exc:
        raise InvalidScoreVector(f"Stored ranking is not valid JSON: {exc}") from exc
    if not isinstance(items, list):
        raise InvalidScoreVector("Stored ranking must be a JSON array")
    return tuple(_prediction_from_item(item) for item in items)


def _prediction_from_item(item: object) -> Prediction:
    if not isinstance(item, dict) or "id" not in item or "probability" not in item:
        raise InvalidScoreVector(f"Malformed stored prediction: {item!r}")
    return Prediction(class_id=item["id"], probability=item["probability"])


def top_prediction(ranking: Sequence[Prediction]) -> Prediction | None:
    """Return the best prediction, or None for an empty ranking."""
    return ranking[0] if ranking else None
