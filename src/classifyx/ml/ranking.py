"""Post-inference ranking: threshold filter and descending sort."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

from classifyx.errors import InferenceError

if TYPE_CHECKING:
    from collections.abc import Sequence


@dataclass(frozen=True)
class LabelConfidence:
    """A single classification prediction."""

    label: str
    probability: float


def rank(
    probabilities: Sequence[float],
    labels: Sequence[str],
    threshold: float,
) -> list[LabelConfidence]:
    """Pair labels with probabilities, keep those >= threshold, sort descending.

    The relative order of equal probabilities is not guaranteed.

    Raises:
        InferenceError: If the label count differs from the output vector length.
    """
    if len(probabilities) != len(labels):
        raise InferenceError(
            "rank",
            f"Model produced {len(probabilities)} probabilities for {len(labels)} labels",
        )

    # Compare the same float that is reported, whatever dtype the backend returned.
    pairs = [
        LabelConfidence(label=label, probability=float(probability))
        for label, probability in zip(labels, probabilities, strict=True)
    ]
    kept = [pair for pair in pairs if pair.probability >= threshold]
    return sorted(kept, key=lambda item: item.probability, reverse=True)
