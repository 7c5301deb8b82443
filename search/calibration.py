import math
from dataclasses import dataclass
from typing import Sequence

from config.settings import (
    CONFIDENCE_SCALE,
    CONFIDENCE_MIN,
    CONFIDENCE_MAX,
    SINGLE_CANDIDATE_CONFIDENCE,
)


def sigmoid(x: float) -> float:
    if x >= 0:
        return 1.0 / (1.0 + math.exp(-x))
    z = math.exp(x)
    return z / (1.0 + z)


@dataclass(frozen=True)
class ConfidenceCalibrator:
    """Turns a descending score list into a bounded confidence.

    The gap between the top two scores drives the value: a decisive winner
    saturates towards ``upper``, a near tie sits around 0.5. A lone
    candidate has no runner-up to compare against and gets ``single``.
    """

    scale: float = CONFIDENCE_SCALE
    lower: float = CONFIDENCE_MIN
    upper: float = CONFIDENCE_MAX
    single: float = SINGLE_CANDIDATE_CONFIDENCE

    def calibrate(self, scores: Sequence[float]) -> float:
        if not scores:
            return 0.0
        if len(scores) == 1:
            return self.single

        confidence = sigmoid(self.scale * (scores[0] - scores[1]))
        return max(self.lower, min(self.upper, confidence))
