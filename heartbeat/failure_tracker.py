"""Consecutive cycle failure counter and up/down classification"""
from enum import Enum


class Classification(str, Enum):
    HEALTHY = "HEALTHY"
    WARN = "WARN"
    DOWN = "DOWN"


def classify(consecutive_failures: int, threshold: int) -> Classification:
    if consecutive_failures <= 0:
        return Classification.HEALTHY
    if consecutive_failures < threshold:
        return Classification.WARN
    return Classification.DOWN


class FailureTracker:
    """
    Turns a stream of whole-cycle outcomes into a classification.

    The count only moves by +1 on a failed cycle or back to 0 on a successful
    one. No I/O, no clock: the monitor loop is the only writer.
    """

    def __init__(self, threshold: int):
        if threshold < 1:
            raise ValueError("threshold must be at least 1")
        self.threshold = threshold
        self.consecutive_failures = 0

    @property
    def classification(self) -> Classification:
        return classify(self.consecutive_failures, self.threshold)

    def on_cycle_success(self) -> Classification:
        self.consecutive_failures = 0
        return Classification.HEALTHY

    def on_cycle_failure(self) -> Classification:
        self.consecutive_failures += 1
        return self.classification
