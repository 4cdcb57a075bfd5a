"""
Rolling baselines for the Country Instability Index.

Two fixed-size ring buffers per country:
  - RollingBaseline: the last N samples of per-component signal counts,
    from which mean and standard deviation are taken for z-scores.
  - ScoreHistory: the last M (timestamp, score) pairs, used for change_24h.

Both are bounded by construction; nothing here grows with uptime.
"""
from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

import numpy as np

logger = logging.getLogger(__name__)


class RollingBaseline:
    """
    Ring buffer of component-count vectors.

    Usage:
        baseline = RollingBaseline(["protests", "military"], window=168)
        baseline.add(np.array([3.0, 1.0]))
        mean, std = baseline.stats()
    """

    def __init__(self, components: list[str], window: int):
        if window < 1:
            raise ValueError("window must be at least 1")
        self.components = list(components)
        self.window = window
        self._buffer = np.zeros((window, len(components)), dtype=float)
        self._next = 0
        self._filled = 0
        self.total_samples = 0

    def add(self, sample: np.ndarray) -> None:
        """Append one sample, overwriting the oldest once the window is full."""
        sample = np.asarray(sample, dtype=float)
        if sample.shape != (len(self.components),):
            raise ValueError(
                f"sample shape {sample.shape} does not match {len(self.components)} components"
            )
        self._buffer[self._next] = sample
        self._next = (self._next + 1) % self.window
        self._filled = min(self._filled + 1, self.window)
        self.total_samples += 1

    @property
    def size(self) -> int:
        return self._filled

    def stats(self) -> tuple[np.ndarray, np.ndarray]:
        """Return (mean, std) per component. Zeros when empty."""
        n = len(self.components)
        if self._filled == 0:
            return np.zeros(n), np.zeros(n)
        window = self._buffer[: self._filled]
        return window.mean(axis=0), window.std(axis=0)

    def z_scores(self, current: np.ndarray, std_floor: float) -> np.ndarray:
        """Standardise a current count vector against the baseline."""
        mean, std = self.stats()
        return (np.asarray(current, dtype=float) - mean) / np.maximum(std, std_floor)


class ScoreHistory:
    """Fixed-length ring buffer of (epoch seconds, score)."""

    def __init__(self, length: int):
        if length < 1:
            raise ValueError("length must be at least 1")
        self.length = length
        self._times = np.full(length, np.nan)
        self._scores = np.full(length, np.nan)
        self._next = 0

    def append(self, when: datetime, score: float) -> None:
        self._times[self._next] = when.timestamp()
        self._scores[self._next] = score
        self._next = (self._next + 1) % self.length

    def __len__(self) -> int:
        return int(np.count_nonzero(~np.isnan(self._times)))

    def score_at_or_before(self, when: datetime) -> Optional[float]:
        """Most recent score recorded at or before the given time. None if there is none."""
        # NaN slots compare False
        eligible = self._times <= when.timestamp()
        if not eligible.any():
            return None
        idx = np.argmax(np.where(eligible, self._times, -np.inf))
        return float(self._scores[idx])

    def change_since(self, now: datetime, current: float, span: timedelta = timedelta(hours=24)) -> float:
        """current minus the score recorded ~span ago; 0.0 until the history covers a full span."""
        past = self.score_at_or_before(now - span)
        if past is None:
            return 0.0
        return round(current - past, 1)

    def latest(self) -> Optional[tuple[datetime, float]]:
        if len(self) == 0:
            return None
        idx = (self._next - 1) % self.length
        return (
            datetime.fromtimestamp(float(self._times[idx]), tz=timezone.utc),
            float(self._scores[idx]),
        )
