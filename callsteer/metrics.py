"""
Call Metrics -- Simulation, Clamping and Risk-Indicator Derivation.

Real acoustic feature extraction happens outside this engine.  Until a live
biomarker feed is wired in, a ``MetricsSource`` supplies baseline snapshots,
small signed drifts between refreshes, and the elapsed-time increment for
each update.  Two sources ship with the package:

* ``RandomMetricsSource`` -- bounded-random values in clinically plausible
  ranges; the default for the running service and demo sessions.
* ``ScriptedMetricsSource`` -- a fixed baseline and a scripted sequence of
  drifts, so policy behaviour can be exercised deterministically.

Policy lives in the pure functions at the bottom of the module: every
update is clamped to the declared ranges in ``MetricBounds``, and
``risk_indicators`` is rebuilt from the threshold table on every update.

DISCLAIMER: Simulated metrics are placeholders for a biomarker pipeline.
They carry no clinical meaning.
"""

from __future__ import annotations

import random
from collections import deque
from typing import Iterable, Mapping, Optional, Protocol

from callsteer.config import MetricBounds, RiskThresholds, SteeringPolicy
from callsteer.models import Biomarkers, CallMetrics


SCORE_FIELDS = ("voice_quality", "stress_level", "cooperation_level")
BIOMARKER_FIELDS = ("jitter", "shimmer", "hnr", "speech_rate", "pause_duration")
METRIC_FIELDS = SCORE_FIELDS + BIOMARKER_FIELDS


# ---------------------------------------------------------------------------
# Sources
# ---------------------------------------------------------------------------

class MetricsSource(Protocol):
    """Supplies metric values in place of a live biomarker pipeline."""

    def baseline(self) -> CallMetrics:
        """Snapshot for a call that has just connected."""
        ...

    def demo_baseline(self) -> CallMetrics:
        """Snapshot for a demo call already a few minutes in."""
        ...

    def drift(self, metrics: CallMetrics) -> dict[str, float]:
        """Signed per-field change to apply on the next refresh."""
        ...

    def elapsed_seconds(self) -> int:
        """Call time that passes between two updates."""
        ...


# (low, high) draw ranges
_BASELINE_RANGES = {
    "voice_quality": (0.85, 0.95),
    "stress_level": (0.2, 0.5),
    "cooperation_level": (0.7, 0.9),
    "jitter": (0.003, 0.007),
    "shimmer": (0.02, 0.04),
    "hnr": (12.0, 20.0),
    "speech_rate": (100.0, 140.0),
    "pause_duration": (0.5, 1.5),
}

_DEMO_RANGES = {
    "voice_quality": (0.7, 0.9),
    "stress_level": (0.2, 0.6),
    "cooperation_level": (0.6, 0.9),
    "jitter": (0.003, 0.008),
    "shimmer": (0.02, 0.05),
    "hnr": (10.0, 22.0),
    "speech_rate": (90.0, 150.0),
    "pause_duration": (0.4, 1.6),
}

# full width of the symmetric drift window, e.g. 0.2 -> [-0.1, +0.1)
_DRIFT_WIDTH = {
    "voice_quality": 0.1,
    "stress_level": 0.2,
    "cooperation_level": 0.1,
    "jitter": 0.001,
    "shimmer": 0.01,
    "hnr": 2.0,
    "speech_rate": 10.0,
    "pause_duration": 0.3,
}


class RandomMetricsSource:
    """Bounded-random metrics, optionally seeded for reproducible demos."""

    def __init__(self, seed: Optional[int] = None) -> None:
        self._rng = random.Random(seed)

    def _draw(self, ranges: Mapping[str, tuple[float, float]], duration: int) -> CallMetrics:
        values = {name: self._rng.uniform(lo, hi) for name, (lo, hi) in ranges.items()}
        return build_metrics(values, duration=duration)

    def baseline(self) -> CallMetrics:
        return self._draw(_BASELINE_RANGES, duration=0)

    def demo_baseline(self) -> CallMetrics:
        return self._draw(_DEMO_RANGES, duration=self._rng.randint(60, 359))

    def drift(self, metrics: CallMetrics) -> dict[str, float]:
        return {
            name: (self._rng.random() - 0.5) * width
            for name, width in _DRIFT_WIDTH.items()
        }

    def elapsed_seconds(self) -> int:
        return self._rng.randint(10, 39)


class ScriptedMetricsSource:
    """Deterministic source: fixed baselines and a queue of scripted drifts.

    Once the scripted drifts run out, further refreshes apply no drift.
    """

    def __init__(
        self,
        baseline: Optional[CallMetrics] = None,
        drifts: Iterable[Mapping[str, float]] = (),
        elapsed: int = 15,
        demo: Optional[CallMetrics] = None,
    ) -> None:
        self._baseline = baseline or reference_baseline()
        self._demo = demo or self._baseline.model_copy(update={"duration": 120})
        self._drifts: deque[dict[str, float]] = deque(dict(d) for d in drifts)
        self._elapsed = elapsed

    def baseline(self) -> CallMetrics:
        return self._baseline.model_copy(deep=True)

    def demo_baseline(self) -> CallMetrics:
        return self._demo.model_copy(deep=True)

    def drift(self, metrics: CallMetrics) -> dict[str, float]:
        return self._drifts.popleft() if self._drifts else {}

    def elapsed_seconds(self) -> int:
        return self._elapsed


def reference_baseline() -> CallMetrics:
    """Population-normal snapshot used when no randomness is wanted."""
    return build_metrics(
        {
            "voice_quality": 0.85,
            "stress_level": 0.3,
            "cooperation_level": 0.8,
            "jitter": 0.005,
            "shimmer": 0.03,
            "hnr": 15.2,
            "speech_rate": 120.0,
            "pause_duration": 0.8,
        }
    )


# ---------------------------------------------------------------------------
# Policy functions
# ---------------------------------------------------------------------------

def build_metrics(values: Mapping[str, float], duration: int = 0) -> CallMetrics:
    """Assemble a ``CallMetrics`` from a flat ``{field: value}`` mapping."""
    return CallMetrics(
        duration=duration,
        voice_quality=values["voice_quality"],
        stress_level=values["stress_level"],
        cooperation_level=values["cooperation_level"],
        biomarkers=Biomarkers(**{name: values[name] for name in BIOMARKER_FIELDS}),
    )


def flatten(metrics: CallMetrics) -> dict[str, float]:
    """Return every bounded field as a flat ``{field: value}`` mapping."""
    values = {name: getattr(metrics, name) for name in SCORE_FIELDS}
    values.update({name: getattr(metrics.biomarkers, name) for name in BIOMARKER_FIELDS})
    return values


def apply_deltas(
    metrics: CallMetrics,
    deltas: Mapping[str, float],
    bounds: MetricBounds,
    elapsed: int = 0,
) -> CallMetrics:
    """Add ``deltas`` to the named fields, clamp everything, advance duration.

    Returns a new snapshot; ``risk_indicators`` is carried over unchanged
    and must be recomputed by the caller.

    Raises:
        ValueError: If a delta names an unknown metric field.
    """
    unknown = set(deltas) - set(METRIC_FIELDS)
    if unknown:
        raise ValueError(f"Unknown metric fields: {sorted(unknown)}")
    if elapsed < 0:
        raise ValueError("elapsed must be >= 0")

    values = flatten(metrics)
    for name, delta in deltas.items():
        values[name] = values[name] + delta
    values = {name: bounds.for_field(name).clamp(v) for name, v in values.items()}

    updated = build_metrics(values, duration=metrics.duration + elapsed)
    updated.risk_indicators = list(metrics.risk_indicators)
    return updated


def clamp_metrics(metrics: CallMetrics, bounds: MetricBounds) -> CallMetrics:
    return apply_deltas(metrics, {}, bounds)


def derive_risk_indicators(metrics: CallMetrics, thresholds: RiskThresholds) -> list[str]:
    """Apply the threshold table to a snapshot, in table order."""
    indicators: list[str] = []
    if metrics.stress_level > thresholds.stress_high:
        indicators.append("High Stress Detected")
    if metrics.voice_quality < thresholds.voice_quality_low:
        indicators.append("Poor Voice Quality")
    if metrics.cooperation_level < thresholds.cooperation_low:
        indicators.append("Low Cooperation")
    if metrics.biomarkers.jitter > thresholds.jitter_high:
        indicators.append("Elevated Jitter")
    if metrics.biomarkers.hnr < thresholds.hnr_low:
        indicators.append("Low HNR")
    return indicators


def with_risk_indicators(
    metrics: CallMetrics,
    policy: SteeringPolicy,
    manually_escalated: bool = False,
) -> CallMetrics:
    """Return ``metrics`` with ``risk_indicators`` rebuilt from scratch.

    The manual-escalation label is a function of the session's action log,
    not of the metric values, so the caller states whether it applies.
    """
    indicators = derive_risk_indicators(metrics, policy.risk_thresholds)
    if manually_escalated:
        indicators.append(policy.manual_escalation_label)
    return metrics.model_copy(update={"risk_indicators": indicators})


def refresh_metrics(
    metrics: CallMetrics,
    source: MetricsSource,
    policy: SteeringPolicy,
    manually_escalated: bool = False,
) -> CallMetrics:
    """One simulation tick: drift, clamp, advance duration, recompute labels."""
    updated = apply_deltas(
        metrics,
        source.drift(metrics),
        policy.metric_bounds,
        elapsed=source.elapsed_seconds(),
    )
    return with_risk_indicators(updated, policy, manually_escalated)
