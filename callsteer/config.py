"""
Steering Policy and Process Settings.

Two layers of configuration live here:

* ``SteeringPolicy`` -- the clinical policy the engine enforces: the
  declared range of every bounded metric, the risk-indicator threshold
  table, and the metric deltas each steering action applies.  Policies are
  validated pydantic objects and can be loaded from YAML so a deployment
  can tune deltas without code changes.
* ``Settings`` -- process-level knobs (bind address, logging mode, policy
  file location, simulation seed) read from ``CALLSTEER_*`` environment
  variables or a ``.env`` file.

The threshold labels are fixed; only the numeric cut-offs are
configurable, so dashboards and alert rules can rely on the label text.

DISCLAIMER: Thresholds in this module are workflow routing parameters for
clinician review.  They are not diagnostic criteria.
"""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Optional

import yaml
from pydantic import BaseModel, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from callsteer.models import ActionType


# ---------------------------------------------------------------------------
# Metric ranges
# ---------------------------------------------------------------------------

class MetricRange(BaseModel):
    """Inclusive ``[min, max]`` range a metric is clamped to."""

    min: float
    max: float

    @model_validator(mode="after")
    def min_not_above_max(self) -> "MetricRange":
        if self.min > self.max:
            raise ValueError(f"range min ({self.min}) must be <= max ({self.max})")
        return self

    def clamp(self, value: float) -> float:
        return max(self.min, min(self.max, value))

    def contains(self, value: float) -> bool:
        return self.min <= value <= self.max


class MetricBounds(BaseModel):
    """Declared range of every bounded call metric.

    Defaults are the physiologically plausible ranges used by the live
    refresh routine.  Every metric update is clamped to these ranges.
    """

    voice_quality: MetricRange = Field(default_factory=lambda: MetricRange(min=0.3, max=0.98))
    stress_level: MetricRange = Field(default_factory=lambda: MetricRange(min=0.1, max=0.9))
    cooperation_level: MetricRange = Field(default_factory=lambda: MetricRange(min=0.3, max=0.95))
    jitter: MetricRange = Field(default_factory=lambda: MetricRange(min=0.001, max=0.01))
    shimmer: MetricRange = Field(default_factory=lambda: MetricRange(min=0.01, max=0.08))
    hnr: MetricRange = Field(default_factory=lambda: MetricRange(min=8.0, max=25.0))
    speech_rate: MetricRange = Field(default_factory=lambda: MetricRange(min=80.0, max=180.0))
    pause_duration: MetricRange = Field(default_factory=lambda: MetricRange(min=0.2, max=2.0))

    def for_field(self, name: str) -> MetricRange:
        return getattr(self, name)


# ---------------------------------------------------------------------------
# Risk thresholds
# ---------------------------------------------------------------------------

class RiskThresholds(BaseModel):
    """Cut-offs for the risk-indicator table.

    A label is emitted when the metric is strictly beyond the cut-off:

    * ``stress_level > stress_high``          -> "High Stress Detected"
    * ``voice_quality < voice_quality_low``   -> "Poor Voice Quality"
    * ``cooperation_level < cooperation_low`` -> "Low Cooperation"
    * ``jitter > jitter_high``                -> "Elevated Jitter"
    * ``hnr < hnr_low``                       -> "Low HNR"
    """

    stress_high: float = Field(default=0.7, ge=0, le=1)
    voice_quality_low: float = Field(default=0.5, ge=0, le=1)
    cooperation_low: float = Field(default=0.4, ge=0, le=1)
    jitter_high: float = Field(default=0.008, gt=0)
    hnr_low: float = Field(default=12.0, gt=0)


# ---------------------------------------------------------------------------
# Action effects
# ---------------------------------------------------------------------------

class ActionEffects(BaseModel):
    """Metric deltas applied by each steering action.

    Control actions (pause, resume, end_call) change status only.
    """

    prompt_cooperation: float = 0.05
    redirect_stress: float = -0.10
    inject_question_cooperation: float = 0.03
    inject_question_voice_quality: float = 0.02
    escalate_stress: float = 0.20

    def deltas_for(self, action_type: ActionType) -> dict[str, float]:
        """Return ``{metric_field: delta}`` for one action type."""
        if action_type == ActionType.PROMPT:
            return {"cooperation_level": self.prompt_cooperation}
        if action_type == ActionType.REDIRECT:
            return {"stress_level": self.redirect_stress}
        if action_type == ActionType.INJECT_QUESTION:
            return {
                "cooperation_level": self.inject_question_cooperation,
                "voice_quality": self.inject_question_voice_quality,
            }
        if action_type == ActionType.ESCALATE:
            return {"stress_level": self.escalate_stress}
        return {}


# ---------------------------------------------------------------------------
# Steering policy
# ---------------------------------------------------------------------------

class SteeringPolicy(BaseModel):
    """Complete clinical policy for one deployment of the engine."""

    name: str = Field(default="default", min_length=1)
    metric_bounds: MetricBounds = Field(default_factory=MetricBounds)
    risk_thresholds: RiskThresholds = Field(default_factory=RiskThresholds)
    action_effects: ActionEffects = Field(default_factory=ActionEffects)
    manual_escalation_label: str = Field(default="Manual Escalation", min_length=1)
    recent_actions_limit: int = Field(
        default=50,
        gt=0,
        description="How many actions the dashboard and GET /actions return across sessions.",
    )


DEFAULT_POLICY = SteeringPolicy()
"""Built-in policy carrying the reference ranges, thresholds and deltas."""


def load_policy_from_yaml(path: str | Path) -> SteeringPolicy:
    """Load a steering policy from a YAML file.

    The file must contain a top-level ``policy`` mapping; omitted keys fall
    back to the defaults::

        policy:
          name: "cardiology_pilot"
          risk_thresholds:
            stress_high: 0.65
          action_effects:
            escalate_stress: 0.25

    Raises:
        FileNotFoundError: If the file does not exist.
        ValueError: If the YAML structure is invalid.
        pydantic.ValidationError: If the policy fails validation.
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Policy file not found: {path}")

    with open(path, "r") as f:
        raw = yaml.safe_load(f)

    if not isinstance(raw, dict) or "policy" not in raw:
        raise ValueError("YAML file must contain a top-level 'policy' mapping.")

    entry = raw["policy"]
    if not isinstance(entry, dict):
        raise ValueError("'policy' must be a mapping.")

    return SteeringPolicy(**entry)


# ---------------------------------------------------------------------------
# Process settings
# ---------------------------------------------------------------------------

class Settings(BaseSettings):
    """Process settings loaded from ``CALLSTEER_*`` environment variables.

    Environment variables take precedence over ``.env`` file values.
    """

    model_config = SettingsConfigDict(
        env_prefix="CALLSTEER_", env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    host: str = "0.0.0.0"
    port: int = Field(default=8000, gt=0, lt=65536)
    debug: bool = False
    log_json: bool = Field(
        default=True,
        description="Render logs as JSON; ignored (console output) when debug is on.",
    )
    policy_file: Optional[Path] = Field(
        default=None,
        description="YAML steering policy; the built-in default policy is used when unset.",
    )
    metrics_seed: Optional[int] = Field(
        default=None,
        description="Seed for the simulated metrics source, for reproducible demos.",
    )

    @field_validator("policy_file")
    @classmethod
    def policy_file_exists(cls, v: Optional[Path]) -> Optional[Path]:
        if v is not None and not v.exists():
            raise ValueError(f"policy_file does not exist: {v}")
        return v

    def load_policy(self) -> SteeringPolicy:
        if self.policy_file is None:
            return DEFAULT_POLICY.model_copy(deep=True)
        return load_policy_from_yaml(self.policy_file)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Process-wide settings, read once from the environment."""
    return Settings()
