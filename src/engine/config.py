"""Engine configuration.

Two layers:

* ``BusinessConfig`` - per-vertical blend weights and ranking knobs. The
  weights are an externally supplied mapping from signal name to weight and
  must sum to 1.0; ``BUSINESS_CONFIGS`` ships starting values for the known
  verticals, to be recalibrated against outcome data.
* ``EngineSettings`` - process-level settings (timeouts, cache TTLs, retry
  policy, data locations) loaded from ``SIGNALRANK_*`` environment variables.
"""

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Mapping, Optional

from pydantic import BaseModel, Field, model_validator

from src.engine.exceptions import InvalidWeightsError, UnknownBusinessTypeError

SIGNAL_NAMES = ("thompson_sampling", "trending", "affinity", "collaborative")
WEIGHT_TOLERANCE = 0.01

DEFAULT_BUSINESS_TYPE = "food-delivery"


class SignalWeights(BaseModel):
    """Blend weights for the four ranking signals."""

    thompson_sampling: float = Field(..., ge=0.0, le=1.0)
    trending: float = Field(..., ge=0.0, le=1.0)
    affinity: float = Field(..., ge=0.0, le=1.0)
    collaborative: float = Field(..., ge=0.0, le=1.0)

    @model_validator(mode="after")
    def weights_sum_to_one(self):
        total = sum(self.as_dict().values())
        if abs(total - 1.0) > WEIGHT_TOLERANCE:
            raise ValueError(f"Signal weights must sum to 1.0, got {total}")
        return self

    @classmethod
    def from_mapping(cls, weights: Mapping[str, float]) -> "SignalWeights":
        """Validate a signal-name -> weight mapping.

        Raises:
            InvalidWeightsError: If a signal is missing or unknown, or the
                weights do not sum to 1.0.
        """
        unknown = set(weights) - set(SIGNAL_NAMES)
        missing = set(SIGNAL_NAMES) - set(weights)
        total = float(sum(weights.values()))
        if unknown or missing or abs(total - 1.0) > WEIGHT_TOLERANCE:
            raise InvalidWeightsError(total, dict(weights))
        return cls(**{name: float(weights[name]) for name in SIGNAL_NAMES})

    def as_dict(self) -> Dict[str, float]:
        return {name: getattr(self, name) for name in SIGNAL_NAMES}


class BusinessConfig(BaseModel):
    """Ranking configuration for one business vertical."""

    type: str
    weights: SignalWeights
    # MMR trade-off between relevance and variety; 0 disables re-ranking.
    diversity_factor: float = Field(default=0.3, ge=0.0, le=1.0)
    # Reserve clamp(1/sqrt(n), 0.05, 0.30) of the slots for under-sampled items.
    exploration_enabled: bool = True
    # Items with fewer impressions than this are eligible for exploration slots.
    exploration_impression_threshold: int = Field(default=20, ge=0)
    trending_window_hours: int = Field(default=6, gt=0)
    affinity_min_confidence: float = Field(default=0.1, ge=0.0, le=1.0)
    # Temporal decay (per day) applied to customer order history.
    decay_rate: float = Field(default=0.05, ge=0.0)
    exclude_cart_items: bool = True

    @classmethod
    def from_dict(cls, config_dict: Dict) -> "BusinessConfig":
        """Create config from a dictionary (e.g. loaded from JSON).

        Missing keys fall back to the matching predefined vertical when the
        ``type`` is known, otherwise to the model defaults.
        """
        business_type = config_dict.get("type", "general")
        base = BUSINESS_CONFIGS.get(business_type)
        merged = base.model_dump() if base is not None else {"type": business_type}
        merged.update({k: v for k, v in config_dict.items() if k != "weights"})
        if "weights" in config_dict:
            merged["weights"] = SignalWeights.from_mapping(config_dict["weights"])
        allowed = set(cls.model_fields)
        return cls.model_validate({k: v for k, v in merged.items() if k in allowed})


# Starting blends per vertical. These are business calibration values, not
# structural constants.
BUSINESS_CONFIGS: Dict[str, BusinessConfig] = {
    "food-delivery": BusinessConfig(
        type="food-delivery",
        weights=SignalWeights(
            thompson_sampling=0.27, trending=0.20, affinity=0.20, collaborative=0.33
        ),
        diversity_factor=0.3,
        trending_window_hours=24,
        affinity_min_confidence=0.10,
        decay_rate=0.10,
    ),
    "grocery": BusinessConfig(
        type="grocery",
        weights=SignalWeights(
            thompson_sampling=0.1875, trending=0.125, affinity=0.3125, collaborative=0.375
        ),
        diversity_factor=0.4,
        trending_window_hours=168,
        affinity_min_confidence=0.15,
        decay_rate=0.05,
    ),
    "pharmacy": BusinessConfig(
        type="pharmacy",
        weights=SignalWeights(
            thompson_sampling=0.12, trending=0.06, affinity=0.41, collaborative=0.41
        ),
        diversity_factor=0.2,
        exploration_enabled=False,
        trending_window_hours=720,
        affinity_min_confidence=0.20,
        decay_rate=0.02,
    ),
    "fashion": BusinessConfig(
        type="fashion",
        weights=SignalWeights(
            thompson_sampling=0.3125, trending=0.3125, affinity=0.125, collaborative=0.25
        ),
        diversity_factor=0.5,
        trending_window_hours=72,
        affinity_min_confidence=0.08,
        decay_rate=0.05,
    ),
    "electronics": BusinessConfig(
        type="electronics",
        weights=SignalWeights(
            thompson_sampling=0.24, trending=0.24, affinity=0.24, collaborative=0.28
        ),
        diversity_factor=0.4,
        trending_window_hours=168,
        affinity_min_confidence=0.12,
        decay_rate=0.02,
    ),
    "books": BusinessConfig(
        type="books",
        weights=SignalWeights(
            thompson_sampling=0.1875, trending=0.1875, affinity=0.1875, collaborative=0.4375
        ),
        diversity_factor=0.6,
        trending_window_hours=336,
        affinity_min_confidence=0.10,
        decay_rate=0.03,
    ),
    "general": BusinessConfig(
        type="general",
        weights=SignalWeights(
            thompson_sampling=0.27, trending=0.20, affinity=0.20, collaborative=0.33
        ),
        diversity_factor=0.4,
        trending_window_hours=72,
        affinity_min_confidence=0.10,
        decay_rate=0.05,
    ),
}


def get_business_config(business_type: str) -> BusinessConfig:
    """Look up the predefined configuration for a vertical.

    Raises:
        UnknownBusinessTypeError: If the vertical is not configured.
    """
    try:
        return BUSINESS_CONFIGS[business_type]
    except KeyError:
        raise UnknownBusinessTypeError(
            business_type, available=sorted(BUSINESS_CONFIGS)
        ) from None


@dataclass
class EngineSettings:
    """Process-level engine settings."""

    business_type: str = DEFAULT_BUSINESS_TYPE
    log_level: str = "INFO"

    # Per-scorer time budget inside one ranking request.
    scorer_timeout_seconds: float = 2.0
    candidate_batch_size: int = 500

    bandit_cache_ttl_seconds: float = 300.0
    trending_cache_ttl_seconds: float = 600.0
    affinity_cache_ttl_seconds: float = 3600.0
    collaborative_cache_ttl_seconds: float = 1800.0

    feedback_max_attempts: int = 3
    feedback_base_delay_seconds: float = 0.1

    data_dir: Optional[Path] = None
    stats_snapshot_path: Optional[Path] = None
    # Also snapshot after this many feedback writes; 0 saves on shutdown only.
    stats_snapshot_every: int = 0

    @classmethod
    def from_env(cls) -> "EngineSettings":
        """Load settings from environment variables."""

        def _path_env(key: str) -> Optional[Path]:
            value = os.getenv(key)
            return Path(value) if value else None

        return cls(
            business_type=os.getenv("SIGNALRANK_BUSINESS_TYPE", DEFAULT_BUSINESS_TYPE),
            log_level=os.getenv("SIGNALRANK_LOG_LEVEL", "INFO"),
            scorer_timeout_seconds=float(os.getenv("SIGNALRANK_SCORER_TIMEOUT", "2.0")),
            candidate_batch_size=int(os.getenv("SIGNALRANK_CANDIDATE_BATCH_SIZE", "500")),
            bandit_cache_ttl_seconds=float(os.getenv("SIGNALRANK_BANDIT_CACHE_TTL", "300")),
            trending_cache_ttl_seconds=float(os.getenv("SIGNALRANK_TRENDING_CACHE_TTL", "600")),
            affinity_cache_ttl_seconds=float(os.getenv("SIGNALRANK_AFFINITY_CACHE_TTL", "3600")),
            collaborative_cache_ttl_seconds=float(
                os.getenv("SIGNALRANK_COLLABORATIVE_CACHE_TTL", "1800")
            ),
            feedback_max_attempts=int(os.getenv("SIGNALRANK_FEEDBACK_MAX_ATTEMPTS", "3")),
            feedback_base_delay_seconds=float(
                os.getenv("SIGNALRANK_FEEDBACK_BASE_DELAY", "0.1")
            ),
            data_dir=_path_env("SIGNALRANK_DATA_DIR"),
            stats_snapshot_path=_path_env("SIGNALRANK_STATS_SNAPSHOT"),
            stats_snapshot_every=int(os.getenv("SIGNALRANK_STATS_SNAPSHOT_EVERY", "0")),
        )


_settings: Optional[EngineSettings] = None


def get_settings() -> EngineSettings:
    """Get the global settings instance."""
    global _settings
    if _settings is None:
        _settings = EngineSettings.from_env()
    return _settings


def reload_settings() -> EngineSettings:
    """Reload settings from environment."""
    global _settings
    _settings = None
    return get_settings()
