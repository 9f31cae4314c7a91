"""Grading policy assembled once from configuration."""

import logging
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator

from videoassess.libs.config_loader import ConfigType, get_config
from .models import (
    AGGREGATED_RATER_TYPES,
    UNLIMITED_PEERS,
    BonusScale,
    BonusTier,
    PeerCount,
    PeerMode,
    RaterType,
    Timing,
)

LOG = logging.getLogger(__name__)


class BonusPolicy(BaseModel):
    """Settings for one kind of fairness bonus (peer or self)."""
    enabled: bool = Field(default=False, description="Whether the bonus is awarded at all")
    max_percent: float = Field(default=10, ge=0, le=100, description="Share of max_grade a full bonus is worth")
    scale: BonusScale = Field(default_factory=BonusScale.default)


class GradingPolicy(BaseModel):
    """Activity-level grading settings consumed by the engine."""
    timings: List[Timing] = Field(default_factory=lambda: [Timing.BEFORE])
    weights: Dict[RaterType, float] = Field(
        default_factory=lambda: {
            RaterType.TEACHER: 80,
            RaterType.SELF: 10,
            RaterType.PEER: 10,
            RaterType.CLASS: 0,
        },
        description="Rater-type weights in percent"
    )
    peer_count: PeerCount = Field(default=2, description="Peers per student, or 'unlimited'")
    peer_mode: Optional[PeerMode] = Field(
        default=None,
        description="Course-wide or per-group assignment; None uses groups when any exist"
    )
    max_grade: float = Field(default=100, description="Total possible points")
    grade_pass: float = Field(default=0, description="Score that completes the activity")
    completion_tracking: bool = False
    accepted_difference: float = Field(default=20, ge=0, description="Training tolerance in percent")
    fairness_bonus: BonusPolicy = Field(default_factory=BonusPolicy)
    self_fairness_bonus: BonusPolicy = Field(default_factory=BonusPolicy)

    @field_validator("weights")
    @classmethod
    def _check_weights(cls, weights: Dict[RaterType, float]) -> Dict[RaterType, float]:
        for rater_type, weight in weights.items():
            if rater_type not in AGGREGATED_RATER_TYPES:
                raise ValueError(f"{rater_type.value} grades are not weighted")
            if weight < 0:
                raise ValueError(f"Weight for {rater_type.value} must not be negative")
        return {rater_type: weights.get(rater_type, 0) for rater_type in AGGREGATED_RATER_TYPES}

    @field_validator("peer_count", mode="before")
    @classmethod
    def _check_peer_count(cls, value: Any) -> PeerCount:
        return normalize_peer_count(value)

    @field_validator("max_grade")
    @classmethod
    def _default_max_grade(cls, value: float) -> float:
        return 100 if value < 0 else value

    @property
    def weight_sum(self) -> float:
        return sum(self.weights.values())

    def weight(self, rater_type: RaterType) -> float:
        return self.weights.get(rater_type, 0)

    @classmethod
    def from_config(cls, config: Optional[ConfigType] = None) -> "GradingPolicy":
        """Build a policy from the ``grading`` section of a loaded config."""
        section = get_config("grading", config)
        if not isinstance(section, dict):
            raise ValueError("grading config must be a mapping")

        data = dict(section)
        for name in ("fairness_bonus", "self_fairness_bonus"):
            if name in data:
                data[name] = _bonus_policy_data(data[name], name)
        policy = cls(**data)
        LOG.debug("Loaded grading policy: %s", policy)
        return policy


def normalize_peer_count(value: Any) -> PeerCount:
    """Map configured peer counts onto a non-negative int or UNLIMITED_PEERS."""
    if isinstance(value, str):
        if value.strip().lower() == UNLIMITED_PEERS:
            return UNLIMITED_PEERS
        try:
            value = int(value)
        except ValueError:
            raise ValueError(f"Invalid peer count: {value!r}")
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"Peer count must be an integer or {UNLIMITED_PEERS!r}, got {value!r}")
    if value == -1:
        return UNLIMITED_PEERS
    if value < 0:
        raise ValueError(f"Peer count must not be negative, got {value}")
    return value


def _bonus_policy_data(raw: Any, name: str) -> Dict[str, Any]:
    if not isinstance(raw, dict):
        raise ValueError(f"{name} config must be a mapping")
    data = dict(raw)
    scale = data.get("scale")
    if scale is not None:
        tiers = []
        for entry in scale:
            if isinstance(entry, dict):
                tiers.append(BonusTier(threshold=entry["threshold"], bonus=entry["bonus"]))
            else:
                threshold, bonus = entry
                tiers.append(BonusTier(threshold=threshold, bonus=bonus))
        data["scale"] = BonusScale(tiers=tiers)
    return data
