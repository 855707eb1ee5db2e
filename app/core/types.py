from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class ModelTier(str, Enum):
    HIGH = "high"
    DEFAULT = "default"
    LOW = "low"


HIGH_TIER_MODEL_ID = "claude-opus-4-5"
DEFAULT_TIER_MODEL_ID = "claude-sonnet-4-5"
LOW_TIER_MODEL_ID = "claude-haiku-4-5"


@dataclass(frozen=True, slots=True)
class TierModels:
    high: str = HIGH_TIER_MODEL_ID
    default: str = DEFAULT_TIER_MODEL_ID
    low: str = LOW_TIER_MODEL_ID

    def for_tier(self, tier: ModelTier) -> str:
        if tier is ModelTier.HIGH:
            return self.high
        if tier is ModelTier.LOW:
            return self.low
        return self.default

    def ordered(self) -> list[str]:
        return [self.high, self.default, self.low]


@dataclass(frozen=True, slots=True)
class SystemMessage:
    text: str
    type: str = "text"

    def to_dict(self) -> dict[str, str]:
        return {"type": self.type, "text": self.text}


REQUIRED_SYSTEM_PROMPT = SystemMessage(
    text="You are Claude Code, Anthropic's official CLI for Claude."
)
