from moderation.service import (
    ModerationConfig,
    ModerationResult,
    ModerationService,
    policy_decline_message,
)
from moderation.gate import GateOutcome, ModerationAnnotation, ModerationGate

__all__ = [
    "ModerationConfig",
    "ModerationResult",
    "ModerationService",
    "policy_decline_message",
    "GateOutcome",
    "ModerationAnnotation",
    "ModerationGate",
]
