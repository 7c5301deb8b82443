import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Optional, Sequence, Union

from moderation.service import (
    ModerationConfig,
    ModerationResult,
    ModerationService,
    policy_decline_message,
)

if TYPE_CHECKING:
    from search.matcher import MatchResult

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ModerationAnnotation:
    """What the gate did to a message; carried into match explanations only."""

    category: str
    was_filtered: bool
    original_text: str

    def to_dict(self) -> dict:
        return {
            "category": self.category,
            "was_filtered": self.was_filtered,
            "original_text": self.original_text,
        }


@dataclass(frozen=True)
class GateOutcome:
    blocked: bool
    text: Optional[str]
    annotation: ModerationAnnotation
    moderation_result: ModerationResult
    decline_message: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "blocked": self.blocked,
            "category": self.annotation.category,
            "message": self.decline_message,
            "moderation": self.moderation_result.to_dict(),
        }


class ModerationGate:
    """Pre-step in front of the matcher.

    A hard block (not allowed and no replacement) stops the message here and
    the caller answers with a policy message. A substitution hands the
    replacement text to the matcher; the matcher cannot tell it apart from a
    normal message, only the annotation records it.
    """

    def __init__(self, service: ModerationService = None, config: ModerationConfig = ModerationConfig()):
        self.service = service or ModerationService()
        self.config = config

    def screen(self, text: str, config: ModerationConfig = None) -> GateOutcome:
        config = config or self.config
        result = self.service.moderate(text, config)

        if result.allowed:
            return GateOutcome(
                blocked=False,
                text=text,
                annotation=ModerationAnnotation(result.category, False, text),
                moderation_result=result,
            )

        if result.replacement_text is None:
            logger.info("Message hard-blocked by moderation: category=%s", result.category)
            return GateOutcome(
                blocked=True,
                text=None,
                annotation=ModerationAnnotation(result.category, True, text),
                moderation_result=result,
                decline_message=policy_decline_message(result.category),
            )

        logger.info(
            "Message substituted by moderation: category=%s replacement=%r",
            result.category, result.replacement_text,
        )
        return GateOutcome(
            blocked=False,
            text=result.replacement_text,
            annotation=ModerationAnnotation(result.category, True, text),
            moderation_result=result,
        )

    async def process(
        self,
        matcher,
        text: str,
        allow_explicit: bool = False,
        user_id: str = None,
        recent_history: Sequence[str] = None,
        config: ModerationConfig = None
    ) -> Union[GateOutcome, "MatchResult"]:
        """Screen ``text`` and, unless it is blocked, match it.

        Returns the blocked ``GateOutcome`` or the matcher's ``MatchResult``.
        """
        outcome = self.screen(text, config)
        if outcome.blocked:
            return outcome

        return await matcher.match_songs(
            outcome.text,
            allow_explicit=allow_explicit,
            user_id=user_id,
            recent_history=recent_history,
            moderation=outcome.annotation,
        )
