"""
Blocklist moderation for chat messages.

Runs before any song matching. Outcomes:

- slur        -> blocked outright, no replacement
- harassment  -> blocked, replaced by a neutral song title
- nsfw        -> blocked unless the room allows NSFW, replaced by a neutral title
- spam        -> blocked only in strict mode, no replacement
- clean       -> allowed
"""

import logging
import random
import re
from dataclasses import dataclass, asdict, replace
from typing import Literal, Optional

logger = logging.getLogger(__name__)

Category = Literal["harassment", "nsfw", "slur", "spam", "clean"]

SLURS = {
    "n***er", "n***a", "f****t", "r****d",
    "nazi", "hitler", "genocide", "kys", "kill yourself",
    "white power", "heil", "14/88", "1488",
}

HARASSMENT_KEYWORDS = {
    "kill yourself", "kys", "die", "suicide", "harm yourself",
    "worthless", "pathetic", "loser", "stupid idiot",
    "hate you", "wish you were dead", "go die",
    "end your life", "nobody likes you",
}

NSFW_KEYWORDS = {
    "porn", "sex", "xxx", "nude", "naked", "dick", "penis",
    "vagina", "pussy", "cock", "fuck", "fucking", "orgasm",
    "masturbate", "horny", "sexy", "sexy time", "blow job", "blowjob",
}

NEUTRAL_MAPPINGS = [
    "Bad",
    "Smooth Criminal",
    "Beat It",
    "The Way You Make Me Feel",
    "Rock With You",
]

DECLINE_MESSAGES = {
    "slur": "Message contains inappropriate language and cannot be processed.",
    "harassment": "Content appears to contain harmful language. Please try a different message.",
    "nsfw": "This room has family-friendly settings enabled. Please try a different message.",
    "spam": "Message appears to be spam. Please try a simpler query.",
}
DEFAULT_DECLINE_MESSAGE = "Unable to process this message. Please try something else."

MAX_MESSAGE_LENGTH = 1000
MAX_WORD_REPEATS = 5

_REPEATED_CHAR_RX = re.compile(r"(.)\1{4,}")
_NON_ALPHA_RX = re.compile(r"[^a-z]")


@dataclass(frozen=True)
class ModerationConfig:
    strict_mode: bool = False
    allow_nsfw: bool = False
    log_violations: bool = True


@dataclass(frozen=True)
class ModerationResult:
    allowed: bool
    category: Category
    confidence: float
    reason: Optional[str] = None
    replacement_text: Optional[str] = None

    def to_dict(self) -> dict:
        return asdict(self)


CLEAN = ModerationResult(allowed=True, category="clean", confidence=0.95)


def _contains_term(text: str, term: str) -> bool:
    # Word-boundary match so "die" does not fire on "indie".
    return re.search(r"(?<!\w)" + re.escape(term) + r"(?!\w)", text) is not None


class ModerationService:
    def __init__(self, neutral_mappings=None, rng: random.Random = None):
        self.slurs = set(SLURS)
        self.harassment_keywords = set(HARASSMENT_KEYWORDS)
        self.nsfw_keywords = set(NSFW_KEYWORDS)
        self.neutral_mappings = list(neutral_mappings or NEUTRAL_MAPPINGS)
        self._rng = rng or random.Random()

    def moderate(self, text: str, config: ModerationConfig = ModerationConfig()) -> ModerationResult:
        normalized = (text or "").lower().strip()

        result = self._check_slurs(normalized)
        if not result.allowed:
            self._log_violation(config, text, result, logging.WARNING)
            return result

        result = self._check_harassment(normalized)
        if not result.allowed:
            self._log_violation(config, text, result, logging.WARNING)
            return replace(result, replacement_text=self.neutral_mapping())

        if not config.allow_nsfw:
            result = self._check_nsfw(normalized)
            if not result.allowed:
                self._log_violation(config, text, result, logging.INFO)
                return replace(result, replacement_text=self.neutral_mapping())

        result = self._check_spam(text or "")
        if not result.allowed and config.strict_mode:
            self._log_violation(config, text, result, logging.INFO)
            return result

        return CLEAN

    def _log_violation(self, config: ModerationConfig, text: str, result: ModerationResult, level: int):
        if config.log_violations:
            logger.log(level, "Content %s: category=%s reason=%s text=%r",
                       "blocked" if result.replacement_text is None else "filtered",
                       result.category, result.reason, text[:80])

    def _check_slurs(self, text: str) -> ModerationResult:
        for slur in self.slurs:
            if " " in slur and _contains_term(text, slur):
                return ModerationResult(False, "slur", 1.0, "Contains prohibited slur")

        for word in text.split():
            if word in self.slurs:
                return ModerationResult(False, "slur", 1.0, "Contains prohibited slur")

            # Evasion: digits/symbols stuffed into a word
            clean_word = _NON_ALPHA_RX.sub("", word)
            if len(clean_word) > 3:
                for slur in self.slurs:
                    clean_slur = _NON_ALPHA_RX.sub("", slur)
                    if len(clean_slur) > 3 and clean_slur in clean_word:
                        return ModerationResult(False, "slur", 0.9, "Contains prohibited slur (evasion detected)")

        return CLEAN

    def _check_harassment(self, text: str) -> ModerationResult:
        for keyword in self.harassment_keywords:
            if _contains_term(text, keyword):
                return ModerationResult(False, "harassment", 0.85, "Contains harassment content")

        if len(text) > 20 and _REPEATED_CHAR_RX.search(text):
            return ModerationResult(False, "harassment", 0.6, "Aggressive typing pattern detected")

        return CLEAN

    def _check_nsfw(self, text: str) -> ModerationResult:
        for keyword in self.nsfw_keywords:
            if _contains_term(text, keyword):
                return ModerationResult(False, "nsfw", 0.8, "Contains NSFW content")
        return CLEAN

    def _check_spam(self, text: str) -> ModerationResult:
        counts = {}
        for word in text.split():
            counts[word] = counts.get(word, 0) + 1
        for word, count in counts.items():
            if count > MAX_WORD_REPEATS and len(word) > 2:
                return ModerationResult(False, "spam", 0.7, "Excessive repetition detected")

        if len(text) > MAX_MESSAGE_LENGTH:
            return ModerationResult(False, "spam", 0.9, "Message too long")

        return CLEAN

    def neutral_mapping(self) -> str:
        return self._rng.choice(self.neutral_mappings)

    def add_to_blocklist(self, term: str, category: Category):
        term = term.lower().strip()
        if category == "slur":
            self.slurs.add(term)
        elif category == "harassment":
            self.harassment_keywords.add(term)
        elif category == "nsfw":
            self.nsfw_keywords.add(term)
        else:
            raise ValueError(f"Cannot add terms to category {category!r}")
        logger.info("Added term to moderation blocklist: category=%s", category)


def policy_decline_message(category: str) -> str:
    return DECLINE_MESSAGES.get(category, DEFAULT_DECLINE_MESSAGE)
