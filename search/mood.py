"""
Mood keyword lexicon for match explanations.

Maps a short chat message to one coarse mood label that is attached to
lexicon and semantic match reasons. The label is informational only and
never feeds into ranking.

Moods are checked in declaration order; the first mood with a keyword hit
wins, and "neutral" is returned when nothing matches.
"""

import re
from typing import Dict, List

MOOD_KEYWORDS: Dict[str, List[str]] = {
    "happy": ["happy", "joy", "upbeat", "dance", "party", "celebrate"],
    "sad": ["sad", "depressed", "cry", "lonely", "heartbreak"],
    "angry": ["angry", "mad", "rage", "furious", "hate"],
    "romantic": ["love", "romantic", "kiss", "heart", "valentine"],
    "chill": ["chill", "relax", "calm", "peaceful", "mellow"],
    "energetic": ["energy", "pump", "workout", "intense", "power"],
}

NEUTRAL_MOOD = "neutral"

# Prefix match so "crying" or "relaxing" count too.
_MOOD_PATTERNS = {
    mood: re.compile(r"\b(?:" + "|".join(re.escape(k) for k in keywords) + r")", re.IGNORECASE)
    for mood, keywords in MOOD_KEYWORDS.items()
}


def detect_mood(text: str) -> str:
    if not text:
        return NEUTRAL_MOOD

    for mood, pattern in _MOOD_PATTERNS.items():
        if pattern.search(text):
            return mood
    return NEUTRAL_MOOD
