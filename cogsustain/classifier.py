"""Heuristic classifiers for user text.

Phrase lists cover English and German, the two languages the app ships
with. They are deliberately simple; ``ClassifierProtocol`` lets a
model-based classifier replace them without touching the scoring formula.
"""

from __future__ import annotations

import re
from typing import FrozenSet, Tuple

from cogsustain.protocols import Classification

# ---- Phrase Lists ----

DELEGATION_SIGNALS: Tuple[str, ...] = (
    "entscheide du",
    "mach du",
    "sag du mir",
    "übernimm du",
    "entscheidest du",
    "decide for me",
    "you decide",
    "what should i do",
    "tell me what to do",
    "mach mal fertig",
    "schreib das für mich",
    "what do you think is best",
    "just tell me what to do",
    "i trust your judgment",
    "was denkst du ist am besten",
    "sag mir einfach was ich tun soll",
    "ich vertraue dir",
    "just do it for me",
    "write it for me",
    "do it for me",
)

PHATIC_PHRASES: FrozenSet[str] = frozenset(
    {
        # Greetings
        "hi", "hey", "hello", "hallo", "moin", "servus", "guten morgen", "guten tag",
        "good morning",
        # Gratitude / confirmation
        "danke", "thanks", "thank you", "merci", "thx",
        "cool", "super", "klasse", "toll", "great", "awesome", "nice", "nice job", "nice work",
        "ok", "okay", "k", "gut", "good", "perfekt", "perfect", "fine", "alright",
        "bye", "ciao", "tschüss", "bis dann", "later",
        "genau", "exakt", "stimmt", "right", "correct", "passt",
        "verstanden", "understood", "alles klar", "jep", "yep", "ja", "yes", "gerne",
        # Completion / closing
        "finish", "done", "fertig", "abschluss", "ende", "stop", "okay finish",
    }
)  # fmt: skip

# Matched as word prefixes ("vergleich" covers "vergleiche", "vergleichen")
CRITICAL_STEMS: Tuple[str, ...] = (
    "alternativ",
    "vergleich",
    "compar",
    "unterschied",
    "differen",
    "kritik",
    "critiq",
    "critic",
    "approach",
    "ansatz",
    "vorteil",
    "nachteil",
    "warum",
    "wieso",
    "weshalb",
    "tradeoff",
    "trade-off",
)

# Matched as whole words only
CRITICAL_WORDS: Tuple[str, ...] = (
    "why",
    "better",
    "besser",
    "andere",
    "anders",
    "option",
    "options",
    "pro",
    "pros",
    "contra",
    "cons",
    "diff",
    "vs",
    "versus",
)

STEERING_VERBS: Tuple[str, ...] = (
    "analysiere",
    "prüfe",
    "erkläre",
    "fasse",
    "zeig",
    "vergleiche",
    "bewerte",
    "analyze",
    "check",
    "explain",
    "summarize",
    "show",
    "compare",
    "evaluate",
)

_CRITICAL_RE = re.compile(
    r"\b(?:"
    + "|".join(re.escape(s) for s in CRITICAL_STEMS)
    + r")|\b(?:"
    + "|".join(re.escape(w) for w in CRITICAL_WORDS)
    + r")\b",
    re.IGNORECASE,
)
_STEERING_RE = re.compile(r"^(?:" + "|".join(STEERING_VERBS) + ")", re.IGNORECASE)
_REPEAT_RE = re.compile(r"(.)\1{4,}")
_LETTERS_RE = re.compile(r"[^a-zäöüß]")
_VOWELS_RE = re.compile(r"[aeiouäöü]")

GIBBERISH_MIN_LETTERS = 3
GIBBERISH_VOWEL_CHECK_MIN = 6
GIBBERISH_MIN_VOWEL_RATIO = 0.15


# ---- Single-purpose checks ----


def is_delegating_work(text: str) -> bool:
    t = text.lower()
    return any(signal in t for signal in DELEGATION_SIGNALS)


def is_critical_inquiry(text: str) -> bool:
    return _CRITICAL_RE.search(text) is not None


def is_steering_command(text: str) -> bool:
    return _STEERING_RE.match(text.strip()) is not None


def is_phatic(text: str) -> bool:
    """Greeting, thanks or acknowledgment with nothing else in it."""
    lowered = text.lower().strip()
    cleaned = "".join(ch for ch in lowered if ch.isalnum() or ch.isspace())
    cleaned = " ".join(cleaned.split())
    return cleaned in PHATIC_PHRASES


def is_gibberish(text: str) -> bool:
    """Keyboard mashing: long character runs or almost no vowels."""
    letters = _LETTERS_RE.sub("", text.lower().strip())
    if len(letters) < GIBBERISH_MIN_LETTERS:
        return False
    if _REPEAT_RE.search(letters):
        return True
    vowels = len(_VOWELS_RE.findall(letters))
    if len(letters) > GIBBERISH_VOWEL_CHECK_MIN and vowels < len(letters) * GIBBERISH_MIN_VOWEL_RATIO:
        return True
    return False


class HeuristicClassifier:
    """ClassifierProtocol implementation backed by phrase lists."""

    def classify(self, text: str) -> Classification:
        if not isinstance(text, str) or not text.strip():
            return Classification()
        return Classification(
            is_delegating=is_delegating_work(text),
            is_phatic=is_phatic(text),
            is_gibberish=is_gibberish(text),
            is_critical_inquiry=is_critical_inquiry(text),
            is_steering=is_steering_command(text),
        )
