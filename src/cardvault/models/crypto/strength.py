"""Passphrase strength policy and passphrase generation."""

from __future__ import annotations

import re
import secrets
from dataclasses import dataclass, field
from typing import Callable

MIN_LENGTH = 8
MIN_SCORE = 40

_WORDS = (
    "apple", "brave", "chair", "dance", "eagle", "flame", "grape", "house",
    "light", "magic", "night", "ocean", "peace", "queen", "river", "stone",
    "trust", "unity", "voice", "water", "youth", "zebra", "cloud", "dream",
    "field", "giant", "happy", "image", "joker", "kings", "lemon", "mouse",
    "noise", "olive", "piano", "quick", "radio", "smile", "tiger", "under",
    "violet", "world", "extra", "young", "north", "beach", "candy", "drive",
)


@dataclass(frozen=True)
class StrengthReport:
    """Result of a strength check; never contains the passphrase itself."""

    is_valid: bool
    score: int
    feedback: list[str] = field(default_factory=list)


PassphraseValidator = Callable[[str], StrengthReport]


def score_passphrase(passphrase: str) -> tuple[int, list[str]]:
    """Score a passphrase from 0 to 100 and collect improvement hints."""
    feedback: list[str] = []
    score = 0
    length = len(passphrase)

    if length >= 12:
        score += 25
    elif length >= 8:
        score += 15
        feedback.append("Consider using a longer passphrase (12+ characters)")
    else:
        feedback.append("Passphrase should be at least 8 characters long")

    if re.search(r"[a-z]", passphrase):
        score += 15
    if re.search(r"[A-Z]", passphrase):
        score += 15
    if re.search(r"[0-9]", passphrase):
        score += 15
    if re.search(r"[^a-zA-Z0-9]", passphrase):
        score += 20

    if length >= 20:
        score += 10

    if re.fullmatch(r"[a-zA-Z]+", passphrase):
        score -= 10
        feedback.append("Add numbers or special characters for better security")
    if re.fullmatch(r"[0-9]+", passphrase):
        score -= 20
        feedback.append("Use a mix of letters, numbers, and special characters")
    if re.search(r"(.)\1{2,}", passphrase):
        score -= 10
        feedback.append("Avoid repeating characters")

    score = max(0, min(100, score))

    if score >= 80:
        feedback.insert(0, "Strong passphrase")
    elif score >= 60:
        feedback.insert(0, "Good passphrase, but could be stronger")
    elif score >= 40:
        feedback.insert(0, "Moderate passphrase strength")
    else:
        feedback.insert(0, "Weak passphrase - consider improving")

    return score, feedback


def make_validator(
    min_length: int = MIN_LENGTH, min_score: int = MIN_SCORE
) -> PassphraseValidator:
    """Build the default length + character-class validator."""

    def validate(passphrase: str) -> StrengthReport:
        score, feedback = score_passphrase(passphrase)
        if len(passphrase) < min_length:
            feedback.append(f"Passphrase must be at least {min_length} characters long")
        return StrengthReport(
            is_valid=len(passphrase) >= min_length and score >= min_score,
            score=score,
            feedback=feedback,
        )

    return validate


default_validator = make_validator()


def generate_passphrase(word_count: int = 6) -> str:
    """Generate a random hyphen-joined word passphrase."""
    if word_count < 1:
        raise ValueError("word_count must be positive")
    return "-".join(secrets.choice(_WORDS) for _ in range(word_count))
