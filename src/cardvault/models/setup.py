"""Passphrase setup flow as an immutable state machine.

    INTRO -> CREATE -> CONFIRM -> FINAL -> COMMITTED

Each transition is a pure function returning a new :class:`PassphraseSetup`.
The UI renders the current value and dispatches transitions; it never holds
the candidate passphrase itself.
"""

from __future__ import annotations

import hmac
from dataclasses import dataclass, field, replace
from enum import Enum

from cardvault.models.crypto.exceptions import UnacknowledgedRisk
from cardvault.models.crypto.strength import (
    PassphraseValidator,
    StrengthReport,
    default_validator,
)


class SetupStep(str, Enum):
    """Steps of the passphrase setup flow."""

    INTRO = "intro"
    CREATE = "create"
    CONFIRM = "confirm"
    FINAL = "final"
    COMMITTED = "committed"


class InvalidTransition(ValueError):
    """Raised when a transition is requested from the wrong step."""


@dataclass(frozen=True)
class PassphraseSetup:
    """Snapshot of the setup flow.

    Attributes:
        step: Current step
        report: Strength report for the last submitted candidate
        mismatch: True when the last confirmation did not match
    """

    step: SetupStep = SetupStep.INTRO
    candidate: str = field(default="", repr=False)
    report: StrengthReport | None = None
    mismatch: bool = False

    @property
    def has_candidate(self) -> bool:
        return bool(self.candidate)


def _expect(state: PassphraseSetup, step: SetupStep) -> None:
    if state.step is not step:
        raise InvalidTransition(
            f"Cannot leave {state.step.value!r} here; expected {step.value!r}"
        )


def begin_setup(state: PassphraseSetup) -> PassphraseSetup:
    """INTRO -> CREATE."""
    _expect(state, SetupStep.INTRO)
    return replace(state, step=SetupStep.CREATE)


def submit_candidate(
    state: PassphraseSetup,
    candidate: str,
    validator: PassphraseValidator = default_validator,
) -> PassphraseSetup:
    """CREATE -> CONFIRM when the candidate passes the strength policy.

    A rejected candidate is not retained; the flow stays in CREATE with the
    strength report attached.
    """
    _expect(state, SetupStep.CREATE)
    report = validator(candidate)
    if not candidate or not report.is_valid:
        return PassphraseSetup(step=SetupStep.CREATE, report=report)
    return PassphraseSetup(step=SetupStep.CONFIRM, candidate=candidate, report=report)


def submit_confirmation(state: PassphraseSetup, confirmation: str) -> PassphraseSetup:
    """CONFIRM -> FINAL when the confirmation equals the candidate exactly."""
    _expect(state, SetupStep.CONFIRM)
    matches = hmac.compare_digest(
        state.candidate.encode("utf-8"), confirmation.encode("utf-8")
    )
    if not matches:
        return replace(state, mismatch=True)
    return replace(state, step=SetupStep.FINAL, mismatch=False)


def commit(state: PassphraseSetup, acknowledged: bool) -> tuple[PassphraseSetup, str]:
    """FINAL -> COMMITTED, releasing the accepted passphrase exactly once.

    Raises:
        UnacknowledgedRisk: If the user has not acknowledged that a lost
            passphrase cannot be recovered.
    """
    _expect(state, SetupStep.FINAL)
    if not acknowledged:
        raise UnacknowledgedRisk()
    return PassphraseSetup(step=SetupStep.COMMITTED, report=state.report), state.candidate


def cancel(state: PassphraseSetup) -> PassphraseSetup:
    """Abandon the flow from any step, dropping all candidate values."""
    return PassphraseSetup()
