"""Tests for the passphrase strength policy and the setup state machine."""

from __future__ import annotations

import pytest

from cardvault.models.crypto.exceptions import UnacknowledgedRisk
from cardvault.models.crypto.strength import (
    StrengthReport,
    default_validator,
    generate_passphrase,
    make_validator,
    score_passphrase,
)
from cardvault.models.setup import (
    InvalidTransition,
    PassphraseSetup,
    SetupStep,
    begin_setup,
    cancel,
    commit,
    submit_candidate,
    submit_confirmation,
)

STRONG = "Correct-Horse-42-Battery"


class TestStrength:
    def test_strong_passphrase_scores_high(self):
        score, feedback = score_passphrase(STRONG)
        assert score >= 80
        assert feedback[0] == "Strong passphrase"

    def test_letters_only_penalized(self):
        score, feedback = score_passphrase("password")
        assert score < 40
        assert "Add numbers or special characters for better security" in feedback

    def test_digits_only_penalized(self):
        score, feedback = score_passphrase("12345678")
        assert score < 20
        assert "Use a mix of letters, numbers, and special characters" in feedback

    def test_repeats_penalized(self):
        with_repeats, _ = score_passphrase("Aaaa-1234-xyz")
        without, _ = score_passphrase("Abcd-1234-xyz")
        assert with_repeats < without

    def test_score_bounds(self):
        for candidate in ["", "a", STRONG * 3, "1111"]:
            score, _ = score_passphrase(candidate)
            assert 0 <= score <= 100

    def test_default_validator(self):
        assert default_validator(STRONG).is_valid
        assert not default_validator("password").is_valid
        assert not default_validator("").is_valid

    def test_min_length_enforced_regardless_of_score(self):
        validate = make_validator(min_length=30, min_score=0)
        report = validate(STRONG)
        assert not report.is_valid
        assert "Passphrase must be at least 30 characters long" in report.feedback

    def test_report_never_contains_passphrase(self):
        report = default_validator(STRONG)
        assert all(STRONG not in line for line in report.feedback)

    def test_generated_passphrase_passes_policy(self):
        phrase = generate_passphrase()
        assert len(phrase.split("-")) == 6
        assert default_validator(phrase).is_valid

    def test_generated_passphrases_differ(self):
        assert generate_passphrase(8) != generate_passphrase(8)

    def test_generate_rejects_zero_words(self):
        with pytest.raises(ValueError):
            generate_passphrase(0)


class TestSetupFlow:
    def _at_confirm(self) -> PassphraseSetup:
        return submit_candidate(begin_setup(PassphraseSetup()), STRONG)

    def test_happy_path(self):
        state = begin_setup(PassphraseSetup())
        assert state.step is SetupStep.CREATE

        state = submit_candidate(state, STRONG)
        assert state.step is SetupStep.CONFIRM

        state = submit_confirmation(state, STRONG)
        assert state.step is SetupStep.FINAL

        state, passphrase = commit(state, acknowledged=True)
        assert state.step is SetupStep.COMMITTED
        assert passphrase == STRONG
        assert not state.has_candidate

    def test_weak_candidate_stays_in_create(self):
        state = submit_candidate(begin_setup(PassphraseSetup()), "password")
        assert state.step is SetupStep.CREATE
        assert not state.has_candidate
        assert state.report is not None and not state.report.is_valid

    def test_custom_validator_is_used(self):
        def reject_all(_: str) -> StrengthReport:
            return StrengthReport(is_valid=False, score=0, feedback=["nope"])

        state = submit_candidate(begin_setup(PassphraseSetup()), STRONG, reject_all)
        assert state.step is SetupStep.CREATE
        assert state.report.feedback == ["nope"]

    def test_mismatch_stays_in_confirm(self):
        state = submit_confirmation(self._at_confirm(), STRONG + " ")
        assert state.step is SetupStep.CONFIRM
        assert state.mismatch

    def test_match_after_mismatch(self):
        state = submit_confirmation(self._at_confirm(), "nope")
        state = submit_confirmation(state, STRONG)
        assert state.step is SetupStep.FINAL
        assert not state.mismatch

    def test_comparison_is_exact(self):
        state = submit_confirmation(self._at_confirm(), STRONG.lower())
        assert state.mismatch

    def test_commit_requires_acknowledgement(self):
        state = submit_confirmation(self._at_confirm(), STRONG)
        with pytest.raises(UnacknowledgedRisk):
            commit(state, acknowledged=False)

    def test_repr_hides_candidate(self):
        assert STRONG not in repr(self._at_confirm())

    @pytest.mark.parametrize("steps", [0, 1, 2, 3])
    def test_cancel_clears_everything(self, steps):
        state = PassphraseSetup()
        transitions = [
            begin_setup,
            lambda s: submit_candidate(s, STRONG),
            lambda s: submit_confirmation(s, STRONG),
        ]
        for transition in transitions[:steps]:
            state = transition(state)
        state = cancel(state)
        assert state == PassphraseSetup()
        assert state.step is SetupStep.INTRO

    def test_out_of_order_transition_rejected(self):
        with pytest.raises(InvalidTransition):
            submit_candidate(PassphraseSetup(), STRONG)
        with pytest.raises(InvalidTransition):
            commit(self._at_confirm(), acknowledged=True)
