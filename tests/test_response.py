from __future__ import annotations

import pytest

from puretone.screening.response import OutcomeKind, ResponseEvaluator


@pytest.fixture
def evaluator():
    return ResponseEvaluator(grace_period_ms=3500)


def test_click_while_real_tone_plays_is_valid_with_latency(evaluator):
    outcome = evaluator.evaluate_heard(now=1300, tone_start=1000, tone_end=None, is_playing=True,
                                       was_catch_trial=False)
    assert outcome.is_valid
    assert outcome.latency_ms == 300


def test_click_inside_grace_window_after_real_tone_is_valid(evaluator):
    outcome = evaluator.evaluate_heard(now=5000, tone_start=1000, tone_end=2000, is_playing=False,
                                       was_catch_trial=False)
    assert outcome.kind is OutcomeKind.VALID
    assert outcome.latency_ms == 4000


@pytest.mark.parametrize("now", [5500, 5501, 20000])
def test_click_after_grace_window_is_ignored(evaluator, now):
    outcome = evaluator.evaluate_heard(now=now, tone_start=1000, tone_end=2000, is_playing=False,
                                       was_catch_trial=False)
    assert outcome.kind is OutcomeKind.IGNORED
    assert outcome.counts_as_false_positive


def test_click_during_catch_trial_is_false_positive(evaluator):
    outcome = evaluator.evaluate_heard(now=1200, tone_start=1000, tone_end=None, is_playing=True,
                                       was_catch_trial=True)
    assert outcome.kind is OutcomeKind.FALSE_POSITIVE
    assert outcome.latency_ms is None


def test_click_shortly_after_catch_trial_is_false_positive(evaluator):
    outcome = evaluator.evaluate_heard(now=4000, tone_start=1000, tone_end=2000, is_playing=False,
                                       was_catch_trial=True)
    assert outcome.kind is OutcomeKind.FALSE_POSITIVE


def test_click_long_after_catch_trial_is_ignored(evaluator):
    outcome = evaluator.evaluate_heard(now=9000, tone_start=1000, tone_end=2000, is_playing=False,
                                       was_catch_trial=True)
    assert outcome.kind is OutcomeKind.IGNORED


def test_click_without_any_tone_is_ignored(evaluator):
    outcome = evaluator.evaluate_heard(now=100, tone_start=None, tone_end=None, is_playing=False,
                                       was_catch_trial=False)
    assert outcome.kind is OutcomeKind.IGNORED


def test_not_heard_always_requests_louder_tone(evaluator):
    assert evaluator.evaluate_not_heard() is True
