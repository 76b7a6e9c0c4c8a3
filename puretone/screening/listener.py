from __future__ import annotations


class SessionListener:
    """Callbacks raised by a screening session. Every hook defaults to a no-op.

    Subclass and override what the host UI needs; hooks run on the thread that
    drove the session event, never on the noise sampling thread.
    """

    def on_step_started(self, step):
        pass

    def on_frequency_started(self, step, frequency):
        pass

    def on_level_changed(self, step, frequency, level_db):
        pass

    def on_tone_started(self, request):
        pass

    def on_tone_stopped(self, request):
        pass

    def on_threshold_captured(self, record):
        pass

    def on_false_positive(self, count):
        pass

    def on_transition_pending(self, next_step):
        pass

    def on_noise_changed(self, level, noisy):
        pass

    def on_test_finished(self):
        pass

    def on_cancelled(self):
        pass

    def on_error(self, message):
        pass
