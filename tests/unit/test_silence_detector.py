# pylint: disable=missing-module-docstring,missing-function-docstring

from audio.pcm import samples_to_pcm16le
from audio.silence import SilenceDetector


SPEECH = samples_to_pcm16le([8000, -8000] * 100)
QUIET = samples_to_pcm16le([0] * 200)


def test_leading_silence_never_fires():
    detector = SilenceDetector(threshold=0.01, blocks_required=2)

    assert not any(detector.observe(QUIET) for _ in range(10))


def test_fires_once_after_speech_then_quiet_run():
    detector = SilenceDetector(threshold=0.01, blocks_required=3)

    results = [detector.observe(b) for b in [SPEECH, QUIET, QUIET, QUIET, QUIET, QUIET]]

    assert results == [False, False, False, True, False, False]


def test_speech_interrupts_quiet_run():
    detector = SilenceDetector(threshold=0.01, blocks_required=2)

    results = [detector.observe(b) for b in [SPEECH, QUIET, SPEECH, QUIET, QUIET]]

    assert results == [False, False, False, False, True]


def test_reset_disarms():
    detector = SilenceDetector(threshold=0.01, blocks_required=1)
    detector.observe(SPEECH)
    detector.reset()

    assert detector.observe(QUIET) is False
