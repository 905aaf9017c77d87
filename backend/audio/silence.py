"""
Energy-based silence detection for the local microphone.

The detector observes fixed-size PCM16 blocks. It arms once a block rises
above the RMS threshold (speech seen) and fires exactly once after a run of
consecutive quiet blocks, then disarms until speech is heard again.
"""
from audio.pcm import rms
from spec import SILENCE_BLOCKS_REQUIRED, SILENCE_RMS_THRESHOLD


class SilenceDetector:
    """
    Report the transition from speech into sustained silence.

    Leading silence (before any speech) never fires, so an idle
    microphone does not request responses in a loop.
    """
    def __init__(
        self,
        threshold: float = SILENCE_RMS_THRESHOLD,
        blocks_required: int = SILENCE_BLOCKS_REQUIRED,
    ):
        if blocks_required <= 0:
            raise ValueError("blocks_required must be > 0")
        self._threshold = threshold
        self._blocks_required = blocks_required
        self._quiet_count = 0
        self._armed = False

    def observe(self, pcm_bytes: bytes) -> bool:
        """
        Observe one block.

        Returns:
            True exactly on the block that completes the quiet run after
            speech. False otherwise.
        """
        if rms(pcm_bytes) >= self._threshold:
            self._armed = True
            self._quiet_count = 0
            return False

        if not self._armed:
            return False

        self._quiet_count += 1
        if self._quiet_count >= self._blocks_required:
            self.reset()
            return True
        return False

    def reset(self) -> None:
        """Disarm and clear the quiet-block counter."""
        self._quiet_count = 0
        self._armed = False
