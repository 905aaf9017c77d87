"""PCM conversion utilities."""
import numpy as np

from spec import AUDIO_SAMPLE_WIDTH_BYTES


def pcm16le_to_float32(pcm_bytes: bytes) -> np.ndarray:
    """
    Convert PCM16 little-endian mono bytes to float32 in [-1.0, 1.0).

    No resampling. No channel mixing.
    """
    if len(pcm_bytes) % AUDIO_SAMPLE_WIDTH_BYTES != 0:
        # Truncated sample; caller should treat as malformed upstream.
        pcm_bytes = pcm_bytes[: len(pcm_bytes) - 1]

    audio_i16 = np.frombuffer(pcm_bytes, dtype="<i2")
    return audio_i16.astype(np.float32) / 32768.0


def pcm16le_to_samples(pcm_bytes: bytes) -> list[int]:
    """
    Decode PCM16 little-endian bytes into a list of Python ints.

    Used for the JSON `audioResponse` message, which carries samples
    as a plain array.

    Raises:
        ValueError if the byte length is not a whole number of samples.
    """
    if len(pcm_bytes) % AUDIO_SAMPLE_WIDTH_BYTES != 0:
        raise ValueError(f"odd PCM16 byte length: {len(pcm_bytes)}")
    return np.frombuffer(pcm_bytes, dtype="<i2").tolist()


def samples_to_pcm16le(samples: list[int]) -> bytes:
    """
    Encode a list of 16-bit sample values as PCM16 little-endian bytes.

    Raises:
        ValueError if any sample falls outside the int16 range.
    """
    arr = np.asarray(samples, dtype=np.int64)
    if arr.size and (arr.min() < -32768 or arr.max() > 32767):
        raise ValueError("sample out of int16 range")
    return arr.astype("<i2").tobytes()


def rms(pcm_bytes: bytes) -> float:
    """Root-mean-square energy of a PCM16 block, on the float32 scale."""
    f32 = pcm16le_to_float32(pcm_bytes)
    if f32.size == 0:
        return 0.0
    return float(np.sqrt(np.mean(np.square(f32))))
