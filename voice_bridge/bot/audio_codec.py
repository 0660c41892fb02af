"""
Audio codec for translating between telephony and Realtime API audio.

Twilio Media Streams carry 8kHz G.711 μ-law. The Realtime API accepts either
the same μ-law (pass-through) or 24kHz little-endian PCM16. The functions here
are pure and stateless; AudioCodec only binds the configured formats so the
relay path never touches raw bytes itself.
"""

from typing import List

import numpy as np

from voice_bridge.config.constants import (
    AUDIO_FORMAT_G711_ULAW,
    AUDIO_FORMAT_PCM16,
    PCM16_SAMPLE_RATE,
    SUPPORTED_AUDIO_FORMATS,
    TELEPHONY_SAMPLE_RATE,
)

ULAW_BIAS = 0x84
ULAW_CLIP = 32635


def _build_ulaw_decode_table() -> np.ndarray:
    """Create the 256-entry μ-law to PCM16 lookup table."""
    codes = ~np.arange(256, dtype=np.int32) & 0xFF
    sign = codes & 0x80
    exponent = (codes >> 4) & 0x07
    mantissa = codes & 0x0F
    magnitude = ((mantissa << 3) + ULAW_BIAS) << exponent
    samples = np.where(sign != 0, ULAW_BIAS - magnitude, magnitude - ULAW_BIAS)
    return samples.astype(np.int16)


_ULAW_DECODE_TABLE = _build_ulaw_decode_table()


def ulaw_to_pcm16(ulaw_data: bytes) -> bytes:
    """
    Convert μ-law bytes to 16-bit little-endian PCM.

    Args:
        ulaw_data: μ-law encoded audio, one byte per sample

    Returns:
        PCM16 audio, two bytes per sample
    """
    codes = np.frombuffer(ulaw_data, dtype=np.uint8)
    return _ULAW_DECODE_TABLE[codes].astype("<i2").tobytes()


def pcm16_to_ulaw(pcm_data: bytes) -> bytes:
    """
    Convert 16-bit little-endian PCM to μ-law bytes.

    Args:
        pcm_data: PCM16 audio; a trailing odd byte is ignored

    Returns:
        μ-law encoded audio
    """
    usable = len(pcm_data) - (len(pcm_data) % 2)
    samples = np.frombuffer(pcm_data[:usable], dtype="<i2").astype(np.int32)

    sign = np.where(samples < 0, 0x80, 0x00)
    magnitude = np.minimum(np.abs(samples), ULAW_CLIP) + ULAW_BIAS

    # Exponent is the position of the highest set bit above bit 7
    exponent = np.zeros_like(magnitude)
    for exp in range(7, 0, -1):
        exponent = np.where((exponent == 0) & (magnitude >= (0x80 << exp)), exp, exponent)

    mantissa = (magnitude >> (exponent + 3)) & 0x0F
    ulaw = ~(sign | (exponent << 4) | mantissa) & 0xFF
    return ulaw.astype(np.uint8).tobytes()


def resample_pcm16(data: bytes, from_rate: int, to_rate: int) -> bytes:
    """
    Resample PCM16 audio using linear interpolation.

    Args:
        data: PCM16 audio data (little-endian)
        from_rate: Source sample rate in Hz
        to_rate: Target sample rate in Hz

    Returns:
        Resampled PCM16 audio data
    """
    if from_rate == to_rate or not data:
        return data

    usable = len(data) - (len(data) % 2)
    samples = np.frombuffer(data[:usable], dtype="<i2").astype(np.float32)
    new_length = int(len(samples) * to_rate / from_rate)
    if new_length == 0:
        return b""

    old_indices = np.arange(len(samples))
    new_indices = np.linspace(0, len(samples) - 1, new_length)
    resampled = np.interp(new_indices, old_indices, samples)
    return np.clip(resampled, -32768, 32767).astype("<i2").tobytes()


def chunk(data: bytes, frame_size: int) -> List[bytes]:
    """
    Split audio into fixed-size frames.

    Every frame but the last is exactly frame_size bytes; the last carries the
    remainder. Empty input produces no frames.
    """
    if frame_size <= 0:
        raise ValueError(f"Frame size must be positive, got {frame_size}")
    return [data[i:i + frame_size] for i in range(0, len(data), frame_size)]


class AudioCodec:
    """
    Binds the telephony and provider audio formats behind one interface.

    When both sides use g711_ulaw the codec is a pass-through; otherwise the
    telephony μ-law is expanded to 24kHz PCM16 for the provider and the
    provider's PCM16 is decimated back to 8kHz μ-law for the caller.
    """

    def __init__(
        self,
        telephony_format: str = AUDIO_FORMAT_G711_ULAW,
        provider_format: str = AUDIO_FORMAT_G711_ULAW,
    ):
        for fmt in (telephony_format, provider_format):
            if fmt not in SUPPORTED_AUDIO_FORMATS:
                raise ValueError(f"Unsupported audio format: {fmt}")
        if telephony_format != AUDIO_FORMAT_G711_ULAW:
            raise ValueError("Telephony media streams carry g711_ulaw only")
        self.telephony_format = telephony_format
        self.provider_format = provider_format

    @property
    def is_passthrough(self) -> bool:
        return self.telephony_format == self.provider_format

    def decode_telephony_frame(self, frame: bytes) -> bytes:
        """Translate one inbound telephony frame into the provider's input format."""
        if self.is_passthrough:
            return frame
        pcm_8k = ulaw_to_pcm16(frame)
        return resample_pcm16(pcm_8k, TELEPHONY_SAMPLE_RATE, PCM16_SAMPLE_RATE)

    def encode_for_telephony(self, provider_audio: bytes) -> bytes:
        """Translate provider output audio into telephony μ-law."""
        if self.is_passthrough:
            return provider_audio
        if self.provider_format == AUDIO_FORMAT_PCM16:
            pcm_8k = resample_pcm16(provider_audio, PCM16_SAMPLE_RATE, TELEPHONY_SAMPLE_RATE)
            return pcm16_to_ulaw(pcm_8k)
        raise ValueError(f"Unsupported provider format: {self.provider_format}")

    def chunk(self, data: bytes, frame_size: int) -> List[bytes]:
        return chunk(data, frame_size)
