"""16-bit mono PCM WAV serialization.

Samples are mapped to int16 here and written through soundfile, which emits
the canonical 44-byte RIFF header for mono PCM_16.
"""

from __future__ import annotations

import io
import struct
from typing import NamedTuple, Tuple

import numpy as np
import numpy.typing as npt
import soundfile as sf

from .config import SAMPLE_RATE

HEADER_SIZE = 44
_HEADER = struct.Struct("<4sI4s4sIHHIIHH4sI")


class WavHeader(NamedTuple):
	chunk_size: int
	audio_format: int
	channels: int
	sample_rate: int
	byte_rate: int
	block_align: int
	bits_per_sample: int
	data_size: int

	@property
	def frames(self) -> int:
		return self.data_size // max(1, self.block_align)


def to_pcm16(samples: npt.ArrayLike) -> npt.NDArray[np.int16]:
	"""Clamp to [-1, 1]; negatives scale by 32768, the rest by 32767, truncating toward zero."""
	x = np.asarray(samples, dtype=np.float32).reshape(-1)
	x = np.nan_to_num(x, nan=0.0)
	x = np.clip(x, -1.0, 1.0).astype(np.float64)
	scaled = np.where(x < 0, x * 32768.0, x * 32767.0)
	return np.trunc(scaled).astype("<i2")


def encode_wav(samples: npt.ArrayLike, sample_rate: int = SAMPLE_RATE) -> bytes:
	buf = io.BytesIO()
	# int16 input is written verbatim, so the truncating map above is preserved
	sf.write(buf, to_pcm16(samples), sample_rate, format="WAV", subtype="PCM_16")
	return buf.getvalue()


def read_wav_header(data: bytes) -> WavHeader:
	if len(data) < HEADER_SIZE:
		raise ValueError("WAV data is shorter than its header")
	riff, chunk_size, wave, fmt, fmt_size, audio_format, channels, rate, byte_rate, align, bits, tag, data_size = _HEADER.unpack_from(data)
	if riff != b"RIFF" or wave != b"WAVE" or fmt != b"fmt " or tag != b"data" or fmt_size != 16:
		raise ValueError("Not a canonical PCM WAV header")
	return WavHeader(chunk_size, audio_format, channels, rate, byte_rate, align, bits, data_size)


def decode_wav(data: bytes) -> Tuple[npt.NDArray[np.float32], int]:
	samples, rate = sf.read(io.BytesIO(data), dtype="float32", always_2d=False)
	return np.asarray(samples, dtype=np.float32), int(rate)
