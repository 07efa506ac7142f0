from __future__ import annotations


class ToneSynthError(Exception):
	"""Base error for the tonesynth engine."""


class InputValidationError(ToneSynthError, ValueError):
	"""Raised when a tone sequence is out of range, empty or oversized."""


class UnsupportedEnvironmentError(ToneSynthError):
	"""Raised when the host lacks the audio primitives needed for playback."""


class RenderFailure(ToneSynthError):
	"""Raised when a render did not complete; no partial output is produced."""
