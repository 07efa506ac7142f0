from __future__ import annotations

import logging
import os
from typing import Optional, Union

_LOG_LEVEL_ENV = "TONESYNTH_LOG_LEVEL"
_ROOT = "tonesynth"
_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def configure_logging(level: Optional[Union[str, int]] = None) -> logging.Logger:
	"""Attach one stream handler to the ``tonesynth`` logger.

	Safe to call repeatedly; the level comes from ``TONESYNTH_LOG_LEVEL`` unless given.
	"""
	logger = logging.getLogger(_ROOT)
	if level is None:
		level = os.environ.get(_LOG_LEVEL_ENV, "WARNING")
	if isinstance(level, str):
		level = logging.getLevelName(level.upper())
		if not isinstance(level, int):
			level = logging.WARNING
	logger.setLevel(level)
	if not any(getattr(h, "_tonesynth", False) for h in logger.handlers):
		handler = logging.StreamHandler()
		handler.setFormatter(logging.Formatter(_FORMAT))
		handler._tonesynth = True  # type: ignore[attr-defined]
		logger.addHandler(handler)
	return logger
