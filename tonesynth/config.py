from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field

_LOGGER = logging.getLogger("tonesynth.config")
_CONFIG_ENV = "TONESYNTH_CONFIG"

SAMPLE_RATE = 44100


class RenderProfile(BaseModel):
	"""Gain staging for one render mode.

	Master gain and per-tone envelope peak are independent knobs: preview and
	export loudness targets differ and are not derived from each other.
	"""

	model_config = ConfigDict(frozen=True)

	master_gain: float = Field(ge=0.0, le=1.0)
	tone_peak: float = Field(ge=0.0, le=1.0)


LIVE_PROFILE = RenderProfile(master_gain=0.2, tone_peak=0.2)
OFFLINE_PROFILE = RenderProfile(master_gain=1.0, tone_peak=0.25)


class EngineConfig(BaseModel):
	model_config = ConfigDict(frozen=True)

	sample_rate: int = Field(default=SAMPLE_RATE, ge=8000, le=192000)
	block_size: int = Field(default=2048, ge=128, le=65536)
	live_start_offset: float = Field(default=0.05, ge=0.0, le=1.0)
	live_cleanup_padding: float = Field(default=0.2, ge=0.0, le=5.0)
	offline_safety_margin: float = Field(default=0.05, ge=0.0, le=5.0)
	ir_cache_capacity: int = Field(default=32, ge=1, le=1024)
	live: RenderProfile = LIVE_PROFILE
	offline: RenderProfile = OFFLINE_PROFILE


def _config_path() -> Path:
	configured = os.environ.get(_CONFIG_ENV)
	if configured:
		return Path(configured).expanduser()
	return Path.home() / ".tonesynth" / "config.json"


def _load_raw(path: Path) -> Dict[str, Any]:
	if not path.exists():
		return {}
	try:
		data = json.loads(path.read_text())
	except (OSError, ValueError) as exc:
		_LOGGER.warning("Ignoring unreadable config %s: %s", path, exc)
		return {}
	return data if isinstance(data, dict) else {}


def load_config(path: Optional[Path] = None) -> EngineConfig:
	"""Load engine settings from JSON, falling back to defaults for a missing file."""
	raw = _load_raw(path or _config_path())
	return EngineConfig.model_validate(raw)
