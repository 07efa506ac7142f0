import streamlit as st
import pandas as pd
import altair as alt
import numpy as np
from typing import Any, List, Optional

from tonesynth.config import load_config
from tonesynth.errors import InputValidationError, RenderFailure, UnsupportedEnvironmentError
from tonesynth.live import LivePlayer
from tonesynth.logging_utils import configure_logging
from tonesynth.models import (
	DEFAULT_TONE,
	FILTER_TYPES,
	MAX_TONES,
	WAVEFORMS,
	DelaySettings,
	EffectSettings,
	EnvelopeSettings,
	FilterSettings,
	ReverbSettings,
	ToneSequence,
	parse_sequence,
)
from tonesynth.renderer import render_offline
from tonesynth.wav import encode_wav


st.set_page_config(page_title="Tone Sequencer", page_icon=None, layout="centered")
configure_logging()


def get_state() -> Any:
	if "config" not in st.session_state:
		st.session_state.config = load_config()
	if "player" not in st.session_state:
		st.session_state.player = LivePlayer(config=st.session_state.config)
	if "tones" not in st.session_state:
		st.session_state.tones = pd.DataFrame([DEFAULT_TONE.model_dump()])
	if "wav" not in st.session_state:
		st.session_state.wav = None
	if "preview" not in st.session_state:
		st.session_state.preview = None
	return st.session_state


def sidebar_effects() -> EffectSettings:
	st.sidebar.header("Envelope")
	env_on = st.sidebar.checkbox("ADSR envelope", value=True)
	attack = st.sidebar.slider("Attack (ms)", 0, 2000, 20, step=5)
	decay = st.sidebar.slider("Decay (ms)", 0, 2000, 120, step=5)
	sustain = st.sidebar.slider("Sustain (%)", 0, 100, 75)
	release = st.sidebar.slider("Release (ms)", 0, 4000, 200, step=10)

	st.sidebar.header("Filter")
	filter_on = st.sidebar.checkbox("Filter", value=False)
	filter_type = st.sidebar.selectbox("Type", list(FILTER_TYPES), index=0)
	cutoff = st.sidebar.slider("Frequency (Hz)", 60, 12000, 2000, step=10)
	q = st.sidebar.slider("Q", 0.1, 18.0, 1.0, step=0.1)

	st.sidebar.header("Reverb")
	reverb_on = st.sidebar.checkbox("Reverb", value=True)
	reverb_mix = st.sidebar.slider("Reverb mix (%)", 0, 100, 35)

	st.sidebar.header("Delay")
	delay_on = st.sidebar.checkbox("Delay", value=False)
	delay_mix = st.sidebar.slider("Delay mix (%)", 0, 100, 30)
	delay_time = st.sidebar.slider("Delay time (ms)", 10, 1500, 250, step=10)
	feedback = st.sidebar.slider("Feedback (%)", 0, 95, 35)

	return EffectSettings(
		envelope=EnvelopeSettings(enabled=env_on, attack=attack / 1000, decay=decay / 1000, sustain=sustain / 100, release=release / 1000),
		filter=FilterSettings(enabled=filter_on, type=filter_type, frequency=cutoff, q=q),
		reverb=ReverbSettings(enabled=reverb_on, mix=reverb_mix / 100),
		delay=DelaySettings(enabled=delay_on, mix=delay_mix / 100, time=delay_time / 1000, feedback=feedback / 100),
	)


def tone_editor(state: Any) -> pd.DataFrame:
	st.subheader("Tones")
	edited = st.data_editor(
		state.tones,
		num_rows="dynamic",
		use_container_width=True,
		column_config={
			"frequency": st.column_config.NumberColumn("Frequency (Hz)", min_value=20, max_value=20000, step=1.0),
			"waveform": st.column_config.SelectboxColumn("Waveform", options=list(WAVEFORMS), required=True),
			"duration_ms": st.column_config.NumberColumn("Duration (ms)", min_value=50, max_value=15000, step=10.0),
		},
	)
	st.caption(f"Up to {MAX_TONES} tones, 60 seconds in total.")
	return edited


def collect_sequence(frame: pd.DataFrame) -> Optional[ToneSequence]:
	rows: List[dict] = [r for r in frame.to_dict("records") if any(pd.notna(v) for v in r.values())]
	if not rows:
		st.error("Add at least one tone to continue.")
		return None
	try:
		return parse_sequence(rows)
	except InputValidationError as exc:
		st.error(f"Fix the tone list to continue: {exc}")
		return None


def peak_chart(samples: np.ndarray, sample_rate: int, points: int = 600) -> alt.Chart:
	# peak envelope per bucket keeps the chart small for long renders
	buckets = max(1, samples.size // points)
	trimmed = samples[: (samples.size // buckets) * buckets].reshape(-1, buckets)
	peaks = np.abs(trimmed).max(axis=1)
	df = pd.DataFrame({"seconds": np.arange(peaks.size) * buckets / sample_rate, "peak": peaks})
	return alt.Chart(df).mark_area(opacity=0.6).encode(
		x=alt.X("seconds:Q", title="Time (s)"),
		y=alt.Y("peak:Q", title="Peak", scale=alt.Scale(domain=[0, 1])),
		tooltip=["seconds", "peak"],
	).properties(height=180)


def main() -> None:
	state = get_state()
	effects = sidebar_effects()

	st.title("Tone Sequencer")
	state.tones = tone_editor(state)

	cols = st.columns(3)
	with cols[0]:
		play = st.button("Play", use_container_width=True)
	with cols[1]:
		stop = st.button("Stop", use_container_width=True)
	with cols[2]:
		render = st.button("Render WAV", use_container_width=True)

	if stop:
		state.player.stop()
		st.info("Playback stopped.")

	if play:
		sequence = collect_sequence(state.tones)
		if sequence is not None:
			try:
				state.player.play(sequence, effects)
				st.info("Playing sample...")
			except UnsupportedEnvironmentError as exc:
				st.error(str(exc))

	if render:
		sequence = collect_sequence(state.tones)
		if sequence is not None:
			with st.spinner("Rendering WAV..."):
				try:
					buffer = render_offline(sequence, effects, config=state.config)
				except RenderFailure as exc:
					st.error(f"Unable to render WAV file: {exc}")
					buffer = None
			if buffer is not None:
				state.wav = encode_wav(buffer, state.config.sample_rate)
				state.preview = buffer
				st.success("WAV file ready.")

	if state.wav is not None:
		st.download_button("Download tone-sequence.wav", data=state.wav, file_name="tone-sequence.wav", mime="audio/wav", use_container_width=True)
		st.audio(state.wav, format="audio/wav")
	if state.preview is not None:
		st.altair_chart(peak_chart(state.preview, state.config.sample_rate), use_container_width=True)


if __name__ == "__main__":
	main()
