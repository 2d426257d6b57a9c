import asyncio

import pytest

from feynbrain.playback import PlaybackCoordinator, PlaybackGroup
from feynbrain.synthesis import AudioHandle, MockSynthesizer


def make_playback(sink=None, timeout=1.0, synthesizer=None, group=None):
	states, errors = [], []

	async def on_state(playing):
		states.append(playing)

	async def on_error(message):
		errors.append(message)

	playback = PlaybackCoordinator(
		synthesizer or MockSynthesizer(),
		sink=sink,
		timeout=timeout,
		on_state=on_state,
		on_error=on_error,
		group=group,
	)
	return playback, states, errors


def test_audio_handle_plays_once():
	handle = AudioHandle(b"abc", "audio/mpeg", "Why?")
	assert handle.as_base64() == "YWJj"
	with pytest.raises(RuntimeError):
		handle.consume()
	handle.release()
	assert handle.released


@pytest.mark.asyncio
async def test_play_without_sink_finishes_and_releases():
	synthesizer = MockSynthesizer()
	playback, states, _ = make_playback(synthesizer=synthesizer)
	assert await playback.play_question("What is chlorophyll?") is True
	assert states == [True, False]
	assert synthesizer.handles[0].released
	assert not playback.is_playing


@pytest.mark.asyncio
async def test_playback_waits_for_client_ack():
	sent = []

	async def sink(handle):
		sent.append(handle.as_base64())

	playback, _, _ = make_playback(sink=sink)
	task = asyncio.create_task(playback.play_question("Why?"))
	await asyncio.sleep(0.02)
	assert playback.is_playing
	assert len(sent) == 1
	playback.mark_ended()
	assert await task is True
	assert not playback.is_playing


@pytest.mark.asyncio
async def test_playback_gives_up_after_timeout():
	async def sink(handle):
		handle.consume()

	playback, _, _ = make_playback(sink=sink, timeout=0.05)
	assert await playback.play_question("Why?") is True
	assert not playback.is_playing


@pytest.mark.asyncio
async def test_new_playback_stops_previous_one():
	synthesizer = MockSynthesizer()
	received = []

	async def sink(handle):
		received.append(handle.text)

	playback, _, _ = make_playback(sink=sink, synthesizer=synthesizer)
	first = asyncio.create_task(playback.play_question("first"))
	await asyncio.sleep(0.02)
	second = asyncio.create_task(playback.play_question("second"))
	await asyncio.sleep(0.02)
	assert await first is False
	assert synthesizer.handles[0].released
	assert playback.is_playing
	playback.mark_ended()
	assert await second is True
	assert received == ["first", "second"]
	assert all(h.released for h in synthesizer.handles)


@pytest.mark.asyncio
async def test_stop_playback_is_always_safe():
	playback, states, _ = make_playback()
	await playback.stop_playback()
	await playback.stop_playback()
	assert states == []
	assert not playback.is_playing


@pytest.mark.asyncio
async def test_synthesis_failure_is_reported_once():
	playback, states, errors = make_playback(synthesizer=MockSynthesizer(error="Text-to-speech failed"))
	assert await playback.play_question("Why?") is False
	assert errors == ["Text-to-speech failed"]
	assert states == [True, False]
	assert not playback.is_playing


@pytest.mark.asyncio
async def test_shared_group_plays_one_question_system_wide():
	async def sink(handle):
		handle.consume()

	group = PlaybackGroup()
	first, _, _ = make_playback(sink=sink, group=group)
	second, _, _ = make_playback(sink=sink, group=group)
	task = asyncio.create_task(first.play_question("first"))
	await asyncio.sleep(0.02)
	assert first.is_playing
	other = asyncio.create_task(second.play_question("second"))
	await asyncio.sleep(0.02)
	assert await task is False
	assert not first.is_playing
	assert second.is_playing
	second.mark_ended()
	assert await other is True
	assert group.current is None
