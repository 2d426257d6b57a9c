"""
Study Session Router
====================

REST and WebSocket surface over the Session Controller.

REST endpoints drive the state machine with already-transcribed text, which is
enough for scripted clients and tests. The WebSocket carries the live loop:

  Client sends:  {"type": "capture_start"} / {"type": "capture_stop"}
  Client sends:  binary audio chunks while capturing (transcribed server side)
  Client sends:  {"type": "fragment", "text": "..."} (browser-side recognition)
  Client sends:  {"type": "pass"} / {"type": "replay"} / {"type": "stop_playback"}
  Client sends:  {"type": "playback_ended"} once an audio message finished playing
  Server sends:  {"type": "state", "state": {...snapshot...}}
  Server sends:  {"type": "fragment", "text": "..."}
  Server sends:  {"type": "audio", "data": "<base64>", "mime_type": "...", "text": "..."}
  Server sends:  {"type": "error", "detail": "..."}
"""

from __future__ import annotations

import json
import logging

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect
from pydantic import BaseModel

from ..controller import SessionController
from ..deps import get_registry
from ..errors import FeynBrainError, NotFoundError
from ..registry import SessionRegistry
from ..schemas import SessionSnapshot
from ..synthesis import AudioHandle

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/study", tags=["study"])


class StartRequest(BaseModel):
	document_id: str


class TranscriptRequest(BaseModel):
	text: str


def _dump(snapshot: SessionSnapshot) -> dict:
	return snapshot.model_dump(by_alias=True, mode="json")


@router.post("/sessions", status_code=201)
async def start_session(req: StartRequest, registry: SessionRegistry = Depends(get_registry)):
	controller = registry.create(req.document_id)
	return _dump(controller.snapshot())


@router.get("/sessions/{session_id}")
async def get_session(session_id: str, registry: SessionRegistry = Depends(get_registry)):
	return _dump(registry.get(session_id).snapshot())


@router.post("/sessions/{session_id}/transcript")
async def submit_transcript(session_id: str, req: TranscriptRequest, registry: SessionRegistry = Depends(get_registry)):
	controller = registry.get(session_id)
	return _dump(await controller.submit_transcript(req.text))


@router.post("/sessions/{session_id}/pass")
async def pass_question(session_id: str, registry: SessionRegistry = Depends(get_registry)):
	return _dump(await registry.get(session_id).pass_question())


@router.post("/sessions/{session_id}/finalize")
async def finalize(session_id: str, registry: SessionRegistry = Depends(get_registry)):
	return _dump(await registry.get(session_id).finalize())


@router.post("/sessions/{session_id}/restart")
async def restart(session_id: str, registry: SessionRegistry = Depends(get_registry)):
	controller = await registry.restart(session_id)
	return _dump(controller.snapshot())


@router.delete("/sessions/{session_id}")
async def close_session(session_id: str, registry: SessionRegistry = Depends(get_registry)):
	await registry.close(session_id)
	return {"closed": session_id}


async def _dispatch(controller: SessionController, msg: dict) -> None:
	kind = msg.get("type")
	if kind == "capture_start":
		await controller.start_capture()
	elif kind == "capture_stop":
		await controller.stop_capture()
	elif kind == "fragment":
		if not controller.feed_text(str(msg.get("text", ""))):
			logger.info("Dropping fragment received while not capturing")
	elif kind == "pass":
		await controller.pass_question()
	elif kind == "replay":
		await controller.play_current_question()
	elif kind == "stop_playback":
		await controller.stop_playback()
	elif kind == "playback_ended":
		controller.playback_ended()
	else:
		raise ValueError(f"Unknown message type: {kind!r}")


@router.websocket("/sessions/{session_id}/ws")
async def session_ws(ws: WebSocket, session_id: str):
	registry: SessionRegistry = ws.app.state.registry
	await ws.accept()
	try:
		controller = registry.get(session_id)
	except NotFoundError as e:
		await ws.send_json({"type": "error", "detail": e.message})
		await ws.close(code=4404)
		return

	async def send_state(snapshot: SessionSnapshot) -> None:
		await ws.send_json({"type": "state", "state": _dump(snapshot)})

	async def send_fragment(text: str) -> None:
		await ws.send_json({"type": "fragment", "text": text})

	async def send_audio(handle: AudioHandle) -> None:
		await ws.send_json({
			"type": "audio",
			"data": handle.as_base64(),
			"mime_type": handle.mime_type,
			"text": handle.text,
		})

	controller.add_listener(send_state)
	controller.add_fragment_listener(send_fragment)
	controller.playback.attach_sink(send_audio)
	await send_state(controller.snapshot())

	try:
		while True:
			ws_msg = await ws.receive()
			if ws_msg.get("type") == "websocket.disconnect":
				break
			if ws_msg.get("bytes") is not None:
				if not controller.feed_audio(ws_msg["bytes"]):
					await ws.send_json({"type": "error", "detail": "Not capturing"})
				continue
			try:
				msg = json.loads(ws_msg.get("text") or "{}")
				await _dispatch(controller, msg)
			except FeynBrainError as e:
				await ws.send_json({"type": "error", "detail": e.message})
			except (ValueError, TypeError, AttributeError) as e:
				await ws.send_json({"type": "error", "detail": str(e)})
	except WebSocketDisconnect:
		pass
	finally:
		controller.remove_listener(send_state)
		controller.remove_fragment_listener(send_fragment)
		controller.playback.attach_sink(None)
		# Nobody is left to hear the question or speak into the microphone
		await controller.stop_playback()
		await controller.capture.cancel()
		controller.assistant.is_listening = False
