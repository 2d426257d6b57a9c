"""
Tests for the HTTP and WebSocket surface.

Uses pytest and FastAPI's TestClient with an in-memory database and mock AI
services.
"""

import pytest
from fastapi.testclient import TestClient

from feynbrain.capture import StreamingCaptureService
from feynbrain.evaluation import MockEvaluationClient
from feynbrain.main import app
from feynbrain.metrics import build_metrics
from feynbrain.questions import MockQuestionGenerator
from feynbrain.registry import SessionRegistry
from feynbrain.store import DocumentStore, SessionStore
from feynbrain.synthesis import MockSynthesizer
from feynbrain.transcription import MockTranscriber

TEXT = b"Photosynthesis converts light energy into chemical energy stored in glucose."


@pytest.fixture
def client(kv):
	"""Create a test client wired to a fresh store and mock services."""
	app.state.session_store = SessionStore(kv)
	app.state.document_store = DocumentStore(kv)
	app.state.registry = SessionRegistry(
		app.state.session_store,
		app.state.document_store,
		evaluator_factory=lambda: MockEvaluationClient(fixed=build_metrics(90, 85, 88, 92)),
		question_generator_factory=lambda: MockQuestionGenerator(["Q1", "Q2"]),
		capture_service_factory=lambda: StreamingCaptureService(MockTranscriber(["spoken words"])),
		synthesizer_factory=MockSynthesizer,
		controller_options={"auto_rearm_capture": False, "playback_timeout": 2.0, "silence_timeout": 5.0},
	)
	with TestClient(app) as c:
		yield c


def upload(client, name="notes.txt", data=TEXT):
	return client.post("/documents", files={"file": (name, data, "text/plain")})


def start(client):
	document_id = upload(client).json()["id"]
	response = client.post("/study/sessions", json={"document_id": document_id})
	assert response.status_code == 201
	return response.json()


def receive_until(ws, predicate, limit=30):
	for _ in range(limit):
		msg = ws.receive_json()
		if predicate(msg):
			return msg
	raise AssertionError("expected message not received")


class TestHealthEndpoint:
	def test_health_returns_status(self, client):
		response = client.get("/health")
		assert response.status_code == 200
		assert response.json()["status"] == "healthy"

	def test_info_reports_mode(self, client):
		assert client.get("/info").json()["service_mode"] == "mock"


class TestDocuments:
	def test_upload_and_list(self, client):
		response = upload(client)
		assert response.status_code == 201
		body = response.json()
		assert body["content"] == TEXT.decode()
		assert body["name"] == "notes.txt"
		listed = client.get("/documents").json()["documents"]
		assert [d["id"] for d in listed] == [body["id"]]
		assert "content" not in listed[0]

	def test_unsupported_type_is_400(self, client):
		response = upload(client, name="slides.pptx")
		assert response.status_code == 400
		assert "not supported" in response.json()["error"]

	def test_delete_unknown_document_is_404(self, client):
		response = client.delete("/documents/missing")
		assert response.status_code == 404
		assert response.json() == {"error": "Document not found"}


class TestStudySessions:
	def test_unknown_document_is_404(self, client):
		response = client.post("/study/sessions", json={"document_id": "missing"})
		assert response.status_code == 404
		assert response.json()["error"] == "Document not found"

	def test_full_session_over_rest(self, client):
		snapshot = start(client)
		session_id = snapshot["session"]["sessionID"]
		assert snapshot["phase"] == "explain"

		snapshot = client.post(f"/study/sessions/{session_id}/transcript", json={"text": "   "}).json()
		assert snapshot["phase"] == "explain"

		snapshot = client.post(f"/study/sessions/{session_id}/transcript", json={"text": "Plants make sugar."}).json()
		assert snapshot["phase"] == "questions"
		assert snapshot["session"]["aiQuestions"] == ["Q1", "Q2"]
		assert snapshot["assistant"]["currentQuestion"] == "Q1"

		client.post(f"/study/sessions/{session_id}/transcript", json={"text": "Answer one."})
		snapshot = client.post(f"/study/sessions/{session_id}/transcript", json={"text": "Answer two."}).json()
		assert snapshot["phase"] == "summary"
		assert snapshot["persisted"] is True
		assert snapshot["session"]["performanceMetrics"]["overallScore"] == 89

		history = client.get("/history").json()
		assert history["total"] == 1
		assert history["sessions"][0]["userResponses"] == ["Answer one.", "Answer two."]

		export = client.get(f"/history/{session_id}/export")
		assert export.status_code == 200
		assert f"feyn-brain-session-{session_id}.json" in export.headers["content-disposition"]

		analytics = client.get("/analytics").json()
		assert analytics["stats"]["totalSessions"] == 1
		assert analytics["stats"]["wellUnderstood"] == 1

		assert client.delete(f"/history/{session_id}").status_code == 200
		assert client.get(f"/history/{session_id}").status_code == 404

	def test_passing_three_times_advances(self, client):
		session_id = start(client)["session"]["sessionID"]
		client.post(f"/study/sessions/{session_id}/transcript", json={"text": "Plants make sugar."})
		client.post(f"/study/sessions/{session_id}/pass")
		snapshot = client.post(f"/study/sessions/{session_id}/pass").json()
		assert snapshot["assistant"]["passCount"] == 2
		snapshot = client.post(f"/study/sessions/{session_id}/pass").json()
		assert snapshot["questionIndex"] == 1
		assert snapshot["assistant"]["passCount"] == 0

	def test_pass_in_explain_phase_is_409(self, client):
		session_id = start(client)["session"]["sessionID"]
		response = client.post(f"/study/sessions/{session_id}/pass")
		assert response.status_code == 409
		assert "error" in response.json()

	def test_restart_issues_new_id(self, client):
		session_id = start(client)["session"]["sessionID"]
		snapshot = client.post(f"/study/sessions/{session_id}/restart").json()
		new_id = snapshot["session"]["sessionID"]
		assert new_id != session_id
		assert client.get(f"/study/sessions/{new_id}").status_code == 200
		assert client.get(f"/study/sessions/{session_id}").status_code == 404

	def test_close_session(self, client):
		session_id = start(client)["session"]["sessionID"]
		assert client.delete(f"/study/sessions/{session_id}").status_code == 200
		assert client.get(f"/study/sessions/{session_id}").status_code == 404


class TestStudyWebSocket:
	def test_unknown_session_reports_error(self, client):
		with client.websocket_connect("/study/sessions/missing/ws") as ws:
			msg = ws.receive_json()
			assert msg["type"] == "error"

	def test_capture_fragments_and_playback(self, client):
		session_id = start(client)["session"]["sessionID"]
		with client.websocket_connect(f"/study/sessions/{session_id}/ws") as ws:
			first = ws.receive_json()
			assert first["type"] == "state"
			assert first["state"]["phase"] == "explain"

			ws.send_json({"type": "capture_start"})
			receive_until(ws, lambda m: m["type"] == "state" and m["state"]["assistant"]["isListening"])

			ws.send_json({"type": "fragment", "text": "Plants make sugar"})
			fragment = receive_until(ws, lambda m: m["type"] == "fragment")
			assert fragment["text"] == "Plants make sugar"

			ws.send_bytes(b"\x00\x01\x02")
			fragment = receive_until(ws, lambda m: m["type"] == "fragment")
			assert fragment["text"] == "spoken words"

			ws.send_json({"type": "capture_stop"})
			state = receive_until(ws, lambda m: m["type"] == "state" and m["state"]["phase"] == "questions")
			assert state["state"]["session"]["userExplanation"] == "Plants make sugar spoken words"

			audio = receive_until(ws, lambda m: m["type"] == "audio")
			assert audio["text"] == "Q1"
			assert audio["data"]

			ws.send_json({"type": "playback_ended"})
			receive_until(ws, lambda m: m["type"] == "state" and not m["state"]["assistant"]["isPlaying"])

	def test_unknown_message_type_reports_error(self, client):
		session_id = start(client)["session"]["sessionID"]
		with client.websocket_connect(f"/study/sessions/{session_id}/ws") as ws:
			ws.receive_json()
			ws.send_json({"type": "dance"})
			msg = receive_until(ws, lambda m: m["type"] == "error")
			assert "Unknown message type" in msg["detail"]
