import pytest
import requests

from learnhub.chat import ChatClient
from learnhub.errors import UpstreamError

from conftest import headers_for, make_user


class FakeResponse:
    def __init__(self, payload, status_code=200):
        self.payload = payload
        self.status_code = status_code

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} error")

    def json(self):
        return self.payload


class TestChatClient:
    def test_complete_posts_system_and_user_messages(self, monkeypatch):
        calls = []
        client = ChatClient(api_key="k-123", url="https://llm.example/v1/chat", model="tiny", timeout=5)

        def fake_post(url, json, headers, timeout):
            calls.append((url, json, headers, timeout))
            return FakeResponse({"choices": [{"message": {"content": "Hi there"}}]})

        monkeypatch.setattr(client.session, "post", fake_post)

        assert client.complete("hello") == "Hi there"
        url, payload, headers, timeout = calls[0]
        assert url == "https://llm.example/v1/chat"
        assert payload["model"] == "tiny"
        assert [m["role"] for m in payload["messages"]] == ["system", "user"]
        assert payload["messages"][1]["content"] == "hello"
        assert headers["Authorization"] == "Bearer k-123"
        assert timeout == 5

    def test_http_error_raises(self, monkeypatch):
        client = ChatClient(api_key="k")
        monkeypatch.setattr(client.session, "post", lambda *a, **kw: FakeResponse({}, status_code=500))

        with pytest.raises(UpstreamError):
            client.complete("hello")

    def test_malformed_payload_raises(self, monkeypatch):
        client = ChatClient(api_key="k")
        monkeypatch.setattr(client.session, "post", lambda *a, **kw: FakeResponse({"choices": []}))

        with pytest.raises(UpstreamError):
            client.complete("hello")


class TestChatApi:
    def test_conversation(self, client, chat_client, member_headers):
        session_id = client.post("/chat/start", headers=member_headers).json()["session_id"]

        response = client.post(
            "/chat/send", json={"session_id": session_id, "prompt": "What is photosynthesis?"}, headers=member_headers
        )
        assert response.status_code == 200
        assert response.json()["reply"] == chat_client.reply
        assert chat_client.prompts == ["What is photosynthesis?"]

        history = client.get(f"/chat/history/{session_id}", headers=member_headers).json()
        assert [(h["prompt"], h["response"]) for h in history] == [("What is photosynthesis?", chat_client.reply)]

        sessions = client.get("/chat/sessions", headers=member_headers).json()
        assert sessions[0]["id"] == session_id
        assert sessions[0]["latest_prompt"] == "What is photosynthesis?"
        assert sessions[0]["ended_at"] is None

    def test_ended_session_rejects_messages(self, client, chat_client, member_headers):
        session_id = client.post("/chat/start", headers=member_headers).json()["session_id"]

        assert client.post(f"/chat/end/{session_id}", headers=member_headers).status_code == 200
        response = client.post("/chat/send", json={"session_id": session_id, "prompt": "Hi"}, headers=member_headers)

        assert response.status_code == 400
        assert chat_client.prompts == []

    def test_sessions_are_private(self, client, db, member_headers):
        session_id = client.post("/chat/start", headers=member_headers).json()["session_id"]
        other = headers_for(db, make_user(db, "eve@x.com"))

        assert client.get(f"/chat/history/{session_id}", headers=other).status_code == 404
        response = client.post("/chat/send", json={"session_id": session_id, "prompt": "Hi"}, headers=other)
        assert response.status_code == 404

    def test_upstream_failure_is_surfaced(self, client, db, chat_client, member_headers):
        chat_client.reply = UpstreamError("Chat assistant is unavailable")
        session_id = client.post("/chat/start", headers=member_headers).json()["session_id"]

        response = client.post("/chat/send", json={"session_id": session_id, "prompt": "Hi"}, headers=member_headers)

        assert response.status_code == 502
        assert client.get(f"/chat/history/{session_id}", headers=member_headers).json() == []
