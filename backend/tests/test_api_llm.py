"""Route-level tests for thread chat, the LLM smoke routes, and edge policies."""

import pytest

from navigator.curriculum import Step1, Step2
from navigator.errors import UpstreamError
from navigator.services.llm import (
    build_chat_messages,
    build_next_action_reply,
    build_system_prompt,
    llm_service,
)


async def _open_thread(client, headers) -> dict:
    resp = await client.post("/api/run/start", headers=headers)
    assert resp.status_code == 200, resp.text
    resp = await client.post("/api/thread/start", headers=headers)
    assert resp.status_code == 200, resp.text
    return resp.json()["thread"]


@pytest.fixture
def fake_llm(monkeypatch):
    """Record chat_reply calls instead of reaching OpenAI."""
    calls = []

    async def fake_chat_reply(position, user_text, context_card, step2_meta_card=None):
        calls.append((position, user_text, context_card, step2_meta_card))
        return "もう少し具体的に教えてください。"

    monkeypatch.setattr(llm_service, "chat_reply", fake_chat_reply)
    return calls


class TestPromptBuilding:
    def test_step1_messages_skip_meta_card(self):
        messages = build_chat_messages(Step1(2), "answer", "card", "meta")
        assert [m["role"] for m in messages] == ["system", "system", "user"]
        assert "Q2" in messages[0]["content"]
        assert messages[-1]["content"] == "answer"

    def test_step2_messages_include_meta_card(self):
        messages = build_chat_messages(Step2(4), "answer", "card", "meta")
        assert "Session 4" in messages[0]["content"]
        assert any("meta" in m["content"] for m in messages if m["role"] == "system")

    def test_system_prompts_are_japanese(self):
        assert build_system_prompt(Step1(3)) == (
            "あなたはシャドーワークのガイドです。ユーザーの回答を受けて、"
            "Q3について具体例を1つだけ短く促してください。日本語で2文以内。"
        )
        assert build_system_prompt(Step2(7)) == (
            "あなたはシャドーワークのガイドです。Session 7で感情が強く出た瞬間を、"
            "状況→相手→自分の反応の順に書くよう短く促してください。日本語で2文以内。"
        )

    def test_next_reply_names_position(self):
        assert "Q3" in build_next_action_reply(Step1(3))
        assert "Session 12" in build_next_action_reply(Step2(12))


class TestThreadChat:
    async def test_next_action_skips_llm(self, client, paid_headers, fake_llm):
        thread = await _open_thread(client, paid_headers)

        resp = await client.post("/api/thread/chat", headers=paid_headers, json={"action": "next"})
        assert resp.status_code == 200
        body = resp.json()
        assert body["thread_id"] == thread["id"]
        assert "Q1" in body["reply"]
        assert fake_llm == []

    async def test_message_goes_to_llm(self, client, paid_headers, fake_llm):
        await _open_thread(client, paid_headers)

        resp = await client.post(
            "/api/thread/chat",
            headers=paid_headers,
            json={"message": "I felt ignored", "context_card": "work", "step2_meta_card": "meta"},
        )
        assert resp.status_code == 200
        assert resp.json()["reply"] == "もう少し具体的に教えてください。"

        # Step 1 threads never forward the meta card
        assert fake_llm == [(Step1(1), "I felt ignored", "work", None)]

    async def test_missing_context_card_is_400(self, client, paid_headers, fake_llm):
        await _open_thread(client, paid_headers)
        resp = await client.post("/api/thread/chat", headers=paid_headers, json={"message": "hi"})
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "BAD_REQUEST"
        assert fake_llm == []

    async def test_overlong_message_is_400(self, client, paid_headers, fake_llm):
        await _open_thread(client, paid_headers)
        resp = await client.post(
            "/api/thread/chat",
            headers=paid_headers,
            json={"message": "x" * 2001, "context_card": "card"},
        )
        assert resp.status_code == 400

    async def test_no_active_thread_is_400(self, client, paid_headers, fake_llm):
        await client.post("/api/run/start", headers=paid_headers)
        resp = await client.post("/api/thread/chat", headers=paid_headers, json={"action": "next"})
        assert resp.status_code == 400

    async def test_upstream_failure_is_502(self, client, paid_headers, monkeypatch):
        await _open_thread(client, paid_headers)

        async def failing_chat_reply(*args, **kwargs):
            raise UpstreamError("openai", "OpenAI request failed")

        monkeypatch.setattr(llm_service, "chat_reply", failing_chat_reply)
        resp = await client.post(
            "/api/thread/chat", headers=paid_headers, json={"message": "hi", "context_card": "card"}
        )
        assert resp.status_code == 502
        assert resp.json() == {
            "ok": False,
            "error": {
                "code": "UPSTREAM_ERROR",
                "message": "OpenAI request failed",
                "details": {"service": "openai", "retryable": True},
            },
        }

    async def test_unpaid_is_403(self, client, unpaid_headers):
        resp = await client.post("/api/thread/chat", headers=unpaid_headers, json={"action": "next"})
        assert resp.status_code == 403


class TestLLMSmokeRoutes:
    async def test_ping(self, client, paid_headers, monkeypatch):
        async def fake_ping():
            return "pong"

        monkeypatch.setattr(llm_service, "ping", fake_ping)
        resp = await client.post("/api/llm/ping", headers=paid_headers)
        assert resp.status_code == 200
        assert resp.json()["reply"] == "pong"
        assert resp.json()["ok"] is True

    async def test_respond(self, client, paid_headers, monkeypatch):
        async def fake_respond(text):
            return f"echo: {text}"

        monkeypatch.setattr(llm_service, "respond", fake_respond)
        resp = await client.post("/api/llm/respond", headers=paid_headers, json={"input": "hello"})
        assert resp.json()["reply"] == "echo: hello"

    async def test_respond_requires_input(self, client, paid_headers):
        resp = await client.post("/api/llm/respond", headers=paid_headers, json={"input": ""})
        assert resp.status_code == 400


class TestEdgePolicies:
    async def test_health(self, client):
        resp = await client.get("/health")
        assert resp.status_code == 200
        assert resp.json() == {"ok": True}

    async def test_disallowed_origin_is_403(self, client):
        resp = await client.get("/health", headers={"Origin": "https://evil.example.com"})
        assert resp.status_code == 403
        assert resp.json() == {"ok": False, "error": {"code": "FORBIDDEN", "message": "Origin not allowed"}}

    async def test_allowed_origin_gets_cors_headers(self, client):
        resp = await client.get("/health", headers={"Origin": "https://app.example.com"})
        assert resp.status_code == 200
        assert resp.headers["access-control-allow-origin"] == "https://app.example.com"
        assert resp.headers["access-control-allow-credentials"] == "true"

    async def test_unknown_route_uses_envelope(self, client):
        resp = await client.get("/api/nope")
        assert resp.status_code == 404
        assert resp.json()["ok"] is False
        assert resp.json()["error"]["code"] == "NOT_FOUND"
