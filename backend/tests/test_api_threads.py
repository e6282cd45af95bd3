"""Route-level tests for runs, threads, messages, and cards."""

import asyncio
import uuid

PAYLOAD = {"ciphertext": "ct", "iv": "iv", "alg": "AES-GCM", "v": 1, "kid": "k1"}


async def _start_run(client, headers) -> dict:
    resp = await client.post("/api/run/start", headers=headers)
    assert resp.status_code == 200, resp.text
    return resp.json()["run"]


async def _start_thread(client, headers) -> dict:
    resp = await client.post("/api/thread/start", headers=headers)
    assert resp.status_code == 200, resp.text
    return resp.json()["thread"]


def _message(thread_id: str, client_message_id: str, **overrides) -> dict:
    body = {"thread_id": thread_id, "role": "user", "client_message_id": client_message_id, **PAYLOAD}
    body.update(overrides)
    return body


class TestGates:
    async def test_missing_token_is_401_envelope(self, client):
        resp = await client.post("/api/run/start")
        assert resp.status_code == 401
        assert resp.json() == {"ok": False, "error": {"code": "UNAUTHORIZED", "message": "Invalid or missing JWT"}}

    async def test_garbage_token_is_401(self, client):
        resp = await client.post("/api/run/start", headers={"Authorization": "Bearer nope"})
        assert resp.status_code == 401

    async def test_unpaid_is_403(self, client, unpaid_headers):
        resp = await client.post("/api/run/start", headers=unpaid_headers)
        assert resp.status_code == 403
        assert resp.json()["error"] == {"code": "FORBIDDEN", "message": "Paid access required"}


class TestRunRoutes:
    async def test_start_then_start_again_fails(self, client, paid_headers):
        run = await _start_run(client, paid_headers)
        assert run["run_no"] == 1
        assert run["status"] == "active"

        resp = await client.post("/api/run/start", headers=paid_headers)
        assert resp.status_code == 400
        assert resp.json()["error"]["message"] == "active run exists"

    async def test_restart_rejected_while_active(self, client, paid_headers):
        await _start_run(client, paid_headers)
        resp = await client.post("/api/run/restart", headers=paid_headers)
        assert resp.status_code == 400
        assert resp.json()["error"]["message"] == "active run exists"

    async def test_restart_as_first_run(self, client, paid_headers):
        resp = await client.post("/api/run/restart", headers=paid_headers)
        assert resp.status_code == 200
        assert resp.json()["run"]["run_no"] == 1

    async def test_runs_list(self, client, paid_headers):
        await _start_run(client, paid_headers)
        resp = await client.get("/api/runs/list", headers=paid_headers)
        body = resp.json()
        assert body["ok"] is True
        assert [r["run_no"] for r in body["runs"]] == [1]

    async def test_step2_meta_card_round_trip(self, client, paid_headers):
        await _start_run(client, paid_headers)

        resp = await client.get("/api/run/step2_meta_card", headers=paid_headers)
        assert resp.status_code == 200
        assert resp.json()["card"] is None

        resp = await client.post("/api/run/step2_meta_card", headers=paid_headers, json=PAYLOAD)
        assert resp.status_code == 200
        resp = await client.post(
            "/api/run/step2_meta_card", headers=paid_headers, json={**PAYLOAD, "ciphertext": "ct2"}
        )
        card = resp.json()["card"]
        assert card["ciphertext"] == "ct2"
        assert card["v"] == 1

        resp = await client.get("/api/run/step2_meta_card", headers=paid_headers)
        assert resp.json()["card"]["ciphertext"] == "ct2"

    async def test_meta_card_without_run_is_400(self, client, paid_headers):
        resp = await client.get("/api/run/step2_meta_card", headers=paid_headers)
        assert resp.status_code == 400


class TestThreadRoutes:
    async def test_thread_start_without_run_is_400(self, client, paid_headers):
        resp = await client.post("/api/thread/start", headers=paid_headers)
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "BAD_REQUEST"

    async def test_start_close_start_advances(self, client, paid_headers):
        await _start_run(client, paid_headers)

        first = await _start_thread(client, paid_headers)
        assert (first["step"], first["question_no"], first["session_no"]) == (1, 1, None)

        # Starting again returns the same active thread
        assert (await _start_thread(client, paid_headers))["id"] == first["id"]

        resp = await client.post("/api/thread/close", headers=paid_headers)
        assert resp.status_code == 200
        assert resp.json()["thread"]["status"] == "completed"
        assert resp.json()["run"]["status"] == "active"

        second = await _start_thread(client, paid_headers)
        assert second["question_no"] == 2

        resp = await client.get("/api/threads/list", headers=paid_headers)
        threads = resp.json()["threads"]
        assert [(t["question_no"], t["status"]) for t in threads] == [(1, "completed"), (2, "active")]

    async def test_close_without_active_thread_is_400(self, client, paid_headers):
        await _start_run(client, paid_headers)
        resp = await client.post("/api/thread/close", headers=paid_headers)
        assert resp.status_code == 400
        assert resp.json()["error"]["message"] == "no active thread"

    async def test_thread_state(self, client, paid_headers):
        resp = await client.get("/api/thread/state", headers=paid_headers)
        assert resp.json() == {"ok": True, "run": None, "thread": None, "last_message": None}

        await _start_run(client, paid_headers)
        thread = await _start_thread(client, paid_headers)
        await client.post("/api/thread/message", headers=paid_headers, json=_message(thread["id"], "c1"))

        body = (await client.get("/api/thread/state", headers=paid_headers)).json()
        assert body["thread"]["id"] == thread["id"]
        assert body["last_message"]["seq"] == 1
        assert body["last_message"]["ciphertext"] == "ct"

    async def test_threads_list_unknown_run_no_is_empty(self, client, paid_headers):
        resp = await client.get("/api/threads/list", params={"run_no": 7}, headers=paid_headers)
        assert resp.status_code == 200
        assert resp.json() == {"ok": True, "run": None, "threads": []}

        await _start_run(client, paid_headers)
        await _start_thread(client, paid_headers)
        resp = await client.get("/api/threads/list", params={"run_no": 7}, headers=paid_headers)
        assert resp.json() == {"ok": True, "run": None, "threads": []}

        resp = await client.get("/api/threads/list", params={"run_no": 1}, headers=paid_headers)
        assert resp.json()["run"]["run_no"] == 1
        assert len(resp.json()["threads"]) == 1

    async def test_double_clicked_thread_start_opens_one_thread(self, client, paid_headers):
        await _start_run(client, paid_headers)

        responses = await asyncio.gather(
            *(client.post("/api/thread/start", headers=paid_headers) for _ in range(3))
        )
        assert [r.status_code for r in responses] == [200, 200, 200]
        assert len({r.json()["thread"]["id"] for r in responses}) == 1

        threads = (await client.get("/api/threads/list", headers=paid_headers)).json()["threads"]
        assert [(t["question_no"], t["status"]) for t in threads] == [(1, "active")]


class TestMessageRoutes:
    async def test_append_and_replay(self, client, paid_headers):
        await _start_run(client, paid_headers)
        thread = await _start_thread(client, paid_headers)

        resp = await client.post("/api/thread/message", headers=paid_headers, json=_message(thread["id"], "c1"))
        assert resp.status_code == 200
        assert resp.json()["message"]["seq"] == 1
        assert resp.json()["duplicate"] is False

        resp = await client.post("/api/thread/message", headers=paid_headers, json=_message(thread["id"], "c1"))
        assert resp.status_code == 200
        assert resp.json()["message"]["seq"] == 1
        assert resp.json()["duplicate"] is True

        resp = await client.get(
            "/api/thread/messages", params={"thread_id": thread["id"]}, headers=paid_headers
        )
        assert [m["seq"] for m in resp.json()["messages"]] == [1]

    async def test_stale_thread_id_rejected(self, client, paid_headers):
        await _start_run(client, paid_headers)
        first = await _start_thread(client, paid_headers)
        await client.post("/api/thread/close", headers=paid_headers)
        await _start_thread(client, paid_headers)

        resp = await client.post("/api/thread/message", headers=paid_headers, json=_message(first["id"], "c1"))
        assert resp.status_code == 400
        assert resp.json()["error"]["message"] == "thread_id must be current active thread"

    async def test_payload_validation(self, client, paid_headers):
        await _start_run(client, paid_headers)
        thread = await _start_thread(client, paid_headers)
        url = "/api/thread/message"

        for bad in (
            {"v": "1"},
            {"v": 0},
            {"v": 1.5},
            {"ciphertext": "   "},
            {"role": "system"},
            {"kid": "k" * 129},
            {"client_message_id": "x" * 129},
        ):
            resp = await client.post(url, headers=paid_headers, json=_message(thread["id"], "c1", **bad))
            assert resp.status_code == 400, bad
            assert resp.json()["ok"] is False

    async def test_messages_limit_is_clamped(self, client, paid_headers):
        await _start_run(client, paid_headers)
        thread = await _start_thread(client, paid_headers)
        for i in range(3):
            await client.post("/api/thread/message", headers=paid_headers, json=_message(thread["id"], f"c{i}"))

        resp = await client.get(
            "/api/thread/messages", params={"thread_id": thread["id"], "limit": 0}, headers=paid_headers
        )
        assert len(resp.json()["messages"]) == 1

        resp = await client.get(
            "/api/thread/messages", params={"thread_id": thread["id"], "limit": 99999}, headers=paid_headers
        )
        assert len(resp.json()["messages"]) == 3

    async def test_other_users_thread_is_404(self, client, paid_headers, make_headers, db):
        from navigator.services.entitlement import set_user_paid

        await _start_run(client, paid_headers)
        thread = await _start_thread(client, paid_headers)

        await set_user_paid(db, "mem_intruder", True)
        resp = await client.get(
            "/api/thread/messages", params={"thread_id": thread["id"]}, headers=make_headers("mem_intruder")
        )
        assert resp.status_code == 404

    async def test_unknown_thread_is_404(self, client, paid_headers):
        resp = await client.get(
            "/api/thread/messages", params={"thread_id": str(uuid.uuid4())}, headers=paid_headers
        )
        assert resp.status_code == 404


class TestContextCardRoutes:
    async def test_upsert_then_get(self, client, paid_headers):
        await _start_run(client, paid_headers)
        thread = await _start_thread(client, paid_headers)

        resp = await client.get(
            "/api/thread/context_card", params={"thread_id": thread["id"]}, headers=paid_headers
        )
        assert resp.status_code == 404

        body = {"thread_id": thread["id"], **PAYLOAD}
        await client.post("/api/thread/context_card", headers=paid_headers, json=body)
        resp = await client.post(
            "/api/thread/context_card", headers=paid_headers, json={**body, "ciphertext": "newer", "kid": ""}
        )
        assert resp.status_code == 200
        assert resp.json()["card"]["kid"] is None

        resp = await client.get(
            "/api/thread/context_card", params={"thread_id": thread["id"]}, headers=paid_headers
        )
        assert resp.json()["card"]["ciphertext"] == "newer"
        assert resp.json()["thread"]["id"] == thread["id"]
