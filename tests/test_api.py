"""
Tests for server/api_server.py and the routers
Exercised in-process through httpx.ASGITransport with the fake backends wired into app.state.
"""

import json
import os

import httpx
import pytest_asyncio

from server.api_server import app, configure_services
from shared.models.errors import AuthorizationError

USER = {"X-User-Id": "alice"}


def leftover_uploads(upload_dir: str) -> list[str]:
    return os.listdir(upload_dir) if os.path.isdir(upload_dir) else []


def parse_sse(body: str) -> list[dict]:
    return [json.loads(frame[len("data: "):]) for frame in body.split("\n\n") if frame.startswith("data: ")]


@pytest_asyncio.fixture
async def client(helper_config, rag_client, llm_client, repository):
    app.state.helper_config = helper_config
    configure_services(app, rag_client, llm_client, repository)
    async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://testserver") as http:
        yield http


async def start_conversation(client, message: str = "Say hello") -> int:
    response = await client.post("/api/chat", json={"message": message}, headers=USER)
    return parse_sse(response.text)[0]["conversationId"]


class TestChatEndpoint:

    async def test_streams_events(self, client, repository):
        response = await client.post("/api/chat", json={"message": "Say hello"}, headers=USER)

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/event-stream")
        assert response.headers["cache-control"] == "no-cache"
        events = parse_sse(response.text)
        assert [e["type"] for e in events] == ["conversation", "content", "content", "content", "content", "done"]

        messages = await repository.get_conversation_messages(events[0]["conversationId"], "alice")
        assert messages[-1].content == "".join(e["content"] for e in events if e["type"] == "content")

    async def test_empty_message_is_400(self, client):
        response = await client.post("/api/chat", json={"message": "  "}, headers=USER)
        assert response.status_code == 400
        assert response.json()["kind"] == "validation"

    async def test_foreign_conversation_is_403(self, client):
        conversation_id = await start_conversation(client)
        response = await client.post(
            "/api/chat", json={"message": "hi", "conversationId": conversation_id}, headers={"X-User-Id": "bob"},
        )
        assert response.status_code == 403
        assert response.json() == {
            "error": AuthorizationError().message,
            "kind": "authorization",
        }

    async def test_missing_user_is_401(self, client):
        response = await client.post("/api/chat", json={"message": "hi"})
        assert response.status_code == 401

    async def test_upstream_failure_is_in_band(self, client, ollama):
        ollama.fail_chat = True
        response = await client.post("/api/chat", json={"message": "hi"}, headers=USER)
        assert response.status_code == 200
        assert parse_sse(response.text)[-1]["type"] == "error"


class TestApiKey:

    async def test_key_required_when_configured(self, client, monkeypatch):
        monkeypatch.setenv("API_SERVER_API_KEY", "topsecret")
        response = await client.get("/api/conversations", headers=USER)
        assert response.status_code == 401
        response = await client.get("/api/conversations", headers={**USER, "X-Api-Key": "topsecret"})
        assert response.status_code == 200


class TestConversationEndpoints:

    async def test_list_and_messages(self, client):
        conversation_id = await start_conversation(client, "What is the refund policy?")

        listing = (await client.get("/api/conversations", headers=USER)).json()["conversations"]
        assert listing[0]["id"] == conversation_id
        assert listing[0]["title"] == "What is the refund policy?"
        assert listing[0]["firstMessage"] == "What is the refund policy?"

        messages = (await client.get(f"/api/conversations/{conversation_id}/messages", headers=USER)).json()
        assert [m["role"] for m in messages["messages"]] == ["user", "assistant"]
        assert messages["messages"][1]["metadata"] == {"sources": []}

    async def test_cross_user_message_read_is_403(self, client):
        conversation_id = await start_conversation(client)
        response = await client.get(f"/api/conversations/{conversation_id}/messages", headers={"X-User-Id": "bob"})
        assert response.status_code == 403

    async def test_delete_removes_vectors_and_rows(self, client, qdrant, write_csv):
        conversation_id = await start_conversation(client)
        with open(write_csv(), "rb") as f:
            await client.post(
                "/api/upload", files={"file": ("inventory.csv", f, "text/csv")},
                data={"conversationId": str(conversation_id)}, headers=USER,
            )
        assert qdrant.points

        response = await client.delete(f"/api/conversations/{conversation_id}", headers=USER)

        assert response.status_code == 200
        assert qdrant.points == {}
        assert (await client.get("/api/conversations", headers=USER)).json()["conversations"] == []

    async def test_vector_delete_failure_keeps_rows(self, client, qdrant):
        conversation_id = await start_conversation(client)
        qdrant.fail_delete = True
        response = await client.delete(f"/api/conversations/{conversation_id}", headers=USER)
        assert response.status_code == 502
        assert len((await client.get("/api/conversations", headers=USER)).json()["conversations"]) == 1


class TestDocumentEndpoints:

    async def test_upload_list_search_delete(self, client, qdrant, write_csv, env):
        conversation_id = await start_conversation(client)
        with open(write_csv(), "rb") as f:
            response = await client.post(
                "/api/upload", files={"file": ("inventory.csv", f, "text/csv")},
                headers={**USER, "X-Conversation-Id": str(conversation_id)},
            )
        assert response.status_code == 200
        upload = response.json()
        assert upload["chunksCreated"] == 1
        assert upload["fileType"] == "csv"

        documents = (await client.get(f"/api/conversations/{conversation_id}/documents", headers=USER)).json()
        assert [d["fileName"] for d in documents["documents"]] == ["inventory.csv"]

        search = await client.post(
            "/api/documents/search",
            json={"query": "washers in Berlin", "conversationId": conversation_id, "topK": 3},
            headers=USER,
        )
        assert search.json()["total"] == 1
        assert search.json()["results"][0]["fileName"] == "inventory.csv"

        response = await client.delete(
            f"/api/conversations/{conversation_id}/documents/{upload['documentId']}", headers=USER,
        )
        assert response.status_code == 200
        assert qdrant.points == {}
        # temp files are gone on success
        assert leftover_uploads(env["UPLOAD_DIR"]) == []

    async def test_upload_requires_conversation(self, client, write_csv):
        with open(write_csv(), "rb") as f:
            response = await client.post("/api/upload", files={"file": ("inventory.csv", f, "text/csv")}, headers=USER)
        assert response.status_code == 400

    async def test_upload_unsupported_extension(self, client):
        conversation_id = await start_conversation(client)
        response = await client.post(
            "/api/upload", files={"file": ("notes.docx", b"PK\x03\x04junk", "application/octet-stream")},
            data={"conversationId": str(conversation_id)}, headers=USER,
        )
        assert response.status_code == 400

    async def test_unsupported_extension_rejected_before_ownership_lookup(self, client, repository, monkeypatch):
        conversation_id = await start_conversation(client)

        async def unexpected_lookup(*args, **kwargs):
            raise AssertionError("conversation lookup must not run for an unsupported file type")

        monkeypatch.setattr(repository, "get_conversation", unexpected_lookup)
        response = await client.post(
            "/api/upload", files={"file": ("notes.docx", b"PK\x03\x04junk", "application/octet-stream")},
            data={"conversationId": str(conversation_id)}, headers={"X-User-Id": "bob"},
        )
        assert response.status_code == 400
        assert response.json()["kind"] == "validation"

    async def test_upload_too_large(self, client, monkeypatch, env):
        monkeypatch.setenv("UPLOAD_MAX_BYTES", "10")
        conversation_id = await start_conversation(client)
        response = await client.post(
            "/api/upload", files={"file": ("big.csv", b"a,b\n" * 10, "text/csv")},
            data={"conversationId": str(conversation_id)}, headers=USER,
        )
        assert response.status_code == 400
        assert leftover_uploads(env["UPLOAD_DIR"]) == []

    async def test_disguised_upload_rejected_and_cleaned_up(self, client, env, ollama):
        conversation_id = await start_conversation(client)
        embed_calls = ollama.embed_calls
        response = await client.post(
            "/api/upload", files={"file": ("invoice.pdf", b"MZ\x90\x00 not a pdf", "application/pdf")},
            data={"conversationId": str(conversation_id)}, headers=USER,
        )
        assert response.status_code == 400
        assert ollama.embed_calls == embed_calls
        assert leftover_uploads(env["UPLOAD_DIR"]) == []

    async def test_upload_into_foreign_conversation(self, client, write_csv):
        conversation_id = await start_conversation(client)
        with open(write_csv(), "rb") as f:
            response = await client.post(
                "/api/upload", files={"file": ("inventory.csv", f, "text/csv")},
                data={"conversationId": str(conversation_id)}, headers={"X-User-Id": "bob"},
            )
        assert response.status_code == 403

    async def test_failed_ingestion_is_502_and_cleaned_up(self, client, qdrant, write_csv, env):
        conversation_id = await start_conversation(client)
        qdrant.fail_upsert_on_call = 1
        with open(write_csv(), "rb") as f:
            response = await client.post(
                "/api/upload", files={"file": ("inventory.csv", f, "text/csv")},
                data={"conversationId": str(conversation_id)}, headers=USER,
            )
        assert response.status_code == 502
        assert response.json()["kind"] == "upstream"
        assert leftover_uploads(env["UPLOAD_DIR"]) == []


class TestHealth:

    async def test_health(self, client):
        body = (await client.get("/api/health")).json()
        assert body["status"] == "ok"
        assert body["components"] == {"database": True, "vector_index": True, "llm": True}

    async def test_degraded(self, client, monkeypatch, rag_client):
        async def down():
            raise httpx.ConnectError("connection refused")

        monkeypatch.setattr(rag_client, "do_healthcheck", down)
        body = (await client.get("/api/health")).json()
        assert body["status"] == "degraded"
        assert body["components"]["vector_index"] is False
