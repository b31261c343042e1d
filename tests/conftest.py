"""
Pytest configuration for the RAG chat test suite.

Provides:
- pytest-asyncio for async test support
- an in-memory Qdrant and a scripted Ollama, both served through
  httpx.MockTransport so the real HTTP clients are exercised
- a SQLite-backed ConversationRepository
"""

import hashlib
import json
import logging
import math
import re

import httpx
import pytest
import pytest_asyncio

from server.core.ChatService import ChatService
from server.core.RetrievalService import RetrievalService
from services.document_ingestion.DocumentIngestionService import DocumentIngestionService
from shared.clients.llm.ollama.LLMClientOllama import LLMClientOllama
from shared.clients.rag.qdrant.RAGClientQdrant import RAGClientQdrant
from shared.db.ConversationRepository import ConversationRepository
from shared.db.database import build_engine, build_session_factory, init_db
from shared.helper.HelperConfig import HelperConfig

pytest_plugins = ["pytest_asyncio"]

EMBED_DIM = 64
QDRANT_URL = "http://qdrant.test"
OLLAMA_URL = "http://ollama.test"
COLLECTION = "test_collection"


def embed_text(text: str) -> list[float]:
    """Deterministic bag-of-words embedding: texts sharing words point the same way."""
    vector = [0.01] * EMBED_DIM
    for token in re.findall(r"\w+", text.lower()):
        bucket = int(hashlib.md5(token.encode("utf-8")).hexdigest(), 16) % EMBED_DIM
        vector[bucket] += 1.0
    return vector


def make_pdf(text: str, title: str | None = None) -> bytes:
    """Build a one-page PDF showing text in Helvetica."""
    escaped = text.replace("\\", "\\\\").replace("(", "\\(").replace(")", "\\)")
    stream = f"BT /F1 12 Tf 72 720 Td ({escaped}) Tj ET".encode("latin-1")
    objects = [
        b"<< /Type /Catalog /Pages 2 0 R >>",
        b"<< /Type /Pages /Kids [3 0 R] /Count 1 >>",
        b"<< /Type /Page /Parent 2 0 R /MediaBox [0 0 612 792] /Contents 4 0 R "
        b"/Resources << /Font << /F1 5 0 R >> >> >>",
        b"<< /Length %d >>\nstream\n" % len(stream) + stream + b"\nendstream",
        b"<< /Type /Font /Subtype /Type1 /BaseFont /Helvetica >>",
    ]
    if title:
        objects.append(b"<< /Title (" + title.encode("latin-1") + b") >>")

    out = bytearray(b"%PDF-1.4\n")
    offsets = []
    for number, body in enumerate(objects, start=1):
        offsets.append(len(out))
        out += b"%d 0 obj\n" % number + body + b"\nendobj\n"
    xref_at = len(out)
    out += b"xref\n0 %d\n0000000000 65535 f \n" % (len(objects) + 1)
    for offset in offsets:
        out += b"%010d 00000 n \n" % offset
    trailer = b"<< /Size %d /Root 1 0 R" % (len(objects) + 1)
    if title:
        trailer += b" /Info %d 0 R" % len(objects)
    out += b"trailer\n" + trailer + b" >>\nstartxref\n%d\n%%%%EOF\n" % xref_at
    return bytes(out)


def cosine(a: list[float], b: list[float]) -> float:
    dot = sum(x * y for x, y in zip(a, b))
    norm = math.sqrt(sum(x * x for x in a)) * math.sqrt(sum(y * y for y in b))
    return dot / norm if norm else 0.0


##########################################
############ FAKE BACKENDS ###############
##########################################


class InMemoryQdrant:
    """Just enough of the Qdrant REST API for the RAG client."""

    def __init__(self) -> None:
        self.points: dict[str, dict] = {}
        self.collection_exists = False
        self.created_with: dict | None = None
        self.fail_search = False
        self.fail_delete = False
        self.fail_upsert_on_call: int | None = None
        self.upsert_calls = 0
        self.search_requests: list[dict] = []

    @staticmethod
    def matches(payload: dict, condition: dict) -> bool:
        if "must" in condition:
            return all(InMemoryQdrant.matches(payload, c) for c in condition["must"])
        if "is_empty" in condition:
            value = payload.get(condition["is_empty"]["key"])
            return value is None or value == []
        if "match" in condition:
            return payload.get(condition["key"]) == condition["match"]["value"]
        raise AssertionError(f"unsupported filter condition {condition}")

    def select(self, filter: dict | None) -> list[dict]:
        if not filter:
            return list(self.points.values())
        return [p for p in self.points.values() if self.matches(p["payload"], filter)]

    def handle(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        body = json.loads(request.content) if request.content else {}
        base = f"/collections/{COLLECTION}"

        if path == "/healthz":
            return httpx.Response(200, text="healthz check passed")
        if path == f"{base}/exists":
            return httpx.Response(200, json={"result": {"exists": self.collection_exists}})
        if path == base and request.method == "PUT":
            self.collection_exists = True
            self.created_with = body
            return httpx.Response(200, json={"result": True})
        if path == f"{base}/points" and request.method == "PUT":
            self.upsert_calls += 1
            if self.fail_upsert_on_call is not None and self.upsert_calls >= self.fail_upsert_on_call:
                return httpx.Response(500, json={"status": {"error": "disk full"}})
            for point in body["points"]:
                self.points[str(point["id"])] = point
            return httpx.Response(200, json={"result": {"status": "completed"}})
        if path == f"{base}/points/search":
            self.search_requests.append(body)
            if self.fail_search:
                return httpx.Response(503, json={"status": {"error": "unavailable"}})
            hits = sorted(
                (
                    {"id": p["id"], "score": cosine(body["vector"], p["vector"]), "payload": p["payload"]}
                    for p in self.select(body.get("filter"))
                ),
                key=lambda hit: hit["score"],
                reverse=True,
            )
            return httpx.Response(200, json={"result": hits[: body["limit"]], "status": "ok"})
        if path == f"{base}/points/count":
            return httpx.Response(200, json={"result": {"count": len(self.select(body.get("filter")))}})
        if path == f"{base}/points/scroll":
            points = [{"id": p["id"], "payload": p["payload"]} for p in self.select(body.get("filter"))]
            return httpx.Response(200, json={"result": {"points": points, "next_page_offset": None}, "status": "ok"})
        if path == f"{base}/points/delete":
            if self.fail_delete:
                return httpx.Response(500, json={"status": {"error": "locked"}})
            if "points" in body:
                for point_id in body["points"]:
                    self.points.pop(str(point_id), None)
            else:
                for point in self.select(body["filter"]):
                    self.points.pop(str(point["id"]), None)
            return httpx.Response(200, json={"result": {"status": "completed"}})
        return httpx.Response(404, json={"status": {"error": f"unknown path {path}"}})


class ScriptedOllama:
    """Ollama stand-in: hashed embeddings and a scripted NDJSON chat stream."""

    def __init__(self) -> None:
        self.fragments: list[str] = ["Hello", ", ", "world", "."]
        self.stream_error_after: int | None = None
        self.fail_chat = False
        self.fail_embed_on_call: int | None = None
        self.embed_calls = 0
        self.chat_requests: list[dict] = []

    def handle(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        body = json.loads(request.content) if request.content else {}

        if path in ("", "/"):
            return httpx.Response(200, text="Ollama is running")
        if path == "/api/embed":
            self.embed_calls += 1
            if self.fail_embed_on_call is not None and self.embed_calls >= self.fail_embed_on_call:
                return httpx.Response(500, json={"error": "model not loaded"})
            return httpx.Response(200, json={"embeddings": [embed_text(t) for t in body["input"]]})
        if path == "/api/show":
            return httpx.Response(200, json={"model_info": {"test.embedding_length": EMBED_DIM}})
        if path == "/api/chat":
            self.chat_requests.append(body)
            if self.fail_chat:
                return httpx.Response(500, json={"error": "out of memory"})
            lines = []
            for index, fragment in enumerate(self.fragments):
                if self.stream_error_after is not None and index == self.stream_error_after:
                    lines.append(json.dumps({"error": "model crashed"}))
                    break
                lines.append(json.dumps({"message": {"role": "assistant", "content": fragment}, "done": False}))
            else:
                lines.append(json.dumps({"message": {"role": "assistant", "content": ""}, "done": True}))
            return httpx.Response(200, content=("\n".join(lines) + "\n").encode("utf-8"))
        return httpx.Response(404, json={"error": f"unknown path {path}"})


##########################################
############### FIXTURES #################
##########################################


@pytest.fixture(autouse=True)
def env(monkeypatch, tmp_path):
    """Base configuration for every test. Individual tests override single keys."""
    values = {
        "APP_ENV": "development",
        "RAG_ENGINE": "Qdrant",
        "RAG_QDRANT_BASE_URL": QDRANT_URL,
        "RAG_QDRANT_COLLECTION": COLLECTION,
        "LLM_ENGINE": "Ollama",
        "LLM_OLLAMA_BASE_URL": OLLAMA_URL,
        "LLM_MODEL": "nomic-embed-text",
        "LLM_CHAT_MODEL": "llama3",
        "DATABASE_URL": f"sqlite+aiosqlite:///{tmp_path / 'chat.db'}",
        "UPLOAD_DIR": str(tmp_path / "uploads"),
        "KNOWLEDGE_DOCUMENTS_DIR": str(tmp_path / "documents"),
        "KNOWLEDGE_PROCESSED_DIR": str(tmp_path / "processed"),
        "ROOT_DIR": str(tmp_path),
    }
    for key, value in values.items():
        monkeypatch.setenv(key, value)
    for key in ("API_SERVER_API_KEY", "CHAT_PERSIST_PARTIAL_ON_ERROR", "CHAT_HISTORY_LIMIT"):
        monkeypatch.delenv(key, raising=False)
    return values


@pytest.fixture
def helper_config() -> HelperConfig:
    return HelperConfig(logger=logging.getLogger("rag_chat.tests"))


@pytest.fixture
def qdrant() -> InMemoryQdrant:
    return InMemoryQdrant()


@pytest.fixture
def ollama() -> ScriptedOllama:
    return ScriptedOllama()


@pytest_asyncio.fixture
async def rag_client(helper_config, qdrant):
    client = RAGClientQdrant(helper_config=helper_config, transport=httpx.MockTransport(qdrant.handle))
    await client.boot()
    yield client
    await client.close()


@pytest_asyncio.fixture
async def llm_client(helper_config, ollama):
    client = LLMClientOllama(helper_config=helper_config, transport=httpx.MockTransport(ollama.handle))
    await client.boot()
    yield client
    await client.close()


@pytest_asyncio.fixture
async def repository(helper_config):
    engine = build_engine(helper_config)
    await init_db(engine)
    yield ConversationRepository(helper_config=helper_config, session_factory=build_session_factory(engine))
    await engine.dispose()


@pytest.fixture
def retrieval_service(helper_config, llm_client, rag_client) -> RetrievalService:
    return RetrievalService(helper_config=helper_config, llm_client=llm_client, rag_client=rag_client)


@pytest.fixture
def ingestion_service(helper_config, llm_client, rag_client) -> DocumentIngestionService:
    return DocumentIngestionService(helper_config=helper_config, llm_client=llm_client, rag_client=rag_client)


@pytest.fixture
def chat_service(helper_config, repository, retrieval_service, llm_client) -> ChatService:
    return ChatService(
        helper_config=helper_config,
        repository=repository,
        retrieval_service=retrieval_service,
        llm_client=llm_client,
    )


@pytest.fixture
def write_csv(tmp_path):
    """Write a small CSV file and return its path."""

    def _write(name: str = "inventory.csv", rows: list[str] | None = None) -> str:
        rows = rows or [
            "item,quantity,warehouse",
            "bolts,120,Hamburg",
            "nuts,75,Munich",
            "washers,300,Berlin",
        ]
        path = tmp_path / name
        path.write_text("\n".join(rows) + "\n", encoding="utf-8")
        return str(path)

    return _write


@pytest.fixture
def write_pdf(tmp_path):
    """Write a one-page PDF into a directory below tmp_path and return its path."""

    def _write(name: str, text: str, directory: str | None = None, title: str | None = None) -> str:
        target = tmp_path / directory if directory else tmp_path
        target.mkdir(parents=True, exist_ok=True)
        path = target / name
        path.write_bytes(make_pdf(text, title))
        return str(path)

    return _write
