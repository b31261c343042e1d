"""FastAPI application entry point for the RAG chat service."""

import os
from contextlib import asynccontextmanager
from typing import AsyncGenerator

import httpx
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from shared.logging.logging_setup import setup_logging
from shared.helper.HelperConfig import HelperConfig
from shared.clients.rag.RAGClientInterface import RAGClientInterface
from shared.clients.llm.LLMClientInterface import LLMClientInterface
from shared.clients.rag.RAGClientManager import RAGClientManager
from shared.clients.llm.LLMClientManager import LLMClientManager
from shared.db.ConversationRepository import ConversationRepository
from shared.db.database import build_engine, build_session_factory, init_db
from shared.models.errors import ServiceError
from services.document_ingestion.DocumentIngestionService import DocumentIngestionService
from server.core.ChatService import ChatService
from server.core.ContextAssembler import ContextAssembler
from server.core.RetrievalService import RetrievalService
from server.models.responses import HealthResponse
from server.routers.ChatRouter import router as chat_router
from server.routers.ConversationRouter import router as conversation_router
from server.routers.DocumentRouter import router as document_router

logging = setup_logging("api")
app_version = os.getenv("APP_VERSION", "unknown")


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    # when the app starts
    app.state.logging = logging
    app.state.helper_config = HelperConfig(logger=logging)

    rag_client = RAGClientManager(helper_config=app.state.helper_config).get_client()
    llm_client = LLMClientManager(helper_config=app.state.helper_config).get_client()

    logging.info("Booting all clients...")
    for client in [rag_client, llm_client]:
        await client.boot()
    logging.info("All clients booted successfully.")

    engine = build_engine(app.state.helper_config)
    await init_db(engine)
    repository = ConversationRepository(
        helper_config=app.state.helper_config,
        session_factory=build_session_factory(engine),
    )

    configure_services(app, rag_client, llm_client, repository)
    await check_connections(rag_client, llm_client, repository)

    # while the app is running...
    yield

    # when the app shuts down, close all client connections
    logging.info("Shutting down, closing all clients...")
    for client in [rag_client, llm_client]:
        await client.close()
    await engine.dispose()
    logging.info("All clients closed.")


def configure_services(
    app: FastAPI,
    rag_client: RAGClientInterface,
    llm_client: LLMClientInterface,
    repository: ConversationRepository,
) -> None:
    """Wire the request-independent services into app.state."""
    helper_config = app.state.helper_config
    app.state.rag_client = rag_client
    app.state.llm_client = llm_client
    app.state.repository = repository
    app.state.retrieval_service = RetrievalService(
        helper_config=helper_config,
        llm_client=llm_client,
        rag_client=rag_client,
    )
    app.state.ingestion_service = DocumentIngestionService(
        helper_config=helper_config,
        llm_client=llm_client,
        rag_client=rag_client,
    )
    app.state.chat_service = ChatService(
        helper_config=helper_config,
        repository=repository,
        retrieval_service=app.state.retrieval_service,
        llm_client=llm_client,
        assembler=ContextAssembler(),
    )


app = FastAPI(
    title="rag_chat",
    description=(
        "Retrieval-augmented chat service. Answers are grounded in a shared knowledge base "
        "and in the documents uploaded to each conversation, and are streamed as server-sent "
        "events via POST /api/chat. Conversation history is kept in a relational store."
    ),
    version=app_version,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=HelperConfig(logger=logging).get_list_val("CORS_ALLOWED_ORIGINS", default=["*"]),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(chat_router)
app.include_router(conversation_router)
app.include_router(document_router)


@app.exception_handler(ServiceError)
async def service_error_handler(request: Request, exc: ServiceError) -> JSONResponse:
    """Render a ServiceError raised before a response was committed."""
    helper_config: HelperConfig = request.app.state.helper_config
    return JSONResponse(
        status_code=exc.status_code,
        content=exc.to_payload(include_detail=not helper_config.is_production()),
    )


@app.get("/api/health", tags=["health"])
async def health(request: Request) -> HealthResponse:
    """Report reachability of the database, vector index and LLM backend."""
    state = request.app.state
    components = {
        "database": await state.repository.do_healthcheck(),
        "vector_index": await is_reachable(state.rag_client),
        "llm": await is_reachable(state.llm_client),
    }
    return HealthResponse(
        status="ok" if all(components.values()) else "degraded",
        version=app_version,
        components=components,
    )


async def is_reachable(client: RAGClientInterface | LLMClientInterface) -> bool:
    try:
        result = await client.do_healthcheck()
    except httpx.HTTPError as e:
        logging.error("%s healthcheck failed: %s", client.get_client_type().upper(), e)
        return False
    return result.is_success


async def check_connections(
    rag_client: RAGClientInterface,
    llm_client: LLMClientInterface,
    repository: ConversationRepository,
) -> None:
    """Check connectivity to all configured backends on startup.

    The vector index and the LLM backend are required: chat cannot be served
    without them. An unreachable database is logged, /api/health reports it.

    Raises:
        Exception: If the vector index or the LLM backend is not reachable.
    """
    result = await rag_client.do_healthcheck()
    if not result.is_success:
        raise Exception(
            f"RAG client '{rag_client.__class__.__name__}' is not reachable "
            f"(status {result.status_code}). Cannot serve queries."
        )

    result = await llm_client.do_healthcheck()
    if not result.is_success:
        raise Exception(
            f"LLM client is not reachable (status {result.status_code}). "
            "Embedding and chat will not work."
        )

    if not await repository.do_healthcheck():
        logging.warning("Database is not reachable. Conversation history will fail until it recovers.")


if __name__ == "__main__":
    import uvicorn

    logging.info(
        "Starting rag_chat API Server v%s from root dir: %s on port 8000...",
        app_version,
        os.environ.get("ROOT_DIR", "unknown"),
    )
    uvicorn.run(app, host="0.0.0.0", port=8000)
