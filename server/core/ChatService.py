"""Streaming completion driver for one chat turn.

A turn is split in two phases. prepare_turn() runs before the HTTP response
is committed: it validates the message, checks ownership (or creates the
conversation) and persists the user message, so its errors still map to
regular HTTP status codes. stream_turn() then retrieves context, streams the
model answer as events and persists the assistant message on completion.
"""

from typing import AsyncIterator, Awaitable, Callable

from pydantic import BaseModel

from server.core.ContextAssembler import ContextAssembler
from server.core.RetrievalService import RetrievalService
from server.models.events import StreamEvent
from shared.clients.ClientInterface import CLIENT_ERRORS
from shared.clients.llm.LLMClientInterface import LLMClientInterface
from shared.db.ConversationRepository import ConversationRepository
from shared.helper.HelperConfig import HelperConfig
from shared.models.errors import CompletionError, InternalError, ServiceError, ValidationError

DEFAULT_SYSTEM_PROMPT = (
    "You are a helpful assistant. Answer the user's question using the provided context. "
    "Prefer information from documents the user uploaded to this conversation. "
    "If the context does not contain the answer, say so instead of guessing. "
    "Format answers for clarity and cite the sources you used."
)
TITLE_MAX_CHARS = 50


def make_title(message: str) -> str:
    """Conversation title from the first message: whitespace collapsed, cut at 50 characters."""
    title = " ".join(message.split())
    if len(title) > TITLE_MAX_CHARS:
        title = title[:TITLE_MAX_CHARS - 3].rstrip() + "..."
    return title


class ChatTurn(BaseModel):
    """A validated turn whose user message is already persisted."""

    conversation_id: int
    user_id: str
    message: str
    created: bool
    history: list[dict] = []


class ChatService:
    def __init__(
        self,
        helper_config: HelperConfig,
        repository: ConversationRepository,
        retrieval_service: RetrievalService,
        llm_client: LLMClientInterface,
        assembler: ContextAssembler | None = None,
    ) -> None:
        self.logging = helper_config.get_logger()
        self._helper_config = helper_config
        self._repository = repository
        self._retrieval_service = retrieval_service
        self._llm_client = llm_client
        self._assembler = assembler or ContextAssembler()

        self._system_prompt = helper_config.get_string_val("CHAT_SYSTEM_PROMPT", default=DEFAULT_SYSTEM_PROMPT)
        self._temperature = float(helper_config.get_number_val("CHAT_TEMPERATURE", default=0.7))
        self._max_tokens = int(helper_config.get_number_val("CHAT_MAX_TOKENS", default=1000))
        self._history_limit = int(helper_config.get_number_val("CHAT_HISTORY_LIMIT", default=20))
        self._persist_partial = helper_config.get_bool_val("CHAT_PERSIST_PARTIAL_ON_ERROR", default=False)

    ##########################################
    ############# PROMPT BUILDER #############
    ##########################################

    def build_messages(self, history: list[dict], context: str, message: str) -> list[dict]:
        """System prompt, prior turns, then the current question with its context."""
        return [
            {"role": "system", "content": self._system_prompt},
            *history,
            {"role": "user", "content": f"Context:\n{context}\n\nQuestion: {message}"},
        ]

    ##########################################
    ############### CORE #####################
    ##########################################

    async def prepare_turn(self, user_id: str, message: str, conversation_id: int | None = None) -> ChatTurn:
        """Validate the turn and persist the user message.

        Args:
            user_id (str): The requesting user.
            message (str): The user's question.
            conversation_id (int | None): Existing conversation, or None to create one.

        Returns:
            ChatTurn: The prepared turn with the prior conversation history.

        Raises:
            ValidationError: If the message is empty.
            AuthorizationError: If the conversation is not owned by user_id.
        """
        message = (message or "").strip()
        if not message:
            raise ValidationError("Message is required")

        if conversation_id is None:
            conversation = await self._repository.create_conversation(user_id, make_title(message))
            conversation_id = conversation.id
            created = True
            history: list[dict] = []
        else:
            previous = await self._repository.get_recent_messages(conversation_id, user_id, self._history_limit)
            created = False
            history = [{"role": m.role, "content": m.content} for m in previous]

        await self._repository.add_message(conversation_id, "user", message)
        return ChatTurn(
            conversation_id=conversation_id,
            user_id=user_id,
            message=message,
            created=created,
            history=history,
        )

    async def stream_turn(
        self,
        turn: ChatTurn,
        is_disconnected: Callable[[], Awaitable[bool]] | None = None,
    ) -> AsyncIterator[StreamEvent]:
        """Retrieve, stream the completion and persist the answer.

        Fragments are forwarded in generation order while being accumulated;
        the assistant message is stored only once the model finished. After
        a client disconnect the upstream stream is closed and nothing more is
        emitted or persisted.

        Args:
            turn (ChatTurn): The prepared turn.
            is_disconnected (Callable[[], Awaitable[bool]] | None): Polled between fragments.

        Yields:
            StreamEvent: conversation?, content*, then done or error.
        """
        conversation_id = turn.conversation_id
        if turn.created:
            yield StreamEvent.conversation(conversation_id)

        accumulated: list[str] = []
        try:
            retrieval = await self._retrieval_service.retrieve(turn.message, conversation_id)
            context, sources = self._assembler.assemble(retrieval.general, retrieval.documents)
            messages = self.build_messages(turn.history, context, turn.message)

            fragments = self._llm_client.do_chat_stream(
                messages, temperature=self._temperature, max_tokens=self._max_tokens,
            )
            try:
                async for fragment in fragments:
                    if is_disconnected is not None and await is_disconnected():
                        self.logging.info(
                            "Client disconnected from conversation %s after %d fragments, aborting generation",
                            conversation_id, len(accumulated),
                        )
                        return
                    accumulated.append(fragment)
                    yield StreamEvent.fragment(fragment)
            except CLIENT_ERRORS as e:
                raise CompletionError("Failed to generate a response", detail=str(e)) from e
            finally:
                # closes the upstream HTTP stream when leaving early
                await fragments.aclose()

            answer = "".join(accumulated)
            await self._repository.add_message(conversation_id, "assistant", answer, {"sources": sources})
            self.logging.info(
                "Answered turn in conversation %s: %d characters, %d sources",
                conversation_id, len(answer), len(sources),
            )
            yield StreamEvent.done(sources)
        except ServiceError as e:
            self.logging.error("Chat turn in conversation %s failed (%s): %s", conversation_id, e.kind.value, e.detail or e.message)
            await self._persist_partial_answer(conversation_id, accumulated, e)
            yield self._error_event(e)
        except Exception as e:
            self.logging.exception("Unexpected failure in chat turn of conversation %s", conversation_id)
            error = InternalError("Internal server error", detail=str(e))
            await self._persist_partial_answer(conversation_id, accumulated, error)
            yield self._error_event(error)

    ##########################################
    ############### HELPERS ##################
    ##########################################

    def _error_event(self, error: ServiceError) -> StreamEvent:
        detail = None if self._helper_config.is_production() else (error.detail or error.message)
        return StreamEvent.failure(error.message, error.kind.value, detail)

    async def _persist_partial_answer(self, conversation_id: int, accumulated: list[str], error: ServiceError) -> None:
        if not self._persist_partial or not accumulated:
            return
        try:
            await self._repository.add_message(
                conversation_id, "assistant", "".join(accumulated),
                {"partial": True, "error": error.kind.value},
            )
        except ServiceError as e:
            self.logging.error("Could not persist partial answer of conversation %s: %s", conversation_id, e.detail or e.message)
