"""Relational store for conversations, their messages and uploaded documents.

Every read or mutation of conversation-scoped rows goes through an ownership
check first. A conversation that does not exist and one that belongs to
another user produce the same AuthorizationError.
"""

from contextlib import asynccontextmanager
from typing import AsyncIterator

from sqlalchemy import delete, select, text, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from shared.db.models import Conversation, Message, UploadedDocument, utcnow
from shared.helper.HelperConfig import HelperConfig
from shared.models.errors import AuthorizationError, UpstreamError, ValidationError

MESSAGE_ROLES = ("user", "assistant")


class ConversationRepository:
    """CRUD operations for Conversation, Message and UploadedDocument.

    Opens one session per operation. A streamed chat turn outlives the HTTP
    request that started it, so sessions are never tied to the request scope.
    """

    def __init__(self, helper_config: HelperConfig, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self.logging = helper_config.get_logger()
        self._session_factory = session_factory

    ##########################################
    ################ HELPERS #################
    ##########################################

    @asynccontextmanager
    async def _session(self, operation: str) -> AsyncIterator[AsyncSession]:
        try:
            async with self._session_factory() as session:
                yield session
        except SQLAlchemyError as e:
            self.logging.error("Database operation '%s' failed: %s", operation, e)
            raise UpstreamError("Database operation failed", detail=f"{operation}: {e}") from e

    async def _get_owned(self, session: AsyncSession, conversation_id: int, user_id: str) -> Conversation:
        result = await session.execute(
            select(Conversation).where(Conversation.id == conversation_id, Conversation.user_id == user_id)
        )
        conversation = result.scalar_one_or_none()
        if conversation is None:
            self.logging.warning("User %s denied access to conversation %s", user_id, conversation_id)
            raise AuthorizationError()
        return conversation

    ##########################################
    ############# CONVERSATIONS ##############
    ##########################################

    async def create_conversation(self, user_id: str, title: str) -> Conversation:
        async with self._session("create_conversation") as session:
            conversation = Conversation(user_id=user_id, title=title)
            session.add(conversation)
            await session.commit()
            await session.refresh(conversation)
        self.logging.info("Conversation created | conversation_id=%s | user_id=%s", conversation.id, user_id)
        return conversation

    async def get_conversation(self, conversation_id: int, user_id: str) -> Conversation:
        """Return the conversation if it belongs to user_id.

        Raises:
            AuthorizationError: If it does not exist or belongs to someone else.
        """
        async with self._session("get_conversation") as session:
            return await self._get_owned(session, conversation_id, user_id)

    async def get_conversations(self, user_id: str) -> list[tuple[Conversation, str | None]]:
        """List the user's conversations, most recently active first.

        Returns:
            list[tuple[Conversation, str | None]]: Each conversation with the
                content of its first message, None when it has no messages yet.
        """
        first_message = (
            select(Message.content)
            .where(Message.conversation_id == Conversation.id)
            .order_by(Message.created_at.asc(), Message.id.asc())
            .limit(1)
            .correlate(Conversation)
            .scalar_subquery()
        )
        async with self._session("get_conversations") as session:
            result = await session.execute(
                select(Conversation, first_message.label("first_message"))
                .where(Conversation.user_id == user_id)
                .order_by(Conversation.updated_at.desc(), Conversation.id.desc())
            )
            rows = [(row[0], row[1]) for row in result.all()]
        self.logging.debug("Listed conversations | user_id=%s | count=%d", user_id, len(rows))
        return rows

    async def update_conversation_timestamp(self, conversation_id: int) -> None:
        async with self._session("update_conversation_timestamp") as session:
            await session.execute(
                update(Conversation).where(Conversation.id == conversation_id).values(updated_at=utcnow())
            )
            await session.commit()

    async def delete_conversation(self, conversation_id: int, user_id: str) -> None:
        """Delete a conversation with its messages and document records.

        Raises:
            AuthorizationError: If the conversation is not owned by user_id.
        """
        async with self._session("delete_conversation") as session:
            await self._get_owned(session, conversation_id, user_id)
            # explicit child deletes, SQLite does not enforce ON DELETE CASCADE by default
            await session.execute(delete(Message).where(Message.conversation_id == conversation_id))
            await session.execute(delete(UploadedDocument).where(UploadedDocument.conversation_id == conversation_id))
            await session.execute(delete(Conversation).where(Conversation.id == conversation_id))
            await session.commit()
        self.logging.info("Conversation deleted | conversation_id=%s", conversation_id)

    ##########################################
    ############### MESSAGES #################
    ##########################################

    async def add_message(self, conversation_id: int, role: str, content: str, metadata: dict | None = None) -> Message:
        """Append a message and bump the conversation's updated_at in the same transaction.

        Raises:
            ValidationError: If role is not "user" or "assistant".
        """
        if role not in MESSAGE_ROLES:
            raise ValidationError("Invalid message role", detail=f"role must be one of {MESSAGE_ROLES}, got '{role}'")
        async with self._session("add_message") as session:
            message = Message(conversation_id=conversation_id, role=role, content=content, meta=metadata)
            session.add(message)
            await session.execute(
                update(Conversation).where(Conversation.id == conversation_id).values(updated_at=utcnow())
            )
            await session.commit()
            await session.refresh(message)
        self.logging.debug("Message persisted | conversation_id=%s | role=%s | chars=%d", conversation_id, role, len(content))
        return message

    async def get_conversation_messages(self, conversation_id: int, user_id: str) -> list[Message]:
        """All messages of the conversation in creation order.

        Raises:
            AuthorizationError: If the conversation is not owned by user_id.
        """
        async with self._session("get_conversation_messages") as session:
            await self._get_owned(session, conversation_id, user_id)
            result = await session.execute(
                select(Message)
                .where(Message.conversation_id == conversation_id)
                .order_by(Message.created_at.asc(), Message.id.asc())
            )
            return list(result.scalars().all())

    async def get_recent_messages(self, conversation_id: int, user_id: str, limit: int) -> list[Message]:
        """The last `limit` messages of the conversation, oldest first.

        Raises:
            AuthorizationError: If the conversation is not owned by user_id.
        """
        if limit <= 0:
            return []
        async with self._session("get_recent_messages") as session:
            await self._get_owned(session, conversation_id, user_id)
            result = await session.execute(
                select(Message)
                .where(Message.conversation_id == conversation_id)
                .order_by(Message.created_at.desc(), Message.id.desc())
                .limit(limit)
            )
            # restore chronological order
            return list(reversed(result.scalars().all()))

    ##########################################
    ############### DOCUMENTS ################
    ##########################################

    async def add_document(self, conversation_id: int, file_name: str, file_type: str, chunk_count: int, upload_id: str) -> UploadedDocument:
        async with self._session("add_document") as session:
            document = UploadedDocument(
                conversation_id=conversation_id,
                file_name=file_name,
                file_type=file_type,
                chunk_count=chunk_count,
                upload_id=upload_id,
            )
            session.add(document)
            await session.commit()
            await session.refresh(document)
        self.logging.info(
            "Uploaded document registered | conversation_id=%s | file=%s | chunks=%d",
            conversation_id, file_name, chunk_count,
        )
        return document

    async def list_documents(self, conversation_id: int, user_id: str) -> list[UploadedDocument]:
        """
        Raises:
            AuthorizationError: If the conversation is not owned by user_id.
        """
        async with self._session("list_documents") as session:
            await self._get_owned(session, conversation_id, user_id)
            result = await session.execute(
                select(UploadedDocument)
                .where(UploadedDocument.conversation_id == conversation_id)
                .order_by(UploadedDocument.created_at.asc(), UploadedDocument.id.asc())
            )
            return list(result.scalars().all())

    async def get_document(self, conversation_id: int, document_id: int, user_id: str) -> UploadedDocument:
        """
        Raises:
            AuthorizationError: If the conversation is not owned by user_id.
            ValidationError: If the document is not part of the conversation.
        """
        async with self._session("get_document") as session:
            await self._get_owned(session, conversation_id, user_id)
            result = await session.execute(
                select(UploadedDocument).where(
                    UploadedDocument.id == document_id,
                    UploadedDocument.conversation_id == conversation_id,
                )
            )
            document = result.scalar_one_or_none()
        if document is None:
            raise ValidationError("Document not found", detail=f"document {document_id} in conversation {conversation_id}")
        return document

    async def delete_document(self, document_id: int) -> None:
        async with self._session("delete_document") as session:
            await session.execute(delete(UploadedDocument).where(UploadedDocument.id == document_id))
            await session.commit()
        self.logging.info("Uploaded document deleted | document_id=%s", document_id)

    ##########################################
    ################ HEALTH ##################
    ##########################################

    async def do_healthcheck(self) -> bool:
        try:
            async with self._session_factory() as session:
                await session.execute(text("SELECT 1"))
            return True
        except SQLAlchemyError as e:
            self.logging.error("Database healthcheck failed: %s", e)
            return False
