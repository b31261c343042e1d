"""
Tests for shared/db/ConversationRepository.py
Ownership checks, ordering and cascading deletes on SQLite.
"""

import pytest

from shared.models.errors import AuthorizationError, ValidationError


class TestConversations:

    async def test_list_only_own_conversations_most_recent_first(self, repository):
        first = await repository.create_conversation("alice", "first")
        second = await repository.create_conversation("alice", "second")
        await repository.create_conversation("bob", "bob's")

        await repository.add_message(first.id, "user", "opening question")

        rows = await repository.get_conversations("alice")
        assert [conversation.id for conversation, _ in rows] == [first.id, second.id]
        assert rows[0][1] == "opening question"
        assert rows[1][1] is None

    async def test_first_message_is_the_oldest(self, repository):
        conversation = await repository.create_conversation("alice", "t")
        await repository.add_message(conversation.id, "user", "one")
        await repository.add_message(conversation.id, "assistant", "two")
        rows = await repository.get_conversations("alice")
        assert rows[0][1] == "one"

    async def test_missing_and_foreign_conversation_look_the_same(self, repository):
        conversation = await repository.create_conversation("alice", "t")
        with pytest.raises(AuthorizationError) as foreign:
            await repository.get_conversation(conversation.id, "bob")
        with pytest.raises(AuthorizationError) as missing:
            await repository.get_conversation(conversation.id + 100, "bob")
        assert foreign.value.message == missing.value.message

    async def test_delete_removes_children(self, repository):
        conversation = await repository.create_conversation("alice", "t")
        await repository.add_message(conversation.id, "user", "hello")
        await repository.add_document(conversation.id, "a.csv", "csv", 1, "upload-1")

        await repository.delete_conversation(conversation.id, "alice")

        assert await repository.get_conversations("alice") == []
        with pytest.raises(AuthorizationError):
            await repository.list_documents(conversation.id, "alice")

    async def test_delete_foreign_conversation_rejected(self, repository):
        conversation = await repository.create_conversation("alice", "t")
        with pytest.raises(AuthorizationError):
            await repository.delete_conversation(conversation.id, "bob")
        assert len(await repository.get_conversations("alice")) == 1


class TestMessages:

    async def test_messages_in_creation_order(self, repository):
        conversation = await repository.create_conversation("alice", "t")
        for index in range(4):
            await repository.add_message(conversation.id, "user" if index % 2 == 0 else "assistant", f"m{index}")
        messages = await repository.get_conversation_messages(conversation.id, "alice")
        assert [m.content for m in messages] == ["m0", "m1", "m2", "m3"]

    async def test_cross_user_read_rejected(self, repository):
        conversation = await repository.create_conversation("alice", "t")
        await repository.add_message(conversation.id, "user", "private")
        with pytest.raises(AuthorizationError):
            await repository.get_conversation_messages(conversation.id, "bob")

    async def test_invalid_role(self, repository):
        conversation = await repository.create_conversation("alice", "t")
        with pytest.raises(ValidationError):
            await repository.add_message(conversation.id, "system", "nope")

    async def test_metadata_round_trip(self, repository):
        conversation = await repository.create_conversation("alice", "t")
        await repository.add_message(conversation.id, "assistant", "answer", {"sources": ["a.pdf", "b.csv"]})
        messages = await repository.get_conversation_messages(conversation.id, "alice")
        assert messages[0].meta == {"sources": ["a.pdf", "b.csv"]}

    async def test_add_message_bumps_updated_at(self, repository):
        older = await repository.create_conversation("alice", "older")
        await repository.create_conversation("alice", "newer")
        await repository.add_message(older.id, "user", "bump")
        rows = await repository.get_conversations("alice")
        assert rows[0][0].id == older.id

    async def test_recent_messages_zero_limit(self, repository):
        conversation = await repository.create_conversation("alice", "t")
        await repository.add_message(conversation.id, "user", "x")
        assert await repository.get_recent_messages(conversation.id, "alice", 0) == []


class TestDocuments:

    async def test_document_lifecycle(self, repository):
        conversation = await repository.create_conversation("alice", "t")
        document = await repository.add_document(conversation.id, "budget.xlsx", "excel", 3, "upload-1")

        listed = await repository.list_documents(conversation.id, "alice")
        assert [(d.file_name, d.chunk_count) for d in listed] == [("budget.xlsx", 3)]

        fetched = await repository.get_document(conversation.id, document.id, "alice")
        assert fetched.upload_id == "upload-1"

        await repository.delete_document(document.id)
        assert await repository.list_documents(conversation.id, "alice") == []

    async def test_document_of_other_conversation_not_found(self, repository):
        mine = await repository.create_conversation("alice", "mine")
        other = await repository.create_conversation("alice", "other")
        document = await repository.add_document(other.id, "a.csv", "csv", 1, "upload-2")
        with pytest.raises(ValidationError):
            await repository.get_document(mine.id, document.id, "alice")

    async def test_foreign_documents_rejected(self, repository):
        conversation = await repository.create_conversation("alice", "t")
        with pytest.raises(AuthorizationError):
            await repository.list_documents(conversation.id, "bob")


async def test_healthcheck(repository):
    assert await repository.do_healthcheck() is True
