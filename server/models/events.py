"""Server-sent events emitted during a streamed chat turn.

Wire format: one ``data: <json>\\n\\n`` frame per event. A turn emits at most
one "conversation" event (first, only for a newly created conversation), any
number of "content" events, then exactly one of "done" or "error", unless the
client disconnected.
"""

import json
from typing import Literal

from pydantic import BaseModel


class StreamEvent(BaseModel):
    type: Literal["conversation", "content", "done", "error"]
    conversationId: int | None = None
    content: str | None = None
    sources: list[str] | None = None
    error: str | None = None
    kind: str | None = None
    message: str | None = None

    @classmethod
    def conversation(cls, conversation_id: int) -> "StreamEvent":
        return cls(type="conversation", conversationId=conversation_id)

    @classmethod
    def fragment(cls, content: str) -> "StreamEvent":
        return cls(type="content", content=content)

    @classmethod
    def done(cls, sources: list[str]) -> "StreamEvent":
        return cls(type="done", sources=sources)

    @classmethod
    def failure(cls, error: str, kind: str, message: str | None = None) -> "StreamEvent":
        return cls(type="error", error=error, kind=kind, message=message)

    def to_sse(self) -> str:
        return "data: " + json.dumps(self.model_dump(exclude_none=True)) + "\n\n"
