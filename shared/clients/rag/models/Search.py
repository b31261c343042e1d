from pydantic import BaseModel


class SearchHit(BaseModel):
    """A single similarity match returned by a vector search.

    Attributes:
        id:      Point id as stored in the backend.
        score:   Similarity score; higher is closer for cosine distance.
        payload: Metadata stored alongside the vector (empty when not requested).
    """

    id: str | int
    score: float
    payload: dict = {}


class ScrollPage(BaseModel):
    """One page of point ids from a filtered listing; next_offset is None on the last page."""

    point_ids: list[str]
    next_offset: str | int | None = None
