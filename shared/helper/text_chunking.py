"""Text splitting shared by the upload pipeline and the offline knowledge sync.

Both paths use split_text(); they differ only in the parameters:

    upload:          split_text(text, 8000)                 contiguous slices
    knowledge sync:  split_text(text, 1000, 200, 50)        overlap + sentence snap
"""

import re

_WHITESPACE_RE = re.compile(r"\s+")


def split_text(text: str, chunk_size: int, overlap: int = 0, snap_window: int = 0) -> list[str]:
    """Split text into chunks of roughly chunk_size characters.

    Each cut is placed at start + chunk_size. With snap_window > 0 the cut
    moves to just after the first "." found within snap_window characters on
    either side of it. The next chunk starts exactly overlap characters before
    the cut, so merge_chunks(chunks, overlap) restores the input as long as no
    chunk was dropped. Chunks consisting only of whitespace are dropped.

    Args:
        text (str): The text to split.
        chunk_size (int): Target chunk length in characters.
        overlap (int): Characters shared by consecutive chunks.
        snap_window (int): Distance around the cut searched for a sentence end.

    Returns:
        list[str]: Chunks in text order. Empty for empty or blank input.

    Raises:
        ValueError: If chunk_size is not larger than overlap + snap_window.
    """
    if overlap < 0 or snap_window < 0:
        raise ValueError("overlap and snap_window must not be negative.")
    if chunk_size <= overlap + snap_window:
        raise ValueError(
            "chunk_size (%d) must be larger than overlap (%d) + snap_window (%d)." % (chunk_size, overlap, snap_window)
        )
    if not text:
        return []

    chunks: list[str] = []
    length = len(text)
    start = 0
    while start < length:
        end = start + chunk_size
        if end < length and snap_window:
            period = text.find(".", end - snap_window, end + snap_window)
            if period != -1:
                end = period + 1
        end = min(end, length)
        chunk = text[start:end]
        if chunk.strip():
            chunks.append(chunk)
        if end >= length:
            break
        start = end - overlap
    return chunks


def merge_chunks(chunks: list[str], overlap: int = 0) -> str:
    """Join chunks produced by split_text() back into one text."""
    if not chunks:
        return ""
    return chunks[0] + "".join(chunk[overlap:] for chunk in chunks[1:])


def normalize_text(text: str) -> str:
    """Collapse whitespace runs to single spaces and drop non-printable characters."""
    collapsed = _WHITESPACE_RE.sub(" ", text)
    return "".join(ch for ch in collapsed if ch.isprintable()).strip()
