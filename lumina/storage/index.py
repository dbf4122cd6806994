"""
The image index: a single JSON document listing every image, newest first.

    {"version": "1", "updated_at": "...", "items": [{"image_id", "created_at", "meta_path"}, ...]}

Items are kept sorted on (created_at desc, image_id desc) with at most one item per image_id.
The document is rewritten as a whole on every change: read, merge, sort, write.
"""

import base64
import json
import logging
from typing import Iterable

from pydantic import ValidationError

from lumina.models import ImageMetadata, IndexDocument, IndexEntry, ListCursor
from lumina.storage import paths
from lumina.storage.contents import put_file, read_file
from lumina.storage.errors import MalformedError

logger = logging.getLogger("lumina.index")


def sort_entries(entries: Iterable[IndexEntry]) -> list[IndexEntry]:
    return sorted(entries, key=IndexEntry.sort_key, reverse=True)


def entry_for(metadata: ImageMetadata) -> IndexEntry:
    return IndexEntry(
        image_id=metadata.image_id,
        created_at=metadata.timestamps.created_at,
        meta_path=paths.meta_path(metadata.image_id),
    )


def parse_index(raw: bytes) -> IndexDocument | None:
    """
    Parse the stored index. Items that lack required fields are dropped rather than failing the whole index.
    Returns None if the document has no item list at all.
    """
    try:
        data = json.loads(raw)
    except ValueError as e:
        raise MalformedError(f"Image index is not valid JSON: {e}") from e
    if not isinstance(data, dict) or not isinstance(data.get("items"), list):
        logger.warning("Image index has no item list, ignoring it")
        return None
    entries: dict[str, IndexEntry] = {}
    for item in data["items"]:
        try:
            entry = IndexEntry.model_validate(item)
        except ValidationError:
            logger.warning(f"Skipping malformed index item: {item!r}")
            continue
        entries[entry.image_id] = entry
    updated_at = data.get("updated_at")
    doc = IndexDocument(items=sort_entries(entries.values()))
    if isinstance(updated_at, str) and updated_at:
        doc.updated_at = updated_at
    return doc


async def read_index() -> IndexDocument | None:
    """Read the image index, or None if there is none (yet)"""
    raw = await read_file(paths.INDEX_PATH)
    if raw is None:
        return None
    return parse_index(raw)


def build_next_index(existing: IndexDocument | None, metadatas: Iterable[ImageMetadata]) -> IndexDocument:
    """Merge the given images into the index. An image that is already listed is replaced."""
    entries = {entry.image_id: entry for entry in (existing.items if existing else [])}
    for metadata in metadatas:
        entries[metadata.image_id] = entry_for(metadata)
    return IndexDocument(items=sort_entries(entries.values()))


async def write_index(index: IndexDocument, message: str) -> None:
    await put_file(paths.INDEX_PATH, index.to_json_bytes(), message)


async def upsert_index_entry(metadata: ImageMetadata) -> IndexDocument:
    existing = await read_index()
    index = build_next_index(existing, [metadata])
    await write_index(index, f"Update image index: {metadata.image_id}")
    return index


async def remove_index_entry(image_id: str) -> bool:
    """Remove an image from the index. Returns False (and writes nothing) if it was not listed."""
    existing = await read_index()
    if existing is None:
        return False
    items = [entry for entry in existing.items if entry.image_id != image_id]
    if len(items) == len(existing.items):
        return False
    await write_index(IndexDocument(items=sort_entries(items)), f"Remove image from index: {image_id}")
    return True


######################## PAGINATION #########################


def encode_cursor(entry: IndexEntry | ListCursor) -> str:
    payload = json.dumps({"created_at": entry.created_at, "image_id": entry.image_id}, separators=(",", ":"))
    return base64.urlsafe_b64encode(payload.encode("utf-8")).decode("ascii")


def decode_cursor(cursor: str) -> ListCursor:
    try:
        return ListCursor.model_validate_json(base64.urlsafe_b64decode(cursor.encode("ascii")))
    except ValueError as e:
        raise MalformedError(f"Invalid cursor: {cursor!r}") from e


def paginate(
    items: list[IndexEntry], limit: int, cursor: str | ListCursor | None = None
) -> tuple[list[IndexEntry], str | None]:
    """
    Return the page of `limit` items following the cursor, and the cursor for the next page (None on the last page).
    items must be sorted with sort_entries.
    """
    if limit < 1:
        raise ValueError(f"limit must be at least 1, not {limit}")
    if isinstance(cursor, str):
        cursor = decode_cursor(cursor)
    if cursor is not None:
        after = cursor.sort_key()
        items = [entry for entry in items if entry.sort_key() < after]
    page = items[:limit]
    next_cursor = encode_cursor(page[-1]) if len(items) > limit else None
    return page, next_cursor
