"""
Image lifecycle: upload, metadata updates, listing and deletion.

An upload writes the original, the thumbnail and (for live photos) the video one file at a time, and then
finalizes the image by writing meta.json and adding it to the index. Finalizing can be deferred so a client
uploading many images can finalize them all in one atomic commit with finalize_metadata_batch.
"""

import asyncio
import logging
from urllib.parse import quote

from pydantic import ValidationError

from lumina.models import (
    AssetKind,
    DeleteReport,
    FileMeta,
    ImageListPage,
    ImageMetadata,
    ImageUrls,
    IndexDocument,
    MetadataPatch,
    RemoteFile,
    StoredPaths,
    UploadResult,
)
from lumina.storage import paths
from lumina.storage.batch import CommitFile, commit_files
from lumina.storage.contents import delete_file, get_file, list_directory, put_file, read_file
from lumina.storage.errors import MalformedError, NotFoundError
from lumina.storage.index import (
    build_next_index,
    entry_for,
    paginate,
    read_index,
    remove_index_entry,
    sort_entries,
    upsert_index_entry,
    write_index,
)

logger = logging.getLogger("lumina.assets")

# The directory scan used when there is no index reads at least this many images
MIN_SCAN_CAP = 100


def _recorded_path(path: str | None, image_id: str) -> str | None:
    """A path recorded in the metadata, if it lies inside the image's own object directory"""
    prefix = paths.object_dir(image_id) + "/"
    return path if path and path.startswith(prefix) and ".." not in path else None


def _stored_paths(metadata: ImageMetadata) -> StoredPaths:
    files = metadata.files
    return StoredPaths(
        original_path=files.original.path,
        thumb_path=files.thumb.path,
        live_video_path=files.live_video.path if files.live_video else None,
        meta_path=paths.meta_path(metadata.image_id),
    )


def normalize_paths(metadata: ImageMetadata, original_mime: str, live_video_mime: str | None = None) -> StoredPaths:
    """Set the path of every file to where the upload stores it, derived from the uploaded MIME types"""
    image_id = metadata.image_id
    files = metadata.files
    files.original.path = paths.original_path(image_id, original_mime)
    files.thumb.path = paths.thumb_path(image_id)
    if files.live_video is not None:
        files.live_video.path = paths.live_video_path(image_id, live_video_mime or files.live_video.mime)
    return _stored_paths(metadata)


def _find_stored(listing: list[RemoteFile], stem: str) -> str | None:
    return next((f.path for f in listing if f.type == "file" and f.name.startswith(f"{stem}.")), None)


async def resolve_paths(metadata: ImageMetadata) -> StoredPaths:
    """
    Fill in the paths of an already uploaded image. Paths recorded inside the object directory are kept;
    missing ones are looked up in the object directory, since the stored extension follows the uploaded
    MIME type which can differ from the one in the metadata.
    """
    image_id = metadata.image_id
    files = metadata.files
    files.thumb.path = paths.thumb_path(image_id)
    original = _recorded_path(files.original.path, image_id)
    live = _recorded_path(files.live_video.path, image_id) if files.live_video else None
    if original is None or (files.live_video is not None and live is None):
        listing = await list_directory(paths.object_dir(image_id))
        original = original or _find_stored(listing, "original")
        live = live or _find_stored(listing, "live")
    files.original.path = original or paths.original_path(image_id, files.original.mime)
    if files.live_video is not None:
        files.live_video.path = live or paths.live_video_path(image_id, files.live_video.mime)
    return _stored_paths(metadata)


def image_api_urls(image_id: str, live: bool = False) -> ImageUrls:
    base = f"/api/v1/images/{quote(image_id, safe='')}"
    return ImageUrls(
        meta=base,
        thumb=f"{base}/thumb",
        original=f"{base}/original",
        live=f"{base}/live" if live else None,
    )


async def upload_image(
    original: bytes,
    original_mime: str,
    thumb: bytes,
    metadata: ImageMetadata,
    live_video: tuple[bytes, str] | None = None,
    defer_finalize: bool = False,
) -> UploadResult:
    """
    Store the files of an image. Unless defer_finalize is set, also write its metadata and add it to the index.
    The metadata is updated in place with the stored paths.
    """
    image_id = metadata.image_id
    if live_video is not None and metadata.files.live_video is None:
        video_bytes, video_mime = live_video
        metadata.files.live_video = FileMeta(mime=video_mime, bytes=len(video_bytes))
    stored = normalize_paths(metadata, original_mime, live_video[1] if live_video else None)

    await put_file(stored.original_path, original, f"Upload {image_id} - original")
    await put_file(stored.thumb_path, thumb, f"Upload {image_id} - thumbnail")
    if live_video is not None and stored.live_video_path:
        await put_file(stored.live_video_path, live_video[0], f"Upload {image_id} - live video")

    if defer_finalize:
        logger.info(f"Uploaded files of {image_id}, finalize deferred")
    else:
        await update_metadata_with_index(metadata)
        logger.info(f"Uploaded {image_id}")

    return UploadResult(
        image_id=image_id, stored=stored, urls=image_api_urls(image_id, live=stored.live_video_path is not None)
    )


async def load_metadata(path: str) -> ImageMetadata | None:
    """Read a meta.json file, or None if it does not exist"""
    raw = await read_file(path)
    if raw is None:
        return None
    try:
        return ImageMetadata.model_validate_json(raw)
    except ValidationError as e:
        raise MalformedError(f"Invalid metadata in {path}: {e}") from e


async def get_metadata(image_id: str) -> ImageMetadata:
    metadata = await load_metadata(paths.meta_path(image_id))
    if metadata is None:
        raise NotFoundError(f"Image {image_id} not found", 404)
    return metadata


async def update_metadata(metadata: ImageMetadata) -> None:
    await resolve_paths(metadata)
    await put_file(paths.meta_path(metadata.image_id), metadata.to_json_bytes(), f"Update metadata: {metadata.image_id}")


async def update_metadata_with_index(metadata: ImageMetadata) -> None:
    await update_metadata(metadata)
    await upsert_index_entry(metadata)


async def patch_metadata(image_id: str, patch: MetadataPatch, refresh_index: bool = False) -> ImageMetadata:
    """Change the editable fields of an image. Fields not set in the patch are left unchanged."""
    metadata = await get_metadata(image_id)
    for field in patch.model_dump(exclude_unset=True, exclude_none=True):
        setattr(metadata, field, getattr(patch, field))
    if refresh_index:
        await update_metadata_with_index(metadata)
    else:
        await update_metadata(metadata)
    return metadata


async def finalize_metadata_batch(metadatas: list[ImageMetadata]) -> None:
    """Write the metadata of all images and the updated index as one commit"""
    if not metadatas:
        return
    for metadata in metadatas:
        await resolve_paths(metadata)
    meta_files = [CommitFile(paths.meta_path(m.image_id), m.to_json_bytes()) for m in metadatas]

    async def files() -> list[CommitFile]:
        # merged with the index as it is at the start of each attempt
        index = build_next_index(await read_index(), metadatas)
        return [*meta_files, CommitFile(paths.INDEX_PATH, index.to_json_bytes())]

    await commit_files(files, f"Finalize {len(metadatas)} image metadata entries")


######################## LISTING #########################


async def _load_listed(path: str) -> ImageMetadata | None:
    try:
        return await load_metadata(path)
    except MalformedError:
        logger.warning(f"Skipping {path}: invalid metadata")
        return None


async def scan_metadata(cap: int | None = None) -> list[ImageMetadata]:
    """Walk the object directories and read every meta.json, stopping after `cap` images"""
    result: list[ImageMetadata] = []
    for p1 in await list_directory(paths.OBJECTS_ROOT):
        if p1.type != "dir" or p1.name.startswith("_"):
            continue
        for p2 in await list_directory(p1.path):
            if p2.type != "dir":
                continue
            for image_dir in await list_directory(p2.path):
                if image_dir.type != "dir":
                    continue
                files = await list_directory(image_dir.path)
                meta = next((f for f in files if f.name == paths.META_NAME), None)
                if meta is not None and (metadata := await _load_listed(meta.path)):
                    result.append(metadata)
                if cap is not None and len(result) >= cap:
                    return result
    return result


async def list_images(limit: int = 20, cursor: str | None = None) -> ImageListPage:
    """
    List images newest first, `limit` at a time. Pass the returned next_cursor to get the next page.
    Without an index, a limited number of images is found by scanning the object directories.
    """
    index = await read_index()
    if index is not None and index.items:
        page, next_cursor = paginate(index.items, limit, cursor)
        loaded = await asyncio.gather(*(_load_listed(entry.meta_path) for entry in page))
        images = [metadata for metadata in loaded if metadata is not None]
        return ImageListPage(images=images, next_cursor=next_cursor, total=len(index.items))

    scanned = {m.image_id: m for m in await scan_metadata(cap=max(limit * 3, MIN_SCAN_CAP))}
    entries = sort_entries(entry_for(m) for m in scanned.values())
    page, next_cursor = paginate(entries, limit, cursor)
    return ImageListPage(
        images=[scanned[entry.image_id] for entry in page], next_cursor=next_cursor, total=len(entries)
    )


async def rebuild_index() -> IndexDocument:
    """Recreate the index from the meta.json files in the repository"""
    metadatas = await scan_metadata()
    index = build_next_index(None, metadatas)
    await write_index(index, f"Rebuild image index ({len(index.items)} images)")
    logger.info(f"Rebuilt image index with {len(index.items)} images")
    return index


async def asset_download_url(image_id: str, kind: AssetKind) -> str:
    """Get the URL to download the original, thumbnail or live video of an image"""
    metadata = await get_metadata(image_id)
    files = metadata.files
    if kind == "thumb":
        path: str | None = paths.thumb_path(image_id)
    else:
        if kind == "live" and files.live_video is None:
            raise NotFoundError(f"Image {image_id} has no live video", 404)
        recorded = files.live_video.path if kind == "live" and files.live_video else files.original.path
        path = _recorded_path(recorded, image_id)
        if path is None:
            path = _find_stored(await list_directory(paths.object_dir(image_id)), kind)
    file = await get_file(path) if path else None
    if file is None or not file.download_url:
        raise NotFoundError(f"No {kind} file for image {image_id}", 404)
    return file.download_url


######################## DELETION #########################


def _asset_paths(metadata: ImageMetadata) -> list[str]:
    """Paths of all files of an image, preferring the recorded paths over the derived ones"""
    image_id = metadata.image_id
    files = metadata.files
    candidates = [
        _recorded_path(files.original.path, image_id) or paths.original_path(image_id, files.original.mime),
        paths.thumb_path(image_id),
    ]
    if files.live_video is not None:
        live = files.live_video
        candidates.append(_recorded_path(live.path, image_id) or paths.live_video_path(image_id, live.mime))
    return list(dict.fromkeys(candidates))


async def _delete_paths(image_id: str, to_delete: list[str]) -> list[str]:
    deleted = []
    for path in to_delete:
        try:
            await delete_file(path, f"Delete {image_id} - {path}")
        except NotFoundError:
            logger.debug(f"{path} was already deleted")
            continue
        deleted.append(path)
    return deleted


async def delete_image_assets(metadata: ImageMetadata) -> DeleteReport:
    """
    Delete all files of an image and remove it from the index.
    Files that no longer exist are skipped, so this can be repeated after a partial failure.
    """
    image_id = metadata.image_id
    recorded = _asset_paths(metadata)
    # files in the object directory that the metadata does not point at are removed as well
    others = [
        f.path
        for f in await list_directory(paths.object_dir(image_id))
        if f.type == "file" and f.path not in recorded and f.name != paths.META_NAME
    ]
    # meta.json last
    deleted = await _delete_paths(image_id, [*recorded, *others, paths.meta_path(image_id)])
    await remove_index_entry(image_id)
    logger.info(f"Deleted {image_id} ({len(deleted)} files)")
    return DeleteReport(image_id=image_id, deleted_paths=deleted)


async def delete_image(image_id: str) -> DeleteReport:
    """Delete an image by id. Raises NotFoundError if nothing of the image is left."""
    metadata = await load_metadata(paths.meta_path(image_id))
    if metadata is not None:
        return await delete_image_assets(metadata)
    # meta.json is gone, e.g. after an interrupted delete: remove whatever is left of the image
    leftovers = [f.path for f in await list_directory(paths.object_dir(image_id)) if f.type == "file"]
    deleted = await _delete_paths(image_id, leftovers)
    removed = await remove_index_entry(image_id)
    if not (deleted or removed):
        raise NotFoundError(f"Image {image_id} not found", 404)
    return DeleteReport(image_id=image_id, deleted_paths=deleted)
