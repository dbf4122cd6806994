"""API Endpoints for uploading, listing, modifying and deleting images."""

import logging
from typing import Annotated

from fastapi import APIRouter, Body, Depends, File, Form, HTTPException, Path, Query, UploadFile, status
from fastapi.responses import JSONResponse, RedirectResponse
from pydantic import BaseModel, Field, ValidationError

from lumina.api.auth import upload_token_required
from lumina.config import get_settings
from lumina.models import (
    AssetKind,
    BatchFinalizeResult,
    DeleteReport,
    FailedItem,
    ImageListPage,
    ImageMetadata,
    MetadataPatch,
    UploadResult,
)
from lumina.storage import assets
from lumina.storage.errors import StorageError
from lumina.storage.paths import is_valid_image_id

logger = logging.getLogger("lumina.api")

app_images = APIRouter(prefix="/api/v1/images", tags=["images"])

LIVE_VIDEO_MIME = "video/quicktime"
# content types browsers send when they do not know the file type
GENERIC_MIMES = {"", "application/octet-stream", "binary/octet-stream"}


class FinalizeItem(BaseModel):
    metadata: ImageMetadata


class BatchFinalizeRequest(BaseModel):
    items: list[FinalizeItem] = Field(description="Images uploaded with defer_finalize whose metadata should be written")


def _check_image_id(image_id: str) -> str:
    if not is_valid_image_id(image_id):
        raise HTTPException(status_code=400, detail="Invalid image_id")
    return image_id


def _upload_mime(file: UploadFile, declared: str) -> str:
    content_type = (file.content_type or "").split(";")[0].strip().lower()
    return declared if content_type in GENERIC_MIMES else content_type


ImageIdPath = Annotated[str, Path(description="Image id, e.g. sha256:<hexdigest>")]


@app_images.get("")
async def list_images(
    limit: int | None = Query(None, description="Number of images per page"),
    cursor: str | None = Query(None, description="next_cursor from the previous page"),
) -> ImageListPage:
    """
    List images, most recently created first.
    """
    settings = get_settings()
    if limit is None:
        limit = settings.list_default_limit
    limit = min(max(limit, 1), settings.list_max_limit)
    return await assets.list_images(limit=limit, cursor=cursor)


@app_images.post("", status_code=status.HTTP_201_CREATED, dependencies=[Depends(upload_token_required)])
async def upload_image(
    original: Annotated[UploadFile, File(description="The original image")],
    thumb: Annotated[UploadFile, File(description="WebP thumbnail")],
    metadata: Annotated[str, Form(description="Image metadata as JSON")],
    live_video: Annotated[UploadFile | None, File(description="Video of a live photo (MOV)")] = None,
    upload_mode: Annotated[str, Form()] = "static",
    defer_finalize: Annotated[bool, Form(description="Only store the files, finalize later in a batch")] = False,
) -> UploadResult:
    """
    Upload an image with its thumbnail and metadata (and the video for a live photo).
    """
    settings = get_settings()
    try:
        record = ImageMetadata.model_validate_json(metadata)
    except ValidationError as e:
        if any(error["loc"] and error["loc"][0] == "image_id" for error in e.errors()):
            raise HTTPException(status_code=400, detail="Invalid image_id")
        raise HTTPException(status_code=400, detail="Invalid metadata JSON")

    if original.size is not None and original.size > settings.max_original_bytes:
        raise HTTPException(status_code=413, detail="File too large")

    video = None
    if upload_mode == "live_photo":
        if live_video is None:
            raise HTTPException(status_code=400, detail="Missing live video file for live photo upload")
        is_mov = live_video.content_type == LIVE_VIDEO_MIME or (live_video.filename or "").lower().endswith(".mov")
        if not is_mov:
            raise HTTPException(status_code=400, detail="Invalid live video type. Must be MOV")
        if live_video.size is not None and live_video.size > settings.max_live_video_bytes:
            raise HTTPException(status_code=413, detail="Live video file too large")
        video = (await live_video.read(), _upload_mime(live_video, LIVE_VIDEO_MIME))

    return await assets.upload_image(
        await original.read(),
        _upload_mime(original, record.files.original.mime),
        await thumb.read(),
        record,
        live_video=video,
        defer_finalize=defer_finalize,
    )


@app_images.post("/finalize-batch", dependencies=[Depends(upload_token_required)])
async def finalize_batch(body: Annotated[BatchFinalizeRequest, Body(...)]):
    """
    Write the metadata of images uploaded with defer_finalize, and add them to the index, in a single commit.
    If that fails, each image is finalized separately and the failures are reported (status 207).
    """
    if not body.items:
        raise HTTPException(status_code=400, detail="items is required")
    metadatas = [item.metadata for item in body.items]
    try:
        await assets.finalize_metadata_batch(metadatas)
        return BatchFinalizeResult(success_count=len(metadatas), mode="batch_commit")
    except StorageError:
        logger.exception("Batch finalize failed, falling back to finalizing per image")

    failed = []
    for metadata in metadatas:
        try:
            await assets.update_metadata_with_index(metadata)
        except StorageError as e:
            failed.append(FailedItem(image_id=metadata.image_id, reason=str(e) or "Finalize failed"))
    result = BatchFinalizeResult(
        success_count=len(metadatas) - len(failed), mode="fallback_per_item", failed_items=failed or None
    )
    return JSONResponse(
        result.model_dump(exclude_none=True), status_code=status.HTTP_207_MULTI_STATUS if failed else status.HTTP_200_OK
    )


@app_images.get("/{image_id}", response_model_exclude_none=True)
async def get_image(image_id: ImageIdPath) -> ImageMetadata:
    """
    Get the metadata of an image.
    """
    return await assets.get_metadata(_check_image_id(image_id))


@app_images.patch("/{image_id}", response_model_exclude_none=True, dependencies=[Depends(upload_token_required)])
async def patch_image(
    image_id: ImageIdPath,
    patch: Annotated[MetadataPatch, Body(...)],
    refresh_index: bool = Query(False, description="Also update the image's entry in the index"),
) -> ImageMetadata:
    """
    Change the description, filename, category, privacy, geo or processing information of an image.
    """
    return await assets.patch_metadata(_check_image_id(image_id), patch, refresh_index=refresh_index)


@app_images.delete("/{image_id}", dependencies=[Depends(upload_token_required)])
async def delete_image(image_id: ImageIdPath) -> DeleteReport:
    """
    Delete all files of an image and remove it from the index.
    """
    return await assets.delete_image(_check_image_id(image_id))


@app_images.get("/{image_id}/{kind}")
async def get_image_file(image_id: ImageIdPath, kind: AssetKind):
    """
    Redirect to the original, thumbnail or live video of an image.
    """
    url = await assets.asset_download_url(_check_image_id(image_id), kind)
    return RedirectResponse(url, status_code=302, headers={"Cache-Control": "public, max-age=31536000"})
