import base64
from datetime import UTC, datetime
from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

from lumina.storage.paths import IMAGE_ID_PATTERN

ImageId = Annotated[str, Field(pattern=IMAGE_ID_PATTERN, title="Image ID", description="<algo>:<hexdigest>")]
AssetKind = Literal["original", "thumb", "live"]


def parse_timestamp(value: str) -> datetime:
    """Parse an ISO 8601 timestamp (a trailing Z is accepted), assuming UTC if no timezone is given"""
    ts = datetime.fromisoformat(value)
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=UTC)
    return ts


def utcnow_iso() -> str:
    return datetime.now(UTC).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def _check_timestamp(value: str) -> str:
    parse_timestamp(value)
    return value


######################## IMAGE METADATA #########################


class FileMeta(BaseModel):
    # path is filled in by the store, clients may send an empty placeholder
    path: str = ""
    mime: str
    bytes: int


class ThumbMeta(FileMeta):
    width: int
    height: int


class AssetFiles(BaseModel):
    original: FileMeta
    thumb: ThumbMeta
    live_video: FileMeta | None = None


class Timestamps(BaseModel):
    created_at: str
    client_processed_at: str | None = None

    validate_created_at = field_validator("created_at")(_check_timestamp)


class PrivacyInfo(BaseModel):
    original_contains_gps: bool
    exif_gps_removed: bool


class GeoRegion(BaseModel):
    country: str
    province: str
    city: str
    display_name: str
    cache_key: str
    source: Literal["nominatim"]
    resolved_at: str


class GeoInfo(BaseModel):
    region: GeoRegion


class StageDuration(BaseModel):
    stage_id: str
    duration_ms: float


class ProcessingSummary(BaseModel):
    total_ms: float
    concurrency_profile: str
    stage_durations: list[StageDuration]


class ProcessingInfo(BaseModel):
    summary: ProcessingSummary


class LivePhotoInfo(BaseModel):
    enabled: bool
    pair_id: str
    still_hash: str
    video_hash: str
    duration_ms: float | None = None


class ImageMetadata(BaseModel):
    """
    The meta.json record of one image.

    exif and derived are produced by the client side analysis pipeline and stored as-is.
    Unknown top-level fields are kept, so newer clients can add fields without losing them on update.
    """

    model_config = ConfigDict(extra="allow")

    schema_version: Literal["1.0", "1.1"] = "1.1"
    image_id: ImageId
    original_filename: str | None = None
    description: str | None = None
    category: str | None = None
    timestamps: Timestamps
    files: AssetFiles
    live_photo: LivePhotoInfo | None = None
    exif: dict[str, Any] | None = None
    privacy: PrivacyInfo
    geo: GeoInfo | None = None
    processing: ProcessingInfo | None = None
    derived: dict[str, Any] = {}

    def to_json_bytes(self) -> bytes:
        return self.model_dump_json(indent=2, exclude_none=True).encode("utf-8")


class MetadataPatch(BaseModel):
    """Fields of an image that can be changed after upload. Fields that are not given are left unchanged."""

    description: str | None = None
    original_filename: str | None = None
    category: str | None = None
    privacy: PrivacyInfo | None = None
    geo: GeoInfo | None = None
    processing: ProcessingInfo | None = None


######################## INDEX #########################


class IndexEntry(BaseModel):
    image_id: ImageId
    created_at: str
    meta_path: str

    validate_created_at = field_validator("created_at")(_check_timestamp)

    def sort_key(self) -> tuple[datetime, str]:
        return parse_timestamp(self.created_at), self.image_id


class IndexDocument(BaseModel):
    version: Literal["1"] = "1"
    updated_at: str = Field(default_factory=utcnow_iso)
    items: list[IndexEntry] = []

    def to_json_bytes(self) -> bytes:
        return self.model_dump_json(indent=2).encode("utf-8")


class ListCursor(BaseModel):
    created_at: str
    image_id: str

    validate_created_at = field_validator("created_at")(_check_timestamp)

    def sort_key(self) -> tuple[datetime, str]:
        return parse_timestamp(self.created_at), self.image_id


######################## REMOTE FILES #########################


class RemoteFile(BaseModel):
    """A file or directory entry as returned by the GitHub contents API"""

    model_config = ConfigDict(extra="ignore")

    name: str
    path: str
    sha: str
    type: str = "file"
    content: str | None = None
    encoding: str | None = None
    download_url: str | None = None

    def decoded(self) -> bytes:
        if not self.content:
            return b""
        return base64.b64decode(self.content.replace("\n", ""))


######################## RESULTS #########################


class StoredPaths(BaseModel):
    original_path: str
    thumb_path: str
    live_video_path: str | None = None
    meta_path: str


class ImageUrls(BaseModel):
    meta: str
    thumb: str
    original: str
    live: str | None = None


class UploadResult(BaseModel):
    image_id: str
    stored: StoredPaths
    urls: ImageUrls


class ImageListPage(BaseModel):
    images: list[ImageMetadata]
    next_cursor: str | None = None
    total: int


class DeleteReport(BaseModel):
    image_id: str
    deleted_paths: list[str]


class FailedItem(BaseModel):
    image_id: str
    reason: str


class BatchFinalizeResult(BaseModel):
    success_count: int
    mode: Literal["batch_commit", "fallback_per_item"]
    failed_items: list[FailedItem] | None = None
