"""
Map image ids to their location in the storage repository.

An image id has the form <algo>:<hexdigest>. All files of one image live in a single object directory,
sharded on the first four hex characters:

    objects/aa/11/sha256_aa11.../original.jpg
                                 thumb.webp
                                 live.mov
                                 meta.json
"""

import re

from lumina.storage.errors import MalformedError

OBJECTS_ROOT = "objects"
INDEX_PATH = f"{OBJECTS_ROOT}/_index/images.json"

#: hex digest length per supported hash algorithm
DIGEST_LENGTHS = {
    "sha1": 40,
    "sha256": 64,
    "sha512": 128,
}

IMAGE_ID_PATTERN = r"^(sha1:[0-9a-fA-F]{40}|sha256:[0-9a-fA-F]{64}|sha512:[0-9a-fA-F]{128})$"
_IMAGE_ID_RE = re.compile(IMAGE_ID_PATTERN)

MIME_EXTENSIONS = {
    "image/jpeg": "jpg",
    "image/png": "png",
    "image/webp": "webp",
    "image/gif": "gif",
    "image/heic": "heic",
    "image/heif": "heif",
    "image/avif": "avif",
    "video/quicktime": "mov",
    "video/mp4": "mp4",
}

THUMB_NAME = "thumb.webp"
META_NAME = "meta.json"


def is_valid_image_id(image_id: str) -> bool:
    return bool(_IMAGE_ID_RE.match(image_id))


def split_image_id(image_id: str) -> tuple[str, str]:
    """Validate the image id and return (algo, hexdigest)"""
    if not isinstance(image_id, str) or not is_valid_image_id(image_id):
        raise MalformedError(f"Invalid image_id: {image_id!r}")
    algo, hexdigest = image_id.split(":", 1)
    return algo, hexdigest


def guess_extension(mime: str | None) -> str:
    return MIME_EXTENSIONS.get(mime or "", "bin")


def object_dir(image_id: str) -> str:
    algo, hexdigest = split_image_id(image_id)
    return f"{OBJECTS_ROOT}/{hexdigest[:2]}/{hexdigest[2:4]}/{algo}_{hexdigest}"


def meta_path(image_id: str) -> str:
    """The metadata path, which also serves as the lookup key of an image"""
    return f"{object_dir(image_id)}/{META_NAME}"


def original_path(image_id: str, mime: str | None) -> str:
    return f"{object_dir(image_id)}/original.{guess_extension(mime)}"


def thumb_path(image_id: str) -> str:
    return f"{object_dir(image_id)}/{THUMB_NAME}"


def live_video_path(image_id: str, mime: str | None) -> str:
    return f"{object_dir(image_id)}/live.{guess_extension(mime)}"
