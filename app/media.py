"""On-disk storage for uploaded post images.

Files live under ``MEDIA_ROOT/<MEDIA_POSTS_DIR>/`` and are referenced from the
database by their public path ``<MEDIA_PUBLIC_PREFIX>/<MEDIA_POSTS_DIR>/<name>``.
Generated names embed the user and post id plus random digits; the caller
checks ``missing()`` before writing, which is best-effort, not atomic.
"""

import re
import secrets
import shutil
from pathlib import Path

from fastapi import UploadFile

from .config import settings
from .errors import ValidationError, StorageError
from .logger import logger


# Accepted image formats, identified from the file's leading bytes
SNIFF_BYTES = 4096
BMP_HEADER_SIZES = (12, 40, 52, 56, 64, 108, 124)
SVG_ROOT = re.compile(
    rb"^\s*(?:<\?xml[^>]*\?>\s*)?(?:<!--.*?-->\s*|<!DOCTYPE[^>]*>\s*)*<svg[\s>/]",
    re.IGNORECASE | re.DOTALL,
)

INVALID_IMAGE_TEXT = "Failed to create post. Image is invalid."


def detect_image_extension(head: bytes) -> str | None:
    """Extension of the image format ``head`` starts with, or None if it is not an image."""
    if head.startswith(b"\xff\xd8\xff"):
        return "jpg"
    if head.startswith(b"\x89PNG\r\n\x1a\n") and head[12:16] == b"IHDR":
        return "png"
    if head[:6] in (b"GIF87a", b"GIF89a"):
        return "gif"
    if head[:4] == b"RIFF" and head[8:12] == b"WEBP":
        return "webp"
    if head[:2] == b"BM" and len(head) >= 18 and int.from_bytes(head[14:18], "little") in BMP_HEADER_SIZES:
        return "bmp"
    if SVG_ROOT.match(head.removeprefix(b"\xef\xbb\xbf")):
        return "svg"
    return None


def validate_image(upload: UploadFile) -> str:
    """Check that an upload is a well-formed image of an accepted format.

    The format is read from the content; the client's declared content type
    is not trusted. Returns the extension to store it under.
    """
    if not upload.filename:
        logger.warning("[media] Rejected upload without a filename")
        raise ValidationError(INVALID_IMAGE_TEXT)

    upload.file.seek(0)
    head = upload.file.read(SNIFF_BYTES)
    upload.file.seek(0)

    extension = detect_image_extension(head)
    if extension is None:
        logger.warning(
            f"[media] Rejected upload '{upload.filename}' declared as '{upload.content_type}': not an image"
        )
        raise ValidationError(INVALID_IMAGE_TEXT)

    return extension


class MediaStore:
    """Filesystem-backed image storage rooted at MEDIA_ROOT."""

    def __init__(self, root: str | None = None):
        self._root = root

    @property
    def root(self) -> Path:
        return Path(self._root or settings.MEDIA_ROOT)

    # ==================== Naming ====================

    def generate_unique_name(self, user_id: int, post_id: int, extension: str) -> str:
        """``{user_id}-{post_id}-{random digits}.{extension}``; single attempt."""
        digits = "".join(str(secrets.randbelow(10)) for _ in range(settings.IMAGE_NAME_DIGITS))
        return f"{user_id}-{post_id}-{digits}.{extension.lstrip('.')}"

    def relative_path(self, name: str) -> str:
        """Storage-relative path of a post image, e.g. ``posts/1-2-0123456789.png``."""
        return f"{settings.MEDIA_POSTS_DIR}/{name}"

    def public_path(self, name: str) -> str:
        """Path stored on the Image row, e.g. ``storage/posts/1-2-0123456789.png``."""
        return f"{settings.MEDIA_PUBLIC_PREFIX}/{self.relative_path(name)}"

    def storage_path(self, path: str) -> str:
        """Map a stored Image path back to a storage-relative path.

        Accepts the public form and a bare file name.
        """
        prefix = f"{settings.MEDIA_PUBLIC_PREFIX}/{settings.MEDIA_POSTS_DIR}/"
        if path.startswith(prefix):
            return self.relative_path(path[len(prefix):])
        if path.startswith(f"{settings.MEDIA_POSTS_DIR}/"):
            return path
        return self.relative_path(path)

    def _resolve(self, path: str) -> Path:
        root = self.root.resolve()
        target = (root / path).resolve()
        if root != target and root not in target.parents:
            raise StorageError()
        return target

    # ==================== Probes ====================

    def exists(self, path: str) -> bool:
        return self._resolve(path).is_file()

    def missing(self, path: str) -> bool:
        return not self.exists(path)

    # ==================== Mutations ====================

    def write_uploaded(self, upload: UploadFile, name: str) -> str:
        """Copy an upload into the posts directory. Returns the storage-relative path."""
        path = self.relative_path(name)
        target = self._resolve(path)
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            upload.file.seek(0)
            with open(target, "wb") as out:
                shutil.copyfileobj(upload.file, out)
        except OSError as e:
            logger.error(f"[media] Failed to write {path}: {e}", exc_info=True)
            raise StorageError() from e
        logger.debug(f"[media] Wrote {path}")
        return path

    def delete(self, path: str) -> bool:
        """Best-effort delete. Failures are logged, never raised."""
        if not path:
            return False
        try:
            target = self._resolve(self.storage_path(path))
            target.unlink()
            logger.info(f"[media] Deleted superseded file {path}")
            return True
        except FileNotFoundError:
            logger.warning(f"[media] File to delete not found: {path}")
            return False
        except (OSError, StorageError) as e:
            logger.error(f"[media] Failed to delete {path}: {e}")
            return False


# ==================== Global Instance ====================

media_store = MediaStore()
