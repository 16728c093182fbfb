from __future__ import annotations

import base64
import binascii
import hashlib
import logging
import secrets
from datetime import datetime, timezone
from pathlib import Path

from cryptography.fernet import Fernet, InvalidToken

from spotcheck.errors import ApiError, ExternalIOError, NotFoundError, ValidationError
from spotcheck.settings import get_settings

logger = logging.getLogger("spotcheck.photo_store")

PHOTO_DATA_ENC_PREFIX = b"ENCV1:"
MAX_PHOTO_BYTES = 10 * 1024 * 1024
ALLOWED_CONTENT_TYPES = {
    "image/jpeg": "jpg",
    "image/png": "png",
    "image/webp": "webp",
}


def _photo_cipher() -> Fernet | None:
    material = (get_settings().photo_encryption_key or "").strip()
    if not material:
        return None
    derived = base64.urlsafe_b64encode(hashlib.sha256(material.encode("utf-8")).digest())
    return Fernet(derived)


def decode_photo_payload(photo_base64: str) -> bytes:
    raw = (photo_base64 or "").strip()
    if raw.startswith("data:") and "," in raw:
        raw = raw.split(",", 1)[1]
    try:
        data = base64.b64decode(raw, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise ValidationError(code="INVALID_PHOTO", message="Photo is not valid base64.") from exc
    if not data:
        raise ValidationError(code="INVALID_PHOTO", message="Photo is empty.")
    if len(data) > MAX_PHOTO_BYTES:
        raise ApiError(status_code=413, code="PHOTO_TOO_LARGE", message="Photo exceeds the size limit.")
    return data


class PhotoStore:
    def save(self, data: bytes, *, content_type: str) -> str:
        raise NotImplementedError

    def load(self, ref: str) -> bytes:
        raise NotImplementedError

    def delete(self, ref: str) -> None:
        raise NotImplementedError


class LocalPhotoStore(PhotoStore):
    """Photos on local disk, Fernet-encrypted when a key is configured."""

    def __init__(self, root: Path | str | None = None) -> None:
        self.root = Path(root or get_settings().photo_storage_dir)

    def save(self, data: bytes, *, content_type: str) -> str:
        extension = ALLOWED_CONTENT_TYPES.get((content_type or "").strip().lower())
        if extension is None:
            raise ValidationError(code="INVALID_PHOTO", message="Unsupported photo content type.")

        day_dir = datetime.now(timezone.utc).strftime("%Y/%m/%d")
        ref = f"{day_dir}/{secrets.token_hex(16)}.{extension}"
        cipher = _photo_cipher()
        stored = PHOTO_DATA_ENC_PREFIX + cipher.encrypt(data) if cipher is not None else data
        target = self.root / ref
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(stored)
        except OSError as exc:
            raise ExternalIOError("photo_store", str(exc)) from exc
        return ref

    def _resolve(self, ref: str) -> Path:
        target = (self.root / ref).resolve()
        if self.root.resolve() not in target.parents:
            raise NotFoundError(code="PHOTO_NOT_FOUND", message="Photo not found.")
        return target

    def load(self, ref: str) -> bytes:
        target = self._resolve(ref)
        try:
            stored = target.read_bytes()
        except FileNotFoundError as exc:
            raise NotFoundError(code="PHOTO_NOT_FOUND", message="Photo not found.") from exc
        except OSError as exc:
            raise ExternalIOError("photo_store", str(exc)) from exc

        if not stored.startswith(PHOTO_DATA_ENC_PREFIX):
            return stored
        cipher = _photo_cipher()
        if cipher is None:
            raise ExternalIOError("photo_store", "photo_cipher_unavailable")
        try:
            return cipher.decrypt(stored[len(PHOTO_DATA_ENC_PREFIX) :])
        except InvalidToken as exc:
            raise ExternalIOError("photo_store", "photo_decrypt_failed") from exc

    def delete(self, ref: str) -> None:
        target = self._resolve(ref)
        try:
            target.unlink(missing_ok=True)
        except OSError as exc:
            raise ExternalIOError("photo_store", str(exc)) from exc


def content_type_for_ref(ref: str) -> str:
    extension = ref.rsplit(".", 1)[-1].lower() if "." in ref else ""
    for content_type, known_extension in ALLOWED_CONTENT_TYPES.items():
        if known_extension == extension:
            return content_type
    return "application/octet-stream"


def discard_photo(photo_store: PhotoStore, ref: str) -> None:
    """Remove a stored photo that no check-in result will reference."""
    try:
        photo_store.delete(ref)
    except ApiError as exc:
        logger.warning("photo_discard_failed", extra={"photo_ref": ref, "error": exc.code})
    except ExternalIOError as exc:
        logger.warning("photo_discard_failed", extra={"photo_ref": ref, "error": str(exc)})


def get_photo_store() -> PhotoStore:
    return LocalPhotoStore()
