from __future__ import annotations

from pathlib import PurePosixPath

from linksy.errors import ApiError, invalid

DEFAULT_MAX_BYTES = 10 * 1024 * 1024

MIME_BY_TYPE: dict[str, str] = {
    "png": "image/png",
    "jpg": "image/jpeg",
    "gif": "image/gif",
    "webp": "image/webp",
    "pdf": "application/pdf",
    "docx": "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    "xlsx": "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    "pptx": "application/vnd.openxmlformats-officedocument.presentationml.presentation",
    "zip": "application/zip",
    "txt": "text/plain",
    "csv": "text/csv",
}

_EXTENSION_ALIASES = {"jpeg": "jpg"}
_ZIP_CONTAINERS = ("docx", "xlsx", "pptx", "zip")
_TEXT_TYPES = ("txt", "csv")


def file_extension(filename: str) -> str:
    ext = PurePosixPath(str(filename or "").replace("\\", "/")).suffix.lower().lstrip(".")
    return _EXTENSION_ALIASES.get(ext, ext)


def _magic_type(content: bytes) -> str | None:
    if content.startswith(b"\x89PNG\r\n\x1a\n"):
        return "png"
    if content.startswith(b"\xff\xd8\xff"):
        return "jpg"
    if content.startswith(b"GIF87a") or content.startswith(b"GIF89a"):
        return "gif"
    if len(content) >= 12 and content[:4] == b"RIFF" and content[8:12] == b"WEBP":
        return "webp"
    if content.startswith(b"%PDF-"):
        return "pdf"
    if content.startswith(b"PK\x03\x04"):
        return "zip"
    return None


def detect_file_type(content: bytes, filename: str) -> str | None:
    ext = file_extension(filename)
    magic = _magic_type(content)
    if magic == "zip":
        # office formats are zip containers, so the extension picks the variant
        return ext if ext in _ZIP_CONTAINERS else "zip"
    if magic is not None:
        return magic
    if ext in _TEXT_TYPES:
        try:
            content.decode("utf-8")
        except UnicodeDecodeError:
            return None
        return ext
    return None


def validate_upload(
    content: bytes,
    filename: str,
    declared_mime: str | None = None,
    max_bytes: int = DEFAULT_MAX_BYTES,
) -> dict[str, str | int]:
    if not content:
        raise invalid("file is empty", code="FILE_EMPTY")
    if len(content) > max_bytes:
        raise ApiError(
            code="FILE_TOO_LARGE",
            message=f"file exceeds {max_bytes} bytes",
            error_class="validation",
            retryable=False,
            http_status=413,
        )
    detected = detect_file_type(content, filename)
    if detected is None:
        raise invalid("file type not allowed", code="FILE_TYPE_NOT_ALLOWED")
    ext = file_extension(filename)
    if ext and ext != detected:
        raise invalid(
            "file extension does not match content",
            code="FILE_TYPE_MISMATCH",
            details={"extension": ext, "detected": detected},
        )
    mime = MIME_BY_TYPE[detected]
    if detected not in _TEXT_TYPES and declared_mime and declared_mime not in {mime, "application/octet-stream"}:
        declared_base = declared_mime.split(";", 1)[0].strip().lower()
        if declared_base != mime:
            raise invalid(
                "declared content type does not match content",
                code="FILE_TYPE_MISMATCH",
                details={"declared": declared_mime, "detected": mime},
            )
    return {"file_type": detected, "mime_type": mime, "size": len(content)}
