"""Validation and storage for the optional complaint attachment."""
import hashlib
import io
import os
import uuid
from typing import Dict, Tuple

from PIL import Image
from werkzeug.datastructures import FileStorage
from werkzeug.utils import secure_filename

ALLOWED_ATTACHMENT_EXTENSIONS = {"pdf", "doc", "docx", "jpg", "jpeg", "png"}
IMAGE_EXTENSIONS = {"jpg", "jpeg", "png"}
DEFAULT_MAX_ATTACHMENT_BYTES = 5 * 1024 * 1024  # 5 MB

_MIME_TYPES = {
    "pdf": {"application/pdf"},
    "doc": {"application/msword"},
    "docx": {"application/vnd.openxmlformats-officedocument.wordprocessingml.document"},
    "jpg": {"image/jpeg", "image/pjpeg"},
    "jpeg": {"image/jpeg", "image/pjpeg"},
    "png": {"image/png"},
}
_PIL_FORMATS = {"jpg": "JPEG", "jpeg": "JPEG", "png": "PNG"}


class AttachmentError(ValueError):
    """Raised when an uploaded attachment is rejected."""


def _fail_if(condition: bool, message: str) -> None:
    if condition:
        raise AttachmentError(message)


def _verify_image(content: bytes, ext: str) -> None:
    try:
        with Image.open(io.BytesIO(content)) as img:
            detected = img.format
            img.verify()
    except Exception as exc:
        raise AttachmentError("Image validation failed") from exc
    _fail_if(detected != _PIL_FORMATS[ext], "Invalid image data")


def validate_attachment(file: FileStorage, max_bytes: int = DEFAULT_MAX_ATTACHMENT_BYTES) -> Tuple[bytes, str]:
    _fail_if(not file, "No file provided")
    filename = secure_filename(file.filename or "")
    _fail_if(not filename or "." not in filename, "Unsupported file name")
    ext = filename.rsplit(".", 1)[1].lower()
    _fail_if(
        ext not in ALLOWED_ATTACHMENT_EXTENSIONS,
        "Unsupported file format. Allowed: PDF, DOC, DOCX, JPG, JPEG, PNG",
    )
    mimetype = (file.mimetype or "").lower()
    # Browsers send octet-stream for some office files; the extension check still applies.
    _fail_if(
        mimetype not in _MIME_TYPES[ext] and mimetype != "application/octet-stream",
        "Unsupported file format. Allowed: PDF, DOC, DOCX, JPG, JPEG, PNG",
    )

    file.stream.seek(0, os.SEEK_END)
    size = file.stream.tell()
    file.stream.seek(0)
    _fail_if(size == 0, "Empty file")
    too_large = f"File size should be less than {max(1, max_bytes // (1024 * 1024))}MB"
    _fail_if(size > max_bytes, too_large)

    content = file.read()
    _fail_if(len(content) > max_bytes, too_large)
    if ext in IMAGE_EXTENSIONS:
        _verify_image(content, ext)

    file.stream.seek(0)
    return content, ext


def save_attachment_bytes(content: bytes, upload_dir: str, extension: str) -> Tuple[str, str]:
    os.makedirs(upload_dir, exist_ok=True)
    safe_name = secure_filename(f"{uuid.uuid4().hex}.{extension}")
    path = os.path.join(upload_dir, safe_name)
    with open(path, "wb") as f:
        f.write(content)
    return path, safe_name


def persist_attachment(file: FileStorage, upload_dir: str, max_bytes: int = DEFAULT_MAX_ATTACHMENT_BYTES) -> Dict:
    content, ext = validate_attachment(file, max_bytes=max_bytes)
    stored_path, stored_name = save_attachment_bytes(content, upload_dir, ext)
    return {
        "path": stored_path,
        "file_name": stored_name,
        "public_path": f"/uploads/{stored_name}",
        "extension": ext,
        "sha256": hashlib.sha256(content).hexdigest(),
        "size_bytes": len(content),
    }


def remove_attachment(path: str | None) -> None:
    if path and os.path.isfile(path):
        os.remove(path)
