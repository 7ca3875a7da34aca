import os
from typing import List, Optional
from urllib.parse import urljoin
from uuid import uuid4

from flask import current_app, request
from werkzeug.utils import safe_join, secure_filename

ALLOWED_IMAGE_EXTENSIONS = {"jpg", "jpeg", "png", "webp"}
UPLOAD_URL_PREFIX = "uploads/"
INVALID_IMAGE_MESSAGE = "Only JPG, JPEG, PNG, and WEBP files are allowed"


def allowed_image_extension(filename: str) -> bool:
    extension = os.path.splitext(filename)[1].lower().lstrip(".")
    if not extension:
        return False
    return extension in ALLOWED_IMAGE_EXTENSIONS


def get_uploaded_files(field: str) -> list:
    if not request.files:
        return []
    return [
        image_file
        for image_file in request.files.getlist(field)
        if image_file and getattr(image_file, "filename", "")
    ]


def save_image(image_file, subfolder: str):
    """Store an uploaded image and return ``(relative_path, error)``."""
    if not image_file or not getattr(image_file, "filename", ""):
        return None, "An image file is required."

    original_filename = secure_filename(image_file.filename)
    if not original_filename or not allowed_image_extension(original_filename):
        return None, INVALID_IMAGE_MESSAGE

    extension = os.path.splitext(original_filename)[1].lower()
    unique_filename = f"{uuid4().hex}{extension}"
    directory = os.path.join(current_app.config["UPLOAD_FOLDER"], subfolder)
    os.makedirs(directory, exist_ok=True)

    try:
        image_file.save(os.path.join(directory, unique_filename))
    except OSError as exc:
        current_app.logger.error("Unable to store upload %s: %s", unique_filename, exc)
        return None, "We could not store the uploaded image. Please try again."

    return f"{UPLOAD_URL_PREFIX}{subfolder}/{unique_filename}", None


def save_images(image_files, subfolder: str):
    saved_paths: List[str] = []
    if not image_files:
        return saved_paths, None

    for image_file in image_files:
        if not image_file or not getattr(image_file, "filename", ""):
            continue
        saved_path, image_error = save_image(image_file, subfolder)
        if image_error:
            remove_image(saved_paths)
            return [], image_error
        saved_paths.append(saved_path)

    return saved_paths, None


def remove_image(stored_path):
    if not stored_path:
        return

    if isinstance(stored_path, (list, tuple, set)):
        for item in stored_path:
            remove_image(item)
        return

    stored_path = str(stored_path)
    # Seeded documents may point at remote images.
    if not stored_path.startswith(UPLOAD_URL_PREFIX):
        return

    target = safe_join(
        current_app.config["UPLOAD_FOLDER"], stored_path[len(UPLOAD_URL_PREFIX):]
    )
    if not target:
        return
    try:
        os.remove(target)
    except FileNotFoundError:
        return
    except OSError as exc:
        current_app.logger.warning("Unable to remove upload %s: %s", stored_path, exc)


def build_upload_url(stored_path: Optional[str]) -> str:
    if not stored_path:
        return ""

    sanitized = str(stored_path).strip()
    if not sanitized:
        return ""
    if sanitized.startswith(("http://", "https://")):
        return sanitized

    return urljoin(request.host_url, sanitized)
