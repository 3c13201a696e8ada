import os

from fastapi import UploadFile

from config import Settings
from errors import ErrorResponse


def save_image(file: UploadFile, basename: str, settings: Settings) -> str:
    """Store an uploaded image as ``<basename><ext>`` and return the filename."""
    if not file.content_type or not file.content_type.startswith("image"):
        raise ErrorResponse("Please upload a valid image file", 400)

    data = file.file.read(settings.max_file_upload + 1)
    if len(data) > settings.max_file_upload:
        raise ErrorResponse(f"Please upload an image less than {settings.max_file_upload} bytes", 400)

    _, ext = os.path.splitext(file.filename or "")
    filename = f"{basename}{ext}"
    try:
        os.makedirs(settings.file_upload_path, exist_ok=True)
        with open(os.path.join(settings.file_upload_path, filename), "wb") as fh:
            fh.write(data)
    except OSError:
        raise ErrorResponse("Problem with image file upload", 500)
    return filename
