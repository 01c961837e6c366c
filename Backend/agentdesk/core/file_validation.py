"""
file_validation.py
~~~~~~~~~~~~~~~~~~
Upload gate for contact-list CSV files.
CSVs have no magic number, so content is checked for binary markers
(NUL bytes) in addition to the extension and declared content type.
"""
import logging
from fastapi import UploadFile, HTTPException

logger = logging.getLogger(__name__)

ALLOWED_EXTENSIONS = (".csv",)
ALLOWED_CONTENT_TYPES = {
    "text/csv",
    "application/vnd.ms-excel",   # what Windows browsers send for .csv
    "application/octet-stream",
}
SNIFF_BYTES = 1024

async def validate_csv_upload(file: UploadFile) -> None:
    """
    Validate that an upload looks like a text CSV.
    Raises HTTPException(400) if invalid.
    Resets file pointer to 0 after checking.
    """
    filename = (file.filename or "").lower()

    if not filename.endswith(ALLOWED_EXTENSIONS):
        raise HTTPException(status_code=400, detail="Invalid file type. Only CSV files are supported.")

    content_type = getattr(file, "content_type", None)
    if content_type and content_type.split(";")[0].strip() not in ALLOWED_CONTENT_TYPES:
        logger.warning(f"Validation failed: {filename} declared content type {content_type}.")
        raise HTTPException(status_code=400, detail=f"Unsupported content type '{content_type}'.")

    await file.seek(0)
    header = await file.read(SNIFF_BYTES)
    await file.seek(0)  # Reset immediately

    if not header:
        raise HTTPException(status_code=400, detail="Uploaded file is empty.")

    # Binary files often contain null bytes, which are rare in valid CSVs.
    if b"\x00" in header:
        logger.warning(f"Validation failed: {filename} contains null bytes, likely binary.")
        raise HTTPException(
            status_code=400,
            detail="Invalid file content. CSV file appears to be binary."
        )
