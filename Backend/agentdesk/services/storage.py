import abc
import logging
import os
import shutil
import uuid
from pathlib import Path
from typing import BinaryIO

logger = logging.getLogger(__name__)

class StorageProvider(abc.ABC):
    """
    Where uploaded CSVs wait until their ingestion job is done with them.
    """

    @abc.abstractmethod
    def save_upload(self, file_obj: BinaryIO, filename: str) -> str:
        """
        Save an uploaded file and return a reference path/ID.
        """

    @abc.abstractmethod
    def get_absolute_path(self, file_ref: str) -> str:
        """
        Get absolute local path for parsing.
        """

    @abc.abstractmethod
    def delete(self, file_ref: str) -> bool:
        """
        Delete the file. Returns False when there was nothing to delete.
        """

class LocalStorageProvider(StorageProvider):
    """
    Stores files on the local filesystem under ``UPLOAD_DIR``.
    """
    def __init__(self, base_dir: str = "temp_uploads"):
        self.base_dir = Path(base_dir)
        self.base_dir.mkdir(parents=True, exist_ok=True)

    def save_upload(self, file_obj: BinaryIO, filename: str) -> str:
        # Unique name so concurrent uploads of the same file never collide
        ext = Path(filename).suffix
        target_path = self.base_dir / f"{uuid.uuid4()}{ext}"

        file_obj.seek(0)
        with open(target_path, "wb") as buffer:
            shutil.copyfileobj(file_obj, buffer)

        return str(target_path)

    def get_absolute_path(self, file_ref: str) -> str:
        # In local storage, the ref is the path
        return os.path.abspath(file_ref)

    def delete(self, file_ref: str) -> bool:
        try:
            os.remove(file_ref)
            return True
        except FileNotFoundError:
            return False
        except OSError as e:
            logger.warning(f"Failed to delete upload {file_ref}: {e}")
            return False
