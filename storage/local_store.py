"""
Local-disk attachment store, used when S3 is disabled.
Same interface as S3Client; files are served by the app under PUBLIC_UPLOADS_URL.
"""
import os
import shutil
from pathlib import Path
from typing import Optional, BinaryIO, Iterable, List

from storage.s3_client import chunked
from core.logger import logger


class LocalObjectStore:
    """Stores objects as files under ``root``; keys are relative POSIX paths."""

    def __init__(self, root: Path, public_url: str = "/uploads"):
        self.root = Path(root)
        self.root.mkdir(parents=True, exist_ok=True)
        self.public_url = public_url.rstrip("/")

    def _path_for(self, key: str) -> Path:
        path = (self.root / key).resolve()
        if self.root.resolve() not in path.parents:
            raise ValueError(f"Invalid object key: {key}")
        return path

    def upload_fileobj(self, file_obj: BinaryIO, key: str, content_type: Optional[str] = None) -> str:
        path = self._path_for(key)
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "wb") as out:
            shutil.copyfileobj(file_obj, out)
        logger.info(f"Stored {key} locally")
        return key

    def list_objects(self, prefix: str = "", page_size: int = 1000) -> List[str]:
        """Walk the store recursively; directories are descended, files are keys."""
        keys = []
        pending = [self.root]
        while pending:
            directory = pending.pop()
            with os.scandir(directory) as entries:
                for entry in entries:
                    if entry.is_dir(follow_symlinks=False):
                        pending.append(Path(entry.path))
                    elif entry.is_file(follow_symlinks=False):
                        key = Path(entry.path).relative_to(self.root).as_posix()
                        if key.startswith(prefix):
                            keys.append(key)
        return sorted(keys)

    def delete_objects(self, keys: Iterable[str]) -> int:
        deleted = 0
        for batch in chunked(keys):
            for key in batch:
                try:
                    self._path_for(key).unlink()
                except FileNotFoundError:
                    continue
                deleted += 1
        logger.info(f"Deleted {deleted} local object(s)")
        return deleted

    def get_public_url(self, key: str) -> str:
        return f"{self.public_url}/{key}"
