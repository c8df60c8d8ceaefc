"""
Local filesystem storage provider for development and single-host installs.
Saves attachment bytes under a base directory instead of Azure Blob Storage.
"""
from typing import Optional
from pathlib import Path
from urllib.parse import quote

from ..config import settings
from .provider import StorageProvider


class LocalStorageProvider(StorageProvider):
    """Local filesystem storage provider."""

    name = "local"

    def __init__(self, base_dir: Optional[str] = None):
        self.base_dir = Path(base_dir or settings.local_storage_dir)
        self.base_dir.mkdir(parents=True, exist_ok=True)
        (self.base_dir / "uploads").mkdir(exist_ok=True)

    def _get_path(self, key: str) -> Path:
        """
        Get the local filesystem path for a given key.

        Raises:
            ValueError: the key resolves outside the uploads directory
        """
        # Backslashes first, so "\etc/passwd" cannot turn into an absolute path
        clean_key = key.replace("\\", "/").lstrip("/")
        root = (self.base_dir / "uploads").resolve()
        path = (root / clean_key).resolve()
        if path != root and root not in path.parents:
            raise ValueError(f"Storage key escapes the uploads directory: {key!r}")
        return path

    def put_bytes(self, key: str, data: bytes, content_type: Optional[str] = None) -> None:
        path = self._get_path(key)
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "wb") as f:
            f.write(data)

    def get_download_url(self, key: str, expires_s: int) -> Optional[str]:
        """Get a local file URL for download."""
        if self._get_path(key).exists():
            return f"{settings.public_base_url}/files/local/{quote(key.lstrip('/'))}"
        return None

    def exists(self, key: str) -> bool:
        return self._get_path(key).exists()

    def delete(self, key: str) -> None:
        self._get_path(key).unlink(missing_ok=True)
