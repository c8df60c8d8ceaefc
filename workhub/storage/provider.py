from typing import Optional


class StorageProvider:
    """Byte store for attachment contents, addressed by key."""

    name = "abstract"

    def put_bytes(self, key: str, data: bytes, content_type: Optional[str] = None) -> None:
        raise NotImplementedError

    def get_download_url(self, key: str, expires_s: int) -> Optional[str]:
        raise NotImplementedError

    def exists(self, key: str) -> bool:
        raise NotImplementedError

    def delete(self, key: str) -> None:
        """Remove the object; missing keys are not an error, I/O failures raise."""
        raise NotImplementedError
