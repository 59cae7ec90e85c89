# digistore/services/blob_store.py
# Подписанные ссылки на приватные файлы в Cloudinary (raw, type=authenticated).
import logging
import time

import cloudinary
import cloudinary.utils

from digistore.core.config import settings
from digistore.core.errors import DependencyUnavailable

logger = logging.getLogger(__name__)


class BlobStore:
    def __init__(self, cloud_name: str, api_key: str, api_secret: str):
        self.enabled = bool(cloud_name and api_key and api_secret)
        self._options = {
            "cloud_name": cloud_name,
            "api_key": api_key,
            "api_secret": api_secret,
        }
        if self.enabled:
            cloudinary.config(secure=True, **self._options)

    def mint_signed_url(self, file_ref: str, ttl_seconds: int = settings.SIGNED_URL_TTL_SECONDS) -> str:
        """Ссылка живёт ttl_seconds и подписана api_secret; серверной сессии нет."""
        if not self.enabled:
            raise DependencyUnavailable("File storage is not configured")
        expires_at = int(time.time()) + ttl_seconds
        try:
            return cloudinary.utils.private_download_url(
                file_ref,
                "",
                resource_type="raw",
                type="authenticated",
                expires_at=expires_at,
                **self._options,
            )
        except Exception as e:
            logger.error(f"Failed to sign download URL for {file_ref}: {e}")
            raise DependencyUnavailable("Failed to generate download link") from e


blob_store = BlobStore(
    settings.CLOUDINARY_CLOUD_NAME,
    settings.CLOUDINARY_API_KEY,
    settings.CLOUDINARY_API_SECRET,
)


def get_blob_store() -> BlobStore:
    """Зависимость FastAPI."""
    return blob_store
