from supabase import Client
from typing import Optional
import logging

logger = logging.getLogger(__name__)


class SupabaseStorage:
    """Thin wrapper over one Supabase Storage bucket: bytes in, public URL out."""

    def __init__(self, supabase: Client, bucket_name: str):
        if not bucket_name:
            raise ValueError("Storage bucket name must be configured")
        self.supabase = supabase
        self.bucket_name = bucket_name

    def _bucket(self):
        return self.supabase.storage.from_(self.bucket_name)

    def upload(self, path: str, content: bytes, content_type: Optional[str] = None, upsert: bool = False) -> str:
        """Upload bytes to `path` and return the path"""
        file_options = {"upsert": "true" if upsert else "false"}
        if content_type:
            file_options["content-type"] = content_type
        try:
            self._bucket().upload(path, content, file_options=file_options)
            return path
        except Exception as e:
            logger.error(f"Failed to upload {path} to bucket {self.bucket_name}: {str(e)}")
            raise

    def get_public_url(self, path: str) -> str:
        return self._bucket().get_public_url(path)

    def delete(self, path: str) -> bool:
        try:
            self._bucket().remove([path])
            return True
        except Exception as e:
            logger.warning("Failed to delete from bucket %s (%s): %s", self.bucket_name, path, e)
            return False


def storage_path_from_public_url(public_url: str, bucket_name: str) -> Optional[str]:
    """Recover the object path from a public URL produced by get_public_url."""
    marker = f"/object/public/{bucket_name}/"
    if not public_url or marker not in public_url:
        return None
    return public_url.split(marker, 1)[1].split("?", 1)[0]
