"""
Supabase Storage service for resume and video attachments.

Storage path: {folder}/{epoch_millis}_{sanitized_filename}
The timestamp prefix keeps repeated filenames ("resume.pdf") from colliding.

Environment variables
---------------------
RESUME_STORAGE_BUCKET  Bucket name (default "resumes")
SUPABASE_PUBLIC_URL    Browser-facing Supabase origin used in returned URLs
"""

import asyncio
import logging
import os
import re
import time
from typing import Optional
from urllib.parse import urlparse, urlunparse

logger = logging.getLogger(__name__)

DEFAULT_BUCKET = "resumes"


def sanitize_filename(filename: str) -> str:
    """Replace spaces and special chars with underscores."""
    return re.sub(r'[^\w\-.]', '_', filename)


def _rewrite_public_url_host(url: str) -> str:
    """
    Replace the host in a storage URL with the browser-accessible Supabase URL.

    When the service runs inside Docker it reaches Supabase through an internal
    host like ``http://host.docker.internal:54321``, and Supabase embeds that
    host in the URLs it generates.  If ``SUPABASE_PUBLIC_URL`` is set, its
    scheme and host replace the internal ones; otherwise the URL is returned
    unchanged.
    """
    public_url = os.getenv("SUPABASE_PUBLIC_URL", "").strip()
    if not public_url:
        return url

    parsed_url = urlparse(url)
    parsed_public = urlparse(public_url)

    return urlunparse((
        parsed_public.scheme,
        parsed_public.netloc,
        parsed_url.path,
        parsed_url.params,
        parsed_url.query,
        parsed_url.fragment,
    ))


class ResumeStorage:
    """Uploads attachment bytes and returns their public URL."""

    def __init__(self, client=None, bucket: Optional[str] = None):
        if client is None:
            from intake.db import get_supabase_admin
            client = get_supabase_admin()
        self.client = client
        self.bucket = bucket or os.getenv("RESUME_STORAGE_BUCKET", DEFAULT_BUCKET)

    def _upload_sync(self, buffer: bytes, filename: str, mime_type: str, folder: str) -> str:
        storage_path = f"{folder}/{int(time.time() * 1000)}_{sanitize_filename(filename)}"

        try:
            bucket = self.client.storage.from_(self.bucket)
            bucket.upload(
                storage_path,
                buffer,
                {
                    "content-type": mime_type or "application/octet-stream",
                    "upsert": "true",
                },
            )
            public_url = bucket.get_public_url(storage_path)
        except Exception as e:
            raise Exception(f"Failed to upload {filename} to storage: {str(e)}")

        logger.info("Uploaded %s (%d bytes) to %s", filename, len(buffer), storage_path)
        return _rewrite_public_url_host(public_url)

    async def upload(self, buffer: bytes, filename: str, mime_type: str, folder: str = "resumes") -> str:
        """
        Upload a file and return its public URL.

        Raises:
            Exception: If the upload fails.
        """
        return await asyncio.to_thread(self._upload_sync, buffer, filename, mime_type, folder)
