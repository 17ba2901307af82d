"""S3 storage for event images downloaded from Humanitix."""
import hashlib
import logging
import posixpath
from typing import Optional
from urllib.parse import urlparse

import boto3
import requests
from botocore.exceptions import BotoCoreError, ClientError

logger = logging.getLogger(__name__)

MAX_IMAGE_BYTES = 10 * 1024 * 1024


class MediaStore:
    """Downloads images and keeps a copy in an S3 bucket."""

    def __init__(self, bucket: str, timeout: int = 30, prefix: str = 'media'):
        """
        Initialize the media store.

        Args:
            bucket: Target S3 bucket
            timeout: HTTP download timeout in seconds
            prefix: Key prefix for stored images
        """
        self.bucket = bucket
        self.timeout = timeout
        self.prefix = prefix.strip('/')
        self.s3 = boto3.client('s3')

    def key_for(self, image_url: str) -> str:
        """
        Build a stable object key for an image URL.

        Args:
            image_url: Source image URL

        Returns:
            S3 key of the form <prefix>/<sha256 prefix>/<file name>
        """
        digest = hashlib.sha256(image_url.encode('utf-8')).hexdigest()[:16]
        filename = posixpath.basename(urlparse(image_url).path) or 'image'
        return f"{self.prefix}/{digest}/{filename}"

    def store_image(self, image_url: str) -> Optional[str]:
        """
        Download an image and upload it to S3.

        Args:
            image_url: Source image URL

        Returns:
            S3 key, or None if the download or upload failed
        """
        try:
            with requests.get(image_url, timeout=self.timeout, stream=True) as response:
                response.raise_for_status()
                content_type = response.headers.get('Content-Type', 'application/octet-stream')
                body = self._read_limited(response)
        except requests.RequestException as e:
            logger.warning(f"Failed to download image {image_url}: {e}")
            return None

        if body is None:
            logger.warning(f"Image {image_url} exceeds {MAX_IMAGE_BYTES} bytes, skipped")
            return None

        key = self.key_for(image_url)
        try:
            self.s3.put_object(
                Bucket=self.bucket,
                Key=key,
                Body=body,
                ContentType=content_type,
                Metadata={'source-url': image_url}
            )
        except (ClientError, BotoCoreError) as e:
            logger.error(f"Failed to upload image {image_url} to s3://{self.bucket}/{key}: {e}")
            return None

        logger.info(f"Stored image {image_url} as s3://{self.bucket}/{key}")
        return key

    def _read_limited(self, response) -> Optional[bytes]:
        """Read a streamed body, giving up once it passes MAX_IMAGE_BYTES."""
        declared = response.headers.get('Content-Length')
        if declared and declared.isdigit() and int(declared) > MAX_IMAGE_BYTES:
            return None

        chunks = []
        size = 0
        for chunk in response.iter_content(chunk_size=64 * 1024):
            size += len(chunk)
            if size > MAX_IMAGE_BYTES:
                return None
            chunks.append(chunk)
        return b''.join(chunks)
