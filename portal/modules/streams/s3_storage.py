import boto3
from botocore.exceptions import ClientError
from portal.config.settings import settings
from typing import BinaryIO
import logging

logger = logging.getLogger(__name__)


class RecordingStorage:
    """S3 bucket that fronts the recordings CDN."""

    def __init__(self, s3_client=None):
        if not settings.recordings_bucket_name:
            raise ValueError("Recordings bucket name must be configured")

        self.s3_client = s3_client or boto3.client(
            's3',
            aws_access_key_id=settings.aws_access_key_id,
            aws_secret_access_key=settings.aws_secret_access_key,
            region_name=settings.aws_region
        )
        self.bucket_name = settings.recordings_bucket_name

    def public_url(self, key: str) -> str:
        """Playable URL for a stored recording: the CDN when configured, else the bucket's HTTPS endpoint."""
        if settings.recordings_cdn_base_url:
            return f"{settings.recordings_cdn_base_url.rstrip('/')}/{key}"
        return f"https://{self.bucket_name}.s3.{settings.aws_region}.amazonaws.com/{key}"

    def upload_fileobj(self, fileobj: BinaryIO, key: str, content_type: str = "video/mp4") -> str:
        """Upload a file object to S3 (multipart for large recordings) and return the URL viewers should use"""
        try:
            self.s3_client.upload_fileobj(
                fileobj,
                self.bucket_name,
                key,
                ExtraArgs={"ContentType": content_type}
            )
            return self.public_url(key)
        except ClientError as e:
            logger.error(f"Failed to upload recording to S3: {str(e)}")
            raise
