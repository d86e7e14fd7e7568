"""Object storage collaborator for external publishing completion markers.

The external publishing pipeline writes one object per agency under a
"completed" prefix. Its etag changes whenever that agency's publish output
changes; the key's last path segment is the agency identifier.
"""

import logging
from dataclasses import dataclass
from typing import Any, Callable, List, Optional, Protocol

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from feedmanager.errors import StorageUnavailableError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CompletionMarker:
    """A (key, etag) pair listed from object storage."""

    key: str
    etag: str

    @property
    def agency_id(self) -> str:
        return agency_id_from_key(self.key)


def agency_id_from_key(key: str) -> str:
    """Get the agency identifier encoded in a marker key (its last path segment)."""
    return key.rstrip("/").rsplit("/", 1)[-1]


class CompletedFeedRetriever(Protocol):
    """Contract for listing completion markers.

    Implementations raise ``StorageUnavailableError`` when storage cannot
    be listed.
    """

    def retrieve_completed_feeds(self) -> List[CompletionMarker]:
        ...


def create_s3_client(
    endpoint_url: Optional[str] = None,
    region: str = "us-east-1",
) -> Any:
    """Create an S3 client (works with AWS S3 and S3-compatible services)."""
    client_kwargs = {
        "service_name": "s3",
        "region_name": region,
        "config": Config(signature_version="s3v4"),
    }
    if endpoint_url:
        client_kwargs["endpoint_url"] = endpoint_url
    return boto3.client(**client_kwargs)


class S3CompletedFeedRetriever:
    """Lists completion markers under a prefix of an S3 bucket."""

    def __init__(
        self,
        bucket: str,
        prefix: str = "completed/",
        client_factory: Optional[Callable[[], Any]] = None,
        endpoint_url: Optional[str] = None,
        region: str = "us-east-1",
    ) -> None:
        self.bucket = bucket
        self.prefix = prefix
        self._client_factory = client_factory or (
            lambda: create_s3_client(endpoint_url=endpoint_url, region=region)
        )
        self._client: Optional[Any] = None

    @property
    def client(self) -> Any:
        if self._client is None:
            self._client = self._client_factory()
        return self._client

    def retrieve_completed_feeds(self) -> List[CompletionMarker]:
        markers: List[CompletionMarker] = []
        try:
            paginator = self.client.get_paginator("list_objects_v2")
            for page in paginator.paginate(Bucket=self.bucket, Prefix=self.prefix):
                for obj in page.get("Contents", []):
                    key = obj["Key"]
                    if key.endswith("/"):
                        continue
                    # S3 returns etags wrapped in double quotes
                    markers.append(CompletionMarker(key=key, etag=obj["ETag"].strip('"')))
        except (BotoCoreError, ClientError) as e:
            raise StorageUnavailableError(
                f"Could not list completed feeds in s3://{self.bucket}/{self.prefix}",
                details={"error": str(e)},
            ) from e

        logger.debug(f"Listed {len(markers)} completion markers in s3://{self.bucket}/{self.prefix}")
        return markers
