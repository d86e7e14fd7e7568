"""External publisher collaborator.

Submitting a feed version to the external publishing pipeline means
uploading its file to the publish bucket under the agency's key. The
pipeline picks it up from there and eventually writes a completion marker.
"""

import logging
from pathlib import Path
from typing import Any, Callable, Optional, Protocol

from botocore.exceptions import BotoCoreError, ClientError

from feedmanager.errors import TransientCollaboratorError
from feedmanager.services.storage import create_s3_client

logger = logging.getLogger(__name__)


class PublishRejectedError(TransientCollaboratorError):
    """The external publish endpoint did not accept the submission."""


class ExternalPublisher(Protocol):
    """Contract for submitting a feed file to the external publisher."""

    def submit(self, agency_id: str, feed_path: Path, submitted_by: Optional[str] = None) -> None:
        ...


class S3ExternalPublisher:
    """Uploads feed files to ``s3://<bucket>/<agency_id>/<agency_id>.zip``."""

    def __init__(
        self,
        bucket: str,
        client_factory: Optional[Callable[[], Any]] = None,
        endpoint_url: Optional[str] = None,
        region: str = "us-east-1",
    ) -> None:
        self.bucket = bucket
        self._client_factory = client_factory or (
            lambda: create_s3_client(endpoint_url=endpoint_url, region=region)
        )

    @staticmethod
    def object_key(agency_id: str) -> str:
        return f"{agency_id}/{agency_id}.zip"

    def submit(self, agency_id: str, feed_path: Path, submitted_by: Optional[str] = None) -> None:
        key = self.object_key(agency_id)
        extra_args = {"ContentType": "application/zip"}
        if submitted_by:
            extra_args["Metadata"] = {"submitted-by": submitted_by}

        try:
            self._client_factory().upload_file(
                str(feed_path),
                self.bucket,
                key,
                ExtraArgs=extra_args,
            )
        except (BotoCoreError, ClientError, OSError) as e:
            raise PublishRejectedError(
                "External publisher rejected the feed submission.",
                details={"agency_id": agency_id, "error": str(e)},
            ) from e

        logger.info(f"Submitted {feed_path.name} to s3://{self.bucket}/{key}")
