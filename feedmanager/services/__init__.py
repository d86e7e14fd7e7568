"""External collaborators of the job core: validation, storage, publishing, deployment."""

from feedmanager.services.context import JobContext
from feedmanager.services.deployer import DeployOutcome, DeployTarget, HttpDeployTarget
from feedmanager.services.publisher import (
    ExternalPublisher,
    PublishRejectedError,
    S3ExternalPublisher,
)
from feedmanager.services.storage import (
    CompletedFeedRetriever,
    CompletionMarker,
    S3CompletedFeedRetriever,
    agency_id_from_key,
)
from feedmanager.services.validator import GtfsZipValidator, ValidationResult, Validator

__all__ = [
    "CompletedFeedRetriever",
    "CompletionMarker",
    "DeployOutcome",
    "DeployTarget",
    "ExternalPublisher",
    "GtfsZipValidator",
    "HttpDeployTarget",
    "JobContext",
    "PublishRejectedError",
    "S3CompletedFeedRetriever",
    "S3ExternalPublisher",
    "ValidationResult",
    "Validator",
    "agency_id_from_key",
]
