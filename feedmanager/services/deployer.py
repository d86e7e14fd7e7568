"""Deployment target collaborator.

Triggering a deployment is fire-and-forget: the target server either
accepts or rejects the request, and the build itself happens remotely.
"""

import logging
from enum import Enum
from typing import Any, Dict, Optional, Protocol

import httpx

logger = logging.getLogger(__name__)


class DeployOutcome(Enum):
    """Result code of a deploy trigger."""

    ACCEPTED = "accepted"
    REJECTED = "rejected"


class DeployTarget(Protocol):
    """Contract for triggering a deployment on a target server."""

    async def trigger(self, server: Any, deployment: Any) -> DeployOutcome:
        ...


class HttpDeployTarget:
    """Triggers deployments by POSTing to ``<server.internal_url>/deploy``."""

    def __init__(
        self,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._timeout = timeout
        self._transport = transport

    def _payload(self, deployment: Any) -> Dict[str, Any]:
        return {
            "deployment_id": deployment.id,
            "project_id": deployment.project_id,
            "name": deployment.name,
        }

    async def trigger(self, server: Any, deployment: Any) -> DeployOutcome:
        if not server.internal_url:
            logger.error(f"Server {server.id} has no internal URL, cannot deploy {deployment.id}")
            return DeployOutcome.REJECTED

        url = f"{server.internal_url.rstrip('/')}/deploy"
        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                response = await client.post(url, json=self._payload(deployment))
                response.raise_for_status()
        except httpx.HTTPStatusError as e:
            logger.error(f"Deploy trigger rejected by {url}: HTTP {e.response.status_code}")
            return DeployOutcome.REJECTED
        except httpx.HTTPError as e:
            logger.error(f"Deploy trigger to {url} failed: {e}")
            return DeployOutcome.REJECTED

        logger.info(f"Deployment {deployment.id} accepted by server {server.id}")
        return DeployOutcome.ACCEPTED
