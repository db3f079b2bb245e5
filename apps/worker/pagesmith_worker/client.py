"""HTTP client for the Convex job queue the worker pulls requests from."""

import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import requests

logger = logging.getLogger(__name__)


@dataclass
class JobQueueError(Exception):
    """Raised when the job queue returns an error response."""

    message: str
    data: Optional[Dict[str, Any]] = None

    def __post_init__(self) -> None:
        """Initialize the base exception with the message."""
        super().__init__(self.message)


class JobQueueClient:
    """Query/mutation client for a Convex deployment, scoped to one worker."""

    def __init__(
        self,
        url: str,
        worker_id: str,
        worker_token: str,
        timeout: float = 60,
        session: Optional[requests.Session] = None,
    ) -> None:
        """Initialize the client with a deployment URL and worker credentials."""
        self.url = url.rstrip("/")
        self.worker_id = worker_id
        self.worker_token = worker_token
        self.timeout = timeout
        self.session = session or requests.Session()

    def _call(self, kind: str, path: str, args: Dict[str, Any]) -> Any:
        body = {
            "path": path,
            "format": "convex_encoded_json",
            "args": [{**args, "workerToken": self.worker_token}],
        }
        headers = {
            "Content-Type": "application/json",
            "Convex-Client": "pagesmith-worker",
        }
        try:
            response = self.session.post(
                f"{self.url}/api/{kind}",
                data=json.dumps(body),
                headers=headers,
                timeout=self.timeout,
            )
        except requests.RequestException as error:
            raise JobQueueError(f"{kind} {path} failed: {error}") from error
        if response.status_code not in (200, 560):
            raise JobQueueError(f"{kind} {path} returned HTTP {response.status_code}: {response.text}")

        try:
            payload = response.json()
        except ValueError as error:
            raise JobQueueError(f"{kind} {path} returned a non-JSON body") from error
        if payload.get("status") == "success":
            return payload.get("value")
        raise JobQueueError(payload.get("errorMessage", "Unknown error"), payload.get("errorData"))

    def query(self, path: str, args: Dict[str, Any]) -> Any:
        """Execute a Convex query."""
        return self._call("query", path, args)

    def mutation(self, path: str, args: Dict[str, Any]) -> Any:
        """Execute a Convex mutation."""
        return self._call("mutation", path, args)

    def claim_next_job(self) -> Optional[Dict[str, Any]]:
        """Lease the next pending job, or return None when the queue is empty."""
        return self.mutation("jobs:claimNextJob", {"workerId": self.worker_id})

    def report_progress(self, job_id: str, progress: int) -> None:
        """Update job progress and renew the lease."""
        self.mutation(
            "jobs:reportJobProgress",
            {"jobId": job_id, "workerId": self.worker_id, "progress": progress},
        )

    def complete_job(
        self,
        job_id: str,
        outputs: List[Dict[str, Any]],
        result: Dict[str, Any],
        minutes_used: float,
        bytes_processed: int,
    ) -> None:
        """Mark a job done with its uploaded outputs."""
        self.mutation(
            "jobs:completeJob",
            {
                "jobId": job_id,
                "workerId": self.worker_id,
                "outputs": outputs,
                "result": result,
                "minutesUsed": minutes_used,
                "bytesProcessed": bytes_processed,
            },
        )

    def fail_job(self, job_id: str, error_code: str, error_message: str) -> None:
        """Mark a job failed with a user-facing message."""
        self.mutation(
            "jobs:failJob",
            {
                "jobId": job_id,
                "workerId": self.worker_id,
                "errorCode": error_code,
                "errorMessage": error_message,
            },
        )

    def download_url(self, storage_id: str) -> Optional[str]:
        """Resolve a storage id into a temporary download URL."""
        return self.query("files:getDownloadUrl", {"storageId": storage_id})

    def generate_upload_url(self) -> str:
        """Request a one-shot storage upload URL."""
        return self.mutation("files:generateUploadUrl", {})

    def upload_bytes(self, upload_url: str, filename: str, data: bytes) -> Dict[str, Any]:
        """
        POST bytes to an upload URL from :meth:`generate_upload_url`.

        The POST goes through a fresh connection rather than the client session,
        so callers need not serialize it with query and mutation calls.

        Returns:
            dict: ``storageId``, ``filename`` and ``sizeBytes`` of the stored file.
        """
        try:
            response = requests.post(
                upload_url,
                data=data,
                headers={"Content-Type": "application/octet-stream"},
                timeout=120,
            )
            response.raise_for_status()
        except requests.RequestException as error:
            raise JobQueueError(f"Upload of {filename} failed: {error}") from error
        try:
            storage_id = response.json()["storageId"]
        except (ValueError, KeyError) as error:
            raise JobQueueError(f"Upload of {filename} returned no storage id") from error
        logger.debug("Uploaded %s (%d bytes)", filename, len(data))
        return {
            "storageId": storage_id,
            "filename": filename,
            "sizeBytes": len(data),
        }
