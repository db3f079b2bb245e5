"""Worker runtime that pulls document jobs from the queue and runs them."""

import logging
import threading
import time
from pathlib import Path
from typing import Any, Dict, List, Optional

import requests

from .client import JobQueueClient, JobQueueError
from .config import WorkerSettings
from .errors import StorageError, ValidationError
from .logs import configure_logging
from .service import ArtifactResult, DocumentService, InputFile
from .storage import ArtifactStore, CleanupScheduler

logger = logging.getLogger(__name__)

USER_INPUT_INVALID = "USER_INPUT_INVALID"
SERVICE_CAPACITY_TEMPORARY = "SERVICE_CAPACITY_TEMPORARY"
GENERIC_FAILURE_MESSAGE = "Processing failed. Please retry."


def _parse_int(value: Any, default: int) -> int:
    """Parse an integer with a safe fallback."""
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def _parse_optional_int(value: Any, label: str) -> Optional[int]:
    """Parse an optional integer, rejecting values that are present but not numeric."""
    if value is None or (isinstance(value, str) and not value.strip()):
        return None
    try:
        return int(value)
    except (TypeError, ValueError) as error:
        raise ValidationError(f"{label} must be a whole number") from error


def _upload_name(index: int, filename: str) -> str:
    return f"{int(time.time() * 1000)}-{index:02d}-{Path(filename).name}"


class PagesmithWorker:
    """Poll the job queue for document jobs and execute them."""

    def __init__(
        self,
        client: JobQueueClient,
        settings: WorkerSettings,
        service: Optional[DocumentService] = None,
        cleanup: Optional[CleanupScheduler] = None,
    ) -> None:
        """Wire the worker to its queue client, service and cleanup scheduler."""
        self.client = client
        self.settings = settings
        self.store = (
            service.store
            if service is not None
            else ArtifactStore(settings.downloads_dir, settings.download_url_prefix)
        )
        self.service = service or DocumentService(self.store, settings)
        self.cleanup = cleanup or CleanupScheduler(
            [settings.uploads_dir, settings.downloads_dir],
            retention_seconds=settings.retention_seconds,
            interval_seconds=settings.cleanup_interval_seconds,
        )
        self._client_lock = threading.Lock()
        self._stop_event = threading.Event()

    def run(self) -> None:
        """Run the polling loop until ``stop()`` is called."""
        self.cleanup.start()
        logger.info("Worker %s started", self.settings.worker_id)
        try:
            while not self._stop_event.is_set():
                try:
                    job = self._locked(self.client.claim_next_job)
                except JobQueueError as error:
                    logger.warning("Could not claim a job: %s", error.message)
                    job = None
                if not job:
                    self._stop_event.wait(self.settings.poll_interval_seconds)
                    continue
                self.process_job(job)
        finally:
            self.cleanup.stop()
            logger.info("Worker %s stopped", self.settings.worker_id)

    def stop(self) -> None:
        """Ask the polling loop to exit after the current job."""
        self._stop_event.set()

    def process_job(self, job: Dict[str, Any]) -> None:
        """Process a single job and report its outcome to the queue."""
        job_id = job["_id"]
        started = time.time()
        progress = {"value": 10}
        stop_event = threading.Event()
        heartbeat = threading.Thread(
            target=self._heartbeat, args=(job_id, progress, stop_event), daemon=True
        )
        heartbeat.start()
        upload_paths: List[Path] = []
        try:
            self._report(job_id, 10)
            inputs = self._download_inputs(job.get("inputs") or [], upload_paths)
            progress["value"] = 40
            self._report(job_id, 40)
            result = self._run_tool(job, inputs)
            progress["value"] = 75
            self._report(job_id, 75)
            upload_url = self._locked(self.client.generate_upload_url)
            # Heartbeats keep renewing the lease while the bytes are in flight.
            output = self.client.upload_bytes(
                upload_url, result.file_name, self.store.read_artifact(result.file_name)
            )
            elapsed_minutes = max((time.time() - started) / 60, 0.01)
            bytes_processed = sum(len(item.data) for item in inputs)
            self._locked(
                self.client.complete_job,
                job_id,
                [output],
                result.to_payload(),
                elapsed_minutes,
                bytes_processed,
            )
            self._report(job_id, 100)
            logger.info("Job %s (%s) completed: %s", job_id, job.get("tool"), result.message)
        except ValueError as error:
            # ValidationError, FormatError and codec errors raised by the libraries.
            self._safe_fail(job_id, USER_INPUT_INVALID, str(error))
        except StorageError as error:
            self._safe_fail(job_id, SERVICE_CAPACITY_TEMPORARY, GENERIC_FAILURE_MESSAGE, str(error))
        except JobQueueError as error:
            self._safe_fail(
                job_id, SERVICE_CAPACITY_TEMPORARY, GENERIC_FAILURE_MESSAGE, error.message
            )
        except Exception as error:  # noqa: BLE001
            logger.exception("Job %s crashed", job_id)
            self._safe_fail(job_id, SERVICE_CAPACITY_TEMPORARY, GENERIC_FAILURE_MESSAGE, str(error))
        finally:
            stop_event.set()
            heartbeat.join(timeout=1)
            for path in upload_paths:
                path.unlink(missing_ok=True)

    def _run_tool(self, job: Dict[str, Any], inputs: List[InputFile]) -> ArtifactResult:
        """
        Dispatch a job to the matching service operation.

        The job's ``config`` mapping carries the tool parameters, e.g.
        ``splitOption``/``pageRanges``/``numParts`` for ``split``.

        Returns:
            ArtifactResult: The stored deliverable.

        Raises:
            ValidationError: When the tool is unknown or its parameters are invalid.
        """
        tool = job.get("tool")
        config = job.get("config")
        if not isinstance(config, dict):
            config = {}
        first = inputs[0] if inputs else None
        if tool == "merge":
            return self.service.merge(inputs)
        if tool == "split":
            return self.service.split(
                first,
                config.get("splitOption"),
                page_ranges=config.get("pageRanges"),
                num_parts=_parse_optional_int(config.get("numParts"), "Number of parts"),
            )
        if tool == "convert":
            return self.service.convert(first, config.get("toFormat"))
        if tool == "compress":
            return self.service.compress(first, config.get("compressionLevel"))
        if tool == "security":
            return self.service.security(
                first, config.get("securityAction"), config.get("watermarkText")
            )
        if tool == "image":
            return self.service.edit_image(
                first,
                config.get("imageOperation"),
                rotation_angle=_parse_int(config.get("rotationAngle"), 90),
                width=_parse_optional_int(config.get("resizeWidth"), "Width"),
                height=_parse_optional_int(config.get("resizeHeight"), "Height"),
            )
        raise ValidationError(f"Unsupported tool: {tool}")

    def _download_inputs(
        self, inputs: List[Dict[str, Any]], upload_paths: List[Path]
    ) -> List[InputFile]:
        """Download job inputs into the uploads directory and load them into memory."""
        self.settings.uploads_dir.mkdir(parents=True, exist_ok=True)
        files: List[InputFile] = []
        limit = self.settings.max_upload_bytes
        for index, item in enumerate(inputs, start=1):
            filename = Path(item["filename"]).name
            url = self._locked(self.client.download_url, item["storageId"])
            if not url:
                raise JobQueueError(f"Missing download URL for {filename}")
            target = self.settings.uploads_dir / _upload_name(index, filename)
            upload_paths.append(target)
            received = 0
            with requests.get(url, stream=True, timeout=120) as response:
                response.raise_for_status()
                with target.open("wb") as handle:
                    for chunk in response.iter_content(chunk_size=1024 * 1024):
                        if not chunk:
                            continue
                        received += len(chunk)
                        if received > limit:
                            raise ValidationError(
                                f"{filename} exceeds the {limit // (1024 * 1024)} MB upload limit"
                            )
                        handle.write(chunk)
            files.append(InputFile(filename, target.read_bytes()))
        return files

    def _report(self, job_id: str, progress: int) -> None:
        self._locked(self.client.report_progress, job_id, progress)

    def _safe_fail(
        self,
        job_id: str,
        error_code: str,
        error_message: str,
        log_message: Optional[str] = None,
    ) -> None:
        """Report a failure without crashing the worker."""
        logger.warning("Job %s failed: %s", job_id, log_message or error_message)
        try:
            self._locked(self.client.fail_job, job_id, error_code, error_message)
        except Exception as error:  # noqa: BLE001
            logger.error("Failed to report job failure for %s: %s", job_id, error)

    def _heartbeat(
        self, job_id: str, progress: Dict[str, int], stop_event: threading.Event
    ) -> None:
        """Renew the job lease until the job finishes."""
        while not stop_event.wait(self.settings.heartbeat_seconds):
            try:
                self._report(job_id, progress["value"])
            except JobQueueError as error:
                logger.warning("Heartbeat for %s failed: %s", job_id, error.message)

    def _locked(self, call, *args: Any) -> Any:
        """Run a client call while holding the client lock."""
        with self._client_lock:
            return call(*args)


def main() -> None:
    """Entrypoint for the worker process."""
    settings = WorkerSettings.from_env()
    configure_logging(settings.log_level, settings.log_file)
    if not settings.convex_url:
        raise RuntimeError("PAGESMITH_CONVEX_URL is required")
    if not settings.worker_token:
        raise RuntimeError("PAGESMITH_WORKER_TOKEN is required")
    client = JobQueueClient(settings.convex_url, settings.worker_id, settings.worker_token)
    PagesmithWorker(client, settings).run()


if __name__ == "__main__":
    main()
