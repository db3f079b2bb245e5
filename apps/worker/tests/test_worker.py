import time
import zipfile
from io import BytesIO
from pathlib import Path
from unittest.mock import Mock, patch

import pytest
from pypdf import PdfReader, PdfWriter

from pagesmith_worker.client import JobQueueError
from pagesmith_worker.config import WorkerSettings
from pagesmith_worker.worker import (
    SERVICE_CAPACITY_TEMPORARY,
    USER_INPUT_INVALID,
    PagesmithWorker,
)


def _pdf_bytes(pages: int) -> bytes:
    """Create a blank PDF with the given number of pages."""
    writer = PdfWriter()
    for _ in range(pages):
        writer.add_blank_page(width=300, height=300)
    buffer = BytesIO()
    writer.write(buffer)
    return buffer.getvalue()


class _DummyResponse:
    """Mock streaming response for input downloads."""

    def __init__(self, body: bytes) -> None:
        self._body = body

    def iter_content(self, chunk_size: int = 1024):
        for start in range(0, len(self._body), chunk_size):
            yield self._body[start : start + chunk_size]

    def raise_for_status(self) -> None:
        return None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        return False


def _settings(tmp_path: Path, **overrides) -> WorkerSettings:
    values = {
        "uploads_dir": tmp_path / "uploads",
        "downloads_dir": tmp_path / "downloads",
        "heartbeat_seconds": 60,
        "poll_interval_seconds": 0.01,
    }
    values.update(overrides)
    return WorkerSettings(**values)


def _client() -> Mock:
    client = Mock()
    client.download_url.side_effect = lambda storage_id: f"https://files.test/{storage_id}"
    client.generate_upload_url.return_value = "https://upload.test/slot"
    client.upload_bytes.side_effect = lambda url, name, data: {
        "storageId": "out-1",
        "filename": name,
        "sizeBytes": len(data),
    }
    return client


def _job(tool: str, inputs, config=None) -> dict:
    return {
        "_id": "job-1",
        "tool": tool,
        "inputs": [
            {"storageId": f"in-{index}", "filename": name, "sizeBytes": len(body)}
            for index, (name, body) in enumerate(inputs)
        ],
        "config": config or {},
    }


def _run_job(worker: PagesmithWorker, job: dict, bodies: dict) -> None:
    def _get(url, stream=True, timeout=120):
        return _DummyResponse(bodies[url.rsplit("/", 1)[1]])

    with patch("pagesmith_worker.worker.requests.get", side_effect=_get):
        worker.process_job(job)


def test_split_job_uploads_archive(tmp_path: Path) -> None:
    """A split job uploads the zip and completes with its payload."""
    client = _client()
    worker = PagesmithWorker(client, _settings(tmp_path), cleanup=Mock())
    body = _pdf_bytes(10)
    job = _job(
        "split",
        [("report.pdf", body)],
        {"splitOption": "pages", "pageRanges": "1-3, 5, 7-10"},
    )

    _run_job(worker, job, {"in-0": body})

    client.fail_job.assert_not_called()
    url, name, data = client.upload_bytes.call_args.args
    assert name.startswith("split-files-")
    with zipfile.ZipFile(BytesIO(data)) as archive:
        counts = [len(PdfReader(BytesIO(archive.read(item))).pages) for item in archive.namelist()]
    assert counts == [3, 1, 4]
    job_id, outputs, result, minutes, processed = client.complete_job.call_args.args
    assert job_id == "job-1"
    assert outputs[0]["storageId"] == "out-1"
    assert result["message"] == "Split into 3 files"
    assert processed == len(body)
    assert list((tmp_path / "uploads").iterdir()) == []
    client.report_progress.assert_any_call("job-1", 100)


def test_merge_job_with_one_file_is_user_error(tmp_path: Path) -> None:
    """Too few merge inputs fail as invalid user input."""
    client = _client()
    worker = PagesmithWorker(client, _settings(tmp_path), cleanup=Mock())
    body = _pdf_bytes(2)

    _run_job(worker, _job("merge", [("a.pdf", body)]), {"in-0": body})

    client.fail_job.assert_called_once_with(
        "job-1", USER_INPUT_INVALID, "At least 2 files required for merging"
    )
    client.complete_job.assert_not_called()


def test_merge_job_combines_inputs(tmp_path: Path) -> None:
    """Merge jobs read every input in order."""
    client = _client()
    worker = PagesmithWorker(client, _settings(tmp_path), cleanup=Mock())
    first, second = _pdf_bytes(1), _pdf_bytes(2)

    _run_job(
        worker,
        _job("merge", [("a.pdf", first), ("b.pdf", second)]),
        {"in-0": first, "in-1": second},
    )

    url, name, data = client.upload_bytes.call_args.args
    assert name.startswith("merged-")
    assert len(PdfReader(BytesIO(data)).pages) == 3


def test_split_job_rejects_non_numeric_parts(tmp_path: Path) -> None:
    """A non-numeric part count is invalid input."""
    client = _client()
    worker = PagesmithWorker(client, _settings(tmp_path), cleanup=Mock())
    body = _pdf_bytes(2)
    job = _job("split", [("a.pdf", body)], {"splitOption": "size", "numParts": "many"})

    _run_job(worker, job, {"in-0": body})

    assert client.fail_job.call_args.args[1] == USER_INPUT_INVALID


def test_unknown_tool_is_user_error(tmp_path: Path) -> None:
    """Unsupported tools are rejected."""
    client = _client()
    worker = PagesmithWorker(client, _settings(tmp_path), cleanup=Mock())

    _run_job(worker, _job("ocr", []), {})

    client.fail_job.assert_called_once_with("job-1", USER_INPUT_INVALID, "Unsupported tool: ocr")


def test_oversized_upload_is_rejected(tmp_path: Path) -> None:
    """Inputs above the size limit fail without reaching the tool."""
    client = _client()
    worker = PagesmithWorker(client, _settings(tmp_path, max_upload_bytes=10), cleanup=Mock())
    body = _pdf_bytes(1)

    _run_job(worker, _job("compress", [("a.pdf", body)]), {"in-0": body})

    assert client.fail_job.call_args.args[1] == USER_INPUT_INVALID
    client.upload_bytes.assert_not_called()
    assert list((tmp_path / "uploads").iterdir()) == []


def test_queue_errors_are_reported_as_temporary(tmp_path: Path) -> None:
    """Upload failures are service errors with a generic message."""
    client = _client()
    client.upload_bytes.side_effect = JobQueueError("storage unavailable")
    worker = PagesmithWorker(client, _settings(tmp_path), cleanup=Mock())
    body = _pdf_bytes(1)

    _run_job(worker, _job("compress", [("a.pdf", body)]), {"in-0": body})

    client.fail_job.assert_called_once_with(
        "job-1", SERVICE_CAPACITY_TEMPORARY, "Processing failed. Please retry."
    )


def test_heartbeats_continue_during_slow_uploads(tmp_path: Path) -> None:
    """Only the upload URL request holds the client lock, not the transfer."""
    client = _client()

    def _slow_upload(url, name, data):
        time.sleep(0.5)
        return {"storageId": "out-1", "filename": name, "sizeBytes": len(data)}

    client.upload_bytes.side_effect = _slow_upload
    worker = PagesmithWorker(client, _settings(tmp_path, heartbeat_seconds=0.05), cleanup=Mock())
    body = _pdf_bytes(1)

    _run_job(worker, _job("compress", [("a.pdf", body)]), {"in-0": body})

    client.fail_job.assert_not_called()
    client.generate_upload_url.assert_called_once_with()
    renewals = [call for call in client.report_progress.call_args_list if call.args == ("job-1", 75)]
    assert len(renewals) >= 4


def test_library_value_errors_are_user_errors(tmp_path: Path) -> None:
    """A ValueError escaping a tool is invalid input, not a crash."""
    client = _client()
    worker = PagesmithWorker(client, _settings(tmp_path), cleanup=Mock())
    worker.service.compress = Mock(side_effect=ValueError("image has wrong mode"))
    body = _pdf_bytes(1)

    _run_job(worker, _job("compress", [("a.pdf", body)]), {"in-0": body})

    client.fail_job.assert_called_once_with("job-1", USER_INPUT_INVALID, "image has wrong mode")
    client.upload_bytes.assert_not_called()


def test_failure_reporting_errors_do_not_escape(tmp_path: Path) -> None:
    """A failing fail_job call is logged, not raised."""
    client = _client()
    client.fail_job.side_effect = JobQueueError("queue down")
    worker = PagesmithWorker(client, _settings(tmp_path), cleanup=Mock())

    _run_job(worker, _job("ocr", []), {})

    client.fail_job.assert_called_once()


def test_run_polls_until_stopped(tmp_path: Path) -> None:
    """The loop owns the cleanup scheduler and exits on stop()."""
    client = _client()
    cleanup = Mock()
    worker = PagesmithWorker(client, _settings(tmp_path), cleanup=cleanup)
    calls = {"count": 0}

    def _claim():
        calls["count"] += 1
        if calls["count"] == 1:
            raise JobQueueError("temporarily unavailable")
        worker.stop()
        return None

    client.claim_next_job.side_effect = _claim
    worker.run()

    assert calls["count"] == 2
    cleanup.start.assert_called_once()
    cleanup.stop.assert_called_once()


def test_main_requires_queue_settings(monkeypatch: pytest.MonkeyPatch) -> None:
    """The entrypoint refuses to start without credentials."""
    from pagesmith_worker import worker as worker_module

    monkeypatch.delenv("PAGESMITH_CONVEX_URL", raising=False)
    monkeypatch.setattr(worker_module, "configure_logging", lambda *args: None)
    with pytest.raises(RuntimeError):
        worker_module.main()
