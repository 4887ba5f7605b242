"""Document-to-PDF conversion through the CloudConvert REST API (v2).

A conversion is one CloudConvert *job* with three tasks: an upload
import, a ``convert`` to PDF, and an ``export/url`` whose file is then
downloaded.
"""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Any

import httpx
import structlog

from .config import ConversionConfig, RetryConfig
from .errors import ConversionError
from .retry import with_retry

logger = structlog.get_logger()

IMPORT_TASK = "import-file"
CONVERT_TASK = "convert-file"
EXPORT_TASK = "export-file"


class CloudConvertClient:
    """Async CloudConvert client.

    ``submit`` creates the job and uploads the document; ``await_result``
    blocks (server side, via the sync API) until the job finishes and
    returns the PDF bytes.  Every failure surfaces as
    :class:`ConversionError`.
    """

    def __init__(self, config: ConversionConfig, retry_config: RetryConfig) -> None:
        self._config = config
        self._retry = with_retry(retry_config, retryable_exceptions=(httpx.TransportError,))
        self._client: httpx.AsyncClient | None = None

    async def start(self) -> None:
        self._client = httpx.AsyncClient(timeout=httpx.Timeout(self._config.timeout_seconds))
        logger.info("conversion_client_started", base_url=self._config.base_url)

    async def stop(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None
            logger.info("conversion_client_stopped")

    def _http(self) -> httpx.AsyncClient:
        if self._client is None:
            raise ConversionError("Conversion client not started")
        return self._client

    def _auth_headers(self) -> dict[str, str]:
        api_key = self._config.api_key.get_secret_value()
        if not api_key:
            raise ConversionError("CloudConvert API key not set")
        return {"Authorization": f"Bearer {api_key}"}

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def convert_file(self, path: Path) -> bytes:
        """Convert the document stored at *path* and return PDF bytes."""
        content = await asyncio.to_thread(path.read_bytes)
        source_format = path.suffix.lstrip(".").lower() or None
        job_id = await self.submit(content, path.name, source_format)
        return await self.await_result(job_id)

    async def submit(self, content: bytes, filename: str, source_format: str | None = None) -> str:
        """Create a conversion job and upload *content*.  Returns the job id."""
        convert_task: dict[str, Any] = {
            "operation": "convert",
            "input": IMPORT_TASK,
            "output_format": "pdf",
            "engine": self._config.engine,
        }
        if source_format:
            convert_task["input_format"] = source_format

        payload = {
            "tasks": {
                IMPORT_TASK: {"operation": "import/upload"},
                CONVERT_TASK: convert_task,
                EXPORT_TASK: {"operation": "export/url", "input": CONVERT_TASK},
            },
            "tag": "docrelay",
        }

        job = await self._request("POST", f"{self._config.base_url}/jobs", json=payload)
        job_id = job.get("id")
        upload_form = _task(job, IMPORT_TASK).get("result", {}).get("form")
        if not job_id or not upload_form:
            raise ConversionError("CloudConvert job response is missing the upload form")

        await self._upload(upload_form, content, filename)
        logger.info("conversion_submitted", job_id=job_id, filename=filename, size=len(content))
        return str(job_id)

    async def await_result(self, job_id: str) -> bytes:
        """Wait for *job_id* to finish and download the exported PDF."""
        try:
            job = await asyncio.wait_for(
                self._request(
                    "GET",
                    f"{self._config.sync_base_url}/jobs/{job_id}",
                    timeout=self._config.job_timeout_seconds,
                ),
                timeout=self._config.job_timeout_seconds,
            )
        except TimeoutError as exc:
            raise ConversionError(f"Conversion job {job_id} timed out") from exc

        status = job.get("status")
        if status != "finished":
            failed = [t for t in job.get("tasks", []) if t.get("status") == "error"]
            reason = failed[0].get("message") if failed else status
            raise ConversionError(f"Conversion job {job_id} ended with {status}: {reason}")

        files = _task(job, EXPORT_TASK).get("result", {}).get("files") or []
        if not files or not files[0].get("url"):
            raise ConversionError(f"Conversion job {job_id} has no exported file")

        pdf_bytes = await self._download(files[0]["url"])
        logger.info("conversion_finished", job_id=job_id, size=len(pdf_bytes))
        return pdf_bytes

    # ------------------------------------------------------------------
    # HTTP helpers
    # ------------------------------------------------------------------

    async def _request(self, method: str, url: str, **kwargs: Any) -> dict[str, Any]:
        headers = self._auth_headers()

        @self._retry
        async def _send() -> httpx.Response:
            return await self._http().request(method, url, headers=headers, **kwargs)

        try:
            response = await _send()
            response.raise_for_status()
            body = response.json()
        except httpx.HTTPStatusError as exc:
            raise ConversionError(
                f"CloudConvert {method} {url} returned {exc.response.status_code}: {exc.response.text[:200]}"
            ) from exc
        except (httpx.HTTPError, ValueError) as exc:
            raise ConversionError(f"CloudConvert {method} {url} failed: {exc}") from exc

        data = body.get("data") if isinstance(body, dict) else None
        if not isinstance(data, dict):
            raise ConversionError(f"CloudConvert {method} {url} returned no data")
        return data

    async def _upload(self, form: dict[str, Any], content: bytes, filename: str) -> None:
        parameters = {key: str(value) for key, value in (form.get("parameters") or {}).items()}

        @self._retry
        async def _send() -> httpx.Response:
            return await self._http().post(
                form["url"],
                data=parameters,
                files={"file": (filename, content)},
            )

        try:
            response = await _send()
            response.raise_for_status()
        except httpx.HTTPError as exc:
            raise ConversionError(f"Upload of {filename} failed: {exc}") from exc

    async def _download(self, url: str) -> bytes:
        @self._retry
        async def _send() -> httpx.Response:
            return await self._http().get(url, follow_redirects=True)

        try:
            response = await _send()
            response.raise_for_status()
        except httpx.HTTPError as exc:
            raise ConversionError(f"Download of converted file failed: {exc}") from exc
        return response.content


def _task(job: dict[str, Any], name: str) -> dict[str, Any]:
    for task in job.get("tasks", []):
        if task.get("name") == name:
            return task
    return {}
