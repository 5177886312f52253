"""Provider API backend — remote video generation over HTTP."""
from __future__ import annotations

import asyncio
import logging
import os
import time
from typing import Any, Dict, Optional

import requests

from backend.services.video.backends.base import (
    BackendError,
    BackendOutput,
    GenerationBackend,
    GenerationRequest,
)

logger = logging.getLogger("timeline_studio.video.provider_api")

_BASE_URL_ENV = "VIDEO_API_BASE_URL"
_TOKEN_ENV = "VIDEO_API_TOKEN"
_GENERATE_PATH = "/api/video/generate"
_JOB_PATH = "/api/video/jobs/{job_id}"


class ProviderAPIBackend(GenerationBackend):
    """Generation backend talking to a hosted video-generation API.

    The provider either answers the submit call with a finished clip
    (``video_url`` in the body) or with a ``job_id`` that is polled until it
    reports ``completed`` or ``failed``.  The whole call is bounded by
    ``timeout_sec``.

    HTTP calls are isolated in ``_post()`` and ``_get()`` so unit tests can
    mock them.

    Requires: VIDEO_API_BASE_URL (and optionally VIDEO_API_TOKEN) when no
    explicit ``base_url`` is passed.
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        api_token: Optional[str] = None,
        timeout_sec: float = 600.0,
        poll_interval_sec: float = 5.0,
    ):
        self._base_url = (base_url or os.getenv(_BASE_URL_ENV, "")).rstrip("/")
        self._api_token = api_token if api_token is not None else os.getenv(_TOKEN_ENV)
        self._timeout = timeout_sec
        self._poll_interval = poll_interval_sec

    def name(self) -> str:
        return "provider_api"

    def is_available(self) -> bool:
        return bool(self._base_url)

    async def generate(self, request: GenerationRequest) -> BackendOutput:
        if not self.is_available():
            raise BackendError("Video API base URL is not configured")
        return await asyncio.to_thread(self._generate_blocking, request)

    # ── Internal ──────────────────────────────────────────────────────────────

    def _generate_blocking(self, request: GenerationRequest) -> BackendOutput:
        deadline = time.monotonic() + self._timeout
        body = self._post(self._base_url + _GENERATE_PATH, request.to_payload())
        if body.get("video_url"):
            return _to_output(body)

        job_id = body.get("job_id")
        if not job_id:
            raise BackendError("Provider response has neither video_url nor job_id")
        logger.info("Submitted %s clip (%.1fs) as provider job %s", request.model_id, request.duration_sec, job_id)

        url = self._base_url + _JOB_PATH.format(job_id=job_id)
        while True:
            if time.monotonic() >= deadline:
                raise BackendError(f"Provider job {job_id} timed out after {self._timeout:.0f}s")
            self._sleep(self._poll_interval)
            job = self._get(url)
            state = job.get("status")
            if state == "completed":
                if not job.get("video_url"):
                    raise BackendError(f"Provider job {job_id} completed without a video_url")
                return _to_output(job)
            if state == "failed":
                raise BackendError(job.get("error") or f"Provider job {job_id} failed")

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self._api_token:
            headers["Authorization"] = f"Bearer {self._api_token}"
        return headers

    # ── Internal — mockable for unit tests ────────────────────────────────────

    def _post(self, url: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        try:
            resp = requests.post(url, json=payload, headers=self._headers(), timeout=self._timeout)
        except requests.RequestException as exc:
            raise BackendError(f"Provider request failed: {exc}") from exc
        return _json_or_raise(resp)

    def _get(self, url: str) -> Dict[str, Any]:
        try:
            resp = requests.get(url, headers=self._headers(), timeout=self._timeout)
        except requests.RequestException as exc:
            raise BackendError(f"Provider poll failed: {exc}") from exc
        return _json_or_raise(resp)

    def _sleep(self, seconds: float) -> None:
        time.sleep(seconds)


def _json_or_raise(resp: requests.Response) -> Dict[str, Any]:
    try:
        body = resp.json()
    except ValueError:
        body = {}
    if not resp.ok:
        message = (body.get("message") or body.get("error")) if isinstance(body, dict) else None
        raise BackendError(message or f"Generation failed: HTTP {resp.status_code}")
    if not isinstance(body, dict):
        raise BackendError("Provider returned a non-object JSON body")
    return body


def _to_output(body: Dict[str, Any]) -> BackendOutput:
    duration = body.get("duration")
    return BackendOutput(
        video_url=body["video_url"],
        thumbnail_url=body.get("thumbnail_url"),
        last_frame=body.get("last_frame"),
        duration_sec=float(duration) if duration is not None else None,
        tokens_used=int(body.get("tokens_used") or 0),
    )
