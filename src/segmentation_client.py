"""
Background-removal job client.

The segmentation service turns a photo into an RGBA image with the
background knocked out. It works as an asynchronous job: submit the image
URL, then poll with the returned prediction id until the job reports
``completed`` (with ``cleanedImageUrl``) or ``failed``.

SegmentationJob is an explicit state machine:

    IDLE -> SUBMITTED -> POLLING -> COMPLETED | FAILED | TIMED_OUT

Polling happens every ``poll_interval_s`` for at most ``max_attempts``
polls. The sleep and clock functions are injectable so tests run without
waiting. Endpoint: set SEGMENT_API_URL (and optionally SEGMENT_API_KEY).
"""
import logging
import os
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, Optional

import requests

from geometry_primitives import PixelBuffer
from mask_builder import load_rgba

logger = logging.getLogger(__name__)


class JobState(Enum):
    IDLE = "idle"
    SUBMITTED = "submitted"
    POLLING = "polling"
    COMPLETED = "completed"
    FAILED = "failed"
    TIMED_OUT = "timed_out"


TERMINAL_STATES = (JobState.COMPLETED, JobState.FAILED, JobState.TIMED_OUT)


class SegmentationError(Exception):
    """Base exception for segmentation job errors."""
    retryable = False


class SegmentationFailedError(SegmentationError):
    """Service reported the job as failed."""
    retryable = True


class SegmentationTimeoutError(SegmentationError):
    """Job did not complete within the poll budget."""
    retryable = True


class SegmentationAPIError(SegmentationError):
    """HTTP or payload error talking to the service."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code
        self.retryable = status_code is not None and (status_code == 429 or status_code >= 500)


@dataclass
class SegmentationConfig:
    """Configuration for the segmentation service."""
    endpoint: str = ""
    api_key: Optional[str] = None
    poll_interval_s: float = 2.0
    max_attempts: int = 30
    request_timeout_s: float = 30.0

    def __post_init__(self):
        if self.poll_interval_s < 0:
            raise ValueError("poll_interval_s must be >= 0")
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")

    @classmethod
    def from_env(cls, **overrides) -> "SegmentationConfig":
        values = {
            "endpoint": os.environ.get("SEGMENT_API_URL", ""),
            "api_key": os.environ.get("SEGMENT_API_KEY") or None,
        }
        values.update(overrides)
        return cls(**values)


@dataclass
class JobStatus:
    """One response from the service."""
    status: str                          # "processing" | "completed" | "failed"
    prediction_id: Optional[str] = None
    cleaned_image_url: Optional[str] = None
    error: Optional[str] = None

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "JobStatus":
        if not isinstance(payload, dict) or "status" not in payload:
            raise SegmentationAPIError(f"Malformed job status payload: {payload!r}")
        return cls(
            status=str(payload["status"]),
            prediction_id=payload.get("predictionId"),
            cleaned_image_url=payload.get("cleanedImageUrl"),
            error=payload.get("error"),
        )


class SegmentationBackend(ABC):
    """Transport for the segmentation service."""

    @abstractmethod
    def submit(self, image_url: str) -> JobStatus:
        """Start a job for *image_url*."""
        ...

    @abstractmethod
    def poll(self, image_url: str, prediction_id: str) -> JobStatus:
        """Fetch the current status of a submitted job."""
        ...

    @abstractmethod
    def download(self, url: str) -> bytes:
        """Fetch the bytes of a finished image."""
        ...


class HttpSegmentationBackend(SegmentationBackend):
    """Backend talking JSON over HTTP via requests."""

    def __init__(self, config: SegmentationConfig, session: Optional[requests.Session] = None):
        if not config.endpoint:
            raise SegmentationAPIError("No segmentation endpoint configured (SEGMENT_API_URL)")
        self.config = config
        self.session = session or requests.Session()

    def _headers(self):
        headers = {"Content-Type": "application/json"}
        if self.config.api_key:
            headers["Authorization"] = f"Bearer {self.config.api_key}"
        return headers

    def submit(self, image_url):
        return self._post({"imageUrl": image_url})

    def poll(self, image_url, prediction_id):
        return self._post({"imageUrl": image_url, "predictionId": prediction_id})

    def download(self, url):
        try:
            resp = self.session.get(url, timeout=self.config.request_timeout_s)
        except requests.RequestException as exc:
            raise SegmentationAPIError(f"Download failed: {exc}") from exc
        self._check_response(resp)
        return resp.content

    def _post(self, payload):
        try:
            resp = self.session.post(
                self.config.endpoint,
                json=payload,
                headers=self._headers(),
                timeout=self.config.request_timeout_s,
            )
        except requests.RequestException as exc:
            raise SegmentationAPIError(f"Segmentation request failed: {exc}", status_code=503) from exc
        self._check_response(resp)
        try:
            data = resp.json()
        except ValueError as exc:
            raise SegmentationAPIError("Segmentation service returned non-JSON body") from exc
        return JobStatus.from_payload(data)

    def _check_response(self, resp):
        """Check HTTP response for errors."""
        if resp.status_code in (401, 403):
            raise SegmentationAPIError(
                f"Segmentation authentication failed ({resp.status_code}). "
                "Check your SEGMENT_API_KEY.",
                status_code=resp.status_code,
            )
        if resp.status_code >= 400:
            raise SegmentationAPIError(
                f"Segmentation API error {resp.status_code}: {resp.text}",
                status_code=resp.status_code,
            )


class SegmentationJob:
    """One background-removal job, driven through its state machine."""

    def __init__(
        self,
        backend: SegmentationBackend,
        image_url: str,
        config: Optional[SegmentationConfig] = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.backend = backend
        self.image_url = image_url
        self.config = config or SegmentationConfig()
        self._sleep = sleep
        self._clock = clock
        self.state = JobState.IDLE
        self.attempts = 0
        self.prediction_id: Optional[str] = None
        self.cleaned_image_url: Optional[str] = None
        self.error: Optional[str] = None
        self._started: Optional[float] = None

    @property
    def job_id(self) -> str:
        """Cache key for the job's result: prediction id, or the image URL in passthrough."""
        return self.prediction_id or self.image_url

    @property
    def done(self) -> bool:
        return self.state in TERMINAL_STATES

    def submit(self) -> JobState:
        if self.state != JobState.IDLE:
            raise SegmentationError(f"Cannot submit job in state {self.state.value}")
        self._started = self._clock()
        logger.info("Submitting segmentation job for %s", self.image_url)
        status = self.backend.submit(self.image_url)
        self.prediction_id = status.prediction_id
        self.state = JobState.SUBMITTED
        self._apply(status)
        if self.state == JobState.SUBMITTED and not self.prediction_id:
            self._fail("Service accepted the job without a prediction id")
        return self.state

    def poll_once(self) -> JobState:
        if self.state not in (JobState.SUBMITTED, JobState.POLLING):
            raise SegmentationError(f"Cannot poll job in state {self.state.value}")
        self.state = JobState.POLLING
        self.attempts += 1
        status = self.backend.poll(self.image_url, self.prediction_id)
        elapsed = self._clock() - (self._started or 0.0)
        logger.info(
            "Job %s: %s (attempt %d/%d) [%.0fs elapsed]",
            self.prediction_id, status.status, self.attempts, self.config.max_attempts, elapsed,
        )
        self._apply(status)
        if not self.done and self.attempts >= self.config.max_attempts:
            self.state = JobState.TIMED_OUT
            self.error = f"Segmentation timed out after {self.attempts} polls"
        return self.state

    def run(self) -> str:
        """Submit and poll to completion.

        Returns:
            The cleaned image URL.

        Raises:
            SegmentationFailedError: The service reported failure.
            SegmentationTimeoutError: Poll budget exhausted.
            SegmentationAPIError: Transport error.
        """
        if self.state == JobState.IDLE:
            self.submit()
        while not self.done:
            self._sleep(self.config.poll_interval_s)
            self.poll_once()
        return self.result()

    def result(self) -> str:
        if self.state == JobState.COMPLETED:
            return self.cleaned_image_url
        if self.state == JobState.FAILED:
            raise SegmentationFailedError(self.error or "Segmentation failed")
        if self.state == JobState.TIMED_OUT:
            raise SegmentationTimeoutError(self.error)
        raise SegmentationError(f"Job not finished (state {self.state.value})")

    def _apply(self, status: JobStatus) -> None:
        if status.status == "completed":
            if not status.cleaned_image_url:
                self._fail("Job completed without a cleaned image URL")
                return
            self.cleaned_image_url = status.cleaned_image_url
            self.state = JobState.COMPLETED
            logger.info("Segmentation completed: %s", self.cleaned_image_url)
        elif status.status == "failed":
            self._fail(status.error or "Segmentation failed")
        elif status.status != "processing":
            logger.warning("Unknown job status %r; treating as processing", status.status)

    def _fail(self, message: str) -> None:
        self.state = JobState.FAILED
        self.error = message
        logger.warning("Segmentation job failed: %s", message)


def fetch_cleaned_image(backend: SegmentationBackend, url: str) -> PixelBuffer:
    """Download and decode the cleaned RGBA image."""
    return load_rgba(backend.download(url))


def segment_image(
    backend: SegmentationBackend,
    image_url: str,
    config: Optional[SegmentationConfig] = None,
    sleep: Callable[[float], None] = time.sleep,
):
    """Run a job end to end. Returns (job, cleaned PixelBuffer)."""
    job = SegmentationJob(backend, image_url, config, sleep=sleep)
    url = job.run()
    return job, fetch_cleaned_image(backend, url)
