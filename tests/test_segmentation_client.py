"""Tests for segmentation_client module."""
import io

import pytest
from PIL import Image

from segmentation_client import (
    HttpSegmentationBackend,
    JobState,
    JobStatus,
    SegmentationAPIError,
    SegmentationBackend,
    SegmentationConfig,
    SegmentationError,
    SegmentationFailedError,
    SegmentationJob,
    SegmentationTimeoutError,
    fetch_cleaned_image,
    segment_image,
)


def _png_bytes():
    img = Image.new("RGBA", (6, 4), (0, 0, 0, 0))
    img.putpixel((2, 1), (0, 0, 0, 255))
    data = io.BytesIO()
    img.save(data, format="PNG")
    return data.getvalue()


class FakeBackend(SegmentationBackend):
    """Replays canned statuses: first for submit, the rest for polls."""

    def __init__(self, statuses, image=b""):
        self.statuses = list(statuses)
        self.image = image
        self.polls = []

    def submit(self, image_url):
        return self.statuses.pop(0)

    def poll(self, image_url, prediction_id):
        self.polls.append(prediction_id)
        if len(self.statuses) > 1:
            return self.statuses.pop(0)
        return self.statuses[0]

    def download(self, url):
        return self.image


PROCESSING = JobStatus("processing", prediction_id="p1")


class TestJobStateMachine:
    """Submit, poll, and terminal states."""

    def test_passthrough_completes_without_polling(self):
        backend = FakeBackend([JobStatus("completed", cleaned_image_url="u")])
        sleeps = []
        job = SegmentationJob(backend, "img", sleep=sleeps.append)
        assert job.run() == "u"
        assert job.state == JobState.COMPLETED
        assert sleeps == []
        assert backend.polls == []
        assert job.job_id == "img"

    def test_polls_until_completed(self):
        backend = FakeBackend([
            PROCESSING, PROCESSING,
            JobStatus("completed", prediction_id="p1", cleaned_image_url="clean.png"),
        ])
        sleeps = []
        job = SegmentationJob(backend, "img", sleep=sleeps.append)
        assert job.run() == "clean.png"
        assert job.attempts == 2
        assert sleeps == [2.0, 2.0]
        assert backend.polls == ["p1", "p1"]
        assert job.job_id == "p1"

    def test_times_out(self):
        backend = FakeBackend([PROCESSING, PROCESSING])
        sleeps = []
        config = SegmentationConfig(poll_interval_s=0.5, max_attempts=3)
        job = SegmentationJob(backend, "img", config, sleep=sleeps.append)
        with pytest.raises(SegmentationTimeoutError) as exc:
            job.run()
        assert exc.value.retryable
        assert job.state == JobState.TIMED_OUT
        assert job.attempts == 3
        assert sleeps == [0.5, 0.5, 0.5]

    def test_failed(self):
        backend = FakeBackend([PROCESSING, JobStatus("failed", error="no objects")])
        job = SegmentationJob(backend, "img", sleep=lambda s: None)
        with pytest.raises(SegmentationFailedError, match="no objects"):
            job.run()
        assert job.state == JobState.FAILED

    def test_completed_without_url_fails(self):
        backend = FakeBackend([JobStatus("completed")])
        job = SegmentationJob(backend, "img", sleep=lambda s: None)
        assert job.submit() == JobState.FAILED
        with pytest.raises(SegmentationFailedError):
            job.result()

    def test_missing_prediction_id_fails(self):
        job = SegmentationJob(FakeBackend([JobStatus("processing")]), "img")
        assert job.submit() == JobState.FAILED

    def test_step_by_step(self):
        backend = FakeBackend([PROCESSING, PROCESSING])
        job = SegmentationJob(backend, "img")
        assert job.state == JobState.IDLE
        assert job.submit() == JobState.SUBMITTED
        assert job.poll_once() == JobState.POLLING
        with pytest.raises(SegmentationError):
            job.submit()
        with pytest.raises(SegmentationError):
            job.result()

    def test_poll_before_submit(self):
        job = SegmentationJob(FakeBackend([PROCESSING]), "img")
        with pytest.raises(SegmentationError):
            job.poll_once()

    def test_segment_image_decodes(self):
        backend = FakeBackend([JobStatus("completed", cleaned_image_url="u")], image=_png_bytes())
        job, buffer = segment_image(backend, "img", sleep=lambda s: None)
        assert job.state == JobState.COMPLETED
        assert (buffer.width, buffer.height) == (6, 4)
        assert buffer.alpha[1, 2] == 255

    def test_fetch_cleaned_image(self):
        buffer = fetch_cleaned_image(FakeBackend([], image=_png_bytes()), "u")
        assert buffer.alpha.sum() == 255


class TestConfig:
    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("SEGMENT_API_URL", "https://seg.example/api")
        monkeypatch.setenv("SEGMENT_API_KEY", "k")
        config = SegmentationConfig.from_env(max_attempts=5)
        assert config.endpoint == "https://seg.example/api"
        assert config.api_key == "k"
        assert config.max_attempts == 5
        assert config.poll_interval_s == 2.0

    def test_invalid_attempts(self):
        with pytest.raises(ValueError):
            SegmentationConfig(max_attempts=0)


class FakeResponse:
    def __init__(self, status_code, payload=None, text="", content=b""):
        self.status_code = status_code
        self._payload = payload
        self.text = text
        self.content = content

    def json(self):
        if self._payload is None:
            raise ValueError("no json")
        return self._payload


class FakeSession:
    def __init__(self, response):
        self.response = response
        self.calls = []

    def post(self, url, json=None, headers=None, timeout=None):
        self.calls.append((url, json, headers, timeout))
        return self.response

    def get(self, url, timeout=None):
        self.calls.append((url, None, None, timeout))
        return self.response


class TestHttpBackend:
    """JSON protocol over requests."""

    CONFIG = SegmentationConfig(endpoint="https://seg.example/api", api_key="secret")

    def test_submit_payload(self):
        session = FakeSession(FakeResponse(200, {"status": "processing", "predictionId": "p9"}))
        status = HttpSegmentationBackend(self.CONFIG, session).submit("https://img/1.jpg")
        assert status.prediction_id == "p9"
        url, payload, headers, timeout = session.calls[0]
        assert url == "https://seg.example/api"
        assert payload == {"imageUrl": "https://img/1.jpg"}
        assert headers["Authorization"] == "Bearer secret"
        assert timeout == 30.0

    def test_poll_payload(self):
        session = FakeSession(FakeResponse(200, {"status": "completed", "cleanedImageUrl": "c"}))
        status = HttpSegmentationBackend(self.CONFIG, session).poll("i", "p9")
        assert status.cleaned_image_url == "c"
        assert session.calls[0][1] == {"imageUrl": "i", "predictionId": "p9"}

    def test_server_error_retryable(self):
        session = FakeSession(FakeResponse(502, text="bad gateway"))
        with pytest.raises(SegmentationAPIError) as exc:
            HttpSegmentationBackend(self.CONFIG, session).submit("i")
        assert exc.value.retryable
        assert exc.value.status_code == 502

    def test_client_error_not_retryable(self):
        session = FakeSession(FakeResponse(400, text="bad url"))
        with pytest.raises(SegmentationAPIError) as exc:
            HttpSegmentationBackend(self.CONFIG, session).submit("i")
        assert not exc.value.retryable

    def test_malformed_payload(self):
        session = FakeSession(FakeResponse(200, {"nope": 1}))
        with pytest.raises(SegmentationAPIError):
            HttpSegmentationBackend(self.CONFIG, session).submit("i")

    def test_requires_endpoint(self):
        with pytest.raises(SegmentationAPIError):
            HttpSegmentationBackend(SegmentationConfig())

    def test_download(self):
        session = FakeSession(FakeResponse(200, content=b"png"))
        assert HttpSegmentationBackend(self.CONFIG, session).download("u") == b"png"
