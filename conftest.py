import httpx
import pytest

from core.config import Config, ProxySettings


class RecordingLogger:
    """RequestLogger that keeps every event in memory."""

    def __init__(self):
        self.requests = []
        self.retries = []
        self.responses = []
        self.errors = []

    def log_request(self, method, path, target_url):
        self.requests.append((method, path, target_url))

    def log_retry(self, attempt, delay_ms, message):
        self.retries.append((attempt, delay_ms, message))

    def log_response(self, method, path, status, *, attempts=1):
        self.responses.append((method, path, status, attempts))

    def log_error(self, status, message):
        self.errors.append((status, message))


@pytest.fixture
def recording_logger():
    return RecordingLogger()


@pytest.fixture
def config():
    """Default configuration with request file logging disabled."""
    return Config(proxy=ProxySettings(debug=False))


@pytest.fixture
def upstream_calls():
    return []


@pytest.fixture
def mock_transport(upstream_calls):
    """Build an httpx.MockTransport that records every request it sees."""

    def _create(handler):
        async def _record(request: httpx.Request):
            upstream_calls.append(request)
            result = handler(request)
            if not isinstance(result, httpx.Response):
                result = await result
            return result

        return httpx.MockTransport(_record)

    return _create


class RecordingSleep:
    """Stand-in for asyncio.sleep that records delays instead of waiting."""

    def __init__(self):
        self.delays = []

    async def __call__(self, seconds):
        self.delays.append(seconds)


@pytest.fixture
def sleep():
    return RecordingSleep()
