"""
Shared fixtures for the guard test suite
"""

import base64
import json

import pytest

from rasp_guard import Guard, RequestInfo


BROWSER_HEADERS = {
    "host": "app.example.com",
    "user-agent": "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
                  "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
    "accept": "text/html,application/xhtml+xml",
    "accept-language": "en-US,en;q=0.9",
    "accept-encoding": "gzip, deflate, br",
}

BENIGN_CORPUS = [
    "John Smith",
    "alice@example.com",
    "O'Brien",
    "Mary-Jane Watson",
    "john.doe",
    "Hello, how are you today?",
    "The quick brown fox jumps over the lazy dog",
    "Please call me back at 555-0100",
    "Order #4521 shipped",
    "I love this product!",
    "São Paulo",
    "100% cotton",
    "2024-05-01",
    "Eat & sleep well",
    "I was tired; sleep came easily",
    "Rock & roll; ping me later",
    "Type your answer & press enter",
    "Fish & chips (large), 9.50",
    "Please confirm (yes or no)",
    'He said "hi"; then left',
    'The "best" option; or so they say',
]


class FakeClock:
    """Manually advanced time source, in seconds"""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


def make_jwt(header: dict, payload: dict, signature: str = "") -> str:
    """Unsigned token with an arbitrary header"""
    def segment(data: dict) -> str:
        raw = json.dumps(data, separators=(",", ":")).encode()
        return base64.urlsafe_b64encode(raw).rstrip(b"=").decode()
    return f"{segment(header)}.{segment(payload)}.{signature}"


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def quiet():
    """Config fragment disabling log output"""
    return {"logging": {"enabled": False}}


@pytest.fixture
def guard(clock, quiet):
    g = Guard(quiet, clock=clock)
    yield g
    g.close()


@pytest.fixture
def block_guard(clock, quiet):
    g = Guard({**quiet, "block_mode": True}, clock=clock)
    yield g
    g.close()


@pytest.fixture
def make_request():
    def build(**overrides):
        data = {"method": "GET", "path": "/", "headers": dict(BROWSER_HEADERS), "ip": "203.0.113.10"}
        headers = overrides.pop("headers", None)
        if headers:
            data["headers"].update(headers)
        data.update(overrides)
        return RequestInfo(**data)
    return build
