"""
Testes para o módulo liverelay.core.request.
"""

import datetime

import pytest

from liverelay.core.errors import InvalidAddress
from liverelay.core.request import (
    DEFAULT_TIMEOUT_BUDGET,
    DiscoveryRequest,
    is_recognized_host,
    normalize_address,
    validate_url,
)


RECOGNIZED = ("douyin.com", "tiktok.com")


def test_validate_url_valid():
    assert validate_url("https://google.com") is True
    assert validate_url("http://exemplo.com/live/1") is True


def test_validate_url_invalid():
    assert validate_url("not-a-url") is False
    assert validate_url("ftp://server.com") is False


def test_validate_url_ssrf_prevention():
    assert validate_url("http://localhost/live/1") is False
    assert validate_url("http://127.0.0.1") is False
    assert validate_url("http://192.168.1.1") is False
    assert validate_url("http://10.0.0.1") is False
    assert validate_url("http://172.16.0.1") is False


def test_is_recognized_host():
    assert is_recognized_host("live.douyin.com", RECOGNIZED) is True
    assert is_recognized_host("douyin.com", RECOGNIZED) is True
    assert is_recognized_host("notdouyin.com", RECOGNIZED) is False
    assert is_recognized_host("douyin.com.evil.net", RECOGNIZED) is False


def test_normalize_prepends_scheme():
    assert normalize_address("live.example.com/live/555") == "https://live.example.com/live/555"
    assert normalize_address("  http://live.example.com/live/555  ") == "http://live.example.com/live/555"


def test_normalize_recognized_domain_without_room_path():
    assert normalize_address("live.douyin.com/123456", RECOGNIZED) == "https://live.douyin.com/123456"


@pytest.mark.parametrize("address", [
    "",
    "   ",
    "https://example.com/",
    "example.com/channel/live",
    "mailto:someone@example.com",
    "ftp://example.com/live/1",
    "https://localhost/live/1",
    "https://10.0.0.5/live/1",
])
def test_normalize_rejects(address):
    with pytest.raises(InvalidAddress) as exc_info:
        normalize_address(address, RECOGNIZED)
    assert exc_info.value.address == address


def test_request_defaults():
    request = DiscoveryRequest("live.example.com/live/1")
    assert request.timeout_budget == DEFAULT_TIMEOUT_BUDGET


def test_request_accepts_timedelta():
    request = DiscoveryRequest("live.example.com/live/1", datetime.timedelta(seconds=30))
    assert request.timeout_budget == 30.0


@pytest.mark.parametrize("budget", [0, -1])
def test_request_rejects_non_positive_budget(budget):
    with pytest.raises(ValueError):
        DiscoveryRequest("live.example.com/live/1", budget)


def test_request_normalized_returns_copy():
    request = DiscoveryRequest("live.example.com/live/1", 30)
    normalized = request.normalized()

    assert normalized.target_url == "https://live.example.com/live/1"
    assert normalized.timeout_budget == 30.0
    assert request.target_url == "live.example.com/live/1"
    with pytest.raises(AttributeError):
        normalized.target_url = "x"
