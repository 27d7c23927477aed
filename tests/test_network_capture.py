"""
Testes para o módulo liverelay.core.network_capture.
"""

import logging

import pytest
from liverelay.core.decoy import DecoyPolicy
from liverelay.core.network_capture import (
    HIGH,
    LOW,
    NetworkCapture,
    _detect_format,
    classify_media_url,
    dedupe_key,
    extract_embedded_url,
    is_blacklisted,
)


# ---------------------------------------------------------------------------
# Testes de funções auxiliares
# ---------------------------------------------------------------------------

def test_is_blacklisted_analytics():
    assert is_blacklisted("https://analytics.example.com/stream.m3u8") is True
    assert is_blacklisted("https://ad.doubleclick.net/ad.m3u8") is True
    assert is_blacklisted("https://mcs.zijieapi.com/list") is True


def test_is_blacklisted_valid_stream():
    assert is_blacklisted("https://pull-hls.example.com/stage/stream.m3u8") is False
    assert is_blacklisted("https://cdn.example.com/live/master.flv") is False


def test_classify_high_confidence():
    assert classify_media_url("https://cdn.example.com/stream.m3u8?t=1") == HIGH
    assert classify_media_url("https://cdn.example.com/STREAM.FLV") == HIGH


def test_classify_low_confidence():
    assert classify_media_url("https://cdn.example.com/video.mp4") == LOW
    assert classify_media_url("https://cdn.example.com/stream/abc") == LOW
    assert classify_media_url("https://cdn.example.com/play/xyz") == LOW


def test_classify_not_media():
    assert classify_media_url("https://cdn.example.com/image.jpg") is None
    assert classify_media_url("https://cdn.example.com/page.html") is None


def test_detect_format():
    assert _detect_format("https://cdn.example.com/stream.m3u8") == "hls"
    assert _detect_format("https://cdn.example.com/stream.flv") == "flv"
    assert _detect_format("https://cdn.example.com/video.mp4") == "mp4"
    assert _detect_format("https://cdn.example.com/stream/abc") == "unknown"


def test_dedupe_key_ignores_query():
    assert dedupe_key("https://cdn.example.com/a.m3u8?token=1") == "https://cdn.example.com/a.m3u8"


def test_extract_embedded_url_found():
    url = "https://r.example.com/jump?url=https%3A%2F%2Fcdn.example.com%2Fstream.m3u8"
    assert extract_embedded_url(url) == "https://cdn.example.com/stream.m3u8"


def test_extract_embedded_url_not_found():
    assert extract_embedded_url("https://cdn.example.com/stream.m3u8") is None
    assert extract_embedded_url("https://r.example.com/jump?url=https%3A%2F%2Fexample.com%2Fpage") is None


# ---------------------------------------------------------------------------
# Testes da classe NetworkCapture
# ---------------------------------------------------------------------------

def test_network_capture_buckets():
    capture = NetworkCapture()
    capture.handle_request("https://cdn.example.com/live.m3u8", "xhr")
    capture.handle_request("https://cdn.example.com/clip.mp4", "media")

    assert [s.url for s in capture._buckets[HIGH]] == ["https://cdn.example.com/live.m3u8"]
    assert [s.url for s in capture._buckets[LOW]] == ["https://cdn.example.com/clip.mp4"]
    assert capture.latest(HIGH).format == "hls"
    assert len(capture) == 2


def test_network_capture_best_prefers_high_confidence():
    capture = NetworkCapture()
    capture.handle_request("https://cdn.example.com/a.flv")
    capture.handle_request("https://cdn.example.com/play/b")
    assert capture.best().url == "https://cdn.example.com/a.flv"


def test_network_capture_best_falls_back_to_low():
    capture = NetworkCapture()
    capture.handle_request("https://cdn.example.com/play/b")
    assert capture.best().url == "https://cdn.example.com/play/b"


def test_network_capture_best_empty():
    assert NetworkCapture().best() is None


def test_network_capture_bucket_is_bounded():
    capture = NetworkCapture(max_entries=3)
    for i in range(5):
        capture.handle_request(f"https://cdn.example.com/{i}.m3u8")

    assert [s.url for s in capture._buckets[HIGH]] == [
        "https://cdn.example.com/2.m3u8",
        "https://cdn.example.com/3.m3u8",
        "https://cdn.example.com/4.m3u8",
    ]


def test_network_capture_repeated_url_becomes_latest():
    capture = NetworkCapture()
    capture.handle_request("https://cdn.example.com/a.m3u8?t=1")
    capture.handle_request("https://cdn.example.com/b.m3u8")
    capture.handle_request("https://cdn.example.com/a.m3u8?t=2")

    assert len(capture._buckets[HIGH]) == 2
    assert capture.latest(HIGH).url == "https://cdn.example.com/a.m3u8?t=2"


def test_network_capture_decoys_kept_apart():
    capture = NetworkCapture()
    capture.handle_request("https://cdn.example.com/douyin-pc-web/uuu_1.mp4")

    assert len(capture) == 0
    assert capture.latest_decoy().url == "https://cdn.example.com/douyin-pc-web/uuu_1.mp4"


def test_network_capture_custom_decoy_policy():
    capture = NetworkCapture(decoy_policy=DecoyPolicy(markers=("/placeholder/",)))
    capture.handle_request("https://cdn.example.com/placeholder/a.m3u8")
    capture.handle_request("https://cdn.example.com/douyin-pc-web/uuu_1.m3u8")

    assert capture.latest_decoy().url == "https://cdn.example.com/placeholder/a.m3u8"
    assert capture.latest(HIGH).url == "https://cdn.example.com/douyin-pc-web/uuu_1.m3u8"


def test_network_capture_ignores_blacklisted_and_non_media():
    capture = NetworkCapture()
    capture.handle_request("https://analytics.example.com/track.m3u8")
    capture.handle_request("https://cdn.example.com/image.jpg")
    capture.handle_request("blob:https://cdn.example.com/1234.m3u8")
    assert len(capture) == 0


def test_network_capture_ignores_documents_and_target():
    capture = NetworkCapture(ignore=["https://live.example.com/live/1"])
    capture.handle_request("https://live.example.com/live/2", "document")
    capture.handle_request("https://live.example.com/live/1?from=share", "xhr")
    assert len(capture) == 0


def test_network_capture_extracts_embedded_url():
    capture = NetworkCapture()
    url = "https://r.example.com/jump?redirect=https%3A%2F%2Fcdn.example.com%2Fstream.m3u8"
    capture.handle_request(url)

    stream = capture.latest(HIGH)
    assert stream.url == "https://cdn.example.com/stream.m3u8"
    assert stream.raw_url == url


def test_network_capture_logs_unwrapped_url(caplog):
    capture = NetworkCapture()
    url = "https://r.example.com/jump?url=https%3A%2F%2Fcdn.example.com%2Fa.flv"
    with caplog.at_level(logging.DEBUG, logger="liverelay.core.network_capture"):
        capture.handle_request(url)

    assert url in caplog.text
    assert "high, flv" in caplog.text


def test_network_capture_rejects_empty_bucket_size():
    with pytest.raises(ValueError):
        NetworkCapture(max_entries=0)
