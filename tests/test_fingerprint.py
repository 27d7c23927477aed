"""
Testes para o módulo liverelay.core.fingerprint.
"""

import random

import pytest

from liverelay.core.fingerprint import (
    PLATFORMS,
    USER_AGENT_POOL,
    VIEWPORTS,
    FingerprintGenerator,
    generate_profile,
)


def _profiles(count=50, seed=3):
    generator = FingerprintGenerator(random.Random(seed))
    return [generator.generate() for _ in range(count)]


def test_user_agent_comes_from_pool():
    pool = {entry["user_agent"] for entry in USER_AGENT_POOL}
    for profile in _profiles():
        assert profile.user_agent in pool


def test_profile_is_internally_consistent():
    for profile in _profiles():
        if "Windows" in profile.user_agent:
            os_name = "windows"
        else:
            os_name = "macos"
        assert profile.platform == PLATFORMS[os_name][0]
        assert profile.viewport in VIEWPORTS[os_name]
        if os_name == "windows":
            assert profile.device_scale_factor == 1.0


def test_pool_matches_the_chromium_engine():
    assert {entry["brand"] for entry in USER_AGENT_POOL} <= {"chrome", "edge"}
    for entry in USER_AGENT_POOL:
        assert "Chrome/" in entry["user_agent"]
        assert "Firefox" not in entry["user_agent"]


def test_client_hints_match_user_agent():
    for profile in _profiles():
        hints = profile.headers["Sec-Ch-Ua"]
        version = profile.user_agent.split("Chrome/")[1].split(".")[0]
        assert f'"Chromium";v="{version}"' in hints
        if profile.brand == "edge":
            assert "Microsoft Edge" in hints
        expected_platform = '"Windows"' if "Windows" in profile.user_agent else '"macOS"'
        assert profile.headers["Sec-Ch-Ua-Platform"] == expected_platform


def test_headers_match_locale():
    for profile in _profiles():
        assert profile.headers["Accept-Language"].startswith(profile.locale)
        assert profile.languages[0] == profile.locale
        assert "Accept" not in profile.headers
        assert not any(name.startswith("Sec-Fetch-") for name in profile.headers)


def test_cookie_placeholder_is_unauthenticated():
    profile = generate_profile(random.Random(1))
    assert profile.cookie_seed == {"name": "sessionid_ss", "value": ""}


def test_same_seed_same_profile():
    assert generate_profile(random.Random(42)) == generate_profile(random.Random(42))


def test_profiles_vary():
    assert len({p.user_agent for p in _profiles(count=100)}) > 1


def test_context_options():
    profile = generate_profile(random.Random(5))
    options = profile.context_options()

    width, height = profile.viewport
    assert options["viewport"] == {"width": width, "height": height}
    assert options["user_agent"] == profile.user_agent
    assert options["timezone_id"] == profile.timezone
    assert options["extra_http_headers"] == profile.headers
    assert options["extra_http_headers"] is not profile.headers


def test_stealth_values():
    profile = generate_profile(random.Random(5))
    values = profile.stealth_values()
    assert values["platform"] == profile.platform
    assert values["webglVendor"] == profile.webgl_vendor
    assert values["hardwareConcurrency"] in (4, 8, 12, 16)


def test_profile_is_frozen():
    profile = generate_profile(random.Random(5))
    with pytest.raises(AttributeError):
        profile.user_agent = "outro"
