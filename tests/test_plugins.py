import pytest

from conftest import FakeSession
from liverelay.plugins.generic.base import PLAYBACK_TRIGGER_JS, BasePlugin, GenericPlugin
from liverelay.plugins.manager import PluginManager
from liverelay.plugins.specific_sites.douyin import DouyinPlugin


class MockPlugin(BasePlugin):
    recognized_domains = ("mock.com",)

    @property
    def name(self) -> str:
        return "Mock Plugin"

    @property
    def domain_pattern(self) -> str:
        return r"mock\.com"

    async def interact(self, session) -> None:
        pass


def test_plugin_manager_registration():
    manager = PluginManager()
    mock_plugin = MockPlugin()
    manager.register_plugin(mock_plugin)
    assert mock_plugin in manager.plugins


def test_plugin_manager_get_plugin_for_url():
    manager = PluginManager(register_defaults=False)
    mock_plugin = MockPlugin()
    manager.register_plugin(mock_plugin)

    # Deve retornar o mock_plugin para o domínio mock.com
    plugin = manager.get_plugin_for_url("https://mock.com/video")
    assert plugin == mock_plugin

    # Deve retornar o GenericPlugin para outros domínios
    plugin = manager.get_plugin_for_url("https://outro.com/video")
    assert isinstance(plugin, GenericPlugin)


def test_douyin_registered_by_default():
    manager = PluginManager()
    assert isinstance(manager.get_plugin_for_url("https://live.douyin.com/123"), DouyinPlugin)
    assert isinstance(manager.get_plugin_for_url("https://www.TikTok.com/live/abc"), DouyinPlugin)
    assert isinstance(manager.get_plugin_for_url("https://notdouyin.com/live/1"), GenericPlugin)


@pytest.mark.parametrize("url", [
    "https://x.example.com/live/1?from=douyin.com",
    "https://example.com/live/douyin.com",
    "https://douyin.com.evil.net/live/1",
])
def test_douyin_is_selected_by_host_only(url):
    assert isinstance(PluginManager().get_plugin_for_url(url), GenericPlugin)


def test_recognized_domains_without_repeats():
    manager = PluginManager()
    manager.register_plugin(MockPlugin())
    manager.register_plugin(DouyinPlugin())
    assert manager.recognized_domains() == ("douyin.com", "tiktok.com", "mock.com")


@pytest.mark.parametrize("url, expected", [
    ("https://live.example.com/live/555", "555"),
    ("https://live.example.com/live/abc?x=1", "abc"),
    ("https://live.example.com/channel", None),
])
def test_generic_room_id(url, expected):
    assert GenericPlugin().room_id(url) == expected


def test_douyin_room_id():
    plugin = DouyinPlugin()
    assert plugin.room_id("https://live.douyin.com/7312345") == "7312345"
    assert plugin.room_id("https://www.douyin.com/live/98765") == "98765"


def test_generic_info_endpoint_is_same_origin():
    endpoint = GenericPlugin().info_endpoint("https://live.example.com/live/555", "555")
    assert endpoint == "https://live.example.com/webcast/room/reflow/info/?live_id=555&room_id=555"


def test_douyin_info_endpoint():
    endpoint = DouyinPlugin().info_endpoint("https://live.douyin.com/42", "42")
    assert endpoint.startswith("https://webcast.amemv.com/webcast/room/reflow/info/?")
    assert "live_id=42" in endpoint
    assert "room_id=42" in endpoint


def test_douyin_sets_placeholder_cookie_domain():
    assert DouyinPlugin().cookie_domain == ".douyin.com"
    assert GenericPlugin().cookie_domain is None


@pytest.mark.asyncio
async def test_trigger_playback_passes_selectors():
    session = FakeSession(responses={PLAYBACK_TRIGGER_JS: 3})
    plugin = DouyinPlugin()

    assert await plugin.trigger_playback(session) == 3

    script, arg = session.evaluated_args[0]
    assert script == PLAYBACK_TRIGGER_JS
    assert ".xgplayer-play" in arg["playSelectors"]
    assert arg["containerSelectors"] == plugin.container_selectors


@pytest.mark.asyncio
async def test_trigger_playback_without_clicks():
    session = FakeSession()
    assert await GenericPlugin().trigger_playback(session) == 0


@pytest.mark.asyncio
async def test_generic_interact_triggers_playback():
    session = FakeSession(responses={PLAYBACK_TRIGGER_JS: 1})
    await GenericPlugin().interact(session)
    assert session.evaluated == [PLAYBACK_TRIGGER_JS]
