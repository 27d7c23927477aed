"""
douyin.py
=========
Plugin específico para salas ao vivo do Douyin (live.douyin.com).

Técnicas aplicadas:
- Cookie de sessão vazio (``sessionid_ss``) antes da navegação, para que a
  página trate o visitante como não autenticado em vez de automação.
- Clique nos controles do xgplayer e nos botões de "播放" (play).
- Consulta ao endpoint ``webcast/room/reflow/info`` com o ID da sala.
"""

import urllib.parse
from typing import TYPE_CHECKING, List, Optional, Tuple

from liverelay.plugins.generic.base import BasePlugin

if TYPE_CHECKING:
    from liverelay.core.browser import BrowserSession


INFO_ENDPOINT = "https://webcast.amemv.com/webcast/room/reflow/info/"


class DouyinPlugin(BasePlugin):
    """
    Plugin para o Douyin.

    Funcionalidades:
    - Reconhece ``douyin.com`` e ``tiktok.com`` (e subdomínios) sem exigir
      o segmento ``/live/`` no endereço.
    - Extrai o ID da sala de ``/live/<id>`` ou de ``live.douyin.com/<id>``.
    - Aciona o player clicando nos botões de play visíveis.
    """

    recognized_domains: Tuple[str, ...] = ("douyin.com", "tiktok.com")
    cookie_domain: Optional[str] = ".douyin.com"
    room_patterns: Tuple[str, ...] = (
        r"/live/([^/?#]+)",
        r"live\.douyin\.com/([0-9A-Za-z_-]+)",
    )

    play_selectors: List[str] = [
        ".xgplayer-play",
        ".xgplayer-start",
        ".play-button",
        '[aria-label*="播放"]',
        '[class*="play"]',
        '[role="button"]',
    ]
    container_selectors: List[str] = [".video-container", ".player-container", ".webcast-video"]

    @property
    def name(self) -> str:
        return "Douyin"

    @property
    def domain_pattern(self) -> str:
        return r"(^|\.)(douyin|tiktok)\.com$"

    async def interact(self, session: "BrowserSession") -> None:
        """Fecha diálogos de consentimento e clica nos controles de play."""
        await self.trigger_playback(session)

    def info_endpoint(self, url: str, room_id: str) -> Optional[str]:
        query = urllib.parse.urlencode({"live_id": room_id, "room_id": room_id})
        return f"{INFO_ENDPOINT}?{query}"
