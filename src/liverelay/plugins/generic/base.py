import re
import urllib.parse
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, List, Optional, Tuple

if TYPE_CHECKING:
    from liverelay.core.browser import BrowserSession


# Clica em diálogos de consentimento e controles de play visíveis; retorna
# quantos elementos foram clicados.
PLAYBACK_TRIGGER_JS = """({ consentSelectors, playSelectors, containerSelectors }) => {
    const visible = (el) => el.offsetWidth > 0 && el.offsetHeight > 0;
    const clickAll = (selectors) => {
        let clicked = 0;
        for (const selector of selectors) {
            let elements;
            try { elements = document.querySelectorAll(selector); } catch (e) { continue; }
            for (const el of elements) {
                if (visible(el)) { el.click(); clicked++; }
            }
        }
        return clicked;
    };
    let total = clickAll(consentSelectors) + clickAll(playSelectors);
    for (const selector of containerSelectors) {
        const container = document.querySelector(selector);
        if (container) { container.click(); total++; break; }
    }
    return total;
}"""


class BasePlugin(ABC):
    """Adaptador de site: sabe acionar o player e onde consultar a sala."""

    # Domínios cujas URLs dispensam o segmento /live/ na validação.
    recognized_domains: Tuple[str, ...] = ()
    # Domínio do cookie de sessão vazio (None = não definir).
    cookie_domain: Optional[str] = None
    room_patterns: Tuple[str, ...] = (r"/live/([^/?#]+)",)

    consent_selectors: List[str] = [
        '[class*="agree"]', '[class*="consent"]', '[class*="allow"]', '[class*="accept"]',
    ]
    play_selectors: List[str] = [
        'button[aria-label="Play"]',
        ".vjs-big-play-button",
        ".play-button",
        ".jw-display-icon-container",
        ".play-icon",
    ]
    container_selectors: List[str] = [".video-container", ".player-container", "#player"]

    @property
    @abstractmethod
    def name(self) -> str:
        """Nome do plugin"""
        pass

    @property
    @abstractmethod
    def domain_pattern(self) -> str:
        """Regex para casar o domínio"""
        pass

    @abstractmethod
    async def interact(self, session: "BrowserSession") -> None:
        """Ações que disparam a reprodução (consentimento, play)"""
        pass

    def room_id(self, url: str) -> Optional[str]:
        """Identificador da sala extraído da URL, ou None."""
        for pattern in self.room_patterns:
            match = re.search(pattern, url or "")
            if match:
                return match.group(1)
        return None

    def info_endpoint(self, url: str, room_id: str) -> Optional[str]:
        """Endpoint de informações da sala (mesma origem da página)."""
        parsed = urllib.parse.urlparse(url)
        if not parsed.scheme or not parsed.netloc:
            return None
        query = urllib.parse.urlencode({"live_id": room_id, "room_id": room_id})
        return f"{parsed.scheme}://{parsed.netloc}/webcast/room/reflow/info/?{query}"

    async def trigger_playback(self, session: "BrowserSession") -> int:
        """Clica nos controles de consentimento/play; retorna quantos cliques."""
        clicked = await session.evaluate(PLAYBACK_TRIGGER_JS, {
            "consentSelectors": self.consent_selectors,
            "playSelectors": self.play_selectors,
            "containerSelectors": self.container_selectors,
        })
        return clicked if isinstance(clicked, int) else 0


class GenericPlugin(BasePlugin):
    @property
    def name(self) -> str:
        return "Generic Extractor"

    @property
    def domain_pattern(self) -> str:
        return r".*"

    async def interact(self, session: "BrowserSession") -> None:
        await self.trigger_playback(session)
