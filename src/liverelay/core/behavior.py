"""
behavior.py
===========
Simulação de comportamento humano sobre a página: movimentos de ponteiro,
rolagem para baixo e de volta, e hover sobre o primeiro contêiner de vídeo
visível, com pausas curtas e aleatórias entre os passos.

Serve apenas para acionar recursos carregados sob demanda. Não altera nenhum
estado da descoberta e nunca passa do limite total de tempo configurado.
"""

import asyncio
import logging
import random
from typing import List, Optional, Tuple

from playwright.async_api import Error as PlaywrightError

from liverelay.core.browser import BrowserSession


log = logging.getLogger(__name__)

# Contêineres de player, do mais genérico ao mais específico.
MEDIA_CONTAINER_SELECTORS: List[str] = [
    "video",
    ".player-container",
    ".video-player",
    ".webcast-video",
    ".xgplayer",
]

SCROLL_JS = "(y) => window.scrollTo(0, y)"

HOVER_JS = """(selectors) => {
    for (const selector of selectors) {
        let elements;
        try { elements = document.querySelectorAll(selector); } catch (e) { continue; }
        for (const element of elements) {
            const rect = element.getBoundingClientRect();
            if (rect.width <= 0 || rect.height <= 0) continue;
            const event = new MouseEvent('mouseover', {
                view: window,
                bubbles: true,
                cancelable: true,
                clientX: rect.left + rect.width / 2,
                clientY: rect.top + rect.height / 2,
            });
            element.dispatchEvent(event);
            return selector;
        }
    }
    return null;
}"""


class BehaviorSimulator:
    """
    Parâmetros
    ----------
    rng : random.Random, opcional
        Fonte aleatória das posições e pausas.
    moves : int
        Quantidade de movimentos de ponteiro por simulação.
    min_delay, max_delay : float
        Intervalo (segundos) das pausas entre passos. O intervalo é reduzido
        quando necessário para que todas as pausas somadas caibam em
        ``PAUSE_SHARE`` de ``max_total``.
    max_total : float
        Limite de tempo (segundos) de uma simulação inteira.
    """

    # Fração do limite total reservada às pausas; o resto cobre os eventos.
    PAUSE_SHARE = 0.75

    def __init__(
        self,
        rng: Optional[random.Random] = None,
        moves: int = 5,
        min_delay: float = 0.5,
        max_delay: float = 1.5,
        max_total: float = 8.0,
    ):
        self.rng = rng or random.Random()
        self.moves = moves
        self.min_delay = min_delay
        self.max_delay = max_delay
        self.max_total = max_total

    async def simulate(self, session: BrowserSession) -> None:
        try:
            await asyncio.wait_for(self._run(session), timeout=self.max_total)
        except asyncio.TimeoutError:
            log.debug("Simulação interrompida após %.1fs", self.max_total)
        except PlaywrightError as e:
            log.debug("Simulação de comportamento falhou: %s", e)

    def delay_bounds(self) -> Tuple[float, float]:
        """Intervalo efetivo das pausas (moves + 2 pausas por simulação)."""
        pauses = self.moves + 2
        ceiling = min(self.max_delay, self.max_total * self.PAUSE_SHARE / pauses)
        return min(self.min_delay, ceiling), ceiling

    async def _pause(self) -> None:
        low, high = self.delay_bounds()
        delay = self.rng.uniform(low, high)
        if delay > 0:
            await asyncio.sleep(delay)

    async def _run(self, session: BrowserSession) -> None:
        width, height = session.profile.viewport

        for _ in range(self.moves):
            x = self.rng.randint(0, max(width - 1, 0))
            y = self.rng.randint(0, max(height - 1, 0))
            await session.mouse_move(x, y, steps=10)
            await self._pause()

        await session.evaluate(SCROLL_JS, self.rng.randint(100, 500))
        await self._pause()
        await session.evaluate(SCROLL_JS, 0)
        await self._pause()

        hovered = await session.evaluate(HOVER_JS, MEDIA_CONTAINER_SELECTORS)
        if hovered:
            log.debug("Hover disparado sobre %s", hovered)


async def simulate(session: BrowserSession, rng: Optional[random.Random] = None) -> None:
    """Atalho com os parâmetros padrão."""
    await BehaviorSimulator(rng=rng).simulate(session)
