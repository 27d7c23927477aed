"""
discovery.py
============
Orquestrador da descoberta de streams.

Uma tentativa de descoberta:

1. Valida/normaliza o endereço (``InvalidAddress`` antes de abrir o navegador).
2. Abre uma sessão de navegador nova, com um perfil de fingerprint novo.
3. Instala a captura passiva de rede antes da navegação.
4. Navega, simula comportamento humano e consulta as estratégias em ordem:
   DOM, (aciona o player) rede, estado global, API direta.
5. Aplica a política de decoy a cada candidato; um decoy é guardado como
   último recurso e nunca interrompe a cadeia.
6. Sem nada encontrado, salva HTML + screenshot para diagnóstico.

A sessão do navegador é fechada em todos os caminhos de saída, inclusive
quando o orçamento de tempo estoura ou a tarefa é cancelada.
"""

import asyncio
import datetime
import functools
import logging
import random
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple, Union

from playwright.async_api import Error as PlaywrightError

from liverelay.core.behavior import BehaviorSimulator
from liverelay.core.browser import BrowserSession, launch_session
from liverelay.core.decoy import DEFAULT_DECOY_POLICY, DecoyPolicy
from liverelay.core.errors import DiscoveryExhausted, DiscoveryTimeout
from liverelay.core.extractors import (
    CandidateSource,
    CandidateUrl,
    extract_api,
    extract_dom,
    extract_network,
    extract_script_state,
)
from liverelay.core.fingerprint import FingerprintGenerator, FingerprintProfile
from liverelay.core.network_capture import DEFAULT_MAX_ENTRIES, NetworkCapture
from liverelay.core.request import DEFAULT_TIMEOUT_BUDGET, DiscoveryRequest
from liverelay.plugins.generic.base import BasePlugin
from liverelay.plugins.manager import PluginManager


log = logging.getLogger(__name__)

SessionFactory = Callable[[FingerprintProfile], Awaitable[BrowserSession]]

DEFAULT_NAVIGATION_TIMEOUT = 60000  # ms
DEFAULT_SETTLE_TIME = 10.0          # segundos


# ---------------------------------------------------------------------------
# Resultado
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Diagnostics:
    """Caminhos dos artefatos salvos quando a descoberta falha (ou só achou decoy)."""
    html_snapshot: Optional[str] = None
    screenshot: Optional[str] = None


@dataclass(frozen=True)
class StreamResolution:
    """
    Resultado imutável de uma tentativa de descoberta.

    - ``ok=True, is_decoy=False``: URL genuína encontrada.
    - ``ok=True, is_decoy=True``: apenas conteúdo de teste foi encontrado.
    - ``ok=False``: nenhuma URL; ``diagnostics`` aponta os artefatos salvos.
    """
    ok: bool
    target_url: str
    url: Optional[str] = None
    is_decoy: bool = False
    source: Optional[CandidateSource] = None
    diagnostics: Optional[Diagnostics] = None

    @classmethod
    def found(cls, target_url: str, candidate: CandidateUrl) -> "StreamResolution":
        return cls(ok=True, target_url=target_url, url=candidate.value, source=candidate.source)

    @classmethod
    def decoy_only(
        cls,
        target_url: str,
        candidate: CandidateUrl,
        diagnostics: Optional[Diagnostics] = None,
    ) -> "StreamResolution":
        return cls(
            ok=True,
            target_url=target_url,
            url=candidate.value,
            is_decoy=True,
            source=candidate.source,
            diagnostics=diagnostics,
        )

    @classmethod
    def failed(cls, target_url: str, diagnostics: Diagnostics) -> "StreamResolution":
        return cls(ok=False, target_url=target_url, diagnostics=diagnostics)

    @property
    def status(self) -> str:
        """"ok", "decoy_only" ou "exhausted"."""
        if not self.ok:
            return "exhausted"
        return "decoy_only" if self.is_decoy else "ok"

    def raise_for_status(self) -> "StreamResolution":
        """Levanta DiscoveryExhausted quando nenhuma URL foi encontrada."""
        if not self.ok:
            raise DiscoveryExhausted(self.target_url, self.diagnostics)
        return self

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status,
            "ok": self.ok,
            "target_url": self.target_url,
            "url": self.url,
            "is_decoy": self.is_decoy,
            "source": self.source.value if self.source else None,
            "diagnostics": {
                "html_snapshot": self.diagnostics.html_snapshot,
                "screenshot": self.diagnostics.screenshot,
            } if self.diagnostics else None,
        }


# ---------------------------------------------------------------------------
# Orquestrador
# ---------------------------------------------------------------------------

class StreamDiscovery:
    """
    Descobre a URL de mídia de uma sala ao vivo.

    Parâmetros
    ----------
    headless : bool
        Executa o navegador sem interface gráfica (padrão: True).
    navigation_timeout : int
        Tempo limite da navegação, em milissegundos.
    settle_time : float
        Espera (segundos) após acionar o player, antes de ler a rede.
    bucket_size : int
        Quantidade de URLs guardadas em cada balde da captura de rede.
    diagnostics_dir : str ou None
        Diretório dos artefatos de diagnóstico. None desativa a gravação.
    decoy_policy : DecoyPolicy
        Predicado que identifica conteúdo de teste.
    plugin_manager : PluginManager, opcional
        Registro de adaptadores de site.
    session_factory : callable, opcional
        ``async (profile) -> BrowserSession``. Padrão: Playwright.
    simulator : BehaviorSimulator, opcional
    fingerprints : FingerprintGenerator, opcional
    auto_install : bool
        Instala o Chromium do Playwright se estiver ausente.
    block_trackers : bool
        Aborta requisições de analytics/anúncios dentro do navegador.
    """

    def __init__(
        self,
        headless: bool = True,
        navigation_timeout: int = DEFAULT_NAVIGATION_TIMEOUT,
        settle_time: float = DEFAULT_SETTLE_TIME,
        bucket_size: int = DEFAULT_MAX_ENTRIES,
        diagnostics_dir: Optional[Union[str, Path]] = "diagnostics",
        decoy_policy: DecoyPolicy = DEFAULT_DECOY_POLICY,
        plugin_manager: Optional[PluginManager] = None,
        session_factory: Optional[SessionFactory] = None,
        simulator: Optional[BehaviorSimulator] = None,
        fingerprints: Optional[FingerprintGenerator] = None,
        auto_install: bool = True,
        block_trackers: bool = True,
    ):
        self.headless = headless
        self.navigation_timeout = navigation_timeout
        self.settle_time = settle_time
        self.bucket_size = bucket_size
        self.diagnostics_dir = Path(diagnostics_dir) if diagnostics_dir else None
        self.decoy_policy = decoy_policy
        self.plugins = plugin_manager or PluginManager()
        self.session_factory = session_factory or functools.partial(
            launch_session,
            headless=headless,
            block_trackers=block_trackers,
            auto_install=auto_install,
        )
        self.simulator = simulator or BehaviorSimulator()
        self.fingerprints = fingerprints or FingerprintGenerator(random.Random())

    # ------------------------------------------------------------------
    # API pública
    # ------------------------------------------------------------------

    async def discover(self, request: Union[DiscoveryRequest, str]) -> StreamResolution:
        """
        Executa uma tentativa de descoberta.

        Levanta
        -------
        InvalidAddress
            Endereço inválido; nenhum navegador é aberto.
        NavigationTimeout
            A página não carregou dentro de ``navigation_timeout``.
        DiscoveryTimeout
            O orçamento total ``request.timeout_budget`` foi consumido.
        """
        if isinstance(request, str):
            request = DiscoveryRequest(request)
        request = request.normalized(self.plugins.recognized_domains())
        plugin = self.plugins.get_plugin_for_url(request.target_url)
        profile = self.fingerprints.generate()

        log.info(
            "Descobrindo stream de %s (plugin: %s, orçamento: %.0fs)",
            request.target_url, plugin.name, request.timeout_budget,
        )

        sessions: List[BrowserSession] = []
        try:
            return await asyncio.wait_for(
                self._attempt(request, plugin, profile, sessions),
                timeout=request.timeout_budget,
            )
        except asyncio.TimeoutError:
            raise DiscoveryTimeout(request.target_url, request.timeout_budget) from None
        finally:
            for session in sessions:
                await self._close(session)

    # ------------------------------------------------------------------
    # Internos
    # ------------------------------------------------------------------

    async def _attempt(
        self,
        request: DiscoveryRequest,
        plugin: BasePlugin,
        profile: FingerprintProfile,
        sessions: List[BrowserSession],
    ) -> StreamResolution:
        session = await self.session_factory(profile)
        sessions.append(session)
        return await self._run(session, request, plugin)

    async def _close(self, session: BrowserSession) -> None:
        try:
            await session.close()
        except Exception as e:
            log.warning("Falha ao fechar a sessão do navegador: %s", e)

    def _screen(
        self,
        candidates: List[CandidateUrl],
        fallback: Optional[CandidateUrl],
    ) -> Tuple[Optional[CandidateUrl], Optional[CandidateUrl]]:
        """Primeiro candidato genuíno e o primeiro decoy (mantido se já havia um)."""
        for candidate in candidates:
            if not self.decoy_policy.is_decoy(candidate.value):
                return candidate, fallback
            if fallback is None:
                log.debug("Decoy guardado como último recurso: %s", candidate.value)
                fallback = candidate
        return None, fallback

    def _accept(self, target_url: str, candidate: CandidateUrl) -> StreamResolution:
        log.info("Stream encontrado via %s: %s", candidate.source.value, candidate.value)
        return StreamResolution.found(target_url, candidate)

    async def _run(
        self,
        session: BrowserSession,
        request: DiscoveryRequest,
        plugin: BasePlugin,
    ) -> StreamResolution:
        target = request.target_url
        capture = NetworkCapture(
            max_entries=self.bucket_size,
            decoy_policy=self.decoy_policy,
            ignore=[target],
        )
        session.on_request(capture.handle_request)

        if plugin.cookie_domain:
            await session.add_cookies([{
                "name": session.profile.cookie_seed.get("name", "sessionid_ss"),
                "value": session.profile.cookie_seed.get("value", ""),
                "domain": plugin.cookie_domain,
                "path": "/",
            }])

        log.info("Navegando até %s", target)
        await session.navigate(target, self.navigation_timeout)

        fallback: Optional[CandidateUrl] = None

        # DOM
        await self.simulator.simulate(session)
        accepted, fallback = self._screen(await extract_dom(session), fallback)
        if accepted:
            return self._accept(target, accepted)
        log.debug("DOM sem URL de stream")

        # Aciona o player e espera a rede assentar
        try:
            await plugin.interact(session)
        except Exception as e:
            log.debug("Interação do plugin %s falhou: %s", plugin.name, e)
        if self.settle_time > 0:
            await session.wait(self.settle_time * 1000)
        await self.simulator.simulate(session)

        # Rede
        accepted, fallback = self._screen(extract_network(capture), fallback)
        if accepted:
            return self._accept(target, accepted)
        log.debug("Rede sem URL de stream (%r)", capture)

        # Estado global e scripts
        accepted, fallback = self._screen(await extract_script_state(session), fallback)
        if accepted:
            return self._accept(target, accepted)
        log.debug("Estado global sem URL de stream")

        # API direta
        room_id = plugin.room_id(target)
        endpoint = plugin.info_endpoint(target, room_id) if room_id else None
        if endpoint:
            accepted, fallback = self._screen(await extract_api(session, endpoint), fallback)
            if accepted:
                return self._accept(target, accepted)
            log.debug("API direta sem URL de stream")
        else:
            log.debug("ID da sala não encontrado em %s; consulta à API ignorada", target)

        diagnostics = await self._capture_diagnostics(session)
        if fallback is not None:
            log.warning("Apenas conteúdo de teste encontrado para %s: %s", target, fallback.value)
            return StreamResolution.decoy_only(target, fallback, diagnostics)

        log.warning("Nenhuma URL de stream encontrada para %s", target)
        return StreamResolution.failed(target, diagnostics)

    async def _capture_diagnostics(self, session: BrowserSession) -> Diagnostics:
        """Salva HTML e screenshot da página (melhor esforço)."""
        if self.diagnostics_dir is None:
            return Diagnostics()

        stamp = datetime.datetime.now().strftime("%Y%m%d-%H%M%S-%f")
        html_path: Optional[str] = None
        screenshot_path: Optional[str] = None

        try:
            self.diagnostics_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            log.warning("Não foi possível criar %s: %s", self.diagnostics_dir, e)
            return Diagnostics()

        try:
            path = self.diagnostics_dir / f"debug-{stamp}.html"
            path.write_text(await session.content(), encoding="utf-8")
            html_path = str(path)
        except (PlaywrightError, OSError) as e:
            log.warning("Falha ao salvar o HTML de diagnóstico: %s", e)

        try:
            path = self.diagnostics_dir / f"debug-{stamp}.png"
            await session.screenshot(str(path))
            screenshot_path = str(path)
        except (PlaywrightError, OSError) as e:
            log.warning("Falha ao salvar o screenshot de diagnóstico: %s", e)

        log.info("Diagnóstico salvo em %s", self.diagnostics_dir)
        return Diagnostics(html_snapshot=html_path, screenshot=screenshot_path)


async def discover(
    target_url: str,
    timeout_budget: float = DEFAULT_TIMEOUT_BUDGET,
    **kwargs,
) -> StreamResolution:
    """Atalho: ``StreamDiscovery(**kwargs).discover(...)``."""
    return await StreamDiscovery(**kwargs).discover(DiscoveryRequest(target_url, timeout_budget))
