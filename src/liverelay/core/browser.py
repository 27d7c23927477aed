"""
browser.py
==========
Sessão de navegador isolada usada por uma tentativa de descoberta.

``BrowserSession`` define as capacidades que o orquestrador precisa (navegar,
observar requisições, avaliar scripts, cookies, snapshot, eventos de ponteiro,
fechar). ``PlaywrightSession`` implementa essas capacidades com o Playwright;
os testes usam uma sessão falsa com a mesma interface.

Cada ``PlaywrightSession`` possui a sua própria instância do Playwright, do
navegador e do contexto: nada é compartilhado entre tentativas concorrentes.
"""

import json
import logging
import os
import subprocess
import sys
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, List, Optional

from playwright.async_api import (
    Browser,
    BrowserContext,
    Error as PlaywrightError,
    Page,
    Playwright,
    Request,
    Route,
    TimeoutError as PlaywrightTimeoutError,
    async_playwright,
)

from liverelay.core.errors import NavigationTimeout
from liverelay.core.fingerprint import FingerprintProfile


log = logging.getLogger(__name__)

RequestCallback = Callable[[str, Optional[str]], None]

LAUNCH_ARGS: List[str] = [
    "--no-sandbox",
    "--disable-setuid-sandbox",
    "--disable-dev-shm-usage",
    "--disable-blink-features=AutomationControlled",
    "--disable-extensions",
    "--disable-component-extensions-with-background-pages",
    "--disable-default-apps",
    "--mute-audio",
]

# Requisições de analytics/anúncios são abortadas dentro do navegador.
BLOCKED_REQUEST_KEYWORDS: List[str] = [
    "analytics", "tracker", "advertisement", "doubleclick.net",
]

# Executado antes de qualquer script da página. __FINGERPRINT__ é substituído
# pelos valores do perfil (JSON).
STEALTH_JS = """
(() => {
    const fp = __FINGERPRINT__;

    Object.defineProperty(navigator, 'webdriver', { get: () => false });
    try { delete Navigator.prototype.webdriver; } catch (e) {}

    if (!window.chrome) { window.chrome = {}; }
    window.chrome.runtime = {};

    Object.defineProperty(navigator, 'platform', { get: () => fp.platform });
    Object.defineProperty(navigator, 'languages', { get: () => fp.languages });
    Object.defineProperty(navigator, 'hardwareConcurrency', { get: () => fp.hardwareConcurrency });

    if (window.navigator.permissions && window.navigator.permissions.query) {
        const originalQuery = window.navigator.permissions.query.bind(window.navigator.permissions);
        window.navigator.permissions.query = (parameters) => (
            parameters && parameters.name === 'notifications'
                ? Promise.resolve({ state: Notification.permission })
                : originalQuery(parameters)
        );
    }

    const patchWebGL = (proto) => {
        if (!proto) return;
        const getParameter = proto.getParameter;
        proto.getParameter = function (parameter) {
            if (parameter === 37445) return fp.webglVendor;    // UNMASKED_VENDOR_WEBGL
            if (parameter === 37446) return fp.webglRenderer;  // UNMASKED_RENDERER_WEBGL
            return getParameter.apply(this, arguments);
        };
    };
    if (window.WebGLRenderingContext) patchWebGL(WebGLRenderingContext.prototype);
    if (window.WebGL2RenderingContext) patchWebGL(WebGL2RenderingContext.prototype);

    Object.defineProperty(navigator, 'plugins', {
        get: () => [
            { description: 'Portable Document Format', filename: 'internal-pdf-viewer', name: 'Chrome PDF Plugin' },
            { description: 'Portable Document Format', filename: 'internal-pdf-viewer', name: 'Chrome PDF Viewer' },
            { description: 'Portable Document Format', filename: 'internal-pdf-viewer', name: 'Microsoft Edge PDF Viewer' },
        ],
    });
})();
"""


def build_stealth_script(profile: FingerprintProfile) -> str:
    """Gera o script anti-detecção com os valores do perfil."""
    return STEALTH_JS.replace("__FINGERPRINT__", json.dumps(profile.stealth_values()))


def is_blocked_request(url: str) -> bool:
    url_lower = url.lower()
    return any(keyword in url_lower for keyword in BLOCKED_REQUEST_KEYWORDS)


# ---------------------------------------------------------------------------
# Instalação automática dos navegadores do Playwright
# ---------------------------------------------------------------------------

_browsers_checked = False


def ensure_playwright_browsers() -> None:
    """Garante que o Chromium do Playwright esteja instalado (uma vez por processo).

    No Windows não existe sudo nem apt-get; em Linux as dependências de sistema
    também são instaladas quando possível.
    """
    global _browsers_checked
    if _browsers_checked:
        return
    _browsers_checked = True

    is_windows = sys.platform.startswith("win")
    env = os.environ.copy()

    try:
        result = subprocess.run(
            [sys.executable, "-m", "playwright", "install", "chromium", "--dry-run"],
            capture_output=True, text=True,
        )
        if "browser is already installed" in result.stdout.lower():
            return
    except OSError as e:
        log.debug("Não foi possível consultar a instalação do Playwright: %s", e)

    log.info("Instalando o Chromium do Playwright (isso pode levar alguns minutos)...")

    if is_windows:
        cmd_prefix: List[str] = []
    else:
        has_sudo = subprocess.run(["which", "sudo"], capture_output=True).returncode == 0
        env["DEBIAN_FRONTEND"] = "noninteractive"
        cmd_prefix = ["sudo", "-E"] if has_sudo else []

    try:
        subprocess.run(
            cmd_prefix + [sys.executable, "-m", "playwright", "install", "chromium"],
            check=True, env=env,
        )
        if not is_windows:
            subprocess.run(
                cmd_prefix + [sys.executable, "-m", "playwright", "install-deps", "chromium"],
                check=True, env=env,
            )
        log.info("Chromium instalado com sucesso.")
    except subprocess.CalledProcessError as e:
        log.warning(
            "Erro ao instalar o Chromium (%s). Tente manualmente: "
            "python -m playwright install chromium", e,
        )


# ---------------------------------------------------------------------------
# Interface
# ---------------------------------------------------------------------------

class BrowserSession(ABC):
    """Handle exclusivo de um contexto + página. Fechado ao fim da tentativa."""

    profile: FingerprintProfile

    @abstractmethod
    def on_request(self, callback: RequestCallback) -> None:
        """Registra ``callback(url, resource_type)`` para cada requisição."""

    @abstractmethod
    async def navigate(self, url: str, timeout_ms: int) -> None:
        """Navega até ``url``; levanta NavigationTimeout ao exceder o limite."""

    @abstractmethod
    async def evaluate(self, script: str, arg: Any = None) -> Any:
        """Avalia ``script`` no contexto da página."""

    @abstractmethod
    async def cookies(self) -> List[Dict[str, Any]]:
        pass

    @abstractmethod
    async def add_cookies(self, cookies: List[Dict[str, Any]]) -> None:
        pass

    @abstractmethod
    async def content(self) -> str:
        pass

    @abstractmethod
    async def screenshot(self, path: str) -> None:
        pass

    @abstractmethod
    async def mouse_move(self, x: float, y: float, steps: int = 10) -> None:
        pass

    @abstractmethod
    async def wait(self, ms: float) -> None:
        pass

    @abstractmethod
    async def close(self) -> None:
        """Fecha a sessão. Deve ser seguro chamar mais de uma vez."""


# ---------------------------------------------------------------------------
# Implementação com Playwright
# ---------------------------------------------------------------------------

class PlaywrightSession(BrowserSession):
    """Sessão baseada em Playwright (Chromium efêmero, contexto isolado)."""

    def __init__(
        self,
        playwright: Playwright,
        browser: Browser,
        context: BrowserContext,
        page: Page,
        profile: FingerprintProfile,
    ):
        self._playwright = playwright
        self._browser = browser
        self._context = context
        self.page = page
        self.profile = profile
        self._closed = False

    @classmethod
    async def launch(
        cls,
        profile: FingerprintProfile,
        headless: bool = True,
        block_trackers: bool = True,
        auto_install: bool = True,
    ) -> "PlaywrightSession":
        """
        Cria navegador, contexto e página com o perfil informado.

        O script anti-detecção é registrado no contexto antes da criação da
        página, portanto roda antes de qualquer script do site.
        """
        if auto_install:
            ensure_playwright_browsers()

        playwright = await async_playwright().start()
        browser = None
        try:
            width, height = profile.viewport
            browser = await playwright.chromium.launch(
                headless=headless,
                args=LAUNCH_ARGS + [
                    f"--window-size={width},{height}",
                    f"--lang={profile.locale}",
                ],
            )
            context = await browser.new_context(**profile.context_options())
            await context.add_init_script(build_stealth_script(profile))
            if block_trackers:
                await context.route("**/*", _abort_blocked)
            page = await context.new_page()
        except BaseException:
            if browser is not None:
                await browser.close()
            await playwright.stop()
            raise

        session = cls(playwright, browser, context, page, profile)
        page.on("console", session._forward_console)
        return session

    @staticmethod
    def _forward_console(message) -> None:
        log.debug("console do navegador: %s", message.text)

    def on_request(self, callback: RequestCallback) -> None:
        def handler(request: Request) -> None:
            callback(request.url, request.resource_type)

        self.page.on("request", handler)

    async def navigate(self, url: str, timeout_ms: int) -> None:
        try:
            await self.page.goto(url, wait_until="domcontentloaded", timeout=timeout_ms)
        except PlaywrightTimeoutError:
            raise NavigationTimeout(url, timeout_ms) from None
        # networkidle raramente chega em salas ao vivo; é só uma espera extra
        try:
            await self.page.wait_for_load_state("networkidle", timeout=min(timeout_ms, 15000))
        except PlaywrightTimeoutError:
            log.debug("networkidle não alcançado para %s", url)

    async def evaluate(self, script: str, arg: Any = None) -> Any:
        if arg is None:
            return await self.page.evaluate(script)
        return await self.page.evaluate(script, arg)

    async def cookies(self) -> List[Dict[str, Any]]:
        return [dict(c) for c in await self._context.cookies()]

    async def add_cookies(self, cookies: List[Dict[str, Any]]) -> None:
        await self._context.add_cookies(cookies)

    async def content(self) -> str:
        return await self.page.content()

    async def screenshot(self, path: str) -> None:
        await self.page.screenshot(path=path, full_page=True)

    async def mouse_move(self, x: float, y: float, steps: int = 10) -> None:
        await self.page.mouse.move(x, y, steps=steps)

    async def wait(self, ms: float) -> None:
        await self.page.wait_for_timeout(ms)

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        for closer in (self._context.close, self._browser.close, self._playwright.stop):
            try:
                await closer()
            except PlaywrightError as e:
                log.warning("Erro ao fechar a sessão do navegador: %s", e)


async def _abort_blocked(route: Route) -> None:
    if is_blocked_request(route.request.url):
        await route.abort()
    else:
        await route.continue_()


async def launch_session(
    profile: FingerprintProfile,
    headless: bool = True,
    block_trackers: bool = True,
    auto_install: bool = True,
) -> BrowserSession:
    """Fábrica padrão de sessões usada pelo orquestrador."""
    return await PlaywrightSession.launch(
        profile,
        headless=headless,
        block_trackers=block_trackers,
        auto_install=auto_install,
    )
