"""
fingerprint.py
==============
Gera uma identidade de navegador aleatória, porém internamente consistente,
para cada tentativa de descoberta.

Cada perfil combina um user agent de um conjunto fixo com viewport, plataforma,
client hints, cabeçalhos de idioma e valores de WebGL compatíveis entre si. Um
perfil nunca é reaproveitado entre tentativas: bloqueios correlacionados por
fingerprint ficam menos prováveis.
"""

import random
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple


# ---------------------------------------------------------------------------
# Conjuntos fixos
# ---------------------------------------------------------------------------

# Apenas navegadores da família Chromium: a sessão sempre roda no Chromium do
# Playwright, que envia os próprios client hints e expõe window.chrome.
USER_AGENT_POOL: List[Dict[str, Any]] = [
    {
        "user_agent": (
            "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
            "(KHTML, like Gecko) Chrome/123.0.0.0 Safari/537.36"
        ),
        "os": "windows",
        "brand": "chrome",
        "version": "123",
    },
    {
        "user_agent": (
            "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
            "(KHTML, like Gecko) Chrome/122.0.0.0 Safari/537.36 Edg/122.0.0.0"
        ),
        "os": "windows",
        "brand": "edge",
        "version": "122",
    },
    {
        "user_agent": (
            "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
            "(KHTML, like Gecko) Chrome/123.0.0.0 Safari/537.36"
        ),
        "os": "macos",
        "brand": "chrome",
        "version": "123",
    },
    {
        "user_agent": (
            "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
            "(KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36"
        ),
        "os": "windows",
        "brand": "chrome",
        "version": "124",
    },
    {
        "user_agent": (
            "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
            "(KHTML, like Gecko) Chrome/123.0.0.0 Safari/537.36 Edg/123.0.0.0"
        ),
        "os": "macos",
        "brand": "edge",
        "version": "123",
    },
]

VIEWPORTS: Dict[str, List[Tuple[int, int]]] = {
    "windows": [(1920, 1080), (1536, 864), (1366, 768), (1600, 900)],
    "macos": [(1440, 900), (1680, 1050), (1920, 1080), (1512, 982)],
}

PLATFORMS: Dict[str, Tuple[str, str]] = {
    # os -> (navigator.platform, Sec-Ch-Ua-Platform)
    "windows": ("Win32", '"Windows"'),
    "macos": ("MacIntel", '"macOS"'),
}

WEBGL: Dict[str, List[Tuple[str, str]]] = {
    "windows": [
        ("Google Inc. (Intel)", "ANGLE (Intel, Intel(R) UHD Graphics 630 Direct3D11 vs_5_0 ps_5_0, D3D11)"),
        ("Google Inc. (NVIDIA)", "ANGLE (NVIDIA, NVIDIA GeForce GTX 1660 Direct3D11 vs_5_0 ps_5_0, D3D11)"),
        ("Google Inc. (AMD)", "ANGLE (AMD, AMD Radeon RX 580 Direct3D11 vs_5_0 ps_5_0, D3D11)"),
    ],
    "macos": [
        ("Intel Inc.", "Intel Iris Graphics 6100"),
        ("Apple Inc.", "Apple M1"),
        ("Apple Inc.", "Apple M2"),
    ],
}

# (locale, Accept-Language, timezone); o idioma imitado é o do público do site.
LOCALES: List[Tuple[str, str, str]] = [
    ("zh-CN", "zh-CN,zh;q=0.9,en;q=0.8", "Asia/Shanghai"),
    ("zh-CN", "zh-CN,zh;q=0.9", "Asia/Shanghai"),
    ("zh-TW", "zh-TW,zh;q=0.9,en-US;q=0.8,en;q=0.7", "Asia/Taipei"),
]

# Cookie de sessão vazio: o visitante parece ter passado pelo site, sem login.
COOKIE_PLACEHOLDER_NAME = "sessionid_ss"

_BRAND_NAMES = {
    "chrome": "Google Chrome",
    "edge": "Microsoft Edge",
}


# ---------------------------------------------------------------------------
# Estrutura de dados
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class FingerprintProfile:
    """Identidade completa de navegador usada por uma única tentativa."""
    user_agent: str
    brand: str                      # "chrome" | "edge"
    platform: str                   # valor de navigator.platform
    viewport: Tuple[int, int]
    device_scale_factor: float
    locale: str
    timezone: str
    headers: Dict[str, str] = field(default_factory=dict)
    webgl_vendor: str = ""
    webgl_renderer: str = ""
    hardware_concurrency: int = 8
    cookie_seed: Dict[str, str] = field(default_factory=dict)

    @property
    def languages(self) -> List[str]:
        """Lista para navigator.languages derivada do Accept-Language."""
        accept = self.headers.get("Accept-Language", self.locale)
        return [part.split(";")[0].strip() for part in accept.split(",") if part.strip()]

    def context_options(self) -> Dict[str, Any]:
        """Argumentos de ``browser.new_context`` do Playwright."""
        width, height = self.viewport
        return {
            "user_agent": self.user_agent,
            "viewport": {"width": width, "height": height},
            "device_scale_factor": self.device_scale_factor,
            "locale": self.locale,
            "timezone_id": self.timezone,
            "extra_http_headers": dict(self.headers),
            "is_mobile": False,
            "has_touch": False,
        }

    def stealth_values(self) -> Dict[str, Any]:
        """Valores injetados no script anti-detecção."""
        return {
            "platform": self.platform,
            "languages": self.languages,
            "webglVendor": self.webgl_vendor,
            "webglRenderer": self.webgl_renderer,
            "hardwareConcurrency": self.hardware_concurrency,
        }


# ---------------------------------------------------------------------------
# Gerador
# ---------------------------------------------------------------------------

def _client_hint_headers(entry: Dict[str, Any], os_name: str) -> Dict[str, str]:
    """Client hints coerentes com a marca e a plataforma do user agent."""
    brand = entry["brand"]
    if brand not in _BRAND_NAMES:
        return {}
    version = entry["version"]
    return {
        "Sec-Ch-Ua": (
            f'"Chromium";v="{version}", "{_BRAND_NAMES[brand]}";v="{version}", '
            '"Not(A:Brand";v="24"'
        ),
        "Sec-Ch-Ua-Mobile": "?0",
        "Sec-Ch-Ua-Platform": PLATFORMS[os_name][1],
    }


class FingerprintGenerator:
    """
    Gerador de perfis. Função pura de uma fonte aleatória interna.

    Parâmetros
    ----------
    rng : random.Random, opcional
        Fonte aleatória (útil para testes determinísticos).
    """

    def __init__(self, rng: Optional[random.Random] = None):
        self.rng = rng or random.Random()

    def generate(self) -> FingerprintProfile:
        rng = self.rng
        entry = rng.choice(USER_AGENT_POOL)
        os_name = entry["os"]

        viewport = rng.choice(VIEWPORTS[os_name])
        scale = 2.0 if os_name == "macos" and rng.random() < 0.5 else 1.0
        vendor, renderer = rng.choice(WEBGL[os_name])
        locale, accept_language, timezone = rng.choice(LOCALES)

        # Accept e Sec-Fetch-* ficam a cargo do navegador, que os ajusta por
        # tipo de requisição.
        headers = {"Accept-Language": accept_language}
        headers.update(_client_hint_headers(entry, os_name))

        return FingerprintProfile(
            user_agent=entry["user_agent"],
            brand=entry["brand"],
            platform=PLATFORMS[os_name][0],
            viewport=viewport,
            device_scale_factor=scale,
            locale=locale,
            timezone=timezone,
            headers=headers,
            webgl_vendor=vendor,
            webgl_renderer=renderer,
            hardware_concurrency=rng.choice([4, 8, 12, 16]),
            cookie_seed={"name": COOKIE_PLACEHOLDER_NAME, "value": ""},
        )


def generate_profile(rng: Optional[random.Random] = None) -> FingerprintProfile:
    """Atalho: gera um perfil novo com um gerador descartável."""
    return FingerprintGenerator(rng).generate()
