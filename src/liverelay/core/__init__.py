"""
liverelay.core
==============
Módulos principais do liverelay.

- discovery: Orquestrador da descoberta (StreamDiscovery, StreamResolution).
- extractors: Estratégias DOM, rede, estado global e API direta.
- network_capture: Captura e filtragem de tráfego de rede.
- browser: Sessão de navegador (Playwright) e instalação do Chromium.
- fingerprint: Perfis de fingerprint aleatórios e consistentes.
- behavior: Simulação de comportamento humano.
- decoy: Política de rejeição de conteúdo de teste.
- transcode: Sessões de transcodificação com ffmpeg.
"""

from liverelay.core.browser import BrowserSession, PlaywrightSession, ensure_playwright_browsers
from liverelay.core.decoy import DecoyPolicy, decoy
from liverelay.core.discovery import Diagnostics, StreamDiscovery, StreamResolution, discover
from liverelay.core.errors import (
    DiscoveryError,
    DiscoveryExhausted,
    DiscoveryTimeout,
    InvalidAddress,
    LiveRelayError,
    NavigationTimeout,
    SessionAlreadyActive,
    TranscodeError,
    TranscodeRuntimeError,
    TranscodeUnavailable,
)
from liverelay.core.extractors import CandidateSource, CandidateUrl
from liverelay.core.fingerprint import FingerprintGenerator, FingerprintProfile
from liverelay.core.network_capture import CapturedStream, NetworkCapture
from liverelay.core.request import DiscoveryRequest, normalize_address
from liverelay.core.transcode import (
    PassthroughResult,
    SessionState,
    TranscodeHandle,
    TranscodeManager,
    TranscodeProfile,
    new_session_id,
)

__all__ = [
    "BrowserSession",
    "PlaywrightSession",
    "ensure_playwright_browsers",
    "DecoyPolicy",
    "decoy",
    "Diagnostics",
    "StreamDiscovery",
    "StreamResolution",
    "discover",
    "LiveRelayError",
    "DiscoveryError",
    "InvalidAddress",
    "NavigationTimeout",
    "DiscoveryTimeout",
    "DiscoveryExhausted",
    "TranscodeError",
    "TranscodeUnavailable",
    "TranscodeRuntimeError",
    "SessionAlreadyActive",
    "CandidateSource",
    "CandidateUrl",
    "FingerprintGenerator",
    "FingerprintProfile",
    "CapturedStream",
    "NetworkCapture",
    "DiscoveryRequest",
    "normalize_address",
    "PassthroughResult",
    "SessionState",
    "TranscodeHandle",
    "TranscodeManager",
    "TranscodeProfile",
    "new_session_id",
]
