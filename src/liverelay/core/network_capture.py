"""
network_capture.py
==================
Observação passiva das requisições feitas pela página durante a descoberta.

As URLs com aparência de mídia são separadas em dois baldes:

- alta confiança: extensões explícitas de streaming (``.m3u8``, ``.flv``);
- baixa confiança: caminhos genéricos de mídia (``.mp4``, ``/stream/``,
  ``/live/``, ``/play/``).

Cada balde guarda apenas as N entradas mais recentes. URLs de rastreamento e
publicidade são descartadas; decoys vão para um balde próprio, usado apenas
como último recurso.
"""

import logging
import time
import urllib.parse
from collections import deque
from dataclasses import dataclass
from typing import Deque, Iterable, List, Optional, Set

from liverelay.core.decoy import DEFAULT_DECOY_POLICY, DecoyPolicy


log = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Constantes de filtragem
# ---------------------------------------------------------------------------

BLACKLIST_KEYWORDS: List[str] = [
    # Analytics e rastreamento
    "analytics", "telemetry", "tracker", "heartbeat", "hotjar",
    "scorecardresearch", "mixpanel", "amplitude", "newrelic", "sentry.io",
    # Publicidade
    "doubleclick", "googleads", "advertisement", "adnxs", "pubmatic",
    # Logs e diagnóstico
    "/log/", "beacon", "/monitor_browser/", "mcs.zijieapi.com",
]

HIGH_CONFIDENCE_MARKERS: List[str] = [".m3u8", ".flv"]
LOW_CONFIDENCE_MARKERS: List[str] = [".mp4", "/stream/", "/live/", "/play/"]

# Parâmetros de query string que podem conter a URL real do stream embutida.
REDIRECT_PARAMS: List[str] = [
    "url", "link", "target", "redir", "redirect", "src",
]

# Tipos de recurso que nunca são mídia (a própria página, folhas de estilo...).
IGNORED_RESOURCE_TYPES: Set[str] = {"document", "stylesheet", "image", "font"}

DEFAULT_MAX_ENTRIES = 50

HIGH = "high"
LOW = "low"


@dataclass
class CapturedStream:
    """URL de mídia observada na rede."""
    url: str
    format: str          # "hls" | "flv" | "mp4" | "unknown"
    confidence: str      # "high" | "low"
    captured_at: float
    raw_url: str         # URL original (antes de extrair URLs embutidas)


# ---------------------------------------------------------------------------
# Funções de classificação
# ---------------------------------------------------------------------------

def _detect_format(url: str) -> str:
    url_lower = url.lower()
    if ".m3u8" in url_lower:
        return "hls"
    if ".flv" in url_lower:
        return "flv"
    if ".mp4" in url_lower:
        return "mp4"
    return "unknown"


def is_blacklisted(url: str) -> bool:
    url_lower = url.lower()
    return any(keyword in url_lower for keyword in BLACKLIST_KEYWORDS)


def classify_media_url(url: str) -> Optional[str]:
    """Retorna "high", "low" ou None para URLs que não parecem mídia."""
    url_lower = url.lower()
    if any(marker in url_lower for marker in HIGH_CONFIDENCE_MARKERS):
        return HIGH
    if any(marker in url_lower for marker in LOW_CONFIDENCE_MARKERS):
        return LOW
    return None


def dedupe_key(url: str) -> str:
    """Chave de deduplicação: esquema + host + caminho (tokens são ignorados)."""
    try:
        parsed = urllib.parse.urlparse(url)
        return urllib.parse.urlunparse((parsed.scheme, parsed.netloc, parsed.path, "", "", ""))
    except ValueError:
        return url


def extract_embedded_url(url: str) -> Optional[str]:
    """
    Procura uma URL de mídia embutida nos parâmetros de query string (ex.:
    URLs de redirecionamento ou de rastreamento). Retorna None se não houver.
    """
    try:
        params = urllib.parse.parse_qs(urllib.parse.urlparse(url).query)
    except ValueError:
        return None
    for param in REDIRECT_PARAMS:
        for candidate in params.get(param, []):
            if candidate.startswith(("http://", "https://")) and classify_media_url(candidate) == HIGH:
                return candidate
    return None


# ---------------------------------------------------------------------------
# Classe principal
# ---------------------------------------------------------------------------

class NetworkCapture:
    """
    Registro passivo de requisições de mídia.

    Uso típico
    ----------
    >>> capture = NetworkCapture(ignore=[target_url])
    >>> session.on_request(capture.handle_request)
    >>> # ... navegar e interagir com a página ...
    >>> capture.latest(HIGH)
    """

    def __init__(
        self,
        max_entries: int = DEFAULT_MAX_ENTRIES,
        decoy_policy: DecoyPolicy = DEFAULT_DECOY_POLICY,
        ignore: Iterable[str] = (),
    ):
        if max_entries < 1:
            raise ValueError("max_entries deve ser >= 1")
        self.max_entries = max_entries
        self.decoy_policy = decoy_policy
        self._ignore = {dedupe_key(u) for u in ignore}
        self._buckets = {
            HIGH: deque(maxlen=max_entries),
            LOW: deque(maxlen=max_entries),
        }
        self._decoys: Deque[CapturedStream] = deque(maxlen=max_entries)

    def handle_request(self, url: str, resource_type: Optional[str] = None) -> None:
        """Callback registrado via ``session.on_request``."""
        if resource_type in IGNORED_RESOURCE_TYPES:
            return
        self._process_url(url)

    def _process_url(self, raw_url: str) -> None:
        embedded = extract_embedded_url(raw_url)
        url = embedded or raw_url

        if not url.lower().startswith(("http://", "https://")):
            return
        confidence = classify_media_url(url)
        if confidence is None or is_blacklisted(url):
            return
        key = dedupe_key(url)
        if key in self._ignore:
            return

        stream = CapturedStream(
            url=url,
            format=_detect_format(url),
            confidence=confidence,
            captured_at=time.time(),
            raw_url=raw_url,
        )
        is_decoy = self.decoy_policy.is_decoy(url)
        target = self._decoys if is_decoy else self._buckets[confidence]
        if embedded:
            log.debug("URL de mídia extraída de %s", stream.raw_url)
        log.debug(
            "Mídia capturada [%s, %s%s]: %s",
            stream.confidence, stream.format, ", decoy" if is_decoy else "", stream.url,
        )

        # Uma URL repetida passa a ser a mais recente
        for existing in list(target):
            if dedupe_key(existing.url) == key:
                target.remove(existing)
        target.append(stream)

    def latest(self, confidence: str) -> Optional[CapturedStream]:
        bucket = self._buckets[confidence]
        return bucket[-1] if bucket else None

    def latest_decoy(self) -> Optional[CapturedStream]:
        return self._decoys[-1] if self._decoys else None

    def best(self) -> Optional[CapturedStream]:
        """Mais recente de alta confiança; senão, mais recente de baixa confiança."""
        return self.latest(HIGH) or self.latest(LOW)

    def __len__(self) -> int:
        return sum(len(bucket) for bucket in self._buckets.values())

    def __repr__(self) -> str:
        return (
            f"NetworkCapture(high={len(self._buckets[HIGH])}, "
            f"low={len(self._buckets[LOW])}, decoys={len(self._decoys)})"
        )
