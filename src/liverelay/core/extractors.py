"""
extractors.py
=============
Estratégias independentes para encontrar a URL de mídia numa página carregada.

1. DOM: elementos de vídeo, estado do player e scripts inline.
2. Rede: baldes de requisições observadas passivamente (``NetworkCapture``).
3. Estado global: busca recursiva, com profundidade limitada, em variáveis
   globais conhecidas; também iframes do mesmo domínio e entradas de
   ``performance``.
4. API: consulta direta ao endpoint de informações da sala, feita de dentro da
   página para reaproveitar os cookies da sessão.

Nenhuma estratégia levanta exceção. Não encontrar nada é um resultado vazio, e
erros internos (JSON malformado, frame desanexado, acesso cross-origin negado)
também viram resultado vazio.

Os candidatos são devolvidos em ordem de preferência, incluindo decoys; quem
aplica a política de decoy é o orquestrador.
"""

import functools
import json
import logging
import re
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Iterable, List, Tuple

from liverelay.core.browser import BrowserSession
from liverelay.core.network_capture import (
    HIGH,
    NetworkCapture,
    is_blacklisted,
    classify_media_url,
)


log = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Tipos
# ---------------------------------------------------------------------------

class CandidateSource(str, Enum):
    DOM = "dom"
    NETWORK = "network"
    SCRIPT_STATE = "script_state"
    API = "api"


@dataclass(frozen=True)
class CandidateUrl:
    """URL proposta por uma estratégia, ainda não validada contra decoys."""
    value: str
    source: CandidateSource
    captured_at: float = field(default_factory=time.time)


# ---------------------------------------------------------------------------
# Vocabulário
# ---------------------------------------------------------------------------

# Do mais amplo ao mais específico.
VIDEO_SELECTORS: List[str] = [
    "video",
    ".video-player video",
    ".webcast-video video",
    '[data-e2e="webcast-video"] video',
    ".xg-video video",
    ".xgplayer-video",
    ".video-player-v2 video",
    ".player-container video",
    ".live-player video",
    ".player-video video",
    "video[preload]",
    "video[autoplay]",
    "video[src]",
    ".xgplayer",
]

PLAYER_STATE_GLOBALS: List[str] = ["__PLAYER_CONFIG__", "__PLAYER_INITIAL_STATE__"]

PLAYER_STATE_PATHS: List[str] = [
    "videoInfo.url",
    "videoData.url",
    "playInfo.url",
    "videoData.sourceUrl",
    "sourceInfo.source",
    "stream.pull_url",
    "stream.default_quality.main.play_url",
    "streamData.stream_url",
    "video.play_url",
]

SCRIPT_STATE_GLOBALS: List[str] = [
    "__INIT_PROPS__",
    "__INITIAL_STATE__",
    "LIVE_DATA",
    "STREAM_CONFIG",
    "PAGE_DATA",
    "__RENDER_DATA__",
]

MEDIA_KEYS: Tuple[str, ...] = (
    "liveurl", "streamurl", "play_url", "playurl", "stream_url", "flv_url",
    "hls_url", "flv_pull_url", "hls_pull_url", "hls_pull_url_map", "pull_url",
)

MAX_WALK_DEPTH = 12
MAX_WALK_RESULTS = 25
_SNAPSHOT_DEPTH = 14

_URL_SHAPE_RE = re.compile(r"^(?:https?:)?//[^\s\"'<>]+$", re.IGNORECASE)
_SCRIPT_URL_RE = re.compile(
    r"https?://[^\s\"'<>]+?\.(?:m3u8|flv)(?:\?[^\s\"'<>]*)?",
    re.IGNORECASE,
)


# ---------------------------------------------------------------------------
# Scripts injetados
# ---------------------------------------------------------------------------

MEDIA_ELEMENTS_JS = """(selectors) => {
    const found = [];
    for (const selector of selectors) {
        let elements;
        try { elements = document.querySelectorAll(selector); } catch (e) { continue; }
        for (const element of elements) {
            const values = [element.src, element.currentSrc,
                            element.dataset ? element.dataset.src : null];
            for (const value of values) {
                if (value && typeof value === 'string') found.push(value);
            }
            if (element.querySelectorAll) {
                for (const source of element.querySelectorAll('source')) {
                    if (source.src) found.push(source.src);
                }
            }
        }
    }
    return found;
}"""

# Cópia serializável (sem funções, sem ciclos, profundidade limitada) dos globais.
SNAPSHOT_GLOBALS_JS = """({ names, maxDepth }) => {
    const seen = new WeakSet();
    const clone = (value, depth) => {
        if (value === null || value === undefined) return null;
        const kind = typeof value;
        if (kind === 'string' || kind === 'number' || kind === 'boolean') return value;
        if (kind !== 'object' || depth >= maxDepth || seen.has(value)) return null;
        seen.add(value);
        if (Array.isArray(value)) return value.slice(0, 200).map((v) => clone(v, depth + 1));
        const out = {};
        let count = 0;
        for (const key of Object.keys(value)) {
            if (count++ >= 200) break;
            let child;
            try { child = value[key]; } catch (e) { continue; }
            out[key] = clone(child, depth + 1);
        }
        return out;
    };
    const result = {};
    for (const name of names) {
        let current = window;
        for (const part of name.replace(/^window\\./, '').split('.')) {
            try { current = current == null ? undefined : current[part]; } catch (e) { current = undefined; }
        }
        if (current !== undefined && current !== null) result[name] = clone(current, 0);
    }
    return result;
}"""

INLINE_SCRIPTS_JS = """() => Array.from(document.querySelectorAll('script'))
    .map((script) => script.textContent || '')
    .filter((text) => text.includes('.m3u8') || text.includes('.flv'))"""

FRAMES_AND_RESOURCES_JS = """() => {
    const frames = [];
    for (const frame of document.querySelectorAll('iframe')) {
        try {
            const doc = frame.contentDocument || frame.contentWindow.document;
            const video = doc ? doc.querySelector('video') : null;
            if (video && (video.currentSrc || video.src)) frames.push(video.currentSrc || video.src);
        } catch (e) {
            // iframe cross-origin
        }
    }
    const resources = [];
    if (window.performance && performance.getEntriesByType) {
        for (const entry of performance.getEntriesByType('resource')) resources.push(entry.name);
    }
    return { frames, resources };
}"""

API_FETCH_JS = """async (url) => {
    try {
        const response = await fetch(url, {
            method: 'GET',
            credentials: 'include',
            headers: { 'Accept': 'application/json, text/plain, */*' },
        });
        return { status: response.status, body: await response.text() };
    } catch (e) {
        return { error: String(e) };
    }
}"""


# ---------------------------------------------------------------------------
# Utilitários
# ---------------------------------------------------------------------------

def _fail_soft(func):
    """Converte qualquer erro interno da estratégia em resultado vazio."""
    @functools.wraps(func)
    async def wrapper(*args, **kwargs):
        try:
            return await func(*args, **kwargs)
        except Exception as e:
            log.debug("Estratégia %s falhou: %s", func.__name__, e)
            return []
    return wrapper


async def _safe_evaluate(session: BrowserSession, script: str, arg: Any = None) -> Any:
    try:
        return await session.evaluate(script, arg)
    except Exception as e:
        log.debug("Avaliação na página falhou: %s", e)
        return None


def looks_like_url(value: Any) -> bool:
    return isinstance(value, str) and bool(_URL_SHAPE_RE.match(value.strip()))


def clean_candidate(value: str) -> str:
    """Remove escapes de JSON e completa URLs relativas ao protocolo."""
    value = value.strip().replace("\\/", "/").replace("\\u0026", "&").replace("\\u002F", "/")
    if value.startswith("//"):
        value = "https:" + value
    return value


def to_candidates(values: Iterable[Any], source: CandidateSource) -> List[CandidateUrl]:
    """Filtra valores com forma de URL, normaliza e remove duplicados (ordem mantida)."""
    seen = set()
    candidates: List[CandidateUrl] = []
    for value in values:
        if not isinstance(value, str):
            continue
        value = clean_candidate(value)
        if not looks_like_url(value) or value in seen:
            continue
        seen.add(value)
        candidates.append(CandidateUrl(value=value, source=source))
    return candidates


def lookup_path(obj: Any, path: str) -> Any:
    """Busca ``a.b.c`` num dicionário aninhado (índices numéricos para listas)."""
    current = obj
    for part in path.split("."):
        if isinstance(current, dict) and part in current:
            current = current[part]
        elif isinstance(current, list) and part.isdigit() and int(part) < len(current):
            current = current[int(part)]
        else:
            return None
    return current


def scan_script_text(text: str) -> List[str]:
    """URLs ``.m3u8``/``.flv`` citadas no texto de um script."""
    if not text:
        return []
    unescaped = text.replace("\\/", "/").replace("\\u0026", "&").replace("\\u002F", "/")
    return _SCRIPT_URL_RE.findall(unescaped)


def _is_media_key(key: Any) -> bool:
    return isinstance(key, str) and key.lower() in MEDIA_KEYS


def find_media_urls(
    value: Any,
    max_depth: int = MAX_WALK_DEPTH,
    limit: int = MAX_WALK_RESULTS,
) -> List[str]:
    """
    Percorre uma árvore de valores dinâmicos (None/bool/número/str/list/dict)
    procurando strings com forma de URL de mídia.

    Uma string se qualifica quando tem forma de URL e (a) algum nome de chave
    no caminho pertence ao vocabulário de mídia, ou (b) carrega uma extensão de
    streaming. As do caso (a) vêm primeiro.

    A profundidade é limitada e nós já visitados são ignorados (ciclos).
    Strings com JSON embutido são decodificadas e percorridas também.
    """
    keyed: List[str] = []
    by_extension: List[str] = []
    visited = set()

    def walk(node: Any, depth: int, under_media_key: bool) -> None:
        if len(keyed) + len(by_extension) >= limit or depth > max_depth:
            return
        if isinstance(node, str):
            text = node.strip()
            if text[:1] in ("{", "[") and len(text) < 2_000_000:
                try:
                    walk(json.loads(text), depth + 1, under_media_key)
                except ValueError:
                    pass
                return
            if not looks_like_url(clean_candidate(text)):
                return
            if under_media_key:
                keyed.append(text)
            elif classify_media_url(text) == HIGH:
                by_extension.append(text)
            return
        if isinstance(node, (dict, list)):
            if id(node) in visited:
                return
            visited.add(id(node))
            items = node.items() if isinstance(node, dict) else enumerate(node)
            for key, child in items:
                walk(child, depth + 1, under_media_key or _is_media_key(key))

    walk(value, 0, False)
    return (keyed + by_extension)[:limit]


# ---------------------------------------------------------------------------
# (a) DOM
# ---------------------------------------------------------------------------

@_fail_soft
async def extract_dom(session: BrowserSession) -> List[CandidateUrl]:
    """Elementos de vídeo, estado do player e URLs em scripts inline."""
    found: List[Any] = []

    elements = await _safe_evaluate(session, MEDIA_ELEMENTS_JS, VIDEO_SELECTORS)
    if isinstance(elements, list):
        found.extend(elements)

    state = await _safe_evaluate(
        session, SNAPSHOT_GLOBALS_JS,
        {"names": PLAYER_STATE_GLOBALS, "maxDepth": _SNAPSHOT_DEPTH},
    )
    if isinstance(state, dict):
        for name in PLAYER_STATE_GLOBALS:
            config = state.get(name)
            if config is None:
                continue
            for path in PLAYER_STATE_PATHS:
                value = lookup_path(config, path)
                if isinstance(value, str) and ("http" in value or "//" in value):
                    found.append(value)

    scripts = await _safe_evaluate(session, INLINE_SCRIPTS_JS)
    if isinstance(scripts, list):
        for text in scripts:
            if isinstance(text, str):
                found.extend(scan_script_text(text))

    return to_candidates(found, CandidateSource.DOM)


# ---------------------------------------------------------------------------
# (b) Rede
# ---------------------------------------------------------------------------

def extract_network(capture: NetworkCapture) -> List[CandidateUrl]:
    """Mais recente de alta confiança, senão de baixa; o decoy mais recente por último."""
    found = []
    best = capture.best()
    if best is not None:
        found.append(best.url)
    decoy = capture.latest_decoy()
    if decoy is not None:
        found.append(decoy.url)
    return to_candidates(found, CandidateSource.NETWORK)


# ---------------------------------------------------------------------------
# (c) Estado global e scripts
# ---------------------------------------------------------------------------

def mine_global(obj: Any) -> List[str]:
    """Atalhos conhecidos de estruturas de sala, depois a busca recursiva."""
    found: List[str] = []
    if not isinstance(obj, dict):
        return find_media_urls(obj)

    room_info = obj.get("roomInfo")
    if isinstance(room_info, dict):
        stream_url = lookup_path(room_info, "room.stream_url")
        if isinstance(stream_url, str):
            found.append(stream_url)
        elif stream_url is not None:
            found.extend(find_media_urls(stream_url))
        for key in ("liveUrl", "streamUrl"):
            if isinstance(room_info.get(key), str):
                found.append(room_info[key])

    for key, value in obj.items():
        if _is_media_key(key) and isinstance(value, str):
            found.append(value)

    found.extend(find_media_urls(obj))
    return found


@_fail_soft
async def extract_script_state(session: BrowserSession) -> List[CandidateUrl]:
    found: List[str] = []

    state = await _safe_evaluate(
        session, SNAPSHOT_GLOBALS_JS,
        {"names": SCRIPT_STATE_GLOBALS, "maxDepth": _SNAPSHOT_DEPTH},
    )
    if isinstance(state, dict):
        for name in SCRIPT_STATE_GLOBALS:
            if state.get(name) is not None:
                found.extend(mine_global(state[name]))

    scripts = await _safe_evaluate(session, INLINE_SCRIPTS_JS)
    if isinstance(scripts, list):
        for text in scripts:
            if isinstance(text, str):
                found.extend(scan_script_text(text))

    probes = await _safe_evaluate(session, FRAMES_AND_RESOURCES_JS)
    if isinstance(probes, dict):
        found.extend(u for u in probes.get("frames") or [] if isinstance(u, str))
        resources = [
            u for u in probes.get("resources") or []
            if isinstance(u, str) and classify_media_url(u) and not is_blacklisted(u)
        ]
        # a entrada mais recente primeiro
        found.extend(reversed(resources))

    return to_candidates(found, CandidateSource.SCRIPT_STATE)


# ---------------------------------------------------------------------------
# (d) Consulta direta à API
# ---------------------------------------------------------------------------

def parse_room_info(payload: Any) -> List[str]:
    """
    Extrai URLs de stream da resposta do endpoint de informações da sala.

    O formato não é documentado nem versionado: ``data.room.stream_url``
    (``flv_url``, depois ``hls_url``, depois os mapas de qualidade) e, por fim,
    a busca recursiva pelo vocabulário de mídia.
    """
    found: List[str] = []
    stream_url = lookup_path(payload, "data.room.stream_url")
    if isinstance(stream_url, dict):
        for key in ("flv_url", "hls_url"):
            if isinstance(stream_url.get(key), str):
                found.append(stream_url[key])
        for key in ("flv_pull_url", "hls_pull_url_map"):
            qualities = stream_url.get(key)
            if isinstance(qualities, dict):
                found.extend(v for v in qualities.values() if isinstance(v, str))
    found.extend(find_media_urls(payload))
    return found


@_fail_soft
async def extract_api(session: BrowserSession, endpoint: str) -> List[CandidateUrl]:
    cookies = await session.cookies()
    log.debug("Consulta direta a %s com %d cookies da sessão", endpoint, len(cookies))

    response = await session.evaluate(API_FETCH_JS, endpoint)
    if not isinstance(response, dict) or not isinstance(response.get("body"), str):
        log.debug("Resposta da API sem corpo: %r", response)
        return []
    if response.get("status") not in (None, 200):
        log.debug("API respondeu com status %s", response.get("status"))

    try:
        payload = json.loads(response["body"])
    except ValueError:
        log.debug("Resposta da API não é JSON")
        return []
    return to_candidates(parse_room_info(payload), CandidateSource.API)
