"""
request.py
==========
Validação e normalização do endereço de uma sala ao vivo.

Regras:
- Sem esquema, ``https://`` é acrescentado.
- Hosts de domínios reconhecidos (fornecidos pelos plugins de site) são aceitos
  como estão; qualquer outro host precisa de um segmento ``/live/`` no caminho.
- Endereços locais/privados são recusados (prevenção de SSRF).
"""

import datetime
import ipaddress
import re
import urllib.parse
from dataclasses import dataclass, replace
from typing import Iterable, Optional, Union

import validators

from liverelay.core.errors import InvalidAddress


DEFAULT_TIMEOUT_BUDGET = 180.0  # segundos

ROOM_PATH_RE = re.compile(r"/live/[^/?#]+")
_SCHEME_RE = re.compile(r"^[a-zA-Z][a-zA-Z0-9+.-]*://")


def _is_private_host(host: str) -> bool:
    if host in ("localhost", "localhost.localdomain") or host.endswith(".localhost"):
        return True
    try:
        ip = ipaddress.ip_address(host)
    except ValueError:
        return False
    return ip.is_private or ip.is_loopback or ip.is_link_local or ip.is_unspecified


def validate_url(url: str) -> bool:
    """Valida se a URL é segura e bem formatada."""
    if not validators.url(url):
        return False
    if not url.lower().startswith(("http://", "https://")):
        return False
    host = (urllib.parse.urlparse(url).hostname or "").lower()
    if not host or _is_private_host(host):
        return False
    return True


def is_recognized_host(host: str, recognized_domains: Iterable[str]) -> bool:
    """True se ``host`` for um dos domínios reconhecidos ou subdomínio deles."""
    host = host.lower().rstrip(".")
    for domain in recognized_domains:
        domain = domain.lower().lstrip(".")
        if host == domain or host.endswith("." + domain):
            return True
    return False


def normalize_address(address: str, recognized_domains: Iterable[str] = ()) -> str:
    """
    Normaliza o endereço de uma sala ao vivo.

    Parâmetros
    ----------
    address : str
        Endereço informado pelo usuário (com ou sem esquema).
    recognized_domains : iterable de str
        Domínios cujas URLs dispensam o segmento ``/live/``.

    Retorna
    -------
    str
        URL absoluta e normalizada.

    Levanta
    -------
    InvalidAddress
        Quando nenhum caminho de sala ao vivo pode ser inferido.
    """
    raw = (address or "").strip()
    if not raw:
        raise InvalidAddress(address, "endereço vazio")

    if not _SCHEME_RE.match(raw):
        raw = "https://" + raw.lstrip("/")

    parsed = urllib.parse.urlparse(raw)
    if parsed.scheme.lower() not in ("http", "https"):
        raise InvalidAddress(address, "esquema não suportado")

    host = (parsed.hostname or "").lower()
    if not host:
        raise InvalidAddress(address, "host ausente")

    if not is_recognized_host(host, recognized_domains) and not ROOM_PATH_RE.search(parsed.path):
        raise InvalidAddress(address, "o endereço não aponta para uma sala ao vivo (/live/...)")

    if not validate_url(raw):
        raise InvalidAddress(address, "URL inválida ou insegura")

    return raw


# ---------------------------------------------------------------------------
# Requisição de descoberta
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class DiscoveryRequest:
    """Endereço alvo + orçamento total de tempo (em segundos) de uma tentativa."""
    target_url: str
    timeout_budget: Union[float, datetime.timedelta] = DEFAULT_TIMEOUT_BUDGET

    def __post_init__(self):
        budget = self.timeout_budget
        if isinstance(budget, datetime.timedelta):
            budget = budget.total_seconds()
        budget = float(budget)
        if budget <= 0:
            raise ValueError("timeout_budget deve ser positivo")
        object.__setattr__(self, "timeout_budget", budget)

    def normalized(self, recognized_domains: Optional[Iterable[str]] = None) -> "DiscoveryRequest":
        """Retorna uma cópia com o endereço normalizado (ou levanta InvalidAddress)."""
        return replace(
            self,
            target_url=normalize_address(self.target_url, recognized_domains or ()),
        )
