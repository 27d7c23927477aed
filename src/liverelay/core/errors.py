"""
errors.py
=========
Hierarquia de exceções do liverelay.

Erros de descoberta são fatais para uma única tentativa e sobem até quem
chamou; nenhuma tentativa é repetida internamente. Erros de transcodificação
nunca invalidam a URL original, já que descoberta e transcodificação são
independentes.
"""

from typing import Optional


class LiveRelayError(Exception):
    """Base de todas as exceções do pacote."""


# ---------------------------------------------------------------------------
# Descoberta
# ---------------------------------------------------------------------------

class DiscoveryError(LiveRelayError):
    """Falha terminal de uma tentativa de descoberta."""


class InvalidAddress(DiscoveryError):
    """O endereço não se parece com uma sala ao vivo."""

    def __init__(self, address: str, reason: str = "endereço de sala ao vivo inválido"):
        super().__init__(f"{reason}: {address!r}")
        self.address = address
        self.reason = reason


class NavigationTimeout(DiscoveryError):
    """A navegação até a página da sala excedeu o tempo limite."""

    def __init__(self, url: str, timeout_ms: int):
        super().__init__(f"tempo limite de navegação ({timeout_ms} ms) excedido para {url}")
        self.url = url
        self.timeout_ms = timeout_ms


class DiscoveryTimeout(DiscoveryError):
    """O orçamento total de tempo da tentativa foi consumido."""

    def __init__(self, url: str, budget: float):
        super().__init__(f"orçamento de {budget:.1f}s esgotado ao descobrir {url}")
        self.url = url
        self.budget = budget


class DiscoveryExhausted(DiscoveryError):
    """Todas as estratégias terminaram vazias, sem nem mesmo um decoy."""

    def __init__(self, url: str, diagnostics=None):
        super().__init__(f"nenhuma URL de stream encontrada para {url}")
        self.url = url
        self.diagnostics = diagnostics


# ---------------------------------------------------------------------------
# Transcodificação
# ---------------------------------------------------------------------------

class TranscodeError(LiveRelayError):
    """Erro relacionado a uma sessão de transcodificação."""


class TranscodeUnavailable(TranscodeError):
    """O motor de transcodificação não existe no ambiente (modo passthrough)."""


class TranscodeRuntimeError(TranscodeError):
    """O ffmpeg reportou falha no meio da sessão."""

    def __init__(self, session_id: str, returncode: Optional[int], detail: str = ""):
        message = f"ffmpeg falhou na sessão {session_id} (código {returncode})"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)
        self.session_id = session_id
        self.returncode = returncode
        self.detail = detail


class SessionAlreadyActive(TranscodeError):
    """Já existe um processo vivo para este session_id."""

    def __init__(self, session_id: str):
        super().__init__(f"sessão {session_id} já está ativa")
        self.session_id = session_id
