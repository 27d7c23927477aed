"""
Fixtures compartilhadas: sessão de navegador falsa e processo ffmpeg falso.
"""

import asyncio
import random
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import pytest

from liverelay.core.behavior import BehaviorSimulator
from liverelay.core.browser import BrowserSession
from liverelay.core.discovery import StreamDiscovery
from liverelay.core.fingerprint import FingerprintGenerator, generate_profile


# ---------------------------------------------------------------------------
# Navegador
# ---------------------------------------------------------------------------

class FakeSession(BrowserSession):
    """
    Sessão falsa. ``responses`` mapeia o texto do script avaliado para a
    resposta: um valor, um callable ``(arg) -> valor`` ou uma exceção.
    """

    def __init__(
        self,
        responses: Optional[Dict[str, Any]] = None,
        requests: Optional[List[Tuple[str, str]]] = None,
        navigate_error: Optional[Exception] = None,
        navigate_delay: float = 0.0,
        html: str = "<html><body>sala</body></html>",
    ):
        self.profile = generate_profile(random.Random(0))
        self.responses = dict(responses or {})
        self.requests = list(requests or [])
        self.navigate_error = navigate_error
        self.navigate_delay = navigate_delay
        self.html = html

        self.callbacks = []
        self.evaluated: List[str] = []
        self.evaluated_args: List[Tuple[str, Any]] = []
        self.navigated: List[str] = []
        self.cookies_added: List[Dict[str, Any]] = []
        self.mouse_moves: List[Tuple[float, float]] = []
        self.waits: List[float] = []
        self.close_count = 0

    def on_request(self, callback) -> None:
        self.callbacks.append(callback)

    def fire_request(self, url: str, resource_type: str = "xhr") -> None:
        for callback in self.callbacks:
            callback(url, resource_type)

    async def navigate(self, url: str, timeout_ms: int) -> None:
        self.navigated.append(url)
        if self.navigate_delay:
            await asyncio.sleep(self.navigate_delay)
        if self.navigate_error is not None:
            raise self.navigate_error
        self.fire_request(url, "document")
        for request_url, resource_type in self.requests:
            self.fire_request(request_url, resource_type)

    async def evaluate(self, script: str, arg: Any = None) -> Any:
        self.evaluated.append(script)
        self.evaluated_args.append((script, arg))
        response = self.responses.get(script)
        if isinstance(response, Exception):
            raise response
        if callable(response):
            return response(arg)
        return response

    async def cookies(self) -> List[Dict[str, Any]]:
        return [dict(c) for c in self.cookies_added]

    async def add_cookies(self, cookies: List[Dict[str, Any]]) -> None:
        self.cookies_added.extend(cookies)

    async def content(self) -> str:
        return self.html

    async def screenshot(self, path: str) -> None:
        Path(path).write_bytes(b"\x89PNG\r\n")

    async def mouse_move(self, x: float, y: float, steps: int = 10) -> None:
        self.mouse_moves.append((x, y))

    async def wait(self, ms: float) -> None:
        self.waits.append(ms)

    async def close(self) -> None:
        self.close_count += 1


@pytest.fixture
def fast_simulator():
    return BehaviorSimulator(rng=random.Random(1), moves=2, min_delay=0, max_delay=0)


@pytest.fixture
def make_discovery(tmp_path, fast_simulator):
    """
    Constrói um StreamDiscovery que entrega as sessões falsas informadas, em
    ordem. Retorna ``(discovery, profiles)``; ``profiles`` registra cada
    chamada à fábrica de sessões.
    """
    def _make(*sessions: FakeSession, **kwargs):
        pending = list(sessions)
        profiles = []

        async def factory(profile):
            profiles.append(profile)
            session = pending.pop(0)
            session.profile = profile
            return session

        options = dict(
            session_factory=factory,
            simulator=fast_simulator,
            fingerprints=FingerprintGenerator(random.Random(7)),
            settle_time=0,
            diagnostics_dir=tmp_path / "diagnostics",
        )
        options.update(kwargs)
        return StreamDiscovery(**options), profiles

    return _make


# ---------------------------------------------------------------------------
# ffmpeg
# ---------------------------------------------------------------------------

class FakeStream:
    """Imita ``asyncio.StreamReader.readline``; b"" marca o fim."""

    def __init__(self, lines=(), error: Optional[Exception] = None):
        self.error = error
        self._queue: "asyncio.Queue[bytes]" = asyncio.Queue()
        for line in lines:
            self._queue.put_nowait(line)

    def feed_eof(self) -> None:
        self._queue.put_nowait(b"")

    async def readline(self) -> bytes:
        line = await self._queue.get()
        if self.error is not None and line:
            raise self.error
        return line


class FakeProcess:
    """Processo falso: termina com SIGTERM, a menos que ``exit_on_terminate=False``."""

    def __init__(
        self,
        stdout_lines=(),
        stderr_lines=(),
        exit_on_terminate: bool = True,
        stderr_error: Optional[Exception] = None,
    ):
        self.returncode = None
        self.terminate_calls = 0
        self.kill_calls = 0
        self.exit_on_terminate = exit_on_terminate
        self.stdout = FakeStream(stdout_lines)
        self.stderr = FakeStream(stderr_lines, error=stderr_error)
        self._exited = asyncio.Event()

    def exit(self, code: int = 0) -> None:
        if self.returncode is not None:
            return
        self.returncode = code
        self.stdout.feed_eof()
        self.stderr.feed_eof()
        self._exited.set()

    def terminate(self) -> None:
        self.terminate_calls += 1
        if self.returncode is not None:
            raise ProcessLookupError("No such process")
        if self.exit_on_terminate:
            self.exit(-15)

    def kill(self) -> None:
        self.kill_calls += 1
        self.exit(-9)

    async def wait(self) -> int:
        await self._exited.wait()
        return self.returncode


class FakeSpawner:
    """Substitui ``asyncio.create_subprocess_exec``; ``gate`` segura o spawn."""

    def __init__(self, error: Optional[Exception] = None, **process_kwargs):
        self.error = error
        self.process_kwargs = process_kwargs
        self.calls: List[List[str]] = []
        self.processes: List[FakeProcess] = []
        self.gate: Optional[asyncio.Event] = None

    async def __call__(self, cmd: List[str]) -> FakeProcess:
        self.calls.append(list(cmd))
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error
        process = FakeProcess(**self.process_kwargs)
        self.processes.append(process)
        return process
