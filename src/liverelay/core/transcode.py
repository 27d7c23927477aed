"""
transcode.py
============
Gerenciador de sessões de transcodificação (ffmpeg).

Cada sessão ativa corresponde a exatamente um processo ffmpeg que lê a URL do
stream e grava um MP4 fragmentado de baixa latência em
``<output_root>/<session_id>.mp4``, publicado em
``<public_prefix>/<session_id>.mp4``.

Ciclo de vida::

    STARTING ──spawn──> RUNNING ──exit 0──> ENDED
        │                  ├──exit != 0──> FAILED  (TranscodeRuntimeError)
        └──────stop()──────┴─────────────> KILLED

A tabela de sessões é o único estado mutável compartilhado; ela é protegida
por um único lock, que nunca é mantido durante um ``await``. Uma entrada sai da
tabela apenas por ``stop()`` ou por ``_finish()``, e somente uma vez.

Sem ffmpeg no ambiente o gerenciador opera em modo passthrough: ``start()``
devolve a URL original, sem criar diretório nem processo.
"""

import asyncio
import contextlib
import logging
import os
import re
import shutil
import subprocess
import threading
import time
import uuid
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Awaitable, Callable, Deque, Dict, List, Optional, Set, Union

from liverelay.core.decoy import SUSPECT_DECOY_POLICY, DecoyPolicy
from liverelay.core.errors import (
    SessionAlreadyActive,
    TranscodeRuntimeError,
    TranscodeUnavailable,
)


log = logging.getLogger(__name__)

Spawner = Callable[[List[str]], Awaitable[Any]]

DEFAULT_STOP_GRACE = 2.0  # segundos entre SIGTERM e SIGKILL
_STDERR_TAIL = 20

SESSION_ID_RE = re.compile(r"^[A-Za-z0-9._-]{1,128}$")
_PROGRESS_RE = re.compile(r"([a-z_]+)=\s*(\S+)")
_FATAL_MARKERS = ("error", "invalid", "failed", "not found", "denied", "refused")

# chave do ffmpeg -> atributo de TranscodeProgress
_PROGRESS_KEYS = {
    "frame": "frames",
    "fps": "fps",
    "bitrate": "bitrate",
    "size": "total_size",
    "total_size": "total_size",
    "time": "out_time",
    "out_time": "out_time",
    "speed": "speed",
}


class SessionState(str, Enum):
    STARTING = "starting"
    RUNNING = "running"
    ENDED = "ended"
    FAILED = "failed"
    KILLED = "killed"


@dataclass(frozen=True)
class TranscodeProfile:
    """Parâmetros de codificação (um único perfil por sessão)."""
    video_codec: str = "libx264"
    video_bitrate: str = "1000k"
    audio_codec: str = "aac"
    audio_bitrate: str = "128k"
    preset: str = "ultrafast"
    tune: str = "zerolatency"
    container: str = "mp4"
    movflags: str = "frag_keyframe+empty_moov+default_base_moof"
    extension: str = "mp4"


DEFAULT_PROFILE = TranscodeProfile()


@dataclass
class TranscodeProgress:
    """Progresso informativo do ffmpeg; qualquer campo pode faltar."""
    frames: Optional[str] = None
    fps: Optional[str] = None
    bitrate: Optional[str] = None
    total_size: Optional[str] = None
    out_time: Optional[str] = None
    speed: Optional[str] = None

    def describe(self) -> str:
        parts = []
        for label, value in (
            ("frames", self.frames),
            ("fps", self.fps),
            ("tempo", self.out_time),
            ("tamanho", self.total_size),
            ("bitrate", self.bitrate),
            ("velocidade", self.speed),
        ):
            if value not in (None, "", "N/A"):
                parts.append(f"{label}: {value}")
        return ", ".join(parts) if parts else "em andamento"


@dataclass
class TranscodeSession:
    """Entrada da tabela de sessões. Só o gerenciador altera estes campos."""
    session_id: str
    source_url: str
    output_path: Path
    public_url: str
    done: "asyncio.Future[SessionState]"
    state: SessionState = SessionState.STARTING
    process: Any = None
    progress: TranscodeProgress = field(default_factory=TranscodeProgress)
    error: Optional[TranscodeRuntimeError] = None
    signalled: bool = False
    started_at: float = field(default_factory=time.time)


class TranscodeHandle:
    """Visão do chamador sobre uma sessão em andamento."""

    def __init__(self, session: TranscodeSession):
        self._session = session

    @property
    def session_id(self) -> str:
        return self._session.session_id

    @property
    def source_url(self) -> str:
        return self._session.source_url

    @property
    def output_path(self) -> Path:
        return self._session.output_path

    @property
    def public_url(self) -> str:
        return self._session.public_url

    @property
    def state(self) -> SessionState:
        return self._session.state

    @property
    def progress(self) -> TranscodeProgress:
        return self._session.progress

    @property
    def error(self) -> Optional[TranscodeRuntimeError]:
        return self._session.error

    async def wait(self) -> SessionState:
        """Aguarda o fim da sessão; levanta TranscodeRuntimeError se o ffmpeg falhou."""
        state = await asyncio.shield(self._session.done)
        if self._session.error is not None:
            raise self._session.error
        return state

    def to_dict(self) -> Dict[str, Any]:
        return {
            "session_id": self.session_id,
            "source_url": self.source_url,
            "output_path": str(self.output_path),
            "public_url": self.public_url,
            "state": self.state.value,
            "transcoded": True,
        }

    def __repr__(self) -> str:
        return f"TranscodeHandle({self.session_id!r}, state={self.state.value})"


@dataclass(frozen=True)
class PassthroughResult:
    """Sem ffmpeg: o chamador deve usar a URL original diretamente."""
    session_id: str
    source_url: str
    reason: str = "ffmpeg indisponível"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "session_id": self.session_id,
            "source_url": self.source_url,
            "reason": self.reason,
            "transcoded": False,
        }


# ===========================================================================
# Funções auxiliares
# ===========================================================================


def build_transcode_cmd(
    ffmpeg: str,
    source_url: str,
    output_path: Union[str, Path],
    profile: TranscodeProfile = DEFAULT_PROFILE,
    user_agent: Optional[str] = None,
) -> List[str]:
    """Monta a linha de comando do ffmpeg (progresso em stdout, key=value)."""
    cmd = [ffmpeg, "-hide_banner", "-nostats", "-progress", "pipe:1", "-y"]
    if user_agent:
        cmd += ["-user_agent", user_agent]
    cmd += [
        "-i", source_url,
        "-c:v", profile.video_codec,
        "-b:v", profile.video_bitrate,
        "-preset", profile.preset,
        "-tune", profile.tune,
        "-c:a", profile.audio_codec,
        "-b:a", profile.audio_bitrate,
        "-f", profile.container,
        "-movflags", profile.movflags,
        str(output_path),
    ]
    return cmd


def parse_progress_line(line: str, progress: TranscodeProgress) -> bool:
    """
    Atualiza ``progress`` com os campos reconhecidos em ``line``.

    Aceita tanto a saída de ``-progress`` (``out_time=00:00:05.000000``) quanto
    a linha de status clássica (``frame=  120 fps= 25 ... time=00:00:04.80``).
    Retorna True se algum campo foi reconhecido.
    """
    recognized = False
    for key, value in _PROGRESS_RE.findall(line or ""):
        attr = _PROGRESS_KEYS.get(key)
        if attr is None:
            continue
        setattr(progress, attr, value)
        recognized = True
    return recognized


def find_ffmpeg(explicit: Optional[str] = None) -> Optional[str]:
    """Caminho do ffmpeg: argumento explícito, FFMPEG_PATH ou PATH."""
    if explicit:
        return explicit
    env_path = os.environ.get("FFMPEG_PATH")
    if env_path:
        return env_path
    return shutil.which("ffmpeg")


def probe_ffmpeg(path: Optional[str]) -> bool:
    """True se ``path -version`` executar com sucesso."""
    if not path:
        return False
    try:
        result = subprocess.run([path, "-version"], capture_output=True, timeout=10)
    except (OSError, subprocess.SubprocessError) as e:
        log.debug("ffmpeg indisponível em %s: %s", path, e)
        return False
    return result.returncode == 0


def new_session_id() -> str:
    """Identificador único: timestamp em ms + sufixo aleatório."""
    return f"{int(time.time() * 1000)}-{uuid.uuid4().hex[:8]}"


async def _spawn_ffmpeg(cmd: List[str]) -> asyncio.subprocess.Process:
    return await asyncio.create_subprocess_exec(
        *cmd,
        stdin=asyncio.subprocess.DEVNULL,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
    )


# ===========================================================================
# Gerenciador
# ===========================================================================


class TranscodeManager:
    """
    Supervisiona um processo ffmpeg por sessão.

    Parâmetros
    ----------
    output_root : str ou Path
        Diretório onde os arquivos ``<session_id>.mp4`` são gravados.
    public_prefix : str
        Prefixo da URL pública dos arquivos (servidos por terceiros).
    ffmpeg_path : str, opcional
        Binário do ffmpeg. Padrão: FFMPEG_PATH ou o ffmpeg do PATH.
    profile : TranscodeProfile
    decoy_policy : DecoyPolicy
        Usada apenas para avisar quando uma URL suspeita de ser conteúdo de
        teste é transcodificada. O padrão é mais amplo que o da descoberta:
        ``/douyin-pc-web/`` ou ``uuu_`` isoladamente já geram o aviso.
    spawn : callable, opcional
        ``async (cmd) -> processo``. Padrão: ``asyncio.create_subprocess_exec``.
    available : bool, opcional
        Força a disponibilidade do ffmpeg. Se omitido, é detectada uma única
        vez aqui, com ``ffmpeg -version``.
    stop_grace : float
        Segundos de espera após o SIGTERM antes do SIGKILL.
    """

    def __init__(
        self,
        output_root: Union[str, Path] = "public/streams",
        public_prefix: str = "/streams",
        ffmpeg_path: Optional[str] = None,
        profile: TranscodeProfile = DEFAULT_PROFILE,
        decoy_policy: DecoyPolicy = SUSPECT_DECOY_POLICY,
        spawn: Optional[Spawner] = None,
        available: Optional[bool] = None,
        stop_grace: float = DEFAULT_STOP_GRACE,
    ):
        self.output_root = Path(output_root)
        self.public_prefix = public_prefix.rstrip("/")
        self.ffmpeg_path = find_ffmpeg(ffmpeg_path) or "ffmpeg"
        self.profile = profile
        self.decoy_policy = decoy_policy
        self.stop_grace = stop_grace
        self._spawn = spawn or _spawn_ffmpeg
        self.available = probe_ffmpeg(self.ffmpeg_path) if available is None else available
        if not self.available:
            log.warning("ffmpeg não encontrado; transcodificação desativada (passthrough)")

        self._sessions: Dict[str, TranscodeSession] = {}
        self._lock = threading.Lock()
        self._background_tasks: Set["asyncio.Task[None]"] = set()

    # ------------------------------------------------------------------
    # Início / parada
    # ------------------------------------------------------------------

    def public_url_for(self, session_id: str) -> str:
        return f"{self.public_prefix}/{session_id}.{self.profile.extension}"

    async def start(
        self,
        session_id: str,
        source_url: str,
        user_agent: Optional[str] = None,
    ) -> Union[TranscodeHandle, PassthroughResult]:
        """
        Inicia a transcodificação de ``source_url``.

        Retorna
        -------
        TranscodeHandle
            Sessão registrada (RUNNING, ou KILLED se um stop chegou durante o
            spawn).
        PassthroughResult
            Quando o ffmpeg não está disponível.

        Levanta
        -------
        ValueError
            ``session_id`` com caracteres fora de ``[A-Za-z0-9._-]``.
        SessionAlreadyActive
            Já existe uma sessão viva com este id.
        """
        if not SESSION_ID_RE.match(session_id or ""):
            raise ValueError(f"session_id inválido: {session_id!r}")

        if self.decoy_policy.is_decoy(source_url):
            log.warning("A URL da sessão %s parece ser conteúdo de teste: %s", session_id, source_url)

        if not self.available:
            log.info("Sessão %s em passthrough: ffmpeg indisponível", session_id)
            return PassthroughResult(session_id, source_url)

        output_path = self.output_root / f"{session_id}.{self.profile.extension}"
        session = TranscodeSession(
            session_id=session_id,
            source_url=source_url,
            output_path=output_path,
            public_url=self.public_url_for(session_id),
            done=asyncio.get_running_loop().create_future(),
        )

        with self._lock:
            if session_id in self._sessions:
                raise SessionAlreadyActive(session_id)
            self._sessions[session_id] = session

        cmd = build_transcode_cmd(self.ffmpeg_path, source_url, output_path, self.profile, user_agent)
        log.info("Iniciando transcodificação %s: %s", session_id, " ".join(cmd))

        try:
            self.output_root.mkdir(parents=True, exist_ok=True)
            process = await self._launch(cmd)
        except TranscodeUnavailable as e:
            self._discard(session)
            log.warning("Sessão %s em passthrough: %s", session_id, e)
            return PassthroughResult(session_id, source_url, reason=str(e))
        except BaseException:
            self._discard(session)
            raise

        with self._lock:
            session.process = process
            stopped = self._sessions.get(session_id) is not session
            if not stopped:
                session.state = SessionState.RUNNING

        self._spawn_background_task(self._monitor(session))
        if stopped:
            log.info("Sessão %s parada durante o início; encerrando ffmpeg", session_id)
            self._signal(session)
        return TranscodeHandle(session)

    async def _launch(self, cmd: List[str]) -> Any:
        try:
            return await self._spawn(cmd)
        except (FileNotFoundError, PermissionError) as e:
            raise TranscodeUnavailable(f"não foi possível executar {cmd[0]}: {e}") from e

    def _discard(self, session: TranscodeSession) -> None:
        with self._lock:
            if self._sessions.get(session.session_id) is session:
                del self._sessions[session.session_id]
        if not session.done.done():
            session.done.set_result(session.state)

    def _signal(self, session: TranscodeSession) -> bool:
        """Envia SIGTERM uma única vez por processo."""
        with self._lock:
            if session.signalled or session.process is None:
                return False
            session.signalled = True
        try:
            session.process.terminate()
        except ProcessLookupError:
            log.debug("Processo da sessão %s já havia terminado", session.session_id)
        return True

    async def stop(self, session_id: str) -> bool:
        """
        Para a sessão. Idempotente: retorna False se ela já não existia.

        Envia SIGTERM, espera ``stop_grace`` segundos e então SIGKILL.
        """
        with self._lock:
            session = self._sessions.pop(session_id, None)
            if session is None:
                return False
            session.state = SessionState.KILLED

        log.info("Parando sessão %s", session_id)
        if self._signal(session):
            try:
                await asyncio.wait_for(asyncio.shield(session.done), timeout=self.stop_grace)
            except asyncio.TimeoutError:
                log.warning("ffmpeg da sessão %s não encerrou; enviando SIGKILL", session_id)
                with contextlib.suppress(ProcessLookupError):
                    session.process.kill()
        return True

    async def shutdown(self) -> None:
        """Para todas as sessões (encerramento do processo)."""
        session_ids = self.active_sessions()
        if session_ids:
            log.info("Encerrando %d sessão(ões) de transcodificação", len(session_ids))
        await asyncio.gather(*(self.stop(sid) for sid in session_ids))
        tasks = list(self._background_tasks)
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    # ------------------------------------------------------------------
    # Supervisão
    # ------------------------------------------------------------------

    def _spawn_background_task(self, coro: Any) -> None:
        task = asyncio.create_task(coro)
        self._background_tasks.add(task)
        task.add_done_callback(self._background_tasks.discard)

    async def _read_progress(self, session: TranscodeSession, stream: Any) -> None:
        while True:
            line = await stream.readline()
            if not line:
                break
            parse_progress_line(line.decode(errors="replace"), session.progress)

    async def _read_stderr(self, session: TranscodeSession, stream: Any, tail: Deque[str]) -> None:
        while True:
            line = await stream.readline()
            if not line:
                break
            text = line.decode(errors="replace").rstrip()
            if not text:
                continue
            tail.append(text)
            if parse_progress_line(text, session.progress) and "frame=" in text:
                continue
            if any(marker in text.lower() for marker in _FATAL_MARKERS):
                log.warning("ffmpeg:%s %s", session.session_id, text)
            else:
                log.debug("ffmpeg:%s %s", session.session_id, text)

    async def _monitor(self, session: TranscodeSession) -> None:
        process = session.process
        tail: Deque[str] = deque(maxlen=_STDERR_TAIL)
        readers = []
        if getattr(process, "stdout", None) is not None:
            readers.append(self._read_progress(session, process.stdout))
        if getattr(process, "stderr", None) is not None:
            readers.append(self._read_stderr(session, process.stderr, tail))

        returncode: Optional[int] = None
        read_error = ""
        try:
            try:
                await asyncio.gather(*readers)
            except Exception as e:
                read_error = f"falha ao ler a saída do ffmpeg: {e!r}"
                log.warning("Sessão %s: %s; encerrando ffmpeg", session.session_id, read_error)
                with contextlib.suppress(ProcessLookupError):
                    process.kill()
            returncode = await process.wait()
        finally:
            if returncode is None and getattr(process, "returncode", None) is None:
                with contextlib.suppress(ProcessLookupError):
                    process.kill()

            if returncode == 0 and not read_error:
                self._finish(session, SessionState.ENDED)
            elif session.signalled:
                self._finish(session, SessionState.KILLED)
            else:
                detail = read_error or (tail[-1] if tail else "")
                self._finish(
                    session,
                    SessionState.FAILED,
                    TranscodeRuntimeError(session.session_id, returncode, detail),
                )

    def _finish(
        self,
        session: TranscodeSession,
        state: SessionState,
        error: Optional[TranscodeRuntimeError] = None,
    ) -> None:
        """Transição final única: remove a entrada (se ainda for a mesma)."""
        with self._lock:
            if self._sessions.get(session.session_id) is session:
                del self._sessions[session.session_id]
            if session.state is not SessionState.KILLED:
                session.state = state
                session.error = error

        if session.error is not None:
            log.error("%s", session.error)
        else:
            log.info("Sessão %s finalizada (%s)", session.session_id, session.state.value)
        if not session.done.done():
            session.done.set_result(session.state)

    # ------------------------------------------------------------------
    # Consulta
    # ------------------------------------------------------------------

    def get(self, session_id: str) -> Optional[TranscodeHandle]:
        with self._lock:
            session = self._sessions.get(session_id)
        return TranscodeHandle(session) if session else None

    def status(self, session_id: str) -> Optional[SessionState]:
        """Estado de uma sessão ativa, ou None se ela não existe."""
        with self._lock:
            session = self._sessions.get(session_id)
            return session.state if session else None

    def progress(self, session_id: str) -> Optional[TranscodeProgress]:
        with self._lock:
            session = self._sessions.get(session_id)
            return session.progress if session else None

    def active_sessions(self) -> List[str]:
        with self._lock:
            return list(self._sessions)

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)
