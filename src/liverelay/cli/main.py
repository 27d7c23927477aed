"""
cli/main.py
===========
Interface de linha de comando do liverelay.

Descobre a URL de mídia de uma sala ao vivo e, com ``--transcode``, inicia uma
sessão de transcodificação acompanhando o progresso até o fim do ffmpeg ou até
Ctrl+C / SIGTERM.
"""

import argparse
import asyncio
import logging
import signal
import sys
from typing import List, Optional, Union

from rich.console import Console
from rich.logging import RichHandler
from rich.progress import Progress, SpinnerColumn, TextColumn
from rich.table import Table

from liverelay import __version__
from liverelay.core.discovery import StreamDiscovery, StreamResolution
from liverelay.core.errors import DiscoveryError, TranscodeError
from liverelay.core.request import DEFAULT_TIMEOUT_BUDGET, DiscoveryRequest
from liverelay.core.transcode import (
    PassthroughResult,
    SessionState,
    TranscodeHandle,
    TranscodeManager,
    new_session_id,
)

console = Console()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="liverelay",
        description="liverelay: Descobre a URL de mídia de salas ao vivo e retransmite o stream.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Exemplos de uso:
  liverelay https://live.douyin.com/123456789
  liverelay https://exemplo.com/live/555 --json
  liverelay live.douyin.com/123456789 --transcode --output-dir public/streams
        """,
    )
    parser.add_argument("url", help="Endereço da sala ao vivo.")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")

    # Opções de descoberta
    discovery_group = parser.add_argument_group("Opções de Descoberta")
    discovery_group.add_argument(
        "--timeout-budget",
        type=float,
        default=DEFAULT_TIMEOUT_BUDGET,
        metavar="S",
        help=f"Tempo total da tentativa em segundos (padrão: {DEFAULT_TIMEOUT_BUDGET:.0f}).",
    )
    discovery_group.add_argument(
        "--nav-timeout",
        type=int,
        default=60000,
        metavar="MS",
        help="Tempo limite da navegação em milissegundos (padrão: 60000).",
    )
    discovery_group.add_argument(
        "--headless",
        action="store_true",
        default=True,
        help="Executa o navegador em modo headless (padrão).",
    )
    discovery_group.add_argument(
        "--no-headless",
        action="store_false",
        dest="headless",
        help="Executa o navegador com interface gráfica.",
    )
    discovery_group.add_argument(
        "--diagnostics-dir",
        default="diagnostics",
        metavar="DIR",
        help="Onde salvar HTML/screenshot quando nada for encontrado (padrão: diagnostics).",
    )

    # Opções de transcodificação
    transcode_group = parser.add_argument_group("Opções de Transcodificação")
    transcode_group.add_argument(
        "--transcode",
        action="store_true",
        default=False,
        help="Inicia uma sessão ffmpeg (MP4 fragmentado) para a URL encontrada.",
    )
    transcode_group.add_argument(
        "--output-dir",
        default="public/streams",
        metavar="DIR",
        help="Diretório dos arquivos transcodificados (padrão: public/streams).",
    )
    transcode_group.add_argument(
        "--session-id",
        default=None,
        metavar="ID",
        help="Identificador da sessão (padrão: gerado automaticamente).",
    )
    transcode_group.add_argument(
        "--ffmpeg",
        default=None,
        metavar="PATH",
        help="Binário do ffmpeg (padrão: FFMPEG_PATH ou o ffmpeg do PATH).",
    )

    # Saída
    output_group = parser.add_argument_group("Saída")
    output_group.add_argument(
        "--json",
        action="store_true",
        default=False,
        help="Imprime o resultado em JSON.",
    )
    output_group.add_argument(
        "--verbose", "-v",
        action="store_true",
        default=False,
        help="Log detalhado (DEBUG).",
    )
    return parser


def setup_logging(verbose: bool = False) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, rich_tracebacks=True, show_path=verbose)],
    )


def print_resolution(resolution: StreamResolution) -> None:
    table = Table(title="Resultado da Descoberta", show_header=False)
    table.add_column("Campo", style="bold")
    table.add_column("Valor")

    status_style = {"ok": "green", "decoy_only": "yellow", "exhausted": "red"}[resolution.status]
    table.add_row("Status", f"[{status_style}]{resolution.status}[/]")
    table.add_row("Sala", resolution.target_url)
    if resolution.ok:
        table.add_row("URL", f"[cyan]{resolution.url}[/]")
        table.add_row("Origem", resolution.source.value if resolution.source else "-")
    if resolution.is_decoy:
        table.add_row("Aviso", "[yellow]apenas conteúdo de teste encontrado[/]")
    if resolution.diagnostics:
        table.add_row("HTML", resolution.diagnostics.html_snapshot or "-")
        table.add_row("Screenshot", resolution.diagnostics.screenshot or "-")
    console.print(table)


def print_transcode(result: Union[TranscodeHandle, PassthroughResult]) -> None:
    if isinstance(result, PassthroughResult):
        console.print(
            f"[bold yellow]Passthrough:[/] {result.reason}. Use a URL original: "
            f"[cyan]{result.source_url}[/]"
        )
        return
    console.print(f"[bold green]✓[/] Sessão [bold]{result.session_id}[/] iniciada")
    console.print(f"  Arquivo: {result.output_path}")
    console.print(f"  URL pública: [cyan]{result.public_url}[/]")


def _install_signal_handlers(stop_event: asyncio.Event) -> None:
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_event.set)
        except (NotImplementedError, RuntimeError):
            # Windows: só KeyboardInterrupt
            pass


async def follow_transcode(handle: TranscodeHandle, stop_event: asyncio.Event) -> int:
    """Mostra o progresso até o ffmpeg terminar ou até um pedido de parada."""
    waiter = asyncio.ensure_future(handle.wait())
    stopper = asyncio.ensure_future(stop_event.wait())
    try:
        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            console=console,
        ) as progress:
            task_id = progress.add_task(f"[cyan]Transcodificando {handle.session_id}", total=None)
            while not waiter.done() and not stopper.done():
                progress.update(
                    task_id,
                    description=f"[cyan]{handle.session_id}: {handle.progress.describe()}",
                )
                await asyncio.wait({waiter, stopper}, timeout=1.0, return_when=asyncio.FIRST_COMPLETED)
    finally:
        stopper.cancel()

    if not waiter.done():
        waiter.cancel()
        console.print("\n[bold yellow]Parada solicitada.[/]")
        return 0
    try:
        state = waiter.result()
    except TranscodeError as e:
        console.print(f"[bold red]Erro na transcodificação:[/] {e}")
        return 1
    console.print(f"[bold]Sessão {handle.session_id} encerrada:[/] {state.value}")
    return 0 if state in (SessionState.ENDED, SessionState.KILLED) else 1


async def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging(args.verbose)

    discovery = StreamDiscovery(
        headless=args.headless,
        navigation_timeout=args.nav_timeout,
        diagnostics_dir=args.diagnostics_dir,
    )

    try:
        request = DiscoveryRequest(args.url, args.timeout_budget)
        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            console=console,
            transient=True,
        ) as progress:
            progress.add_task(f"[cyan]Procurando stream em: {args.url}", total=None)
            resolution = await discovery.discover(request)
    except (DiscoveryError, ValueError) as e:
        if args.json:
            console.print_json(data={"status": "error", "error": str(e), "target_url": args.url})
        else:
            console.print(f"[bold red]Erro:[/] {e}")
        return 1

    if not args.transcode or not resolution.ok:
        if args.json:
            console.print_json(data=resolution.to_dict())
        else:
            print_resolution(resolution)
        return 0 if resolution.ok else 1

    manager = TranscodeManager(output_root=args.output_dir, ffmpeg_path=args.ffmpeg)
    stop_event = asyncio.Event()
    _install_signal_handlers(stop_event)
    try:
        result = await manager.start(args.session_id or new_session_id(), resolution.url)
        if args.json:
            console.print_json(data={"resolution": resolution.to_dict(), "transcode": result.to_dict()})
        else:
            print_resolution(resolution)
            print_transcode(result)
        if isinstance(result, PassthroughResult):
            return 0
        return await follow_transcode(result, stop_event)
    except (TranscodeError, ValueError) as e:
        console.print(f"[bold red]Erro:[/] {e}")
        return 1
    finally:
        await manager.shutdown()


def main_entry():
    try:
        sys.exit(asyncio.run(main()))
    except KeyboardInterrupt:
        sys.exit(130)


if __name__ == "__main__":
    main_entry()
