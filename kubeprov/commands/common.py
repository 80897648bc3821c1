"""Helpers shared by the CLI commands."""
import signal
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional, Tuple

import typer

from kubeprov.modules.context import PhaseContext, build_context
from kubeprov.modules.models import RunResult
from kubeprov.modules.runner import CommandRunner, LocalRunner, SSHRunner
from kubeprov.modules.settings import ProvisionConfig, get_config
from kubeprov.modules.state import NodeStateStore

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_NOT_CONVERGED = 3


def load_config(config_file: Optional[Path] = None, state_dir: Optional[str] = None) -> ProvisionConfig:
    try:
        config = get_config(str(config_file) if config_file else None)
    except FileNotFoundError as e:
        typer.echo(f"❌ {e}", err=True)
        raise typer.Exit(code=2)
    if state_dir:
        config = config.model_copy(update={"state_dir": state_dir})
    return config


def make_store(config: ProvisionConfig) -> NodeStateStore:
    return NodeStateStore(config.state_dir)


def make_runner(
    config: ProvisionConfig,
    host: Optional[str] = None,
    ssh_user: Optional[str] = None,
    ssh_key: Optional[str] = None,
    ssh_port: Optional[int] = None,
    sudo: bool = False,
) -> CommandRunner:
    """Local runner, or an SSH runner when a host is given."""
    if not host:
        return LocalRunner(sudo=sudo, timeout=config.ssh.command_timeout)
    return SSHRunner(
        host=host,
        username=ssh_user or config.ssh.user,
        key_path=ssh_key or config.ssh.key_path,
        port=ssh_port or config.ssh.port,
        connect_timeout=config.ssh.connect_timeout,
        sudo=sudo or config.ssh.sudo,
        timeout=config.ssh.command_timeout,
    )


@contextmanager
def open_machine(
    config: ProvisionConfig,
    host: Optional[str] = None,
    ssh_user: Optional[str] = None,
    ssh_key: Optional[str] = None,
    ssh_port: Optional[int] = None,
    sudo: bool = False,
    node_name: Optional[str] = None,
) -> Iterator[Tuple[CommandRunner, PhaseContext]]:
    """Connect to a machine and wire its collaborators."""
    runner = make_runner(config, host, ssh_user, ssh_key, ssh_port, sudo)
    try:
        yield runner, build_context(runner, config, node_name=node_name)
    finally:
        runner.close()


@contextmanager
def interrupt_event() -> Iterator[threading.Event]:
    """Event set by Ctrl-C.

    Runs stop before their next phase and bounded waits return partial results.
    """
    cancel = threading.Event()
    previous = signal.getsignal(signal.SIGINT)

    def _handler(signum, frame):
        typer.echo("🛑 Interrupt received, stopping after the current step...", err=True)
        cancel.set()

    try:
        signal.signal(signal.SIGINT, _handler)
    except ValueError:
        # Not in the main thread; no interrupt handling
        previous = None
    try:
        yield cancel
    finally:
        if previous is not None:
            signal.signal(signal.SIGINT, previous)


def echo_result(result: RunResult) -> None:
    for name in result.completed_phases:
        marker = "🔧" if name in result.applied_phases else "✅"
        typer.echo(f"  {marker} {name}")
    if result.verification is not None:
        v = result.verification
        typer.echo(f"  Ready: {', '.join(sorted(v.ready)) or '-'}  Not ready: {', '.join(sorted(v.not_ready)) or '-'}")
    if result.cancelled:
        typer.echo(f"🛑 {result.machine_id}: {result.error}; run again to resume", err=True)
    elif not result.success:
        phase = result.failed_phase or "-"
        kind = result.error_kind.value if result.error_kind else "error"
        typer.echo(f"❌ {result.machine_id} failed at phase {phase} ({kind}): {result.error}", err=True)
    else:
        typer.echo(f"🏁 {result.machine_id}: {result.state.value}")


def exit_code(result: RunResult) -> int:
    if not result.success:
        return EXIT_FAILED
    if result.verification is not None and not result.verification.converged:
        return EXIT_NOT_CONVERGED
    return EXIT_OK
