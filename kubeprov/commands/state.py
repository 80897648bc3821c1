import json
import typer
from pathlib import Path
from typing import Optional

from kubeprov.commands import common

app = typer.Typer(help="Inspect and reset recorded provisioning state")


@app.command("list")
def state_list(
    config_file: Optional[Path] = typer.Option(None, "--config", help="Configuration file"),
    state_dir: Optional[str] = typer.Option(None, help="Directory holding provisioning state"),
):
    """List machines with recorded state."""
    config = common.load_config(config_file, state_dir)
    states = common.make_store(config).list()
    if not states:
        print("📭 No machines recorded")
        return
    for state in states:
        error = f"  last error: {state.last_error.phase} ({state.last_error.kind.value})" if state.last_error else ""
        print(f"{state.machine_id:<24} {state.role.value:<14} {state.state.value:<16} "
              f"{len(state.completed_phases)} phase(s){error}")


@app.command("show")
def state_show(
    machine_id: str = typer.Argument(..., help="Machine identifier"),
    config_file: Optional[Path] = typer.Option(None, "--config", help="Configuration file"),
    state_dir: Optional[str] = typer.Option(None, help="Directory holding provisioning state"),
):
    """Print a machine's recorded state as JSON."""
    config = common.load_config(config_file, state_dir)
    try:
        state = common.make_store(config).load(machine_id)
    except ValueError as e:
        print(f"❌ {e}")
        raise typer.Exit(code=2)
    if state is None:
        print(f"❌ No state recorded for {machine_id}")
        raise typer.Exit(code=1)
    print(json.dumps(state.to_dict(), indent=2))


@app.command("reset")
def state_reset(
    machine_id: str = typer.Argument(..., help="Machine identifier"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask for confirmation"),
    config_file: Optional[Path] = typer.Option(None, "--config", help="Configuration file"),
    state_dir: Optional[str] = typer.Option(None, help="Directory holding provisioning state"),
):
    """Forget a machine's progress so the next run starts over."""
    config = common.load_config(config_file, state_dir)
    if not yes:
        confirm = typer.confirm(f"Forget recorded progress for '{machine_id}'?", default=False)
        if not confirm:
            print("❌ Reset cancelled.")
            raise typer.Exit()
    try:
        removed = common.make_store(config).reset(machine_id)
    except ValueError as e:
        print(f"❌ {e}")
        raise typer.Exit(code=2)
    if removed:
        print(f"🧹 State for {machine_id} removed")
    else:
        print(f"⚠️  No state recorded for {machine_id}")
