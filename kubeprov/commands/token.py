import typer
from pathlib import Path
from typing import Optional

from kubeprov.commands import common
from kubeprov.modules.credentials import CredentialExchange, write_credential
from kubeprov.modules.errors import CollaboratorError, ProvisionError

app = typer.Typer(help="Issue join credentials from a bootstrapped control plane")


def _issue(regenerate: bool, output, config_file, host, ssh_user, ssh_key, ssh_port, sudo):
    config = common.load_config(config_file)
    try:
        with common.open_machine(config, host, ssh_user, ssh_key, ssh_port, sudo) as (runner, ctx):
            exchange = CredentialExchange(ctx.control_plane)
            credential = exchange.regenerate() if regenerate else exchange.issue()
    except ProvisionError as e:
        print(f"❌ Failed at phase {e.phase} ({e.kind.value}): {e.detail}")
        raise typer.Exit(code=common.EXIT_FAILED)
    except CollaboratorError as e:
        print(f"❌ Could not reach control plane: {e}")
        raise typer.Exit(code=common.EXIT_FAILED)

    if output:
        write_credential(str(output), credential)
        print(f"🔑 Join credential for {credential.endpoint} written to {output}")
    else:
        print(credential.to_join_command())


@app.command("issue")
def token_issue(
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="Write the credential to this file"),
    config_file: Optional[Path] = typer.Option(None, "--config", help="Configuration file"),
    host: Optional[str] = typer.Option(None, help="Control plane host (SSH)"),
    ssh_user: Optional[str] = typer.Option(None, help="SSH user"),
    ssh_key: Optional[str] = typer.Option(None, help="SSH private key path"),
    ssh_port: Optional[int] = typer.Option(None, help="SSH port"),
    sudo: bool = typer.Option(False, "--sudo", help="Run commands through sudo"),
):
    """Issue a join credential."""
    _issue(False, output, config_file, host, ssh_user, ssh_key, ssh_port, sudo)


@app.command("regenerate")
def token_regenerate(
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="Write the credential to this file"),
    config_file: Optional[Path] = typer.Option(None, "--config", help="Configuration file"),
    host: Optional[str] = typer.Option(None, help="Control plane host (SSH)"),
    ssh_user: Optional[str] = typer.Option(None, help="SSH user"),
    ssh_key: Optional[str] = typer.Option(None, help="SSH private key path"),
    ssh_port: Optional[int] = typer.Option(None, help="SSH port"),
    sudo: bool = typer.Option(False, "--sudo", help="Run commands through sudo"),
):
    """Issue a fresh join credential after the previous one was lost or expired."""
    _issue(True, output, config_file, host, ssh_user, ssh_key, ssh_port, sudo)
