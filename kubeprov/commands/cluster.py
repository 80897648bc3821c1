import typer
from pathlib import Path
from typing import Optional

from kubeprov.commands import common
from kubeprov.modules.credentials import write_credential
from kubeprov.modules.fleet import deploy_cluster, load_inventory

app = typer.Typer(help="Deploy a whole cluster from an inventory file")


@app.command("up")
def cluster_up(
    inventory: Path = typer.Option(..., "--inventory", "-i", help="Inventory YAML listing the machines"),
    max_workers: int = typer.Option(10, help="Workers provisioned in parallel"),
    credential_out: Optional[Path] = typer.Option(
        None, "--credential-out", help="Also write the issued join credential to this file"
    ),
    config_file: Optional[Path] = typer.Option(None, "--config", help="Configuration file"),
    state_dir: Optional[str] = typer.Option(None, help="Directory holding provisioning state"),
):
    """Provision the control plane, then every worker, then verify the cluster."""
    if not inventory.exists():
        print(f"❌ Inventory not found: {inventory}")
        raise typer.Exit(code=2)
    try:
        machines = load_inventory(str(inventory))
    except ValueError as e:
        print(f"❌ {e}")
        raise typer.Exit(code=2)

    config = common.load_config(config_file, state_dir)
    store = common.make_store(config)

    with common.interrupt_event() as cancel:
        result = deploy_cluster(machines, config, store, max_workers=max_workers, cancel=cancel)

    print(f"\n📊 {machines.control_plane.name} (control-plane)")
    common.echo_result(result.control_plane)
    for name in sorted(result.workers):
        print(f"\n📊 {name} (worker)")
        common.echo_result(result.workers[name])

    if credential_out and result.control_plane.credential is not None:
        write_credential(str(credential_out), result.control_plane.credential)
        print(f"🔑 Join credential written to {credential_out}")

    if not result.control_plane.success or not all(r.success for r in result.workers.values()):
        raise typer.Exit(code=common.EXIT_FAILED)
    if result.verification is not None and not result.verification.converged:
        not_ready = ", ".join(sorted(result.verification.not_ready))
        print(f"⏳ Not Ready: {not_ready}")
        raise typer.Exit(code=common.EXIT_NOT_CONVERGED)
    print("🎉 Cluster is up")
