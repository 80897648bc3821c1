import typer
from pathlib import Path
from typing import Optional

from kubeprov.commands import common
from kubeprov.modules.catalog import catalog
from kubeprov.modules.credentials import CredentialExchange, resolve_credential, write_credential
from kubeprov.modules.errors import CollaboratorError, ConcurrentRunError
from kubeprov.modules.models import Role
from kubeprov.modules.orchestrator import Orchestrator
from kubeprov.modules.verifier import ClusterVerifier

app = typer.Typer(help="Provision a machine as a control plane or worker")


@app.command("run")
def provision_run(
    role: Role = typer.Option(..., "--role", help="Machine role"),
    machine_id: Optional[str] = typer.Option(None, help="Machine identifier for state tracking (defaults to the node name)"),
    join_file: Optional[Path] = typer.Option(None, "--join-file", help="Join credential file (worker)"),
    join_command: Optional[str] = typer.Option(
        None, "--join-command", envvar="KUBEPROV_JOIN_COMMAND", help="kubeadm join command (worker)"
    ),
    credential_out: Optional[Path] = typer.Option(
        None, "--credential-out", help="Write the issued join credential to this file (control plane)"
    ),
    host: Optional[str] = typer.Option(None, help="Provision a remote machine over SSH"),
    ssh_user: Optional[str] = typer.Option(None, help="SSH user"),
    ssh_key: Optional[str] = typer.Option(None, help="SSH private key path"),
    ssh_port: Optional[int] = typer.Option(None, help="SSH port"),
    sudo: bool = typer.Option(False, "--sudo", help="Run commands through sudo"),
    node_name: Optional[str] = typer.Option(None, help="Node name the cluster registers (defaults to hostname)"),
    single_node: bool = typer.Option(False, "--single-node", help="Allow workloads on the control plane"),
    skip_verify: bool = typer.Option(False, "--skip-verify", help="Do not wait for the node to report Ready"),
    verify_timeout: Optional[float] = typer.Option(None, help="Seconds to wait for the node to report Ready"),
    config_file: Optional[Path] = typer.Option(None, "--config", help="Configuration file"),
    state_dir: Optional[str] = typer.Option(None, help="Directory holding provisioning state"),
):
    """Bring a machine through its role's phases, resuming where it stopped."""
    config = common.load_config(config_file, state_dir)
    if single_node:
        config.cluster.single_node = True

    credential = None
    if role == Role.WORKER:
        try:
            credential = resolve_credential(
                str(join_file) if join_file else None, join_command
            )
        except (OSError, ValueError) as e:
            print(f"❌ Invalid join credential: {e}")
            raise typer.Exit(code=2)

    store = common.make_store(config)
    timeout = config.verify.timeout if verify_timeout is None else verify_timeout

    try:
        with common.open_machine(
            config, host, ssh_user, ssh_key, ssh_port, sudo, node_name
        ) as (runner, ctx):
            machine = machine_id or ctx.node_name
            print(f"🚀 Provisioning {machine} as {role.value}")
            verifier = None
            credentials = None
            if role == Role.CONTROL_PLANE:
                credentials = CredentialExchange(ctx.control_plane)
                if not skip_verify:
                    verifier = ClusterVerifier(ctx.control_plane)
            elif not skip_verify:
                verifier = ClusterVerifier(ctx.worker.cluster_client())

            orchestrator = Orchestrator(
                store,
                ctx,
                verifier=verifier,
                credentials=credentials,
                verify_timeout=timeout,
                verify_interval=config.verify.interval,
            )
            with common.interrupt_event() as cancel:
                result = orchestrator.run(machine, role, credential=credential, cancel=cancel)
    except ConcurrentRunError as e:
        print(f"❌ {e}")
        raise typer.Exit(code=common.EXIT_FAILED)
    except CollaboratorError as e:
        print(f"❌ Could not reach machine: {e}")
        raise typer.Exit(code=common.EXIT_FAILED)
    except ValueError as e:
        print(f"❌ {e}")
        raise typer.Exit(code=2)

    common.echo_result(result)

    if result.credential is not None:
        if credential_out:
            write_credential(str(credential_out), result.credential)
            print(f"🔑 Join credential written to {credential_out}")
        else:
            print("🔑 Run this on each worker to join the cluster:")
            print(result.credential.to_join_command())

    raise typer.Exit(code=common.exit_code(result))


@app.command("plan")
def provision_plan(
    role: Role = typer.Option(..., "--role", help="Machine role"),
    machine_id: Optional[str] = typer.Option(None, help="Show recorded progress for this machine"),
    config_file: Optional[Path] = typer.Option(None, "--config", help="Configuration file"),
    state_dir: Optional[str] = typer.Option(None, help="Directory holding provisioning state"),
):
    """List the phases a role runs, in order."""
    state = None
    if machine_id:
        config = common.load_config(config_file, state_dir)
        state = common.make_store(config).load(machine_id)
        if state is not None and state.role != role:
            print(f"⚠️  {machine_id} is recorded as {state.role.value}, not {role.value}")
            state = None

    print(f"📋 Phases for {role.value}:")
    for i, phase in enumerate(catalog(role), 1):
        marker = "✅" if state is not None and state.is_complete(phase.name) else "⬜"
        suffix = " (needs join credential)" if phase.requires_credential else ""
        print(f"  {marker} {i:2d}. {phase.name} - {phase.description}{suffix}")
