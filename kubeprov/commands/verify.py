import typer
from pathlib import Path
from typing import List, Optional

from kubeprov.commands import common
from kubeprov.modules.cluster_client import KubernetesApiClient
from kubeprov.modules.errors import CollaboratorError
from kubeprov.modules.verifier import ClusterVerifier


def verify_nodes(
    expect: Optional[List[str]] = typer.Option(
        None, "--expect", "-e", help="Node that must report Ready (repeatable; defaults to every known node)"
    ),
    kubeconfig: Optional[str] = typer.Option(None, help="Kubeconfig path (defaults to $KUBECONFIG)"),
    timeout: Optional[float] = typer.Option(None, help="Seconds to wait for convergence"),
    interval: Optional[float] = typer.Option(None, help="Seconds between polls"),
    system_pods: bool = typer.Option(False, "--system-pods", help="Also require kube-system pods to be running"),
    config_file: Optional[Path] = typer.Option(None, "--config", help="Configuration file"),
):
    """Wait until the expected nodes report Ready."""
    config = common.load_config(config_file)
    timeout = config.verify.timeout if timeout is None else timeout
    interval = config.verify.interval if interval is None else interval
    verifier = ClusterVerifier(KubernetesApiClient(kubeconfig))

    expected = list(expect or [])
    if not expected:
        try:
            expected = sorted(verifier.client.get_nodes().names())
        except CollaboratorError as e:
            print(f"❌ Could not read cluster nodes: {e}")
            raise typer.Exit(code=common.EXIT_FAILED)
        print(f"📡 Expecting all {len(expected)} known node(s)")

    try:
        with common.interrupt_event() as cancel:
            result = verifier.await_ready(expected, timeout=timeout, poll_interval=interval, cancel=cancel)
            pods_ok = True
            if system_pods and result.converged:
                pods_ok, unhealthy = verifier.await_system_pods(timeout, interval, cancel=cancel)
                for pod in unhealthy:
                    print(f"⚠️  {pod.namespace}/{pod.name}: {pod.phase}")
    except ValueError as e:
        print(f"❌ {e}")
        raise typer.Exit(code=2)

    for name in sorted(result.ready):
        print(f"  ✅ {name}")
    for name in sorted(result.not_ready):
        print(f"  ❌ {name}")

    if result.converged and pods_ok:
        print("🏁 Cluster converged")
        raise typer.Exit(code=common.EXIT_OK)
    reason = "cancelled" if result.cancelled else "not converged"
    print(f"⏳ Cluster {reason}")
    raise typer.Exit(code=common.EXIT_NOT_CONVERGED)
