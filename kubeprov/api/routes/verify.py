import logging
import os
from typing import List, Optional

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel, Field

from kubeprov.modules.cluster_client import KubernetesApiClient
from kubeprov.modules.errors import CollaboratorError
from kubeprov.modules.settings import get_config
from kubeprov.modules.verifier import ClusterVerifier

logger = logging.getLogger("kubeprov.api.verify")

router = APIRouter(tags=["verify"])

MAX_TIMEOUT = 600


class VerifyRequest(BaseModel):
    expected: List[str] = Field(default_factory=list, description="Nodes that must report Ready")
    timeout: float = Field(default=30, ge=0, le=MAX_TIMEOUT, description="Seconds to wait")
    interval: Optional[float] = Field(default=None, gt=0)
    kubeconfig: Optional[str] = Field(
        default=None, description="One of the server's configured kubeconfig paths"
    )


def _normalize(path: str) -> str:
    return os.path.realpath(os.path.expanduser(path))


def allowed_kubeconfigs() -> List[str]:
    """Kubeconfig paths an API caller may select: the admin kubeconfig and $KUBECONFIG."""
    paths = [get_config().cluster.admin_kubeconfig, os.environ.get("KUBECONFIG")]
    return [_normalize(p) for p in paths if p]


def make_client(kubeconfig: Optional[str] = None):
    return KubernetesApiClient(kubeconfig)


@router.post("/verify")
def verify_cluster(req: VerifyRequest):
    kubeconfig = None
    if req.kubeconfig:
        kubeconfig = _normalize(req.kubeconfig)
        if kubeconfig not in allowed_kubeconfigs():
            raise HTTPException(status_code=403, detail="kubeconfig is not one of the configured paths")

    verifier = ClusterVerifier(make_client(kubeconfig))
    expected = req.expected
    if not expected:
        try:
            expected = sorted(verifier.client.get_nodes().names())
        except CollaboratorError as e:
            raise HTTPException(status_code=502, detail=str(e))

    interval = req.interval or get_config().verify.interval
    result = verifier.await_ready(expected, timeout=req.timeout, poll_interval=interval)
    logger.info(f"🔍 Verify {len(expected)} node(s): converged={result.converged}")
    return {**result.to_dict(), "converged": result.converged}
