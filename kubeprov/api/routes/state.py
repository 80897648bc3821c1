from fastapi import APIRouter, HTTPException

from kubeprov.modules.settings import get_config
from kubeprov.modules.state import NodeStateStore

router = APIRouter(prefix="/state", tags=["state"])


def _store() -> NodeStateStore:
    return NodeStateStore(get_config().state_dir)


def _load(machine_id: str):
    try:
        return _store().load(machine_id)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.get("")
def list_states():
    return [s.to_dict() for s in _store().list()]


@router.get("/{machine_id}")
def show_state(machine_id: str):
    state = _load(machine_id)
    if state is None:
        raise HTTPException(status_code=404, detail=f"No state recorded for {machine_id}")
    return state.to_dict()


@router.delete("/{machine_id}")
def reset_state(machine_id: str):
    if _load(machine_id) is None:
        raise HTTPException(status_code=404, detail=f"No state recorded for {machine_id}")
    _store().reset(machine_id)
    return {"machine_id": machine_id, "reset": True}
