from fastapi import APIRouter

from kubeprov.modules.catalog import catalog
from kubeprov.modules.models import Role

router = APIRouter(tags=["phases"])


@router.get("/phases/{role}")
def list_phases(role: Role):
    return [
        {
            "name": p.name,
            "description": p.description,
            "requires_credential": p.requires_credential,
        }
        for p in catalog(role)
    ]
