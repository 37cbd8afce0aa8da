"""Module introspection and mapping reconciliation."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel

from src.erpsync.api.deps import get_reconciler, get_registry, verify_admin_token
from src.erpsync.modules.registry import ModuleRegistry
from src.erpsync.sync.errors import UnknownEntityTypeError
from src.erpsync.sync.reconciler import Reconciler, ReconcileReport

router = APIRouter(
    prefix="/modules",
    tags=["modules"],
    dependencies=[Depends(verify_admin_token)],
)


class ModuleStatus(BaseModel):
    id: str
    name: str
    direction: str
    booted: bool
    entity_types: list[str]
    exclusive_group: str | None = None
    dormant_reason: str | None = None


@router.get("", response_model=list[ModuleStatus])
async def list_modules(registry: ModuleRegistry = Depends(get_registry)) -> list[ModuleStatus]:
    """Every registered module with its boot state."""
    dormant = registry.dormant_reasons
    return [
        ModuleStatus(
            id=module.id,
            name=module.name,
            direction=module.direction.value,
            booted=registry.is_booted(module.id),
            entity_types=module.entity_types,
            exclusive_group=module.descriptor.exclusive_group,
            dormant_reason=dormant.get(module.id),
        )
        for module in registry.all()
    ]


@router.post("/{module_id}/reconcile/{entity_type}", response_model=ReconcileReport)
async def reconcile_mappings(
    module_id: str,
    entity_type: str,
    fix: bool = False,
    registry: ModuleRegistry = Depends(get_registry),
    reconciler: Reconciler = Depends(get_reconciler),
) -> ReconcileReport:
    """Report mappings whose remote record is gone; remove them with ``fix=true``."""
    module = registry.get(module_id)
    if module is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Module not found")
    try:
        remote_model = module.get_remote_model(entity_type)
    except UnknownEntityTypeError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from None
    return await reconciler.reconcile(module_id, entity_type, remote_model, fix=fix)
