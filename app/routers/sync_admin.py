from __future__ import annotations

import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlmodel import Session

from app.core.auth import require_admin
from app.core.database import get_session
from app.core.rate_limit import ADMIN_WRITE_RATE_LIMIT, limiter
from app.models.clients import Cliente
from app.models.ledger import actor_admin
from app.models.sync import (
    ResincronizacionRequest,
    ResumenProcesamiento,
    ResumenResincronizacion,
    TareaSyncRead,
)
from app.services.notion_sync import NotionSyncAdapter
from app.services.sync import SyncService


router = APIRouter(prefix="/admin/sync", tags=["sync"])
logger = logging.getLogger(__name__)


def get_sync_adapter() -> NotionSyncAdapter:
    try:
        return NotionSyncAdapter()
    except ValueError:
        raise HTTPException(status_code=503, detail="Integración con Notion no configurada")


@router.post("/procesar", response_model=ResumenProcesamiento)
@limiter.limit(ADMIN_WRITE_RATE_LIMIT)
async def procesar_pendientes(
    request: Request,
    batch_size: Optional[int] = None,
    admin: Cliente = Depends(require_admin),
    adapter: NotionSyncAdapter = Depends(get_sync_adapter),
    session: Session = Depends(get_session),
):
    """Procesar un lote de tareas pendientes de sincronización con Notion"""
    return await SyncService.process_pending(session, adapter, batch_size=batch_size)


@router.get("/fallidas", response_model=List[TareaSyncRead])
def tareas_fallidas(
    admin: Cliente = Depends(require_admin),
    session: Session = Depends(get_session),
):
    return SyncService.list_failed(session)


@router.post("/{tarea_id}/reintentar", response_model=TareaSyncRead)
def reintentar_tarea(
    tarea_id: int,
    admin: Cliente = Depends(require_admin),
    session: Session = Depends(get_session),
):
    try:
        tarea = SyncService.retry_failed(session, tarea_id)
    except ValueError as e:
        code = str(e)
        if code == "TASK_NOT_FOUND":
            raise HTTPException(status_code=404, detail="Tarea no encontrada")
        if code == "TASK_NOT_FAILED":
            raise HTTPException(status_code=409, detail="Solo se reintentan tareas fallidas")
        raise

    logger.info("Admin %s reintentó la tarea de sync %s", admin.id, tarea_id)
    return tarea


@router.post("/resincronizar", response_model=ResumenResincronizacion)
@limiter.limit(ADMIN_WRITE_RATE_LIMIT)
def resincronizar(
    request: Request,
    payload: ResincronizacionRequest,
    admin: Cliente = Depends(require_admin),
    session: Session = Depends(get_session),
):
    """Encolar el estado completo de clientes y canjes hacia Notion"""
    return SyncService.enqueue_full_resync(
        session, clientes=payload.clientes, canjes=payload.canjes, actor=actor_admin(admin.id)
    )
