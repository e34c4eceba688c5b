from __future__ import annotations

import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlmodel import Session

from app.core.auth import get_current_cliente, require_admin
from app.core.database import get_session
from app.core.rate_limit import ADMIN_WRITE_RATE_LIMIT, limiter
from app.core.request_id import idempotency_key
from app.models.clients import Cliente, ClienteRead, NivelClienteUpdate
from app.models.ledger import (
    AjustePuntosRequest,
    AjustePuntosResponse,
    MotivoTransaccion,
    TransaccionPuntosRead,
    actor_admin,
)
from app.services.clients import ClientService
from app.services.ledger import LedgerService


router = APIRouter(prefix="/clientes", tags=["puntos"])
logger = logging.getLogger(__name__)

MOTIVOS_ADMIN = {MotivoTransaccion.AJUSTE_MANUAL, MotivoTransaccion.ACUMULACION}


@router.get("/me", response_model=ClienteRead)
def mi_perfil(current: Cliente = Depends(get_current_cliente)):
    return current


@router.get("/me/movimientos", response_model=List[TransaccionPuntosRead])
def mis_movimientos(
    limit: int = 50,
    current: Cliente = Depends(get_current_cliente),
    session: Session = Depends(get_session),
):
    return LedgerService.history(session, current.id, limit=min(limit, 200))


@router.post("/{cliente_id}/puntos", response_model=AjustePuntosResponse)
@limiter.limit(ADMIN_WRITE_RATE_LIMIT)
def ajustar_puntos(
    request: Request,
    cliente_id: int,
    payload: AjustePuntosRequest,
    admin: Cliente = Depends(require_admin),
    session: Session = Depends(get_session),
    action_id: Optional[str] = Depends(idempotency_key),
):
    """
    Ajuste administrativo de puntos (positivo acumula, negativo descuenta)

    Solo se aceptan los motivos ``ajuste_manual`` y ``acumulacion``; canjes y
    regalos tienen su propio flujo.
    """
    if payload.motivo not in MOTIVOS_ADMIN:
        raise HTTPException(status_code=400, detail="Motivo no permitido para ajustes")
    try:
        nuevo_saldo = LedgerService.adjust_points(
            session,
            client_id=cliente_id,
            delta=payload.delta,
            reason=payload.motivo,
            actor=actor_admin(admin.id),
            descripcion=payload.descripcion,
            action_id=action_id,
        )
    except ValueError as e:
        if str(e) == "INVALID_DELTA":
            raise HTTPException(status_code=400, detail="El ajuste no puede ser cero")
        raise

    return AjustePuntosResponse(id_cliente=cliente_id, nuevo_saldo=nuevo_saldo)


@router.patch("/{cliente_id}/nivel", response_model=ClienteRead)
@limiter.limit(ADMIN_WRITE_RATE_LIMIT)
def cambiar_nivel(
    request: Request,
    cliente_id: int,
    payload: NivelClienteUpdate,
    admin: Cliente = Depends(require_admin),
    session: Session = Depends(get_session),
):
    """Cambiar el nivel del cliente; el CRM se actualiza por la cola de sync"""
    return ClientService.set_tier(
        session, client_id=cliente_id, nivel=payload.nivel, actor=actor_admin(admin.id)
    )
