from __future__ import annotations

import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, Request, status
from sqlmodel import Session

from app.core.auth import get_current_cliente, require_admin
from app.core.database import get_session
from app.core.rate_limit import ADMIN_WRITE_RATE_LIMIT, READ_RATE_LIMIT, REDEEM_RATE_LIMIT, limiter
from app.core.request_id import idempotency_key
from app.models.clients import Cliente
from app.models.ledger import actor_admin
from app.models.redemptions import (
    CanjeCreate,
    CanjeCreateResponse,
    CanjeEstadoUpdate,
    CanjeRead,
)
from app.services.redemptions import RedemptionService


router = APIRouter(prefix="/canjes", tags=["canjes"])
logger = logging.getLogger(__name__)


@router.post("", response_model=CanjeCreateResponse, status_code=status.HTTP_201_CREATED)
@limiter.limit(REDEEM_RATE_LIMIT)
def crear_canje(
    request: Request,
    payload: CanjeCreate,
    current: Cliente = Depends(get_current_cliente),
    session: Session = Depends(get_session),
    action_id: Optional[str] = Depends(idempotency_key),
):
    """
    Canjear puntos por un producto o servicio del catálogo

    Errores de negocio (JSON con ``code`` y ``data``):
    - **INSUFFICIENT_POINTS** (409): incluye ``faltantes``
    - **OUT_OF_STOCK** / **PRODUCT_UNAVAILABLE** (409)
    - **UNKNOWN_PRODUCT** (404)

    Con ``Idempotency-Key`` un reenvío devuelve el canje original.
    """
    canje, nuevo_saldo = RedemptionService.create_redemption(
        session,
        client_id=current.id,
        product_id=payload.id_producto,
        actor=f"cliente:{current.id}",
        action_id=action_id,
    )
    return CanjeCreateResponse(canje=CanjeRead.model_validate(canje), nuevo_saldo=nuevo_saldo)


@router.get("", response_model=List[CanjeRead])
@limiter.limit(READ_RATE_LIMIT)
def mis_canjes(
    request: Request,
    current: Cliente = Depends(get_current_cliente),
    session: Session = Depends(get_session),
):
    return RedemptionService.list_for_client(session, current.id)


@router.get("/pendientes", response_model=List[CanjeRead])
def canjes_pendientes(
    admin: Cliente = Depends(require_admin),
    session: Session = Depends(get_session),
):
    """Canjes por entregar (pendiente_entrega y en_lista)"""
    return RedemptionService.list_pending(session)


@router.patch("/{canje_id}/estado", response_model=CanjeRead)
@limiter.limit(ADMIN_WRITE_RATE_LIMIT)
def avanzar_estado(
    request: Request,
    canje_id: int,
    payload: CanjeEstadoUpdate,
    admin: Cliente = Depends(require_admin),
    session: Session = Depends(get_session),
    action_id: Optional[str] = Depends(idempotency_key),
):
    """Avanzar el canje al siguiente estado; acepta "agendado" como alias de en_lista"""
    return RedemptionService.advance_status(
        session,
        redemption_id=canje_id,
        target=payload.estado,
        actor=actor_admin(admin.id),
        action_id=action_id,
    )
