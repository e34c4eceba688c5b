from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlmodel import Session

from app.core.auth import get_current_cliente, require_admin
from app.core.database import get_session
from app.core.rate_limit import ADMIN_WRITE_RATE_LIMIT, GIFT_CLAIM_RATE_LIMIT, READ_RATE_LIMIT, limiter
from app.core.request_id import idempotency_key
from app.models.clients import Cliente
from app.models.gifts import (
    LinkRegalo,
    LinkRegaloCreate,
    LinkRegaloPublic,
    ReclamoRegaloResponse,
    TipoRegalo,
)
from app.services.gifts import GiftService


router = APIRouter(prefix="/regalos", tags=["regalos"])
logger = logging.getLogger(__name__)


@router.get("/{codigo}", response_model=LinkRegaloPublic)
@limiter.limit(READ_RATE_LIMIT)
def ver_regalo(request: Request, codigo: str, session: Session = Depends(get_session)):
    """Información pública del link (sin autenticación)"""
    return GiftService.get_public(session, codigo)


@router.post("/{codigo}/reclamar", response_model=ReclamoRegaloResponse)
@limiter.limit(GIFT_CLAIM_RATE_LIMIT)
def reclamar_regalo(
    request: Request,
    codigo: str,
    current: Cliente = Depends(get_current_cliente),
    session: Session = Depends(get_session),
    action_id: Optional[str] = Depends(idempotency_key),
):
    beneficio, nuevo_saldo = GiftService.claim_gift(
        session, code=codigo, client_id=current.id, action_id=action_id
    )
    link = session.get(LinkRegalo, beneficio.id_link_regalo)
    return ReclamoRegaloResponse(
        id_beneficio=beneficio.id,
        id_cliente=current.id,
        tipo=TipoRegalo.PUNTOS if beneficio.puntos_otorgados else TipoRegalo.BENEFICIO,
        puntos_otorgados=beneficio.puntos_otorgados,
        nuevo_saldo=nuevo_saldo,
        es_campana=link.es_campana if link else False,
    )


@router.post("", response_model=LinkRegaloPublic, status_code=status.HTTP_201_CREATED)
@limiter.limit(ADMIN_WRITE_RATE_LIMIT)
def crear_regalo(
    request: Request,
    payload: LinkRegaloCreate,
    admin: Cliente = Depends(require_admin),
    session: Session = Depends(get_session),
):
    """Crear un link de regalo individual o de campaña"""
    try:
        link = GiftService.create_gift_link(session, payload, creado_por=admin.id)
    except ValueError as e:
        code = str(e)
        if code == "GIFT_POINTS_REQUIRED":
            raise HTTPException(status_code=400, detail="Indica los puntos del regalo")
        if code == "GIFT_BENEFIT_NAME_REQUIRED":
            raise HTTPException(status_code=400, detail="Indica el nombre del beneficio")
        if code == "CAMPAIGN_CANNOT_HAVE_RECIPIENT":
            raise HTTPException(status_code=400, detail="Una campaña no puede tener destinatario")
        raise HTTPException(status_code=400, detail="No se pudo crear el regalo")

    return GiftService.get_public(session, link.codigo)
