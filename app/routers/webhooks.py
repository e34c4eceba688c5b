from __future__ import annotations

import hmac
import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Body, Depends, Header, HTTPException, Request
from sqlmodel import Session

from app.core.config import settings
from app.core.database import get_session
from app.core.rate_limit import WEBHOOK_RATE_LIMIT, limiter
from app.services.notion_webhooks import NotionWebhookService, extract_page


router = APIRouter(prefix="/webhooks/notion", tags=["webhooks"])
logger = logging.getLogger(__name__)


def verify_webhook_secret(
    secret: Optional[str] = Header(default=None, alias="X-Webhook-Secret"),
) -> None:
    if not settings.notion_webhook_secret:
        raise HTTPException(status_code=503, detail="Webhook de Notion no configurado")
    if not secret or not hmac.compare_digest(secret, settings.notion_webhook_secret):
        logger.warning("Webhook de Notion rechazado: secreto inválido")
        raise HTTPException(status_code=401, detail="No autorizado")


@router.post("/canje-estado", dependencies=[Depends(verify_webhook_secret)])
@limiter.limit(WEBHOOK_RATE_LIMIT)
def canje_estado(
    request: Request,
    payload: Dict[str, Any] = Body(...),
    session: Session = Depends(get_session),
):
    """
    Estado de un canje cambiado desde Notion

    Responde al handshake ``challenge`` de Notion. Solo aplica avances del
    flujo; estados iguales, anteriores o desconocidos se omiten con 200.
    """
    if "challenge" in payload:
        return {"challenge": payload["challenge"]}

    extraida = extract_page(payload)
    if extraida is None:
        raise HTTPException(status_code=400, detail="No se encontró la página en el payload")

    page_id, properties = extraida
    return NotionWebhookService.handle_canje_status(session, page_id, properties)
