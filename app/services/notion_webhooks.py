"""
Cambios de estado de canjes que llegan desde Notion.

El CRM puede saltarse estados o reenviar el que acabamos de escribir; aquí
solo se aplican avances, paso a paso y por la misma máquina de estados que
usa la API.
"""
from __future__ import annotations

import logging
import uuid
from typing import Any, Dict, Optional, Tuple

from sqlmodel import Session, SQLModel, select

from ..core.exceptions import InvalidTransition
from ..models.audit import TipoEvento
from ..models.redemptions import Canje, FLUJO_ESTADOS
from ..models.sync import TipoEntidad
from .audit import AuditService
from .notion_sync import PROP_ID_LOCAL, estado_desde_notion
from .redemptions import RedemptionService
from .sync import SyncService


logger = logging.getLogger(__name__)

ACTOR_WEBHOOK = "notion:webhook"


class ResultadoWebhook(SQLModel):
    status: str  # success | skipped
    motivo: Optional[str] = None
    id_canje: Optional[int] = None
    estado: Optional[str] = None
    pasos: int = 0


def extract_page(payload: Dict[str, Any]) -> Optional[Tuple[Optional[str], Dict[str, Any]]]:
    """(page_id, properties) desde los formatos que envían las automatizaciones de Notion"""
    for contenedor in (payload.get("data"), payload, payload.get("page")):
        if isinstance(contenedor, dict) and isinstance(contenedor.get("properties"), dict):
            return contenedor.get("id"), contenedor["properties"]
    return None


def _select(props: Dict[str, Any], nombre: str) -> Optional[str]:
    prop = props.get(nombre) or {}
    opcion = prop.get("select") or prop.get("status") or {}
    return opcion.get("name")


def _rich_text(props: Dict[str, Any], nombre: str) -> Optional[str]:
    prop = props.get(nombre) or {}
    partes = prop.get("rich_text") or []
    texto = "".join(p.get("plain_text") or (p.get("text") or {}).get("content", "") for p in partes)
    return texto.strip() or None


def _find_canje(session: Session, page_id: Optional[str], id_local: Optional[str]) -> Optional[Canje]:
    if id_local:
        try:
            id_ext = uuid.UUID(id_local)
        except ValueError:
            logger.warning("ID Rewards inválido en webhook: %s", id_local)
        else:
            canje = session.exec(select(Canje).where(Canje.id_ext == id_ext)).first()
            if canje:
                return canje
    if page_id:
        ref = SyncService.find_by_external_id(session, TipoEntidad.CANJE, page_id)
        if ref:
            return session.get(Canje, ref.id_entidad)
    return None


class NotionWebhookService:

    @staticmethod
    def handle_canje_status(
        session: Session, page_id: Optional[str], properties: Dict[str, Any]
    ) -> ResultadoWebhook:
        nombre_estado = _select(properties, "Estado")
        canje = _find_canje(session, page_id, _rich_text(properties, PROP_ID_LOCAL))
        if canje is None:
            return NotionWebhookService._skip(session, "canje no encontrado", page_id=page_id)

        destino = estado_desde_notion(nombre_estado)
        if destino is None:
            return NotionWebhookService._skip(
                session, "estado desconocido", canje=canje, estado_notion=nombre_estado
            )

        actual = canje.estado
        if FLUJO_ESTADOS.index(destino) <= FLUJO_ESTADOS.index(actual):
            motivo = "sin cambios" if destino == actual else "retroceso no permitido"
            return NotionWebhookService._skip(session, motivo, canje=canje, estado_notion=nombre_estado)

        try:
            canje, pasos = RedemptionService.catch_up_status(
                session, redemption_id=canje.id, target=destino.value, actor=ACTOR_WEBHOOK
            )
        except InvalidTransition as e:
            # Otro avance ganó la carrera; el siguiente webhook traerá el estado final
            return NotionWebhookService._skip(session, str(e), canje=canje, estado_notion=nombre_estado)

        logger.info("Webhook Notion: canje %s avanzó %s pasos hasta %s", canje.id, pasos, canje.estado.value)
        return ResultadoWebhook(status="success", id_canje=canje.id, estado=canje.estado.value, pasos=pasos)

    @staticmethod
    def _skip(session: Session, motivo: str, canje: Optional[Canje] = None, **datos: Any) -> ResultadoWebhook:
        logger.info("Webhook Notion omitido (%s): %s", motivo, datos)
        AuditService.record(
            session,
            tipo_evento=TipoEvento.WEBHOOK_SKIPPED,
            tipo_entidad="canje",
            id_entidad=canje.id if canje else None,
            accion=f"webhook estado: {motivo}",
            actor=ACTOR_WEBHOOK,
            datos=datos,
        )
        return ResultadoWebhook(
            status="skipped",
            motivo=motivo,
            id_canje=canje.id if canje else None,
            estado=canje.estado.value if canje else None,
        )
