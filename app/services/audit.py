"""
Bitácora de auditoría.

Se escribe después del commit de la operación auditada; si la escritura
falla se registra un warning y la operación de negocio no se ve afectada.
"""
import logging
from typing import Any, Dict, List, Optional, Union

from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, select

from ..models.audit import RegistroAuditoria


logger = logging.getLogger(__name__)


class AuditService:

    @staticmethod
    def record(
        session: Session,
        *,
        tipo_evento: str,
        accion: str,
        tipo_entidad: Optional[str] = None,
        id_entidad: Optional[Union[int, str]] = None,
        exito: bool = True,
        mensaje_error: Optional[str] = None,
        actor: Optional[str] = None,
        datos: Optional[Dict[str, Any]] = None,
    ) -> Optional[RegistroAuditoria]:
        registro = RegistroAuditoria(
            tipo_evento=tipo_evento,
            tipo_entidad=tipo_entidad,
            id_entidad=str(id_entidad) if id_entidad is not None else None,
            accion=accion[:200],
            exito=exito,
            mensaje_error=mensaje_error,
            actor=actor,
            datos=datos,
        )
        try:
            session.add(registro)
            session.commit()
        except SQLAlchemyError as e:
            session.rollback()
            logger.warning("No se pudo escribir auditoría %s: %s", tipo_evento, e)
            return None
        return registro

    @staticmethod
    def list_events(
        session: Session,
        *,
        tipo_evento: Optional[str] = None,
        tipo_entidad: Optional[str] = None,
        id_entidad: Optional[Union[int, str]] = None,
        limit: int = 100,
    ) -> List[RegistroAuditoria]:
        query = select(RegistroAuditoria)
        if tipo_evento:
            query = query.where(RegistroAuditoria.tipo_evento == tipo_evento)
        if tipo_entidad:
            query = query.where(RegistroAuditoria.tipo_entidad == tipo_entidad)
        if id_entidad is not None:
            query = query.where(RegistroAuditoria.id_entidad == str(id_entidad))
        return list(session.exec(query.order_by(RegistroAuditoria.id.desc()).limit(limit)).all())
