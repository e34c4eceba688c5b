import logging
from typing import Any, Dict, Optional

from sqlmodel import Session

from ..core.exceptions import ActionConflict
from ..models.actions import AccionAplicada, TipoAccion


logger = logging.getLogger(__name__)


class AppliedActionService:
    """Registro de ids de acciones offline para no aplicarlas dos veces"""

    @staticmethod
    def find(
        session: Session,
        action_id: Optional[str],
        tipo: TipoAccion,
        client_id: Optional[int] = None,
    ) -> Optional[Dict[str, Any]]:
        """
        Resultado original de ``action_id`` o None si aún no se aplicó.

        Un id repetido para otra operación u otro cliente es un error del
        llamador, no un reenvío.
        """
        if not action_id:
            return None
        previa = session.get(AccionAplicada, action_id)
        if previa is None:
            return None
        if previa.tipo != tipo or (client_id is not None and previa.id_cliente != client_id):
            raise ActionConflict(id_accion=action_id, tipo=previa.tipo.value)
        logger.info("Acción %s ya aplicada, se devuelve el resultado original", action_id)
        return dict(previa.resultado)

    @staticmethod
    def record(
        session: Session,
        action_id: Optional[str],
        tipo: TipoAccion,
        resultado: Dict[str, Any],
        client_id: Optional[int] = None,
    ) -> None:
        """Se agrega a la transacción del llamador; no hace commit"""
        if not action_id:
            return
        session.add(
            AccionAplicada(id_accion=action_id, tipo=tipo, id_cliente=client_id, resultado=resultado)
        )
