"""
Ejecutores de acciones offline.

Ambos reaplican la acción por los mismos puntos de entrada que el camino
online y traducen el resultado a la taxonomía de la cola: errores de negocio
como ``LoyaltyError`` y fallos de red como ``TransientSyncFailure``.
"""
import logging
from typing import Any, Callable, Dict, Optional

import httpx
from sqlalchemy.exc import OperationalError
from sqlmodel import Session

from ..core.exceptions import LoyaltyError, TransientSyncFailure, error_from_code
from ..models.ledger import ACTOR_SISTEMA, MotivoTransaccion
from ..services.gifts import GiftService
from ..services.ledger import LedgerService
from ..services.redemptions import RedemptionService
from ..models.actions import TipoAccion
from .queue import AccionOffline


logger = logging.getLogger(__name__)


def _payload_invalido(accion: AccionOffline, detalle: str) -> LoyaltyError:
    error = LoyaltyError(f"Acción {accion.tipo.value} inválida: {detalle}", id_accion=accion.id)
    error.code = "INVALID_ACTION"
    return error


class ServiceExecutor:
    """Reaplica acciones en proceso, contra los servicios y una sesión propia"""

    def __init__(self, session_factory: Callable[[], Session]):
        self.session_factory = session_factory

    async def execute(self, accion: AccionOffline) -> Dict[str, Any]:
        p = accion.payload
        actor = p.get("actor") or f"offline:{accion.id}"
        try:
            with self.session_factory() as session:
                if accion.tipo == TipoAccion.CANJEAR:
                    canje, saldo = RedemptionService.create_redemption(
                        session,
                        client_id=p["id_cliente"],
                        product_id=p["id_producto"],
                        actor=actor,
                        action_id=accion.id,
                    )
                    return {"id_canje": canje.id, "nuevo_saldo": saldo}

                if accion.tipo == TipoAccion.AJUSTAR_PUNTOS:
                    saldo = LedgerService.adjust_points(
                        session,
                        client_id=p["id_cliente"],
                        delta=int(p["delta"]),
                        reason=MotivoTransaccion(p.get("motivo", MotivoTransaccion.AJUSTE_MANUAL)),
                        actor=p.get("actor") or ACTOR_SISTEMA,
                        descripcion=p.get("descripcion"),
                        action_id=accion.id,
                    )
                    return {"nuevo_saldo": saldo}

                if accion.tipo == TipoAccion.RECLAMAR_REGALO:
                    beneficio, saldo = GiftService.claim_gift(
                        session, code=p["codigo"], client_id=p["id_cliente"], action_id=accion.id
                    )
                    return {"id_beneficio": beneficio.id, "nuevo_saldo": saldo}

                if accion.tipo == TipoAccion.AVANZAR_ESTADO:
                    canje = RedemptionService.advance_status(
                        session,
                        redemption_id=p["id_canje"],
                        target=p["estado"],
                        actor=actor,
                        action_id=accion.id,
                    )
                    return {"id_canje": canje.id, "estado": canje.estado.value}
        except KeyError as e:
            raise _payload_invalido(accion, f"falta {e}")
        except LoyaltyError:
            raise
        except ValueError as e:
            raise _payload_invalido(accion, str(e))
        except OperationalError as e:
            raise TransientSyncFailure(f"Base de datos no disponible: {e}")

        raise _payload_invalido(accion, "tipo no soportado")


class ApiExecutor:
    """Reaplica acciones contra la API HTTP"""

    RUTAS = {
        TipoAccion.CANJEAR: ("POST", "/api/v1/canjes"),
        TipoAccion.AJUSTAR_PUNTOS: ("POST", "/api/v1/clientes/{id_cliente}/puntos"),
        TipoAccion.RECLAMAR_REGALO: ("POST", "/api/v1/regalos/{codigo}/reclamar"),
        TipoAccion.AVANZAR_ESTADO: ("PATCH", "/api/v1/canjes/{id_canje}/estado"),
    }

    CUERPOS = {
        TipoAccion.CANJEAR: ("id_producto",),
        TipoAccion.AJUSTAR_PUNTOS: ("delta", "motivo", "descripcion"),
        TipoAccion.RECLAMAR_REGALO: (),
        TipoAccion.AVANZAR_ESTADO: ("estado",),
    }

    def __init__(
        self,
        base_url: str,
        token: Optional[str] = None,
        *,
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = 15.0,
    ):
        self.token = token
        self.client = client or httpx.AsyncClient(base_url=base_url, timeout=timeout)

    async def aclose(self) -> None:
        await self.client.aclose()

    def _request_args(self, accion: AccionOffline):
        metodo, ruta = self.RUTAS[accion.tipo]
        try:
            url = ruta.format(**accion.payload)
        except KeyError as e:
            raise _payload_invalido(accion, f"falta {e}")
        cuerpo = {k: accion.payload[k] for k in self.CUERPOS[accion.tipo] if accion.payload.get(k) is not None}
        # El servidor registra la clave y responde igual a un reenvío
        headers = {"X-Request-ID": accion.id, "Idempotency-Key": accion.id}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return metodo, url, cuerpo, headers

    async def execute(self, accion: AccionOffline) -> Dict[str, Any]:
        metodo, url, cuerpo, headers = self._request_args(accion)
        try:
            response = await self.client.request(metodo, url, json=cuerpo or None, headers=headers)
        except httpx.HTTPError as e:
            raise TransientSyncFailure(f"Sin conexión con la API: {e}")

        if response.status_code < 400:
            return response.json() if response.content else {}

        # Token vencido, saturación y errores del servidor no son culpa de la acción
        if response.status_code in (401, 408, 429) or response.status_code >= 500:
            raise TransientSyncFailure(
                f"La API respondió {response.status_code}", status=response.status_code
            )

        try:
            body = response.json()
        except ValueError:
            body = {}
        detail = body.get("detail")
        raise error_from_code(
            body.get("code") or f"HTTP_{response.status_code}",
            detail if isinstance(detail, str) else None,
            body.get("data") if isinstance(body.get("data"), dict) else None,
        )
