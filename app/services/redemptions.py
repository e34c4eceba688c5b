from __future__ import annotations

import logging
from datetime import datetime
from typing import List, Optional, Tuple

from sqlalchemy import update
from sqlmodel import Session, select

from app.core.exceptions import (
    InvalidTransition,
    LoyaltyError,
    OutOfStock,
    ProductUnavailable,
    UnknownClient,
    UnknownProduct,
    UnknownRedemption,
)
from app.models.actions import TipoAccion
from app.models.audit import TipoEvento
from app.models.clients import Cliente
from app.models.ledger import ACTOR_SISTEMA, MotivoTransaccion
from app.models.products import Producto
from app.models.redemptions import (
    ESTADOS_TERMINALES,
    FLUJO_ESTADOS,
    Canje,
    EstadoCanje,
    normalizar_estado,
    siguiente_estado,
)
from app.models.sync import OperacionSync, TipoEntidad
from app.services.applied_actions import AppliedActionService
from app.services.audit import AuditService
from app.services.ledger import LedgerService
from app.services.sync import SyncService


logger = logging.getLogger(__name__)


def _fecha(valor: Optional[datetime]) -> Optional[str]:
    return valor.isoformat() if valor else None


class RedemptionService:

    @staticmethod
    def create_redemption(
        session: Session,
        *,
        client_id: int,
        product_id: int,
        actor: Optional[str] = None,
        action_id: Optional[str] = None,
    ) -> Tuple[Canje, int]:
        """
        Canjea ``product_id`` para ``client_id``.

        Débito de puntos, decremento de stock, alta del canje y tarea de sync
        se confirman en un único commit. Devuelve el canje y el nuevo saldo.
        Con ``action_id`` un reenvío de la misma acción devuelve el canje
        original sin volver a cobrar.
        """
        actor = actor or ACTOR_SISTEMA
        previo = AppliedActionService.find(session, action_id, TipoAccion.CANJEAR, client_id)
        if previo is not None:
            return session.get(Canje, previo["id_canje"]), previo["nuevo_saldo"]

        try:
            cliente = session.get(Cliente, client_id)
            if not cliente or not cliente.activo:
                raise UnknownClient(cliente_id=client_id)

            producto = session.get(Producto, product_id)
            if not producto:
                raise UnknownProduct(producto_id=product_id)
            if not producto.activo:
                raise ProductUnavailable(producto_id=product_id)
            if producto.controla_stock and producto.stock <= 0:
                raise OutOfStock(disponibles=producto.stock)

            puntos = producto.puntos_requeridos
            canje = Canje(
                id_cliente=client_id,
                id_producto=product_id,
                puntos_usados=puntos,
                estado=EstadoCanje.PENDIENTE_ENTREGA,
                tipo_producto_original=producto.tipo,
                nombre_producto_original=producto.nombre,
            )
            session.add(canje)
            session.flush()

            # Valida el saldo en el mismo UPDATE que lo descuenta
            nuevo_saldo = LedgerService.apply_transaction(
                session,
                client_id=client_id,
                delta=-puntos,
                reason=MotivoTransaccion.CANJE,
                actor=actor,
                descripcion=f"Canje: {producto.nombre}",
                referencia=f"canje:{canje.id}",
            )
            if producto.controla_stock:
                LedgerService.decrement_stock(session, product_id=product_id, qty=1)

            SyncService.enqueue(
                session,
                tipo_entidad=TipoEntidad.CANJE,
                id_entidad=canje.id,
                operacion=OperacionSync.SYNC_CANJE,
                payload={
                    "evento": "creado",
                    "estado": EstadoCanje.PENDIENTE_ENTREGA.value,
                    "puntos_usados": puntos,
                    "producto": producto.nombre,
                    "fecha_canje": _fecha(canje.fecha_canje),
                },
                origen="canje",
            )
            AppliedActionService.record(
                session,
                action_id,
                TipoAccion.CANJEAR,
                {"id_canje": canje.id, "nuevo_saldo": nuevo_saldo},
                client_id,
            )
            session.commit()
            session.refresh(canje)
        except LoyaltyError as e:
            session.rollback()
            logger.info("Canje rechazado para cliente %s, producto %s: %s", client_id, product_id, e.code)
            AuditService.record(
                session,
                tipo_evento=TipoEvento.REDEMPTION_FAILED,
                tipo_entidad="cliente",
                id_entidad=client_id,
                accion=f"Canje de producto {product_id}",
                exito=False,
                mensaje_error=e.message,
                actor=actor,
                datos={"code": e.code, **e.data},
            )
            raise
        except Exception:
            session.rollback()
            raise

        logger.info(
            "Canje %s creado: cliente %s, producto %s, %s puntos",
            canje.id,
            client_id,
            product_id,
            canje.puntos_usados,
        )
        AuditService.record(
            session,
            tipo_evento=TipoEvento.REDEMPTION_SUCCESS,
            tipo_entidad="canje",
            id_entidad=canje.id,
            accion=f"Canje de {canje.nombre_producto_original} por {canje.puntos_usados} puntos",
            actor=actor,
            datos={"id_cliente": client_id, "nuevo_saldo": nuevo_saldo},
        )
        return canje, nuevo_saldo

    @staticmethod
    def advance_status(
        session: Session,
        *,
        redemption_id: int,
        target: str,
        actor: Optional[str] = None,
        action_id: Optional[str] = None,
    ) -> Canje:
        """Avanza el canje exactamente un paso en el flujo de estados"""
        actor = actor or ACTOR_SISTEMA
        canje = session.get(Canje, redemption_id)
        if not canje:
            raise UnknownRedemption(canje_id=redemption_id)
        if AppliedActionService.find(session, action_id, TipoAccion.AVANZAR_ESTADO, canje.id_cliente) is not None:
            return canje

        actual = canje.estado
        try:
            destino = normalizar_estado(target)
        except ValueError:
            raise InvalidTransition(f"Estado desconocido: {target}", actual=actual.value, solicitado=target)

        esperado = siguiente_estado(actual)
        if destino != esperado:
            raise InvalidTransition(
                f"No se puede pasar de {actual.value} a {destino.value}",
                actual=actual.value,
                solicitado=destino.value,
                permitido=esperado.value if esperado else None,
            )

        now = datetime.utcnow()
        valores = {"estado": destino}
        if destino == EstadoCanje.ENTREGADO:
            valores["fecha_entrega"] = now

        try:
            # El estado de origen viaja en el WHERE: dos avances simultáneos no aplican ambos
            result = session.execute(
                update(Canje)
                .where(Canje.id == redemption_id, Canje.estado == actual)
                .values(**valores)
                .execution_options(synchronize_session="fetch")
            )
            if result.rowcount == 0:
                raise InvalidTransition(
                    "El canje cambió de estado mientras se actualizaba",
                    actual=actual.value,
                    solicitado=destino.value,
                )

            SyncService.enqueue(
                session,
                tipo_entidad=TipoEntidad.CANJE,
                id_entidad=redemption_id,
                operacion=OperacionSync.SYNC_CANJE,
                payload={
                    "evento": "estado",
                    "estado": destino.value,
                    "fecha_entrega": _fecha(valores.get("fecha_entrega")),
                },
                origen="canje",
            )
            AppliedActionService.record(
                session,
                action_id,
                TipoAccion.AVANZAR_ESTADO,
                {"id_canje": redemption_id, "estado": destino.value},
                canje.id_cliente,
            )
            session.commit()
            session.refresh(canje)
        except Exception:
            session.rollback()
            raise

        logger.info("Canje %s: %s -> %s", redemption_id, actual.value, destino.value)
        AuditService.record(
            session,
            tipo_evento=TipoEvento.REDEMPTION_STATUS,
            tipo_entidad="canje",
            id_entidad=redemption_id,
            accion=f"{actual.value} -> {destino.value}",
            actor=actor,
        )
        return canje

    @staticmethod
    def catch_up_status(
        session: Session,
        *,
        redemption_id: int,
        target: str,
        actor: Optional[str] = None,
    ) -> Tuple[Canje, int]:
        """
        Lleva el canje hasta ``target`` avanzando paso a paso.

        Para cambios que llegan de fuera (el CRM puede saltarse estados). Un
        destino igual o anterior al actual no cambia nada. Devuelve el canje
        y cuántos pasos se aplicaron.
        """
        canje = session.get(Canje, redemption_id)
        if not canje:
            raise UnknownRedemption(canje_id=redemption_id)
        destino = normalizar_estado(target)

        pasos = 0
        while FLUJO_ESTADOS.index(canje.estado) < FLUJO_ESTADOS.index(destino):
            canje = RedemptionService.advance_status(
                session,
                redemption_id=redemption_id,
                target=siguiente_estado(canje.estado).value,
                actor=actor,
            )
            pasos += 1
        return canje, pasos

    @staticmethod
    def list_for_client(session: Session, client_id: int, limit: int = 100) -> List[Canje]:
        return list(
            session.exec(
                select(Canje)
                .where(Canje.id_cliente == client_id)
                .order_by(Canje.fecha_canje.desc())
                .limit(limit)
            ).all()
        )

    @staticmethod
    def list_pending(session: Session, limit: int = 200) -> List[Canje]:
        """Canjes aún no entregados, los más antiguos primero"""
        return list(
            session.exec(
                select(Canje)
                .where(Canje.estado.notin_(ESTADOS_TERMINALES))
                .order_by(Canje.fecha_canje)
                .limit(limit)
            ).all()
        )
