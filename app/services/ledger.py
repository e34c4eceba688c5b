from __future__ import annotations

import logging
from typing import List, Optional

from sqlalchemy import update
from sqlmodel import Session, func, select

from app.core.exceptions import InsufficientPoints, OutOfStock, UnknownClient, UnknownProduct
from app.models.actions import TipoAccion
from app.models.audit import TipoEvento
from app.models.clients import Cliente
from app.models.ledger import MotivoTransaccion, TransaccionPuntos
from app.models.products import Producto
from app.models.sync import OperacionSync, TipoEntidad
from app.services.applied_actions import AppliedActionService
from app.services.audit import AuditService
from app.services.sync import SyncService


logger = logging.getLogger(__name__)


class LedgerService:
    """
    Primitivas atómicas sobre saldo y stock.

    Cada chequeo viaja en el WHERE del mismo UPDATE que escribe, así dos
    llamadas concurrentes no pueden leer el mismo saldo y gastarlo dos veces.
    Estas primitivas solo hacen flush; el commit lo decide quien las orquesta.
    """

    @staticmethod
    def apply_transaction(
        session: Session,
        *,
        client_id: int,
        delta: int,
        reason: MotivoTransaccion,
        actor: str,
        descripcion: Optional[str] = None,
        referencia: Optional[str] = None,
    ) -> int:
        if delta == 0:
            raise ValueError("INVALID_DELTA")

        values = {"puntos_actuales": Cliente.puntos_actuales + delta}
        if delta > 0:
            values["puntos_historicos"] = Cliente.puntos_historicos + delta

        result = session.execute(
            update(Cliente)
            .where(
                Cliente.id == client_id,
                Cliente.activo == True,
                Cliente.puntos_actuales + delta >= 0,
            )
            .values(**values)
            .execution_options(synchronize_session="fetch")
        )

        if result.rowcount == 0:
            cliente = session.get(Cliente, client_id, populate_existing=True)
            if cliente is None or not cliente.activo:
                raise UnknownClient(cliente_id=client_id)
            raise InsufficientPoints(disponibles=cliente.puntos_actuales, requeridos=-delta)

        nuevo_saldo = session.exec(
            select(Cliente.puntos_actuales).where(Cliente.id == client_id)
        ).one()

        session.add(
            TransaccionPuntos(
                id_cliente=client_id,
                delta=delta,
                motivo=reason,
                actor=actor,
                saldo_anterior=nuevo_saldo - delta,
                saldo_posterior=nuevo_saldo,
                descripcion=descripcion,
                referencia=referencia,
            )
        )
        session.flush()
        return nuevo_saldo

    @staticmethod
    def decrement_stock(session: Session, *, product_id: int, qty: int = 1) -> int:
        if qty <= 0:
            raise ValueError("INVALID_QUANTITY")

        result = session.execute(
            update(Producto)
            .where(Producto.id == product_id, Producto.stock >= qty)
            .values(stock=Producto.stock - qty)
            .execution_options(synchronize_session="fetch")
        )

        if result.rowcount == 0:
            producto = session.get(Producto, product_id, populate_existing=True)
            if producto is None:
                raise UnknownProduct(producto_id=product_id)
            raise OutOfStock(disponibles=producto.stock, solicitados=qty)

        session.flush()
        return session.exec(select(Producto.stock).where(Producto.id == product_id)).one()

    @staticmethod
    def balance_from_ledger(session: Session, client_id: int) -> int:
        """Saldo reconstruido desde el libro, para conciliación"""
        total = session.exec(
            select(func.coalesce(func.sum(TransaccionPuntos.delta), 0)).where(
                TransaccionPuntos.id_cliente == client_id
            )
        ).one()
        return int(total)

    @staticmethod
    def history(session: Session, client_id: int, limit: int = 50) -> List[TransaccionPuntos]:
        return list(
            session.exec(
                select(TransaccionPuntos)
                .where(TransaccionPuntos.id_cliente == client_id)
                .order_by(TransaccionPuntos.id.desc())
                .limit(limit)
            ).all()
        )

    @staticmethod
    def adjust_points(
        session: Session,
        *,
        client_id: int,
        delta: int,
        reason: MotivoTransaccion,
        actor: str,
        descripcion: Optional[str] = None,
        action_id: Optional[str] = None,
    ) -> int:
        """Ajuste administrativo: aplica, encola la sync del cliente y confirma"""
        previo = AppliedActionService.find(session, action_id, TipoAccion.AJUSTAR_PUNTOS, client_id)
        if previo is not None:
            return previo["nuevo_saldo"]

        try:
            nuevo_saldo = LedgerService.apply_transaction(
                session,
                client_id=client_id,
                delta=delta,
                reason=reason,
                actor=actor,
                descripcion=descripcion,
            )
            SyncService.enqueue(
                session,
                tipo_entidad=TipoEntidad.CLIENTE,
                id_entidad=client_id,
                operacion=OperacionSync.SYNC_CLIENTE,
                payload={"puntos": nuevo_saldo},
                origen="ledger",
            )
            AppliedActionService.record(
                session, action_id, TipoAccion.AJUSTAR_PUNTOS, {"nuevo_saldo": nuevo_saldo}, client_id
            )
            session.commit()
        except Exception:
            session.rollback()
            raise

        logger.info("Ajuste de %s puntos al cliente %s por %s", delta, client_id, actor)
        AuditService.record(
            session,
            tipo_evento=TipoEvento.POINTS_ADJUSTED,
            tipo_entidad="cliente",
            id_entidad=client_id,
            accion=f"{reason.value}: {delta:+d} puntos",
            actor=actor,
            datos={"nuevo_saldo": nuevo_saldo},
        )
        return nuevo_saldo
