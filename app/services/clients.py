from __future__ import annotations

import logging
from typing import Optional

from sqlmodel import Session, select

from app.core.exceptions import UnknownClient
from app.models.audit import TipoEvento
from app.models.clients import Cliente, TipoNivelCliente
from app.models.redemptions import Canje
from app.models.sync import OperacionSync, ReferenciaExterna, SISTEMA_NOTION, TipoEntidad
from app.services.audit import AuditService
from app.services.sync import SyncService


logger = logging.getLogger(__name__)


class ClientService:

    @staticmethod
    def set_tier(
        session: Session,
        *,
        client_id: int,
        nivel: TipoNivelCliente,
        actor: Optional[str] = None,
    ) -> Cliente:
        """
        Cambia el nivel del cliente y encola su sync.

        Los canjes que ya tienen página en el CRM muestran el nivel, así que
        también se reencolan.
        """
        cliente = session.get(Cliente, client_id)
        if not cliente:
            raise UnknownClient(cliente_id=client_id)
        anterior = cliente.nivel
        if anterior == nivel:
            return cliente

        try:
            cliente.nivel = nivel
            session.add(cliente)
            SyncService.enqueue(
                session,
                tipo_entidad=TipoEntidad.CLIENTE,
                id_entidad=client_id,
                operacion=OperacionSync.SYNC_CLIENTE,
                payload={"evento": "nivel", "nivel": nivel.value},
                origen="nivel",
            )
            canjes_con_pagina = session.exec(
                select(Canje.id)
                .join(
                    ReferenciaExterna,
                    (ReferenciaExterna.id_entidad == Canje.id)
                    & (ReferenciaExterna.tipo_entidad == TipoEntidad.CANJE)
                    & (ReferenciaExterna.sistema == SISTEMA_NOTION),
                )
                .where(Canje.id_cliente == client_id)
            ).all()
            for canje_id in canjes_con_pagina:
                SyncService.enqueue(
                    session,
                    tipo_entidad=TipoEntidad.CANJE,
                    id_entidad=canje_id,
                    operacion=OperacionSync.SYNC_CANJE,
                    payload={"evento": "nivel"},
                    origen="nivel",
                )
            session.commit()
            session.refresh(cliente)
        except Exception:
            session.rollback()
            raise

        logger.info("Cliente %s: nivel %s -> %s", client_id, anterior.value, nivel.value)
        AuditService.record(
            session,
            tipo_evento=TipoEvento.CLIENT_TIER_CHANGED,
            tipo_entidad="cliente",
            id_entidad=client_id,
            accion=f"{anterior.value} -> {nivel.value}",
            actor=actor,
            datos={"canjes_reencolados": len(canjes_con_pagina)},
        )
        return cliente
