"""
Cola de sincronización con el CRM (patrón outbox).

Las tareas se insertan en la misma transacción que la mutación local y se
procesan después, fuera de esa transacción. Para una misma entidad se
respetan el orden de creación: una tarea no se ejecuta mientras exista otra
más antigua de la misma entidad sin terminar.
"""
from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from sqlalchemy import update
from sqlmodel import Session, SQLModel, select

from ..core.backoff import attempts_exhausted, next_retry_at
from ..core.config import settings
from ..models.audit import TipoEvento
from ..models.clients import Cliente
from ..models.redemptions import Canje
from ..models.sync import (
    EstadoTarea,
    OperacionSync,
    ReferenciaExterna,
    ResumenProcesamiento,
    ResumenResincronizacion,
    SISTEMA_NOTION,
    TareaSync,
    TipoEntidad,
)
from .audit import AuditService


logger = logging.getLogger(__name__)

# Tiempo tras el cual una tarea en vuelo se considera abandonada por un worker caído
IN_FLIGHT_TIMEOUT = timedelta(minutes=10)

# Eventos que autorizan crear la página en el CRM si la entidad aún no tiene referencia
EVENTOS_ALTA = {"creado", "resincronizar"}


class ResultadoSync(SQLModel):
    """Resultado de aplicar una tarea en el sistema externo"""
    status: str  # success | skipped | failed
    detalle: Dict[str, Any] = {}
    error: Optional[str] = None
    permanente: bool = False

    @classmethod
    def success(cls, **detalle: Any) -> "ResultadoSync":
        return cls(status="success", detalle=detalle)

    @classmethod
    def skipped(cls, motivo: str) -> "ResultadoSync":
        return cls(status="skipped", detalle={"motivo": motivo})

    @classmethod
    def failed(cls, error: str, permanente: bool = False) -> "ResultadoSync":
        return cls(status="failed", error=error, permanente=permanente)


class SyncService:

    @staticmethod
    def enqueue(
        session: Session,
        *,
        tipo_entidad: TipoEntidad,
        id_entidad: int,
        operacion: OperacionSync,
        payload: Optional[Dict[str, Any]] = None,
        origen: str = "app",
    ) -> TareaSync:
        """Agrega la tarea a la transacción en curso; no hace commit"""
        tarea = TareaSync(
            tipo_entidad=tipo_entidad,
            id_entidad=id_entidad,
            operacion=operacion,
            payload=payload or {},
            origen=origen,
        )
        session.add(tarea)
        session.flush()
        return tarea

    @staticmethod
    def get_ref(
        session: Session, tipo_entidad: TipoEntidad, id_entidad: int, sistema: str = SISTEMA_NOTION
    ) -> Optional[ReferenciaExterna]:
        return session.exec(
            select(ReferenciaExterna).where(
                ReferenciaExterna.sistema == sistema,
                ReferenciaExterna.tipo_entidad == tipo_entidad,
                ReferenciaExterna.id_entidad == id_entidad,
            )
        ).first()

    @staticmethod
    def save_ref(
        session: Session,
        tipo_entidad: TipoEntidad,
        id_entidad: int,
        id_externo: str,
        sistema: str = SISTEMA_NOTION,
    ) -> ReferenciaExterna:
        ref = ReferenciaExterna(
            sistema=sistema, tipo_entidad=tipo_entidad, id_entidad=id_entidad, id_externo=id_externo
        )
        session.add(ref)
        session.commit()
        session.refresh(ref)
        return ref

    @staticmethod
    def find_by_external_id(
        session: Session, tipo_entidad: TipoEntidad, id_externo: str, sistema: str = SISTEMA_NOTION
    ) -> Optional[ReferenciaExterna]:
        return session.exec(
            select(ReferenciaExterna).where(
                ReferenciaExterna.sistema == sistema,
                ReferenciaExterna.tipo_entidad == tipo_entidad,
                ReferenciaExterna.id_externo == id_externo,
            )
        ).first()

    @staticmethod
    def was_created_locally(session: Session, tipo_entidad: TipoEntidad, id_entidad: int) -> bool:
        """True si alguna tarea registró la creación de la entidad en esta app"""
        tareas = session.exec(
            select(TareaSync).where(
                TareaSync.tipo_entidad == tipo_entidad,
                TareaSync.id_entidad == id_entidad,
            )
        ).all()
        return any((t.payload or {}).get("evento") in EVENTOS_ALTA for t in tareas)

    @staticmethod
    def _has_older_open_task(session: Session, tarea: TareaSync) -> bool:
        anterior = session.exec(
            select(TareaSync.id).where(
                TareaSync.tipo_entidad == tarea.tipo_entidad,
                TareaSync.id_entidad == tarea.id_entidad,
                TareaSync.id < tarea.id,
                TareaSync.estado.in_([EstadoTarea.PENDING, EstadoTarea.IN_FLIGHT]),
            )
        ).first()
        return anterior is not None

    @staticmethod
    def claim_next(session: Session, now: Optional[datetime] = None, exclude: Optional[set] = None) -> Optional[TareaSync]:
        """Toma la siguiente tarea elegible y la marca ``in_flight``"""
        now = now or datetime.utcnow()
        exclude = exclude or set()

        candidatas = session.exec(
            select(TareaSync)
            .where(TareaSync.estado == EstadoTarea.PENDING)
            .order_by(TareaSync.id)
        ).all()

        for tarea in candidatas:
            if tarea.id in exclude:
                continue
            if tarea.proximo_intento is not None and tarea.proximo_intento > now:
                continue
            if SyncService._has_older_open_task(session, tarea):
                continue

            # Otro worker pudo tomarla entre el SELECT y este UPDATE
            result = session.execute(
                update(TareaSync)
                .where(TareaSync.id == tarea.id, TareaSync.estado == EstadoTarea.PENDING)
                .values(estado=EstadoTarea.IN_FLIGHT, actualizado_el=now)
                .execution_options(synchronize_session="fetch")
            )
            session.commit()
            if result.rowcount == 1:
                session.refresh(tarea)
                return tarea
        return None

    @staticmethod
    def release_stale(session: Session, now: Optional[datetime] = None) -> int:
        """Devuelve a ``pending`` las tareas en vuelo de un worker que no terminó"""
        now = now or datetime.utcnow()
        result = session.execute(
            update(TareaSync)
            .where(
                TareaSync.estado == EstadoTarea.IN_FLIGHT,
                TareaSync.actualizado_el < now - IN_FLIGHT_TIMEOUT,
            )
            .values(estado=EstadoTarea.PENDING, actualizado_el=now)
            .execution_options(synchronize_session="fetch")
        )
        session.commit()
        if result.rowcount:
            logger.warning("Liberadas %s tareas de sync abandonadas en vuelo", result.rowcount)
        return result.rowcount

    @staticmethod
    def record_result(
        session: Session,
        tarea: TareaSync,
        resultado: ResultadoSync,
        *,
        now: Optional[datetime] = None,
        base_delay: Optional[float] = None,
        max_attempts: Optional[int] = None,
    ) -> EstadoTarea:
        now = now or datetime.utcnow()
        base_delay = settings.sync_base_delay_seconds if base_delay is None else base_delay
        max_attempts = settings.sync_max_attempts if max_attempts is None else max_attempts

        tarea.actualizado_el = now
        if resultado.status == "success":
            tarea.estado = EstadoTarea.DONE
            tarea.resultado = resultado.detalle
            tarea.ultimo_error = None
            tarea.proximo_intento = None
            evento = TipoEvento.SYNC_COMPLETED
        elif resultado.status == "skipped":
            tarea.estado = EstadoTarea.SKIPPED
            tarea.resultado = resultado.detalle
            evento = TipoEvento.SYNC_SKIPPED
        else:
            tarea.intentos += 1
            tarea.ultimo_error = resultado.error
            if resultado.permanente or attempts_exhausted(tarea.intentos, max_attempts):
                tarea.estado = EstadoTarea.FAILED
                tarea.proximo_intento = None
                logger.error(
                    "Tarea de sync %s marcada como fallida tras %s intentos: %s",
                    tarea.id,
                    tarea.intentos,
                    resultado.error,
                )
            else:
                tarea.estado = EstadoTarea.PENDING
                tarea.proximo_intento = next_retry_at(tarea.intentos, base_delay, now)
                logger.warning(
                    "Tarea de sync %s falló (intento %s), reintento a las %s: %s",
                    tarea.id,
                    tarea.intentos,
                    tarea.proximo_intento.isoformat(),
                    resultado.error,
                )
            evento = TipoEvento.SYNC_FAILED

        session.add(tarea)
        session.commit()
        session.refresh(tarea)

        AuditService.record(
            session,
            tipo_evento=evento,
            tipo_entidad=tarea.tipo_entidad.value,
            id_entidad=tarea.id_entidad,
            accion=f"{tarea.operacion.value} (tarea {tarea.id}, intento {max(tarea.intentos, 1)})",
            exito=resultado.status != "failed",
            mensaje_error=resultado.error,
            actor="system",
            datos={"id_tarea": tarea.id, "estado": tarea.estado.value},
        )
        return tarea.estado

    @staticmethod
    async def process_pending(
        session: Session,
        adapter,
        batch_size: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> ResumenProcesamiento:
        """
        Procesa hasta ``batch_size`` tareas elegibles, una a la vez y en orden.

        ``adapter`` expone ``async sync_task(session, tarea) -> ResultadoSync``.
        """
        batch_size = min(batch_size or settings.sync_batch_size, 50)
        resumen = ResumenProcesamiento()
        SyncService.release_stale(session, now)

        vistas: set = set()
        while resumen.procesadas < batch_size:
            tarea = SyncService.claim_next(session, now=now, exclude=vistas)
            if tarea is None:
                break
            vistas.add(tarea.id)

            try:
                resultado = await adapter.sync_task(session, tarea)
            except Exception as e:
                logger.exception("Error inesperado sincronizando tarea %s", tarea.id)
                session.rollback()
                resultado = ResultadoSync.failed(str(e))

            estado = SyncService.record_result(session, tarea, resultado, now=now)
            resumen.procesadas += 1
            if estado == EstadoTarea.DONE:
                resumen.exitosas += 1
            elif estado == EstadoTarea.SKIPPED:
                resumen.omitidas += 1
            elif estado == EstadoTarea.FAILED:
                resumen.fallidas += 1
            else:
                resumen.reintentar += 1

        if resumen.procesadas:
            logger.info(
                "Sync: %s procesadas, %s exitosas, %s omitidas, %s por reintentar, %s fallidas",
                resumen.procesadas,
                resumen.exitosas,
                resumen.omitidas,
                resumen.reintentar,
                resumen.fallidas,
            )
        return resumen

    @staticmethod
    def list_failed(session: Session, limit: int = 100) -> List[TareaSync]:
        return list(
            session.exec(
                select(TareaSync)
                .where(TareaSync.estado == EstadoTarea.FAILED)
                .order_by(TareaSync.id)
                .limit(limit)
            ).all()
        )

    @staticmethod
    def retry_failed(session: Session, task_id: int) -> TareaSync:
        tarea = session.get(TareaSync, task_id)
        if not tarea:
            raise ValueError("TASK_NOT_FOUND")
        if tarea.estado != EstadoTarea.FAILED:
            raise ValueError("TASK_NOT_FAILED")

        tarea.estado = EstadoTarea.PENDING
        tarea.intentos = 0
        tarea.proximo_intento = None
        tarea.actualizado_el = datetime.utcnow()
        session.add(tarea)
        session.commit()
        session.refresh(tarea)
        logger.info("Tarea de sync %s reencolada manualmente", task_id)
        return tarea

    @staticmethod
    def enqueue_full_resync(
        session: Session, *, clientes: bool = True, canjes: bool = True, actor: Optional[str] = None
    ) -> ResumenResincronizacion:
        """
        Encola el estado completo de clientes activos y canjes.

        Las entidades con una tarea pendiente o en vuelo se omiten: esa tarea
        ya escribirá el estado vigente.
        """
        resumen = ResumenResincronizacion()
        lotes = []
        if clientes:
            ids = session.exec(select(Cliente.id).where(Cliente.activo == True)).all()
            lotes.append((TipoEntidad.CLIENTE, OperacionSync.SYNC_CLIENTE, ids))
        if canjes:
            ids = session.exec(select(Canje.id)).all()
            lotes.append((TipoEntidad.CANJE, OperacionSync.SYNC_CANJE, ids))

        for tipo_entidad, operacion, ids in lotes:
            abiertas = set(
                session.exec(
                    select(TareaSync.id_entidad).where(
                        TareaSync.tipo_entidad == tipo_entidad,
                        TareaSync.estado.in_([EstadoTarea.PENDING, EstadoTarea.IN_FLIGHT]),
                    )
                ).all()
            )
            for id_entidad in ids:
                if id_entidad in abiertas:
                    resumen.omitidas += 1
                    continue
                SyncService.enqueue(
                    session,
                    tipo_entidad=tipo_entidad,
                    id_entidad=id_entidad,
                    operacion=operacion,
                    payload={"evento": "resincronizar"},
                    origen="resync",
                )
                if tipo_entidad == TipoEntidad.CLIENTE:
                    resumen.clientes += 1
                else:
                    resumen.canjes += 1
        session.commit()

        logger.info(
            "Resincronización encolada: %s clientes, %s canjes, %s omitidas",
            resumen.clientes,
            resumen.canjes,
            resumen.omitidas,
        )
        AuditService.record(
            session,
            tipo_evento=TipoEvento.SYNC_RESYNC_REQUESTED,
            accion=f"resincronizar {resumen.clientes} clientes y {resumen.canjes} canjes",
            actor=actor or "system",
            datos=resumen.model_dump(),
        )
        return resumen

    @staticmethod
    def purge_done(session: Session, days: Optional[int] = None) -> int:
        """Borra tareas confirmadas con más de ``days`` días"""
        days = settings.sync_done_retention_days if days is None else days
        limite = datetime.utcnow() - timedelta(days=days)
        tareas = session.exec(
            select(TareaSync).where(
                TareaSync.estado.in_([EstadoTarea.DONE, EstadoTarea.SKIPPED]),
                TareaSync.creado_el < limite,
            )
        ).all()
        for tarea in tareas:
            session.delete(tarea)
        session.commit()
        return len(tareas)
