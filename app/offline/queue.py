"""
Cola de acciones offline.

Uso:
    queue = OfflineQueue(JsonStore(settings.offline_store_path), ApiExecutor(url, token))
    queue.enqueue(TipoAccion.CANJEAR, {"id_producto": 7})
    ...
    await queue.set_online(True)   # drena en orden FIFO

La posición de la cola se deriva del estado de cada acción: tras una
interrupción el siguiente drenado retoma desde la primera acción pendiente.

Se asume una sola instancia de la cola por archivo: el candado es un
``asyncio.Lock`` del proceso. Si dos instancias llegaran a reenviar la misma
acción, el servidor la reconoce por su id (``Idempotency-Key``) y no la
aplica dos veces.
"""
import asyncio
import logging
import uuid
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import ValidationError
from sqlmodel import Field, SQLModel

from ..core.backoff import attempts_exhausted, next_retry_at
from ..core.config import settings
from ..core.exceptions import LoyaltyError, TransientSyncFailure
from ..models.actions import TipoAccion
from .storage import JsonStore, KEY_OFFLINE_QUEUE


logger = logging.getLogger(__name__)


class EstadoAccion(str, Enum):
    PENDING = "pending"
    FAILED = "failed"


class AccionOffline(SQLModel):
    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    tipo: TipoAccion
    payload: Dict[str, Any] = Field(default_factory=dict)
    creado_el: datetime = Field(default_factory=datetime.utcnow)
    estado: EstadoAccion = EstadoAccion.PENDING
    intentos: int = 0
    proximo_intento: Optional[datetime] = None
    codigo_error: Optional[str] = None
    ultimo_error: Optional[str] = None


class ResumenDrenado(SQLModel):
    aplicadas: int = 0
    fallidas: int = 0
    pendientes: int = 0
    interrumpido: bool = False


class OfflineQueue:

    def __init__(
        self,
        store: JsonStore,
        executor,
        *,
        base_delay: Optional[float] = None,
        max_attempts: Optional[int] = None,
        online: bool = False,
    ):
        self.store = store
        self.executor = executor
        self.base_delay = settings.sync_base_delay_seconds if base_delay is None else base_delay
        self.max_attempts = settings.sync_max_attempts if max_attempts is None else max_attempts
        self._online = online
        self._lock = asyncio.Lock()

    # ---- Persistencia

    def _load(self) -> List[AccionOffline]:
        raw = self.store.get(KEY_OFFLINE_QUEUE, [])
        if not isinstance(raw, list):
            logger.warning("Cola offline con formato inválido, se descarta")
            self.store.set(KEY_OFFLINE_QUEUE, [])
            return []

        acciones = []
        for item in raw:
            try:
                acciones.append(AccionOffline.model_validate(item))
            except ValidationError as e:
                logger.warning("Acción offline ilegible, se descarta: %s", e.errors()[:1])
        return acciones

    def _save(self, acciones: List[AccionOffline]) -> None:
        self.store.set(KEY_OFFLINE_QUEUE, [a.model_dump(mode="json") for a in acciones])

    def _replace(self, accion: AccionOffline) -> None:
        """Guarda ``accion`` sobre la lista vigente, sin tocar las demás"""
        acciones = self._load()
        for i, actual in enumerate(acciones):
            if actual.id == accion.id:
                acciones[i] = accion
                self._save(acciones)
                return

    def _remove(self, action_id: str) -> None:
        acciones = self._load()
        restantes = [a for a in acciones if a.id != action_id]
        if len(restantes) != len(acciones):
            self._save(restantes)

    def _next_pending(self) -> Optional[AccionOffline]:
        for accion in self._load():
            if accion.estado == EstadoAccion.PENDING:
                return accion
        return None

    # ---- API pública

    @property
    def is_online(self) -> bool:
        return self._online

    def enqueue(self, tipo: TipoAccion, payload: Dict[str, Any]) -> AccionOffline:
        """Guarda la acción y regresa de inmediato: aceptada, aún no aplicada"""
        acciones = self._load()
        accion = AccionOffline(tipo=TipoAccion(tipo), payload=payload)
        acciones.append(accion)
        self._save(acciones)
        logger.info("Acción offline %s encolada (%s)", accion.id, accion.tipo.value)
        return accion

    def pending_actions(self) -> List[AccionOffline]:
        return [a for a in self._load() if a.estado == EstadoAccion.PENDING]

    def failed_actions(self) -> List[AccionOffline]:
        return [a for a in self._load() if a.estado == EstadoAccion.FAILED]

    def dismiss(self, action_id: str) -> bool:
        """Quita de la cola una acción fallida que el usuario ya vio"""
        acciones = self._load()
        restantes = [a for a in acciones if not (a.id == action_id and a.estado == EstadoAccion.FAILED)]
        if len(restantes) == len(acciones):
            return False
        self._save(restantes)
        return True

    def retry(self, action_id: str) -> bool:
        """Vuelve a poner en pendiente una acción fallida"""
        acciones = self._load()
        for accion in acciones:
            if accion.id == action_id and accion.estado == EstadoAccion.FAILED:
                accion.estado = EstadoAccion.PENDING
                accion.intentos = 0
                accion.proximo_intento = None
                self._save(acciones)
                return True
        return False

    def clear(self) -> int:
        """Vacía la cola (cierre de sesión); devuelve cuántas acciones se descartaron"""
        descartadas = len(self._load())
        self.store.delete(KEY_OFFLINE_QUEUE)
        if descartadas:
            logger.info("Cola offline vaciada: %s acciones descartadas", descartadas)
        return descartadas

    async def set_online(self, online: bool) -> Optional[ResumenDrenado]:
        """Registra el cambio de conectividad; al reconectar drena la cola"""
        reconecto = online and not self._online
        self._online = online
        if reconecto:
            logger.info("Conexión recuperada, drenando cola offline")
            return await self.drain()
        return None

    async def watch(self, interval: Optional[float] = None, stop: Optional[asyncio.Event] = None) -> None:
        """Sondeo de respaldo: drena periódicamente mientras haya conexión"""
        interval = settings.offline_poll_seconds if interval is None else interval
        stop = stop or asyncio.Event()
        while not stop.is_set():
            if self._online and self.pending_actions():
                await self.drain()
            try:
                await asyncio.wait_for(stop.wait(), timeout=interval)
            except asyncio.TimeoutError:
                pass

    async def drain(self, now: Optional[datetime] = None) -> ResumenDrenado:
        async with self._lock:
            return await self._drain(now)

    async def _drain(self, now: Optional[datetime]) -> ResumenDrenado:
        # Se relee el almacén en cada paso: mientras el ejecutor espera se
        # pueden encolar acciones nuevas y no deben perderse
        resumen = ResumenDrenado()

        while True:
            accion = self._next_pending()
            if accion is None:
                break

            ahora = now or datetime.utcnow()
            if accion.proximo_intento and accion.proximo_intento > ahora:
                # Las siguientes dependen de esta; no se adelantan
                resumen.interrumpido = True
                break

            try:
                await self.executor.execute(accion)
            except LoyaltyError as e:
                accion.estado = EstadoAccion.FAILED
                accion.codigo_error = e.code
                accion.ultimo_error = e.message
                self._replace(accion)
                resumen.fallidas += 1
                logger.warning("Acción offline %s rechazada: %s", accion.id, e.code)
                continue
            except TransientSyncFailure as e:
                accion.intentos += 1
                accion.ultimo_error = str(e)
                if attempts_exhausted(accion.intentos, self.max_attempts):
                    accion.estado = EstadoAccion.FAILED
                    accion.codigo_error = "RETRIES_EXHAUSTED"
                    self._replace(accion)
                    resumen.fallidas += 1
                    logger.error("Acción offline %s agotó sus reintentos: %s", accion.id, e)
                    continue
                accion.proximo_intento = next_retry_at(accion.intentos, self.base_delay, ahora)
                self._replace(accion)
                resumen.interrumpido = True
                logger.info("Drenado interrumpido en acción %s: %s", accion.id, e)
                break

            self._remove(accion.id)
            resumen.aplicadas += 1

        resumen.pendientes = len(self.pending_actions())
        return resumen
