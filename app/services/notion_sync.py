"""
Adaptador de sincronización con Notion (CRM del negocio).

Cada tarea escribe el estado completo de la entidad, nunca un delta, para
que reaplicar una tarea ya aplicada deje la página igual. La página de cada
entidad local se localiza por su ReferenciaExterna; si no existe se busca
por la propiedad "ID Rewards" y, si tampoco aparece, se crea.
"""
from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Dict, Optional

import httpx
from notion_client import AsyncClient
from notion_client.errors import HTTPResponseError, RequestTimeoutError
from sqlmodel import Session

from ..core.config import settings
from ..core.exceptions import TransientSyncFailure
from ..models.clients import Cliente, TipoNivelCliente
from ..models.gifts import BeneficioCliente
from ..models.redemptions import Canje, EstadoCanje, normalizar_estado
from ..models.sync import OperacionSync, TareaSync, TipoEntidad
from .sync import ResultadoSync, SyncService


logger = logging.getLogger(__name__)

ESTADOS_NOTION = {
    EstadoCanje.PENDIENTE_ENTREGA: "Pendiente Entrega",
    EstadoCanje.EN_LISTA: "En Proceso",
    EstadoCanje.ENTREGADO: "Entregado",
    EstadoCanje.COMPLETADO: "Completado",
}

# Etiquetas del CRM que corresponden a un estado local; "Agendado" es el nombre heredado de "En Proceso"
ESTADOS_DESDE_NOTION = {nombre: estado for estado, nombre in ESTADOS_NOTION.items()}
ESTADOS_DESDE_NOTION["Agendado"] = EstadoCanje.EN_LISTA

PROP_ID_LOCAL = "ID Rewards"

REINTENTABLES = {408, 409, 429}


def estado_notion(estado: str) -> str:
    return ESTADOS_NOTION[normalizar_estado(estado)]


def estado_desde_notion(nombre: Optional[str]) -> Optional[EstadoCanje]:
    return ESTADOS_DESDE_NOTION.get((nombre or "").strip())


def nivel_notion(nivel: Optional[str]) -> str:
    return "VIP" if nivel == TipoNivelCliente.VIP else "Partner"


def fecha_notion(valor: Optional[Any]) -> Optional[Dict[str, Any]]:
    """Propiedad date truncada a día"""
    if valor is None:
        return None
    if isinstance(valor, str):
        valor = datetime.fromisoformat(valor)
    return {"date": {"start": valor.date().isoformat()}}


def _texto(valor: Optional[str]) -> Dict[str, Any]:
    return {"rich_text": [{"text": {"content": (valor or "")[:1800]}}]}


def _titulo(valor: str) -> Dict[str, Any]:
    return {"title": [{"text": {"content": valor[:1800]}}]}


def _limpiar(props: Dict[str, Any]) -> Dict[str, Any]:
    return {k: v for k, v in props.items() if v is not None}


class NotionSyncAdapter:
    """
    Aplica tareas de ``tareas_sync`` en Notion.

    ``client`` es inyectable (en tests se usa un cliente falso con la misma
    interfaz ``pages.create/update`` y ``databases.query``).
    """

    def __init__(self, client=None, *, rewards_db: Optional[str] = None,
                 contactos_db: Optional[str] = None, tickets_db: Optional[str] = None):
        if client is None:
            if not settings.notion_token:
                raise ValueError("NOTION_NOT_CONFIGURED")
            client = AsyncClient(
                auth=settings.notion_token,
                timeout_ms=settings.notion_timeout_seconds * 1000,
            )
        self.client = client
        self.rewards_db = rewards_db or settings.notion_rewards_db
        self.contactos_db = contactos_db or settings.notion_contactos_db
        self.tickets_db = tickets_db or settings.notion_tickets_db

    async def sync_task(self, session: Session, tarea: TareaSync) -> ResultadoSync:
        handlers = {
            OperacionSync.SYNC_CANJE: self._sync_canje,
            OperacionSync.SYNC_CLIENTE: self._sync_cliente,
            OperacionSync.CREATE_BENEFIT_TICKET: self._create_benefit_ticket,
        }
        handler = handlers.get(tarea.operacion)
        if handler is None:
            return ResultadoSync.failed(f"Operación desconocida: {tarea.operacion}", permanente=True)

        try:
            return await handler(session, tarea)
        except TransientSyncFailure as e:
            return ResultadoSync.failed(str(e))
        except HTTPResponseError as e:
            # 429 y 5xx se reintentan; el resto requiere corregir datos o configuración
            permanente = e.status not in REINTENTABLES and e.status < 500
            return ResultadoSync.failed(f"Notion respondió {e.status}: {e}", permanente=permanente)
        except (RequestTimeoutError, httpx.HTTPError) as e:
            return ResultadoSync.failed(f"Error de red con Notion: {e}")

    # ---- Páginas

    async def _find_page(self, database_id: str, id_local: str) -> Optional[str]:
        res = await self.client.databases.query(
            database_id=database_id,
            filter={"property": PROP_ID_LOCAL, "rich_text": {"equals": id_local}},
            page_size=1,
        )
        resultados = res.get("results", []) if isinstance(res, dict) else []
        return resultados[0]["id"] if resultados else None

    async def _ensure_page(
        self,
        session: Session,
        *,
        tipo_entidad: TipoEntidad,
        id_entidad: int,
        id_local: str,
        database_id: str,
        identidad: Dict[str, Any],
    ) -> str:
        """Devuelve el id de página de la entidad, creándola si hace falta"""
        ref = SyncService.get_ref(session, tipo_entidad, id_entidad)
        if ref:
            return ref.id_externo

        page_id = await self._find_page(database_id, id_local)
        if page_id is None:
            props = dict(identidad)
            props[PROP_ID_LOCAL] = _texto(id_local)
            page = await self.client.pages.create(parent={"database_id": database_id}, properties=props)
            page_id = page["id"]
            logger.info("Página Notion %s creada para %s %s", page_id, tipo_entidad.value, id_entidad)

        SyncService.save_ref(session, tipo_entidad, id_entidad, page_id)
        return page_id

    async def _cliente_relation(self, session: Session, cliente: Cliente) -> Optional[Dict[str, Any]]:
        ref = SyncService.get_ref(session, TipoEntidad.CLIENTE, cliente.id)
        if not ref:
            return None
        return {"relation": [{"id": ref.id_externo}]}

    # ---- Operaciones

    async def _sync_canje(self, session: Session, tarea: TareaSync) -> ResultadoSync:
        canje = session.get(Canje, tarea.id_entidad, populate_existing=True)
        if canje is None:
            return ResultadoSync.failed(f"Canje {tarea.id_entidad} no existe", permanente=True)

        ref = SyncService.get_ref(session, TipoEntidad.CANJE, canje.id)
        if ref is None and not SyncService.was_created_locally(session, TipoEntidad.CANJE, canje.id):
            return ResultadoSync.skipped("canje anterior a la integración")

        cliente = session.get(Cliente, canje.id_cliente)
        # Siempre el estado vigente: reaplicar una tarea vieja no retrocede el CRM
        estado = canje.estado.value
        fecha_entrega = canje.fecha_entrega

        page_id = await self._ensure_page(
            session,
            tipo_entidad=TipoEntidad.CANJE,
            id_entidad=canje.id,
            id_local=str(canje.id_ext),
            database_id=self.rewards_db,
            identidad={
                "Registro": _titulo(f"Canje: {canje.nombre_producto_original}"),
                "Tipo": {"select": {"name": "Canje"}},
            },
        )

        props = _limpiar({
            "Registro": _titulo(f"Canje: {canje.nombre_producto_original}"),
            "Tipo": {"select": {"name": "Canje"}},
            "Puntos": {"number": -canje.puntos_usados},
            "Producto": _texto(canje.nombre_producto_original),
            "Estado": {"select": {"name": estado_notion(estado)}},
            "Nivel": {"select": {"name": nivel_notion(cliente.nivel if cliente else None)}},
            "Fecha": fecha_notion(canje.fecha_canje),
            "Fecha Entrega": fecha_notion(fecha_entrega),
            "Cliente": await self._cliente_relation(session, cliente) if cliente else None,
        })
        await self.client.pages.update(page_id=page_id, properties=props)
        return ResultadoSync.success(page_id=page_id, estado=estado_notion(estado))

    async def _sync_cliente(self, session: Session, tarea: TareaSync) -> ResultadoSync:
        cliente = session.get(Cliente, tarea.id_entidad, populate_existing=True)
        if cliente is None:
            return ResultadoSync.failed(f"Cliente {tarea.id_entidad} no existe", permanente=True)

        page_id = await self._ensure_page(
            session,
            tipo_entidad=TipoEntidad.CLIENTE,
            id_entidad=cliente.id,
            id_local=str(cliente.id_ext),
            database_id=self.contactos_db,
            identidad={"Nombre": _titulo(cliente.nombre)},
        )

        props = {
            "Nombre": _titulo(cliente.nombre),
            "Teléfono": {"phone_number": cliente.telefono},
            "Nivel": {"select": {"name": nivel_notion(cliente.nivel)}},
            "Puntos": {"number": cliente.puntos_actuales},
        }
        await self.client.pages.update(page_id=page_id, properties=props)

        cliente.ultima_sincronizacion = datetime.utcnow()
        session.add(cliente)
        session.commit()
        return ResultadoSync.success(page_id=page_id, puntos=cliente.puntos_actuales)

    async def _create_benefit_ticket(self, session: Session, tarea: TareaSync) -> ResultadoSync:
        beneficio = session.get(BeneficioCliente, tarea.id_entidad)
        if beneficio is None:
            return ResultadoSync.failed(f"Beneficio {tarea.id_entidad} no existe", permanente=True)

        ref = SyncService.get_ref(session, TipoEntidad.BENEFICIO, beneficio.id)
        if ref is None and not SyncService.was_created_locally(session, TipoEntidad.BENEFICIO, beneficio.id):
            return ResultadoSync.skipped("beneficio anterior a la integración")

        cliente = session.get(Cliente, beneficio.id_cliente)
        titulo = f"{beneficio.nombre_beneficio} - {cliente.nombre}" if cliente else beneficio.nombre_beneficio

        page_id = await self._ensure_page(
            session,
            tipo_entidad=TipoEntidad.BENEFICIO,
            id_entidad=beneficio.id,
            id_local=str(beneficio.id_ext),
            database_id=self.tickets_db,
            identidad={"Nombre": _titulo(titulo)},
        )

        props = _limpiar({
            "Nombre": _titulo(titulo),
            "Estado": {"status": {"name": "Pendiente"}},
            "Tipo": {"select": {"name": "Beneficio Regalo"}},
            "Descripción": _texto(beneficio.descripcion_beneficio) if beneficio.descripcion_beneficio else None,
            "Fecha Expira": fecha_notion(beneficio.fecha_expiracion),
            "Cliente": await self._cliente_relation(session, cliente) if cliente else None,
        })
        await self.client.pages.update(page_id=page_id, properties=props)
        return ResultadoSync.success(page_id=page_id)
