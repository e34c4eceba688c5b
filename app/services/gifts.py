"""
Servicio de links de regalo: alta, consulta pública y reclamo
"""
import logging
import secrets
from datetime import datetime, timedelta
from typing import Optional, Tuple

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from ..core.exceptions import (
    GiftAlreadyClaimed,
    GiftExpired,
    GiftNotFound,
    GiftRestricted,
    LoyaltyError,
    UnknownClient,
)
from ..models.actions import TipoAccion
from ..models.audit import TipoEvento
from ..models.clients import Cliente
from ..models.gifts import (
    BeneficioCliente,
    EstadoLinkRegalo,
    LinkRegalo,
    LinkRegaloCreate,
    LinkRegaloPublic,
    TipoRegalo,
)
from ..models.ledger import MotivoTransaccion, actor_regalo
from ..models.sync import OperacionSync, TipoEntidad
from .applied_actions import AppliedActionService
from .audit import AuditService
from .ledger import LedgerService
from .sync import SyncService


logger = logging.getLogger(__name__)

# Sin caracteres ambiguos (0/O, 1/I)
ALFABETO_CODIGO = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"
LONGITUD_CODIGO = 6
LONGITUD_CODIGO_CAMPANA = 8


def _solo_digitos(telefono: Optional[str]) -> str:
    return "".join(c for c in (telefono or "") if c.isdigit())[-10:]


class GiftService:

    @staticmethod
    def generate_code(session: Session, longitud: int = LONGITUD_CODIGO) -> str:
        while True:
            codigo = "".join(secrets.choice(ALFABETO_CODIGO) for _ in range(longitud))
            existe = session.exec(select(LinkRegalo.id).where(LinkRegalo.codigo == codigo)).first()
            if not existe:
                return codigo

    @staticmethod
    def create_gift_link(session: Session, data: LinkRegaloCreate, creado_por: Optional[int] = None) -> LinkRegalo:
        if data.tipo == TipoRegalo.PUNTOS and not data.puntos_regalo:
            raise ValueError("GIFT_POINTS_REQUIRED")
        if data.tipo == TipoRegalo.BENEFICIO and not data.nombre_beneficio:
            raise ValueError("GIFT_BENEFIT_NAME_REQUIRED")
        if data.es_campana and data.destinatario_telefono:
            raise ValueError("CAMPAIGN_CANNOT_HAVE_RECIPIENT")

        longitud = LONGITUD_CODIGO_CAMPANA if data.es_campana else LONGITUD_CODIGO
        link = LinkRegalo(
            codigo=GiftService.generate_code(session, longitud),
            tipo=data.tipo,
            puntos_regalo=data.puntos_regalo if data.tipo == TipoRegalo.PUNTOS else None,
            nombre_beneficio=data.nombre_beneficio,
            descripcion_beneficio=data.descripcion_beneficio,
            mensaje_personalizado=data.mensaje_personalizado,
            destinatario_telefono=_solo_digitos(data.destinatario_telefono) or None,
            fecha_expiracion=datetime.utcnow() + timedelta(days=data.dias_expiracion),
            es_campana=data.es_campana,
            nombre_campana=data.nombre_campana,
            max_canjes=data.max_canjes if data.es_campana else 1,
            vigencia_beneficio_dias=data.vigencia_beneficio_dias,
            creado_por=creado_por,
        )
        session.add(link)
        session.commit()
        session.refresh(link)

        logger.info("Link de regalo %s creado (%s)", link.codigo, link.tipo.value)
        AuditService.record(
            session,
            tipo_evento=TipoEvento.GIFT_CREATED,
            tipo_entidad="link_regalo",
            id_entidad=link.codigo,
            accion=f"Link de {link.tipo.value}" + (" (campaña)" if link.es_campana else ""),
            actor=f"admin:{creado_por}" if creado_por else None,
        )
        return link

    @staticmethod
    def get_by_code(session: Session, code: str) -> LinkRegalo:
        link = session.exec(
            select(LinkRegalo).where(LinkRegalo.codigo == code.strip().upper())
        ).first()
        if not link:
            raise GiftNotFound(codigo=code)
        return link

    @staticmethod
    def get_public(session: Session, code: str) -> LinkRegaloPublic:
        """Vista pública del link; marca como expirado/agotado sin exponer destinatario"""
        link = GiftService.get_by_code(session, code)
        estado = link.estado.value
        if link.expirado():
            estado = EstadoLinkRegalo.EXPIRADO.value
        elif link.es_campana and link.agotado():
            estado = "agotado"

        return LinkRegaloPublic(
            codigo=link.codigo,
            tipo=link.tipo,
            puntos_regalo=link.puntos_regalo,
            nombre_beneficio=link.nombre_beneficio,
            descripcion_beneficio=link.descripcion_beneficio,
            mensaje_personalizado=link.mensaje_personalizado,
            estado=estado,
            fecha_expiracion=link.fecha_expiracion,
            es_campana=link.es_campana,
            nombre_campana=link.nombre_campana,
        )

    @staticmethod
    def _check_claimable(session: Session, link: LinkRegalo, cliente: Cliente) -> None:
        if not link.es_campana and link.estado == EstadoLinkRegalo.CANJEADO:
            raise GiftAlreadyClaimed(codigo=link.codigo)

        if link.expirado():
            if link.estado != EstadoLinkRegalo.EXPIRADO:
                link.estado = EstadoLinkRegalo.EXPIRADO
                session.add(link)
                session.commit()
            raise GiftExpired(codigo=link.codigo)

        if link.es_campana and link.agotado():
            raise GiftAlreadyClaimed("Esta campaña ha alcanzado el límite de canjes", codigo=link.codigo)

        if link.destinatario_telefono and link.destinatario_telefono != _solo_digitos(cliente.telefono):
            raise GiftRestricted(codigo=link.codigo)

        if link.es_campana:
            previo = session.exec(
                select(BeneficioCliente.id).where(
                    BeneficioCliente.id_link_regalo == link.id,
                    BeneficioCliente.id_cliente == cliente.id,
                )
            ).first()
            if previo:
                raise GiftAlreadyClaimed("Ya canjeaste este regalo", codigo=link.codigo)

    @staticmethod
    def _consume(session: Session, link: LinkRegalo, client_id: int, now: datetime) -> None:
        """Marca el link como usado con un UPDATE condicional"""
        if link.es_campana:
            condiciones = [LinkRegalo.id == link.id, LinkRegalo.estado == EstadoLinkRegalo.PENDIENTE]
            if link.max_canjes is not None:
                condiciones.append(LinkRegalo.canjes_realizados < link.max_canjes)
            stmt = update(LinkRegalo).where(*condiciones).values(
                canjes_realizados=LinkRegalo.canjes_realizados + 1
            )
        else:
            stmt = (
                update(LinkRegalo)
                .where(
                    LinkRegalo.id == link.id,
                    LinkRegalo.estado == EstadoLinkRegalo.PENDIENTE,
                    LinkRegalo.canjeado_por.is_(None),
                )
                .values(
                    estado=EstadoLinkRegalo.CANJEADO,
                    canjeado_por=client_id,
                    fecha_canje=now,
                    canjes_realizados=LinkRegalo.canjes_realizados + 1,
                )
            )

        result = session.execute(stmt.execution_options(synchronize_session="fetch"))
        if result.rowcount == 0:
            raise GiftAlreadyClaimed(codigo=link.codigo)

    @staticmethod
    def claim_gift(
        session: Session,
        *,
        code: str,
        client_id: int,
        action_id: Optional[str] = None,
    ) -> Tuple[BeneficioCliente, int]:
        """
        Reclama un link de regalo para ``client_id``.

        El consumo del link, el beneficio y la transacción de puntos se
        confirman juntos. Devuelve el beneficio y el saldo resultante.
        """
        actor = actor_regalo(code.strip().upper())
        previo = AppliedActionService.find(session, action_id, TipoAccion.RECLAMAR_REGALO, client_id)
        if previo is not None:
            return session.get(BeneficioCliente, previo["id_beneficio"]), previo["nuevo_saldo"]

        try:
            link = GiftService.get_by_code(session, code)
            cliente = session.get(Cliente, client_id)
            if not cliente or not cliente.activo:
                raise UnknownClient(cliente_id=client_id)

            GiftService._check_claimable(session, link, cliente)

            now = datetime.utcnow()
            GiftService._consume(session, link, client_id, now)

            es_puntos = link.tipo == TipoRegalo.PUNTOS
            beneficio = BeneficioCliente(
                id_cliente=client_id,
                id_link_regalo=link.id,
                nombre_beneficio=(
                    f"{link.puntos_regalo} puntos de regalo" if es_puntos else link.nombre_beneficio
                ),
                descripcion_beneficio=link.descripcion_beneficio or link.mensaje_personalizado,
                puntos_otorgados=link.puntos_regalo if es_puntos else None,
                fecha_expiracion=now + timedelta(days=link.vigencia_beneficio_dias),
            )
            session.add(beneficio)
            session.flush()

            if es_puntos:
                nuevo_saldo = LedgerService.apply_transaction(
                    session,
                    client_id=client_id,
                    delta=link.puntos_regalo,
                    reason=MotivoTransaccion.REGALO,
                    actor=actor,
                    descripcion=link.mensaje_personalizado or "Regalo",
                    referencia=f"regalo:{link.codigo}",
                )
                SyncService.enqueue(
                    session,
                    tipo_entidad=TipoEntidad.CLIENTE,
                    id_entidad=client_id,
                    operacion=OperacionSync.SYNC_CLIENTE,
                    payload={"puntos": nuevo_saldo},
                    origen="regalo",
                )
            else:
                nuevo_saldo = cliente.puntos_actuales
                SyncService.enqueue(
                    session,
                    tipo_entidad=TipoEntidad.BENEFICIO,
                    id_entidad=beneficio.id,
                    operacion=OperacionSync.CREATE_BENEFIT_TICKET,
                    payload={"evento": "creado", "codigo": link.codigo},
                    origen="regalo",
                )
            AppliedActionService.record(
                session,
                action_id,
                TipoAccion.RECLAMAR_REGALO,
                {"id_beneficio": beneficio.id, "nuevo_saldo": nuevo_saldo},
                client_id,
            )
            session.commit()
            session.refresh(beneficio)
        except IntegrityError:
            # Carrera en la restricción única link+cliente de una campaña
            session.rollback()
            raise GiftAlreadyClaimed("Ya canjeaste este regalo", codigo=code)
        except LoyaltyError as e:
            session.rollback()
            AuditService.record(
                session,
                tipo_evento=TipoEvento.GIFT_CLAIM_FAILED,
                tipo_entidad="link_regalo",
                id_entidad=code.strip().upper(),
                accion=f"Reclamo de regalo por cliente {client_id}",
                exito=False,
                mensaje_error=e.message,
                actor=f"cliente:{client_id}",
                datos={"code": e.code},
            )
            raise
        except Exception:
            session.rollback()
            raise

        logger.info("Regalo %s reclamado por cliente %s", link.codigo, client_id)
        AuditService.record(
            session,
            tipo_evento=TipoEvento.GIFT_CLAIMED,
            tipo_entidad="link_regalo",
            id_entidad=link.codigo,
            accion=f"Reclamado por cliente {client_id}",
            actor=actor,
            datos={"id_beneficio": beneficio.id, "nuevo_saldo": nuevo_saldo},
        )
        return beneficio, nuevo_saldo
