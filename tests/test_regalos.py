from datetime import datetime, timedelta

import pytest
from sqlmodel import Session, select

from conftest import crear_cliente


def _crear_link(session: Session, **kwargs):
    from app.models.gifts import LinkRegaloCreate, TipoRegalo
    from app.services.gifts import GiftService

    datos = {"tipo": TipoRegalo.PUNTOS, "puntos_regalo": 150}
    datos.update(kwargs)
    return GiftService.create_gift_link(session, LinkRegaloCreate(**datos), creado_por=None)


def test_gift_code_uses_unambiguous_alphabet(db_session: Session):
    from app.services.gifts import ALFABETO_CODIGO

    link = _crear_link(db_session)
    campana = _crear_link(db_session, es_campana=True, nombre_campana="Aniversario", max_canjes=10)

    assert len(link.codigo) == 6
    assert len(campana.codigo) == 8
    assert set(link.codigo + campana.codigo) <= set(ALFABETO_CODIGO)
    assert link.fecha_expiracion > datetime.utcnow() + timedelta(days=29)


def test_gift_claimed_exactly_once(db_session: Session):
    from app.core.exceptions import GiftAlreadyClaimed
    from app.models.gifts import EstadoLinkRegalo
    from app.models.ledger import MotivoTransaccion, TransaccionPuntos
    from app.services.gifts import GiftService

    ana = crear_cliente(db_session, puntos=100)
    beto = crear_cliente(db_session, telefono="5598765432", nombre="Beto", puntos=40)
    link = _crear_link(db_session, puntos_regalo=150)

    beneficio, saldo = GiftService.claim_gift(db_session, code=link.codigo.lower(), client_id=ana.id)
    assert saldo == 250
    assert beneficio.puntos_otorgados == 150

    with pytest.raises(GiftAlreadyClaimed):
        GiftService.claim_gift(db_session, code=link.codigo, client_id=ana.id)
    with pytest.raises(GiftAlreadyClaimed):
        GiftService.claim_gift(db_session, code=link.codigo, client_id=beto.id)

    db_session.refresh(ana)
    db_session.refresh(beto)
    db_session.refresh(link)
    assert ana.puntos_actuales == 250
    assert beto.puntos_actuales == 40
    assert link.estado == EstadoLinkRegalo.CANJEADO
    assert link.canjeado_por == ana.id

    regalos = db_session.exec(
        select(TransaccionPuntos).where(TransaccionPuntos.motivo == MotivoTransaccion.REGALO)
    ).all()
    assert len(regalos) == 1
    assert regalos[0].actor == f"gift:{link.codigo}"


def test_unknown_and_expired_gifts(db_session: Session):
    from app.core.exceptions import GiftExpired, GiftNotFound
    from app.models.gifts import EstadoLinkRegalo
    from app.services.gifts import GiftService

    cliente = crear_cliente(db_session, puntos=0)
    link = _crear_link(db_session)
    link.fecha_expiracion = datetime.utcnow() - timedelta(minutes=1)
    db_session.add(link)
    db_session.commit()

    with pytest.raises(GiftNotFound):
        GiftService.claim_gift(db_session, code="ZZZZZZ", client_id=cliente.id)
    with pytest.raises(GiftExpired):
        GiftService.claim_gift(db_session, code=link.codigo, client_id=cliente.id)

    db_session.refresh(link)
    db_session.refresh(cliente)
    assert link.estado == EstadoLinkRegalo.EXPIRADO
    assert cliente.puntos_actuales == 0
    assert GiftService.get_public(db_session, link.codigo).estado == "expirado"


def test_gift_restricted_to_recipient_phone(db_session: Session):
    from app.core.exceptions import GiftNotFound, GiftRestricted
    from app.services.gifts import GiftService

    destinatario = crear_cliente(db_session, telefono="5511112222")
    otro = crear_cliente(db_session, telefono="5533334444", nombre="Otro")
    link = _crear_link(db_session, destinatario_telefono="+52 55 1111 2222")

    with pytest.raises(GiftRestricted) as exc:
        GiftService.claim_gift(db_session, code=link.codigo, client_id=otro.id)
    assert isinstance(exc.value, GiftNotFound)

    _, saldo = GiftService.claim_gift(db_session, code=link.codigo, client_id=destinatario.id)
    assert saldo == 150


def test_campaign_once_per_client_until_exhausted(db_session: Session):
    from app.core.exceptions import GiftAlreadyClaimed
    from app.services.gifts import GiftService

    clientes = [
        crear_cliente(db_session, telefono=f"55000000{i:02d}", nombre=f"Cliente {i}") for i in range(3)
    ]
    campana = _crear_link(db_session, puntos_regalo=50, es_campana=True, nombre_campana="Verano", max_canjes=2)

    GiftService.claim_gift(db_session, code=campana.codigo, client_id=clientes[0].id)
    with pytest.raises(GiftAlreadyClaimed):
        GiftService.claim_gift(db_session, code=campana.codigo, client_id=clientes[0].id)

    GiftService.claim_gift(db_session, code=campana.codigo, client_id=clientes[1].id)
    with pytest.raises(GiftAlreadyClaimed) as exc:
        GiftService.claim_gift(db_session, code=campana.codigo, client_id=clientes[2].id)
    assert "límite" in exc.value.message

    db_session.refresh(campana)
    assert campana.canjes_realizados == 2
    assert GiftService.get_public(db_session, campana.codigo).estado == "agotado"


def test_benefit_gift_grants_no_points_and_queues_ticket(db_session: Session):
    from app.models.gifts import TipoRegalo
    from app.models.ledger import TransaccionPuntos
    from app.models.sync import OperacionSync, TareaSync, TipoEntidad
    from app.services.gifts import GiftService

    cliente = crear_cliente(db_session, puntos=80)
    link = _crear_link(
        db_session,
        tipo=TipoRegalo.BENEFICIO,
        puntos_regalo=None,
        nombre_beneficio="Lavado gratis",
        descripcion_beneficio="Un lavado exterior",
    )

    beneficio, saldo = GiftService.claim_gift(db_session, code=link.codigo, client_id=cliente.id)

    assert saldo == 80
    assert beneficio.nombre_beneficio == "Lavado gratis"
    assert db_session.exec(select(TransaccionPuntos)).all() == []
    tareas = db_session.exec(select(TareaSync)).all()
    assert [(t.operacion, t.tipo_entidad, t.id_entidad) for t in tareas] == [
        (OperacionSync.CREATE_BENEFIT_TICKET, TipoEntidad.BENEFICIO, beneficio.id)
    ]


def test_points_gift_requires_amount(db_session: Session):
    from app.models.gifts import LinkRegaloCreate, TipoRegalo
    from app.services.gifts import GiftService

    with pytest.raises(ValueError, match="GIFT_POINTS_REQUIRED"):
        GiftService.create_gift_link(db_session, LinkRegaloCreate(tipo=TipoRegalo.PUNTOS))
