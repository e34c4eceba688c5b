import pytest
from sqlmodel import Session, select

from conftest import crear_cliente, crear_producto


URL = "/api/v1/webhooks/notion/canje-estado"
SECRETO = "s3cr3t"


@pytest.fixture()
def secreto(monkeypatch):
    from app.core.config import settings

    monkeypatch.setattr(settings, "notion_webhook_secret", SECRETO)
    return {"X-Webhook-Secret": SECRETO}


def _payload(estado, id_rewards=None, page_id="page-x", envoltura="data"):
    props = {"Estado": {"select": {"name": estado}}}
    if id_rewards:
        props["ID Rewards"] = {"rich_text": [{"plain_text": id_rewards}]}
    pagina = {"id": page_id, "properties": props}
    if envoltura == "data":
        return {"data": pagina}
    if envoltura == "page":
        return {"page": pagina}
    return pagina


def _canje(session):
    from app.services.redemptions import RedemptionService

    cliente = crear_cliente(session, puntos=500)
    producto = crear_producto(session, puntos=300, stock=5)
    canje, _ = RedemptionService.create_redemption(session, client_id=cliente.id, product_id=producto.id)
    return canje


def test_webhook_requires_shared_secret(client, monkeypatch):
    from app.core.config import settings

    monkeypatch.setattr(settings, "notion_webhook_secret", None)
    assert client.post(URL, json={"challenge": "abc"}, headers={"X-Webhook-Secret": "x"}).status_code == 503

    monkeypatch.setattr(settings, "notion_webhook_secret", SECRETO)
    assert client.post(URL, json={"challenge": "abc"}).status_code == 401
    assert client.post(URL, json={"challenge": "abc"}, headers={"X-Webhook-Secret": "otro"}).status_code == 401


def test_webhook_answers_challenge_and_rejects_payload_without_page(client, secreto):
    res = client.post(URL, json={"challenge": "abc-123"}, headers=secreto)
    assert res.status_code == 200
    assert res.json() == {"challenge": "abc-123"}

    res = client.post(URL, json={"data": {"id": "page-x"}}, headers=secreto)
    assert res.status_code == 400


def test_forward_jump_is_applied_step_by_step(client, db_session: Session, secreto):
    from app.models.audit import RegistroAuditoria, TipoEvento
    from app.models.redemptions import EstadoCanje
    from app.models.sync import TareaSync

    canje = _canje(db_session)

    res = client.post(URL, json=_payload("Entregado", str(canje.id_ext)), headers=secreto)

    assert res.status_code == 200
    body = res.json()
    assert body["status"] == "success"
    assert body["pasos"] == 2
    assert body["estado"] == "entregado"

    db_session.refresh(canje)
    assert canje.estado == EstadoCanje.ENTREGADO
    assert canje.fecha_entrega is not None
    pasos = db_session.exec(
        select(RegistroAuditoria).where(RegistroAuditoria.tipo_evento == TipoEvento.REDEMPTION_STATUS)
    ).all()
    assert [(p.accion, p.actor) for p in pasos] == [
        ("pendiente_entrega -> en_lista", "notion:webhook"),
        ("en_lista -> entregado", "notion:webhook"),
    ]
    # Alta del canje y un SYNC_CANJE por cada paso
    assert len(db_session.exec(select(TareaSync)).all()) == 3


def test_echo_backwards_and_unknown_states_are_skipped(client, db_session: Session, secreto):
    from app.models.redemptions import EstadoCanje
    from app.services.redemptions import RedemptionService

    canje = _canje(db_session)
    RedemptionService.advance_status(db_session, redemption_id=canje.id, target="en_lista")
    id_rewards = str(canje.id_ext)

    casos = [
        ("En Proceso", "sin cambios"),
        ("Agendado", "sin cambios"),
        ("Pendiente Entrega", "retroceso no permitido"),
        ("Cancelado", "estado desconocido"),
    ]
    for estado, motivo in casos:
        res = client.post(URL, json=_payload(estado, id_rewards), headers=secreto)
        assert res.status_code == 200
        assert res.json()["status"] == "skipped"
        assert res.json()["motivo"] == motivo

    res = client.post(URL, json=_payload("Entregado", "no-es-un-uuid", page_id="page-ajena"), headers=secreto)
    assert res.json()["status"] == "skipped"
    assert res.json()["motivo"] == "canje no encontrado"

    db_session.refresh(canje)
    assert canje.estado == EstadoCanje.EN_LISTA


def test_redemption_found_by_page_id_when_id_rewards_missing(client, db_session: Session, secreto):
    from app.models.redemptions import EstadoCanje
    from app.models.sync import TipoEntidad
    from app.services.sync import SyncService

    canje = _canje(db_session)
    SyncService.save_ref(db_session, TipoEntidad.CANJE, canje.id, "page-abc")

    for envoltura in ("page", "raiz"):
        res = client.post(URL, json=_payload("Agendado", page_id="page-abc", envoltura=envoltura), headers=secreto)
        assert res.status_code == 200

    db_session.refresh(canje)
    assert canje.estado == EstadoCanje.EN_LISTA
