import asyncio
import json
from datetime import datetime, timedelta

import httpx
import pytest
from sqlmodel import Session, select

from conftest import auth_headers, crear_cliente, crear_producto


class FallaTransitoria:
    """Ejecutor que simula perder la red en las llamadas indicadas"""

    def __init__(self, interno, fallar_en):
        self.interno = interno
        self.fallar_en = set(fallar_en)
        self.llamadas = 0

    async def execute(self, accion):
        from app.core.exceptions import TransientSyncFailure

        self.llamadas += 1
        if self.llamadas in self.fallar_en:
            raise TransientSyncFailure("sin conexión")
        return await self.interno.execute(accion)


class RespuestaPerdida:
    """Ejecutor que aplica la acción pero pierde la respuesta en la primera llamada"""

    def __init__(self, interno):
        self.interno = interno
        self.llamadas = 0

    async def execute(self, accion):
        from app.core.exceptions import TransientSyncFailure

        self.llamadas += 1
        resultado = await self.interno.execute(accion)
        if self.llamadas == 1:
            raise TransientSyncFailure("timeout leyendo la respuesta")
        return resultado


def _cola(tmp_path, executor, **kwargs):
    from app.offline import JsonStore, OfflineQueue

    return OfflineQueue(JsonStore(tmp_path / "offline.json"), executor, **kwargs)


def _service_executor(engine):
    from app.offline import ServiceExecutor

    return ServiceExecutor(lambda: Session(engine))


def test_drain_applies_actions_in_enqueue_order(engine, db_session: Session, tmp_path):
    from app.offline import TipoAccion

    cliente = crear_cliente(db_session, puntos=250)
    producto = crear_producto(db_session, puntos=300, stock=1)
    cola = _cola(tmp_path, _service_executor(engine))

    cola.enqueue(TipoAccion.AJUSTAR_PUNTOS, {"id_cliente": cliente.id, "delta": 100, "actor": "admin:1"})
    cola.enqueue(TipoAccion.CANJEAR, {"id_cliente": cliente.id, "id_producto": producto.id})
    assert [a.tipo for a in cola.pending_actions()] == [TipoAccion.AJUSTAR_PUNTOS, TipoAccion.CANJEAR]

    resumen = asyncio.run(cola.drain())

    assert resumen.aplicadas == 2
    assert resumen.fallidas == 0
    assert cola.pending_actions() == []
    db_session.refresh(cliente)
    db_session.refresh(producto)
    assert cliente.puntos_actuales == 50
    assert producto.stock == 0


def test_out_of_order_replay_fails_the_redemption_and_surfaces_it(engine, db_session: Session, tmp_path):
    from app.offline import TipoAccion

    cliente = crear_cliente(db_session, puntos=250)
    producto = crear_producto(db_session, puntos=300, stock=1)
    cola = _cola(tmp_path, _service_executor(engine))

    canje = cola.enqueue(TipoAccion.CANJEAR, {"id_cliente": cliente.id, "id_producto": producto.id})
    cola.enqueue(TipoAccion.AJUSTAR_PUNTOS, {"id_cliente": cliente.id, "delta": 100})

    resumen = asyncio.run(cola.drain())

    assert resumen.aplicadas == 1
    assert resumen.fallidas == 1
    fallidas = cola.failed_actions()
    assert [a.id for a in fallidas] == [canje.id]
    assert fallidas[0].codigo_error == "INSUFFICIENT_POINTS"
    assert "50" in fallidas[0].ultimo_error
    db_session.refresh(cliente)
    assert cliente.puntos_actuales == 350

    # Sigue visible hasta que el usuario la descarta
    asyncio.run(cola.drain())
    assert len(cola.failed_actions()) == 1
    assert cola.dismiss(canje.id) is True
    assert cola.failed_actions() == []


def test_interrupted_drain_resumes_from_first_pending_action(engine, db_session: Session, tmp_path):
    from app.offline import EstadoAccion, TipoAccion

    cliente = crear_cliente(db_session, puntos=0)
    executor = FallaTransitoria(_service_executor(engine), fallar_en={2})
    cola = _cola(tmp_path, executor, base_delay=2.0, max_attempts=5)
    for delta in (10, 20, 30):
        cola.enqueue(TipoAccion.AJUSTAR_PUNTOS, {"id_cliente": cliente.id, "delta": delta})

    ahora = datetime(2026, 3, 1, 9, 0, 0)
    resumen = asyncio.run(cola.drain(now=ahora))

    assert resumen.aplicadas == 1
    assert resumen.interrumpido is True
    pendientes = cola.pending_actions()
    assert [a.payload["delta"] for a in pendientes] == [20, 30]
    assert pendientes[0].intentos == 1
    assert pendientes[0].estado == EstadoAccion.PENDING
    assert pendientes[0].proximo_intento == ahora + timedelta(seconds=2)
    assert pendientes[1].intentos == 0

    # Antes del backoff no se adelanta ninguna acción
    resumen = asyncio.run(cola.drain(now=ahora + timedelta(seconds=1)))
    assert resumen.aplicadas == 0
    db_session.refresh(cliente)
    assert cliente.puntos_actuales == 10

    resumen = asyncio.run(cola.drain(now=ahora + timedelta(seconds=2)))
    assert resumen.aplicadas == 2
    db_session.refresh(cliente)
    assert cliente.puntos_actuales == 60


def test_action_enqueued_while_draining_is_not_lost(engine, db_session: Session, tmp_path):
    from app.offline import TipoAccion

    cliente = crear_cliente(db_session, puntos=0)
    interno = _service_executor(engine)
    nuevas = []

    class EncolaDuranteEjecucion:
        async def execute(self, accion):
            if not nuevas:
                # El usuario sigue operando mientras la primera acción viaja
                nuevas.append(cola.enqueue(TipoAccion.AJUSTAR_PUNTOS, {"id_cliente": cliente.id, "delta": 40}))
                await asyncio.sleep(0)
            return await interno.execute(accion)

    cola = _cola(tmp_path, EncolaDuranteEjecucion())
    cola.enqueue(TipoAccion.AJUSTAR_PUNTOS, {"id_cliente": cliente.id, "delta": 10})

    resumen = asyncio.run(cola.drain())

    assert resumen.aplicadas == 2
    assert resumen.pendientes == 0
    assert cola.pending_actions() == []
    db_session.refresh(cliente)
    assert cliente.puntos_actuales == 50


def test_replay_after_lost_response_charges_once(engine, db_session: Session, tmp_path):
    from app.models.ledger import MotivoTransaccion, TransaccionPuntos
    from app.models.redemptions import Canje
    from app.offline import TipoAccion

    cliente = crear_cliente(db_session, puntos=500)
    producto = crear_producto(db_session, puntos=300, stock=2)
    cola = _cola(tmp_path, RespuestaPerdida(_service_executor(engine)), base_delay=2.0)
    cola.enqueue(TipoAccion.CANJEAR, {"id_cliente": cliente.id, "id_producto": producto.id})

    ahora = datetime(2026, 3, 1, 9, 0, 0)
    resumen = asyncio.run(cola.drain(now=ahora))
    assert resumen.interrumpido is True
    assert resumen.pendientes == 1

    resumen = asyncio.run(cola.drain(now=ahora + timedelta(minutes=1)))
    assert resumen.aplicadas == 1
    assert cola.pending_actions() == []

    db_session.refresh(cliente)
    db_session.refresh(producto)
    assert cliente.puntos_actuales == 200
    assert producto.stock == 1
    assert len(db_session.exec(select(Canje)).all()) == 1
    debitos = db_session.exec(
        select(TransaccionPuntos).where(TransaccionPuntos.motivo == MotivoTransaccion.CANJE)
    ).all()
    assert [t.delta for t in debitos] == [-300]


def test_logout_clears_queue_and_profile(tmp_path):
    from app.models.clients import ClienteRead
    from app.offline import JsonStore, OfflineQueue, ProfileCache, TipoAccion

    store = JsonStore(tmp_path / "offline.json")
    cola = OfflineQueue(store, executor=None)
    cache = ProfileCache(store)
    cache.save(ClienteRead(id=1, telefono="5512345678", nombre="Ana", puntos_actuales=0, puntos_historicos=0, nivel="partner"))
    cola.enqueue(TipoAccion.CANJEAR, {"id_cliente": 1, "id_producto": 1})
    cola.enqueue(TipoAccion.RECLAMAR_REGALO, {"id_cliente": 1, "codigo": "ABC234"})

    assert cola.clear() == 2
    cache.clear()

    assert cola.pending_actions() == []
    assert cache.load() is None
    assert cola.clear() == 0

    store.set("preferencias", {"tema": "oscuro"})
    store.clear()
    assert store.get("preferencias") is None


def test_transient_failures_park_action_after_ceiling(tmp_path):
    from app.core.exceptions import TransientSyncFailure
    from app.offline import TipoAccion

    class SinRed:
        async def execute(self, accion):
            raise TransientSyncFailure("timeout")

    cola = _cola(tmp_path, SinRed(), base_delay=1.0, max_attempts=3)
    accion = cola.enqueue(TipoAccion.CANJEAR, {"id_cliente": 1, "id_producto": 1})

    ahora = datetime(2026, 3, 1, 9, 0, 0)
    for _ in range(3):
        asyncio.run(cola.drain(now=ahora))
        ahora += timedelta(hours=1)

    fallidas = cola.failed_actions()
    assert [a.id for a in fallidas] == [accion.id]
    assert fallidas[0].intentos == 3
    assert fallidas[0].codigo_error == "RETRIES_EXHAUSTED"

    assert cola.retry(accion.id) is True
    assert cola.pending_actions()[0].intentos == 0


def test_queue_survives_restart(engine, tmp_path):
    from app.offline import TipoAccion

    primera = _cola(tmp_path, _service_executor(engine))
    accion = primera.enqueue(TipoAccion.RECLAMAR_REGALO, {"id_cliente": 3, "codigo": "ABC234"})

    segunda = _cola(tmp_path, _service_executor(engine))
    pendientes = segunda.pending_actions()
    assert [a.id for a in pendientes] == [accion.id]
    assert pendientes[0].payload == {"id_cliente": 3, "codigo": "ABC234"}


def test_corrupt_store_is_discarded_with_warning(tmp_path, caplog):
    from app.offline import JsonStore, KEY_OFFLINE_QUEUE, OfflineQueue

    ruta = tmp_path / "offline.json"
    ruta.write_text("{esto no es json", encoding="utf-8")
    cola = OfflineQueue(JsonStore(ruta), executor=None)

    with caplog.at_level("WARNING"):
        assert cola.pending_actions() == []
    assert "corrupto" in caplog.text
    assert json.loads(ruta.read_text(encoding="utf-8")) == {}

    ruta.write_text(
        json.dumps({KEY_OFFLINE_QUEUE: [{"tipo": "canjear", "payload": {"id_producto": 1}}, {"tipo": "volar"}]}),
        encoding="utf-8",
    )
    assert [a.tipo.value for a in cola.pending_actions()] == ["canjear"]


def test_profile_cache_roundtrip_and_corruption(tmp_path):
    from app.models.clients import ClienteRead, TipoNivelCliente
    from app.offline import JsonStore, KEY_CLIENTE_PERFIL, ProfileCache

    store = JsonStore(tmp_path / "offline.json")
    cache = ProfileCache(store)
    assert cache.load() is None

    perfil = ClienteRead(
        id=1, telefono="5512345678", nombre="Ana", puntos_actuales=80, puntos_historicos=300, nivel=TipoNivelCliente.VIP
    )
    cache.save(perfil)
    assert cache.load() == perfil

    store.set(KEY_CLIENTE_PERFIL, {"id": "no-es-numero"})
    assert cache.load() is None
    assert store.get(KEY_CLIENTE_PERFIL) is None


def test_reconnect_triggers_drain(engine, db_session: Session, tmp_path):
    from app.offline import TipoAccion

    cliente = crear_cliente(db_session, puntos=0)
    cola = _cola(tmp_path, _service_executor(engine))
    cola.enqueue(TipoAccion.AJUSTAR_PUNTOS, {"id_cliente": cliente.id, "delta": 25})

    assert asyncio.run(cola.set_online(False)) is None
    resumen = asyncio.run(cola.set_online(True))

    assert resumen.aplicadas == 1
    assert cola.is_online is True
    db_session.refresh(cliente)
    assert cliente.puntos_actuales == 25


def test_watch_drains_while_online(engine, db_session: Session, tmp_path):
    from app.offline import TipoAccion

    cliente = crear_cliente(db_session, puntos=0)
    cola = _cola(tmp_path, _service_executor(engine), online=True)
    cola.enqueue(TipoAccion.AJUSTAR_PUNTOS, {"id_cliente": cliente.id, "delta": 5})

    async def escenario():
        stop = asyncio.Event()
        vigilante = asyncio.create_task(cola.watch(interval=0.01, stop=stop))
        for _ in range(200):
            if not cola.pending_actions():
                break
            await asyncio.sleep(0.01)
        stop.set()
        await vigilante

    asyncio.run(escenario())

    assert cola.pending_actions() == []
    db_session.refresh(cliente)
    assert cliente.puntos_actuales == 5


def test_api_executor_maps_responses():
    from app.core.exceptions import InsufficientPoints, TransientSyncFailure
    from app.offline import AccionOffline, ApiExecutor, TipoAccion

    respuestas = {
        "/api/v1/canjes": httpx.Response(
            409,
            json={
                "code": "INSUFFICIENT_POINTS",
                "detail": "Puntos insuficientes: tienes 250, necesitas 300 (te faltan 50)",
                "data": {"disponibles": 250, "requeridos": 300, "faltantes": 50},
            },
        ),
        "/api/v1/regalos/ABC234/reclamar": httpx.Response(503, json={"detail": "caído"}),
    }
    vistas = []

    def handler(request: httpx.Request) -> httpx.Response:
        vistas.append(request)
        if request.url.path in respuestas:
            return respuestas[request.url.path]
        raise httpx.ConnectError("sin red", request=request)

    executor = ApiExecutor(
        "http://api", "token-123", client=httpx.AsyncClient(transport=httpx.MockTransport(handler), base_url="http://api")
    )

    canje = AccionOffline(tipo=TipoAccion.CANJEAR, payload={"id_cliente": 1, "id_producto": 9})
    with pytest.raises(InsufficientPoints) as exc:
        asyncio.run(executor.execute(canje))
    assert exc.value.data["faltantes"] == 50
    assert json.loads(vistas[0].content) == {"id_producto": 9}
    assert vistas[0].headers["Authorization"] == "Bearer token-123"
    assert vistas[0].headers["X-Request-ID"] == canje.id
    assert vistas[0].headers["Idempotency-Key"] == canje.id

    with pytest.raises(TransientSyncFailure):
        asyncio.run(executor.execute(AccionOffline(tipo=TipoAccion.RECLAMAR_REGALO, payload={"codigo": "ABC234"})))

    with pytest.raises(TransientSyncFailure):
        asyncio.run(executor.execute(AccionOffline(tipo=TipoAccion.AVANZAR_ESTADO, payload={"id_canje": 4, "estado": "en_lista"})))


def test_api_executor_replays_scenario_against_app(client, db_session: Session, tmp_path):
    from app.main import app
    from app.offline import ApiExecutor, TipoAccion

    admin = crear_cliente(db_session, puntos=250, es_admin=True)
    producto = crear_producto(db_session, puntos=300, stock=1)
    token = auth_headers(admin)["Authorization"].split(" ", 1)[1]

    async def escenario():
        transporte = httpx.ASGITransport(app=app)
        async with httpx.AsyncClient(transport=transporte, base_url="http://test") as http:
            cola = _cola(tmp_path, ApiExecutor("http://test", token, client=http))
            cola.enqueue(TipoAccion.AJUSTAR_PUNTOS, {"id_cliente": admin.id, "delta": 100})
            cola.enqueue(TipoAccion.CANJEAR, {"id_producto": producto.id})
            return await cola.drain(), cola

    resumen, cola = asyncio.run(escenario())

    assert resumen.aplicadas == 2
    assert cola.failed_actions() == []
    db_session.refresh(admin)
    assert admin.puntos_actuales == 50
