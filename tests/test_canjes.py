import pytest
from sqlmodel import Session, select

from conftest import crear_cliente, crear_producto


def test_redeem_500_balance_for_300_point_product(db_session: Session):
    from app.models.ledger import MotivoTransaccion, TransaccionPuntos
    from app.models.redemptions import EstadoCanje
    from app.models.sync import OperacionSync, TareaSync, TipoEntidad
    from app.services.redemptions import RedemptionService

    cliente = crear_cliente(db_session, puntos=500)
    producto = crear_producto(db_session, puntos=300, stock=1)

    canje, nuevo_saldo = RedemptionService.create_redemption(
        db_session, client_id=cliente.id, product_id=producto.id
    )

    db_session.refresh(cliente)
    db_session.refresh(producto)
    assert nuevo_saldo == 200
    assert cliente.puntos_actuales == 200
    assert producto.stock == 0
    assert canje.estado == EstadoCanje.PENDIENTE_ENTREGA
    assert canje.puntos_usados == 300

    tareas = db_session.exec(select(TareaSync)).all()
    assert len(tareas) == 1
    assert tareas[0].tipo_entidad == TipoEntidad.CANJE
    assert tareas[0].id_entidad == canje.id
    assert tareas[0].operacion == OperacionSync.SYNC_CANJE
    assert tareas[0].payload["evento"] == "creado"

    transacciones = db_session.exec(select(TransaccionPuntos)).all()
    assert [(t.delta, t.motivo) for t in transacciones] == [(-300, MotivoTransaccion.CANJE)]
    assert transacciones[0].referencia == f"canje:{canje.id}"


def test_insufficient_points_explains_deficit_and_changes_nothing(db_session: Session):
    from app.core.exceptions import InsufficientPoints
    from app.models.audit import RegistroAuditoria, TipoEvento
    from app.models.redemptions import Canje
    from app.models.sync import TareaSync
    from app.services.redemptions import RedemptionService

    cliente = crear_cliente(db_session, puntos=120)
    producto = crear_producto(db_session, puntos=300, stock=4)

    with pytest.raises(InsufficientPoints) as exc:
        RedemptionService.create_redemption(db_session, client_id=cliente.id, product_id=producto.id)

    assert exc.value.data["faltantes"] == 180
    assert "180" in exc.value.message
    db_session.refresh(cliente)
    db_session.refresh(producto)
    assert cliente.puntos_actuales == 120
    assert producto.stock == 4
    assert db_session.exec(select(Canje)).all() == []
    assert db_session.exec(select(TareaSync)).all() == []

    fallidos = db_session.exec(
        select(RegistroAuditoria).where(RegistroAuditoria.tipo_evento == TipoEvento.REDEMPTION_FAILED)
    ).all()
    assert len(fallidos) == 1
    assert fallidos[0].exito is False


def test_inactive_and_out_of_stock_products_are_unavailable(db_session: Session):
    from app.core.exceptions import OutOfStock, ProductUnavailable
    from app.services.redemptions import RedemptionService

    cliente = crear_cliente(db_session, puntos=1000)
    inactivo = crear_producto(db_session, nombre="Gorra", activo=False)
    agotado = crear_producto(db_session, nombre="Playera", stock=0)

    with pytest.raises(ProductUnavailable) as exc:
        RedemptionService.create_redemption(db_session, client_id=cliente.id, product_id=inactivo.id)
    assert not isinstance(exc.value, OutOfStock)

    with pytest.raises(OutOfStock):
        RedemptionService.create_redemption(db_session, client_id=cliente.id, product_id=agotado.id)

    db_session.refresh(cliente)
    assert cliente.puntos_actuales == 1000


def test_service_products_skip_stock(db_session: Session):
    from app.models.products import TipoProducto
    from app.services.redemptions import RedemptionService

    cliente = crear_cliente(db_session, puntos=400)
    servicio = crear_producto(db_session, nombre="Lavado de auto", puntos=150, stock=0, tipo=TipoProducto.SERVICIO)

    canje, saldo = RedemptionService.create_redemption(db_session, client_id=cliente.id, product_id=servicio.id)

    db_session.refresh(servicio)
    assert saldo == 250
    assert servicio.stock == 0
    assert canje.tipo_producto_original == TipoProducto.SERVICIO


def test_competing_redemptions_never_oversell(engine, db_session: Session):
    """Tres pestañas que vieron stock 2: solo dos canjes se confirman"""
    from app.core.exceptions import OutOfStock
    from app.models.products import Producto
    from app.models.redemptions import Canje
    from app.services.redemptions import RedemptionService

    cliente = crear_cliente(db_session, puntos=900)
    producto = crear_producto(db_session, puntos=300, stock=2)

    pestañas = [Session(engine) for _ in range(3)]
    try:
        for pestaña in pestañas:
            assert pestaña.get(Producto, producto.id).stock == 2

        resultados = []
        for pestaña in pestañas:
            try:
                RedemptionService.create_redemption(pestaña, client_id=cliente.id, product_id=producto.id)
                resultados.append("ok")
            except OutOfStock:
                resultados.append("agotado")
    finally:
        for pestaña in pestañas:
            pestaña.close()

    assert resultados.count("ok") == 2
    assert resultados.count("agotado") == 1

    db_session.refresh(producto)
    db_session.refresh(cliente)
    assert producto.stock == 0
    assert cliente.puntos_actuales == 300
    assert len(db_session.exec(select(Canje)).all()) == 2


def test_points_charged_is_a_snapshot(db_session: Session):
    from app.models.redemptions import Canje
    from app.services.redemptions import RedemptionService

    cliente = crear_cliente(db_session, puntos=500)
    producto = crear_producto(db_session, puntos=300, stock=3)
    canje, _ = RedemptionService.create_redemption(db_session, client_id=cliente.id, product_id=producto.id)

    producto.puntos_requeridos = 450
    producto.nombre = "Termo Manny edición 2"
    db_session.add(producto)
    db_session.commit()

    guardado = db_session.get(Canje, canje.id)
    db_session.refresh(guardado)
    assert guardado.puntos_usados == 300
    assert guardado.nombre_producto_original == "Termo Manny"


def test_status_only_advances_one_step_at_a_time(db_session: Session):
    from app.core.exceptions import InvalidTransition
    from app.models.redemptions import EstadoCanje
    from app.models.sync import TareaSync
    from app.services.redemptions import RedemptionService

    cliente = crear_cliente(db_session, puntos=500)
    producto = crear_producto(db_session, puntos=100, stock=5)
    canje, _ = RedemptionService.create_redemption(db_session, client_id=cliente.id, product_id=producto.id)

    with pytest.raises(InvalidTransition):
        RedemptionService.advance_status(db_session, redemption_id=canje.id, target="completado")
    with pytest.raises(InvalidTransition):
        RedemptionService.advance_status(db_session, redemption_id=canje.id, target="entregado")

    canje = RedemptionService.advance_status(db_session, redemption_id=canje.id, target="agendado")
    assert canje.estado == EstadoCanje.EN_LISTA

    canje = RedemptionService.advance_status(db_session, redemption_id=canje.id, target="entregado")
    assert canje.estado == EstadoCanje.ENTREGADO
    assert canje.fecha_entrega is not None

    with pytest.raises(InvalidTransition):
        RedemptionService.advance_status(db_session, redemption_id=canje.id, target="en_lista")

    canje = RedemptionService.advance_status(db_session, redemption_id=canje.id, target="completado")
    assert canje.estado == EstadoCanje.COMPLETADO
    assert canje.puntos_usados == 100

    with pytest.raises(InvalidTransition):
        RedemptionService.advance_status(db_session, redemption_id=canje.id, target="completado")
    with pytest.raises(InvalidTransition):
        RedemptionService.advance_status(db_session, redemption_id=canje.id, target="cancelado")

    tareas = db_session.exec(select(TareaSync).order_by(TareaSync.id)).all()
    assert [t.payload["estado"] for t in tareas] == [
        "pendiente_entrega",
        "en_lista",
        "entregado",
        "completado",
    ]


def test_advance_unknown_redemption(db_session: Session):
    from app.core.exceptions import UnknownRedemption
    from app.services.redemptions import RedemptionService

    with pytest.raises(UnknownRedemption):
        RedemptionService.advance_status(db_session, redemption_id=42, target="en_lista")


def test_audit_failure_does_not_abort_redemption(db_session: Session, monkeypatch):
    from sqlalchemy.exc import OperationalError
    from app.models.redemptions import Canje
    from app.services.redemptions import RedemptionService

    cliente = crear_cliente(db_session, puntos=500)
    producto = crear_producto(db_session, puntos=300, stock=1)

    commit_original = db_session.commit
    llamadas = {"n": 0}

    def commit_que_falla_en_auditoria():
        llamadas["n"] += 1
        if llamadas["n"] == 2:
            raise OperationalError("INSERT INTO registros_auditoria", {}, Exception("disco lleno"))
        return commit_original()

    monkeypatch.setattr(db_session, "commit", commit_que_falla_en_auditoria)
    canje, saldo = RedemptionService.create_redemption(db_session, client_id=cliente.id, product_id=producto.id)
    monkeypatch.undo()

    assert saldo == 200
    assert db_session.get(Canje, canje.id) is not None
