"""create_loyalty_core_tables

Revision ID: 5e1a2b3c4d6f
Revises:
Create Date: 2026-10-16 00:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


revision: str = "5e1a2b3c4d6f"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    bind = op.get_bind()
    inspector = sa.inspect(bind)
    existing = set(inspector.get_table_names())

    if "clientes" not in existing:
        op.create_table(
            "clientes",
            sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
            sa.Column("id_ext", sa.Uuid(), nullable=False, unique=True),
            sa.Column("creado_el", sa.DateTime(), nullable=False),
            sa.Column("telefono", sa.String(length=20), nullable=False, unique=True),
            sa.Column("nombre", sa.String(length=120), nullable=False),
            sa.Column("puntos_actuales", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("puntos_historicos", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("nivel", sa.String(length=20), nullable=False, server_default="partner"),
            sa.Column("es_admin", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("activo", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column("ultima_sincronizacion", sa.DateTime(), nullable=True),
            sa.CheckConstraint("puntos_actuales >= 0", name="ck_clientes_puntos_no_negativos"),
        )
        op.create_index("ix_clientes_telefono", "clientes", ["telefono"])
        op.create_index("ix_clientes_activo", "clientes", ["activo"])

    if "productos" not in existing:
        op.create_table(
            "productos",
            sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
            sa.Column("id_ext", sa.Uuid(), nullable=False, unique=True),
            sa.Column("creado_el", sa.DateTime(), nullable=False),
            sa.Column("nombre", sa.String(length=120), nullable=False),
            sa.Column("descripcion", sa.Text(), nullable=True),
            sa.Column("tipo", sa.String(length=20), nullable=False, server_default="producto"),
            sa.Column("puntos_requeridos", sa.Integer(), nullable=False),
            sa.Column("stock", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("activo", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column("imagen_url", sa.String(), nullable=True),
            sa.CheckConstraint("stock >= 0", name="ck_productos_stock_no_negativo"),
        )
        op.create_index("ix_productos_tipo", "productos", ["tipo"])
        op.create_index("ix_productos_activo", "productos", ["activo"])

    if "transacciones_puntos" not in existing:
        op.create_table(
            "transacciones_puntos",
            sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
            sa.Column("id_cliente", sa.Integer(), sa.ForeignKey("clientes.id"), nullable=False),
            sa.Column("delta", sa.Integer(), nullable=False),
            sa.Column("motivo", sa.String(length=20), nullable=False),
            sa.Column("actor", sa.String(length=80), nullable=False),
            sa.Column("saldo_anterior", sa.Integer(), nullable=False),
            sa.Column("saldo_posterior", sa.Integer(), nullable=False),
            sa.Column("descripcion", sa.String(length=200), nullable=True),
            sa.Column("referencia", sa.String(length=80), nullable=True),
            sa.Column("fecha", sa.DateTime(), nullable=False),
        )
        op.create_index("ix_transacciones_puntos_id_cliente", "transacciones_puntos", ["id_cliente"])
        op.create_index("ix_transacciones_puntos_motivo", "transacciones_puntos", ["motivo"])
        op.create_index("idx_transacciones_puntos_cliente_fecha", "transacciones_puntos", ["id_cliente", "fecha"])

    if "canjes" not in existing:
        op.create_table(
            "canjes",
            sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
            sa.Column("id_ext", sa.Uuid(), nullable=False, unique=True),
            sa.Column("id_cliente", sa.Integer(), sa.ForeignKey("clientes.id"), nullable=False),
            sa.Column("id_producto", sa.Integer(), sa.ForeignKey("productos.id"), nullable=False),
            sa.Column("puntos_usados", sa.Integer(), nullable=False),
            sa.Column("estado", sa.String(length=30), nullable=False, server_default="pendiente_entrega"),
            sa.Column("tipo_producto_original", sa.String(length=20), nullable=False),
            sa.Column("nombre_producto_original", sa.String(length=120), nullable=False),
            sa.Column("fecha_canje", sa.DateTime(), nullable=False),
            sa.Column("fecha_entrega", sa.DateTime(), nullable=True),
        )
        op.create_index("ix_canjes_id_cliente", "canjes", ["id_cliente"])
        op.create_index("ix_canjes_id_producto", "canjes", ["id_producto"])
        op.create_index("idx_canjes_estado_fecha", "canjes", ["estado", "fecha_canje"])

    if "links_regalo" not in existing:
        op.create_table(
            "links_regalo",
            sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
            sa.Column("id_ext", sa.Uuid(), nullable=False, unique=True),
            sa.Column("creado_el", sa.DateTime(), nullable=False),
            sa.Column("codigo", sa.String(length=12), nullable=False, unique=True),
            sa.Column("tipo", sa.String(length=20), nullable=False),
            sa.Column("puntos_regalo", sa.Integer(), nullable=True),
            sa.Column("nombre_beneficio", sa.String(length=120), nullable=True),
            sa.Column("descripcion_beneficio", sa.Text(), nullable=True),
            sa.Column("mensaje_personalizado", sa.Text(), nullable=True),
            sa.Column("destinatario_telefono", sa.String(length=20), nullable=True),
            sa.Column("estado", sa.String(length=20), nullable=False, server_default="pendiente"),
            sa.Column("fecha_expiracion", sa.DateTime(), nullable=True),
            sa.Column("es_campana", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("nombre_campana", sa.String(length=120), nullable=True),
            sa.Column("max_canjes", sa.Integer(), nullable=True),
            sa.Column("canjes_realizados", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("canjeado_por", sa.Integer(), sa.ForeignKey("clientes.id"), nullable=True),
            sa.Column("fecha_canje", sa.DateTime(), nullable=True),
            sa.Column("vigencia_beneficio_dias", sa.Integer(), nullable=False, server_default="365"),
            sa.Column("creado_por", sa.Integer(), sa.ForeignKey("clientes.id"), nullable=True),
        )
        op.create_index("ix_links_regalo_codigo", "links_regalo", ["codigo"])
        op.create_index("ix_links_regalo_estado", "links_regalo", ["estado"])

    if "beneficios_cliente" not in existing:
        op.create_table(
            "beneficios_cliente",
            sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
            sa.Column("id_ext", sa.Uuid(), nullable=False, unique=True),
            sa.Column("creado_el", sa.DateTime(), nullable=False),
            sa.Column("id_cliente", sa.Integer(), sa.ForeignKey("clientes.id"), nullable=False),
            sa.Column("id_link_regalo", sa.Integer(), sa.ForeignKey("links_regalo.id"), nullable=False),
            sa.Column("nombre_beneficio", sa.String(length=120), nullable=False),
            sa.Column("descripcion_beneficio", sa.Text(), nullable=True),
            sa.Column("puntos_otorgados", sa.Integer(), nullable=True),
            sa.Column("fecha_expiracion", sa.DateTime(), nullable=False),
            sa.Column("estado", sa.String(length=20), nullable=False, server_default="activo"),
            sa.UniqueConstraint("id_link_regalo", "id_cliente", name="uq_beneficio_link_cliente"),
        )
        op.create_index("ix_beneficios_cliente_id_cliente", "beneficios_cliente", ["id_cliente"])

    if "tareas_sync" not in existing:
        op.create_table(
            "tareas_sync",
            sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
            sa.Column("tipo_entidad", sa.String(length=20), nullable=False),
            sa.Column("id_entidad", sa.Integer(), nullable=False),
            sa.Column("operacion", sa.String(length=40), nullable=False),
            sa.Column("payload", sa.JSON(), nullable=False),
            sa.Column("estado", sa.String(length=20), nullable=False, server_default="pending"),
            sa.Column("intentos", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("ultimo_error", sa.Text(), nullable=True),
            sa.Column("resultado", sa.JSON(), nullable=True),
            sa.Column("proximo_intento", sa.DateTime(), nullable=True),
            sa.Column("origen", sa.String(length=40), nullable=False, server_default="app"),
            sa.Column("creado_el", sa.DateTime(), nullable=False),
            sa.Column("actualizado_el", sa.DateTime(), nullable=True),
        )
        op.create_index("ix_tareas_sync_estado", "tareas_sync", ["estado"])
        op.create_index("ix_tareas_sync_proximo_intento", "tareas_sync", ["proximo_intento"])
        op.create_index("idx_tareas_sync_entidad", "tareas_sync", ["tipo_entidad", "id_entidad", "id"])

    if "referencias_externas" not in existing:
        op.create_table(
            "referencias_externas",
            sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
            sa.Column("sistema", sa.String(length=30), nullable=False, server_default="notion"),
            sa.Column("tipo_entidad", sa.String(length=20), nullable=False),
            sa.Column("id_entidad", sa.Integer(), nullable=False),
            sa.Column("id_externo", sa.String(length=64), nullable=False),
            sa.Column("creado_el", sa.DateTime(), nullable=False),
            sa.UniqueConstraint("sistema", "tipo_entidad", "id_entidad", name="uq_ref_externa_entidad"),
            sa.UniqueConstraint("sistema", "id_externo", name="uq_ref_externa_id"),
        )

    if "registros_auditoria" not in existing:
        op.create_table(
            "registros_auditoria",
            sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
            sa.Column("tipo_evento", sa.String(length=40), nullable=False),
            sa.Column("tipo_entidad", sa.String(length=30), nullable=True),
            sa.Column("id_entidad", sa.String(length=40), nullable=True),
            sa.Column("accion", sa.String(length=200), nullable=False),
            sa.Column("exito", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column("mensaje_error", sa.Text(), nullable=True),
            sa.Column("actor", sa.String(length=80), nullable=True),
            sa.Column("datos", sa.JSON(), nullable=True),
            sa.Column("fecha", sa.DateTime(), nullable=False),
        )
        op.create_index("ix_registros_auditoria_tipo_evento", "registros_auditoria", ["tipo_evento"])
        op.create_index("ix_registros_auditoria_entidad", "registros_auditoria", ["tipo_entidad", "id_entidad"])
        op.create_index("ix_registros_auditoria_fecha", "registros_auditoria", ["fecha"])

    if "acciones_aplicadas" not in existing:
        op.create_table(
            "acciones_aplicadas",
            sa.Column("id_accion", sa.String(length=64), primary_key=True, nullable=False),
            sa.Column("tipo", sa.String(length=30), nullable=False),
            sa.Column("id_cliente", sa.Integer(), sa.ForeignKey("clientes.id"), nullable=True),
            sa.Column("resultado", sa.JSON(), nullable=False),
            sa.Column("fecha", sa.DateTime(), nullable=False),
        )
        op.create_index("ix_acciones_aplicadas_id_cliente", "acciones_aplicadas", ["id_cliente"])
        op.create_index("ix_acciones_aplicadas_fecha", "acciones_aplicadas", ["fecha"])


def downgrade() -> None:
    op.drop_table("acciones_aplicadas")
    op.drop_table("registros_auditoria")
    op.drop_table("referencias_externas")
    op.drop_table("tareas_sync")
    op.drop_table("beneficios_cliente")
    op.drop_table("links_regalo")
    op.drop_table("canjes")
    op.drop_table("transacciones_puntos")
    op.drop_table("productos")
    op.drop_table("clientes")
