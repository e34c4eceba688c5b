"""
Script simple para crear datos iniciales básicos: catálogo y un cliente demo
"""
import sys
from pathlib import Path

# Añadir el directorio raíz del proyecto al sys.path
project_root = Path(__file__).resolve().parents[1]
sys.path.append(str(project_root))

from sqlmodel import select
from app.core.database import create_db_and_tables, new_session
from app.models.clients import Cliente
from app.models.ledger import ACTOR_SISTEMA, MotivoTransaccion
from app.models.products import Producto, TipoProducto
from app.services.ledger import LedgerService


PRODUCTOS = [
    Producto(nombre="Termo Manny", tipo=TipoProducto.PRODUCTO, puntos_requeridos=300, stock=20),
    Producto(nombre="Gorra Manny", tipo=TipoProducto.PRODUCTO, puntos_requeridos=200, stock=35),
    Producto(nombre="Lavado exterior", tipo=TipoProducto.SERVICIO, puntos_requeridos=150),
    Producto(nombre="Detallado de interiores", tipo=TipoProducto.SERVICIO, puntos_requeridos=600),
]


def create_basic_data():
    """Crear catálogo y cliente demo si no existen"""
    create_db_and_tables()
    with new_session() as session:
        print("🌱 Creando datos básicos...")

        print("📦 Creando catálogo...")
        for producto in PRODUCTOS:
            existing = session.exec(select(Producto).where(Producto.nombre == producto.nombre)).first()
            if not existing:
                session.add(producto)
        session.commit()
        print("✅ Catálogo creado")

        print("👤 Creando cliente demo...")
        cliente = session.exec(select(Cliente).where(Cliente.telefono == "5500000000")).first()
        if not cliente:
            cliente = Cliente(telefono="5500000000", nombre="Cliente Demo")
            session.add(cliente)
            session.commit()
            session.refresh(cliente)
            # El saldo inicial entra por el libro, nunca por escritura directa
            LedgerService.apply_transaction(
                session,
                client_id=cliente.id,
                delta=500,
                reason=MotivoTransaccion.ACUMULACION,
                actor=ACTOR_SISTEMA,
                descripcion="Saldo de bienvenida",
            )
            session.commit()
        print(f"✅ Cliente demo id={cliente.id} con {cliente.puntos_actuales} puntos")

        print("🎉 Datos básicos listos")


if __name__ == "__main__":
    create_basic_data()
