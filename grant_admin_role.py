#!/usr/bin/env python3
"""
Script utilitario para otorgar (o revocar) el permiso de administrador a un
cliente, identificado por su teléfono.

Uso:
    python grant_admin_role.py 5512345678
    python grant_admin_role.py 5512345678 --revocar
"""
import argparse
import sys
from pathlib import Path

# Añadir la raíz del proyecto al sys.path
project_root = Path(__file__).resolve().parent
sys.path.append(str(project_root))

from sqlmodel import select
from app.core.database import new_session
from app.models.audit import RegistroAuditoria, TipoEvento
from app.models.clients import Cliente


def grant_admin_role(telefono: str, revocar: bool = False):
    with new_session() as session:
        cliente = session.exec(select(Cliente).where(Cliente.telefono == telefono)).first()
        if not cliente:
            print(f"❌ No existe un cliente con teléfono {telefono}.")
            print("   Crea uno con scripts/simple_seed.py y vuelve a ejecutar.")
            return

        print(f"👤 Cliente encontrado: id={cliente.id}, nombre={cliente.nombre}")

        if cliente.es_admin != revocar:
            print("✅ No hay cambios: el cliente ya está en el estado solicitado.")
            return

        cliente.es_admin = not revocar
        session.add(cliente)
        session.add(
            RegistroAuditoria(
                tipo_evento=TipoEvento.ADMIN_CHANGED,
                tipo_entidad="cliente",
                id_entidad=str(cliente.id),
                accion="Permiso de administrador " + ("revocado" if revocar else "otorgado"),
                actor="script:grant_admin_role",
            )
        )
        session.commit()
        print("🎉 Permiso de administrador " + ("revocado." if revocar else "otorgado."))


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Otorgar permiso de administrador a un cliente")
    parser.add_argument("telefono")
    parser.add_argument("--revocar", action="store_true")
    args = parser.parse_args()
    grant_admin_role(args.telefono, revocar=args.revocar)
