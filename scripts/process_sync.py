"""
Worker de sincronización con Notion.

Procesa la cola de tareas en lotes cada ``--intervalo`` segundos y purga
las tareas confirmadas más antiguas que la retención configurada.

Uso:
    python scripts/process_sync.py            # bucle continuo
    python scripts/process_sync.py --una-vez  # un solo lote
"""
import argparse
import asyncio
import logging
import sys
from pathlib import Path

project_root = Path(__file__).resolve().parents[1]
sys.path.append(str(project_root))

from app.core.config import settings
from app.core.database import new_session
from app.core.request_id import configure_logging
from app.services.notion_sync import NotionSyncAdapter
from app.services.sync import SyncService


logger = logging.getLogger("scripts.process_sync")


async def run(intervalo: float, una_vez: bool) -> None:
    adapter = NotionSyncAdapter()
    while True:
        with new_session() as session:
            resumen = await SyncService.process_pending(session, adapter)
            purgadas = SyncService.purge_done(session)
        if purgadas:
            logger.info("Purgadas %s tareas confirmadas", purgadas)
        if una_vez:
            print(resumen.model_dump())
            return
        await asyncio.sleep(intervalo)


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Procesar la cola de sincronización con Notion")
    parser.add_argument("--intervalo", type=float, default=30.0)
    parser.add_argument("--una-vez", action="store_true")
    args = parser.parse_args()

    configure_logging(settings.debug)
    asyncio.run(run(args.intervalo, args.una_vez))
