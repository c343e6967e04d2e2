# ui/app_shell.py
from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

import flet as ft

from core.settings import BACKUP, FIRESTORE, UI
from datetime_utils import utc_now
from services.attendance import AttendanceService
from services.connectivity import ProbeConnectivityMonitor
from services.document_store import FirestoreDocumentStore, MemoryDocumentStore
from services.google_auth import GoogleAuth
from services.offline_queue import OfflineSyncQueue, SyncSummary
from services.offline_writer import OfflineWriter
from storage.backup import export_pending_operations
from storage.device import get_origin_id
from storage.journal import SqlJournal
from ui.status_banner import StatusBanner


logger = logging.getLogger("comedor.ui")


def build_store():
    if FIRESTORE.project_id:
        return FirestoreDocumentStore(GoogleAuth())
    logger.warning("COMEDOR_FIRESTORE_PROJECT is not set; using an in-memory store")
    return MemoryDocumentStore()


class AppShell:
    def __init__(self, page: ft.Page, store=None, monitor=None, journal=None):
        self.page = page
        self.page.title = UI.app_title

        self.store = store or build_store()
        self.monitor = monitor or ProbeConnectivityMonitor()
        self.queue = OfflineSyncQueue(
            self.store,
            journal or SqlJournal(),
            self.monitor,
            origin_id=get_origin_id(),
        )
        self.writer = OfflineWriter(self.store, self.queue)
        self.attendance = AttendanceService(self.writer, self.store, created_by=get_origin_id())

        self.export_button = ft.IconButton(
            ft.Icons.DOWNLOAD,
            icon_color=UI.theme.banner_text,
            tooltip="Exportar cambios pendientes",
            on_click=lambda _e: self.export_pending(),
        )
        self.banner = StatusBanner(self.queue, actions=[self.export_button])
        self.queue.on_sync_complete(self._on_sync_complete)
        self.content = ft.Container(expand=True)
        self.root = ft.Column([self.banner.view, self.content], expand=True, spacing=0)

    def _on_sync_complete(self, summary: SyncSummary) -> None:
        if summary.failed_permanently:
            self._notify(f"{len(summary.failed_permanently)} cambio(s) no se pudieron sincronizar")
        elif summary.total and not summary.pending:
            self._notify("Conexión restablecida, cambios sincronizados")

    def export_pending(self, path: Optional[Path] = None) -> Path:
        """Write the pending queue to a JSON file for admins."""

        target = path or BACKUP.directory / f"pending_{utc_now():%Y%m%d_%H%M%S}.json"
        operations = self.queue.get_pending_operations()
        written = export_pending_operations(operations, target)
        logger.info("Exported %d pending operations to %s", len(operations), written)
        self._notify(f"{len(operations)} cambio(s) pendientes exportados a {written.name}")
        return written

    def _notify(self, message: str) -> None:
        self.page.snack_bar = ft.SnackBar(ft.Text(message))
        self.page.snack_bar.open = True
        self.page.update()

    async def _start(self):
        if isinstance(self.monitor, ProbeConnectivityMonitor):
            await self.monitor.check()
            self.monitor.start()
        await self.queue.initialize()
        await self.queue.sync_pending_operations()

    def mount(self):
        self.page.controls.clear()
        self.page.add(self.root)
        self.page.update()
        self.page.run_task(self._start)
