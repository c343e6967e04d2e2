# ui/status_banner.py
from __future__ import annotations

from typing import List, Optional

import flet as ft

from core.settings import UI
from services.offline_queue import OfflineSyncQueue, QueueStatus


def describe(status: QueueStatus) -> str:
    if status.manual_offline_mode:
        head = "Modo sin conexión activado"
    elif not status.is_online:
        head = "Sin conexión"
    else:
        head = "En línea"

    if status.pending_count:
        tail = f"{status.pending_count} cambio(s) pendientes de sincronizar"
    elif status.is_offline:
        tail = "los cambios se sincronizarán al volver a estar en línea"
    else:
        tail = "todo sincronizado"

    text = f"{head} - {tail}"
    if not status.persistence_enabled:
        text += " (no se pudo guardar la cola local)"
    return text


class StatusBanner:
    """Connectivity strip with the manual offline switch."""

    def __init__(self, queue: OfflineSyncQueue, actions: Optional[List[ft.Control]] = None):
        self.queue = queue
        self.icon = ft.Icon(ft.Icons.WIFI, color=UI.theme.banner_text)
        self.label = ft.Text("", color=UI.theme.banner_text)
        self.switch = ft.Switch(label="Sin conexión", value=False, on_change=self._on_toggle)
        self.view = ft.Container(
            content=ft.Row([self.icon, self.label, ft.Container(expand=True), *(actions or []), self.switch]),
            padding=ft.padding.symmetric(horizontal=16, vertical=8),
            bgcolor=UI.theme.online_bg,
        )
        self._unsubscribe = queue.on_status_change(self.apply)

    def apply(self, status: QueueStatus) -> None:
        offline = status.is_offline
        self.icon.name = ft.Icons.WIFI_OFF if offline else ft.Icons.WIFI
        self.label.value = describe(status)
        self.switch.value = status.manual_offline_mode
        self.view.bgcolor = UI.theme.offline_bg if offline else UI.theme.online_bg
        self._refresh()

    def _refresh(self) -> None:
        try:
            if self.view.page is not None:
                self.view.update()
        except (AssertionError, RuntimeError):
            # not mounted yet
            pass

    async def _on_toggle(self, e: ft.ControlEvent):
        if e.control.value:
            self.queue.go_offline()
        else:
            self.queue.go_online()

    def dispose(self) -> None:
        self._unsubscribe()
