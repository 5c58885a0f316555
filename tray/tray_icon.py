import logging

import pystray
from PIL import Image, ImageDraw

logger = logging.getLogger(__name__)

ICON_SIZE = 64

STATUS_COLORS = {
    "idle": "#888888",
    "recording": "#ff4444",
    "processing": "#f5a623",
}


def _create_icon_image(color: str) -> Image.Image:
    img = Image.new("RGBA", (ICON_SIZE, ICON_SIZE), (0, 0, 0, 0))
    draw = ImageDraw.Draw(img)
    margin = 8
    draw.ellipse(
        [margin, margin, ICON_SIZE - margin, ICON_SIZE - margin],
        fill=color,
    )
    return img


class TrayIcon:
    """Tray indicator driven by the session state store.

    The title mirrors the recording badge (elapsed ``m:ss``) and is refreshed on
    every broadcast, including the 1-second timer ticks.
    """

    def __init__(self, on_toggle_recording, on_quit, can_toggle: bool = True):
        self._on_toggle_recording = on_toggle_recording
        self._can_toggle = can_toggle
        self._on_quit = on_quit
        self._state = {"status": "idle", "badge": "", "name": None}
        self._icon: pystray.Icon | None = None

    def _build_menu(self):
        status = self._state["status"]
        record_label = "Stop recording" if status == "recording" else "Start recording"

        return pystray.Menu(
            pystray.MenuItem(
                record_label,
                self._toggle_recording,
                default=True,
                enabled=self._can_toggle and status != "processing",
            ),
            pystray.Menu.SEPARATOR,
            pystray.MenuItem("Quit", self._quit),
        )

    def _title(self) -> str:
        status = self._state["status"]
        if status == "recording":
            return f"MeetMate - recording {self._state.get('name') or ''} {self._state['badge']}".strip()
        if status == "processing":
            return "MeetMate - processing"
        return "MeetMate"

    def _toggle_recording(self):
        try:
            self._on_toggle_recording(self._state)
        except Exception as e:
            logger.error("Error toggling recording: %s", e)

    def _quit(self):
        try:
            self._on_quit()
        except Exception as e:
            logger.error("Error quitting: %s", e)
        if self._icon:
            self._icon.stop()

    def on_state_changed(self, snapshot: dict):
        previous_status = self._state["status"]
        self._state = snapshot
        if not self._icon:
            return
        self._icon.title = self._title()
        if snapshot["status"] != previous_status:
            self._icon.icon = _create_icon_image(STATUS_COLORS.get(snapshot["status"], "#888888"))
            self._icon.menu = self._build_menu()

    def run(self):
        self._icon = pystray.Icon(
            "MeetMate",
            icon=_create_icon_image(STATUS_COLORS["idle"]),
            title=self._title(),
            menu=self._build_menu(),
        )
        self._icon.run()

