import sys
from PySide6.QtCore import Qt, QPoint, QTimer
from PySide6.QtGui import QFont
from PySide6.QtWidgets import (
    QApplication,
    QComboBox,
    QDialog,
    QHBoxLayout,
    QLabel,
    QLineEdit,
    QMainWindow,
    QMenu,
    QPushButton,
    QVBoxLayout,
    QWidget,
)
from tt.common.logger import log
from tt.core.config import StateStore
from tt.core.engine import TimerEngine
from tt.core.errors import PersistenceError, ValidationError
from tt.tracker.jira import TrackerCredentials
from tt.tracker.sync import TicketSync
from tt.ui.dialogs.settings import SettingsDialog
from tt.ui.theme import FONT_FAMILY, NOTIFICATION_COLORS, SIZES, THEME, build_stylesheet
from tt.ui.ticker import qt_ticker_factory
from tt.ui.worker import run_in_background
from tt.util.misc import format_millis

_PLACEHOLDER = "Select a ticket..."


# ---------------------------------------------------------------------------
# Main window
# ---------------------------------------------------------------------------

# Frameless always-on-top overlay: ticket picker, add box, the running clock and Start/Stop/Reset. All timing logic
# lives in TimerEngine; this class only forwards clicks and paints the result.
class MainWindow(QMainWindow):

    def __init__(self, store=None):
        super().__init__()
        self.setWindowTitle("Ticket Timer")

        # -- Store and settings --
        self.store = store or StateStore()
        settings = self.store.load_settings()
        self.always_on_top = settings["always_on_top"]
        self.display_refresh_ms = settings["display_refresh_ms"]

        flags = self.windowFlags() | Qt.FramelessWindowHint
        if self.always_on_top:
            flags |= Qt.WindowStaysOnTopHint
        self.setWindowFlags(flags)

        # -- Engine --
        self.engine = TimerEngine(
            self.store,
            ticker_factory=qt_ticker_factory(self),
            tick_interval_ms=settings["tick_interval_ms"],
            resume_offline_gap=settings["resume_offline_gap"],
        )
        self.engine.load_state()
        self.sync = TicketSync(self.engine)

        self._drag_offset = None
        self._notification_timer = QTimer(self)
        self._notification_timer.setSingleShot(True)
        self._notification_timer.timeout.connect(lambda: self._notification.setVisible(False))
        self._bounds_timer = QTimer(self)
        self._bounds_timer.setSingleShot(True)
        self._bounds_timer.timeout.connect(self._save_bounds)

        # -- Build UI --
        self._build_ui()
        self.setStyleSheet(build_stylesheet())
        self.setContextMenuPolicy(Qt.CustomContextMenu)
        self.customContextMenuRequested.connect(self._on_context_menu)

        self.resize(280, 140)
        bounds = self.store.load_window_bounds()
        if bounds:
            self.setGeometry(bounds["x"], bounds["y"], bounds["width"], bounds["height"])

        self._populate_tickets()
        self._update_buttons()
        self._update_display()

        # -- Display refresh, independent of the engine's persistence tick --
        self._display_timer = QTimer(self)
        self._display_timer.timeout.connect(self._update_display)
        self._display_timer.start(self.display_refresh_ms)

    # ------------------------------------------------------------------ #
    #  UI construction                                                     #
    # ------------------------------------------------------------------ #

    def _build_ui(self):
        action_font = QFont(FONT_FAMILY, SIZES["action"])
        central = QWidget()
        self.setCentralWidget(central)
        lay = QVBoxLayout(central)
        lay.setContentsMargins(6, 6, 6, 6)
        lay.setSpacing(4)

        # Top row: ticket picker, sync, settings, close
        top = QHBoxLayout()
        self._ticket_select = QComboBox()
        self._ticket_select.setFont(action_font)
        self._ticket_select.activated.connect(self._on_ticket_selected)
        self._sync_btn = QPushButton("⟳")
        self._sync_btn.setToolTip("Sync in-progress tickets from Jira")
        self._sync_btn.clicked.connect(self._on_sync_clicked)
        self._cfg_btn = QPushButton("⚙")
        self._cfg_btn.setToolTip("Settings")
        self._cfg_btn.clicked.connect(self._on_config)
        close_btn = QPushButton("✕")
        close_btn.setToolTip("Close")
        close_btn.clicked.connect(self.close)
        top.addWidget(self._ticket_select, 1)
        for btn in (self._sync_btn, self._cfg_btn, close_btn):
            btn.setFont(action_font)
            btn.setFixedWidth(28)
            top.addWidget(btn)
        lay.addLayout(top)

        # Add row
        add_row = QHBoxLayout()
        self._ticket_input = QLineEdit()
        self._ticket_input.setFont(action_font)
        self._ticket_input.setPlaceholderText("ABC-123")
        self._ticket_input.returnPressed.connect(self._on_add)
        add_btn = QPushButton("Add")
        add_btn.setFont(action_font)
        add_btn.clicked.connect(self._on_add)
        add_row.addWidget(self._ticket_input, 1)
        add_row.addWidget(add_btn)
        lay.addLayout(add_row)

        # Clock + controls
        ctl_row = QHBoxLayout()
        self._time_lbl = QLabel(format_millis(0))
        self._time_lbl.setFont(QFont(FONT_FAMILY, SIZES["time"]))
        self._time_lbl.setAlignment(Qt.AlignCenter)
        self._start_btn = QPushButton("Start")
        self._start_btn.clicked.connect(self._on_start)
        self._stop_btn = QPushButton("Stop")
        self._stop_btn.clicked.connect(self._on_stop)
        self._reset_btn = QPushButton("Reset")
        self._reset_btn.clicked.connect(self._on_reset)
        ctl_row.addWidget(self._time_lbl, 1)
        for btn in (self._start_btn, self._stop_btn, self._reset_btn):
            btn.setFont(action_font)
            ctl_row.addWidget(btn)
        lay.addLayout(ctl_row)

        self._notification = QLabel("")
        self._notification.setFont(action_font)
        self._notification.setAlignment(Qt.AlignCenter)
        self._notification.setVisible(False)
        lay.addWidget(self._notification)

    # ------------------------------------------------------------------ #
    #  Display helpers                                                     #
    # ------------------------------------------------------------------ #

    def _populate_tickets(self):
        self._ticket_select.blockSignals(True)
        self._ticket_select.clear()
        self._ticket_select.addItem(_PLACEHOLDER, None)
        for ticket in self.engine.state.tickets:
            self._ticket_select.addItem(ticket, ticket)
        current = self.engine.current_ticket
        index = self._ticket_select.findData(current) if current else 0
        self._ticket_select.setCurrentIndex(max(0, index))
        self._ticket_select.blockSignals(False)

    def _update_display(self):
        self._time_lbl.setText(format_millis(self.engine.get_display_millis()))

    def _update_buttons(self):
        running = self.engine.is_running
        self._start_btn.setEnabled(not running)
        self._stop_btn.setEnabled(running)
        color = THEME["running_text"] if running else THEME["text"]
        self._time_lbl.setStyleSheet(f"color: {color};")
        self._sync_btn.setEnabled(not self.sync.in_flight)

    def show_notification(self, message, kind="warning", duration_ms=3000):
        self._notification.setText(message)
        self._notification.setStyleSheet(
            f"color: white; background-color: {NOTIFICATION_COLORS.get(kind, NOTIFICATION_COLORS['warning'])};")
        self._notification.setVisible(True)
        self._notification_timer.start(duration_ms)

    def _refresh(self):
        self._populate_tickets()
        self._update_buttons()
        self._update_display()

    # ------------------------------------------------------------------ #
    #  Button handlers                                                     #
    # ------------------------------------------------------------------ #

    def _on_ticket_selected(self, index):
        try:
            self.engine.select_ticket(self._ticket_select.itemData(index))
        except ValidationError as e:
            self.show_notification(str(e), "error")
        self._refresh()

    def _on_add(self):
        result = self.engine.add_ticket(self._ticket_input.text())
        if not result.ok:
            self.show_notification(result.reason, "error")
            return
        self._ticket_input.clear()
        if result.already_present:
            self.show_notification("Ticket already exists - selected it for you", "warning")
        else:
            self.show_notification(f"{result.ticket} added successfully!", "success", 2000)
        self._refresh()

    def _on_start(self):
        try:
            self.engine.start()
        except ValidationError as e:
            self.show_notification(str(e), "error")
        self._refresh()

    def _on_stop(self):
        self.engine.stop()
        self._refresh()

    def _on_reset(self):
        self.engine.reset()
        self._refresh()

    # ------------------------------------------------------------------ #
    #  Jira sync                                                           #
    # ------------------------------------------------------------------ #

    def _on_sync_clicked(self):
        self.start_sync(self.store.load_tracker_settings())

    def start_sync(self, tracker_settings):
        credentials = TrackerCredentials.from_settings(tracker_settings)
        if not self.sync.begin():
            self.show_notification("A sync is already running", "warning")
            return
        self._update_buttons()
        self.show_notification("Syncing tickets from Jira...", "warning", 30000)
        run_in_background(self.sync.fetch, credentials, tracker_settings.get("project_filter", ""),
                          on_done=self._on_sync_done, on_failed=self._on_sync_failed)

    def _on_sync_done(self, result):
        tickets = self.sync.finish(result)
        if tickets is None:
            self.show_notification(f"Sync failed: {result.error}", "error", 5000)
        else:
            self.show_notification(f"Synced {len(tickets)} tickets", "success", 2000)
        self._refresh()

    def _on_sync_failed(self, message):
        self.sync.in_flight = False
        self.show_notification(f"Sync failed: {message}", "error", 5000)
        self._update_buttons()

    def _on_config(self):
        dlg = SettingsDialog(self, self.store.load_tracker_settings(), self.store.load_settings(),
                             on_sync=self.start_sync)
        if dlg.exec() == QDialog.Accepted:
            try:
                self.store.save_tracker_settings(dlg.chosen_tracker_settings)
                self.store.save_settings({"resume_offline_gap": dlg.chosen_resume_offline_gap})
            except PersistenceError as e:
                log.warning("Failed to save settings", exc_info=True)
                self.show_notification(f"Failed to save settings: {e}", "error", 5000)
                return
            self.engine.resume_offline_gap = dlg.chosen_resume_offline_gap
            self.show_notification("Settings saved", "success", 2000)

    # ------------------------------------------------------------------ #
    #  Window position, dragging and context menu                          #
    # ------------------------------------------------------------------ #

    def _save_bounds(self):
        g = self.geometry()
        try:
            self.store.save_window_bounds({"x": g.x(), "y": g.y(), "width": g.width(), "height": g.height()})
        except PersistenceError:
            log.warning("Failed to save window bounds", exc_info=True)

    def _on_context_menu(self, pos):
        menu = QMenu(self)
        close_action = menu.addAction("Close")
        reset_action = menu.addAction("Reset Position")
        chosen = menu.exec(self.mapToGlobal(pos))
        if chosen == close_action:
            self.close()
        elif chosen == reset_action:
            screen = self.screen().availableGeometry()
            self.move(screen.center() - QPoint(self.width() // 2, self.height() // 2))
            self._bounds_timer.stop()
            try:
                self.store.clear_window_bounds()
            except PersistenceError:
                log.warning("Failed to clear window bounds", exc_info=True)

    def mousePressEvent(self, event):
        if event.button() == Qt.LeftButton:
            self._drag_offset = event.globalPosition().toPoint() - self.frameGeometry().topLeft()
        super().mousePressEvent(event)

    def mouseMoveEvent(self, event):
        if self._drag_offset is not None and event.buttons() & Qt.LeftButton:
            self.move(event.globalPosition().toPoint() - self._drag_offset)
        super().mouseMoveEvent(event)

    def mouseReleaseEvent(self, event):
        self._drag_offset = None
        super().mouseReleaseEvent(event)

    def moveEvent(self, event):
        self._bounds_timer.start(500)
        super().moveEvent(event)

    def resizeEvent(self, event):
        self._bounds_timer.start(500)
        super().resizeEvent(event)

    # ------------------------------------------------------------------ #
    #  Window close                                                        #
    # ------------------------------------------------------------------ #

    def closeEvent(self, event):
        self._display_timer.stop()
        self.engine.shutdown()
        if self._bounds_timer.isActive():
            self._bounds_timer.stop()
            self._save_bounds()
        event.accept()


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

def main():
    app = QApplication(sys.argv)
    window = MainWindow()
    window.show()
    sys.exit(app.exec())
