"""Jira settings dialog for Ticket Timer."""

from PySide6.QtCore import Qt
from PySide6.QtGui import QFont
from PySide6.QtWidgets import (
    QCheckBox,
    QDialog,
    QFormLayout,
    QHBoxLayout,
    QLabel,
    QLineEdit,
    QPushButton,
    QVBoxLayout,
)
from tt.tracker import jira
from tt.tracker.jira import TrackerCredentials
from tt.ui.theme import FONT_FAMILY, NOTIFICATION_COLORS
from tt.ui.worker import run_in_background

# Simple settings form. Opens when the user clicks the gear on the overlay. Saving writes straight to the store;
# "Sync Tickets" asks the main window to run a sync with whatever is currently typed in.
class SettingsDialog(QDialog):

    def __init__(self, parent, tracker_settings, settings, on_sync):
        super().__init__(parent)
        self.setWindowTitle("Settings")
        self.setWindowFlags(self.windowFlags() | Qt.WindowStaysOnTopHint)
        self.setModal(True)
        self._on_sync = on_sync

        # Output attributes, read by MainWindow after the dialog closes
        self.chosen_tracker_settings = dict(tracker_settings)
        self.chosen_resume_offline_gap = settings.get("resume_offline_gap", True)

        label_font = QFont(FONT_FAMILY, 10, QFont.Bold)
        outer = QVBoxLayout(self)
        form = QFormLayout()

        self._base_url = QLineEdit(tracker_settings.get("base_url", ""))
        self._base_url.setPlaceholderText("your-team.atlassian.net")
        self._email = QLineEdit(tracker_settings.get("email", ""))
        self._email.setPlaceholderText("you@example.com")
        self._api_token = QLineEdit(tracker_settings.get("api_token", ""))
        self._api_token.setEchoMode(QLineEdit.Password)
        self._project_filter = QLineEdit(tracker_settings.get("project_filter", ""))
        self._project_filter.setPlaceholderText("ABC, DEF (optional)")
        self._project_filter.setToolTip("Comma separated project keys. Leave empty for all projects.")

        for text, widget in (("Jira URL:", self._base_url), ("E-mail:", self._email),
                             ("API Token:", self._api_token), ("Projects:", self._project_filter)):
            lbl = QLabel(text)
            lbl.setFont(label_font)
            widget.setMinimumWidth(240)
            form.addRow(lbl, widget)

        self._resume_gap = QCheckBox("Count time while the app was closed")
        self._resume_gap.setToolTip(
            "If a timer was running when the app closed, add the closed time to it on next launch.")
        self._resume_gap.setChecked(self.chosen_resume_offline_gap)
        form.addRow(self._resume_gap)
        outer.addLayout(form)

        self._status = QLabel("")
        self._status.setWordWrap(True)
        outer.addWidget(self._status)

        btn_row = QHBoxLayout()
        self._test_btn = QPushButton("Test Connection")
        self._test_btn.clicked.connect(self._test_connection)
        self._sync_btn = QPushButton("Sync Tickets")
        self._sync_btn.clicked.connect(self._sync)
        save_btn = QPushButton("Save")
        save_btn.clicked.connect(self._apply)
        btn_row.addWidget(self._test_btn)
        btn_row.addWidget(self._sync_btn)
        btn_row.addStretch()
        btn_row.addWidget(save_btn)
        outer.addLayout(btn_row)

    def _form_settings(self):
        return {
            "base_url": self._base_url.text().strip(),
            "email": self._email.text().strip(),
            "api_token": self._api_token.text().strip(),
            "project_filter": self._project_filter.text().strip(),
        }

    def _show_status(self, message, kind):
        self._status.setText(message)
        self._status.setStyleSheet(f"color: {NOTIFICATION_COLORS.get(kind, NOTIFICATION_COLORS['warning'])};")

    def _test_connection(self):
        credentials = TrackerCredentials.from_settings(self._form_settings())
        self._test_btn.setEnabled(False)
        self._show_status("Testing connection...", "warning")
        run_in_background(jira.test_connection, credentials,
                          on_done=self._on_test_done, on_failed=self._on_test_failed)

    def _on_test_done(self, result):
        self._test_btn.setEnabled(True)
        if result.success:
            self._show_status(f"Connected as {result.identity}", "success")
        else:
            self._show_status(f"Connection failed: {result.error}", "error")

    def _on_test_failed(self, message):
        self._test_btn.setEnabled(True)
        self._show_status(f"Connection failed: {message}", "error")

    def _sync(self):
        self.chosen_tracker_settings = self._form_settings()
        self._on_sync(self.chosen_tracker_settings)

    def _apply(self):
        self.chosen_tracker_settings = self._form_settings()
        self.chosen_resume_offline_gap = self._resume_gap.isChecked()
        self.accept()
