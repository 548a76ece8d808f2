"""Overlay colours and stylesheet generation."""

THEME = {
    "bg": "#1f2430",
    "text": "#e6e9ef",
    "muted": "#8a93a6",
    "button_bg": "#2d3444",
    "button_text": "#e6e9ef",
    "button_active": "#3b4458",
    "running_text": "#7fd68a",
    "success": "#2e7d32",
    "warning": "#b26a00",
    "error": "#c62828",
    "border": 1,
}

FONT_FAMILY = "Segoe UI"
SIZES = {"label": 10, "time": 22, "action": 10}

NOTIFICATION_COLORS = {
    "success": THEME["success"],
    "warning": THEME["warning"],
    "error": THEME["error"],
}


def build_stylesheet(t=THEME):
    """Build the Qt stylesheet for the overlay and its dialogs."""
    return (
        f"QMainWindow, QDialog, QWidget {{ background-color: {t['bg']}; }}"
        f"QLabel {{ color: {t['text']}; background: transparent; }}"
        f"QPushButton {{"
        f"  color: {t['button_text']};"
        f"  background-color: {t['button_bg']};"
        f"  border: {t['border']}px solid rgba(128,128,128,0.4);"
        f"  padding: 3px 8px;"
        f"}}"
        f"QPushButton:hover, QPushButton:pressed {{"
        f"  background-color: {t['button_active']};"
        f"}}"
        f"QPushButton:disabled {{ color: {t['muted']}; }}"
        f"QLineEdit, QComboBox {{"
        f"  color: {t['button_text']};"
        f"  background-color: {t['button_bg']};"
        f"  border: {t['border']}px solid rgba(128,128,128,0.4);"
        f"  padding: 2px 5px;"
        f"}}"
        f"QComboBox QAbstractItemView {{"
        f"  color: {t['button_text']};"
        f"  background-color: {t['button_bg']};"
        f"  selection-background-color: {t['button_active']};"
        f"}}"
        f"QToolTip {{"
        f"  background-color: {t['bg']};"
        f"  color: {t['text']};"
        f"  border: 1px solid {t['muted']};"
        f"  padding: 4px 8px;"
        f"}}"
    )
