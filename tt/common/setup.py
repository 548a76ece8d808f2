import os
import sys
from pathlib import Path
from dataclasses import dataclass

APP_DIR_NAME = "TicketTimer"

# Lil helper function to create missing directories if missing.
def ensure_directory(path: Path):
    path.mkdir(parents=True,exist_ok=True)
    return path

# Works out where user data lives. TICKETTIMER_HOME always wins, then the usual per-platform spot.
def resolve_data_dir() -> Path:
    override = os.getenv("TICKETTIMER_HOME")
    if override:
        return Path(override).expanduser()

    appdata = os.getenv("APPDATA")
    if sys.platform == "win32" and appdata:
        return Path(appdata) / APP_DIR_NAME

    xdg = os.getenv("XDG_DATA_HOME")
    if xdg:
        return Path(xdg) / APP_DIR_NAME
    return Path.home() / ".local" / "share" / APP_DIR_NAME

# Dataclass for accessing paths across program.
@dataclass(frozen=False)
class ProjectPaths:

    data: Path
    logs: Path
    current: Path

    @staticmethod
    def build():
        data = ensure_directory(resolve_data_dir())

        # Folders within the data folder
        logs = ensure_directory(data / "logs")
        current = ensure_directory(data / "current")

        return ProjectPaths(
            data = data,
            logs = logs,
            current = current,
        )
PATHS = ProjectPaths.build()
