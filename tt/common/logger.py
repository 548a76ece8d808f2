import logging
import os
from pathlib import Path
from logging.handlers import RotatingFileHandler
from tt.common.setup import PATHS
from datetime import datetime

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s:%(filename)s:%(lineno)d] %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# Adds a handler under a unique name, once. make_handler is only called when the name isn't attached yet.
def _attach_once(logger: logging.Logger, handler_name, make_handler, level, fmt):
    if any(h.get_name() == handler_name for h in logger.handlers):
        return
    handler = make_handler()
    handler.setLevel(level)
    handler.setFormatter(fmt)
    handler.set_name(handler_name)
    logger.addHandler(handler)

# Keeps only the newest `keep` per-run debug logs.
def _prune_debug_runs(logger: logging.Logger, debug_dir: Path, name, keep):
    runs = sorted(debug_dir.glob(f"{name}_*.log"),key=lambda p: p.stat().st_mtime,reverse=True)
    for run in runs[keep:]:
        try:
            run.unlink()
        except OSError:
            logger.debug(f"Couldn't prune old debug log '{run}'")

# Builds (or fetches, if already built) the named app logger. Handlers are tagged by name so calling this twice never
# double-logs.
def get_logger(
        name = "tickettimer",
        level = logging.INFO,
        log_dir: Path | None = None,
        max_bytes = 2 * 1024 * 1024,
        backup_count = 3,
        persistent = True,
        console = False,
        historical_debugs: int = 5
) -> logging.Logger:
    logger = logging.getLogger(name)
    logger.propagate = False
    logger.setLevel(level)

    log_dir = log_dir or PATHS.logs
    log_dir.mkdir(parents=True,exist_ok=True)
    fmt = logging.Formatter(LOG_FORMAT,LOG_DATE_FORMAT)

    # Size-rotated log that spans runs
    if persistent:
        _attach_once(logger, f"{name}:persistent",
                     lambda: RotatingFileHandler(log_dir / f"{name}.log", maxBytes=max_bytes,
                                                 backupCount=backup_count, encoding="utf-8", delay=True),
                     level, fmt)

    # Only the current run
    _attach_once(logger, f"{name}:latest",
                 lambda: logging.FileHandler(log_dir / "latest.log", mode="w", encoding="utf-8", delay=True),
                 level, fmt)

    # Full DEBUG output for this run, in its own timestamped file
    if historical_debugs > 0:
        debug_dir = log_dir / "debug"
        debug_dir.mkdir(parents=True,exist_ok=True)
        run_file = debug_dir / f"{name}_{datetime.now():%Y-%m-%d_%H-%M-%S}.log"
        _attach_once(logger, f"{name}:historical_debug",
                     lambda: logging.FileHandler(run_file, encoding="utf-8", delay=True),
                     logging.DEBUG, fmt)
        _prune_debug_runs(logger, debug_dir, name, historical_debugs)

    if console:
        _attach_once(logger, f"{name}:console", logging.StreamHandler, level, fmt)

    return logger

log = get_logger(level=logging.DEBUG,console=bool(os.getenv("TICKETTIMER_CONSOLE_LOG")),historical_debugs=5)
log.info("=== INITIALIZED NEW SESSION ===")
