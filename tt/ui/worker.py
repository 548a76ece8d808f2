"""Runs blocking calls (Jira requests) off the GUI thread."""

from PySide6.QtCore import QObject, QRunnable, QThreadPool, Signal, Slot

from tt.common.logger import log


class _WorkerSignals(QObject):
    done = Signal(object)
    failed = Signal(str)


# Lives on the GUI thread, so queued signals from the pool land here and the callbacks run where the engine lives.
class _Relay(QObject):

    def __init__(self, on_done, on_failed):
        super().__init__()
        self._on_done = on_done
        self._on_failed = on_failed

    @Slot(object)
    def done(self, result):
        _running.pop(id(self), None)
        self._on_done(result)

    @Slot(str)
    def failed(self, message):
        _running.pop(id(self), None)
        self._on_failed(message)


class _Worker(QRunnable):

    def __init__(self, fn, args):
        super().__init__()
        self.fn = fn
        self.args = args
        self.signals = _WorkerSignals()

    def run(self):
        try:
            result = self.fn(*self.args)
        except Exception as e:
            # The tracker functions return failure results, so landing here is a bug; report it instead of dying
            # silently on a pool thread.
            log.exception("Background task failed")
            self.signals.failed.emit(str(e))
            return
        self.signals.done.emit(result)


# Keeps relays and workers alive until they report back.
_running = {}


def run_in_background(fn, *args, on_done, on_failed):
    """Call fn(*args) on the global pool; on_done/on_failed are delivered on the GUI thread."""
    worker = _Worker(fn, args)
    relay = _Relay(on_done, on_failed)
    _running[id(relay)] = (relay, worker)
    worker.signals.done.connect(relay.done)
    worker.signals.failed.connect(relay.failed)
    worker.setAutoDelete(False)
    QThreadPool.globalInstance().start(worker)
    return worker
