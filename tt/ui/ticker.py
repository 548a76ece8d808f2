from PySide6.QtCore import QTimer


# Periodic tick for the engine, backed by a QTimer on the GUI thread. stop() is synchronous, so once it returns no
# further timeout can be delivered.
class QtTicker:

    def __init__(self, interval_ms, callback, parent=None):
        self._timer = QTimer(parent)
        self._timer.setInterval(interval_ms)
        self._timer.timeout.connect(callback)

    def start(self):
        self._timer.start()

    def stop(self):
        self._timer.stop()
        self._timer.deleteLater()


# Returns a ticker_factory for TimerEngine that parents every QTimer to the given QObject.
def qt_ticker_factory(parent):
    return lambda interval_ms, callback: QtTicker(interval_ms, callback, parent)
