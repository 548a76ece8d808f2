"""Error types shared by the store, the engine and the tracker client."""


class TicketTimerError(Exception):
    pass


# Bad user input (malformed ticket, nothing selected). Always raised before any state is touched.
class ValidationError(TicketTimerError):
    pass


# state.json could not be read or written. The engine keeps going in memory and retries next tick.
class PersistenceError(TicketTimerError):
    pass


# Jira was unreachable, refused the credentials, or answered with something we can't use.
class ExternalServiceError(TicketTimerError):

    def __init__(self, message, status_code=None):
        super().__init__(message)
        self.status_code = status_code
