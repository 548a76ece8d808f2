"""Bridges a tracker fetch into the engine's ticket list."""

from tt.common.logger import log
from tt.tracker import jira


class TicketSync:
    """Tracks one in-flight tracker fetch and commits its result to the engine.

    ``fetch`` does the network call and is safe to run off the GUI thread; it
    never touches the engine. ``finish`` must run on the engine's thread.
    """

    def __init__(self, engine, fetcher=jira.fetch_assigned_in_progress):
        self.engine = engine
        self.fetcher = fetcher
        self.in_flight = False

    def begin(self):
        if self.in_flight:
            log.debug("Ticket sync already in flight, ignoring request")
            return False
        self.in_flight = True
        return True

    def fetch(self, credentials, project_filter=""):
        return self.fetcher(credentials, project_filter)

    def finish(self, result):
        """Apply a FetchResult. Returns the new ticket list, or None if the fetch failed."""
        self.in_flight = False
        if not result.success:
            log.warning(f"Ticket sync failed, keeping local tickets: {result.error}")
            return None
        return self.engine.replace_tickets(result.keys)

    # Blocking convenience for callers without an event loop.
    def run(self, credentials, project_filter=""):
        if not self.begin():
            return None
        try:
            result = self.fetch(credentials, project_filter)
        except BaseException:
            self.in_flight = False
            raise
        return self.finish(result)
