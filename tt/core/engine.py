"""Single-stopwatch timer engine. Pure logic, no UI.

All operations run on one control thread. The only autonomous activity is the
periodic tick, which the engine starts through an injected ``ticker_factory``
(a ``QTimer`` in the app, a fake in tests) and cancels synchronously whenever
the running interval ends or changes ticket.
"""

from dataclasses import dataclass

from tt.common.logger import log
from tt.core.errors import PersistenceError, ValidationError
from tt.core.state import Session, TimerState, normalize_ticket
from tt.util.misc import now_ms

TICK_INTERVAL_MS = 1000


# Identifies one running interval. Every tick carries the token it was scheduled with and bails if it has been
# cancelled or replaced, so a stale tick can never commit time to a ticket that is no longer current.
class RunToken:

    def __init__(self, ticket):
        self.ticket = ticket
        self.cancelled = False

    def cancel(self):
        self.cancelled = True


@dataclass(frozen=True)
class AddTicketResult:
    ok: bool
    ticket: str | None = None
    reason: str | None = None
    already_present: bool = False


class TimerEngine:

    def __init__(self, store, clock=now_ms, ticker_factory=None, tick_interval_ms=TICK_INTERVAL_MS,
                 resume_offline_gap=True):
        self.store = store
        self.clock = clock
        self.ticker_factory = ticker_factory
        self.tick_interval_ms = tick_interval_ms
        self.resume_offline_gap = resume_offline_gap
        self.state = TimerState()
        self._token = None
        self._ticker = None
        # Set when a write failed; the next tick then rewrites the whole view instead of one ticket's time
        self._dirty = False

    #region === Loading and persistence ===

    def load_state(self):
        """Rehydrate from the store, resuming a timer that was running at exit."""
        self._cancel_tick()
        state = self.store.load()
        for ticket in state.tickets:
            state.ticket_times.setdefault(ticket, 0)
        self.state = state

        if state.is_running:
            resumable = (state.current_ticket is not None
                         and state.current_ticket in state.tickets
                         and state.start_time is not None)
            if resumable:
                now = self.clock()
                if state.session_start is None:
                    state.session_start = state.start_time
                if not self.resume_offline_gap:
                    gap = max(0, now - state.start_time)
                    state.start_time = now
                    state.session_start += gap
                    log.info(f"Resuming '{state.current_ticket}' without the {gap} ms offline gap")
                else:
                    log.info(f"Resuming '{state.current_ticket}' from anchor {state.start_time} "
                             f"({max(0, now - state.start_time)} ms since last flush)")
                self._begin_tick(state.current_ticket)
            else:
                log.warning("Persisted state says running but has no usable ticket/start time, loading as stopped")
                state.is_running = False
                state.start_time = None
                state.session_start = None
                self._persist()
        if state.current_ticket is not None and state.current_ticket not in state.tickets:
            log.warning(f"Persisted current ticket '{state.current_ticket}' is not in the ticket list, clearing it")
            state.current_ticket = None
            self._persist()
        return state

    def save_state(self, partial=None):
        """Persist the current view, or just the given partial record."""
        if partial is None:
            self._persist()
        else:
            self._safe_save(partial)

    # Writes the whole engine view. Failures are logged and retried on the next tick.
    def _persist(self):
        if self._safe_save(self.state.to_record()):
            self._dirty = False

    def _safe_save(self, partial):
        try:
            self.store.save(partial)
            return True
        except PersistenceError:
            log.warning("Failed to persist timer state, keeping in-memory state and retrying next tick", exc_info=True)
            self._dirty = True
            return False

    def _safe_append_session(self, session):
        try:
            self.store.append_session(session)
        except PersistenceError:
            log.warning(f"Failed to append session for '{session.ticket}'", exc_info=True)
            self._dirty = True

    #endregion === Loading and persistence ===

    #region === Tick handling ===

    def _begin_tick(self, ticket):
        self._token = RunToken(ticket)
        if self.ticker_factory is None:
            return
        token = self._token
        self._ticker = self.ticker_factory(self.tick_interval_ms, lambda: self.tick(token))
        self._ticker.start()

    # Invalidates the running interval's token and stops its ticker. Always called before any store I/O.
    def _cancel_tick(self):
        if self._token is not None:
            self._token.cancel()
            self._token = None
        if self._ticker is not None:
            self._ticker.stop()
            self._ticker = None

    # Moves time since the last anchor into the current ticket's total and re-anchors at now.
    def _flush_slice(self):
        state = self.state
        if not state.is_running or state.current_ticket is None or state.start_time is None:
            return 0
        now = self.clock()
        delta = max(0, now - state.start_time)
        state.ticket_times[state.current_ticket] = state.time_for(state.current_ticket) + delta
        state.start_time = now
        return delta

    def tick(self, token=None):
        """Commit the slice since the last flush. Ignored if ``token`` is stale."""
        if token is not None and (token.cancelled or token is not self._token):
            log.debug(f"Dropped stale tick for '{token.ticket}'")
            return
        state = self.state
        if not state.is_running:
            return
        self._flush_slice()
        if self._dirty:
            self._persist()
            return
        ticket = state.current_ticket
        self._safe_save({
            "ticketTimes": {ticket: state.ticket_times[ticket]},
            "currentTicket": ticket,
            "isRunning": True,
            "startTime": state.start_time,
            "sessionStart": state.session_start,
        })

    #endregion === Tick handling ===

    #region === Operations ===

    @property
    def is_running(self):
        return self.state.is_running

    @property
    def current_ticket(self):
        return self.state.current_ticket

    def start(self):
        """Start the stopwatch on the current ticket. Returns False if it was already running."""
        state = self.state
        if state.current_ticket is None:
            raise ValidationError("Please select a ticket first")
        if state.is_running:
            return False
        now = self.clock()
        state.ticket_times.setdefault(state.current_ticket, 0)
        state.is_running = True
        state.start_time = now
        state.session_start = now
        self._begin_tick(state.current_ticket)
        self._persist()
        log.info(f"Started timer on '{state.current_ticket}'")
        return True

    def stop(self):
        """Stop the stopwatch, append its Session and return it. None if already stopped."""
        state = self.state
        if not state.is_running:
            return None
        self._flush_slice()
        self._cancel_tick()
        end = state.start_time
        ticket = state.current_ticket
        session = Session.close(
            ticket=ticket,
            start_time=state.session_start if state.session_start is not None else end,
            end_time=end,
            duration=state.time_for(ticket),
        )
        state.is_running = False
        state.start_time = None
        state.session_start = None
        self._safe_append_session(session)
        self._persist()
        log.info(f"Stopped timer on '{ticket}' after {session.elapsed} ms (total {session.duration} ms)")
        return session

    def select_ticket(self, ticket):
        state = self.state
        if ticket is not None and ticket not in state.tickets:
            raise ValidationError(f"Unknown ticket '{ticket}'")
        if ticket == state.current_ticket:
            return
        if state.is_running:
            if ticket is None:
                self.stop()
            else:
                old = state.current_ticket
                self._flush_slice()
                self._cancel_tick()
                state.ticket_times.setdefault(ticket, 0)
                state.session_start = state.start_time
                state.current_ticket = ticket
                self._begin_tick(ticket)
                log.info(f"Switched running timer from '{old}' to '{ticket}'")
        state.current_ticket = ticket
        self._persist()

    def reset(self):
        """Zero the current ticket's time, stopping (and logging a session) first if running."""
        state = self.state
        if state.current_ticket is None:
            log.debug("Reset requested with no ticket selected, ignoring")
            return
        if state.is_running:
            self.stop()
        state.ticket_times[state.current_ticket] = 0
        state.start_time = None
        state.session_start = None
        self._persist()
        log.info(f"Reset timer for '{state.current_ticket}'")

    def add_ticket(self, raw):
        try:
            ticket = normalize_ticket(raw)
        except ValidationError as e:
            log.debug(f"Rejected ticket input {raw!r}: {e}")
            return AddTicketResult(ok=False, reason=str(e))

        if ticket in self.state.tickets:
            self.select_ticket(ticket)
            return AddTicketResult(ok=True, ticket=ticket, already_present=True)

        self.state.tickets.append(ticket)
        self.state.ticket_times.setdefault(ticket, 0)
        log.info(f"Added ticket '{ticket}'")
        self.select_ticket(ticket)
        return AddTicketResult(ok=True, ticket=ticket)

    def replace_tickets(self, ids):
        """Swap in a new ticket list, keeping time for tickets that survive.

        A running session on a ticket that doesn't survive is stopped (and its
        Session appended) before the swap.
        """
        state = self.state
        new_tickets = []
        for ticket in ids:
            if ticket not in new_tickets:
                new_tickets.append(ticket)

        if state.is_running:
            if state.current_ticket in new_tickets:
                self.tick(self._token)
            else:
                self.stop()
        if state.current_ticket not in new_tickets:
            state.current_ticket = None

        try:
            new_tickets = self.store.replace_ticket_list(new_tickets)
        except PersistenceError:
            log.warning("Failed to persist replaced ticket list, applying in memory only", exc_info=True)
            self._dirty = True

        state.ticket_times = {t: state.time_for(t) for t in new_tickets}
        state.tickets = list(new_tickets)
        self._persist()
        log.info(f"Replaced ticket list with {len(new_tickets)} tickets")
        return list(state.tickets)

    def get_display_millis(self):
        state = self.state
        if state.current_ticket is None:
            return 0
        total = state.time_for(state.current_ticket)
        if state.is_running and state.start_time is not None:
            total += max(0, self.clock() - state.start_time)
        return total

    def shutdown(self):
        """Flush and stop ticking at exit. The record still says running, so the next launch resumes."""
        if self.state.is_running:
            self._flush_slice()
        self._cancel_tick()
        self._persist()

    #endregion === Operations ===
