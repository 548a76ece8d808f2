"""Timer and session records. Pure data, no I/O."""

import re
from dataclasses import dataclass, field

from tt.core.errors import ValidationError
from tt.util.misc import local_date

TICKET_PATTERN = re.compile(r"^[A-Z]+-[0-9]+$")


def normalize_ticket(raw):
    """Uppercase and validate a user-typed ticket id.

    Raises ValidationError with a message fit to show the user as-is.
    """
    ticket = (raw or "").strip().upper()
    if not ticket:
        raise ValidationError("Please enter a ticket number")
    if not TICKET_PATTERN.match(ticket):
        raise ValidationError("Please use format: ABC-123")
    return ticket


@dataclass
class TimerState:
    """The one live timer record for this installation.

    ``start_time`` is the most recent flush anchor (epoch ms), not the moment
    the user pressed Start; ``session_start`` is that moment.
    """
    tickets: list = field(default_factory=list)
    ticket_times: dict = field(default_factory=dict)
    current_ticket: str | None = None
    is_running: bool = False
    start_time: int | None = None
    session_start: int | None = None

    def time_for(self, ticket):
        return self.ticket_times.get(ticket, 0)

    def to_record(self):
        return {
            "tickets": list(self.tickets),
            "ticketTimes": dict(self.ticket_times),
            "currentTicket": self.current_ticket,
            "isRunning": self.is_running,
            "startTime": self.start_time,
            "sessionStart": self.session_start,
        }

    @classmethod
    def from_record(cls, record):
        return cls(
            tickets=list(record.get("tickets", [])),
            ticket_times=dict(record.get("ticketTimes", {})),
            current_ticket=record.get("currentTicket"),
            is_running=bool(record.get("isRunning", False)),
            start_time=record.get("startTime"),
            session_start=record.get("sessionStart"),
        )


@dataclass(frozen=True)
class Session:
    """One finished start-to-stop interval.

    ``duration`` is the ticket's cumulative total at stop time; ``elapsed`` is
    this interval's own length, so summing ``elapsed`` over the log is safe.
    """
    ticket: str
    start_time: int
    end_time: int
    duration: int
    elapsed: int
    date: str

    @classmethod
    def close(cls, ticket, start_time, end_time, duration):
        return cls(
            ticket=ticket,
            start_time=start_time,
            end_time=end_time,
            duration=duration,
            elapsed=max(0, end_time - start_time),
            date=local_date(end_time),
        )

    def to_record(self):
        return {
            "ticket": self.ticket,
            "startTime": self.start_time,
            "endTime": self.end_time,
            "duration": self.duration,
            "elapsed": self.elapsed,
            "date": self.date,
        }

    @classmethod
    def from_record(cls, record):
        start = int(record.get("startTime") or 0)
        end = int(record.get("endTime") or start)
        return cls(
            ticket=str(record.get("ticket", "")),
            start_time=start,
            end_time=end,
            duration=int(record.get("duration") or 0),
            # Older records only carried the cumulative duration
            elapsed=int(record.get("elapsed", max(0, end - start))),
            date=str(record.get("date") or local_date(end)),
        )
