import copy
import json
import os
from tt.common.logger import log
from tt.common.setup import PATHS
from tt.core.errors import PersistenceError
from tt.core.state import Session, TimerState


#region === Defaults and Paths ===

STATE_PATH = PATHS.current / "state.json"

# Default values just for the settings section of the record.
_SETTINGS_DEFAULTS = {
    "always_on_top": True,
    "resume_offline_gap": True,
    "tick_interval_ms": 1000,
    "display_refresh_ms": 250,
}
_TRACKER_DEFAULTS = {
    "base_url": "",
    "email": "",
    "api_token": "",
    "project_filter": "",
}

# Top-level keys with their expected type and a factory for the default value.
_RECORD_SCHEMA = {
    "tickets": (list, list),
    "ticketTimes": (dict, dict),
    "sessions": (list, list),
    "currentTicket": ((str, type(None)), lambda: None),
    "isRunning": (bool, lambda: False),
    "startTime": ((int, float, type(None)), lambda: None),
    "sessionStart": ((int, float, type(None)), lambda: None),
    "settings": (dict, lambda: dict(_SETTINGS_DEFAULTS)),
    "trackerSettings": (dict, lambda: dict(_TRACKER_DEFAULTS)),
    "windowBounds": ((dict, type(None)), lambda: None),
}

# Helper to return a truly fresh, default record.
def build_default_record():
    return {key: factory() for key, (_, factory) in _RECORD_SCHEMA.items()}

# Validates a raw record field by field, defaulting anything missing or mistyped. Returns the cleaned record and the
# set of dotted names that had to be defaulted.
def _validate_record(raw):
    defaulted_values = set()
    if not isinstance(raw, dict):
        return build_default_record(), {"<root>"}

    record = {}
    for key, (expected, factory) in _RECORD_SCHEMA.items():
        value = raw.get(key)
        # bool is an int subclass, keep it out of the numeric fields
        if key not in raw or not isinstance(value, expected) or (expected is not bool and isinstance(value, bool)):
            if key in raw or key in ("tickets", "ticketTimes", "isRunning"):
                defaulted_values.add(key)
            record[key] = factory()
        else:
            record[key] = value

    # Tickets must be unique strings, in order
    tickets = []
    for ticket in record["tickets"]:
        if isinstance(ticket, str) and ticket not in tickets:
            tickets.append(ticket)
        else:
            defaulted_values.add("tickets[]")
    record["tickets"] = tickets

    # Times must be non-negative whole milliseconds
    times = {}
    for ticket, value in record["ticketTimes"].items():
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            defaulted_values.add(f"ticketTimes.{ticket}")
            continue
        times[ticket] = max(0, int(value))
    for ticket in tickets:
        if ticket not in times:
            times[ticket] = 0
    record["ticketTimes"] = times

    if record["startTime"] is not None:
        record["startTime"] = int(record["startTime"])
    if record["sessionStart"] is not None:
        record["sessionStart"] = int(record["sessionStart"])
    if not record["isRunning"] and record["startTime"] is not None:
        defaulted_values.add("startTime")
        record["startTime"] = None
        record["sessionStart"] = None

    # Each setting must match the type of its default
    for section, defaults in (("settings", _SETTINGS_DEFAULTS), ("trackerSettings", _TRACKER_DEFAULTS)):
        values = record[section]
        for key, default in defaults.items():
            if key not in values:
                values[key] = default
                continue
            value = values[key]
            if not isinstance(value, type(default)) or (type(default) is not bool and isinstance(value, bool)):
                defaulted_values.add(f"{section}.{key}")
                values[key] = default

    return record, defaulted_values

#endregion === Defaults and Paths ===

#region === Store ===

# The one durable home for everything the app remembers: tickets, times, sessions, the live timer, settings and window
# position. The record is cached after the first read and every write rewrites the whole file atomically.
class StateStore:

    def __init__(self, path=None):
        self.path = path or STATE_PATH
        self._record = None

    # Reads state.json into the cache, falling back to a fresh record on any error.
    def _read(self):
        if self._record is not None:
            return self._record
        try:
            if not os.path.exists(self.path):
                log.info(f"No existing state.json found at '{self.path}', loading fresh state record.")
                self._record = build_default_record()
                return self._record
            with open(self.path, "r", encoding="utf-8") as f:
                raw = json.load(f)
            record, defaulted_values = _validate_record(raw)
            if defaulted_values:
                log.warning(f"Loaded state record from '{self.path}', but with missing values that were defaulted: {', '.join(sorted(defaulted_values))}")
            else:
                log.info(f"Successfully loaded state record from '{self.path}'.")
            self._record = record
        except (json.JSONDecodeError, OSError, TypeError, ValueError):
            log.warning(f"Ran into an error while trying to load '{self.path}', falling back to a fresh state record.", exc_info=True)
            self._record = build_default_record()
        return self._record

    # Writes the cached record to disk via a temp file, so a crash mid-write never leaves a half-written state.json.
    def _write(self):
        record = self._read()
        tmp_path = f"{self.path}.tmp"
        try:
            os.makedirs(os.path.dirname(os.path.abspath(self.path)), exist_ok=True)
            with open(tmp_path, "w", encoding="utf-8") as f:
                json.dump(record, f, indent=2)
            os.replace(tmp_path, self.path)
        except OSError as e:
            raise PersistenceError(f"Failed to write state to '{self.path}': {e}") from e
        log.debug(f"Saved state to '{self.path}'")

    def load(self) -> TimerState:
        return TimerState.from_record(copy.deepcopy(self._read()))

    def save(self, partial):
        """Merge ``partial`` onto the record and persist it.

        Top-level keys replace; ``ticketTimes`` merges per ticket so a tick for
        one ticket never wipes another's total.
        """
        record = self._read()
        for key, value in partial.items():
            if key == "ticketTimes":
                record["ticketTimes"].update({t: max(0, int(v)) for t, v in value.items()})
            elif key in ("settings", "trackerSettings"):
                record[key].update(value)
            else:
                record[key] = copy.deepcopy(value)
        self._write()

    def append_session(self, session: Session):
        self._read()["sessions"].append(session.to_record())
        self._write()
        log.info(f"Appended session for '{session.ticket}' ({session.elapsed} ms, total {session.duration} ms)")

    def load_sessions(self):
        sessions = []
        for entry in self._read()["sessions"]:
            if isinstance(entry, dict):
                try:
                    sessions.append(Session.from_record(entry))
                except (TypeError, ValueError):
                    log.warning(f"Skipping unreadable session record: {entry!r}")
        return sessions

    def replace_ticket_list(self, new_tickets):
        """Swap the ticket list, keeping times for survivors and zeroing newcomers."""
        record = self._read()
        old_times = record["ticketTimes"]
        tickets = list(new_tickets)
        record["tickets"] = tickets
        record["ticketTimes"] = {t: old_times.get(t, 0) for t in tickets}
        if record["currentTicket"] not in tickets:
            record["currentTicket"] = None
        self._write()
        return list(tickets)

    #region --- Settings ---

    def load_settings(self):
        return dict(self._read()["settings"])

    def save_settings(self, partial):
        self.save({"settings": partial})

    def load_tracker_settings(self):
        return dict(self._read()["trackerSettings"])

    def save_tracker_settings(self, partial):
        self.save({"trackerSettings": partial})

    def load_window_bounds(self):
        bounds = self._read()["windowBounds"]
        if not bounds or not all(isinstance(bounds.get(k), int) for k in ("x", "y", "width", "height")):
            return None
        return dict(bounds)

    def save_window_bounds(self, bounds):
        self.save({"windowBounds": dict(bounds)})

    def clear_window_bounds(self):
        self.save({"windowBounds": None})

    #endregion --- Settings ---

#endregion === Store ===
