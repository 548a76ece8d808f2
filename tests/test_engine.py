"""Tests for the timer engine: start/tick/stop, switching, reset, resume and ticket reconciliation.

Covers: tt.core.engine, with a real tt.core.config.StateStore on a temp dir, a fake clock and a fake ticker.
"""

import json
import shutil
import tempfile
import unittest
from pathlib import Path


T0 = 1_700_000_000_000


class FakeClock:

    def __init__(self, now=T0):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, ms):
        self.now += ms


class FakeTicker:

    def __init__(self, interval_ms, callback):
        self.interval_ms = interval_ms
        self.callback = callback
        self.running = False

    def start(self):
        self.running = True

    def stop(self):
        self.running = False

    def fire(self):
        self.callback()


class EngineTestCase(unittest.TestCase):

    def setUp(self):
        self.tmpdir = tempfile.mkdtemp()
        self.path = Path(self.tmpdir) / "state.json"
        self.clock = FakeClock()
        self.tickers = []

    def tearDown(self):
        shutil.rmtree(self.tmpdir, ignore_errors=True)

    def _factory(self, interval_ms, callback):
        ticker = FakeTicker(interval_ms, callback)
        self.tickers.append(ticker)
        return ticker

    def _store(self):
        from tt.core.config import StateStore
        return StateStore(self.path)

    def _engine(self, store=None, **kwargs):
        from tt.core.engine import TimerEngine
        engine = TimerEngine(store or self._store(), clock=self.clock, ticker_factory=self._factory, **kwargs)
        engine.load_state()
        return engine

    def _write_record(self, record):
        with open(self.path, "w", encoding="utf-8") as f:
            json.dump(record, f)

    def _persisted(self):
        return self._store().load()

    def _tick(self, ms):
        self.clock.advance(ms)
        self.tickers[-1].fire()


# ──────────────────────────────────────────────────────────────────────────
# start / tick / stop
# ──────────────────────────────────────────────────────────────────────────

class TestStartStop(EngineTestCase):

    def test_accumulated_time_is_sum_of_ticks_plus_final_flush(self):
        engine = self._engine()
        engine.add_ticket("ABC-1")
        engine.start()
        self._tick(1000)
        self._tick(1000)
        self._tick(1003)
        self.clock.advance(400)
        session = engine.stop()

        self.assertEqual(engine.state.ticket_times["ABC-1"], 3403)
        self.assertEqual(self._persisted().ticket_times["ABC-1"], 3403)
        self.assertEqual(session.duration, 3403)
        self.assertEqual(session.elapsed, 3403)
        self.assertEqual(session.start_time, T0)
        self.assertEqual(session.end_time, T0 + 3403)

    def test_each_tick_persists_its_slice_and_new_anchor(self):
        engine = self._engine()
        engine.add_ticket("ABC-1")
        engine.start()
        self._tick(1000)

        persisted = self._persisted()
        self.assertEqual(persisted.ticket_times["ABC-1"], 1000)
        self.assertTrue(persisted.is_running)
        self.assertEqual(persisted.start_time, T0 + 1000)

    def test_start_requires_a_ticket(self):
        from tt.core.errors import ValidationError
        engine = self._engine()
        with self.assertRaises(ValidationError):
            engine.start()
        self.assertFalse(engine.is_running)
        self.assertEqual(self.tickers, [])

    def test_start_twice_is_same_as_once(self):
        engine = self._engine()
        engine.add_ticket("ABC-1")
        self.assertTrue(engine.start())
        self.clock.advance(500)
        self.assertFalse(engine.start())

        self.assertEqual(len(self.tickers), 1)
        self.assertEqual(engine.state.start_time, T0)
        self.assertEqual(engine.state.session_start, T0)
        self.assertEqual(engine.get_display_millis(), 500)

    def test_stop_when_idle_is_noop(self):
        engine = self._engine()
        engine.add_ticket("ABC-1")
        self.assertIsNone(engine.stop())
        self.assertEqual(self._store().load_sessions(), [])

    def test_stop_cancels_ticker_and_appends_session(self):
        engine = self._engine()
        engine.add_ticket("ABC-1")
        engine.start()
        self.clock.advance(2000)
        engine.stop()

        ticker = self.tickers[-1]
        self.assertFalse(ticker.running)
        persisted = self._persisted()
        self.assertFalse(persisted.is_running)
        self.assertIsNone(persisted.start_time)
        sessions = self._store().load_sessions()
        self.assertEqual(len(sessions), 1)
        self.assertEqual(sessions[0].ticket, "ABC-1")

        # A late timeout from the cancelled ticker must not count anything
        self.clock.advance(1000)
        ticker.fire()
        self.assertEqual(engine.state.ticket_times["ABC-1"], 2000)

    def test_session_duration_is_cumulative_and_elapsed_is_interval(self):
        engine = self._engine()
        engine.add_ticket("ABC-1")
        engine.start()
        self.clock.advance(1000)
        engine.stop()
        self.clock.advance(60000)
        engine.start()
        self.clock.advance(250)
        second = engine.stop()

        self.assertEqual(second.duration, 1250)
        self.assertEqual(second.elapsed, 250)

    def test_display_is_total_plus_running_slice(self):
        engine = self._engine()
        self.assertEqual(engine.get_display_millis(), 0)
        engine.add_ticket("ABC-1")
        engine.start()
        self._tick(1000)
        self.clock.advance(300)
        self.assertEqual(engine.get_display_millis(), 1300)
        # Pure: asking again doesn't commit anything
        self.assertEqual(engine.state.ticket_times["ABC-1"], 1000)

    def test_clock_going_backwards_never_subtracts(self):
        engine = self._engine()
        engine.add_ticket("ABC-1")
        engine.start()
        self._tick(1000)
        self.clock.advance(-5000)
        self.tickers[-1].fire()
        self.assertEqual(engine.state.ticket_times["ABC-1"], 1000)
        self.assertEqual(engine.get_display_millis(), 1000)


# ──────────────────────────────────────────────────────────────────────────
# Switching tickets
# ──────────────────────────────────────────────────────────────────────────

class TestSelectTicket(EngineTestCase):

    def test_switch_while_running_flushes_old_and_starts_new_fresh(self):
        engine = self._engine()
        engine.add_ticket("ABC-1")
        engine.add_ticket("ABC-2")
        engine.select_ticket("ABC-1")
        engine.start()
        self._tick(1000)
        self.clock.advance(500)
        old_ticker = self.tickers[-1]

        engine.select_ticket("ABC-2")

        self.assertTrue(engine.is_running)
        self.assertEqual(engine.current_ticket, "ABC-2")
        self.assertEqual(engine.state.ticket_times["ABC-1"], 1500)
        self.assertEqual(self._persisted().ticket_times["ABC-1"], 1500)
        self.assertEqual(engine.get_display_millis(), 0)
        self.assertFalse(old_ticker.running)
        self.assertEqual(self._store().load_sessions(), [])

        self.clock.advance(700)
        self.assertEqual(engine.get_display_millis(), 700)

        # The old ticker's callback is bound to a cancelled token
        old_ticker.fire()
        self.assertEqual(engine.state.ticket_times["ABC-1"], 1500)
        self.assertEqual(engine.state.ticket_times["ABC-2"], 0)

        self._tick(300)
        self.assertEqual(engine.state.ticket_times["ABC-2"], 1000)
        self.assertEqual(engine.state.ticket_times["ABC-1"], 1500)

    def test_session_after_switch_belongs_to_new_ticket(self):
        engine = self._engine()
        engine.add_ticket("ABC-1")
        engine.add_ticket("ABC-2")
        engine.select_ticket("ABC-1")
        engine.start()
        self.clock.advance(1000)
        engine.select_ticket("ABC-2")
        self.clock.advance(400)
        session = engine.stop()

        self.assertEqual(session.ticket, "ABC-2")
        self.assertEqual(session.start_time, T0 + 1000)
        self.assertEqual(session.elapsed, 400)

    def test_select_none_while_running_stops(self):
        engine = self._engine()
        engine.add_ticket("ABC-1")
        engine.start()
        self.clock.advance(800)
        engine.select_ticket(None)

        self.assertFalse(engine.is_running)
        self.assertIsNone(engine.current_ticket)
        self.assertEqual(len(self._store().load_sessions()), 1)
        self.assertEqual(engine.state.ticket_times["ABC-1"], 800)

    def test_select_unknown_ticket_is_rejected(self):
        from tt.core.errors import ValidationError
        engine = self._engine()
        engine.add_ticket("ABC-1")
        with self.assertRaises(ValidationError):
            engine.select_ticket("NOPE-9")
        self.assertEqual(engine.current_ticket, "ABC-1")

    def test_select_while_idle_persists_choice(self):
        engine = self._engine()
        engine.add_ticket("ABC-1")
        engine.add_ticket("ABC-2")
        engine.select_ticket("ABC-1")
        self.assertEqual(self._persisted().current_ticket, "ABC-1")
        self.assertFalse(engine.is_running)


# ──────────────────────────────────────────────────────────────────────────
# Reset
# ──────────────────────────────────────────────────────────────────────────

class TestReset(EngineTestCase):

    def test_reset_running_ticket_logs_session_then_zeroes(self):
        engine = self._engine()
        engine.add_ticket("ABC-1")
        engine.start()
        self._tick(1000)
        self.clock.advance(234)
        engine.reset()

        sessions = self._store().load_sessions()
        self.assertEqual(len(sessions), 1)
        self.assertEqual(sessions[0].duration, 1234)
        self.assertEqual(engine.state.ticket_times["ABC-1"], 0)
        self.assertEqual(self._persisted().ticket_times["ABC-1"], 0)
        self.assertFalse(engine.is_running)
        self.assertIsNone(engine.state.start_time)
        self.assertFalse(self.tickers[-1].running)

    def test_reset_idle_ticket_appends_nothing(self):
        engine = self._engine()
        engine.add_ticket("ABC-1")
        engine.start()
        self.clock.advance(1000)
        engine.stop()
        engine.reset()
        self.assertEqual(len(self._store().load_sessions()), 1)
        self.assertEqual(engine.get_display_millis(), 0)

    def test_reset_only_touches_current_ticket(self):
        self._write_record({
            "tickets": ["A-1", "A-2"],
            "ticketTimes": {"A-1": 5000, "A-2": 7000},
            "currentTicket": "A-1",
        })
        engine = self._engine()
        engine.reset()
        self.assertEqual(engine.state.ticket_times, {"A-1": 0, "A-2": 7000})

    def test_reset_without_ticket_is_noop(self):
        engine = self._engine()
        engine.reset()
        self.assertIsNone(engine.current_ticket)


# ──────────────────────────────────────────────────────────────────────────
# Adding and replacing tickets
# ──────────────────────────────────────────────────────────────────────────

class TestTickets(EngineTestCase):

    def test_add_ticket_normalizes_and_selects(self):
        engine = self._engine()
        result = engine.add_ticket("  abc-123 ")
        self.assertTrue(result.ok)
        self.assertEqual(result.ticket, "ABC-123")
        self.assertFalse(result.already_present)
        self.assertEqual(engine.state.tickets, ["ABC-123"])
        self.assertEqual(engine.current_ticket, "ABC-123")
        self.assertEqual(engine.state.ticket_times["ABC-123"], 0)
        persisted = self._persisted()
        self.assertEqual(persisted.tickets, ["ABC-123"])
        self.assertEqual(persisted.current_ticket, "ABC-123")

    def test_add_bad_ticket_is_rejected_without_mutation(self):
        engine = self._engine()
        for raw in ("bad ticket", "", "ABC123", "123-ABC", "AB-12x"):
            result = engine.add_ticket(raw)
            self.assertFalse(result.ok, raw)
            self.assertTrue(result.reason)
        self.assertEqual(engine.state.tickets, [])
        self.assertIsNone(engine.current_ticket)
        self.assertFalse(self.path.exists())

    def test_add_existing_ticket_selects_without_duplicating(self):
        engine = self._engine()
        engine.add_ticket("ABC-1")
        engine.add_ticket("ABC-2")
        result = engine.add_ticket("abc-1")
        self.assertTrue(result.ok)
        self.assertTrue(result.already_present)
        self.assertEqual(engine.state.tickets, ["ABC-1", "ABC-2"])
        self.assertEqual(engine.current_ticket, "ABC-1")

    def test_add_while_running_switches_to_new_ticket(self):
        engine = self._engine()
        engine.add_ticket("ABC-1")
        engine.start()
        self.clock.advance(900)
        engine.add_ticket("ABC-2")
        self.assertTrue(engine.is_running)
        self.assertEqual(engine.current_ticket, "ABC-2")
        self.assertEqual(engine.state.ticket_times["ABC-1"], 900)

    def test_replace_keeps_survivors_drops_removed_zeroes_new(self):
        self._write_record({
            "tickets": ["A-1", "A-3"],
            "ticketTimes": {"A-1": 5000, "A-3": 9000},
        })
        engine = self._engine()
        tickets = engine.replace_tickets(["A-1", "A-2"])

        self.assertEqual(tickets, ["A-1", "A-2"])
        self.assertEqual(engine.state.ticket_times, {"A-1": 5000, "A-2": 0})
        persisted = self._persisted()
        self.assertEqual(persisted.tickets, ["A-1", "A-2"])
        self.assertEqual(persisted.ticket_times, {"A-1": 5000, "A-2": 0})

    def test_replace_dedupes_preserving_order(self):
        engine = self._engine()
        self.assertEqual(engine.replace_tickets(["B-2", "A-1", "B-2"]), ["B-2", "A-1"])

    def test_replace_excluding_running_ticket_stops_it_first(self):
        self._write_record({
            "tickets": ["A-1", "A-3"],
            "ticketTimes": {"A-1": 5000, "A-3": 9000},
            "currentTicket": "A-3",
        })
        engine = self._engine()
        engine.start()
        self.clock.advance(1500)
        engine.replace_tickets(["A-1", "A-2"])

        sessions = self._store().load_sessions()
        self.assertEqual(len(sessions), 1)
        self.assertEqual(sessions[0].ticket, "A-3")
        self.assertEqual(sessions[0].duration, 10500)
        self.assertFalse(engine.is_running)
        self.assertIsNone(engine.current_ticket)
        self.assertFalse(self.tickers[-1].running)
        persisted = self._persisted()
        self.assertIsNone(persisted.current_ticket)
        self.assertFalse(persisted.is_running)
        self.assertNotIn("A-3", persisted.ticket_times)

    def test_replace_keeping_running_ticket_flushes_and_keeps_running(self):
        engine = self._engine()
        engine.add_ticket("A-1")
        engine.start()
        self.clock.advance(1200)
        engine.replace_tickets(["A-2", "A-1"])

        self.assertTrue(engine.is_running)
        self.assertEqual(engine.current_ticket, "A-1")
        self.assertEqual(engine.state.ticket_times["A-1"], 1200)
        self.assertEqual(self._persisted().ticket_times["A-1"], 1200)
        self.assertEqual(self._store().load_sessions(), [])
        self._tick(1000)
        self.assertEqual(engine.state.ticket_times["A-1"], 2200)

    def test_replace_clears_idle_current_ticket_not_in_list(self):
        engine = self._engine()
        engine.add_ticket("A-1")
        engine.replace_tickets(["A-2"])
        self.assertIsNone(engine.current_ticket)
        self.assertEqual(self._store().load_sessions(), [])


# ──────────────────────────────────────────────────────────────────────────
# Loading and resume
# ──────────────────────────────────────────────────────────────────────────

class TestResume(EngineTestCase):

    def _running_record(self):
        return {
            "tickets": ["A-1"],
            "ticketTimes": {"A-1": 1000},
            "currentTicket": "A-1",
            "isRunning": True,
            "startTime": T0 - 5000,
            "sessionStart": T0 - 8000,
        }

    def test_resume_counts_offline_gap_by_default(self):
        self._write_record(self._running_record())
        engine = self._engine()

        self.assertTrue(engine.is_running)
        self.assertEqual(len(self.tickers), 1)
        self.assertTrue(self.tickers[0].running)
        self.assertEqual(engine.get_display_millis(), 6000)
        self._tick(1000)
        self.assertEqual(self._persisted().ticket_times["A-1"], 7000)

    def test_resume_without_offline_gap(self):
        self._write_record(self._running_record())
        engine = self._engine(resume_offline_gap=False)

        self.assertTrue(engine.is_running)
        self.assertEqual(engine.get_display_millis(), 1000)
        self.clock.advance(500)
        session = engine.stop()
        self.assertEqual(session.duration, 1500)
        self.assertEqual(session.elapsed, 3500)

    def test_running_record_without_start_time_loads_stopped(self):
        record = self._running_record()
        record["startTime"] = None
        self._write_record(record)
        engine = self._engine()

        self.assertFalse(engine.is_running)
        self.assertEqual(self.tickers, [])
        self.assertFalse(self._persisted().is_running)

    def test_running_record_with_unknown_ticket_loads_stopped(self):
        record = self._running_record()
        record["currentTicket"] = "GONE-1"
        self._write_record(record)
        engine = self._engine()
        self.assertFalse(engine.is_running)
        self.assertIsNone(engine.current_ticket)
        self.assertIsNone(self._persisted().current_ticket)

        from tt.core.errors import ValidationError
        with self.assertRaises(ValidationError):
            engine.start()
        self.assertEqual(self.tickers, [])

    def test_shutdown_then_relaunch_resumes(self):
        engine = self._engine()
        engine.add_ticket("A-1")
        engine.start()
        self.clock.advance(1500)
        engine.shutdown()

        self.assertFalse(self.tickers[-1].running)
        persisted = self._persisted()
        self.assertTrue(persisted.is_running)
        self.assertEqual(persisted.ticket_times["A-1"], 1500)
        self.assertEqual(persisted.start_time, T0 + 1500)

        self.clock.advance(10000)
        relaunched = self._engine()
        self.assertTrue(relaunched.is_running)
        self.assertEqual(relaunched.get_display_millis(), 11500)

    def test_legacy_record_without_times_loads(self):
        self._write_record({"tickets": ["OLD-1"], "sessions": [], "currentTicket": "OLD-1", "isRunning": False})
        engine = self._engine()
        self.assertEqual(engine.state.ticket_times, {"OLD-1": 0})
        self.assertEqual(engine.current_ticket, "OLD-1")


# ──────────────────────────────────────────────────────────────────────────
# Persistence failures
# ──────────────────────────────────────────────────────────────────────────

class TestPersistenceFailure(EngineTestCase):

    def _flaky_store(self):
        from tt.core.config import StateStore
        from tt.core.errors import PersistenceError

        class FlakyStore(StateStore):
            failing = False

            def _write(self):
                if self.failing:
                    raise PersistenceError("disk full")
                super()._write()

        return FlakyStore(self.path)

    def test_failed_write_keeps_memory_and_retries_next_tick(self):
        store = self._flaky_store()
        engine = self._engine(store=store)
        engine.add_ticket("A-1")
        engine.start()

        store.failing = True
        self._tick(1000)
        self.assertEqual(engine.state.ticket_times["A-1"], 1000)
        self.assertEqual(self._persisted().ticket_times["A-1"], 0)

        store.failing = False
        self._tick(1000)
        persisted = self._persisted()
        self.assertEqual(persisted.ticket_times["A-1"], 2000)
        self.assertTrue(persisted.is_running)

    def test_failed_stop_still_stops_in_memory(self):
        store = self._flaky_store()
        engine = self._engine(store=store)
        engine.add_ticket("A-1")
        engine.start()
        self.clock.advance(1000)

        store.failing = True
        session = engine.stop()
        self.assertIsNotNone(session)
        self.assertFalse(engine.is_running)

        store.failing = False
        engine.save_state()
        self.assertFalse(self._persisted().is_running)
        self.assertEqual(len(self._store().load_sessions()), 1)


if __name__ == "__main__":
    unittest.main()
