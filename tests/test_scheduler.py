"""Unit tests for the Orchestrator."""
import random
import threading
import time
from datetime import timedelta
from unittest.mock import MagicMock

from botocore.exceptions import ClientError

from orchestrator.scheduler import Orchestrator, RunState
from processor.models import FacilityResult


def dispatch_with_failure(facility_id):
    if facility_id == 'big-bear':
        raise RuntimeError('adapter exploded')
    return FacilityResult(facility_id, True, event_count=5)


def make_orchestrator(facility_ids, dispatch, store=None, **kwargs):
    return Orchestrator(facility_ids=facility_ids, dispatch=dispatch, store=store or MagicMock(), **kwargs)


class TestOrchestrator:
    """Test cases for Orchestrator class."""

    def test_one_failure_does_not_affect_others(self, clock):
        orchestrator = make_orchestrator(['ice-ranch', 'big-bear', 'du-ritchie'], dispatch_with_failure, clock=clock)

        run = orchestrator.run_cycle(apply_splay=False)

        assert [result.facility_id for result in run.results] == ['ice-ranch', 'big-bear', 'du-ritchie']
        assert [result.success for result in run.results] == [True, False, True]
        assert run.results[1].error == 'adapter exploded'
        assert run.successful == 2
        assert run.failed == 1

    def test_run_is_persisted_with_next_schedule(self, store, clock, fixed_now):
        orchestrator = make_orchestrator(
            ['ice-ranch'], lambda facility_id: FacilityResult(facility_id, True, event_count=1),
            store=store, clock=clock, run_interval_hours=6
        )

        run = orchestrator.run_cycle(apply_splay=False)

        assert run.timestamp == fixed_now
        assert run.next_scheduled == fixed_now + timedelta(hours=6)
        assert store.get_scheduler_run() == run
        assert orchestrator.state == RunState.IDLE

    def test_duplicate_ids_run_once(self, clock):
        calls = []

        def dispatch(facility_id):
            calls.append(facility_id)
            return FacilityResult(facility_id, True, event_count=0)

        run = make_orchestrator(['ice-ranch', 'ice-ranch'], dispatch, clock=clock).run_cycle(apply_splay=False)

        assert calls == ['ice-ranch']
        assert len(run.results) == 1

    def test_splay_moves_next_schedule_instead_of_blocking(self, clock, fixed_now):
        orchestrator = make_orchestrator(
            ['ice-ranch'], lambda facility_id: FacilityResult(facility_id, True),
            clock=clock, splay_minutes=60, run_interval_hours=6, rng=random.Random(7)
        )

        started = time.monotonic()
        run = orchestrator.run_cycle()

        assert time.monotonic() - started < 5
        assert 0 <= run.splay_seconds <= 3600
        assert run.next_scheduled == fixed_now + timedelta(hours=6) + timedelta(seconds=run.splay_seconds)

    def test_manual_trigger_skips_splay(self, clock, fixed_now):
        orchestrator = make_orchestrator(
            ['ice-ranch'], lambda facility_id: FacilityResult(facility_id, True),
            clock=clock, splay_minutes=60, run_interval_hours=6
        )

        run = orchestrator.run_cycle(apply_splay=False)

        assert run.splay_seconds == 0.0
        assert run.next_scheduled == fixed_now + timedelta(hours=6)

    def test_zero_splay(self):
        assert make_orchestrator([], MagicMock(), splay_minutes=0).compute_splay() == 0.0

    def test_first_scheduled_trigger_runs(self, store, clock):
        dispatch = MagicMock(side_effect=lambda facility_id: FacilityResult(facility_id, True))

        run = make_orchestrator(['ice-ranch'], dispatch, store=store, clock=clock).run_if_due()

        assert run is not None
        dispatch.assert_called_once_with('ice-ranch')

    def test_scheduled_trigger_waits_for_next_schedule(self, store, fixed_now):
        now = [fixed_now]
        dispatch = MagicMock(side_effect=lambda facility_id: FacilityResult(facility_id, True))
        orchestrator = make_orchestrator(
            ['ice-ranch'], dispatch, store=store, clock=lambda: now[0],
            splay_minutes=60, run_interval_hours=6, rng=random.Random(7)
        )

        first = orchestrator.run_if_due()
        now[0] = first.next_scheduled - timedelta(minutes=1)
        assert orchestrator.run_if_due() is None

        now[0] = first.next_scheduled
        assert orchestrator.run_if_due() is not None
        assert dispatch.call_count == 2

    def test_unreadable_previous_run_counts_as_due(self, clock):
        store = MagicMock()
        store.get_scheduler_run.side_effect = ClientError(
            {'Error': {'Code': 'ResourceNotFoundException', 'Message': 'no table'}},
            'GetItem'
        )

        orchestrator = make_orchestrator(
            ['ice-ranch'], lambda facility_id: FacilityResult(facility_id, True), store=store, clock=clock
        )

        run = orchestrator.run_if_due()

        assert run is not None

    def test_slow_facility_times_out(self, clock):
        release = threading.Event()

        def dispatch(facility_id):
            if facility_id == 'big-bear':
                release.wait(5)
            return FacilityResult(facility_id, True, event_count=2)

        orchestrator = make_orchestrator(
            ['ice-ranch', 'big-bear'], dispatch, clock=clock, facility_timeout_seconds=0.2
        )

        try:
            run = orchestrator.run_cycle(apply_splay=False)
        finally:
            release.set()

        assert run.results[0].success
        assert not run.results[1].success
        assert 'did not finish within 0.2 seconds' in run.results[1].error

    def test_persist_failure_still_returns_summary(self, clock):
        store = MagicMock()
        store.put_scheduler_run.side_effect = ClientError(
            {'Error': {'Code': 'ResourceNotFoundException', 'Message': 'no table'}},
            'PutItem'
        )
        orchestrator = make_orchestrator(
            ['ice-ranch'], lambda facility_id: FacilityResult(facility_id, True), store=store, clock=clock
        )

        run = orchestrator.run_cycle(apply_splay=False)

        assert run.successful == 1

    def test_no_facilities(self, clock):
        store = MagicMock()

        run = make_orchestrator([], MagicMock(), store=store, clock=clock).run_cycle(apply_splay=False)

        assert run.results == []
        store.put_scheduler_run.assert_called_once_with(run)
