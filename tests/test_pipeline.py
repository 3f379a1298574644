"""Unit tests for FacilityPipeline."""
from datetime import timedelta
from unittest.mock import MagicMock

import pytest
from botocore.exceptions import ClientError

from orchestrator.config import FacilityConfig, RinkConfig
from orchestrator.pipeline import FacilityPipeline
from processor.models import FacilityStatus, RawEvent, ScrapeResult, WallClock
from scraper.gateway import FetchGateway

FACILITY = FacilityConfig(
    facility_id='ice-ranch',
    facility_name='The Ice Ranch',
    display_name='The Ice Ranch (Littleton)',
    source_url='https://rink.example.com/calendar',
    adapter='html_table',
    rinks=(RinkConfig('ice-ranch', 'Main Rink'),)
)


def raw_event(title, day=2):
    return RawEvent(
        title=title,
        start_local=WallClock(2025, 6, day, 10, 0),
        end_local=WallClock(2025, 6, day, 11, 30),
        source_facility_id='ice-ranch'
    )


class FakeAdapter:
    """Adapter returning a canned scrape result."""

    def __init__(self, result):
        self.result = result

    def scrape(self):
        return self.result


def factory_for(*results):
    """Adapter factory handing out the given results in order."""
    pending = list(results)

    def factory(facility, gateway, **kwargs):
        return FakeAdapter(pending.pop(0))

    return factory


class MutableClock:
    def __init__(self, now):
        self.now = now

    def __call__(self):
        return self.now


@pytest.fixture
def mutable_clock(fixed_now):
    return MutableClock(fixed_now)


def make_pipeline(store, factory, clock, monotonic=None):
    kwargs = {'monotonic': monotonic} if monotonic else {}
    return FacilityPipeline(
        store=store,
        gateway=FetchGateway(use_relays=False),
        adapter_factory=factory,
        clock=clock,
        **kwargs
    )


class TestFacilityPipeline:
    """Test cases for FacilityPipeline class."""

    def test_success_stores_events_and_metadata(self, store, clock, fixed_now):
        factory = factory_for(ScrapeResult(events=[raw_event('Public Skate'), raw_event('Freestyle', day=3)]))

        result = make_pipeline(store, factory, clock).run(FACILITY)

        assert result.success
        assert result.event_count == 2
        assert [event.title for event in store.get_events('ice-ranch')] == ['Public Skate', 'Freestyle']

        metadata = store.get_metadata('ice-ranch')
        assert metadata.status == FacilityStatus.SUCCESS
        assert metadata.event_count == 2
        assert metadata.display_name == 'The Ice Ranch (Littleton)'
        assert metadata.last_attempt == fixed_now
        assert metadata.last_successful_scrape == fixed_now
        assert metadata.error_message is None

    def test_failure_keeps_previous_events(self, store, mutable_clock, fixed_now):
        factory = factory_for(
            ScrapeResult(events=[raw_event('Public Skate')]),
            ScrapeResult.failure('All transports failed for https://rink.example.com/calendar: direct: 503')
        )
        pipeline = make_pipeline(store, factory, mutable_clock)

        pipeline.run(FACILITY)
        mutable_clock.now = fixed_now + timedelta(hours=6)
        result = pipeline.run(FACILITY)

        assert not result.success
        assert 'All transports failed' in result.error
        assert [event.title for event in store.get_events('ice-ranch')] == ['Public Skate']

        metadata = store.get_metadata('ice-ranch')
        assert metadata.status == FacilityStatus.ERROR
        assert metadata.event_count == 0
        assert metadata.error_message == result.error
        assert metadata.last_attempt == fixed_now + timedelta(hours=6)
        assert metadata.last_successful_scrape == fixed_now

    def test_first_failure_has_no_last_success(self, store, clock):
        result = make_pipeline(store, factory_for(ScrapeResult.failure('boom')), clock).run(FACILITY)

        assert not result.success
        assert store.get_events('ice-ranch') == []
        assert store.get_metadata('ice-ranch').last_successful_scrape is None

    def test_empty_scrape_is_a_success(self, store, clock):
        result = make_pipeline(store, factory_for(ScrapeResult(events=[])), clock).run(FACILITY)

        assert result.success
        assert result.event_count == 0
        assert store.get_metadata('ice-ranch').status == FacilityStatus.SUCCESS

    def test_late_result_is_recorded_as_timeout(self, store, clock):
        readings = iter([0.0, 301.0])
        factory = factory_for(ScrapeResult(events=[raw_event('Public Skate')]))
        pipeline = make_pipeline(store, factory, clock, monotonic=lambda: next(readings))

        result = pipeline.run(FACILITY, timeout_seconds=300)

        assert not result.success
        assert 'did not finish within 300 seconds' in result.error
        assert store.get_events('ice-ranch') == []
        assert store.get_metadata('ice-ranch').status == FacilityStatus.ERROR

    def test_stale_result_does_not_overwrite_newer_attempt(self, store, fixed_now):
        newer = make_pipeline(
            store, factory_for(ScrapeResult(events=[raw_event('Public Skate')])),
            lambda: fixed_now + timedelta(hours=6)
        )
        stale = make_pipeline(
            store,
            factory_for(ScrapeResult(events=[raw_event('Freestyle')]), ScrapeResult.failure('boom')),
            lambda: fixed_now
        )

        newer.run(FACILITY)
        late_success = stale.run(FACILITY)
        late_failure = stale.run(FACILITY)

        assert not late_success.success
        assert not late_failure.success
        assert [event.title for event in store.get_events('ice-ranch')] == ['Public Skate']
        metadata = store.get_metadata('ice-ranch')
        assert metadata.status == FacilityStatus.SUCCESS
        assert metadata.last_attempt == fixed_now + timedelta(hours=6)

    def test_storage_error_becomes_failed_result(self, clock):
        store = MagicMock()
        store.put_events.side_effect = ClientError(
            {'Error': {'Code': 'ProvisionedThroughputExceededException', 'Message': 'slow down'}},
            'PutItem'
        )
        store.find_metadata.return_value = None
        factory = factory_for(ScrapeResult(events=[raw_event('Public Skate')]))

        result = make_pipeline(store, factory, clock).run(FACILITY)

        assert not result.success
        assert result.error.startswith('Storage write failed')
        metadata = store.put_metadata.call_args[0][1]
        assert metadata.status == FacilityStatus.ERROR

    def test_adapter_receives_pipeline_settings(self, store, clock):
        factory = MagicMock(return_value=FakeAdapter(ScrapeResult(events=[])))
        pipeline = FacilityPipeline(
            store=store,
            gateway=FetchGateway(use_relays=False),
            adapter_factory=factory,
            reference_timezone='America/Chicago',
            clock=clock
        )

        pipeline.run(FACILITY)

        factory.assert_called_once_with(
            FACILITY, pipeline.gateway, reference_timezone='America/Chicago', clock=clock
        )
