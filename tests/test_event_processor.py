"""Unit tests for EventProcessor."""
from datetime import datetime, timedelta, timezone

import pytest

from processor.event_processor import EventProcessor
from processor.models import Category, RawEvent, WallClock


def raw_event(title='Public Skate', start=(2025, 6, 2, 10, 0), end=(2025, 6, 2, 11, 30), **fields):
    return RawEvent(
        title=title,
        start_local=WallClock(*start),
        end_local=WallClock(*end),
        source_facility_id='ice-ranch',
        **fields
    )


@pytest.fixture
def processor(clock):
    return EventProcessor(reference_timezone='America/Denver', window_days=30, clock=clock)


class TestEventProcessor:
    """Test cases for EventProcessor class."""

    def test_process_events_valid_event(self, processor):
        """Local wall clocks are converted with the reference zone."""
        events = processor.process_events([raw_event()], 'ice-ranch')

        assert len(events) == 1
        event = events[0]
        assert event.facility_id == 'ice-ranch'
        assert event.rink_id == 'ice-ranch'
        assert event.title == 'Public Skate'
        assert event.start_instant == datetime(2025, 6, 2, 16, 0, tzinfo=timezone.utc)
        assert event.end_instant == datetime(2025, 6, 2, 17, 30, tzinfo=timezone.utc)
        assert event.category == Category.PUBLIC_SKATE

    def test_explicit_timezone_overrides_reference(self, processor):
        event = raw_event(start=(2025, 6, 2, 17, 0), end=(2025, 6, 2, 18, 0), timezone='UTC')

        result = processor.process_events([event], 'du-ritchie')[0]

        assert result.start_instant == datetime(2025, 6, 2, 17, 0, tzinfo=timezone.utc)

    def test_default_rink_and_explicit_rink(self, processor):
        events = processor.process_events(
            [raw_event(), raw_event('Freestyle', rink_id='fsc-fixit')],
            'ssprd-family-sports',
            default_rink_id='fsc-avalanche'
        )

        assert {event.title: event.rink_id for event in events} == {
            'Public Skate': 'fsc-avalanche',
            'Freestyle': 'fsc-fixit',
        }

    def test_skips_start_not_before_end(self, processor):
        events = processor.process_events(
            [raw_event(start=(2025, 6, 2, 11, 0), end=(2025, 6, 2, 11, 0))],
            'ice-ranch'
        )
        assert events == []

    def test_skips_missing_title(self, processor):
        assert processor.process_events([raw_event(title='   ')], 'ice-ranch') == []

    def test_drops_events_outside_window(self, processor):
        events = processor.process_events([
            raw_event('Past', start=(2025, 5, 30, 10, 0), end=(2025, 5, 30, 11, 0)),
            raw_event('Soon', start=(2025, 6, 10, 10, 0), end=(2025, 6, 10, 11, 0)),
            raw_event('Far', start=(2025, 8, 1, 10, 0), end=(2025, 8, 1, 11, 0)),
        ], 'ice-ranch')

        assert [event.title for event in events] == ['Soon']

    def test_sorted_by_start(self, processor):
        events = processor.process_events([
            raw_event('Late', start=(2025, 6, 3, 10, 0), end=(2025, 6, 3, 11, 0)),
            raw_event('Early', start=(2025, 6, 2, 10, 0), end=(2025, 6, 2, 11, 0)),
        ], 'ice-ranch')

        assert [event.title for event in events] == ['Early', 'Late']

    def test_duplicates_removed(self, processor):
        events = processor.process_events([raw_event(), raw_event()], 'ice-ranch')
        assert len(events) == 1

    def test_truncates_long_fields(self, processor):
        event = processor.process_events(
            [raw_event('Public Skate ' + 'x' * 300, description='d' * 3000)],
            'ice-ranch'
        )[0]

        assert len(event.title) == EventProcessor.MAX_TITLE_LENGTH
        assert len(event.description) == EventProcessor.MAX_DESCRIPTION_LENGTH

    def test_category_hint_used_before_title(self, processor):
        event = processor.process_events(
            [raw_event('Highlands Ranch HS', category_hint='Stick & Puck')],
            'ice-ranch'
        )[0]

        assert event.category == Category.STICK_AND_PUCK


class TestGenerateEventId:
    """Test cases for stable id generation."""

    def test_consistency(self):
        start = datetime(2025, 6, 2, 16, 0, tzinfo=timezone.utc)
        first = EventProcessor.generate_event_id('ice-ranch', 'Public Skate', start)
        second = EventProcessor.generate_event_id('ice-ranch', 'Public Skate', start)

        assert first == second
        assert first.startswith('ice-ranch-')
        assert len(first) == len('ice-ranch-') + 16

    def test_uniqueness(self):
        start = datetime(2025, 6, 2, 16, 0, tzinfo=timezone.utc)
        ids = {
            EventProcessor.generate_event_id('ice-ranch', 'Public Skate', start),
            EventProcessor.generate_event_id('big-bear', 'Public Skate', start),
            EventProcessor.generate_event_id('ice-ranch', 'Freestyle', start),
            EventProcessor.generate_event_id('ice-ranch', 'Public Skate', start + timedelta(hours=1)),
        }
        assert len(ids) == 4

    def test_source_id_feeds_the_id(self, processor):
        with_uid = processor.process_events([raw_event(source_id='uid-1')], 'ice-ranch')[0]
        without_uid = processor.process_events([raw_event()], 'ice-ranch')[0]

        assert with_uid.id != without_uid.id
