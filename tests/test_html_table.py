"""Unit tests for HtmlTableAdapter and the shared text helpers."""
import pytest
import responses

from orchestrator.config import FacilityConfig, RinkConfig
from processor.models import WallClock
from scraper.gateway import FetchGateway
from scraper.html_table import HtmlTableAdapter, split_sessions
from scraper.patterns import clean_title, find_date, find_time_range, pick_title

URL = 'https://rink.example.com/calendar'

SCHEDULE_HTML = """
<html>
  <body>
    <ul class="nav"><li>Home</li><li>Contact us</li></ul>
    <table>
      <tr><th colspan="2">Monday, June 2, 2025</th></tr>
      <tr class="session"><td>6:00am-7:30am</td><td>Public Skate</td></tr>
      <tr class="session"><td>5:00-6:00pm</td><td>Adult Stick &amp; Puck</td></tr>
      <tr class="session"><td>No times today</td><td>Party room</td></tr>
    </table>
    <div data-date="2025-06-03">
      <div class="event"><span>7:00 PM &ndash; 8:30 PM</span><span>Freestyle</span></div>
    </div>
    <footer><p>Copyright 2025 The Rink</p></footer>
  </body>
</html>
"""


def make_facility(**options):
    return FacilityConfig(
        facility_id='ice-ranch',
        facility_name='The Ice Ranch',
        display_name='The Ice Ranch (Littleton)',
        source_url=URL,
        adapter='html_table',
        rinks=(RinkConfig('ice-ranch', 'Main Rink'),),
        options=options
    )


@pytest.fixture
def gateway():
    return FetchGateway(use_relays=False)


class TestHtmlTableAdapter:
    """Test cases for HtmlTableAdapter class."""

    @responses.activate
    def test_scrape_extracts_rows_and_cards(self, gateway, clock):
        responses.add(responses.GET, URL, body=SCHEDULE_HTML, status=200)

        result = HtmlTableAdapter(make_facility(), gateway, clock=clock).scrape()

        assert result.ok
        summary = [(event.title, event.start_local, event.end_local) for event in result.events]
        assert summary == [
            ('Public Skate', WallClock(2025, 6, 2, 6, 0), WallClock(2025, 6, 2, 7, 30)),
            ('Adult Stick & Puck', WallClock(2025, 6, 2, 17, 0), WallClock(2025, 6, 2, 18, 0)),
            ('Freestyle', WallClock(2025, 6, 3, 19, 0), WallClock(2025, 6, 3, 20, 30)),
        ]
        assert all(event.source_facility_id == 'ice-ranch' for event in result.events)
        assert all(event.rink_id == 'ice-ranch' for event in result.events)
        assert all(event.source_url == URL for event in result.events)

    @responses.activate
    def test_bad_clock_skips_only_its_session(self, gateway, clock):
        html = """
        <div data-date="2025-06-05">
          <p>13:00 pm - 2:00pm</p><p>Freestyle</p>
          <p>3:00pm - 4:00pm</p><p>Public Skate</p>
        </div>
        """
        responses.add(responses.GET, URL, body=html, status=200)

        result = HtmlTableAdapter(make_facility(), gateway, clock=clock).scrape()

        assert result.ok
        assert [(event.title, event.start_local) for event in result.events] == [
            ('Public Skate', WallClock(2025, 6, 5, 15, 0)),
        ]

    @responses.activate
    def test_custom_selector(self, gateway, clock):
        responses.add(responses.GET, URL, body=SCHEDULE_HTML, status=200)

        result = HtmlTableAdapter(make_facility(selector='.event'), gateway, clock=clock).scrape()

        assert [event.title for event in result.events] == ['Freestyle']

    @responses.activate
    def test_ambiguous_meridiem_option(self, gateway, clock):
        html = '<table><tr data-date="2025-06-04"><td>5:30-6:45</td><td>Drop-In Hockey</td></tr></table>'
        responses.add(responses.GET, URL, body=html, status=200)

        result = HtmlTableAdapter(make_facility(ambiguous_meridiem=True), gateway, clock=clock).scrape()

        assert result.events[0].start_local == WallClock(2025, 6, 4, 17, 30)
        assert result.events[0].end_local == WallClock(2025, 6, 4, 18, 45)

    @responses.activate
    def test_several_sessions_in_one_cell(self, gateway, clock):
        html = """
        <table><tr><td data-date="2025-06-05">
          <p>6:00pm-7:00pm Public Skate</p>
          <p>8:00pm-9:30pm</p><p>Adult League</p>
        </td></tr></table>
        """
        responses.add(responses.GET, URL, body=html, status=200)

        result = HtmlTableAdapter(make_facility(), gateway, clock=clock).scrape()

        assert [event.title for event in result.events] == ['Public Skate', 'Adult League']
        assert result.events[1].start_local == WallClock(2025, 6, 5, 20, 0)

    @responses.activate
    def test_element_without_date_is_skipped(self, gateway, clock):
        html = '<div class="event">6:00pm-7:00pm Public Skate</div>'
        responses.add(responses.GET, URL, body=html, status=200)

        result = HtmlTableAdapter(make_facility(), gateway, clock=clock).scrape()

        assert result.ok
        assert result.events == []

    @responses.activate
    def test_fetch_failure_becomes_error_result(self, gateway, clock):
        responses.add(responses.GET, URL, status=503)

        result = HtmlTableAdapter(make_facility(), gateway, clock=clock).scrape()

        assert not result.ok
        assert result.events == []
        assert 'All transports failed' in result.error


class TestPatterns:
    """Test cases for the text helpers."""

    @pytest.mark.parametrize('text,expected', [
        ('6:00am-7:30am', ('6:00am', '7:30am')),
        ('5:00 - 6:00 PM', ('5:00 PM', '6:00 PM')),
        ('11:30 a.m. – 1:00 p.m.', ('11:30 a.m.', '1:00 p.m.')),
        ('9:00 PM—10:15 PM', ('9:00 PM', '10:15 PM')),
        ('5:30-6:45', ('5:30', '6:45')),
    ])
    def test_find_time_range(self, text, expected):
        assert find_time_range(text) == expected

    def test_find_time_range_absent(self):
        assert find_time_range('Public Skate all day') is None

    @pytest.mark.parametrize('text,expected', [
        ('2025-06-02', (2025, 6, 2)),
        ('Sessions on 6/2/2025', (2025, 6, 2)),
        ('Monday, June 2, 2025', (2025, 6, 2)),
        ('Sept. 14th', (2025, 9, 14)),
    ])
    def test_find_date(self, text, expected):
        found = find_date(text, default_year=2025)
        assert (found.year, found.month, found.day) == expected

    def test_find_date_absent(self):
        assert find_date('Public Skate', default_year=2025) is None

    @pytest.mark.parametrize('raw,expected', [
        ('2Public Skate', 'Public Skate'),
        ('- Stick & Puck', 'Stick & Puck'),
        ('Freestyle Register Now', 'Freestyle'),
        ('Learn to Skate click here', 'Learn to Skate'),
        ('  ** Drop-In   Hockey ', 'Drop-In Hockey'),
    ])
    def test_clean_title(self, raw, expected):
        assert clean_title(raw) == expected

    def test_pick_title_prefers_ice_keywords(self):
        assert pick_title(['Room B', 'Adult Hockey League', 'Contact us']) == 'Adult Hockey League'

    def test_pick_title_rejects_boilerplate_and_dates(self):
        assert pick_title(['Privacy Policy', 'June 2, 2025', '7:00pm-8:00pm']) is None

    def test_split_sessions_groups_context(self):
        sessions = split_sessions(['Header', '6:00pm-7:00pm', 'Public Skate', '8:00pm-9:00pm', 'League'])

        assert sessions[0][0] == ('6:00 pm', '7:00pm')
        assert sessions[0][1] == ['6:00pm-7:00pm', 'Public Skate', 'Header']
        assert sessions[1][1] == ['8:00pm-9:00pm', 'League']
