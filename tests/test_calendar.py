#!/usr/bin/env python3
# /// script
# requires-python = ">=3.11"
# dependencies = [
#     "pytest>=8.0.0",
# ]
# ///
"""
Tests for calendar_enrich.py

Covers:
- parse_calendar_org(): parsing example calendar.org data into CalendarEvents
- filter_events_by_date(): selecting a day's events
- load_drive_listing() / load_calendar_events(): saved API responses
- format_meetings(): text summary
- main(): CLI enrichment and transcript ranking against the example data

Uses example data in examples/calendar.org and examples/drive_files.json.

Run with: uv run pytest tests/test_calendar.py -v
"""

import json
import os
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path
from zoneinfo import ZoneInfo

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent))
import calendar_enrich
from meet_resolve import CalendarEvent, CalendarMatch, MeetingRecord

EXAMPLES_DIR = str(Path(__file__).parent.parent / 'examples')
EXAMPLE_CALENDAR = os.path.join(EXAMPLES_DIR, 'calendar.org')
EXAMPLE_LISTING = os.path.join(EXAMPLES_DIR, 'drive_files.json')


def _by_title(events, title):
    return next(e for e in events if e.summary == title)


# ============================================================================
# parse_calendar_org()
# ============================================================================

class TestParseCalendarOrg:
    """Tests for parse_calendar_org() with example calendar data."""

    def test_parses_all_entries(self):
        events = calendar_enrich.parse_calendar_org(EXAMPLE_CALENDAR)
        assert len(events) == 5

    def test_extracts_titles(self):
        events = calendar_enrich.parse_calendar_org(EXAMPLE_CALENDAR)
        titles = [e.summary for e in events]
        assert titles == ['Weekly Sync', 'Design Review', 'Lunch Break', 'Company All Hands', '定例会議']

    def test_timed_entry(self):
        events = calendar_enrich.parse_calendar_org(EXAMPLE_CALENDAR)
        sync = _by_title(events, 'Weekly Sync')
        assert sync.id == 'evt-weekly-sync'
        assert sync.start == datetime(2026, 1, 26, 9, 0, tzinfo=timezone.utc)
        assert sync.end == datetime(2026, 1, 26, 9, 30, tzinfo=timezone.utc)

    def test_people_without_emails(self):
        events = calendar_enrich.parse_calendar_org(EXAMPLE_CALENDAR)
        sync = _by_title(events, 'Weekly Sync')
        assert sync.organizer == 'Sarah Chen'
        assert sync.attendees == ('Sarah Chen', 'Kenji Sato')

    def test_meeting_link_becomes_conference_uri(self):
        events = calendar_enrich.parse_calendar_org(EXAMPLE_CALENDAR)
        assert _by_title(events, 'Weekly Sync').conference_uri == 'https://meet.google.com/abc-defg-hij'
        assert _by_title(events, 'Design Review').conference_uri is None

    def test_body_becomes_description(self):
        events = calendar_enrich.parse_calendar_org(EXAMPLE_CALENDAR)
        review = _by_title(events, 'Design Review')
        assert 'Quarterly design review' in review.description
        assert len(review.attendees) == 3
        assert review.organizer is None

    def test_entry_without_properties(self):
        """Entries without an ID get a date-based one."""
        events = calendar_enrich.parse_calendar_org(EXAMPLE_CALENDAR)
        lunch = _by_title(events, 'Lunch Break')
        assert lunch.id == '2026-01-26-3'
        assert lunch.attendees == ()
        assert lunch.description == ''

    def test_all_day_event(self):
        events = calendar_enrich.parse_calendar_org(EXAMPLE_CALENDAR)
        all_hands = _by_title(events, 'Company All Hands')
        assert all_hands.start == datetime(2026, 1, 27, tzinfo=timezone.utc)
        assert all_hands.end - all_hands.start == timedelta(days=1)

    def test_timezone(self):
        tokyo = ZoneInfo('Asia/Tokyo')
        events = calendar_enrich.parse_calendar_org(EXAMPLE_CALENDAR, tz=tokyo)
        teirei = _by_title(events, '定例会議')
        assert teirei.start == datetime(2026, 1, 27, 1, 0, tzinfo=timezone.utc)

    def test_empty_calendar_file(self, tmp_path):
        path = tmp_path / 'calendar.org'
        path.write_text('')
        assert calendar_enrich.parse_calendar_org(str(path)) == []


class TestFilterEventsByDate:
    """Tests for filter_events_by_date()."""

    def test_filters_by_day(self):
        events = calendar_enrich.parse_calendar_org(EXAMPLE_CALENDAR)
        tuesday = calendar_enrich.filter_events_by_date(events, '2026-01-27')
        assert [e.summary for e in tuesday] == ['Company All Hands', '定例会議']

    def test_no_events_that_day(self):
        events = calendar_enrich.parse_calendar_org(EXAMPLE_CALENDAR)
        assert calendar_enrich.filter_events_by_date(events, '2026-02-01') == []


# ============================================================================
# Loading saved API responses
# ============================================================================

class TestLoaders:
    """Tests for load_drive_listing() and load_calendar_events()."""

    def test_drive_listing(self):
        files = calendar_enrich.load_drive_listing(EXAMPLE_LISTING)
        assert [f.id for f in files] == ['rec-weekly', 'chat-weekly', 'rec-teirei', 'transcript-weekly']
        assert files[0].size == 104857600
        assert files[0].parents == ('folder-recordings',)

    def test_drive_listing_as_bare_list(self, tmp_path):
        path = tmp_path / 'files.json'
        path.write_text(json.dumps([{'id': 'a', 'name': 'A.mp4'}, {'name': 'no id'}]))
        files = calendar_enrich.load_drive_listing(str(path))
        assert [f.id for f in files] == ['a']

    def test_calendar_api_json(self, tmp_path):
        path = tmp_path / 'events.json'
        path.write_text(json.dumps({'items': [{
            'id': 'evt-1',
            'summary': 'Weekly Sync',
            'start': {'dateTime': '2026-01-26T09:00:00Z'},
            'end': {'dateTime': '2026-01-26T09:30:00Z'},
            'hangoutLink': 'https://meet.google.com/abc-defg-hij',
        }]}))
        events = calendar_enrich.load_calendar_events(str(path))
        assert len(events) == 1
        assert events[0].conference_uri == 'https://meet.google.com/abc-defg-hij'

    def test_calendar_org_by_extension(self):
        events = calendar_enrich.load_calendar_events(EXAMPLE_CALENDAR)
        assert len(events) == 5


# ============================================================================
# format_meetings()
# ============================================================================

class TestFormatMeetings:
    """Tests for format_meetings()."""

    def test_matched_meeting(self):
        event = CalendarEvent(id='e', summary='Weekly Sync')
        meeting = MeetingRecord(
            id='m', name='Weekly Sync',
            created_time=datetime(2026, 1, 26, 9, 35, tzinfo=timezone.utc),
            calendar_match=CalendarMatch(event=event, score=137.0,
                                         meeting_link='https://meet.google.com/abc-defg-hij',
                                         attendees=('Sarah Chen', 'Kenji Sato')),
        )

        result = calendar_enrich.format_meetings([meeting])

        assert '1. [2026-01-26 09:35] Weekly Sync' in result
        assert 'Calendar: Weekly Sync (score: 137.00)' in result
        assert 'Attendees: Sarah Chen, Kenji Sato' in result
        assert 'Meeting link: https://meet.google.com/abc-defg-hij' in result

    def test_unmatched_meeting(self):
        meeting = MeetingRecord(id='m', name='Alpha', meeting_code='abc-defg-hij')
        result = calendar_enrich.format_meetings([meeting])
        assert '1. [unknown] Alpha' in result
        assert 'Code: abc-defg-hij' in result
        assert 'Calendar: no match' in result

    def test_empty(self):
        assert calendar_enrich.format_meetings([]) == 'No meetings found.'


# ============================================================================
# main()
# ============================================================================

class TestMain:
    """CLI runs against the example data."""

    def _run(self, monkeypatch, capsys, *args):
        monkeypatch.setattr(sys, 'argv', ['calendar_enrich.py', *args])
        calendar_enrich.main()
        return capsys.readouterr().out

    def test_json_enrichment(self, monkeypatch, capsys):
        out = self._run(monkeypatch, capsys, EXAMPLE_LISTING, '--calendar', EXAMPLE_CALENDAR, '--json')
        meetings = json.loads(out)

        # Chat export shares the recording's creation time
        assert [m['id'] for m in meetings] == ['rec-weekly', 'rec-teirei', 'transcript-weekly']

        weekly = meetings[0]['calendar_match']
        assert weekly['event_id'] == 'evt-weekly-sync'
        assert weekly['score'] == pytest.approx(137.08)

        teirei = meetings[1]
        assert teirei['meeting_code'] == 'xyz-abcd-efg'
        assert teirei['calendar_match']['event_id'] == 'evt-teirei'
        assert teirei['calendar_match']['score'] >= 100

        assert meetings[2]['calendar_match']['score'] == pytest.approx(136.67)

    def test_text_output(self, monkeypatch, capsys):
        out = self._run(monkeypatch, capsys, EXAMPLE_LISTING, '--calendar', EXAMPLE_CALENDAR)
        assert 'Calendar: ' in out and '(5 events)' in out
        assert '(4 files)' in out
        assert '1. [2026-01-26 09:35] Weekly Sync' in out
        assert 'Calendar: 定例会議' in out

    def test_workspace_lookup(self, monkeypatch, capsys):
        out = self._run(monkeypatch, capsys, EXAMPLE_LISTING, '--workspace', EXAMPLES_DIR)
        assert 'Calendar: Weekly Sync (score: 137.08)' in out

    def test_anchor_ranking(self, monkeypatch, capsys):
        out = self._run(monkeypatch, capsys, EXAMPLE_LISTING, '--anchor', 'rec-weekly', '--json')
        ranked = json.loads(out)
        assert [r['id'] for r in ranked] == ['transcript-weekly', 'chat-weekly', 'rec-teirei']

    def test_anchor_text(self, monkeypatch, capsys):
        out = self._run(monkeypatch, capsys, EXAMPLE_LISTING, '--anchor', 'rec-weekly')
        assert out.startswith('Transcript candidates for: Weekly Sync')
        assert '1. Weekly Sync (2026-01-26 09:02 GMT+9) - Transcript' in out

    def test_unknown_anchor(self, monkeypatch, capsys):
        with pytest.raises(SystemExit) as exc:
            self._run(monkeypatch, capsys, EXAMPLE_LISTING, '--anchor', 'missing')
        assert exc.value.code == 1

    def test_missing_listing(self, monkeypatch, capsys, tmp_path):
        with pytest.raises(SystemExit) as exc:
            self._run(monkeypatch, capsys, str(tmp_path / 'nope.json'))
        assert exc.value.code == 1
        assert 'Listing file not found' in capsys.readouterr().out

    def test_missing_calendar(self, monkeypatch, capsys, tmp_path):
        with pytest.raises(SystemExit):
            self._run(monkeypatch, capsys, EXAMPLE_LISTING, '--calendar', str(tmp_path / 'calendar.org'))

    def test_unknown_timezone(self, monkeypatch, capsys):
        with pytest.raises(SystemExit) as exc:
            self._run(monkeypatch, capsys, EXAMPLE_LISTING, '--timezone', 'Mars/Olympus_Mons')
        assert exc.value.code == 1
        assert 'Unknown timezone: Mars/Olympus_Mons' in capsys.readouterr().out


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
