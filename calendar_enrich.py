#!/usr/bin/env python3
# /// script
# requires-python = ">=3.11"
# dependencies = [
#     "requests>=2.31.0",
# ]
# ///
"""
Calendar Enrichment

Offline counterpart of meetresolverd: cross-references a saved Drive file
listing with calendar events and prints which event each meeting belongs to.
Calendar events come from calendar.org (the snapshot POSTed to the daemon's
/calendar endpoint) or from a saved Calendar API JSON response.

Run with: uv run calendar_enrich.py drive_files.json --calendar calendar.org
Rank transcript candidates for one meeting file:
    uv run calendar_enrich.py drive_files.json --anchor <file-id>
"""

import argparse
import json
import logging
import os
import re
import sys
from datetime import datetime, timedelta, timezone, tzinfo
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from google_workspace import parse_calendar_event, parse_drive_file
from meet_resolve import (
    CalendarEvent,
    DriveFile,
    MeetingRecord,
    build_meeting_records,
    enrich_with_calendar,
    rank_transcripts,
)

logger = logging.getLogger(__name__)

_ENTRY_RE = re.compile(
    r'^\* (.+?) <(\d{4}-\d{2}-\d{2}) \w{3}(?: (\d{2}:\d{2})-(\d{2}:\d{2}))?>\s*\n(.*?)(?=^\* |\Z)',
    re.MULTILINE | re.DOTALL
)
_LINK_RE = re.compile(r'\[\[(https?://[^\]]+)\]\[[^\]]*\]\]')


def _org_property(body: str, name: str) -> str | None:
    match = re.search(rf':{name}:\s*(.+?)(?:\n|$)', body)
    return match.group(1).strip() if match else None


def _split_people(raw: str | None) -> list[str]:
    """Split a comma-separated people list, dropping <email> parts."""
    people = []
    for p in (raw or '').split(','):
        name = re.sub(r'\s*<[^>]+>\s*', '', p).strip()
        if name:
            people.append(name)
    return people


def parse_calendar_org(calendar_path: str, tz: tzinfo = timezone.utc) -> list[CalendarEvent]:
    """Parse calendar.org into CalendarEvents.

    Timed entries get start/end in `tz`. All-day entries start at midnight and
    last one day. The entry body becomes the event description so embedded
    meeting codes and links stay visible to the matcher.
    """
    with open(calendar_path, 'r', encoding='utf-8') as f:
        content = f.read()

    events = []
    for index, match in enumerate(_ENTRY_RE.finditer(content), 1):
        title = match.group(1).strip()
        day = datetime.strptime(match.group(2), '%Y-%m-%d').replace(tzinfo=tz)
        start_time, end_time = match.group(3), match.group(4)
        body = match.group(5).strip()

        if start_time:
            start = _at(day, start_time)
            end = _at(day, end_time)
            if end < start:
                end += timedelta(days=1)
        else:
            start = day
            end = day + timedelta(days=1)

        links = _LINK_RE.findall(body)
        organizer = _split_people(_org_property(body, 'ORGANIZER'))

        events.append(CalendarEvent(
            id=_org_property(body, 'ID') or f"{match.group(2)}-{index}",
            summary=title,
            start=start,
            end=end,
            description=body,
            conference_uri=links[0] if links else None,
            organizer=organizer[0] if organizer else None,
            attendees=tuple(_split_people(_org_property(body, 'PARTICIPANTS'))),
        ))

    return events


def _at(day: datetime, hhmm: str) -> datetime:
    hours, minutes = hhmm.split(':')
    return day.replace(hour=int(hours), minute=int(minutes))


def filter_events_by_date(events: list[CalendarEvent], target_date: str, tz: tzinfo = timezone.utc) -> list[CalendarEvent]:
    """Events starting on target_date (YYYY-MM-DD) in `tz`."""
    return [e for e in events if e.start and e.start.astimezone(tz).date().isoformat() == target_date]


def _items(data, key: str) -> list[dict]:
    if isinstance(data, dict):
        return data.get(key) or []
    return data or []


def load_drive_listing(path: str) -> list[DriveFile]:
    """Load a saved Drive `files.list` response (or a bare list of files)."""
    with open(path, 'r', encoding='utf-8') as f:
        data = json.load(f)
    return [parse_drive_file(raw) for raw in _items(data, 'files') if raw.get('id')]


def load_calendar_events(path: str, tz: tzinfo = timezone.utc) -> list[CalendarEvent]:
    """Load events from calendar.org or a saved Calendar API `events.list` response."""
    if path.endswith('.org'):
        return parse_calendar_org(path, tz=tz)
    with open(path, 'r', encoding='utf-8') as f:
        data = json.load(f)
    return [parse_calendar_event(raw) for raw in _items(data, 'items') if raw.get('id')]


def format_meetings(meetings: list[MeetingRecord], tz: tzinfo = timezone.utc) -> str:
    """Human-readable summary of meetings and their calendar matches."""
    if not meetings:
        return "No meetings found."

    lines = []
    for i, m in enumerate(meetings, 1):
        created = m.created_time.astimezone(tz).strftime('%Y-%m-%d %H:%M') if m.created_time else 'unknown'
        lines.append(f"{i}. [{created}] {m.name}")
        if m.meeting_code:
            lines.append(f"   Code: {m.meeting_code}")
        match = m.calendar_match
        if match:
            lines.append(f"   Calendar: {match.event.summary} (score: {match.score:.2f})")
            if match.attendees:
                lines.append(f"   Attendees: {', '.join(match.attendees)}")
            if match.meeting_link:
                lines.append(f"   Meeting link: {match.meeting_link}")
        else:
            lines.append("   Calendar: no match")
        lines.append("")

    return '\n'.join(lines)


def main():
    parser = argparse.ArgumentParser(
        description='Match Drive meeting files with calendar events'
    )
    parser.add_argument('listing', help='Saved Drive files.list JSON response')
    parser.add_argument('--calendar', default=None,
                        help='calendar.org or Calendar API JSON. Default: looks in workspace root')
    parser.add_argument('--workspace', default=None,
                        help='Directory to look for calendar.org in')
    parser.add_argument('--anchor', default=None,
                        help='Rank the listing as transcript candidates for this file id instead')
    parser.add_argument('--timezone', default='UTC',
                        help='Timezone for calendar.org times and same-day checks (default: UTC)')
    parser.add_argument('--json', action='store_true',
                        help='Print JSON instead of text')
    parser.add_argument('--debug', action='store_true',
                        help='Show debug output')

    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.debug else logging.WARNING,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
    try:
        tz = ZoneInfo(args.timezone)
    except (ZoneInfoNotFoundError, ValueError):
        print(f"Error: Unknown timezone: {args.timezone}")
        sys.exit(1)

    if not os.path.exists(args.listing):
        print(f"Error: Listing file not found: {args.listing}")
        sys.exit(1)

    files = load_drive_listing(args.listing)

    if args.anchor:
        anchor = next((f for f in files if f.id == args.anchor), None)
        if anchor is None:
            print(f"Error: Anchor file {args.anchor} is not in the listing")
            sys.exit(1)
        candidates = [f for f in files if f.id != anchor.id]
        ranked = rank_transcripts(candidates, anchor, tz=tz)
        if args.json:
            print(json.dumps([item.to_dict() for item in ranked], ensure_ascii=False, indent=2))
        else:
            print(f"Transcript candidates for: {anchor.name}")
            for i, item in enumerate(ranked, 1):
                print(f"  {i}. {item.file.name} (score: {item.score:.2f})")
        return

    # Find calendar
    if args.calendar:
        calendar_path = args.calendar
    elif args.workspace:
        calendar_path = os.path.join(args.workspace, 'calendar.org')
    else:
        for path in ['calendar.org', 'examples/calendar.org']:
            if os.path.exists(path):
                calendar_path = path
                break
        else:
            print("Error: Could not find calendar.org. Use --calendar or --workspace")
            sys.exit(1)

    if not os.path.exists(calendar_path):
        print(f"Error: Calendar file not found: {calendar_path}")
        sys.exit(1)

    events = load_calendar_events(calendar_path, tz=tz)
    meetings = enrich_with_calendar(build_meeting_records(files), events)

    if args.json:
        print(json.dumps([m.to_dict() for m in meetings], ensure_ascii=False, indent=2))
    else:
        print(f"Calendar: {calendar_path} ({len(events)} events)")
        print(f"Listing: {args.listing} ({len(files)} files)\n")
        print(format_meetings(meetings, tz=tz))


if __name__ == "__main__":
    main()
