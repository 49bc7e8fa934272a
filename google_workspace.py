#!/usr/bin/env python3
# /// script
# requires-python = ">=3.11"
# dependencies = [
#     "requests>=2.31.0",
# ]
# ///
"""
Google Drive / Calendar collaborators.

Thin REST clients that fetch the snapshots meet_resolve works on. A client
is built per request from the caller's OAuth access token; nothing is cached
at module level. Raw API payloads are validated into meet_resolve records
here so the scoring code never sees missing fields.
"""

import logging
from datetime import date, datetime, timedelta, timezone
from typing import Iterable, Optional
from urllib.parse import quote

import requests

from meet_resolve import (
    DOCX_MIME,
    GOOGLE_DOC_MIME,
    STAGE_BROAD,
    STAGE_FOLDER,
    STAGE_GLOBAL,
    STAGE_NAME,
    TEXT_MIME,
    CalendarEvent,
    DriveFile,
    MeetingRecord,
    extract_base_name,
)

logger = logging.getLogger(__name__)

DRIVE_API = 'https://www.googleapis.com/drive/v3'
CALENDAR_API = 'https://www.googleapis.com/calendar/v3'

FILE_FIELDS = 'id,name,createdTime,modifiedTime,size,webViewLink,mimeType,parents'
LIST_FIELDS = f'nextPageToken,files({FILE_FIELDS})'

MEETING_FILES_QUERY = (
    "mimeType contains 'video' or name contains 'meeting' or name contains 'Meet' "
    "or name contains 'transcript'"
)
_MIME_FILTER = (
    f"(mimeType='{TEXT_MIME}' or mimeType='{GOOGLE_DOC_MIME}' or mimeType='{DOCX_MIME}')"
)
_KEYWORD_FILTER = "name contains 'transcript' or name contains '文字起こし' or name contains 'Transcript'"


class WorkspaceAPIError(RuntimeError):
    """A Drive or Calendar call failed (transport error or non-2xx response)."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


# ============================================================================
# Boundary parsing
# ============================================================================

def parse_timestamp(value) -> Optional[datetime]:
    """Parse an RFC 3339 timestamp or YYYY-MM-DD date; None when unusable."""
    if not value or not isinstance(value, str):
        return None
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError:
        logger.debug(f"Ignoring malformed timestamp: {value!r}")
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _parse_size(value) -> int:
    try:
        return int(value or 0)
    except (TypeError, ValueError):
        return 0


def parse_drive_file(raw: dict) -> DriveFile:
    """Build a DriveFile from a Drive API `files` resource."""
    return DriveFile(
        id=str(raw.get('id') or ''),
        name=raw.get('name') or '',
        mime_type=raw.get('mimeType') or '',
        created_time=parse_timestamp(raw.get('createdTime')),
        modified_time=parse_timestamp(raw.get('modifiedTime')),
        size=_parse_size(raw.get('size')),
        parents=tuple(p for p in raw.get('parents') or [] if p),
        web_view_link=raw.get('webViewLink') or None,
    )


def _event_time(raw_time) -> Optional[datetime]:
    if not isinstance(raw_time, dict):
        return None
    return parse_timestamp(raw_time.get('dateTime') or raw_time.get('date'))


def _person(raw_person) -> Optional[str]:
    if not isinstance(raw_person, dict):
        return None
    return raw_person.get('displayName') or raw_person.get('email') or None


def _conference_uri(raw: dict) -> Optional[str]:
    if raw.get('hangoutLink'):
        return raw['hangoutLink']
    conference = raw.get('conferenceData') or {}
    for entry_point in conference.get('entryPoints') or []:
        if entry_point.get('entryPointType') == 'video' and entry_point.get('uri'):
            return entry_point['uri']
    return None


def parse_calendar_event(raw: dict) -> CalendarEvent:
    """Build a CalendarEvent from a Calendar API `events` resource."""
    attendees = []
    for attendee in raw.get('attendees') or []:
        name = _person(attendee)
        if name:
            attendees.append(name)

    return CalendarEvent(
        id=str(raw.get('id') or ''),
        summary=raw.get('summary') or '',
        start=_event_time(raw.get('start')),
        end=_event_time(raw.get('end')),
        description=raw.get('description') or '',
        conference_uri=_conference_uri(raw),
        organizer=_person(raw.get('organizer')),
        attendees=tuple(attendees),
    )


def calendar_window(meetings: Iterable[MeetingRecord], padding_hours: float = 24) -> Optional[tuple[datetime, datetime]]:
    """Time range covering every meeting's creation time, padded on both sides."""
    times = [m.created_time for m in meetings if m.created_time]
    if not times:
        return None
    padding = timedelta(hours=padding_hours)
    return min(times) - padding, max(times) + padding


def _escape_query(value: str) -> str:
    return value.replace('\\', '\\\\').replace("'", "\\'")


# ============================================================================
# Clients
# ============================================================================

class _GoogleClient:
    def __init__(self, access_token: str, timeout: float = 20, session: Optional[requests.Session] = None):
        if not access_token:
            raise ValueError("access_token is required")
        self.timeout = timeout
        self.session = session or requests.Session()
        self._headers = {'Authorization': f'Bearer {access_token}'}

    def _get(self, url: str, params: Optional[dict] = None) -> requests.Response:
        try:
            resp = self.session.get(url, headers=self._headers, params=params, timeout=self.timeout)
        except requests.RequestException as e:
            raise WorkspaceAPIError(f"Request to {url} failed: {e}") from e

        if resp.status_code != 200:
            detail = (resp.text or '').strip()
            if len(detail) > 300:
                detail = detail[:300] + '...'
            raise WorkspaceAPIError(f"GET {url} failed ({resp.status_code}): {detail}", resp.status_code)
        return resp

    def _get_json(self, url: str, params: Optional[dict] = None) -> dict:
        resp = self._get(url, params)
        try:
            return resp.json()
        except ValueError as e:
            raise WorkspaceAPIError(f"Invalid JSON from {url}: {e}") from e


class DriveClient(_GoogleClient):
    """Drive v3 file listing, metadata and content access."""

    def list_files(self, query: str, page_size: int = 50, order_by: str = 'createdTime desc') -> list[DriveFile]:
        data = self._get_json(f'{DRIVE_API}/files', params={
            'q': query,
            'spaces': 'drive',
            'fields': LIST_FIELDS,
            'orderBy': order_by,
            'pageSize': page_size,
        })
        return [parse_drive_file(raw) for raw in data.get('files') or [] if raw.get('id')]

    def get_file(self, file_id: str) -> DriveFile:
        data = self._get_json(f'{DRIVE_API}/files/{file_id}', params={'fields': FILE_FIELDS})
        return parse_drive_file(data)

    def export_text(self, file_id: str) -> str:
        resp = self._get(f'{DRIVE_API}/files/{file_id}/export', params={'mimeType': TEXT_MIME})
        return resp.content.decode('utf-8-sig', errors='replace')

    def download_text(self, file_id: str) -> str:
        resp = self._get(f'{DRIVE_API}/files/{file_id}', params={'alt': 'media'})
        return resp.content.decode('utf-8-sig', errors='replace')

    def list_meeting_files(self, page_size: int = 50) -> list[DriveFile]:
        logger.info("Fetching Google Meet files from Google Drive...")
        files = self.list_files(MEETING_FILES_QUERY, page_size=page_size)
        logger.info(f"Found {len(files)} potential meeting files")
        return files

    def transcript_query(self, stage: str, anchor: Optional[DriveFile]) -> Optional[tuple[str, int]]:
        """Drive query and page size for one stage of the transcript search."""
        if stage == STAGE_FOLDER:
            if not anchor or not anchor.parents:
                return None
            parent = _escape_query(anchor.parents[0])
            return (
                f"'{parent}' in parents and ({_KEYWORD_FILTER} or mimeType='{TEXT_MIME}' "
                f"or mimeType='{GOOGLE_DOC_MIME}' or mimeType='{DOCX_MIME}')",
                20,
            )
        if stage == STAGE_NAME:
            if not anchor:
                return None
            terms = ["name contains 'transcript'", "name contains '文字起こし'"]
            base_name = extract_base_name(anchor.name)
            if base_name:
                terms.insert(0, f"name contains '{_escape_query(base_name)}'")
            return f"({' or '.join(terms)}) and {_MIME_FILTER}", 20
        if stage == STAGE_GLOBAL:
            return f"({_KEYWORD_FILTER}) and {_MIME_FILTER}", 20
        if stage == STAGE_BROAD:
            return f"{_KEYWORD_FILTER} or name contains 'Meeting' or name contains 'meet'", 50
        raise ValueError(f"Unknown search stage: {stage}")

    def search_transcripts(self, stage: str, anchor: Optional[DriveFile]) -> list[DriveFile]:
        query = self.transcript_query(stage, anchor)
        if query is None:
            return []
        q, page_size = query
        return self.list_files(q, page_size=page_size)

    def get_anchor(self, meeting_id: str) -> Optional[DriveFile]:
        """Metadata of the meeting file, or None when it cannot be read."""
        try:
            anchor = self.get_file(meeting_id)
        except WorkspaceAPIError as e:
            logger.info(f"Meeting file not accessible: {meeting_id} ({e})")
            return None
        logger.info(f"Meeting file: {anchor.name}")
        return anchor


class CalendarClient(_GoogleClient):
    """Calendar v3 event listing."""

    MAX_PAGES = 5

    def __init__(self, access_token: str, calendar_id: str = 'primary', timeout: float = 20,
                 session: Optional[requests.Session] = None):
        super().__init__(access_token, timeout=timeout, session=session)
        self.calendar_id = calendar_id

    def list_events(self, time_min: datetime, time_max: datetime, max_results: int = 250) -> list[CalendarEvent]:
        url = f'{CALENDAR_API}/calendars/{quote(self.calendar_id, safe="")}/events'
        params = {
            'timeMin': _rfc3339(time_min),
            'timeMax': _rfc3339(time_max),
            'singleEvents': 'true',
            'orderBy': 'startTime',
            'maxResults': max_results,
        }

        events = []
        for _ in range(self.MAX_PAGES):
            data = self._get_json(url, params=params)
            events.extend(parse_calendar_event(raw) for raw in data.get('items') or [] if raw.get('id'))
            token = data.get('nextPageToken')
            if not token:
                break
            params['pageToken'] = token

        logger.info(f"Fetched {len(events)} calendar events")
        return events


def _rfc3339(value: datetime | date) -> str:
    if not isinstance(value, datetime):
        value = datetime(value.year, value.month, value.day, tzinfo=timezone.utc)
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.isoformat()
