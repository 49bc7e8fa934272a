#!/usr/bin/env python3
# /// script
# requires-python = ">=3.11"
# dependencies = [
#     "flask>=3.0.0",
#     "pyyaml>=6.0.0",
#     "requests>=2.31.0",
# ]
# ///
"""
Meeting Resolver Daemon (meetresolverd)

Serves Google Meet recordings found in Drive, matched against calendar
events, and the transcript documents that belong to them. Callers pass the
user's Google OAuth access token as a Bearer token; a fresh Drive/Calendar
client is built for every request. Configuration is loaded from config.yaml.

Run with: uv run meetresolverd.py

Endpoints:
  GET  /                               - Health check
  GET  /meetings                       - Meeting list with calendar matches
  GET  /transcripts/<meeting_id>       - Best transcript (?transcriptId= to pick one)
  GET  /transcripts/<meeting_id>/all   - Ranked transcript candidates
  POST /calendar                       - Update calendar.org snapshot

List meetings:
curl http://localhost:9877/meetings -H "Authorization: Bearer $TOKEN"

Update calendar snapshot (plain text):
curl -X POST http://localhost:9877/calendar \
  -H "Content-Type: text/plain" \
  --data-binary @calendar.org
"""

from flask import Flask, request, jsonify
import os
import logging
import yaml
from pathlib import Path
import threading
import argparse
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from calendar_enrich import parse_calendar_org
from google_workspace import (
    CalendarClient,
    DriveClient,
    WorkspaceAPIError,
    calendar_window,
)
from meet_resolve import (
    CalendarEvent,
    MeetingRecord,
    TranscriptDocument,
    build_meeting_records,
    download_link,
    enrich_with_calendar,
    fetch_transcript_content,
    list_transcripts,
    parse_transcript_entries,
    resolve_transcript,
)

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

app = Flask(__name__)

# Load configuration
CONFIG_FILE = os.getenv('RESOLVER_CONFIG', 'config.yaml')

CALENDAR_SOURCES = ('google', 'org', 'none')
MAX_CALENDAR_SIZE = 1024 * 1024


def load_config() -> dict:
    """Load configuration from YAML file; defaults apply when it is missing."""
    config_path = Path(CONFIG_FILE)
    if not config_path.exists():
        logger.warning(f"Configuration file not found: {CONFIG_FILE} (using defaults)")
        return {}

    with open(config_path, 'r') as f:
        return yaml.safe_load(f) or {}


def _get_nested(config: dict, keys: list[str], default=None):
    current = config
    for key in keys:
        if not isinstance(current, dict) or key not in current:
            return default
        current = current[key]
    return current


class ResolverService:
    def __init__(self, config: dict):
        self.config = config

        self.host = _get_nested(config, ['server', 'host'], '127.0.0.1')
        self.port = int(_get_nested(config, ['server', 'port'], 9877))

        self.calendar_id = _get_nested(config, ['google', 'calendar_id'], 'primary')
        self.api_timeout_seconds = float(_get_nested(config, ['google', 'timeout_seconds'], 20))

        self.meetings_page_size = int(_get_nested(config, ['meetings', 'page_size'], 50))

        self.calendar_source = _get_nested(config, ['calendar', 'source'], 'google')
        if self.calendar_source not in CALENDAR_SOURCES:
            raise ValueError(
                f"Unknown calendar.source {self.calendar_source!r}; expected one of {', '.join(CALENDAR_SOURCES)}"
            )
        self.calendar_org_path = _get_nested(config, ['calendar', 'org_path'], 'calendar.org')
        self.window_padding_hours = float(_get_nested(config, ['calendar', 'window_padding_hours'], 24))

        self.transcripts_max_results = int(_get_nested(config, ['transcripts', 'max_results'], 10))
        tz_name = _get_nested(config, ['transcripts', 'timezone'], 'UTC')
        try:
            self.timezone = ZoneInfo(tz_name)
        except ZoneInfoNotFoundError as e:
            raise ValueError(f"Unknown transcripts.timezone: {tz_name}") from e

        self._lock = threading.Lock()

    def drive_client(self, access_token: str) -> DriveClient:
        return DriveClient(access_token, timeout=self.api_timeout_seconds)

    def calendar_client(self, access_token: str) -> CalendarClient:
        return CalendarClient(access_token, calendar_id=self.calendar_id, timeout=self.api_timeout_seconds)

    def load_calendar_events(self, access_token: str, meetings: list[MeetingRecord]) -> list[CalendarEvent]:
        """Calendar events for the configured source. Raises on upstream failure."""
        if self.calendar_source == 'none':
            return []

        if self.calendar_source == 'org':
            if not os.path.exists(self.calendar_org_path):
                logger.info(f"No calendar snapshot at {self.calendar_org_path}")
                return []
            with self._lock:
                return parse_calendar_org(self.calendar_org_path, tz=self.timezone)

        window = calendar_window(meetings, self.window_padding_hours)
        if window is None:
            return []
        time_min, time_max = window
        return self.calendar_client(access_token).list_events(time_min, time_max)

    def list_meetings(self, access_token: str) -> tuple[list[MeetingRecord], bool]:
        """Meeting records plus whether calendar enrichment succeeded."""
        files = self.drive_client(access_token).list_meeting_files(page_size=self.meetings_page_size)
        meetings = build_meeting_records(files)

        try:
            events = self.load_calendar_events(access_token, meetings)
        except (WorkspaceAPIError, OSError) as e:
            logger.warning(f"Calendar lookup failed, returning meetings without calendar data: {e}")
            return meetings, False

        return enrich_with_calendar(meetings, events), True

    def best_transcript(self, access_token: str, meeting_id: str) -> TranscriptDocument | None:
        drive = self.drive_client(access_token)
        logger.info(f"Searching transcript for meeting: {meeting_id}")
        anchor = drive.get_anchor(meeting_id)
        return resolve_transcript(drive, drive.search_transcripts, anchor, tz=self.timezone)

    def transcript_by_id(self, access_token: str, transcript_id: str) -> TranscriptDocument:
        drive = self.drive_client(access_token)
        file = drive.get_file(transcript_id)
        return TranscriptDocument(
            file=file,
            content=fetch_transcript_content(drive, file),
            download_link=download_link(file),
        )

    def all_transcripts(self, access_token: str, meeting_id: str) -> list[TranscriptDocument]:
        drive = self.drive_client(access_token)
        anchor = drive.get_anchor(meeting_id)
        return list_transcripts(
            drive,
            drive.search_transcripts,
            anchor,
            limit=self.transcripts_max_results,
            tz=self.timezone,
        )

    def save_calendar(self, calendar_content: str) -> str:
        with self._lock:
            calendar_path = Path(self.calendar_org_path)
            calendar_path.parent.mkdir(parents=True, exist_ok=True)
            with open(calendar_path, 'w', encoding='utf-8') as f:
                f.write(calendar_content)
        return str(calendar_path)


config = load_config()
service = ResolverService(config)


def _access_token() -> str | None:
    """Bearer token from the Authorization header."""
    header = request.headers.get('Authorization', '')
    scheme, _, token = header.partition(' ')
    if scheme.lower() != 'bearer' or not token.strip():
        return None
    return token.strip()


def _unauthorized():
    return jsonify({
        'status': 'error',
        'message': 'Unauthorized'
    }), 401


def _upstream_error(e: WorkspaceAPIError):
    status = 401 if e.status_code == 401 else 502
    return jsonify({
        'status': 'error',
        'message': f'Google API request failed: {e}'
    }), status


def _transcript_payload(document: TranscriptDocument) -> dict:
    data = document.to_dict()
    data['entries'] = [entry.to_dict() for entry in parse_transcript_entries(document.content)]
    return data


@app.route('/', methods=['GET'])
def health_check():
    """Health check endpoint."""
    return jsonify({
        'status': 'ok',
        'service': 'meetresolverd',
        'port': service.port,
        'endpoints': {
            'health': '/',
            'meetings': '/meetings',
            'transcript': '/transcripts/<meeting_id>',
            'all_transcripts': '/transcripts/<meeting_id>/all',
            'calendar': '/calendar',
        },
        'calendar': {
            'source': service.calendar_source,
            'calendar_id': service.calendar_id if service.calendar_source == 'google' else None,
            'org_path': service.calendar_org_path if service.calendar_source == 'org' else None,
        },
        'transcripts': {
            'max_results': service.transcripts_max_results,
            'timezone': str(service.timezone),
        },
    }), 200


@app.route('/meetings', methods=['GET'])
def meetings():
    """Meeting list, enriched with calendar matches when the calendar is reachable."""
    token = _access_token()
    if not token:
        return _unauthorized()

    try:
        records, calendar_ok = service.list_meetings(token)
        return jsonify({
            'status': 'success',
            'meetings': [m.to_dict() for m in records],
            'calendar_enriched': calendar_ok,
        }), 200

    except WorkspaceAPIError as e:
        logger.error(f"Error fetching meetings: {e}")
        return _upstream_error(e)
    except Exception as e:
        logger.error(f"Error in meetings endpoint: {str(e)}", exc_info=True)
        return jsonify({
            'status': 'error',
            'message': f'Internal server error: {str(e)}'
        }), 500


@app.route('/transcripts/<meeting_id>', methods=['GET'])
def transcript(meeting_id):
    """
    Best transcript for a meeting, with its text and parsed entries.

    Pass ?transcriptId=<file id> to load a specific document instead.
    """
    token = _access_token()
    if not token:
        return _unauthorized()

    try:
        transcript_id = request.args.get('transcriptId')
        if transcript_id:
            logger.info(f"Loading transcript {transcript_id} for meeting {meeting_id}")
            document = service.transcript_by_id(token, transcript_id)
        else:
            document = service.best_transcript(token, meeting_id)

        if document is None:
            logger.info(f"No transcript found for meeting {meeting_id}")
            return jsonify({
                'status': 'error',
                'message': 'Transcript not found'
            }), 404

        logger.info(f"Returning transcript: {document.file.name} ({len(document.content or '')} characters)")
        return jsonify({
            'status': 'success',
            'transcript': _transcript_payload(document),
        }), 200

    except WorkspaceAPIError as e:
        logger.error(f"Error fetching transcript for {meeting_id}: {e}")
        if e.status_code == 404:
            return jsonify({
                'status': 'error',
                'message': 'Transcript not found'
            }), 404
        return _upstream_error(e)
    except Exception as e:
        logger.error(f"Error in transcript endpoint: {str(e)}", exc_info=True)
        return jsonify({
            'status': 'error',
            'message': f'Internal server error: {str(e)}'
        }), 500


@app.route('/transcripts/<meeting_id>/all', methods=['GET'])
def all_transcripts(meeting_id):
    """Ranked transcript candidates for a meeting; only the first includes content."""
    token = _access_token()
    if not token:
        return _unauthorized()

    try:
        documents = service.all_transcripts(token, meeting_id)
        logger.info(f"Found {len(documents)} transcript files for meeting {meeting_id}")
        return jsonify({
            'status': 'success',
            'transcripts': [_transcript_payload(d) for d in documents],
        }), 200

    except WorkspaceAPIError as e:
        logger.error(f"Error fetching transcripts for {meeting_id}: {e}")
        return _upstream_error(e)
    except Exception as e:
        logger.error(f"Error in all-transcripts endpoint: {str(e)}", exc_info=True)
        return jsonify({
            'status': 'error',
            'message': f'Internal server error: {str(e)}'
        }), 500


@app.route('/calendar', methods=['POST'])
def calendar():
    """
    Endpoint for receiving calendar data (org-mode format).
    Overwrites the calendar.org snapshot used when calendar.source is 'org'.

    Expected payload:
    {
        "calendar": "* Meeting 1 <2026-01-20 Mon 10:00-11:00>\n..."
    }

    Or plain text with Content-Type: text/plain
    """
    try:
        if request.is_json:
            data = request.get_json()
            if not isinstance(data, dict) or 'calendar' not in data:
                return jsonify({
                    'status': 'error',
                    'message': "Missing required field: 'calendar'"
                }), 400
            calendar_content = data['calendar']
        elif request.content_type and 'text/plain' in request.content_type:
            calendar_content = request.get_data(as_text=True)
        else:
            return jsonify({
                'status': 'error',
                'message': 'Content-Type must be application/json or text/plain'
            }), 400

        if not isinstance(calendar_content, str) or not calendar_content.strip():
            return jsonify({
                'status': 'error',
                'message': 'Calendar content cannot be empty'
            }), 400

        content_size = len(calendar_content.encode('utf-8'))
        if content_size > MAX_CALENDAR_SIZE:
            return jsonify({
                'status': 'error',
                'message': f'Calendar too large ({content_size} bytes). Maximum size is {MAX_CALENDAR_SIZE} bytes.'
            }), 413

        calendar_path = service.save_calendar(calendar_content)
        events = parse_calendar_org(calendar_path, tz=service.timezone)
        logger.info(f"Updated calendar: {calendar_path} ({content_size} bytes, {len(events)} events)")

        return jsonify({
            'status': 'success',
            'message': 'Calendar updated',
            'size': content_size,
            'events': len(events),
        }), 200

    except Exception as e:
        logger.error(f"Error processing calendar: {str(e)}", exc_info=True)
        return jsonify({
            'status': 'error',
            'message': f'Internal server error: {str(e)}'
        }), 500


if __name__ == '__main__':
    parser = argparse.ArgumentParser(description='Meeting Resolver Daemon (meetresolverd)')
    parser.add_argument('--debug', action='store_true', help='Enable debug logging')
    args = parser.parse_args()

    logging.getLogger().setLevel(logging.DEBUG if args.debug else logging.INFO)

    logger.info(f"Starting meetresolverd on {service.host}:{service.port}")
    logger.info(f"Calendar source: {service.calendar_source}")
    logger.info(f"Health check: http://{service.host}:{service.port}/")
    logger.info(f"Meetings: http://{service.host}:{service.port}/meetings")

    app.run(host=service.host, port=service.port, debug=False)
