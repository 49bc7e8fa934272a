#!/usr/bin/env python3
# /// script
# requires-python = ">=3.11"
# dependencies = []
# ///
"""
Meeting Resolver

Correlates Google Meet artifacts found in Drive with calendar events, and
picks the document that is most likely the transcript of a given meeting.

Nothing in here talks to the network. Callers fetch Drive listings, calendar
events and document content, then hand the snapshots to these functions.
Missing matches come back as None / [] rather than raising.
"""

import logging
import re
from dataclasses import dataclass, replace
from datetime import datetime, timezone, tzinfo
from typing import Callable, Iterable, Optional, Protocol

logger = logging.getLogger(__name__)

GOOGLE_DOC_MIME = 'application/vnd.google-apps.document'
DOCX_MIME = 'application/vnd.openxmlformats-officedocument.wordprocessingml.document'
TEXT_MIME = 'text/plain'
TRANSCRIPT_MIME_TYPES = (TEXT_MIME, GOOGLE_DOC_MIME, DOCX_MIME)

TRANSCRIPT_KEYWORDS = ('transcript', '文字起こし')
MEETING_KEYWORD = 'meeting'

DEFAULT_MEETING_NAME = 'Google Meet meeting'

# Calendar correlation weights
CODE_MATCH_SCORE = 100
MATCH_THRESHOLD = 50
POTENTIAL_THRESHOLD = 30
TIME_WINDOW_HOURS = 6
TIME_PROXIMITY_MAX = 50
TIME_PROXIMITY_DECAY = 5
EXACT_NAME_SCORE = 80
PARTIAL_NAME_SCORE = 60
COMMON_WORD_SCORE = 10
VIDEO_LINK_SCORE = 10

# Transcript ranking weights
TRANSCRIPT_KEYWORD_SCORE = 10
MEETING_KEYWORD_SCORE = 5
GOOGLE_DOC_SCORE = 3
TEXT_FILE_SCORE = 2
RECENCY_DAYS = 10
SAME_FOLDER_SCORE = 15
BASE_NAME_SCORE = 8
SAME_DAY_SCORE = 5

# Search cascade stages, tried in this order
STAGE_FOLDER = 'folder'
STAGE_NAME = 'name'
STAGE_GLOBAL = 'global'
STAGE_BROAD = 'broad'
SEARCH_STAGES = (STAGE_FOLDER, STAGE_NAME, STAGE_GLOBAL, STAGE_BROAD)


# ============================================================================
# Data model
# ============================================================================

def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


@dataclass(frozen=True)
class DriveFile:
    """A file metadata record from Drive (meeting artifact or transcript candidate)."""

    id: str
    name: str = ''
    mime_type: str = ''
    created_time: Optional[datetime] = None
    modified_time: Optional[datetime] = None
    size: int = 0
    parents: tuple[str, ...] = ()
    web_view_link: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            'id': self.id,
            'name': self.name,
            'mime_type': self.mime_type,
            'created_time': _iso(self.created_time),
            'modified_time': _iso(self.modified_time),
            'size': self.size,
            'parents': list(self.parents),
            'web_view_link': self.web_view_link,
        }


# Candidates in the transcript search pool are plain Drive records
TranscriptCandidate = DriveFile


@dataclass(frozen=True)
class CalendarEvent:
    id: str
    summary: str = ''
    start: Optional[datetime] = None
    end: Optional[datetime] = None
    description: str = ''
    conference_uri: Optional[str] = None
    organizer: Optional[str] = None
    attendees: tuple[str, ...] = ()

    def to_dict(self) -> dict:
        return {
            'id': self.id,
            'summary': self.summary,
            'start': _iso(self.start),
            'end': _iso(self.end),
            'description': self.description,
            'conference_uri': self.conference_uri,
            'organizer': self.organizer,
            'attendees': list(self.attendees),
        }


@dataclass(frozen=True)
class CalendarMatch:
    event: CalendarEvent
    score: float
    meeting_link: Optional[str] = None
    organizer: Optional[str] = None
    attendees: tuple[str, ...] = ()

    def to_dict(self) -> dict:
        return {
            'event_id': self.event.id,
            'summary': self.event.summary,
            'start': _iso(self.event.start),
            'end': _iso(self.event.end),
            'score': round(self.score, 2),
            'meeting_link': self.meeting_link,
            'organizer': self.organizer,
            'attendees': list(self.attendees),
        }


@dataclass(frozen=True)
class MeetingRecord:
    id: str
    name: str
    file_name: str = ''
    created_time: Optional[datetime] = None
    modified_time: Optional[datetime] = None
    size: int = 0
    web_view_link: Optional[str] = None
    meeting_code: Optional[str] = None
    calendar_match: Optional[CalendarMatch] = None

    def to_dict(self) -> dict:
        return {
            'id': self.id,
            'name': self.name,
            'file_name': self.file_name,
            'created_time': _iso(self.created_time),
            'modified_time': _iso(self.modified_time),
            'size': self.size,
            'web_view_link': self.web_view_link,
            'meeting_code': self.meeting_code,
            'calendar_match': self.calendar_match.to_dict() if self.calendar_match else None,
        }


@dataclass(frozen=True)
class ScoredCandidate:
    file: DriveFile
    score: float

    def to_dict(self) -> dict:
        return {**self.file.to_dict(), 'score': round(self.score, 2)}


@dataclass(frozen=True)
class TranscriptDocument:
    file: DriveFile
    content: Optional[str] = None
    download_link: Optional[str] = None

    def to_dict(self) -> dict:
        data = self.file.to_dict()
        data['download_link'] = self.download_link
        data['content'] = self.content
        return data


@dataclass(frozen=True)
class TranscriptEntry:
    text: str
    timestamp: Optional[str] = None

    def to_dict(self) -> dict:
        if self.timestamp is None:
            return {'text': self.text}
        return {'text': self.text, 'timestamp': self.timestamp}


class ContentSource(Protocol):
    def export_text(self, file_id: str) -> str: ...

    def download_text(self, file_id: str) -> str: ...


# search(stage, anchor) -> candidates for that cascade stage
SearchFn = Callable[[str, Optional[DriveFile]], list[DriveFile]]


# ============================================================================
# Name normalization & meeting codes
# ============================================================================

_EXTENSION_RE = re.compile(r'\.(?:mp4|webm|m4a|mov|txt|docx?|pdf|sbv|vtt|srt)\s*$', re.IGNORECASE)
_COPY_PREFIX_RE = re.compile(r'^\s*(?:copy\s+of|コピー\s*[-–]?)\s+', re.IGNORECASE)
_COPY_SUFFIX_RE = re.compile(r'(?:\s*のコピー|\s*\(\d+\))\s*$')
_ARTIFACT_SUFFIX_RE = re.compile(
    r'\s*[-–~]\s*(?:recording|chat|transcript|notes\s+by\s+gemini|gemini\s*によるメモ'
    r'|録画|チャット|文字起こし)\s*$',
    re.IGNORECASE,
)
_DATETIME_RE = re.compile(
    r'\d{4}[/\-.]\d{1,2}[/\-.]\d{1,2}'
    r'(?:[\sT]+\d{1,2}:\d{2}(?::\d{2})?(?:\s*(?:GMT|UTC)?[+\-]\d{1,2}(?::?\d{2})?|\s*[A-Z]{2,5}\b)?)?'
)
_COMPACT_DATETIME_RE = re.compile(r'(?:GMT)?\d{8}[\-_]\d{4,6}')
_TZ_RE = re.compile(r'\b(?:GMT|UTC)[+\-]\d{1,2}(?::?\d{2})?')
_EMPTY_PARENS_RE = re.compile(r'[(\[（]\s*[)\]）]')
_LABEL_PREFIX_RE = re.compile(r'^\s*(?:google\s+meet|meeting|meet|recording)\b[\s\-_:]*', re.IGNORECASE)
_SEPARATOR_RE = re.compile(r'[\-_]+')
_WHITESPACE_RE = re.compile(r'\s+')

_CODE_PATTERNS = (
    re.compile(r'([a-z]{3}-[a-z]{4}-[a-z]{3})', re.IGNORECASE),
    re.compile(r'meet\.google\.com/([a-z\-]+)', re.IGNORECASE),
    re.compile(r'Meeting\s+([A-Z0-9\-]+)', re.IGNORECASE),
)


def _normalize_once(name: str) -> str:
    result = _EXTENSION_RE.sub('', name)
    result = _COPY_PREFIX_RE.sub('', result)
    result = _COPY_SUFFIX_RE.sub('', result)
    result = _ARTIFACT_SUFFIX_RE.sub('', result)
    result = _DATETIME_RE.sub(' ', result)
    result = _COMPACT_DATETIME_RE.sub(' ', result)
    result = _TZ_RE.sub(' ', result)
    result = _EMPTY_PARENS_RE.sub(' ', result)
    result = _LABEL_PREFIX_RE.sub('', result)
    result = _SEPARATOR_RE.sub(' ', result)
    return _WHITESPACE_RE.sub(' ', result).strip()


def normalize_name(name: Optional[str]) -> str:
    """Reduce a raw Drive filename to a comparable base name.

    Strips extensions, copy markers, artifact suffixes (" - Recording",
    " - Chat", ...), embedded date/time/timezone stamps and the leading
    "Meeting"/"Google Meet" label. Rules are applied until nothing changes,
    so normalizing an already normalized name is a no-op.
    """
    if not name:
        return ''
    current = name
    while True:
        normalized = _normalize_once(current)
        if normalized == current:
            return normalized
        current = normalized


def generate_meeting_name(file_name: Optional[str]) -> str:
    """Readable meeting title for a Drive file."""
    return normalize_name(file_name) or DEFAULT_MEETING_NAME


def extract_base_name(file_name: Optional[str]) -> str:
    """First word of the normalized name, used to find sibling documents."""
    normalized = normalize_name(file_name)
    return normalized.split(' ')[0] if normalized else ''


def extract_meeting_code(file_name: Optional[str]) -> Optional[str]:
    """Return the meeting code embedded in a filename, if any.

    Patterns are tried in order (xxx-xxxx-xxx code, meet.google.com URL,
    "Meeting CODE" label) and the first match wins.
    """
    if not file_name:
        return None
    for pattern in _CODE_PATTERNS:
        match = pattern.search(file_name)
        if match:
            return match.group(1)
    return None


# ============================================================================
# Similarity
# ============================================================================

_WORD_SPLIT_RE = re.compile(r'[\s\-_/.,:;()\[\]「」【】、。]+')
_NOT_MEANINGFUL_RE = re.compile(r'^[\d\W_]+$')
MIN_WORD_LENGTH = 2


def _meaningful_words(text: str) -> list[str]:
    words = []
    for word in _WORD_SPLIT_RE.split(text.lower()):
        if len(word) > MIN_WORD_LENGTH and not _NOT_MEANINGFUL_RE.match(word):
            words.append(word)
    return words


def _words_related(a: str, b: str) -> bool:
    return a in b or b in a or a[:3] == b[:3]


def count_common_words(a: Optional[str], b: Optional[str]) -> int:
    """Count meaningful words of `a` that have a related word in `b`.

    Related means substring containment either way or a shared three-letter
    prefix.
    """
    words_a = _meaningful_words(a or '')
    words_b = _meaningful_words(b or '')
    if not words_a or not words_b:
        return 0
    return sum(1 for wa in words_a if any(_words_related(wa, wb) for wb in words_b))


# ============================================================================
# Meeting records
# ============================================================================

def build_meeting_records(files: Iterable[DriveFile]) -> list[MeetingRecord]:
    """Turn a Drive listing into one MeetingRecord per distinct meeting.

    The dedup key is the meeting code, else the creation timestamp in UTC, else the
    file id. The first file seen for a key wins.
    """
    meetings = []
    seen = set()
    for f in files:
        code = extract_meeting_code(f.name)
        created_key = _as_utc(f.created_time).isoformat() if f.created_time else None
        key = code or created_key or f.id
        if not key or key in seen:
            continue
        seen.add(key)
        meetings.append(MeetingRecord(
            id=f.id,
            name=generate_meeting_name(f.name),
            file_name=f.name,
            created_time=f.created_time,
            modified_time=f.modified_time,
            size=f.size,
            web_view_link=f.web_view_link,
            meeting_code=code,
        ))
    return meetings


# ============================================================================
# Calendar correlation
# ============================================================================

_VIDEO_LINK_RE = re.compile(
    r'https?://(?:meet\.google\.com|[\w.\-]*zoom\.us|teams\.microsoft\.com|teams\.live\.com)/[^\s<>"\]]+',
    re.IGNORECASE,
)


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def extract_meeting_link(event: CalendarEvent) -> Optional[str]:
    """Conferencing URI of the event, else the first video link in its description."""
    if event.conference_uri:
        return event.conference_uri
    match = _VIDEO_LINK_RE.search(event.description or '')
    return match.group(0) if match else None


def _has_code(meeting: MeetingRecord, event: CalendarEvent) -> bool:
    if not meeting.meeting_code:
        return False
    code = meeting.meeting_code.lower()
    haystack = f"{event.description or ''} {event.conference_uri or ''}".lower()
    return code in haystack


def _time_proximity_score(meeting: MeetingRecord, event: CalendarEvent) -> float:
    if not meeting.created_time or not event.start:
        return 0.0
    delta = _as_utc(meeting.created_time) - _as_utc(event.start)
    hours = abs(delta.total_seconds()) / 3600
    if hours > TIME_WINDOW_HOURS:
        return 0.0
    return max(0.0, TIME_PROXIMITY_MAX - TIME_PROXIMITY_DECAY * hours)


def _name_score(meeting: MeetingRecord, event: CalendarEvent) -> int:
    meeting_name = normalize_name(meeting.file_name or meeting.name).lower()
    summary = normalize_name(event.summary).lower()
    if not meeting_name or not summary:
        return 0
    if meeting_name == summary:
        return EXACT_NAME_SCORE
    if meeting_name in summary or summary in meeting_name:
        return PARTIAL_NAME_SCORE
    return COMMON_WORD_SCORE * count_common_words(meeting_name, summary)


def score_calendar_event(meeting: MeetingRecord, event: CalendarEvent) -> float:
    """Additive match score of one calendar event for a meeting."""
    score = 0.0
    if _has_code(meeting, event):
        score += CODE_MATCH_SCORE
    score += _time_proximity_score(meeting, event)
    score += _name_score(meeting, event)
    if extract_meeting_link(event):
        score += VIDEO_LINK_SCORE
    return score


def _build_match(event: CalendarEvent, score: float) -> CalendarMatch:
    return CalendarMatch(
        event=event,
        score=score,
        meeting_link=extract_meeting_link(event),
        organizer=event.organizer,
        attendees=tuple(event.attendees),
    )


def match_calendar_event(meeting: MeetingRecord, events: Iterable[CalendarEvent]) -> Optional[CalendarMatch]:
    """Pick the calendar event that best explains a meeting, or None.

    An event carrying the meeting's code wins outright. Otherwise the first
    event (in list order) scoring at least MATCH_THRESHOLD is chosen; there is
    no search for a better one further down the list.
    """
    events = list(events)
    for event in events:
        if _has_code(meeting, event):
            score = score_calendar_event(meeting, event)
            logger.info(f"Code match for {meeting.name!r}: {event.summary!r} (score: {score:.2f})")
            return _build_match(event, score)

    for event in events:
        score = score_calendar_event(meeting, event)
        if score >= MATCH_THRESHOLD:
            logger.info(f"Calendar match for {meeting.name!r}: {event.summary!r} (score: {score:.2f})")
            return _build_match(event, score)
        if score >= POTENTIAL_THRESHOLD:
            logger.info(f"Potential calendar match for {meeting.name!r}: {event.summary!r} (score: {score:.2f})")
    return None


def enrich_with_calendar(meetings: Iterable[MeetingRecord], events: Iterable[CalendarEvent]) -> list[MeetingRecord]:
    """Attach the matching calendar event to each meeting that has one."""
    events = list(events)
    enriched = []
    matched = 0
    for meeting in meetings:
        match = match_calendar_event(meeting, events)
        if match:
            matched += 1
            meeting = replace(meeting, calendar_match=match)
        enriched.append(meeting)
    logger.info(f"Matched {matched}/{len(enriched)} meetings against {len(events)} calendar events")
    return enriched


# ============================================================================
# Transcript ranking
# ============================================================================

def _contains_transcript_keyword(name: str) -> bool:
    lowered = name.lower()
    return any(keyword in lowered for keyword in TRANSCRIPT_KEYWORDS)


def looks_like_transcript(file: DriveFile) -> bool:
    """Post-hoc filter for results of the broad (type-agnostic) search."""
    if not file.name:
        return False
    if _contains_transcript_keyword(file.name):
        return True
    return MEETING_KEYWORD in file.name.lower() and file.mime_type in TRANSCRIPT_MIME_TYPES


def score_transcript_candidate(
    file: DriveFile,
    anchor: Optional[DriveFile] = None,
    now: Optional[datetime] = None,
    tz: tzinfo = timezone.utc,
) -> float:
    """Relevance of a document as the transcript of the anchor meeting file."""
    score = 0.0
    file_name = (file.name or '').lower()

    for keyword in TRANSCRIPT_KEYWORDS:
        if keyword in file_name:
            score += TRANSCRIPT_KEYWORD_SCORE
    if MEETING_KEYWORD in file_name:
        score += MEETING_KEYWORD_SCORE

    if file.mime_type == GOOGLE_DOC_MIME:
        score += GOOGLE_DOC_SCORE
    elif file.mime_type == TEXT_MIME:
        score += TEXT_FILE_SCORE

    if file.created_time:
        now = now or datetime.now(timezone.utc)
        days_since_creation = (_as_utc(now) - _as_utc(file.created_time)).total_seconds() / 86400
        score += max(0.0, RECENCY_DAYS - days_since_creation)

    if anchor is None:
        return score

    if file.parents and anchor.parents and set(file.parents) & set(anchor.parents):
        score += SAME_FOLDER_SCORE

    base_name = extract_base_name(anchor.name)
    if base_name and base_name.lower() in file_name:
        score += BASE_NAME_SCORE

    if file.created_time and anchor.created_time:
        file_day = _as_utc(file.created_time).astimezone(tz).date()
        anchor_day = _as_utc(anchor.created_time).astimezone(tz).date()
        if file_day == anchor_day:
            score += SAME_DAY_SCORE

    return score


def dedupe_by_id(files: Iterable[DriveFile]) -> list[DriveFile]:
    """Drop repeated ids, keeping the first record seen."""
    seen = set()
    unique = []
    for f in files:
        if f.id in seen:
            continue
        seen.add(f.id)
        unique.append(f)
    return unique


def rank_transcripts(
    candidates: Iterable[DriveFile],
    anchor: Optional[DriveFile] = None,
    now: Optional[datetime] = None,
    tz: tzinfo = timezone.utc,
) -> list[ScoredCandidate]:
    """Score every candidate and order by score, highest first.

    Equal scores keep their original relative order.
    """
    now = now or datetime.now(timezone.utc)
    scored = [
        ScoredCandidate(file=f, score=score_transcript_candidate(f, anchor, now=now, tz=tz))
        for f in dedupe_by_id(candidates)
    ]
    scored.sort(key=lambda item: item.score, reverse=True)

    if scored:
        logger.info("Top transcript candidates:")
        for i, item in enumerate(scored[:5], 1):
            logger.info(f"  {i}. {item.file.name} (score: {item.score:.2f})")
    return scored


def select_best_transcript(
    candidates: Iterable[DriveFile],
    anchor: Optional[DriveFile] = None,
    now: Optional[datetime] = None,
    tz: tzinfo = timezone.utc,
) -> Optional[DriveFile]:
    """Highest-ranked candidate, or None for an empty pool."""
    ranked = rank_transcripts(candidates, anchor, now=now, tz=tz)
    return ranked[0].file if ranked else None


def gather_transcript_candidates(
    search: SearchFn,
    anchor: Optional[DriveFile] = None,
    union_first_stages: bool = False,
) -> list[DriveFile]:
    """Run the search cascade and return the deduplicated candidate pool.

    Stages are tried in SEARCH_STAGES order until one yields documents. The
    folder stage needs an anchor with a parent folder and the name stage
    needs an anchor. With union_first_stages the folder and name results are
    concatenated before deciding whether to fall through.
    """
    pool: list[DriveFile] = []

    for stage in SEARCH_STAGES:
        if pool and not (union_first_stages and stage == STAGE_NAME):
            break
        if stage == STAGE_FOLDER and not (anchor and anchor.parents):
            continue
        if stage == STAGE_NAME and anchor is None:
            continue

        found = list(search(stage, anchor))
        if stage == STAGE_BROAD:
            found = [f for f in found if looks_like_transcript(f)]
        logger.info(f"Transcript search stage '{stage}' found {len(found)} files")
        pool.extend(found)

    return dedupe_by_id(pool)


# ============================================================================
# Content & entries
# ============================================================================

def fetch_transcript_content(source: ContentSource, file: DriveFile) -> str:
    """Fetch the text of a document; any failure yields an empty string."""
    try:
        logger.info(f"Fetching content for: {file.name} ({file.mime_type})")
        if file.mime_type == GOOGLE_DOC_MIME:
            content = source.export_text(file.id)
        else:
            content = source.download_text(file.id)
    except Exception as e:
        logger.error(f"Failed to fetch content for {file.name}: {e}")
        return ''

    content = content or ''
    logger.info(f"Content fetched: {len(content)} characters")
    return content


def download_link(file: DriveFile) -> str:
    return f"https://drive.google.com/uc?id={file.id}"


def resolve_transcript(
    source: ContentSource,
    search: SearchFn,
    anchor: Optional[DriveFile] = None,
    now: Optional[datetime] = None,
    tz: tzinfo = timezone.utc,
) -> Optional[TranscriptDocument]:
    """Find the single best transcript for a meeting file and load its text."""
    candidates = gather_transcript_candidates(search, anchor)
    best = select_best_transcript(candidates, anchor, now=now, tz=tz)
    if best is None:
        logger.info("No suitable transcript file found")
        return None

    logger.info(f"Selected transcript: {best.name}")
    return TranscriptDocument(
        file=best,
        content=fetch_transcript_content(source, best),
        download_link=download_link(best),
    )


def list_transcripts(
    source: ContentSource,
    search: SearchFn,
    anchor: Optional[DriveFile] = None,
    limit: int = 10,
    now: Optional[datetime] = None,
    tz: tzinfo = timezone.utc,
) -> list[TranscriptDocument]:
    """Ranked transcript documents for a meeting; only the first carries content."""
    candidates = gather_transcript_candidates(search, anchor, union_first_stages=True)
    ranked = rank_transcripts(candidates, anchor, now=now, tz=tz)[:limit]

    documents = []
    for index, item in enumerate(ranked):
        content = fetch_transcript_content(source, item.file) if index == 0 else None
        documents.append(TranscriptDocument(
            file=item.file,
            content=content,
            download_link=download_link(item.file),
        ))
    return documents


_ENTRY_RE = re.compile(r'^\[?(\d{1,2}:\d{2}(?::\d{2})?)\]?\s*(.+)$')


def parse_transcript_entries(text: Optional[str]) -> list[TranscriptEntry]:
    """Split transcript text into one entry per non-blank line.

    A leading "H:MM" or "H:MM:SS" token, bracketed or bare, becomes the
    entry's timestamp.
    """
    if not text:
        return []

    entries = []
    for line in text.splitlines():
        stripped = line.strip()
        if not stripped:
            continue
        match = _ENTRY_RE.match(stripped)
        if match:
            entries.append(TranscriptEntry(text=match.group(2).strip(), timestamp=match.group(1)))
        else:
            entries.append(TranscriptEntry(text=stripped))
    return entries
