"""Play event normalization and incremental filtering."""

from dataclasses import dataclass
from datetime import date, datetime, timezone, tzinfo
from typing import Dict, Iterable, List, Optional, Tuple

from history_sync.errors import ParseError
from history_sync.utils.logger import get_logger


logger = get_logger()

ARTIST_SEPARATOR = ", "


@dataclass(frozen=True)
class PlayEvent:
    """A single play of a track, projected into the reference timezone."""

    track_name: str
    artist_names: Tuple[str, ...]
    played_at_utc: datetime
    local_date: date
    local_time: str

    @property
    def artists(self) -> str:
        return ARTIST_SEPARATOR.join(self.artist_names)

    @property
    def track_key(self) -> Tuple[str, str]:
        return self.track_name, self.artists


def parse_instant(value: str, default_tz: tzinfo = timezone.utc) -> datetime:
    """
    Parse an ISO 8601 timestamp into an aware datetime.

    Accepts a trailing ``Z`` as well as explicit offsets. A value without an
    offset is interpreted in ``default_tz``.

    Raises:
        ParseError: If the value is not a valid timestamp
    """
    if not isinstance(value, str) or not value.strip():
        raise ParseError("Missing timestamp", context={'value': value})

    text = value.strip()
    if text.endswith(('Z', 'z')):
        text = text[:-1] + '+00:00'

    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        # fromisoformat before 3.11 only takes 3 or 6 fractional digits
        parsed = None
        for fmt in ('%Y-%m-%dT%H:%M:%S.%f%z', '%Y-%m-%dT%H:%M:%S%z', '%Y-%m-%dT%H:%M:%S.%f'):
            try:
                parsed = datetime.strptime(text, fmt)
                break
            except ValueError:
                continue
        if parsed is None:
            raise ParseError(f"Unable to parse timestamp: {value}", context={'value': value})

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=default_tz)
    return parsed


def normalize_event(item: Dict, tz: tzinfo) -> PlayEvent:
    """
    Convert a raw recently-played item into a PlayEvent.

    Args:
        item: Item from the recently-played endpoint, with keys
            ``played_at`` and ``track`` (``name``, ``artists``)
        tz: Reference timezone for the local date and time of day

    Returns:
        Normalized PlayEvent

    Raises:
        ParseError: If the timestamp or track name is missing or malformed
    """
    track = item.get('track') or {}
    # Surrounding whitespace would not survive the Markdown round trip
    name = (track.get('name') or '').strip()
    if not name:
        raise ParseError("Play event has no track name", context={'played_at': item.get('played_at')})

    played_at_utc = parse_instant(item.get('played_at')).astimezone(timezone.utc)
    local = played_at_utc.astimezone(tz)

    artist_names = tuple(
        artist['name'].strip() for artist in track.get('artists') or []
        if (artist.get('name') or '').strip()
    )

    return PlayEvent(
        track_name=name,
        artist_names=artist_names,
        played_at_utc=played_at_utc,
        local_date=local.date(),
        local_time=local.strftime('%H:%M'),
    )


def normalize_events(items: Iterable[Dict], tz: tzinfo) -> Tuple[List[PlayEvent], int]:
    """
    Normalize a batch of raw items, dropping the ones that cannot be parsed.

    Returns:
        Tuple of (events in input order, number of dropped items)
    """
    events = []
    dropped = 0
    for item in items:
        try:
            events.append(normalize_event(item, tz))
        except ParseError as e:
            dropped += 1
            logger.warning(f"⚠️ Skipping unparsable play event: {e}")
    return events, dropped


def filter_new_events(
    events: Iterable[PlayEvent],
    target_date: date,
    watermark: Optional[datetime]
) -> List[PlayEvent]:
    """
    Keep the events played on ``target_date`` and strictly after the watermark.

    Input order is preserved.
    """
    return [
        event for event in events
        if event.local_date == target_date
        and (watermark is None or event.played_at_utc > watermark)
    ]
