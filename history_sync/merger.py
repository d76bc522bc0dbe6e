"""Daily log document model and the duplicate-free merge of new entries."""

import re
from dataclasses import dataclass, field
from datetime import date, datetime, timezone, tzinfo
from typing import Dict, Iterable, List, NamedTuple, Optional, Sequence

from history_sync.errors import ParseError
from history_sync.events import parse_instant
from history_sync.formatter import RenderedEntry, parse_signatures
from history_sync.utils.logger import get_logger


logger = get_logger()

SOURCE_TAG = "spotify"
TYPE_TAG = "listening-history"
DAY_HEADER = "## 🎧 Listening history for {date}"

STANDARD_KEYS = ('date', 'source', 'type', 'lastSynced')

FRONTMATTER_PATTERN = re.compile(r'\A---[ \t]*\n(?P<meta>.*?)^---[ \t]*$\n?', re.MULTILINE | re.DOTALL)
OPENING_FENCE = re.compile(r'\A---[ \t]*\n')
METADATA_LINE = re.compile(r'^[A-Za-z_][\w-]*:')


def format_watermark(instant: datetime) -> str:
    """Serialise a watermark as fixed-width UTC ISO 8601 with milliseconds."""
    utc = instant.astimezone(timezone.utc)
    return utc.strftime('%Y-%m-%dT%H:%M:%S') + f".{utc.microsecond // 1000:03d}Z"


def has_day_header(body: str, day: date) -> bool:
    pattern = rf'^#+\s.*Listening history for {re.escape(day.isoformat())}\s*$'
    return re.search(pattern, body, flags=re.MULTILINE) is not None


def _parse_metadata_lines(lines: Iterable[str]) -> Dict[str, str]:
    metadata = {}
    for line in lines:
        if ':' not in line:
            continue
        key, value = line.split(':', 1)
        metadata[key.strip()] = value.strip()
    return metadata


@dataclass
class LogDocument:
    """A daily log: ordered metadata key/value pairs and the Markdown body."""

    metadata: Dict[str, str] = field(default_factory=dict)
    body: str = ""

    @classmethod
    def parse(cls, text: str) -> "LogDocument":
        """
        Split a leading ``---`` metadata block from the body.

        CRLF line endings are read as LF. A block that is opened but never
        closed is logged as malformed; its leading ``key: value`` lines are
        still taken as metadata so they are not duplicated on rewrite.
        """
        text = (text or "").replace('\r\n', '\n')
        match = FRONTMATTER_PATTERN.match(text)
        if match:
            return cls(
                metadata=_parse_metadata_lines(match.group('meta').splitlines()),
                body=text[match.end():]
            )

        if not OPENING_FENCE.match(text):
            return cls(metadata={}, body=text)

        lines = text.split('\n')[1:]
        count = 0
        while count < len(lines) and METADATA_LINE.match(lines[count]):
            count += 1

        error = ParseError("Metadata block has no closing '---'", context={'metadata_lines': count})
        logger.warning(f"⚠️ Malformed existing document: {error}")
        return cls(metadata=_parse_metadata_lines(lines[:count]), body='\n'.join(lines[count:]))

    @property
    def date(self) -> Optional[str]:
        return self.metadata.get('date')

    def last_synced(self, tz: tzinfo = timezone.utc) -> Optional[datetime]:
        """
        Watermark stored in the metadata, or None when absent.

        Raises:
            ParseError: If ``lastSynced`` is present but malformed
        """
        value = self.metadata.get('lastSynced')
        if not value:
            return None
        return parse_instant(value, default_tz=tz)


def document_watermark(document: LogDocument, tz: tzinfo = timezone.utc) -> Optional[datetime]:
    """Watermark of a parsed document; a malformed value is logged and ignored."""
    try:
        return document.last_synced(tz)
    except ParseError as e:
        logger.warning(f"⚠️ Ignoring malformed lastSynced in existing document: {e}")
        return None


def read_watermark(text: str, tz: tzinfo = timezone.utc) -> Optional[datetime]:
    return document_watermark(LogDocument.parse(text), tz)


class MergeResult(NamedTuple):
    content: str
    appended: int
    skipped: int
    watermark: Optional[datetime]


def _build_metadata(existing: Dict[str, str], day: date, watermark: Optional[datetime]) -> str:
    lines = [
        f"date: {day.isoformat()}",
        f"source: {SOURCE_TAG}",
        f"type: {TYPE_TAG}",
    ]
    if watermark is not None:
        lines.append(f"lastSynced: {format_watermark(watermark)}")
    lines.extend(
        f"{key}: {value}" for key, value in existing.items() if key not in STANDARD_KEYS
    )
    return "---\n" + "\n".join(lines) + "\n---"


def _build_body(existing_body: str, appended: List[str], day: date) -> str:
    body = existing_body.strip('\n')

    if not has_day_header(body, day):
        header = DAY_HEADER.format(date=day.isoformat())
        body = f"{header}\n\n{body}" if body else header

    if appended:
        last_line = body.rsplit('\n', 1)[-1]
        # Continue an existing list directly, otherwise start a new paragraph
        separator = '\n' if last_line.startswith(('- ', '  ')) else '\n\n'
        body = body + separator + '\n'.join(appended)

    return body


def merge_entries(
    document: LogDocument,
    previous_watermark: Optional[datetime],
    entries: Sequence[RenderedEntry],
    target_date: date,
    newest_played_at: Optional[datetime]
) -> MergeResult:
    """
    Merge rendered entries into an already parsed daily document.

    Args:
        document: Parsed current document (empty for a new one)
        previous_watermark: Watermark already read from ``document``
        entries: Rendered entries paired with their signatures
        target_date: Day the document covers
        newest_played_at: Newest instant among the events considered, whether
            or not their entries end up appended

    Returns:
        MergeResult with the final document text and counters
    """
    watermark = previous_watermark
    if newest_played_at is not None and (watermark is None or newest_played_at > watermark):
        watermark = newest_played_at

    seen = set(parse_signatures(document.body))
    appended = []
    skipped = 0
    for entry in entries:
        if entry.signature in seen:
            skipped += 1
            logger.debug(f"Skipping duplicate entry: {entry.signature}")
            continue
        seen.add(entry.signature)
        appended.append(entry.text)

    content = (
        _build_metadata(document.metadata, target_date, watermark)
        + "\n\n"
        + _build_body(document.body, appended, target_date)
        + "\n"
    )
    return MergeResult(content=content, appended=len(appended), skipped=skipped, watermark=watermark)


def merge_document(
    existing: str,
    entries: Sequence[RenderedEntry],
    target_date: date,
    newest_played_at: Optional[datetime],
    tz: tzinfo = timezone.utc
) -> MergeResult:
    """
    Merge rendered entries into a daily document text without duplicates.

    Args:
        existing: Current document text ("" when the document is new)
        entries: Rendered entries paired with their signatures
        target_date: Day the document covers
        newest_played_at: Newest instant among the events considered
        tz: Reference timezone, used for a stored watermark without offset

    Returns:
        MergeResult with the final document text and counters
    """
    document = LogDocument.parse(existing)
    return merge_entries(document, document_watermark(document, tz), entries, target_date, newest_played_at)
