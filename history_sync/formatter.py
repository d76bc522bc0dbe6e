"""
Grouping and rendering of play events into Markdown entries.

The entry grammar lives here once: the templates used to render entries and
the pattern used to read them back are defined next to each other, so the
merger recovers exactly the signatures the renderer produces.
"""

import re
from dataclasses import dataclass
from typing import Dict, Iterable, List, NamedTuple, Tuple

from history_sync.events import PlayEvent


ENTRY_HEAD = "- *“{track}”* by {artists}  "
SINGLE_PLAY = "  ⏱️ Played 1 time at {time}"
MULTIPLE_PLAYS = "  ⏱️ Played {count} times between {first} and {last}"

ENTRY_PATTERN = re.compile(
    r'^- \*“(?P<track>.*?)”\* by (?P<artists>.*?)[ \t]*\r?\n'
    r'[ \t]*⏱️? Played (?:'
    r'1 time at (?P<single>\d{2}:\d{2})'
    r'|(?P<count>\d+) times between (?P<first>\d{2}:\d{2}) and (?P<last>\d{2}:\d{2})'
    r'|at (?P<legacy>\d{2}:\d{2})'  # written by earlier versions, one entry per play
    r')',
    re.MULTILINE
)


class EntrySignature(NamedTuple):
    """Identity of a rendered entry: track, joined artists, time or range."""

    track_name: str
    artists: str
    when: str


class RenderedEntry(NamedTuple):
    signature: EntrySignature
    text: str


@dataclass
class EntryGroup:
    """Plays of one track (same name and artists) in ascending order."""

    track_name: str
    artists: str
    events: List[PlayEvent]

    @property
    def times(self) -> List[str]:
        return [event.local_time for event in self.events]

    @property
    def when(self) -> str:
        times = self.times
        if len(times) == 1:
            return times[0]
        return f"{times[0]}-{times[-1]}"

    @property
    def signature(self) -> EntrySignature:
        return EntrySignature(self.track_name, self.artists, self.when)


def group_events(events: Iterable[PlayEvent]) -> List[EntryGroup]:
    """
    Group events by (track name, joined artists).

    Groups are returned in order of first occurrence in ``events``; the plays
    inside each group are sorted by instant.
    """
    grouped: Dict[Tuple[str, str], List[PlayEvent]] = {}
    for event in events:
        grouped.setdefault(event.track_key, []).append(event)

    return [
        EntryGroup(
            track_name=track_name,
            artists=artists,
            events=sorted(plays, key=lambda event: event.played_at_utc),
        )
        for (track_name, artists), plays in grouped.items()
    ]


def render_entry(group: EntryGroup) -> str:
    """Render one group as a two-line Markdown list entry."""
    head = ENTRY_HEAD.format(track=group.track_name, artists=group.artists)
    times = group.times
    if len(times) == 1:
        detail = SINGLE_PLAY.format(time=times[0])
    else:
        detail = MULTIPLE_PLAYS.format(count=len(times), first=times[0], last=times[-1])
    return f"{head}\n{detail}"


def format_entries(events: Iterable[PlayEvent]) -> List[RenderedEntry]:
    """Group and render events, pairing each entry with its signature."""
    return [
        RenderedEntry(group.signature, render_entry(group))
        for group in group_events(events)
    ]


def parse_signatures(text: str) -> List[EntrySignature]:
    """
    Recover the signatures of every entry found in ``text``.

    Lines that are not entries (headers, notes) are ignored.
    """
    signatures = []
    for match in ENTRY_PATTERN.finditer(text):
        if match.group('single'):
            when = match.group('single')
        elif match.group('legacy'):
            when = match.group('legacy')
        else:
            when = f"{match.group('first')}-{match.group('last')}"
        signatures.append(
            EntrySignature(match.group('track').strip(), match.group('artists').strip(), when)
        )
    return signatures
