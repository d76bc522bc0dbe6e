"""Synchronization service mirroring Spotify listening history into daily logs."""

import argparse
import json
import sys
from datetime import date, datetime
from typing import Dict, Optional, Tuple

from dotenv import load_dotenv

from history_sync.config import SyncConfig, load_config
from history_sync.errors import NotFoundError, SyncError
from history_sync.events import filter_new_events, normalize_events
from history_sync.formatter import format_entries
from history_sync.merger import LogDocument, document_watermark, format_watermark, merge_entries
from history_sync.persister import ConflictSafePersister
from history_sync.spotify_client import SpotifyClient
from history_sync.storage import DocumentStore
from history_sync.utils.logger import setup_logger


class SyncReport:
    """Report of a single synchronization run."""

    def __init__(self):
        """Initialize empty sync report."""
        self.start_time = datetime.now()
        self.end_time = None
        self.target_date: Optional[str] = None
        self.path: Optional[str] = None
        self.status = 'pending'
        self.events_fetched = 0
        self.events_dropped = 0
        self.events_new = 0
        self.entries_appended = 0
        self.entries_skipped = 0
        self.watermark: Optional[str] = None
        self.version: Optional[str] = None
        self.errors = []

    def add_error(self, error: str):
        """Record an error."""
        self.errors.append(error)

    def finalize(self):
        """Mark sync as complete."""
        self.end_time = datetime.now()

    def to_dict(self) -> Dict:
        """Convert report to dictionary."""
        duration = None
        if self.end_time:
            duration = (self.end_time - self.start_time).total_seconds()

        return {
            'start_time': self.start_time.isoformat(),
            'end_time': self.end_time.isoformat() if self.end_time else None,
            'duration_seconds': duration,
            'target_date': self.target_date,
            'path': self.path,
            'status': self.status,
            'events_fetched': self.events_fetched,
            'events_dropped': self.events_dropped,
            'events_new': self.events_new,
            'entries_appended': self.entries_appended,
            'entries_skipped': self.entries_skipped,
            'watermark': self.watermark,
            'version': self.version,
            'errors': self.errors
        }

    def save_to_file(self, filepath: str):
        """Save report to JSON file."""
        with open(filepath, 'w', encoding='utf-8') as f:
            json.dump(self.to_dict(), f, indent=2, ensure_ascii=False)


class SyncService:
    """Service for mirroring recently played tracks into one document per day."""

    def __init__(
        self,
        config: SyncConfig,
        spotify_client: SpotifyClient = None,
        store: DocumentStore = None,
        log_file: str = None
    ):
        """
        Initialize sync service.

        Args:
            config: Explicit sync configuration
            spotify_client: Client to use instead of one built from config
            store: Document store to use instead of the one config selects
            log_file: Optional path to log file
        """
        self.config = config
        self.logger = setup_logger(log_file=log_file)
        if log_file:
            self.logger.info(f"📝 Sync log file: {log_file}")

        self.spotify_client = spotify_client or SpotifyClient(
            client_id=config.spotify_client_id,
            client_secret=config.spotify_client_secret,
            refresh_token=config.spotify_refresh_token,
            timeout=config.request_timeout
        )
        self.store = store or config.build_store()
        self.persister = ConflictSafePersister(
            self.store,
            max_retries=config.conflict_retries,
            backoff_seconds=config.retry_backoff
        )

    def today(self) -> date:
        """Current date in the reference timezone."""
        return datetime.now(self.config.tz).date()

    def document_path(self, day: date) -> str:
        return f"{self.config.history_dir}/{day.isoformat()}.md"

    def _load_document(self, path: str) -> Tuple[str, Optional[str]]:
        try:
            stored = self.store.read(path)
        except NotFoundError:
            self.logger.info(f"📁 {path} does not exist yet — will create new one.")
            return "", None
        return stored.content, stored.version

    def run(self, target_date: date = None, dry_run: bool = False) -> SyncReport:
        """
        Sync the recently played tracks of one day into its document.

        Args:
            target_date: Day to sync (default: today in the reference timezone)
            dry_run: If True, compute the merged document but don't write it

        Returns:
            SyncReport describing the outcome

        Raises:
            SyncError: Any fatal error (auth, fetch, persistent conflict);
                nothing is written in that case
        """
        report = SyncReport()
        tz = self.config.tz
        day = target_date or self.today()
        path = self.document_path(day)
        report.target_date = day.isoformat()
        report.path = path

        try:
            existing, version = self._load_document(path)
            document = LogDocument.parse(existing)
            watermark = document_watermark(document, tz)
            if watermark is not None:
                report.watermark = format_watermark(watermark)

            self.spotify_client.refresh_access_token()
            items = self.spotify_client.get_recently_played(limit=self.config.fetch_limit)
            report.events_fetched = len(items)

            events, report.events_dropped = normalize_events(items, tz)
            new_events = filter_new_events(events, day, watermark)
            report.events_new = len(new_events)

            if not new_events:
                report.status = 'no-op'
                self.logger.info("✅ No new tracks to sync.")
                return report

            entries = format_entries(new_events)
            newest = max(event.played_at_utc for event in new_events)
            merged = merge_entries(document, watermark, entries, day, newest)

            report.entries_appended = merged.appended
            report.entries_skipped = merged.skipped
            report.watermark = format_watermark(merged.watermark)

            if merged.content == existing:
                report.status = 'unchanged'
                self.logger.info(f"✅ {path} is already up to date.")
                return report

            if dry_run:
                report.status = 'dry-run'
                self.logger.info(
                    f"[DRY RUN] Would write {merged.appended} new entries to {path} "
                    f"({merged.skipped} duplicates skipped)"
                )
                return report

            report.version = self.persister.persist(
                path,
                merged.content,
                version,
                message=f"Update listening history for {day.isoformat()}"
            )
            report.status = 'synced'
            self.logger.info(
                f"Synced {path}: {merged.appended} new entries, "
                f"{merged.skipped} duplicates skipped, lastSynced {report.watermark}"
            )
            return report

        except SyncError as e:
            report.status = 'failed'
            report.add_error(str(e))
            self.logger.error(f"❌ Sync failed for {path}: {e}")
            raise
        finally:
            report.finalize()


def main():
    """Main entry point for CLI."""
    parser = argparse.ArgumentParser(
        description="Mirror Spotify listening history into daily Markdown logs"
    )
    parser.add_argument(
        '--date',
        type=date.fromisoformat,
        default=None,
        help='Day to sync as YYYY-MM-DD (default: today in the configured timezone)'
    )
    parser.add_argument(
        '--dry-run',
        type=str,
        choices=['true', 'false'],
        default='false',
        help='Run in dry-run mode (no changes made)'
    )
    parser.add_argument(
        '--credentials',
        type=str,
        default=None,
        help='Path to a KEY=value credentials file overriding the environment'
    )
    parser.add_argument(
        '--log-file',
        type=str,
        default=None,
        help='Path to log file (optional)'
    )
    parser.add_argument(
        '--report',
        type=str,
        default=None,
        help='Path to write the JSON run report to (optional)'
    )

    args = parser.parse_args()
    dry_run = args.dry_run == 'true'

    load_dotenv()

    try:
        config = load_config(credentials_path=args.credentials)
        service = SyncService(config, log_file=args.log_file)
        report = service.run(target_date=args.date, dry_run=dry_run)

        if args.report:
            report.save_to_file(args.report)

        print(f"\nSync completed: {report.status}")
        sys.exit(0)

    except KeyboardInterrupt:
        print("\n\nSync interrupted by user")
        sys.exit(1)
    except SyncError as e:
        print(f"\nSync failed: {e}")
        sys.exit(1)


if __name__ == '__main__':
    main()
