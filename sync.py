#!/usr/bin/env python3
"""
Spotify listening history sync

Safe re-run script that won't create duplicate entries.
"""

import sys

from dotenv import load_dotenv

from history_sync.config import load_config
from history_sync.errors import SyncError
from history_sync.sync_service import SyncService


def main():
    print("=" * 70)
    print("Spotify Listening History Sync")
    print("=" * 70)
    print()

    load_dotenv()

    try:
        service = SyncService(load_config())
        report = service.run()

        print()
        print("=" * 70)
        print(f"Sync completed: {report.status}")
        print(f"  Document:        {report.path}")
        print(f"  New plays:       {report.events_new}")
        print(f"  Entries added:   {report.entries_appended}")
        print(f"  Duplicates:      {report.entries_skipped}")
        print(f"  Last synced:     {report.watermark}")
        print("=" * 70)

    except KeyboardInterrupt:
        print("\n\nSync interrupted by user")
        sys.exit(1)
    except SyncError as e:
        print(f"\nSync failed: {e}")
        sys.exit(1)


if __name__ == '__main__':
    main()
