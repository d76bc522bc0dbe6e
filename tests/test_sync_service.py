"""Unit tests for sync service."""

import pytest
import json
import sys
from datetime import date
from unittest.mock import Mock, patch
from history_sync.config import SyncConfig
from history_sync.errors import AuthError, ConflictError, FetchError, InvalidPathError
from history_sync.storage import LocalDocumentStore, StoredDocument
from history_sync.sync_service import SyncService, SyncReport, main


DAY = date(2025, 3, 1)
PATH = "spotify-history/2025-03-01.md"


def make_item(name, played_at, artists=('Artist',)):
    """Build a raw recently-played item."""
    return {
        'played_at': played_at,
        'track': {'name': name, 'artists': [{'name': a} for a in artists]},
    }


@pytest.fixture
def config(tmp_path):
    """Create a configuration using the local store."""
    return SyncConfig(
        spotify_client_id='test_client_id',
        spotify_client_secret='test_client_secret',
        spotify_refresh_token='test_refresh_token',
        local_history_dir=str(tmp_path),
        retry_backoff=0,
    )


@pytest.fixture
def mock_spotify_client():
    """Create a mock Spotify client."""
    client = Mock()
    client.refresh_access_token = Mock(return_value='access_token')
    client.get_recently_played = Mock(return_value=[])
    return client


@pytest.fixture
def store(tmp_path):
    """Create a local document store."""
    return LocalDocumentStore(str(tmp_path))


@pytest.fixture
def sync_service(config, mock_spotify_client, store):
    """Create a SyncService instance with a mocked Spotify client."""
    return SyncService(config, spotify_client=mock_spotify_client, store=store)


class TestSyncReport:
    """Test cases for SyncReport."""

    def test_init(self):
        """Test SyncReport initialization."""
        report = SyncReport()

        assert report.status == 'pending'
        assert report.events_fetched == 0
        assert report.entries_appended == 0
        assert len(report.errors) == 0
        assert report.start_time is not None
        assert report.end_time is None

    def test_add_error(self):
        """Test adding error."""
        report = SyncReport()

        report.add_error('Test error')

        assert report.errors == ['Test error']

    def test_finalize(self):
        """Test finalizing report."""
        report = SyncReport()

        report.finalize()

        assert report.end_time is not None

    def test_to_dict(self):
        """Test converting report to dictionary."""
        report = SyncReport()
        report.path = PATH
        report.status = 'synced'
        report.entries_appended = 2
        report.finalize()

        result = report.to_dict()

        assert result['path'] == PATH
        assert result['status'] == 'synced'
        assert result['entries_appended'] == 2
        assert result['duration_seconds'] is not None

    def test_save_to_file(self, tmp_path):
        """Test saving report to file."""
        report = SyncReport()
        report.status = 'no-op'
        filepath = tmp_path / "report.json"

        report.save_to_file(str(filepath))

        data = json.loads(filepath.read_text(encoding='utf-8'))
        assert data['status'] == 'no-op'


class TestSyncService:
    """Test cases for SyncService."""

    def test_init_builds_persister(self, sync_service, store):
        """Test service initialization."""
        assert sync_service.store is store
        assert sync_service.persister.store is store
        assert sync_service.persister.max_retries == 1

    def test_document_path(self, sync_service):
        """Test the date-derived document path."""
        assert sync_service.document_path(DAY) == PATH

    def test_first_sync_creates_document(self, sync_service, mock_spotify_client, store):
        """Test the first sync of a day."""
        mock_spotify_client.get_recently_played.return_value = [
            make_item('B', '2025-03-01T10:00:00.000Z'),
            make_item('A', '2025-03-01T09:30:00.000Z'),
            make_item('A', '2025-03-01T09:00:00.000Z'),
        ]

        report = sync_service.run(target_date=DAY)

        assert report.status == 'synced'
        assert report.events_fetched == 3
        assert report.events_new == 3
        assert report.entries_appended == 2
        assert report.watermark == '2025-03-01T10:00:00.000Z'
        content = store.read(PATH).content
        assert "Played 2 times between 10:00 and 10:30" in content
        assert "Played 1 time at 11:00" in content
        mock_spotify_client.refresh_access_token.assert_called_once()
        mock_spotify_client.get_recently_played.assert_called_once_with(limit=50)

    def test_second_run_is_noop(self, sync_service, mock_spotify_client, store):
        """Test that re-running with the same batch writes nothing."""
        mock_spotify_client.get_recently_played.return_value = [
            make_item('A', '2025-03-01T09:00:00.000Z'),
        ]
        sync_service.run(target_date=DAY)
        first = store.read(PATH)

        with patch.object(sync_service.persister, 'persist') as mock_persist:
            report = sync_service.run(target_date=DAY)

        assert report.status == 'no-op'
        assert report.events_new == 0
        mock_persist.assert_not_called()
        assert store.read(PATH) == first

    def test_stale_batch_never_persists(self, sync_service, mock_spotify_client, store):
        """Test that events at or before the watermark skip the persister."""
        store.write(PATH, "---\nlastSynced: 2025-03-01T12:00:00.000Z\n---\n", None, "")
        mock_spotify_client.get_recently_played.return_value = [
            make_item('A', '2025-03-01T09:00:00.000Z'),
            make_item('B', '2025-03-01T12:00:00.000Z'),
        ]

        with patch.object(sync_service.persister, 'persist') as mock_persist:
            report = sync_service.run(target_date=DAY)

        assert report.status == 'no-op'
        assert report.watermark == '2025-03-01T12:00:00.000Z'
        mock_persist.assert_not_called()

    def test_other_days_ignored(self, sync_service, mock_spotify_client, store):
        """Test that plays from yesterday don't land in today's document."""
        mock_spotify_client.get_recently_played.return_value = [
            make_item('Late', '2025-02-28T22:59:00.000Z'),
            make_item('Early', '2025-02-28T23:01:00.000Z'),
        ]

        sync_service.run(target_date=DAY)

        content = store.read(PATH).content
        assert '*“Early”*' in content
        assert '*“Late”*' not in content

    def test_cross_run_dedup(self, sync_service, mock_spotify_client, store):
        """Test that an entry already written without a watermark is not duplicated."""
        existing = (
            "## 🎧 Listening history for 2025-03-01\n"
            "\n"
            "- *“A”* by Artist  \n"
            "  ⏱️ Played 1 time at 10:00\n"
        )
        store.write(PATH, existing, None, "")
        mock_spotify_client.get_recently_played.return_value = [
            make_item('B', '2025-03-01T09:05:00.000Z'),
            make_item('A', '2025-03-01T09:00:00.000Z'),
        ]

        report = sync_service.run(target_date=DAY)

        content = store.read(PATH).content
        assert content.count('*“A”*') == 1
        assert content.count('*“B”*') == 1
        assert report.entries_appended == 1
        assert report.entries_skipped == 1

    def test_unchanged_document_not_rewritten(self, sync_service, mock_spotify_client, store):
        """Test that a merge producing the stored text skips the write."""
        # Sub-millisecond precision is lost in the stored watermark, so the
        # same play passes the filter again but merges to identical text
        mock_spotify_client.get_recently_played.return_value = [
            make_item('A', '2025-03-01T09:00:00.123456Z'),
        ]
        sync_service.run(target_date=DAY)
        first = store.read(PATH)

        with patch.object(sync_service.persister, 'persist') as mock_persist:
            report = sync_service.run(target_date=DAY)

        assert report.status == 'unchanged'
        assert report.events_new == 1
        assert report.entries_skipped == 1
        mock_persist.assert_not_called()
        assert store.read(PATH) == first

    def test_dry_run(self, sync_service, mock_spotify_client, store):
        """Test that a dry run computes but never writes."""
        mock_spotify_client.get_recently_played.return_value = [
            make_item('A', '2025-03-01T09:00:00.000Z'),
        ]

        report = sync_service.run(target_date=DAY, dry_run=True)

        assert report.status == 'dry-run'
        assert report.entries_appended == 1
        assert not (store.root / PATH).exists()

    def test_unparsable_events_dropped(self, sync_service, mock_spotify_client, store):
        """Test that a malformed play is skipped and the rest synced."""
        mock_spotify_client.get_recently_played.return_value = [
            make_item('A', 'garbage'),
            make_item('B', '2025-03-01T09:00:00.000Z'),
        ]

        report = sync_service.run(target_date=DAY)

        assert report.events_dropped == 1
        assert report.status == 'synced'
        assert '*“B”*' in store.read(PATH).content

    def test_auth_failure_writes_nothing(self, sync_service, mock_spotify_client, store):
        """Test that an auth error aborts before any write."""
        mock_spotify_client.refresh_access_token.side_effect = AuthError("invalid_grant")

        with pytest.raises(AuthError):
            sync_service.run(target_date=DAY)

        assert not (store.root / PATH).exists()
        mock_spotify_client.get_recently_played.assert_not_called()

    def test_fetch_failure_writes_nothing(self, sync_service, mock_spotify_client, store):
        """Test that a fetch error leaves the stored document untouched."""
        store.write(PATH, "original\n", None, "")
        mock_spotify_client.get_recently_played.side_effect = FetchError("timeout")

        with pytest.raises(FetchError):
            sync_service.run(target_date=DAY)

        assert store.read(PATH).content == "original\n"

    def test_conflict_retried_once(self, config, mock_spotify_client):
        """Test that a single conflict is retried with the refreshed version."""
        store = Mock()
        store.read.side_effect = [
            StoredDocument(content="", version='v1'),
            StoredDocument(content="theirs", version='v2'),
        ]
        store.write.side_effect = [ConflictError("stale"), 'v3']
        mock_spotify_client.get_recently_played.return_value = [
            make_item('A', '2025-03-01T09:00:00.000Z'),
        ]
        service = SyncService(config, spotify_client=mock_spotify_client, store=store)

        report = service.run(target_date=DAY)

        assert report.status == 'synced'
        assert report.version == 'v3'
        first_content = store.write.call_args_list[0].args[1]
        second_call = store.write.call_args_list[1].args
        assert second_call[1] == first_content
        assert second_call[2] == 'v2'
        assert second_call[3] == "Update listening history for 2025-03-01"

    def test_persistent_conflict_is_fatal(self, config, mock_spotify_client):
        """Test that a second conflict surfaces as a failure."""
        store = Mock()
        store.read.return_value = StoredDocument(content="", version='v1')
        store.write.side_effect = ConflictError("stale")
        mock_spotify_client.get_recently_played.return_value = [
            make_item('A', '2025-03-01T09:00:00.000Z'),
        ]
        service = SyncService(config, spotify_client=mock_spotify_client, store=store)

        with pytest.raises(ConflictError):
            service.run(target_date=DAY)

        assert store.write.call_count == 2

    @patch('history_sync.merger.logger')
    def test_malformed_watermark_warned_once(self, mock_logger, sync_service, mock_spotify_client, store):
        """Test that a bad lastSynced is reported once per run and then replaced."""
        store.write(PATH, "---\ndate: 2025-03-01\nlastSynced: soon\n---\n", None, "")
        mock_spotify_client.get_recently_played.return_value = [
            make_item('A', '2025-03-01T09:00:00.000Z'),
        ]

        report = sync_service.run(target_date=DAY)

        assert report.status == 'synced'
        assert mock_logger.warning.call_count == 1
        assert 'lastSynced: 2025-03-01T09:00:00.000Z' in store.read(PATH).content

    def test_path_outside_history_dir_fails(self, tmp_path, mock_spotify_client):
        """Test that a history directory escaping the store root is a sync failure."""
        config = SyncConfig(
            spotify_client_id='id',
            spotify_client_secret='secret',
            spotify_refresh_token='refresh',
            local_history_dir=str(tmp_path / "history"),
            history_dir='../elsewhere',
        )
        service = SyncService(config, spotify_client=mock_spotify_client)

        with pytest.raises(InvalidPathError):
            service.run(target_date=DAY)

        mock_spotify_client.get_recently_played.assert_not_called()


class TestMain:
    """Test cases for the CLI entry point."""

    @patch('history_sync.sync_service.load_dotenv')
    @patch('history_sync.sync_service.SyncService')
    @patch('history_sync.sync_service.load_config')
    def test_main_success(self, mock_load_config, mock_service_class, mock_dotenv, tmp_path):
        """Test a successful CLI run writing a report."""
        report = SyncReport()
        report.status = 'synced'
        mock_service_class.return_value.run.return_value = report
        report_path = tmp_path / "report.json"

        with patch.object(sys, 'argv', ['history-sync', '--date', '2025-03-01', '--report', str(report_path)]):
            with pytest.raises(SystemExit) as exc_info:
                main()

        assert exc_info.value.code == 0
        mock_service_class.return_value.run.assert_called_once_with(target_date=DAY, dry_run=False)
        assert json.loads(report_path.read_text(encoding='utf-8'))['status'] == 'synced'

    @patch('history_sync.sync_service.load_dotenv')
    @patch('history_sync.sync_service.SyncService')
    @patch('history_sync.sync_service.load_config')
    def test_main_failure(self, mock_load_config, mock_service_class, mock_dotenv):
        """Test that a sync error exits with status 1."""
        mock_service_class.return_value.run.side_effect = FetchError("network down")

        with patch.object(sys, 'argv', ['history-sync', '--dry-run', 'true']):
            with pytest.raises(SystemExit) as exc_info:
                main()

        assert exc_info.value.code == 1
        mock_service_class.return_value.run.assert_called_once_with(target_date=None, dry_run=True)
