"""Tests for the sync engine and watermark tracker.

Uses a mocked JMAP client with real ItemStore and WatermarkTracker
instances writing to tmp_path.
"""

import logging
import tomllib
from datetime import datetime, timedelta, timezone
from pathlib import Path
from unittest.mock import MagicMock, patch

import httpx
import pytest

from releve.errors import ProtocolError, TransportError
from releve.jmap.client import JmapClient
from releve.jmap.session import JmapSession
from releve.storage.store import ItemStore
from releve.sync.context import SyncContext
from releve.sync.engine import (
    ItemOutcome,
    SyncEngine,
    SyncReport,
    compute_window,
)
from releve.sync.models import ItemDescriptor
from releve.sync.state import WatermarkTracker

NOW = datetime(2024, 6, 15, 12, 0, 0, 250000, tzinfo=timezone.utc)
WINDOW_END = datetime(2024, 6, 15, 11, 0, 0, tzinfo=timezone.utc)


def _email(email_id: str, received_at: str) -> dict:
    return {
        "id": email_id,
        "blobId": f"blob-{email_id}",
        "receivedAt": received_at,
        "subject": f"Subject {email_id}",
    }


def _page(emails: list[dict]) -> MagicMock:
    """Build a JMAP response carrying one page of emails."""
    response = MagicMock()
    response.is_success = True
    response.json.return_value = {
        "methodResponses": [
            ["Email/query", {"ids": [e["id"] for e in emails]}, "0"],
            ["Email/get", {"list": emails}, "1"],
        ]
    }
    return response


def _error_page() -> MagicMock:
    response = MagicMock()
    response.is_success = True
    response.json.return_value = {
        "methodResponses": [["error", {"type": "invalidArguments"}, "0"]]
    }
    return response


def _blob(status: int = 200, content: bytes = b"From: a@example.com\r\n\r\nBody") -> MagicMock:
    response = MagicMock()
    response.status_code = status
    response.is_success = 200 <= status < 300
    response.content = content
    response.text = content.decode()
    return response


FIVE_EMAILS = [
    _email("m1", "2024-06-15T10:00:00Z"),
    _email("m2", "2024-06-15T09:00:00Z"),
    _email("m3", "2024-06-15T08:00:00Z"),
    _email("m4", "2024-06-14T08:00:00Z"),
    _email("m5", "2024-06-13T08:00:00Z"),
]


def _descriptor(email: dict) -> ItemDescriptor:
    return ItemDescriptor(
        id=email["id"],
        blob_id=email["blobId"],
        received_at=datetime.fromisoformat(email["receivedAt"]),
    )


class TestWatermarkTracker:
    """Tests for WatermarkTracker class."""

    @pytest.fixture
    def tracker(self, tmp_path: Path) -> WatermarkTracker:
        return WatermarkTracker(tmp_path)

    def test_load_returns_none_when_no_file(self, tracker: WatermarkTracker):
        """load() returns None on the first run."""
        assert tracker.load("emails") is None

    def test_save_and_load_roundtrip(self, tracker: WatermarkTracker):
        """save() persists a watermark that load() returns unchanged."""
        watermark = datetime(2024, 1, 15, 9, 30, 0, 123456, tzinfo=timezone.utc)

        assert tracker.save("emails", watermark) is True

        loaded = WatermarkTracker(tracker.state_file("emails").parent).load("emails")
        assert loaded == watermark

    def test_state_file_is_named_after_kind(self, tracker: WatermarkTracker, tmp_path: Path):
        """Each kind gets its own human-readable state file."""
        tracker.save("emails", WINDOW_END)

        content = (tmp_path / "emails.toml").read_text()
        assert content.startswith("downloaded_until = 2024-06-15 11:00:00+00:00")
        assert tomllib.loads(content) == {"downloaded_until": WINDOW_END}

    def test_save_reports_empty_write(
        self, tracker: WatermarkTracker, caplog: pytest.LogCaptureFixture
    ):
        """save() returns False and logs an error when nothing was written."""
        with (
            patch.object(Path, "write_text", return_value=0),
            caplog.at_level(logging.ERROR, logger="releve.sync.state"),
        ):
            assert tracker.save("emails", WINDOW_END) is False

        assert "Wrote 0 bytes" in caplog.text
        assert tracker.load("emails") is None

    def test_save_preserves_other_keys(self, tracker: WatermarkTracker):
        """save() only replaces the watermark key."""
        tracker.state_file("emails").write_text('note = "kept"\n')

        tracker.save("emails", WINDOW_END)

        assert 'note = "kept"' in tracker.state_file("emails").read_text()
        assert tracker.load("emails") == WINDOW_END

    def test_naive_watermark_is_read_as_utc(self, tracker: WatermarkTracker):
        """A hand-edited watermark without offset is taken as UTC."""
        tracker.state_file("emails").write_text("downloaded_until = 2024-01-01T00:00:00\n")

        assert tracker.load("emails") == datetime(2024, 1, 1, tzinfo=timezone.utc)

    def test_handles_corrupted_state_file(self, tracker: WatermarkTracker):
        """load() treats an unparseable state file as no state."""
        tracker.state_file("emails").write_text("not = valid = toml")

        assert tracker.load("emails") is None

    def test_clear_removes_state_file(self, tracker: WatermarkTracker):
        """clear() removes the state file."""
        tracker.save("emails", WINDOW_END)
        tracker.clear("emails")

        assert not tracker.state_file("emails").exists()
        assert tracker.load("emails") is None


class TestSyncReport:
    """Tests for SyncReport dataclass."""

    def test_default_values(self):
        """SyncReport has sensible defaults."""
        report = SyncReport()
        assert report.downloaded == 0
        assert report.skipped == 0
        assert report.errors == 0
        assert report.error_details == []
        assert report.watermark_saved is False

    def test_add_error(self):
        """add_error() increments count and records detail."""
        report = SyncReport()
        report.add_error("m1", "Connection failed")

        assert report.errors == 1
        assert "m1" in report.error_details[0]
        assert "Connection failed" in report.error_details[0]


class TestComputeWindow:
    """Tests for compute_window()."""

    def test_first_run_uses_default_lookback(self):
        """Without a watermark the window starts 7 days back and ends 1 hour ago."""
        window = compute_window(None, NOW)

        assert abs(window.start - (NOW - timedelta(days=7))) <= timedelta(seconds=1)
        assert abs(window.end - (NOW - timedelta(hours=1))) <= timedelta(seconds=1)

    def test_starts_at_watermark(self):
        """With a watermark the window starts exactly at it."""
        watermark = datetime(2024, 6, 10, 8, 0, tzinfo=timezone.utc)

        window = compute_window(watermark, NOW)

        assert window.start == watermark
        assert window.end == WINDOW_END

    def test_end_is_whole_seconds(self):
        """The window end is truncated to the server's second resolution."""
        assert compute_window(None, NOW).end.microsecond == 0

    def test_empty_when_watermark_is_ahead(self):
        """A watermark later than now minus the margin gives an empty window."""
        window = compute_window(NOW, NOW)

        assert window.is_empty


class TestSyncEngine:
    """Tests for SyncEngine class."""

    @pytest.fixture
    def client(self) -> MagicMock:
        """Create a mock JMAP client."""
        client = MagicMock()
        client.get.return_value = _blob()
        return client

    @pytest.fixture
    def session(self) -> JmapSession:
        return JmapSession(
            account_id="u123",
            api_path="/jmap/api/",
            download_url_template="https://dl.example.com/{accountId}/{blobId}/{name}?type={type}",
        )

    @pytest.fixture
    def store(self, tmp_path: Path) -> ItemStore:
        return ItemStore(tmp_path)

    @pytest.fixture
    def tracker(self, tmp_path: Path) -> WatermarkTracker:
        return WatermarkTracker(tmp_path)

    @pytest.fixture
    def limiter(self) -> MagicMock:
        return MagicMock()

    @pytest.fixture
    def engine(self, client, session, store, tracker, limiter) -> SyncEngine:
        context = SyncContext(
            client=client,
            session=session,
            store=store,
            tracker=tracker,
            limiter=limiter,
            clock=lambda: NOW,
        )
        return SyncEngine(context)

    def test_rejects_unknown_kind(self, client, session, store, tracker):
        """Only supported backup kinds can be synced."""
        context = SyncContext(client=client, session=session, store=store, tracker=tracker)
        with pytest.raises(ValueError, match="contacts"):
            SyncEngine(context, kind="contacts")

    def test_downloads_new_messages(
        self, engine: SyncEngine, client: MagicMock, store: ItemStore
    ):
        """run() downloads every discovered message."""
        client.post.side_effect = [_page(FIVE_EMAILS[:2]), _page([])]

        report = engine.run()

        assert report.downloaded == 2
        assert report.skipped == 0
        assert report.errors == 0
        assert store.exists(_descriptor(FIVE_EMAILS[0]))
        assert store.exists(_descriptor(FIVE_EMAILS[1]))
        client.get.assert_any_call(
            "https://dl.example.com/u123/blob-m1/email?type=application%2Foctet-stream"
        )

    def test_second_run_is_idempotent(
        self, engine: SyncEngine, client: MagicMock, tracker: WatermarkTracker, tmp_path: Path
    ):
        """A repeated pass over the same messages writes nothing new."""
        client.post.side_effect = [_page(FIVE_EMAILS), _page([])]
        engine.run()
        files_after_first = sorted(p.name for p in tmp_path.glob("*.eml"))

        # Same messages listed again, as if the watermark had been lost
        tracker.clear("emails")
        client.get.reset_mock()
        client.post.side_effect = [_page(FIVE_EMAILS), _page([])]
        report = engine.run()

        assert report.downloaded == 0
        assert report.skipped == 5
        client.get.assert_not_called()
        assert sorted(p.name for p in tmp_path.glob("*.eml")) == files_after_first

    def test_skips_boundary_message(
        self, engine: SyncEngine, client: MagicMock, store: ItemStore, tracker: WatermarkTracker
    ):
        """A message received exactly at the window end is left for the next pass."""
        boundary = _email("edge", "2024-06-15T11:00:00Z")
        client.post.side_effect = [_page([boundary]), _page([])]
        events = []

        report = engine.run(on_event=events.append)

        assert report.skipped == 1
        assert report.downloaded == 0
        assert not store.exists(_descriptor(boundary))
        assert events[0].outcome is ItemOutcome.SKIPPED_BOUNDARY
        client.get.assert_not_called()
        # The next window starts at the boundary, so the message is still eligible
        assert tracker.load("emails") == WINDOW_END

    def test_isolates_single_item_failure(
        self, engine: SyncEngine, client: MagicMock, store: ItemStore
    ):
        """A failed download is reported and the remaining messages still download."""
        client.post.side_effect = [_page(FIVE_EMAILS), _page([])]

        def get_blob(url: str):
            if "blob-m3" in url:
                return _blob(status=503, content=b"Service unavailable")
            return _blob()

        client.get.side_effect = get_blob

        report = engine.run()

        assert report.downloaded == 4
        assert report.errors == 1
        assert "m3" in report.error_details[0]
        assert "503" in report.error_details[0]
        for email in FIVE_EMAILS:
            assert store.exists(_descriptor(email)) == (email["id"] != "m3")

    def test_transport_error_on_download_is_not_fatal(
        self, engine: SyncEngine, client: MagicMock
    ):
        """A network failure downloading one message only fails that message."""
        client.post.side_effect = [_page(FIVE_EMAILS[:2]), _page([])]
        client.get.side_effect = [TransportError("timed out"), _blob()]

        report = engine.run()

        assert report.downloaded == 1
        assert report.errors == 1
        assert "timed out" in report.error_details[0]

    def test_redirect_loop_on_download_is_not_fatal(
        self, session: JmapSession, store: ItemStore, tracker: WatermarkTracker, limiter
    ):
        """A blob URL that redirects to itself fails only that message."""
        pages = [FIVE_EMAILS[:2], []]

        def handler(request: httpx.Request) -> httpx.Response:
            if request.method == "POST":
                emails = pages.pop(0)
                return httpx.Response(
                    200,
                    json={
                        "methodResponses": [
                            ["Email/query", {"ids": [e["id"] for e in emails]}, "0"],
                            ["Email/get", {"list": emails}, "1"],
                        ]
                    },
                )
            if "blob-m1" in request.url.path:
                return httpx.Response(302, headers={"Location": str(request.url)})
            return httpx.Response(200, content=b"From: a@example.com\r\n\r\nBody")

        with JmapClient("token", transport=httpx.MockTransport(handler)) as client:
            context = SyncContext(
                client=client,
                session=session,
                store=store,
                tracker=tracker,
                limiter=limiter,
                clock=lambda: NOW,
            )
            report = SyncEngine(context).run()

        assert report.downloaded == 1
        assert report.errors == 1
        assert "m1" in report.error_details[0]
        assert store.exists(_descriptor(FIVE_EMAILS[1]))
        assert tracker.load("emails") == WINDOW_END

    def test_write_error_is_not_fatal(self, engine: SyncEngine, client: MagicMock, store):
        """A local write failure only fails that message."""
        client.post.side_effect = [_page(FIVE_EMAILS[:2]), _page([])]
        store.write = MagicMock(
            side_effect=[
                OSError("No space left on device"),
                store.path_for(_descriptor(FIVE_EMAILS[1])),
            ]
        )

        report = engine.run()

        assert report.downloaded == 1
        assert report.errors == 1
        assert "No space left" in report.error_details[0]

    def test_advances_watermark_despite_failures(
        self, engine: SyncEngine, client: MagicMock, tracker: WatermarkTracker
    ):
        """The watermark moves to the window end even when a download failed."""
        client.post.side_effect = [_page(FIVE_EMAILS[:1]), _page([])]
        client.get.return_value = _blob(status=500, content=b"oops")

        report = engine.run()

        assert report.errors == 1
        assert report.watermark_saved is True
        assert tracker.load("emails") == WINDOW_END

    def test_fatal_discovery_error_writes_nothing(
        self, engine: SyncEngine, client: MagicMock, tracker: WatermarkTracker, tmp_path: Path
    ):
        """An error-flagged listing aborts the pass before any write."""
        previous = datetime(2024, 6, 14, tzinfo=timezone.utc)
        tracker.save("emails", previous)
        client.post.side_effect = [_page(FIVE_EMAILS[:2]), _error_page()]

        with pytest.raises(ProtocolError):
            engine.run()

        assert list(tmp_path.glob("*.eml")) == []
        assert tracker.load("emails") == previous
        client.get.assert_not_called()

    def test_transport_error_during_discovery_is_fatal(
        self, engine: SyncEngine, client: MagicMock, tracker: WatermarkTracker
    ):
        """A network failure while listing aborts the pass with no watermark."""
        client.post.side_effect = TransportError("connection refused")

        with pytest.raises(TransportError):
            engine.run()

        assert tracker.load("emails") is None

    def test_empty_window_is_noop(
        self, engine: SyncEngine, client: MagicMock, tracker: WatermarkTracker
    ):
        """A watermark ahead of the window end means nothing is queried or saved."""
        ahead = NOW + timedelta(hours=2)
        tracker.save("emails", ahead)

        report = engine.run()

        assert report.window.is_empty
        assert report.watermark_saved is False
        client.post.assert_not_called()
        assert tracker.load("emails") == ahead

    def test_queries_from_saved_watermark(
        self, engine: SyncEngine, client: MagicMock, tracker: WatermarkTracker
    ):
        """The listing filter starts at the saved watermark."""
        tracker.save("emails", datetime(2024, 6, 14, 6, 30, tzinfo=timezone.utc))
        client.post.side_effect = [_page([])]

        engine.run()

        request = client.post.call_args.args[1]
        query = request["methodCalls"][0][1]
        assert query["filter"] == {
            "after": "2024-06-14T06:30:00Z",
            "before": "2024-06-15T11:00:00Z",
        }

    def test_paces_downloads_only(
        self, engine: SyncEngine, client: MagicMock, store: ItemStore, limiter: MagicMock
    ):
        """The rate limiter runs after each download, with the item's index."""
        store.write(_descriptor(FIVE_EMAILS[0]), b"already here")
        client.post.side_effect = [_page(FIVE_EMAILS[:3]), _page([])]

        engine.run()

        assert [c.args[0] for c in limiter.wait.call_args_list] == [1, 2]

    def test_reports_events(self, engine: SyncEngine, client: MagicMock):
        """run() notifies the caller once per message, in order."""
        client.post.side_effect = [_page(FIVE_EMAILS[:2]), _page([])]
        events = []

        engine.run(on_event=events.append)

        assert [(e.descriptor.id, e.index, e.total) for e in events] == [
            ("m1", 0, 2),
            ("m2", 1, 2),
        ]
        assert all(e.outcome is ItemOutcome.DOWNLOADED for e in events)
        assert events[0].detail.endswith("_m1.eml")
