"""Tests for the bulk cache download manager."""

import asyncio

import httpx
import pytest

from conftest import FakeRemote, make_row
from catalog_mirror.cache.download_manager import (
    CacheDownloadManager,
    compute_progress,
    grade_cache_health,
)
from catalog_mirror.cache.status import CacheState, CacheStatus
from catalog_mirror.remote.client import RestRemoteClient
from catalog_mirror.utils.constants import (
    CACHE_IMAGE_PREFIX,
    CACHE_RECORD_PREFIX,
    CACHE_STATUS_KEY,
)

TABLE = "restaurants"


@pytest.fixture
def remote():
    return FakeRemote(tables={TABLE: [make_row(i) for i in range(45)]})


@pytest.fixture
def manager(remote, kv, store):
    return CacheDownloadManager(
        remote, kv, store=store, table=TABLE, batch_size=20, item_delay=0
    )


def _progress_log(manager):
    seen = []
    manager.subscribe(lambda status: seen.append(status.download_progress))
    return seen


class TestHelpers:
    def test_compute_progress(self):
        assert compute_progress(0, 45) == 0
        assert compute_progress(1, 45) == 2
        assert compute_progress(45, 45) == 100
        assert compute_progress(50, 45) == 100
        assert compute_progress(3, 0) == 0

    @pytest.mark.parametrize("items, size, grade", [
        (150, 200_000, "excellent"),
        (60, 60_000, "good"),
        (25, 25_000, "fair"),
        (100, 100_000, "good"),
        (5, 1_000_000, "poor"),
    ])
    def test_grade_cache_health(self, items, size, grade):
        assert grade_cache_health(items, size) == grade


class TestFullDownload:
    async def test_forty_five_items_in_three_batches(self, manager, remote):
        await manager.start_download()

        assert remote.range_calls == [(0, 19), (20, 39), (40, 59)]
        status = manager.get_current_status()
        assert status.downloaded_items == 45
        assert status.total_items == 45
        assert status.download_progress == 100
        assert manager.state == CacheState.COMPLETE
        assert manager.is_ready_for_offline()

    async def test_entries_and_local_records_are_written(
        self, manager, kv, store
    ):
        await manager.start_download()
        assert len(kv.keys_with_prefix([CACHE_RECORD_PREFIX])) == 45
        assert len(kv.keys_with_prefix([CACHE_IMAGE_PREFIX])) == 45
        assert kv.get_item("image_r000") == "https://img.example.com/0.jpg"
        assert store.get_stats()["records"] == 45
        assert store.get_record("r010").sync_status == "synced"

    async def test_cache_size_is_sum_of_entry_bytes(self, manager, kv):
        await manager.start_download()
        expected = sum(
            len(kv.get_item(k).encode("utf-8"))
            for k in kv.keys_with_prefix([CACHE_RECORD_PREFIX, CACHE_IMAGE_PREFIX])
        )
        assert manager.get_current_status().cache_size == expected

    async def test_progress_is_monotonic_and_ends_at_100(self, manager):
        seen = _progress_log(manager)
        await manager.start_download()
        assert seen == sorted(seen)
        assert seen[-1] == 100
        assert len(seen) > 45

    async def test_empty_catalog_completes_but_is_not_ready(self, kv):
        manager = CacheDownloadManager(
            FakeRemote(tables={TABLE: []}), kv, table=TABLE, item_delay=0
        )
        await manager.start_download()
        assert manager.state == CacheState.COMPLETE
        assert not manager.is_ready_for_offline()


class TestFailures:
    async def test_count_failure_is_fatal(self, manager, remote):
        remote.fail_count = True
        await manager.start_download()
        status = manager.get_current_status()
        assert manager.state == CacheState.ERROR
        assert status.error == "count failed"
        assert not status.is_downloading
        assert not manager.is_ready_for_offline()
        assert remote.range_calls == []

    async def test_failed_batch_is_skipped(self, manager, remote, kv):
        remote.fail_ranges = {20}
        await manager.start_download()
        status = manager.get_current_status()
        assert status.downloaded_items == 25
        assert status.download_progress == 100
        assert manager.state == CacheState.COMPLETE
        assert len(kv.keys_with_prefix([CACHE_RECORD_PREFIX])) == 25

    async def test_non_json_batch_is_skipped(self, kv, store):
        rows = [make_row(i) for i in range(45)]

        def handler(request):
            if request.method == "HEAD":
                return httpx.Response(200, headers={"content-range": "0-19/45"})
            offset = int(request.url.params["offset"])
            if offset == 20:
                return httpx.Response(200, text="<html>Bad gateway</html>")
            limit = int(request.url.params["limit"])
            return httpx.Response(200, json=rows[offset:offset + limit])

        http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        async with RestRemoteClient(
            base_url="https://db.example.com", api_key="k",
            access_token="", client=http,
        ) as client:
            manager = CacheDownloadManager(
                client, kv, store=store, table=TABLE,
                batch_size=20, item_delay=0,
            )
            await manager.start_download()

        status = manager.get_current_status()
        assert status.downloaded_items == 25
        assert manager.state == CacheState.COMPLETE
        assert len(kv.keys_with_prefix([CACHE_RECORD_PREFIX])) == 25

        saved = CacheStatus.from_json(kv.get_item(CACHE_STATUS_KEY))
        assert not saved.is_downloading

    async def test_row_without_id_is_skipped(self, manager, remote, kv):
        remote.rows(TABLE)[3]["id"] = None
        await manager.start_download()
        assert len(kv.keys_with_prefix([CACHE_RECORD_PREFIX])) == 44
        assert manager.state == CacheState.COMPLETE

    async def test_restart_clears_previous_error(self, manager, remote):
        remote.fail_count = True
        await manager.start_download()
        remote.fail_count = False
        await manager.start_download()
        assert manager.get_current_status().error is None
        assert manager.is_ready_for_offline()


class TestSingleFlight:
    async def test_second_start_is_ignored(self, manager, remote):
        remote.gate_after = 0
        first = asyncio.create_task(manager.start_download())
        await remote.gate_reached.wait()

        await manager.start_download()
        assert remote.range_calls == [(0, 19)]

        remote.gate_release.set()
        await first
        assert len(remote.range_calls) == 3
        assert manager.get_current_status().downloaded_items == 45


class TestClearAndRefresh:
    async def test_clear_removes_entries_and_resets_status(self, manager, kv):
        await manager.start_download()
        await manager.clear_cache()

        status = manager.get_current_status()
        assert kv.keys_with_prefix([CACHE_RECORD_PREFIX, CACHE_IMAGE_PREFIX]) == []
        assert status.downloaded_items == 0
        assert status.download_progress == 0
        assert status.cache_size == 0
        assert not status.is_complete
        assert kv.get_item(CACHE_STATUS_KEY) is not None

    async def test_clear_mid_flight_resets_before_next_increase(
        self, manager, remote
    ):
        remote.gate_after = 1
        seen = _progress_log(manager)
        first = asyncio.create_task(manager.start_download())
        await remote.gate_reached.wait()
        progress_before_clear = manager.get_current_status().download_progress
        assert progress_before_clear > 0

        await manager.clear_cache()
        reset_at = len(seen) - 1
        assert seen[reset_at] == 0

        remote.gate_release.set()
        await first
        # The abandoned session published nothing after the reset
        assert len(seen) == reset_at + 1

        await manager.start_download()
        after = seen[reset_at:]
        assert after[0] == 0
        assert after == sorted(after)
        assert after[-1] == 100
        assert manager.get_current_status().downloaded_items == 45

    async def test_refresh_runs_clear_then_download(self, manager, kv):
        await manager.start_download()
        kv.set_item("rating_r000", "5")
        seen = _progress_log(manager)

        await manager.refresh_cache()
        assert 0 in seen
        assert seen[-1] == 100
        assert kv.get_item("rating_r000") is None
        assert manager.is_ready_for_offline()


class TestPersistence:
    async def test_status_survives_restart(self, manager, remote, kv):
        await manager.start_download()
        saved = manager.get_current_status()

        reopened = CacheDownloadManager(remote, kv, table=TABLE)
        first_seen = []
        reopened.subscribe(first_seen.append)
        assert first_seen[0] == saved
        assert reopened.is_ready_for_offline()

    def test_corrupt_status_falls_back_to_defaults(self, remote, kv):
        kv.set_item(CACHE_STATUS_KEY, "{not json")
        manager = CacheDownloadManager(remote, kv, table=TABLE)
        assert manager.state == CacheState.IDLE
        assert manager.get_current_status().downloaded_items == 0

    def test_load_status_publishes_persisted_value(self, manager, kv):
        kv.set_item(CACHE_STATUS_KEY, CacheStatus(total_items=9).to_json())
        seen = []
        manager.subscribe(seen.append)
        manager.load_status()
        assert seen[-1].total_items == 9


class TestMetrics:
    async def test_metrics_count_entries(self, manager, kv):
        await manager.start_download()
        kv.set_item("rating_r001", "4.5")
        metrics = manager.get_cache_metrics()
        assert metrics.record_count == 45
        assert metrics.image_ref_count == 45
        assert metrics.rating_count == 1
        assert metrics.total_cache_size > 0
        assert metrics.cache_health in ("excellent", "good", "fair", "poor")
        assert metrics.last_sync_time == manager.get_current_status().last_updated

    async def test_metrics_on_empty_cache(self, manager):
        metrics = manager.get_cache_metrics()
        assert metrics.record_count == 0
        assert metrics.cache_health == "poor"
