import threading
import time

import pytest

from catalog.models import GameRecord
from ingestion.errors import BatchEmpty, BatchTooLarge, Unauthorized
from ingestion.models import BatchStatus, IngestionItem, ItemOutcome, Source
from ingestion.orchestrator import IngestionOrchestrator
from tests.app_helpers import igdb_routes, make_igdb_client, make_services, wiki_routes


def _items(count, prefix="Game"):
    return [IngestionItem(name=f"{prefix} {index}", source=Source.WIKI) for index in range(count)]


def _record(name):
    return GameRecord(
        title=name,
        synopsis="",
        cover_image_filename="",
        developer="Dev",
        publisher="Pub",
        release_year="2004",
        genre="Action",
        canonical_url=f"https://example.org/{name}",
        creator_user_id=7,
        id=1,
    )


class ScriptedPipeline:
    """Stand-in pipeline that tracks concurrency and follows a per-name script."""

    def __init__(self, *, delay=0.0, fail=(), hang=()):
        self.delay = delay
        self.fail = set(fail)
        self.hang = set(hang)
        self.running = 0
        self.peak = 0
        self.calls = 0
        self._lock = threading.Lock()

    def run(self, item, requester_user_id, deadline):
        with self._lock:
            self.calls += 1
            self.running += 1
            self.peak = max(self.peak, self.running)
        try:
            if item.name in self.hang:
                while not deadline.expired():
                    time.sleep(0.01)
                return ItemOutcome.failure(item.name, "timed out", kind="timeout")
            time.sleep(self.delay)
            if item.name in self.fail:
                return ItemOutcome.failure(item.name, "game not found", kind="not_found")
            return ItemOutcome.success(item.name, _record(item.name))
        finally:
            with self._lock:
                self.running -= 1


def _orchestrator(pipeline, **kwargs):
    return IngestionOrchestrator(lambda timestamp: pipeline, **kwargs)


def test_all_successes_are_created():
    pipeline = ScriptedPipeline()

    result = _orchestrator(pipeline).run(_items(3), 7)

    assert result.status is BatchStatus.CREATED
    assert len(result.successes) == 3
    assert result.failures == []


def test_mixed_outcomes_are_partial_success():
    pipeline = ScriptedPipeline(fail={"Game 1"})

    result = _orchestrator(pipeline).run(_items(3), 7)

    assert result.status is BatchStatus.PARTIAL_SUCCESS
    assert result.failures == [{"name": "Game 1", "reason": "game not found"}]
    assert result.total == 3


def test_no_successes_is_internal_error():
    pipeline = ScriptedPipeline(fail={"Game 0", "Game 1"})

    result = _orchestrator(pipeline).run(_items(2), 7)

    assert result.status is BatchStatus.INTERNAL_ERROR
    assert result.successes == []


def test_at_most_ten_pipelines_run_concurrently():
    pipeline = ScriptedPipeline(delay=0.05)

    result = _orchestrator(pipeline).run(_items(35), 7)

    assert result.total == 35
    assert pipeline.calls == 35
    assert 1 < pipeline.peak <= 10


def test_small_batches_use_one_worker_per_item():
    pipeline = ScriptedPipeline(delay=0.1)

    _orchestrator(pipeline).run(_items(3), 7)

    assert pipeline.peak <= 3


@pytest.mark.parametrize("count, error", [(0, BatchEmpty), (101, BatchTooLarge)])
def test_batch_size_is_validated_before_any_work(count, error):
    pipeline = ScriptedPipeline()
    built = []

    orchestrator = IngestionOrchestrator(lambda timestamp: built.append(timestamp) or pipeline)

    with pytest.raises(error):
        orchestrator.run(_items(count), 7)

    assert built == []
    assert pipeline.calls == 0


@pytest.mark.parametrize("user_id", [None, 0])
def test_missing_identity_is_rejected(user_id):
    pipeline = ScriptedPipeline()

    with pytest.raises(Unauthorized):
        _orchestrator(pipeline).run(_items(1), user_id)

    assert pipeline.calls == 0


def test_deadline_turns_unfinished_items_into_timeouts():
    pipeline = ScriptedPipeline(hang={"Game 1"})

    started = time.monotonic()
    result = _orchestrator(pipeline, timeout=0.3).run(_items(3), 7)

    assert time.monotonic() - started < 2.0
    assert result.total == 3
    assert result.status is BatchStatus.PARTIAL_SUCCESS
    assert {"name": "Game 1", "reason": "timed out"} in result.failures


def test_queued_items_time_out_when_workers_are_busy():
    hung = {f"Game {index}" for index in range(10)}
    pipeline = ScriptedPipeline(hang=hung)

    result = _orchestrator(pipeline, timeout=0.2).run(_items(12), 7)

    assert result.total == 12
    assert result.status is BatchStatus.INTERNAL_ERROR
    assert all(failure["reason"] == "timed out" for failure in result.failures)


def test_pipeline_factory_receives_one_timestamp_per_batch():
    pipeline = ScriptedPipeline()
    timestamps = []

    def factory(timestamp):
        timestamps.append(timestamp)
        return pipeline

    IngestionOrchestrator(factory, clock=lambda: 123).run(_items(5), 7)

    assert timestamps == [123]


def test_repeated_name_in_one_batch_creates_one_record(opener, services):
    for route in wiki_routes():
        opener.add(*route)
    orchestrator = IngestionOrchestrator(services.build_pipeline)

    result = orchestrator.run(
        [
            IngestionItem(name="Half-Life 2", source=Source.WIKI),
            IngestionItem(name="Half-Life 2", source=Source.WIKI),
        ],
        7,
    )

    assert result.total == 2
    assert len(result.successes) == 1
    assert result.failures[0]["name"] == "Half-Life 2"
    assert result.failures[0]["reason"] == "game already exists"
    assert services.store.count() == 1


def test_catalog_batch_shares_one_token_and_reuses_search_results(tmp_path, opener):
    for route in igdb_routes():
        opener.add(*route)
    services = make_services(tmp_path, opener, igdb_client=make_igdb_client(opener))
    orchestrator = IngestionOrchestrator(services.build_pipeline)

    try:
        result = orchestrator.run(
            [IngestionItem(name=f"Game {index}", source=Source.CATALOG) for index in range(5)],
            7,
        )

        assert result.status is BatchStatus.CREATED
        assert result.failures == []
        assert sorted(record.title for record in result.successes) == [f"Game {index}" for index in range(5)]
        assert all(record.cover_image_filename.endswith(".jpg") for record in result.successes)
        assert len(opener.urls("id.twitch.tv")) == 1
        game_queries = [request.data.decode("utf-8") for request in opener.requests if "api.igdb.com" in request.full_url]
        assert len(game_queries) == 5
        assert not any("where url =" in query for query in game_queries)
        assert services.store.count() == 5
    finally:
        services.store._db.dispose()
