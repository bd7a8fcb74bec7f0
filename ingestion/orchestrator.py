"""Fan a batch of names out to item pipelines and aggregate the outcomes."""

from __future__ import annotations

import logging
import time
from concurrent.futures import Future, ThreadPoolExecutor, wait
from dataclasses import dataclass
from typing import Any, Callable, Optional, Sequence

from catalog.store import CatalogStore
from igdb.client import IGDBClient, TokenCache
from ingestion.deadline import Deadline
from ingestion.errors import BatchEmpty, BatchTooLarge, IngestionTimeout, Unauthorized
from ingestion.images import DEFAULT_IMAGE_TIMEOUT, ImageFetcher
from ingestion.models import BatchResult, IngestionItem, ItemOutcome, Source
from ingestion.persister import DedupChecker, GamePersister
from ingestion.pipeline import INTERNAL_ERROR_REASON, ItemPipeline
from sources.catalog import CatalogParser
from sources.http import HttpFetcher
from sources.resolvers import DEFAULT_SOURCE_TIMEOUT, build_chain_factory
from sources.steam import SteamParser
from sources.wiki import WikiParser
from storage.blobs import BlobStore

logger = logging.getLogger(__name__)

MAX_ITEMS = 100
MAX_IN_FLIGHT = 10
DEFAULT_TIMEOUT = 10.0


@dataclass
class IngestionServices:
    """Long-lived collaborators shared by every batch."""

    fetcher: HttpFetcher
    store: CatalogStore
    blobs: BlobStore
    igdb_client: Optional[IGDBClient] = None
    source_timeout: float = DEFAULT_SOURCE_TIMEOUT
    image_timeout: float = DEFAULT_IMAGE_TIMEOUT

    @property
    def catalog_enabled(self) -> bool:
        return self.igdb_client is not None

    def build_pipeline(self, timestamp: Any) -> ItemPipeline:
        """Return a pipeline for one batch, with its own Twitch token cache."""

        tokens = TokenCache(self.igdb_client) if self.igdb_client is not None else None
        chains = build_chain_factory(
            self.fetcher,
            igdb_client=self.igdb_client,
            tokens=tokens,
            source_timeout=self.source_timeout,
        )
        parsers: dict[Source, Any] = {
            Source.WIKI: WikiParser(self.fetcher, timeout=self.source_timeout),
            Source.STEAM: SteamParser(self.fetcher, timeout=self.source_timeout),
        }
        if self.igdb_client is not None and tokens is not None:
            parsers[Source.CATALOG] = CatalogParser(self.igdb_client, tokens)
        return ItemPipeline(
            chains=chains,
            parsers=parsers,
            dedup=DedupChecker(self.store),
            images=ImageFetcher(self.fetcher, self.blobs, timeout=self.image_timeout),
            persister=GamePersister(self.store, self.blobs),
            timestamp=timestamp,
        )


class IngestionOrchestrator:
    """Run up to ``max_in_flight`` item pipelines under one shared deadline."""

    def __init__(
        self,
        pipeline_factory: Callable[[Any], ItemPipeline],
        *,
        max_items: int = MAX_ITEMS,
        max_in_flight: int = MAX_IN_FLIGHT,
        timeout: float = DEFAULT_TIMEOUT,
        clock: Callable[[], int] = time.time_ns,
    ) -> None:
        self._pipeline_factory = pipeline_factory
        self._max_items = max_items
        self._max_in_flight = max(1, max_in_flight)
        self._timeout = timeout
        self._clock = clock

    def validate(self, items: Sequence[IngestionItem], requester_user_id: Optional[int]) -> None:
        if requester_user_id is None or requester_user_id <= 0:
            raise Unauthorized()
        if not items:
            raise BatchEmpty()
        if len(items) > self._max_items:
            raise BatchTooLarge(count=len(items), limit=self._max_items)

    def run(
        self,
        items: Sequence[IngestionItem],
        requester_user_id: Optional[int],
        *,
        timeout: Optional[float] = None,
    ) -> BatchResult:
        items = list(items)
        self.validate(items, requester_user_id)

        pipeline = self._pipeline_factory(self._clock())
        deadline = Deadline(timeout if timeout is not None else self._timeout)
        workers = min(len(items), self._max_in_flight)
        logger.info(
            "Ingesting %d item(s) for user %s with %d worker(s)",
            len(items),
            requester_user_id,
            workers,
        )

        executor = ThreadPoolExecutor(max_workers=workers, thread_name_prefix="ingest")
        outcomes: list[ItemOutcome] = []
        try:
            futures: dict[Future[ItemOutcome], IngestionItem] = {
                executor.submit(pipeline.run, item, requester_user_id, deadline): item
                for item in items
            }
            _done, pending = wait(futures, timeout=deadline.remaining())
            for future in pending:
                # Queued items never start; running ones stop at their next checkpoint.
                future.cancel()
            deadline.cancel()
            for future, item in futures.items():
                outcomes.append(self._collect(future, item))
        finally:
            deadline.cancel()
            executor.shutdown(wait=False, cancel_futures=True)

        result = BatchResult.from_outcomes(outcomes)
        logger.info(
            "Batch finished: %d created, %d failed (%s)",
            len(result.successes),
            len(result.failures),
            result.status.value,
        )
        return result

    @staticmethod
    def _collect(future: Future[ItemOutcome], item: IngestionItem) -> ItemOutcome:
        if future.cancelled() or not future.done():
            logger.warning("Ingestion of %r timed out", item.name)
            return ItemOutcome.failure(item.name, IngestionTimeout.message, kind=IngestionTimeout.kind)
        try:
            return future.result()
        except Exception:
            logger.exception("Item pipeline for %r raised", item.name)
            return ItemOutcome.failure(item.name, INTERNAL_ERROR_REASON, kind="internal")


__all__ = [
    "DEFAULT_TIMEOUT",
    "IngestionOrchestrator",
    "IngestionServices",
    "MAX_IN_FLIGHT",
    "MAX_ITEMS",
]
