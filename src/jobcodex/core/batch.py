from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Iterator
from typing import Any

from sqlalchemy.orm import Session

from jobcodex.config import Settings, get_settings
from jobcodex.core.codex_registry import CodexRegistry
from jobcodex.core.events import EventBus
from jobcodex.core.extraction import ExtractionOrchestrator
from jobcodex.db.repositories import Repository, batch_to_dict
from jobcodex.errors import NotFoundError

logger = logging.getLogger(__name__)


def chunked(items: list[str], size: int) -> Iterator[list[str]]:
    if size < 1:
        raise ValueError("concurrency must be at least 1")
    for start in range(0, len(items), size):
        yield items[start : start + size]


class BatchRunner:
    """Pushes a batch's units through extraction, at most ``concurrency`` at a time.

    Every unit in a chunk runs on its own worker thread and session; the next
    chunk starts only after all of them settle. ``completed_units`` is written
    here and nowhere else, once per chunk.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        *,
        registry: CodexRegistry,
        gateway: Any | None = None,
        settings: Settings | None = None,
        event_bus: EventBus | None = None,
    ):
        self.session_factory = session_factory
        self.registry = registry
        self.gateway = gateway
        self.settings = settings or get_settings()
        self.event_bus = event_bus

    async def run(
        self,
        batch_id: str,
        unit_ids: list[str],
        concurrency: int | None = None,
        *,
        on_progress: Callable[[int], None] | None = None,
    ) -> dict[str, Any]:
        size = concurrency or self.settings.batch_concurrency
        chunks = list(chunked(unit_ids, size))
        total = len(unit_ids)

        with self.session_factory() as db:
            repo = Repository(db)
            if repo.get_batch(batch_id) is None:
                raise NotFoundError(f"batch {batch_id} not found")
            repo.update_batch(batch_id, status="processing")

        logger.info("Batch started batch_id=%s units=%s concurrency=%s", batch_id, total, size)
        processed = 0
        try:
            for index, chunk in enumerate(chunks, start=1):
                results = await asyncio.gather(
                    *(asyncio.to_thread(self._process_unit, unit_id) for unit_id in chunk),
                    return_exceptions=True,
                )
                for unit_id, result in zip(chunk, results):
                    if isinstance(result, BaseException):
                        logger.error("Batch unit raised batch_id=%s unit_id=%s error=%s", batch_id, unit_id, result)

                processed = min(processed + len(chunk), total)
                with self.session_factory() as db:
                    Repository(db).update_batch(batch_id, completed_units=processed)
                logger.info("Batch chunk %s/%s settled batch_id=%s completed=%s", index, len(chunks), batch_id, processed)
                if on_progress is not None:
                    on_progress(processed)
        except Exception as exc:
            logger.exception("Batch runner crashed batch_id=%s", batch_id)
            with self.session_factory() as db:
                Repository(db).update_batch(batch_id, status="error", error=str(exc), completed=True)
            raise

        with self.session_factory() as db:
            batch = Repository(db).update_batch(batch_id, status="completed", completed=True)
            return batch_to_dict(batch)

    def _process_unit(self, unit_id: str) -> dict[str, Any]:
        with self.session_factory() as db:
            orchestrator = ExtractionOrchestrator(
                db,
                registry=self.registry,
                gateway=self.gateway,
                settings=self.settings,
                event_bus=self.event_bus,
            )
            return orchestrator.process(unit_id)
