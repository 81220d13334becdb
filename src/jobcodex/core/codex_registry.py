from __future__ import annotations

import logging
import threading
from collections.abc import Callable

from pydantic import ValidationError
from sqlalchemy.orm import Session

from jobcodex.core.codex_defaults import default_codexes
from jobcodex.db.repositories import Repository, codex_from_entry
from jobcodex.errors import CodexConflictError, CodexNotFoundError, ConfigurationError
from jobcodex.types import Codex

logger = logging.getLogger(__name__)


def validated(codex: Codex) -> Codex:
    """Run every codex check again; copies made with ``model_copy`` skip them."""
    try:
        return Codex.model_validate(codex.model_dump())
    except ValidationError as exc:
        problems = "; ".join(
            f"{'.'.join(str(part) for part in error['loc']) or 'codex'}: {error['msg']}" for error in exc.errors()
        )
        raise ConfigurationError(f"codex '{codex.id}' is malformed: {problems}") from exc


class CodexRegistry:
    """Read-mostly store of codexes backed by the ``codexes`` table.

    ``initialize()`` seeds the built-in codexes and warms the cache once at
    startup; afterwards ``get`` is served from memory.
    """

    def __init__(self, session_factory: Callable[[], Session]):
        self.session_factory = session_factory
        self._cache: dict[str, Codex] = {}
        self._lock = threading.RLock()
        self._initialized = False

    def initialize(self, *, seed: bool = True) -> dict[str, int]:
        seeded = 0
        with self._lock, self.session_factory() as db:
            repo = Repository(db)
            if seed:
                for codex in default_codexes():
                    if repo.get_codex_entry(codex.id) is None:
                        repo.save_codex(codex)
                        seeded += 1
            self._cache = {}
            for entry in repo.list_codex_entries():
                self._cache[entry.id] = codex_from_entry(entry)
            self._initialized = True

        logger.info("Codex registry ready codexes=%s seeded=%s", len(self._cache), seeded)
        return {"codexes": len(self._cache), "seeded_codexes": seeded}

    def get(self, codex_id: str) -> Codex:
        with self._lock:
            cached = self._cache.get(codex_id)
            if cached is not None:
                return cached

            with self.session_factory() as db:
                entry = Repository(db).get_codex_entry(codex_id)
                if entry is None:
                    raise CodexNotFoundError(codex_id)
                codex = codex_from_entry(entry)
            self._cache[codex_id] = codex
            return codex

    def list(self) -> list[Codex]:
        with self._lock:
            if not self._initialized:
                self.initialize(seed=False)
            return [self._cache[key] for key in sorted(self._cache)]

    def put(self, codex: Codex) -> Codex:
        """Create a codex or replace it whole.

        Content under an id that units already reference is frozen; changes
        must be published under a new id.
        """
        codex = validated(codex)
        with self._lock, self.session_factory() as db:
            repo = Repository(db)
            entry = repo.get_codex_entry(codex.id)
            if entry is not None:
                current = codex_from_entry(entry)
                if current.same_content(codex):
                    self._cache[codex.id] = current
                    return current
                referenced_by = repo.count_units_for_codex(codex.id)
                if referenced_by:
                    raise CodexConflictError(codex.id, referenced_by)

            saved = codex_from_entry(repo.save_codex(codex))
            self._cache[codex.id] = saved
            logger.info("Codex stored id=%s version=%s", saved.id, saved.version)
            return saved
