"""Long-term conversation memory backed by a faiss vector index.

Layout on disk (``memory.path``):

* ``index.faiss`` - faiss inner-product index, one unit vector per record
* ``index.json``  - ordered list of records; position ``i`` matches vector ``i``

Both files are written to temporary siblings and moved into place in the same
save. On load the metadata file is authoritative: if the vector count
disagrees with the record count the index is rebuilt from the record texts.
"""

from __future__ import annotations

import asyncio
import contextlib
import hashlib
import json
import math
import os
import re
from dataclasses import asdict, dataclass, field
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, Protocol

import faiss
import numpy as np

from camwatch.exceptions import EmbeddingError, MemoryPersistenceError, MemoryStoreError
from camwatch.logging import get_logger

log = get_logger(__name__)

INDEX_FILENAME = "index.faiss"
METADATA_FILENAME = "index.json"


@dataclass(frozen=True)
class MemoryRecord:
    """One remembered exchange. Immutable once written."""

    id: int
    text: str
    metadata: dict[str, Any] = field(default_factory=dict)
    created_at: str = ""

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> "MemoryRecord":
        return cls(
            id=int(payload["id"]),
            text=str(payload.get("text", "")),
            metadata=dict(payload.get("metadata") or {}),
            created_at=str(payload.get("created_at") or payload.get("createdAt") or ""),
        )


class Embedder(Protocol):
    dimension: int

    def embed(self, texts: list[str]) -> list[list[float]]:
        """Return one unit-normalised vector per text."""


def _utcnow_iso() -> str:
    return datetime.now(UTC).isoformat()


def _tokenize(text: str) -> list[str]:
    return [token for token in re.findall(r"[\w]+", text.lower()) if token]


def _normalize(values: list[float]) -> list[float]:
    norm = math.sqrt(sum(v * v for v in values))
    if norm <= 1e-12:
        return values
    return [v / norm for v in values]


class LocalHashEmbedder:
    """Deterministic bag-of-words hashing embedder. No model download."""

    def __init__(self, dimension: int = 384):
        self.dimension = max(64, int(dimension))

    def embed(self, texts: list[str]) -> list[list[float]]:
        embeddings: list[list[float]] = []
        for text in texts:
            bucket = [0.0] * self.dimension
            for token in _tokenize(text):
                digest = hashlib.sha1(token.encode("utf-8", errors="ignore")).digest()
                idx = int.from_bytes(digest[:4], byteorder="big", signed=False) % self.dimension
                sign = -1.0 if digest[4] % 2 else 1.0
                bucket[idx] += sign
            embeddings.append(_normalize(bucket))
        return embeddings


class SentenceTransformerEmbedder:
    """all-MiniLM-L6-v2 style sentence embeddings, loaded on first use."""

    def __init__(self, model_name: str, dimension: int = 384):
        self.model_name = model_name
        self.dimension = int(dimension)
        self._model = None

    def _model_ensure(self):
        if self._model is None:
            from sentence_transformers import SentenceTransformer

            log.info("Loading embedding model", model=self.model_name)
            self._model = SentenceTransformer(self.model_name)
        return self._model

    def embed(self, texts: list[str]) -> list[list[float]]:
        model = self._model_ensure()
        vectors = model.encode(texts, normalize_embeddings=True)
        return [list(map(float, row)) for row in vectors]


def create_embedder(kind: str, model_name: str, dimension: int) -> Embedder:
    if kind == "local_hash":
        return LocalHashEmbedder(dimension=dimension)
    if kind == "sentence-transformers":
        return SentenceTransformerEmbedder(model_name=model_name, dimension=dimension)
    raise ValueError(f"Unknown embedder: {kind}")


class VectorMemoryStore:
    """faiss index plus positionally aligned record list."""

    def __init__(
        self,
        directory: Path,
        embedder: Embedder,
        index: faiss.Index,
        records: list[MemoryRecord],
    ):
        self.directory = directory
        self.embedder = embedder
        self.index = index
        self.records = records

    @property
    def index_path(self) -> Path:
        return self.directory / INDEX_FILENAME

    @property
    def metadata_path(self) -> Path:
        return self.directory / METADATA_FILENAME

    @property
    def dimension(self) -> int:
        return int(self.index.d)

    @classmethod
    def open(cls, directory: Path | str, embedder: Embedder) -> "VectorMemoryStore":
        """Load the store from ``directory``, or start an empty one."""
        root = Path(directory).expanduser()
        index_path = root / INDEX_FILENAME
        metadata_path = root / METADATA_FILENAME

        records: list[MemoryRecord] = []
        if metadata_path.exists():
            try:
                payload = json.loads(metadata_path.read_text(encoding="utf-8") or "[]")
                records = [MemoryRecord.from_dict(item) for item in payload]
            except (OSError, ValueError, KeyError, TypeError) as e:
                raise MemoryStoreError(f"Unreadable memory metadata {metadata_path}: {e}") from e

        index: faiss.Index | None = None
        if index_path.exists():
            try:
                index = faiss.read_index(str(index_path))
            except RuntimeError as e:
                log.warning("Unreadable memory index, rebuilding", path=str(index_path), error=str(e))
            if index is not None and index.d != embedder.dimension:
                log.warning("Index dimension mismatch, rebuilding", index_dim=index.d, expected=embedder.dimension)
                index = None
        if index is None:
            index = faiss.IndexFlatIP(embedder.dimension)

        store = cls(root, embedder, index, records)
        if store.index.ntotal != len(records):
            log.warning(
                "Memory index out of sync with metadata, rebuilding from records",
                vectors=store.index.ntotal,
                records=len(records),
            )
            store._rebuild_index()
            store._save()

        log.info("Memory loaded", records=len(records), path=str(root))
        return store

    def _embed(self, texts: list[str]) -> np.ndarray:
        try:
            raw = self.embedder.embed(texts)
        except Exception as e:
            raise EmbeddingError(f"Embedding failed: {e}") from e
        vectors = np.asarray(raw, dtype="float32")
        if vectors.ndim != 2 or vectors.shape != (len(texts), self.dimension):
            raise EmbeddingError(
                f"Embedder returned shape {vectors.shape}, expected ({len(texts)}, {self.dimension})"
            )
        faiss.normalize_L2(vectors)
        return vectors

    def _rebuild_index(self) -> None:
        index = faiss.IndexFlatIP(self.embedder.dimension)
        if self.records:
            index.add(self._embed([record.text for record in self.records]))
        self.index = index

    def _save(self) -> None:
        """Write index and metadata together; both land or the error surfaces."""
        index_tmp = self.index_path.with_suffix(".faiss.tmp")
        metadata_tmp = self.metadata_path.with_suffix(".json.tmp")
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
            faiss.write_index(self.index, str(index_tmp))
            metadata_tmp.write_text(
                json.dumps([asdict(record) for record in self.records], ensure_ascii=False, indent=2),
                encoding="utf-8",
            )
            os.replace(index_tmp, self.index_path)
            os.replace(metadata_tmp, self.metadata_path)
        except (OSError, RuntimeError) as e:
            for tmp in (index_tmp, metadata_tmp):
                with contextlib.suppress(OSError):
                    tmp.unlink(missing_ok=True)
            raise MemoryPersistenceError(str(self.directory), str(e)) from e

    def add(self, text: str, metadata: dict[str, Any] | None = None) -> MemoryRecord:
        vector = self._embed([text])
        record = MemoryRecord(
            id=len(self.records),
            text=text,
            metadata=dict(metadata or {}),
            created_at=_utcnow_iso(),
        )
        self.index.add(vector)
        self.records.append(record)
        try:
            self._save()
        except MemoryPersistenceError:
            # keep index and records aligned with what is on disk
            self.records.pop()
            self.index.remove_ids(np.array([record.id], dtype="int64"))
            raise
        return record

    def search_scored(self, query: str, top_k: int = 3) -> list[tuple[MemoryRecord, float]]:
        if not self.records:
            return []
        k = min(max(0, int(top_k)), len(self.records), self.index.ntotal)
        if k == 0:
            return []
        scores, labels = self.index.search(self._embed([query]), k)
        hits: list[tuple[MemoryRecord, float]] = []
        for position, score in zip(labels[0].tolist(), scores[0].tolist()):
            if 0 <= position < len(self.records):
                hits.append((self.records[position], float(score)))
        return hits

    def search(self, query: str, top_k: int = 3) -> list[MemoryRecord]:
        return [record for record, _ in self.search_scored(query, top_k)]

    def delete_files(self) -> None:
        self.records = []
        self.index = faiss.IndexFlatIP(self.embedder.dimension)
        remove_store_files(self.directory)

    def stats(self) -> dict[str, Any]:
        return {"total": len(self.records), "dimension": self.dimension, "path": str(self.directory)}


def remove_store_files(directory: Path | str) -> None:
    """Delete both persisted files and any leftover temporaries, readable or not."""
    root = Path(directory).expanduser()
    for name in (INDEX_FILENAME, METADATA_FILENAME):
        for path in (root / name, root / f"{name}.tmp"):
            path.unlink(missing_ok=True)


class MemoryStoreHandle:
    """Explicitly owned, lazily opened memory store.

    The first caller starts one opening task; concurrent callers await that
    same task, so a process never ends up with two independent stores for one
    directory.
    """

    def __init__(self, directory: Path | str, embedder: Embedder):
        self.directory = Path(directory).expanduser()
        self.embedder = embedder
        self._store: VectorMemoryStore | None = None
        self._opening: asyncio.Task[VectorMemoryStore] | None = None

    @classmethod
    def from_config(cls, config=None) -> "MemoryStoreHandle":
        from camwatch.config import get_config

        cfg = config or get_config()
        embedder = create_embedder(cfg.memory.embedder, cfg.memory.embedding_model, cfg.memory.dimension)
        return cls(cfg.resolved_memory_path(), embedder)

    async def get(self) -> VectorMemoryStore:
        if self._store is not None:
            return self._store
        if self._opening is None:
            self._opening = asyncio.create_task(
                asyncio.to_thread(VectorMemoryStore.open, self.directory, self.embedder)
            )
        try:
            store = await asyncio.shield(self._opening)
        except Exception:
            # let the next caller retry the open
            self._opening = None
            raise
        self._store = store
        return store

    async def add(self, text: str, metadata: dict[str, Any] | None = None) -> MemoryRecord:
        store = await self.get()
        record = await asyncio.to_thread(store.add, text, metadata)
        log.info("Memory saved", id=record.id, preview=text[:30])
        return record

    async def search(self, query: str, top_k: int = 3) -> list[MemoryRecord]:
        store = await self.get()
        if not store.records:
            return []
        results = await asyncio.to_thread(store.search, query, top_k)
        log.info("Memory recalled", hits=len(results))
        return results

    async def search_scored(self, query: str, top_k: int = 3) -> list[tuple[MemoryRecord, float]]:
        store = await self.get()
        if not store.records:
            return []
        return await asyncio.to_thread(store.search_scored, query, top_k)

    async def clear(self) -> None:
        """Drop the store and its files without opening it first."""
        if self._opening is not None and not self._opening.done():
            # an open that is still running could save after the delete
            with contextlib.suppress(MemoryStoreError):
                await asyncio.shield(self._opening)
        await asyncio.to_thread(remove_store_files, self.directory)
        self._store = None
        self._opening = None
        log.info("Memory cleared", path=str(self.directory))

    async def stats(self) -> dict[str, Any]:
        store = await self.get()
        return store.stats()
