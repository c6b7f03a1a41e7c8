import asyncio
import time
from pathlib import Path

import pytest

from camwatch.config import Config, MemoryConfig
from camwatch.exceptions import MemoryStoreError
from camwatch.memory import (
    INDEX_FILENAME,
    METADATA_FILENAME,
    LocalHashEmbedder,
    MemoryStoreHandle,
    SentenceTransformerEmbedder,
    VectorMemoryStore,
)


@pytest.mark.asyncio
async def test_concurrent_first_access_opens_once(tmp_path: Path, monkeypatch):
    opened: list[Path] = []
    original_open = VectorMemoryStore.open.__func__

    def _slow_open(cls, directory, embedder):
        opened.append(Path(directory))
        time.sleep(0.05)
        return original_open(cls, directory, embedder)

    monkeypatch.setattr(VectorMemoryStore, "open", classmethod(_slow_open))
    handle = MemoryStoreHandle(tmp_path, LocalHashEmbedder())

    stores = await asyncio.gather(*(handle.get() for _ in range(5)))

    assert len(opened) == 1
    assert all(store is stores[0] for store in stores)


@pytest.mark.asyncio
async def test_failed_open_can_be_retried(tmp_path: Path):
    (tmp_path / METADATA_FILENAME).write_text("{not json", encoding="utf-8")
    handle = MemoryStoreHandle(tmp_path, LocalHashEmbedder())

    with pytest.raises(MemoryStoreError):
        await handle.get()

    (tmp_path / METADATA_FILENAME).write_text("[]", encoding="utf-8")
    store = await handle.get()

    assert store.records == []


@pytest.mark.asyncio
async def test_search_on_empty_store_does_not_embed(tmp_path: Path, monkeypatch):
    handle = MemoryStoreHandle(tmp_path, LocalHashEmbedder())

    def _no_embedding(texts):
        raise AssertionError("embedding must not run for an empty store")

    monkeypatch.setattr(handle.embedder, "embed", _no_embedding)

    assert await handle.search("anything", 3) == []
    assert await handle.search_scored("anything", 3) == []


@pytest.mark.asyncio
async def test_add_and_search_through_handle(tmp_path: Path):
    handle = MemoryStoreHandle(tmp_path, LocalHashEmbedder())
    await handle.add("User: check entrance\nAssistant: Entrance OK", {"checked": 1})
    await handle.add("User: weather\nAssistant: sunny")

    hits = await handle.search("check entrance", 1)

    assert [hit.text for hit in hits] == ["User: check entrance\nAssistant: Entrance OK"]
    assert (await handle.stats())["total"] == 2


@pytest.mark.asyncio
async def test_clear_removes_files_and_resets(tmp_path: Path):
    handle = MemoryStoreHandle(tmp_path, LocalHashEmbedder())
    await handle.add("something to forget")

    await handle.clear()

    stats = await handle.stats()
    assert stats["total"] == 0
    assert stats["dimension"] == 384
    assert not (tmp_path / INDEX_FILENAME).exists()
    assert not (tmp_path / METADATA_FILENAME).exists()


@pytest.mark.asyncio
async def test_clear_recovers_unreadable_store(tmp_path: Path, monkeypatch):
    (tmp_path / METADATA_FILENAME).write_text("{not json", encoding="utf-8")
    (tmp_path / INDEX_FILENAME).write_bytes(b"garbage")
    (tmp_path / f"{METADATA_FILENAME}.tmp").write_text("[]", encoding="utf-8")
    handle = MemoryStoreHandle(tmp_path, LocalHashEmbedder())

    with pytest.raises(MemoryStoreError):
        await handle.stats()

    def _no_open(cls, directory, embedder):
        raise AssertionError("clear must not open the store")

    original_open = VectorMemoryStore.__dict__["open"]
    monkeypatch.setattr(VectorMemoryStore, "open", classmethod(_no_open))
    await handle.clear()
    monkeypatch.setattr(VectorMemoryStore, "open", original_open)

    assert not (tmp_path / INDEX_FILENAME).exists()
    assert not (tmp_path / METADATA_FILENAME).exists()
    assert not (tmp_path / f"{METADATA_FILENAME}.tmp").exists()
    assert (await handle.stats())["total"] == 0


def test_from_config_uses_memory_section(tmp_path: Path):
    config = Config(memory=MemoryConfig(path=str(tmp_path / "mem"), embedder="local_hash", dimension=128))

    handle = MemoryStoreHandle.from_config(config)

    assert handle.directory == (tmp_path / "mem").resolve()
    assert isinstance(handle.embedder, LocalHashEmbedder)
    assert handle.embedder.dimension == 128


def test_from_config_defaults_to_sentence_transformers(tmp_path: Path):
    config = Config(memory=MemoryConfig(path=str(tmp_path)))

    handle = MemoryStoreHandle.from_config(config)

    assert isinstance(handle.embedder, SentenceTransformerEmbedder)
    assert handle.embedder.model_name == "sentence-transformers/all-MiniLM-L6-v2"
    # the model is only loaded on first embed
    assert handle.embedder._model is None
