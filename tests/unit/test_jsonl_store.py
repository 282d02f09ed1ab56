"""Tests for the JSONL file-system TM store."""

import json
from pathlib import Path

import pytest

from l10ntm.core.exceptions import InvalidStoreSettingError, InvalidTOCError, StoreAccessError
from l10ntm.core.models import BlockJob, BlockProps
from l10ntm.stores.jsonl import FsStoreDelegate, JsonlTmStore


def _block_job(job_guid: str, updated_at: str = "t1", provider: str | None = "mt") -> BlockJob:
    return BlockJob(
        job_props={"jobGuid": job_guid, "updatedAt": updated_at, "translationProvider": provider},
        tus=[
            {
                "guid": f"{job_guid}-g",
                "rid": "r",
                "sid": job_guid,
                "nsrc": ["Hello"],
                "ntgt": ["Bonjour"],
                "q": 80,
                "ts": 1,
            }
        ],
    )


@pytest.mark.unit
class TestStoreSettings:
    """Tests for store construction."""

    def test_invalid_access(self, store_dir: Path) -> None:
        """Test unknown access modes are rejected."""
        with pytest.raises(InvalidStoreSettingError, match="access"):
            JsonlTmStore("s", store_dir, access="sometimes")

    def test_invalid_partitioning(self, store_dir: Path) -> None:
        """Test unknown partitioning strategies are rejected."""
        with pytest.raises(InvalidStoreSettingError, match="partitioning"):
            JsonlTmStore("s", store_dir, partitioning="random")

    def test_block_names(self, store_dir: Path) -> None:
        """Test block paths per partitioning strategy."""
        language = JsonlTmStore("s", store_dir)
        by_provider = JsonlTmStore("s", store_dir, partitioning="provider")

        assert language.block_name("en", "fr", "b1") == "blocks/sl=en/tl=fr/block_b1.jsonl"
        assert (
            by_provider.block_name("en", "fr", "b1", "Deep L/v2")
            == "blocks/sl=en/tl=fr/tp=Deep_L_v2/block_b1.jsonl"
        )
        assert by_provider.block_name("en", "fr", "b1") == (
            "blocks/sl=en/tl=fr/tp=default/block_b1.jsonl"
        )
        assert JsonlTmStore.toc_name("en", "fr") == "TOC-sl=en-tl=fr.json"

    def test_repr(self, store_dir: Path) -> None:
        assert repr(JsonlTmStore("s", store_dir)) == "JsonlTmStore(id='s', access=readwrite)"


@pytest.mark.asyncio
class TestJsonlTmStore:
    """Tests for TOC and block operations."""

    async def test_missing_toc_is_empty(self, jsonl_store: JsonlTmStore) -> None:
        """Test a pair without a TOC yields an empty TOC."""
        toc = await jsonl_store.get_toc("en", "fr")

        assert toc.blocks == {}
        assert toc.v == 1

    async def test_write_and_read_blocks(self, jsonl_store: JsonlTmStore, store_dir: Path) -> None:
        """Test written blocks are listed in the TOC and streamed back."""
        async with jsonl_store.writer("en", "fr") as writer:
            jobs = [_block_job("j1"), _block_job("j2")]
            await writer.write_block(BlockProps(block_id="b1"), jobs)

        toc = await jsonl_store.get_toc("en", "fr")
        jobs = [job async for job in jsonl_store.get_tm_blocks("en", "fr", ["b1", "unknown"])]

        assert toc.blocks["b1"].jobs == [("j1", "t1"), ("j2", "t1")]
        assert toc.blocks["b1"].modified.startswith("TS")
        assert [job.job_props["jobGuid"] for job in jobs] == ["j1", "j2"]
        assert jobs[0].tus[0].ntgt == ["Bonjour"]
        saved = json.loads((store_dir / "TOC-sl=en-tl=fr.json").read_text(encoding="utf-8"))
        assert saved["sourceLang"] == "en"
        assert saved["blocks"]["b1"]["blockName"] == "blocks/sl=en/tl=fr/block_b1.jsonl"
        lines = (store_dir / "blocks/sl=en/tl=fr/block_b1.jsonl").read_text().splitlines()
        assert len(lines) == 2

    async def test_empty_job_list_deletes_block(
        self, jsonl_store: JsonlTmStore, store_dir: Path
    ) -> None:
        """Test writing no jobs removes the block and its file."""
        async with jsonl_store.writer("en", "fr") as writer:
            await writer.write_block(BlockProps(block_id="b1"), [_block_job("j1")])
        async with jsonl_store.writer("en", "fr") as writer:
            await writer.write_block(BlockProps(block_id="b1"), [])

        assert (await jsonl_store.get_toc("en", "fr")).blocks == {}
        assert not (store_dir / "blocks/sl=en/tl=fr/block_b1.jsonl").exists()

    async def test_rewrite_under_new_provider_moves_file(self, store_dir: Path) -> None:
        """Test the old file goes away when a block changes name."""
        store = JsonlTmStore("s", store_dir, partitioning="job")
        for provider in ("a", "b"):
            async with store.writer("en", "fr") as writer:
                await writer.write_block(
                    BlockProps(block_id="j1", translation_provider=provider), [_block_job("j1")]
                )

        files = await store.delegate.list_all_files()

        assert "blocks/sl=en/tl=fr/tp=b/block_j1.jsonl" in files
        assert "blocks/sl=en/tl=fr/tp=a/block_j1.jsonl" not in files

    async def test_toc_saved_when_session_fails(
        self, jsonl_store: JsonlTmStore, store_dir: Path
    ) -> None:
        """Test the TOC is written even if the session raises."""
        with pytest.raises(RuntimeError):
            async with jsonl_store.writer("en", "fr") as writer:
                await writer.write_block(BlockProps(block_id="b1"), [_block_job("j1")])
                raise RuntimeError("network down")

        assert (store_dir / "TOC-sl=en-tl=fr.json").exists()
        assert "b1" in (await jsonl_store.get_toc("en", "fr")).blocks

    async def test_unsafe_block_id_is_rejected(
        self, jsonl_store: JsonlTmStore, store_dir: Path
    ) -> None:
        """Test block ids that would not be listed back are refused."""
        with pytest.raises(ValueError, match="job.1"):
            async with jsonl_store.writer("en", "fr") as writer:
                await writer.write_block(BlockProps(block_id="job.1"), [_block_job("job.1")])

        assert (await jsonl_store.get_toc("en", "fr")).blocks == {}
        assert not any(store_dir.rglob("*.jsonl"))

    async def test_readonly_store_rejects_writer(self, store_dir: Path) -> None:
        """Test read-only stores cannot open a write session."""
        store = JsonlTmStore("ro", store_dir, access="readonly")

        with pytest.raises(StoreAccessError, match="readonly"):
            async with store.writer("en", "fr"):
                pass

        assert not (store_dir / "TOC-sl=en-tl=fr.json").exists()

    async def test_missing_block_is_pruned(
        self, jsonl_store: JsonlTmStore, store_dir: Path
    ) -> None:
        """Test TOC entries without a stored block are dropped."""
        async with jsonl_store.writer("en", "fr") as writer:
            await writer.write_block(BlockProps(block_id="b1"), [_block_job("j1")])
        (store_dir / "blocks/sl=en/tl=fr/block_b1.jsonl").unlink()

        assert (await jsonl_store.get_toc("en", "fr")).blocks == {}

    async def test_orphan_blocks_deleted_when_writable(
        self, jsonl_store: JsonlTmStore, store_dir: Path
    ) -> None:
        """Test unknown block files are cleaned up by writable stores only."""
        orphan = store_dir / "blocks/sl=en/tl=fr/block_orphan.jsonl"
        orphan.parent.mkdir(parents=True)
        orphan.write_text("{}\n", encoding="utf-8")

        await JsonlTmStore("ro", store_dir, access="readonly").get_toc("en", "fr")
        assert orphan.exists()

        await jsonl_store.get_toc("en", "fr")
        assert not orphan.exists()

    async def test_corrupted_toc(self, jsonl_store: JsonlTmStore, store_dir: Path) -> None:
        """Test unparsable TOCs raise InvalidTOCError."""
        store_dir.mkdir(parents=True)
        (store_dir / "TOC-sl=en-tl=fr.json").write_text("{not json", encoding="utf-8")

        with pytest.raises(InvalidTOCError, match="Corrupted TOC"):
            await jsonl_store.get_toc("en", "fr")

    async def test_available_lang_pairs(self, jsonl_store: JsonlTmStore) -> None:
        """Test pairs are found from TOCs and block files."""
        async with jsonl_store.writer("en", "fr") as writer:
            await writer.write_block(BlockProps(block_id="b1"), [_block_job("j1")])
        async with jsonl_store.writer("en", "de") as writer:
            await writer.write_block(BlockProps(block_id="b2"), [_block_job("j2")])

        assert await jsonl_store.get_available_lang_pairs() == [("en", "de"), ("en", "fr")]


@pytest.mark.asyncio
class TestFsStoreDelegate:
    """Tests for file operations."""

    async def test_file_round_trip(self, tmp_path: Path) -> None:
        """Test save, list, read and delete."""
        delegate = FsStoreDelegate(tmp_path / "fs")

        assert await delegate.list_all_files() == []
        await delegate.save_file("a/b.txt", "one\n\ntwo\n")

        assert await delegate.list_all_files() == ["a/b.txt"]
        assert await delegate.get_file("a/b.txt") == "one\n\ntwo\n"
        assert [line.strip() async for line in delegate.read_lines("a/b.txt")] == ["one", "two"]

        await delegate.delete_files(["a/b.txt", "missing.txt"])
        assert await delegate.list_all_files() == []

    async def test_missing_file(self, tmp_path: Path) -> None:
        """Test reading a missing file raises FileNotFoundError."""
        with pytest.raises(FileNotFoundError):
            await FsStoreDelegate(tmp_path).get_file("nope.json")
