# Copyright 2025 KTTC AI (https://github.com/kttc-ai)
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""File-system TM store using JSONL blocks.

Layout under the base directory:
- ``TOC-sl=<src>-tl=<tgt>.json``: table of contents of a pair
- ``blocks/sl=<src>/tl=<tgt>/tp=<provider>/block_<id>.jsonl`` for ``job``
  and ``provider`` partitioning
- ``blocks/sl=<src>/tl=<tgt>/block_<id>.jsonl`` for ``language`` and ``none``

Each block line holds one job: ``{"jobProps": {...}, "tus": [...]}``.
"""

from __future__ import annotations

import asyncio
import json
import logging
import re
import time
from collections.abc import AsyncIterator, Sequence
from contextlib import asynccontextmanager
from itertools import islice
from pathlib import Path
from typing import IO, ClassVar

from l10ntm.core.exceptions import InvalidTOCError
from l10ntm.core.models import TOC, BlockJob, BlockProps, Partitioning, StoreAccess, TOCBlock
from l10ntm.stores.base import TMStore

logger = logging.getLogger(__name__)

_PROVIDER_BLOCK = re.compile(
    r"blocks/sl=(?P<sl>[^/]+)/tl=(?P<tl>[^/]+)/tp=(?P<tp>[^/]+)/"
    r"block_(?P<block_id>[0-9A-Za-z_-]+)\.jsonl$"
)
_LANGUAGE_BLOCK = re.compile(
    r"blocks/sl=(?P<sl>[^/]+)/tl=(?P<tl>[^/]+)/block_(?P<block_id>[0-9A-Za-z_-]+)\.jsonl$"
)
_TOC_FILE = re.compile(r"^TOC-sl=(?P<sl>.+)-tl=(?P<tl>.+)\.json$")
_BLOCK_ID = re.compile(r"[0-9A-Za-z_-]+")
_UNSAFE_PATH_CHARS = re.compile(r"[^0-9A-Za-z_.-]")

# Lines read per worker-thread hop while streaming a block
READ_BATCH_LINES = 200


class FsStoreDelegate:
    """File operations rooted at a base directory, run off the event loop."""

    def __init__(self, base_dir: str | Path):
        self.base_dir = Path(base_dir)

    def _path(self, name: str) -> Path:
        return self.base_dir / name

    async def ensure_base_dir_exists(self) -> None:
        await asyncio.to_thread(self.base_dir.mkdir, parents=True, exist_ok=True)

    async def list_all_files(self) -> list[str]:
        """Relative POSIX paths of every file under the base directory."""

        def walk() -> list[str]:
            if not self.base_dir.exists():
                return []
            return sorted(
                p.relative_to(self.base_dir).as_posix()
                for p in self.base_dir.rglob("*")
                if p.is_file()
            )

        return await asyncio.to_thread(walk)

    async def get_file(self, name: str) -> str:
        return await asyncio.to_thread(self._path(name).read_text, encoding="utf-8")

    async def save_file(self, name: str, contents: str) -> None:
        def write() -> None:
            path = self._path(name)
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(contents, encoding="utf-8")

        await asyncio.to_thread(write)

    async def delete_files(self, names: Sequence[str]) -> None:
        def unlink() -> None:
            for name in names:
                self._path(name).unlink(missing_ok=True)

        await asyncio.to_thread(unlink)

    async def read_lines(self, name: str) -> AsyncIterator[str]:
        """Stream non-empty lines of a file in small batches."""
        handle: IO[str] = await asyncio.to_thread(self._path(name).open, encoding="utf-8")
        try:
            while True:
                batch = await asyncio.to_thread(lambda: list(islice(handle, READ_BATCH_LINES)))
                if not batch:
                    break
                for line in batch:
                    if line.strip():
                        yield line
        finally:
            handle.close()


class JsonlStoreWriter:
    """Write session of a :class:`JsonlTmStore` for one pair."""

    def __init__(self, store: JsonlTmStore, toc: TOC):
        self.store = store
        self.toc = toc
        self.blocks_written = 0
        self.blocks_deleted = 0

    async def write_block(self, block_props: BlockProps, jobs: Sequence[BlockJob]) -> None:
        """Replace a block. An empty job list deletes it.

        Raises:
            ValueError: If the block id cannot be stored as a file name
        """
        block_id = block_props.block_id
        if not _BLOCK_ID.fullmatch(block_id):
            raise ValueError(f"Invalid block id {block_id!r} for TM store {self.store.id}")
        existing = self.toc.blocks.get(block_id)
        if not jobs:
            if existing is not None:
                if existing.block_name:
                    await self.store.delegate.delete_files([existing.block_name])
                del self.toc.blocks[block_id]
                self.blocks_deleted += 1
                logger.info(f"Deleted block {block_id} from TM store {self.store.id}")
            return
        block_name = self.store.block_name(
            self.toc.source_lang, self.toc.target_lang, block_id, block_props.translation_provider
        )
        lines = [json.dumps(job.to_dict(), ensure_ascii=False) for job in jobs]
        await self.store.delegate.save_file(block_name, "\n".join(lines) + "\n")
        if existing is not None and existing.block_name and existing.block_name != block_name:
            await self.store.delegate.delete_files([existing.block_name])
        self.toc.blocks[block_id] = TOCBlock(
            block_name=block_name,
            modified=f"TS{time.time()}",
            jobs=[(job.job_props["jobGuid"], job.job_props.get("updatedAt") or "") for job in jobs],
        )
        self.blocks_written += 1
        logger.debug(f"Wrote block {block_id} with {len(jobs)} jobs to TM store {self.store.id}")


class JsonlTmStore(TMStore):
    """TM store keeping JSONL blocks and JSON TOCs in a directory.

    Example:
        >>> store = JsonlTmStore("shared", "/data/tm", partitioning="job")
        >>> toc = await store.get_toc("en", "fr")
        >>> async with store.writer("en", "fr") as writer:
        ...     await writer.write_block(BlockProps(block_id="job1"), [block_job])
    """

    type: ClassVar[str] = "jsonl"

    def __init__(
        self,
        id: str,
        base_dir: str | Path,
        access: StoreAccess | str = StoreAccess.READWRITE,
        partitioning: Partitioning | str = Partitioning.LANGUAGE,
        delegate: FsStoreDelegate | None = None,
    ):
        super().__init__(id, access, partitioning)
        self.delegate = delegate or FsStoreDelegate(base_dir)

    @staticmethod
    def toc_name(source_lang: str, target_lang: str) -> str:
        return f"TOC-sl={source_lang}-tl={target_lang}.json"

    def block_name(
        self,
        source_lang: str,
        target_lang: str,
        block_id: str,
        translation_provider: str | None = None,
    ) -> str:
        prefix = f"blocks/sl={source_lang}/tl={target_lang}"
        if self.partitioning in (Partitioning.LANGUAGE, Partitioning.NONE):
            return f"{prefix}/block_{block_id}.jsonl"
        provider = _UNSAFE_PATH_CHARS.sub("_", translation_provider or "default")
        return f"{prefix}/tp={provider}/block_{block_id}.jsonl"

    def _parse_block_name(self, name: str) -> re.Match[str] | None:
        return _PROVIDER_BLOCK.search(name) or _LANGUAGE_BLOCK.search(name)

    async def _list_blocks(self, source_lang: str, target_lang: str) -> dict[str, str]:
        blocks: dict[str, str] = {}
        for name in await self.delegate.list_all_files():
            match = self._parse_block_name(name)
            if match and match["sl"] == source_lang and match["tl"] == target_lang:
                blocks[match["block_id"]] = name
        return blocks

    async def get_available_lang_pairs(self) -> list[tuple[str, str]]:
        pairs: set[tuple[str, str]] = set()
        for name in await self.delegate.list_all_files():
            match = _TOC_FILE.match(name) or self._parse_block_name(name)
            if match:
                pairs.add((match["sl"], match["tl"]))
        return sorted(pairs)

    async def get_toc(self, source_lang: str, target_lang: str) -> TOC:
        """Load the TOC of a pair and reconcile it with stored blocks.

        Blocks listed in the TOC but missing from storage are dropped. Stored
        blocks the TOC does not know are deleted when the store is writable.

        Raises:
            InvalidTOCError: If the TOC file cannot be parsed
        """
        await self.delegate.ensure_base_dir_exists()
        try:
            raw = await self.delegate.get_file(self.toc_name(source_lang, target_lang))
        except FileNotFoundError:
            logger.debug(f"No TOC found for {source_lang}->{target_lang} in TM store {self.id}")
            toc = TOC(source_lang=source_lang, target_lang=target_lang)
        else:
            try:
                toc = TOC.model_validate_json(raw)
            except ValueError as e:
                raise InvalidTOCError(
                    f"Corrupted TOC for {source_lang}->{target_lang} in TM store {self.id}: {e}"
                ) from e
        stored = await self._list_blocks(source_lang, target_lang)
        for block_id in list(toc.blocks):
            if block_id not in stored:
                logger.warning(f"Block {block_id} missing from TM store {self.id}, pruning TOC")
                del toc.blocks[block_id]
        orphans = [name for block_id, name in stored.items() if block_id not in toc.blocks]
        if orphans and self.access.can_write:
            logger.warning(f"Deleting {len(orphans)} orphan blocks from TM store {self.id}")
            await self.delegate.delete_files(orphans)
        return toc

    async def get_tm_blocks(
        self, source_lang: str, target_lang: str, block_ids: Sequence[str]
    ) -> AsyncIterator[BlockJob]:
        toc = await self.get_toc(source_lang, target_lang)
        for block_id in block_ids:
            block = toc.blocks.get(block_id)
            if block is None or not block.block_name:
                logger.info(f"Block not found in TM store {self.id}: {block_id}")
                continue
            async for line in self.delegate.read_lines(block.block_name):
                yield BlockJob.model_validate_json(line)

    @asynccontextmanager
    async def writer(self, source_lang: str, target_lang: str) -> AsyncIterator[JsonlStoreWriter]:
        self.ensure_writable("write to")
        toc = await self.get_toc(source_lang, target_lang)
        session = JsonlStoreWriter(self, toc)
        try:
            yield session
        finally:
            await self.delegate.save_file(
                self.toc_name(source_lang, target_lang),
                json.dumps(toc.model_dump(by_alias=True), indent="\t", ensure_ascii=False),
            )
            logger.info(
                f"Saved TOC {source_lang}->{target_lang} in TM store {self.id}: "
                f"{session.blocks_written} blocks written, {session.blocks_deleted} deleted"
            )


__all__ = ["FsStoreDelegate", "JsonlStoreWriter", "JsonlTmStore"]
