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

"""Translation memory manager.

Owns the TM instance cache and coordinates the local database with remote
TM stores:
- Job lifecycle (manifest, processing of request/response pairs, deletion)
- Sync-down: pull changed blocks from a store into the local TM
- Sync-up: plan then push local jobs to a store, by partitioning strategy
- Bootstrap: replace local pairs with the full content of a store

All multi-pair operations run through a bounded :class:`TaskQueue`.
"""

from __future__ import annotations

import logging
import re
import secrets
from collections import defaultdict
from collections.abc import Collection, Sequence
from typing import Any, cast

from l10ntm.core.exceptions import UnknownStoreError
from l10ntm.core.models import (
    TOC,
    TU,
    BlockJob,
    BlockProps,
    BootstrapOptions,
    BootstrapResult,
    BootstrapStats,
    DeltaRow,
    Job,
    JobStatus,
    Partitioning,
    SyncDownOptions,
    SyncDownPlan,
    SyncUpOptions,
    SyncUpPlan,
    TmStoreInfo,
    TMStats,
)
from l10ntm.core.normalized import hash_string
from l10ntm.memory.dal import REGRESSION_UPDATED_AT, TMDatabase, utc_now
from l10ntm.memory.task_queue import TaskQueue
from l10ntm.memory.tm import TM
from l10ntm.stores.base import StoreWriter, TMStore
from l10ntm.utils.config import Settings, TMContext

logger = logging.getLogger(__name__)

_SAFE_BLOCK_ID = re.compile(r"[0-9A-Za-z_-]+")


def job_block_id(job_guid: str) -> str:
    """Block id of a job-partitioned block.

    Job guids outside the block id alphabet are hashed so the block file
    stays addressable.
    """
    return job_guid if _SAFE_BLOCK_ID.fullmatch(job_guid) else hash_string(job_guid)


def _unique(items: Sequence[str | None]) -> list[str]:
    return [item for item in dict.fromkeys(items) if item is not None]


def _select_pairs(
    pairs: Sequence[tuple[str, str]], source_lang: str | None, target_lang: str | None
) -> list[tuple[str, str]]:
    if source_lang and target_lang:
        return [(source_lang, target_lang)]
    return [
        (src, tgt)
        for src, tgt in pairs
        if (source_lang is None or src == source_lang)
        and (target_lang is None or tgt == target_lang)
    ]


class TMManager:
    """Entry point to the local translation memory and its stores.

    Example:
        >>> manager = TMManager(TMDatabase("l10ntm.db"), [JsonlTmStore("shared", "/srv/tm")])
        >>> plans = await manager.sync_down("shared", SyncDownOptions(dryrun=True))
        >>> for plan in plans:
        ...     print(plan.source_lang, plan.target_lang, plan.blocks_to_store)
    """

    def __init__(
        self,
        dal: TMDatabase,
        tm_stores: Sequence[TMStore] = (),
        context: TMContext | None = None,
    ):
        """Initialize the manager.

        Args:
            dal: Local TM database
            tm_stores: Configured remote stores
            context: Runtime context (regression mode, default parallelism)
        """
        self.dal = dal
        self.context = context or TMContext()
        self._tm_stores: dict[str, TMStore] = {store.id.lower(): store for store in tm_stores}
        self._tm_cache: dict[tuple[str, str], TM] = {}
        self._block_seq = 0

    @classmethod
    def from_settings(cls, settings: Settings) -> TMManager:
        """Build a manager from application settings."""
        from l10ntm.stores import create_tm_store

        settings.base_dir.mkdir(parents=True, exist_ok=True)
        return cls(
            TMDatabase(settings.tm_db_path),
            [create_tm_store(config) for config in settings.tm_stores],
            settings.to_context(),
        )

    def close(self) -> None:
        self.clear_tm_cache()
        self.dal.close()

    # --- identity & caching --------------------------------------------------

    def get_tm(self, source_lang: str, target_lang: str) -> TM:
        """Get the cached TM of a pair, creating it on first use."""
        key = (source_lang, target_lang)
        tm = self._tm_cache.get(key)
        if tm is None:
            tm = TM(
                source_lang,
                target_lang,
                self.dal.tus(source_lang, target_lang),
                regression=self.context.regression,
            )
            self._tm_cache[key] = tm
        return tm

    def clear_tm_cache(self) -> None:
        self._tm_cache.clear()

    def generate_job_guid(self) -> str:
        """Return a new job id, sequence-based in regression mode."""
        if self.context.regression:
            return f"xxx{self.dal.jobs.get_job_count()}xxx"
        return secrets.token_urlsafe(16)

    def generate_block_id(self, taken: Collection[str] = ()) -> str:
        """Return a new block id.

        In regression mode ids are ``blk<n>``; ids in ``taken``, usually the
        blocks already listed in the pair's TOC, are skipped.
        """
        if self.context.regression:
            self._block_seq += 1
            while f"blk{self._block_seq}" in taken:
                self._block_seq += 1
            return f"blk{self._block_seq}"
        return secrets.token_urlsafe(16)


    @property
    def tm_store_ids(self) -> list[str]:
        return [store.id for store in self._tm_stores.values()]

    def get_tm_store(self, store_id: str | TMStore) -> TMStore:
        """Resolve a store by case-insensitive id.

        Raises:
            UnknownStoreError: If no store has that id
        """
        if isinstance(store_id, TMStore):
            return store_id
        store = self._tm_stores.get(store_id.lower())
        if store is None:
            raise UnknownStoreError(store_id, self.tm_store_ids)
        return store

    def get_tm_store_info(self, store_id: str) -> TmStoreInfo:
        return self.get_tm_store(store_id).info()

    def _queue(self, parallelism: int | None) -> TaskQueue:
        return TaskQueue(parallelism or self.context.parallelism)

    # --- jobs ----------------------------------------------------------------

    async def create_job_manifest(self) -> dict[str, Any]:
        """Start a new job: fresh guid with ``created`` status."""
        return {"jobGuid": self.generate_job_guid(), "status": JobStatus.CREATED.value}

    async def process_job(
        self,
        job_response: Job | dict[str, Any] | None = None,
        job_request: Job | dict[str, Any] | None = None,
    ) -> Job:
        """Merge a job into the TM.

        Rules:
        - Request and response, but the response has neither TUs nor
          inflight guids: the response is cancelled and nothing is stored.
        - Request without response still in ``created`` status: the request
          is cancelled and nothing is stored.
        - Otherwise both sides are stamped with a new ``updatedAt``, request
          TUs are restricted to the guids the response accepted and the job
          is saved.

        Returns:
            The stored job, or the cancelled one
        """
        response = (
            Job.model_validate(job_response) if isinstance(job_response, dict) else job_response
        )
        request = Job.model_validate(job_request) if isinstance(job_request, dict) else job_request
        if response is None and request is None:
            raise ValueError("process_job needs a job request or a job response")

        if request is not None and response is not None and not (response.tus or response.inflight):
            logger.info(f"Job {response.job_guid} came back empty, cancelling")
            return response.model_copy(update={"status": JobStatus.CANCELLED.value})
        if request is not None and response is None and request.status == JobStatus.CREATED.value:
            logger.info(f"Job {request.job_guid} was never sent, cancelling")
            return request.model_copy(update={"status": JobStatus.CANCELLED.value})

        updated_at = REGRESSION_UPDATED_AT if self.context.regression else utc_now()
        if request is not None:
            tus = request.tus
            if response is not None:
                accepted = set(response.inflight or []) | {tu.guid for tu in response.tus}
                tus = [tu for tu in tus if tu.guid in accepted]
            request = request.model_copy(
                update={"updated_at": updated_at, "tus": [TU.as_source(tu) for tu in tus]}
            )
        if response is not None:
            response = response.model_copy(
                update={
                    "updated_at": updated_at,
                    "tus": [TU.as_target(tu) for tu in response.tus],
                }
            )

        job = self._merge_job_pair(request, response)
        existing = self.dal.jobs.get_job_row(job.job_guid)
        tm_store = existing["tm_store"] if existing is not None else None
        self.dal.tus(job.source_lang, job.target_lang).save_jobs([job], tm_store)
        logger.info(f"Saved job {job.job_guid} with {len(job.tus)} TUs ({job.status})")
        return job

    @staticmethod
    def _merge_job_pair(request: Job | None, response: Job | None) -> Job:
        """Combine request source TUs with response target TUs by guid."""
        if response is None:
            return cast(Job, request)
        props: dict[str, Any] = {}
        if request is not None:
            props.update(request.job_props())
        props.update(response.job_props())
        sources = {tu.guid: tu for tu in request.tus} if request is not None else {}

        tus: list[TU] = []
        for tu in response.tus:
            source = sources.get(tu.guid)
            if source is None:
                tus.append(tu)
            else:
                tus.append(TU.as_pair({**source.to_dict(), **tu.to_dict()}))
        answered = {tu.guid for tu in response.tus}
        for guid in response.inflight or []:
            if guid in answered:
                continue
            source = sources.get(guid)
            base = source.to_dict() if source is not None else {"guid": guid}
            tus.append(
                TU.model_validate(
                    {**base, "inflight": True, "q": 0, "ts": 0, "jobGuid": response.job_guid}
                )
            )
        return Job.model_validate({**props, "tus": tus})

    async def get_job(self, job_guid: str) -> Job | None:
        """Load a job with its TUs and inflight guids."""
        return self.dal.jobs.get_job(job_guid)

    async def delete_job(self, job_guid: str) -> None:
        """Delete a job and its TUs.

        Raises:
            JobNotFoundError: If the job does not exist
        """
        self.dal.jobs.delete_job(job_guid)
        logger.info(f"Deleted job {job_guid}")

    async def get_available_lang_pairs(self) -> list[tuple[str, str]]:
        return self.dal.jobs.get_available_lang_pairs()

    async def get_job_toc(self, source_lang: str, target_lang: str) -> list[dict[str, Any]]:
        return self.dal.jobs.get_job_toc(source_lang, target_lang)

    async def get_stats(self) -> list[TMStats]:
        """Size of every local pair."""
        return [
            await self.get_tm(src, tgt).get_stats()
            for src, tgt in await self.get_available_lang_pairs()
        ]

    async def get_tm_store_tocs(
        self,
        store: str | TMStore,
        source_lang: str | None = None,
        target_lang: str | None = None,
        parallelism: int | None = None,
    ) -> list[TOC]:
        """Fetch the TOCs of a store for the selected pairs."""
        tm_store = self.get_tm_store(store)
        tm_store.ensure_readable("read")
        pairs = _select_pairs(
            await tm_store.get_available_lang_pairs(), source_lang, target_lang
        )
        return await self._queue(parallelism).run(
            [lambda pair=pair: tm_store.get_toc(*pair) for pair in pairs]
        )

    # --- sync-down -----------------------------------------------------------

    async def prepare_sync_down(
        self,
        store: TMStore,
        source_lang: str,
        target_lang: str,
        options: SyncDownOptions,
    ) -> SyncDownPlan:
        """Plan which blocks to fetch and which local jobs to delete."""
        alias = options.store_alias or store.id
        toc = await store.get_toc(source_lang, target_lang)
        deltas = self.dal.tus(source_lang, target_lang).get_job_deltas(toc, alias)

        to_fetch: list[DeltaRow] = []
        for row in deltas:
            if row.remote_job_guid is None:
                continue
            if row.local_job_guid is None or row.tm_store == alias:
                to_fetch.append(row)
            elif row.tm_store is None:
                logger.warning(
                    f"Job {row.remote_job_guid} exists locally without a TM store and differs "
                    f"from {alias}, leaving it untouched"
                )
            else:
                logger.warning(
                    f"Job {row.remote_job_guid} in {alias} belongs locally to TM store "
                    f"{row.tm_store}, skipping"
                )
        jobs_to_delete = [
            row.local_job_guid
            for row in deltas
            if row.local_job_guid is not None
            and row.remote_job_guid is None
            and row.tm_store == alias
        ]
        return SyncDownPlan(
            source_lang=source_lang,
            target_lang=target_lang,
            blocks_to_store=_unique([row.block_id for row in to_fetch]),
            jobs_to_delete=jobs_to_delete,
        )

    async def execute_sync_down(
        self, store: TMStore, plan: SyncDownPlan, options: SyncDownOptions
    ) -> None:
        """Fetch planned blocks into the local TM and delete extra jobs if asked."""
        source_lang, target_lang = plan.source_lang, plan.target_lang
        alias = options.store_alias or store.id
        tus = self.dal.tus(source_lang, target_lang)
        if not plan.blocks_to_store and not (options.delete_extra_jobs and plan.jobs_to_delete):
            logger.info(f"Nothing to sync down from {store.id} for {source_lang}->{target_lang}")
            return
        if plan.blocks_to_store:
            owner = None if options.erase_parent_tm_store else alias
            saved = skipped = 0
            async for block_job in store.get_tm_blocks(
                source_lang, target_lang, plan.blocks_to_store
            ):
                job = self._job_from_block(block_job, source_lang, target_lang)
                row = self.dal.jobs.get_job_row(job.job_guid)
                if row is not None and row["tm_store"] != alias:
                    skipped += 1
                    continue
                tus.save_jobs([job], owner)
                saved += 1
            logger.info(
                f"Stored {saved} jobs from {len(plan.blocks_to_store)} blocks of {store.id} "
                f"into {source_lang}->{target_lang}"
                + (f" ({skipped} jobs not owned by {alias} skipped)" if skipped else "")
            )
        if options.delete_extra_jobs and plan.jobs_to_delete:
            deleted = tus.delete_jobs(plan.jobs_to_delete)
            logger.info(f"Deleted {deleted} jobs no longer in {store.id}")

    @staticmethod
    def _job_from_block(block_job: BlockJob, source_lang: str, target_lang: str) -> Job:
        return Job.model_validate(
            {
                "sourceLang": source_lang,
                "targetLang": target_lang,
                **block_job.job_props,
                "tus": block_job.tus,
            }
        )

    async def sync_down(
        self, store: str | TMStore, options: SyncDownOptions | None = None
    ) -> list[SyncDownPlan]:
        """Pull a store into the local TM.

        Args:
            store: Store or store id
            options: Sync options, dry run by default

        Returns:
            One plan per language pair, whether or not it was executed

        Raises:
            UnknownStoreError: If the store id is unknown
            StoreAccessError: If the store is write-only
        """
        options = options or SyncDownOptions()
        tm_store = self.get_tm_store(store)
        tm_store.ensure_readable("sync down")
        pairs = _select_pairs(
            await tm_store.get_available_lang_pairs(), options.source_lang, options.target_lang
        )

        async def run_pair(pair: tuple[str, str]) -> SyncDownPlan:
            plan = await self.prepare_sync_down(tm_store, pair[0], pair[1], options)
            if not options.dryrun:
                await self.execute_sync_down(tm_store, plan, options)
            return plan

        plans = await self._queue(options.parallelism).map(run_pair, pairs)
        logger.info(
            f"Sync-down from {tm_store.id}: {len(plans)} pairs"
            + (" (dry run)" if options.dryrun else "")
        )
        return plans

    # --- sync-up -------------------------------------------------------------

    async def prepare_sync_up(
        self,
        store: TMStore,
        source_lang: str,
        target_lang: str,
        options: SyncUpOptions,
    ) -> SyncUpPlan:
        """Plan which remote blocks to rewrite and which local jobs to push."""
        alias = options.store_alias or store.id
        toc = await store.get_toc(source_lang, target_lang)
        tus = self.dal.tus(source_lang, target_lang)
        deltas = tus.get_job_deltas(toc, alias)

        remote_jobs_to_update = [
            row
            for row in deltas
            if row.remote_job_guid is not None
            and row.local_job_guid is not None
            and row.tm_store == alias
        ]
        if options.delete_empty_blocks:
            remote_jobs_to_update.extend(
                row
                for row in deltas
                if row.remote_job_guid is not None
                and (row.local_job_guid is None or row.tm_store != alias)
            )
        blocks_to_update: list[tuple[str, list[str]]] = []
        for block_id in _unique([row.block_id for row in remote_jobs_to_update]):
            job_ids = tus.get_valid_job_ids(toc, block_id, alias)
            if job_ids or options.delete_empty_blocks:
                blocks_to_update.append((block_id, job_ids))

        local_only = [
            row for row in deltas if row.local_job_guid is not None and row.remote_job_guid is None
        ]
        tagged = [row.local_job_guid for row in local_only if row.tm_store == alias]
        unassigned = [row.local_job_guid for row in local_only if row.tm_store is None]
        if tagged:
            logger.info(
                f"{len(tagged)} jobs tagged to {alias} are missing remotely, "
                "a previous sync-up did not complete"
            )
        jobs_to_update = [guid for guid in tagged if guid is not None]
        if options.include_unassigned:
            jobs_to_update.extend(guid for guid in unassigned if guid is not None)
        return SyncUpPlan(
            source_lang=source_lang,
            target_lang=target_lang,
            blocks_to_update=blocks_to_update,
            jobs_to_update=jobs_to_update,
        )

    async def execute_sync_up(
        self, store: TMStore, plan: SyncUpPlan, options: SyncUpOptions
    ) -> None:
        """Write the planned blocks and jobs in a single write session."""
        store.ensure_writable("sync up")
        source_lang, target_lang = plan.source_lang, plan.target_lang
        if not plan.blocks_to_update and not plan.jobs_to_update:
            logger.info(f"Nothing to sync up to {store.id} for {source_lang}->{target_lang}")
            return
        alias = options.store_alias or store.id
        tm = self.get_tm(source_lang, target_lang)

        async with store.writer(source_lang, target_lang) as writer:
            covered: set[str] = set()
            for block_id, job_ids in plan.blocks_to_update:
                jobs = list(tm.iter_jobs(job_ids))
                provider = jobs[0].job_props.get("translationProvider") if jobs else None
                await writer.write_block(
                    BlockProps(block_id=block_id, translation_provider=provider), jobs
                )
                covered.update(job_ids)
                self._assign(job_ids, alias, options)
            remaining = [guid for guid in plan.jobs_to_update if guid not in covered]
            if remaining:
                await self._write_partitioned(store, writer, tm, remaining)
                self._assign(remaining, alias, options)
        logger.info(
            f"Synced up {len(plan.blocks_to_update)} blocks and {len(plan.jobs_to_update)} jobs "
            f"to {store.id} for {source_lang}->{target_lang}"
        )

    async def _write_partitioned(
        self, store: TMStore, writer: StoreWriter, tm: TM, job_guids: list[str]
    ) -> None:
        if store.partitioning is Partitioning.JOB:
            for block_job in tm.iter_jobs(job_guids):
                await writer.write_block(
                    BlockProps(
                        block_id=job_block_id(block_job.job_props["jobGuid"]),
                        translation_provider=block_job.job_props.get("translationProvider"),
                    ),
                    [block_job],
                )
        elif store.partitioning is Partitioning.PROVIDER:
            groups: dict[str | None, list[BlockJob]] = defaultdict(list)
            for block_job in tm.iter_jobs(job_guids):
                groups[block_job.job_props.get("translationProvider")].append(block_job)
            for provider, jobs in groups.items():
                await writer.write_block(
                    BlockProps(
                        block_id=self.generate_block_id(writer.toc.blocks),
                        translation_provider=provider,
                    ),
                    jobs,
                )
        else:
            await writer.write_block(
                BlockProps(block_id=self.generate_block_id(writer.toc.blocks)),
                list(tm.iter_jobs(job_guids)),
            )

    def _assign(self, job_guids: Sequence[str], alias: str, options: SyncUpOptions) -> None:
        if not options.assign_unassigned:
            return
        for job_guid in job_guids:
            self.dal.jobs.set_job_tm_store(job_guid, alias)

    async def sync_up(
        self, store: str | TMStore, options: SyncUpOptions | None = None
    ) -> list[SyncUpPlan]:
        """Push the local TM to a store.

        Planning always runs; execution is skipped on dry run.

        Raises:
            UnknownStoreError: If the store id is unknown
            StoreAccessError: If the store is read-only and this is not a dry run
        """
        options = options or SyncUpOptions()
        tm_store = self.get_tm_store(store)
        if not options.dryrun:
            tm_store.ensure_writable("sync up")
        pairs = _select_pairs(
            await self.get_available_lang_pairs(), options.source_lang, options.target_lang
        )
        queue = self._queue(options.parallelism)
        plans = await queue.map(
            lambda pair: self.prepare_sync_up(tm_store, pair[0], pair[1], options), pairs
        )
        if not options.dryrun:
            await queue.map(lambda plan: self.execute_sync_up(tm_store, plan, options), plans)
        logger.info(
            f"Sync-up to {tm_store.id}: {len(plans)} pairs"
            + (" (dry run)" if options.dryrun else "")
        )
        return plans

    # --- bootstrap -----------------------------------------------------------

    async def bootstrap(
        self, store: str | TMStore, options: BootstrapOptions | None = None
    ) -> BootstrapResult:
        """Replace the selected local pairs with the full content of a store.

        Raises:
            UnknownStoreError: If the store id is unknown
            StoreAccessError: If the store is write-only
        """
        options = options or BootstrapOptions()
        tm_store = self.get_tm_store(store)
        tm_store.ensure_readable("bootstrap from")
        pairs = _select_pairs(
            await tm_store.get_available_lang_pairs(), options.source_lang, options.target_lang
        )
        if options.dryrun:
            return BootstrapResult(dryrun=True, pairs=pairs)

        async def load_pair(pair: tuple[str, str]) -> BootstrapStats:
            source_lang, target_lang = pair
            toc = await tm_store.get_toc(source_lang, target_lang)
            tus = self.dal.tus(source_lang, target_lang)
            tus.truncate()
            stats = BootstrapStats(source_lang=source_lang, target_lang=target_lang)
            async for block_job in tm_store.get_tm_blocks(
                source_lang, target_lang, list(toc.blocks)
            ):
                job = self._job_from_block(block_job, source_lang, target_lang)
                stats.tu_count += tus.save_jobs([job], tm_store.id)
                stats.job_count += 1
            logger.info(
                f"Bootstrapped {source_lang}->{target_lang} from {tm_store.id}: "
                f"{stats.job_count} jobs, {stats.tu_count} TUs"
            )
            return stats

        self.clear_tm_cache()
        try:
            with self.dal.bulk_load_mode():
                stats = await self._queue(options.parallelism).map(load_pair, pairs)
        finally:
            self.clear_tm_cache()
        return BootstrapResult(dryrun=False, pairs=pairs, stats=stats)


__all__ = ["REGRESSION_UPDATED_AT", "TMManager", "job_block_id"]
