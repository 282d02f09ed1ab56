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

"""SQLite data access layer for jobs and translation units.

Provides durable storage with:
- One ``jobs`` table shared by all language pairs
- One ``tus`` table partitioned by (source_lang, target_lang)
- Winner ranking recomputed on every write (higher q, then later ts)
- Job deltas against a remote table of contents
- A bulk load mode used by bootstrap
"""

from __future__ import annotations

import json
import logging
import sqlite3
from collections.abc import Iterable, Iterator, Sequence
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field

from l10ntm.core.exceptions import InvalidTOCError, JobNotFoundError
from l10ntm.core.models import TOC, TU, ChannelSegment, DeltaRow, Job, JobStatus, TMStats
from l10ntm.core.normalized import dump_parts, flatten_to_ordinal

logger = logging.getLogger(__name__)

# Keep IN (...) lists below SQLITE_MAX_VARIABLE_NUMBER on old builds
CHUNK_SIZE = 500

# TU properties stored in their own columns; everything else goes to tu_props
_TU_COLUMNS = (
    "guid",
    "jobGuid",
    "rid",
    "sid",
    "nid",
    "nsrc",
    "ntgt",
    "q",
    "ts",
    "translationProvider",
)

_RANK_ORDER = "(ntgt IS NULL), q DESC, ts DESC, job_guid DESC"


REGRESSION_UPDATED_AT = "2022-05-29T00:00:00.000Z"


def utc_now() -> str:
    """Current UTC time as an ISO string with milliseconds and a Z suffix."""
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def _chunks(items: Sequence[Any], size: int = CHUNK_SIZE) -> Iterator[Sequence[Any]]:
    for start in range(0, len(items), size):
        yield items[start : start + size]


class TuDeletion(BaseModel):
    """Plan or outcome of a TU maintenance deletion."""

    dryrun: bool = Field(..., description="Whether anything was deleted")
    tu_keys: list[tuple[str, str]] = Field(
        default_factory=list, description="(guid, jobGuid) pairs selected"
    )
    deleted_tus_count: int = Field(default=0, description="TU rows deleted")
    touched_jobs_count: int = Field(default=0, description="Jobs whose updatedAt was bumped")


class TMDatabase:
    """SQLite database holding the local translation memory.

    Example:
        >>> db = TMDatabase("l10ntm.db")
        >>> db.initialize()
        >>> db.jobs.save_job(job)
        >>> db.tus("en", "fr").get_entries(["guid1"])
    """

    def __init__(self, db_path: str | Path = "l10ntm.db"):
        """Initialize database handle.

        Args:
            db_path: Path to SQLite database file, or ``:memory:``
        """
        self.db_path = str(db_path)
        self._conn: sqlite3.Connection | None = None
        self._tu_dals: dict[tuple[str, str], TuDAL] = {}
        self._bulk_mode = False
        self._pending_rerank: set[tuple[str, str]] = set()
        self.jobs = JobDAL(self)

    @property
    def conn(self) -> sqlite3.Connection:
        if self._conn is None:
            self.initialize()
        assert self._conn is not None
        return self._conn

    @property
    def bulk_mode(self) -> bool:
        return self._bulk_mode

    def initialize(self) -> None:
        """Open the connection and create the schema if needed."""
        if self._conn is not None:
            return
        self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.execute("PRAGMA synchronous=NORMAL")
        self._create_schema()
        logger.debug(f"TM database opened: {self.db_path}")

    def _create_schema(self) -> None:
        with self.conn:
            self.conn.execute(
                """
                CREATE TABLE IF NOT EXISTS jobs (
                    job_guid TEXT PRIMARY KEY,
                    source_lang TEXT NOT NULL,
                    target_lang TEXT NOT NULL,
                    translation_provider TEXT,
                    status TEXT,
                    updated_at TEXT,
                    job_props TEXT NOT NULL,
                    tm_store TEXT
                )
            """
            )
            self.conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_jobs_pair ON jobs(source_lang, target_lang)"
            )
            self.conn.execute(
                """
                CREATE TABLE IF NOT EXISTS tus (
                    source_lang TEXT NOT NULL,
                    target_lang TEXT NOT NULL,
                    guid TEXT NOT NULL,
                    job_guid TEXT NOT NULL,
                    rid TEXT,
                    sid TEXT,
                    nid TEXT,
                    nsrc TEXT,
                    nsrc_flat TEXT,
                    ntgt TEXT,
                    ntgt_flat TEXT,
                    q INTEGER,
                    ts INTEGER,
                    translation_provider TEXT,
                    tu_props TEXT,
                    tu_order INTEGER,
                    rank INTEGER,
                    PRIMARY KEY (source_lang, target_lang, guid, job_guid)
                )
            """
            )
            self.conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_tus_job ON tus(source_lang, target_lang, job_guid)"
            )
            self.conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_tus_flat "
                "ON tus(source_lang, target_lang, nsrc_flat)"
            )
            self.conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_tus_rank "
                "ON tus(source_lang, target_lang, guid, rank)"
            )
            self.conn.execute(
                """
                CREATE TABLE IF NOT EXISTS segments (
                    channel TEXT NOT NULL,
                    source_lang TEXT NOT NULL,
                    guid TEXT NOT NULL,
                    rid TEXT NOT NULL,
                    sid TEXT NOT NULL,
                    prj TEXT,
                    nsrc TEXT NOT NULL,
                    notes TEXT,
                    words INTEGER DEFAULT 0,
                    chars INTEGER DEFAULT 0,
                    plan TEXT,
                    PRIMARY KEY (channel, source_lang, guid)
                )
            """
            )

    def tus(self, source_lang: str, target_lang: str) -> TuDAL:
        """Get the TU accessor for a language pair."""
        key = (source_lang, target_lang)
        if key not in self._tu_dals:
            self._tu_dals[key] = TuDAL(self, source_lang, target_lang)
        return self._tu_dals[key]

    def request_rerank(self, source_lang: str, target_lang: str) -> None:
        self._pending_rerank.add((source_lang, target_lang))

    @contextmanager
    def bulk_load_mode(self) -> Iterator[TMDatabase]:
        """Reconfigure the connection for high-throughput inserts.

        Journaling goes to memory and fsync is disabled. Winner ranking is
        deferred and recomputed once per touched pair on exit.
        """
        self.conn.execute("PRAGMA journal_mode=MEMORY")
        self.conn.execute("PRAGMA synchronous=OFF")
        self._bulk_mode = True
        logger.info("Bulk load mode enabled")
        try:
            yield self
        finally:
            self._bulk_mode = False
            try:
                for source_lang, target_lang in sorted(self._pending_rerank):
                    self.tus(source_lang, target_lang).rerank()
            finally:
                self._pending_rerank.clear()
                self.conn.execute("PRAGMA journal_mode=WAL")
                self.conn.execute("PRAGMA synchronous=NORMAL")
                logger.info("Bulk load mode disabled")

    def save_channel_segments(
        self, channel: str, source_lang: str, segments: Iterable[ChannelSegment]
    ) -> int:
        """Replace the source segments of a channel.

        Returns:
            Number of segments stored
        """
        rows = [
            (
                channel,
                source_lang,
                seg.guid,
                seg.rid,
                seg.sid,
                seg.prj,
                json.dumps(dump_parts(seg.nsrc)),
                json.dumps(seg.notes) if seg.notes is not None else None,
                seg.words,
                seg.chars,
                json.dumps(seg.plan),
            )
            for seg in segments
        ]
        with self.conn:
            self.conn.execute(
                "DELETE FROM segments WHERE channel = ? AND source_lang = ?", (channel, source_lang)
            )
            self.conn.executemany(
                "INSERT OR REPLACE INTO segments VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)", rows
            )
        return len(rows)

    def close(self) -> None:
        """Close the database connection."""
        if self._conn is not None:
            self._conn.close()
            self._conn = None
            self._tu_dals.clear()
            logger.debug("TM database closed")


class JobDAL:
    """Access to the ``jobs`` table."""

    def __init__(self, db: TMDatabase):
        self.db = db

    def get_available_lang_pairs(self) -> list[tuple[str, str]]:
        cursor = self.db.conn.execute(
            "SELECT DISTINCT source_lang, target_lang FROM jobs ORDER BY source_lang, target_lang"
        )
        return [(row["source_lang"], row["target_lang"]) for row in cursor]

    def get_job_count(self) -> int:
        return int(self.db.conn.execute("SELECT COUNT(*) AS count FROM jobs").fetchone()["count"])

    def get_job_row(self, job_guid: str) -> sqlite3.Row | None:
        return self.db.conn.execute(
            "SELECT * FROM jobs WHERE job_guid = ?", (job_guid,)
        ).fetchone()

    def get_job(self, job_guid: str) -> Job | None:
        """Load a job with its TUs, or None if it does not exist."""
        row = self.get_job_row(job_guid)
        if row is None:
            return None
        tus = self.db.tus(row["source_lang"], row["target_lang"]).get_job_tus(job_guid)
        inflight = [tu.guid for tu in tus if tu.inflight]
        data = json.loads(row["job_props"])
        data.update(
            {
                "jobGuid": row["job_guid"],
                "sourceLang": row["source_lang"],
                "targetLang": row["target_lang"],
                "tmStore": row["tm_store"],
                "tus": tus,
                "inflight": inflight or None,
            }
        )
        return Job.model_validate(data)

    def save_job(self, job: Job, tm_store: str | None = None) -> None:
        self.db.tus(job.source_lang, job.target_lang).save_jobs([job], tm_store)

    def set_job_tm_store(self, job_guid: str, tm_store: str | None) -> None:
        with self.db.conn:
            cursor = self.db.conn.execute(
                "UPDATE jobs SET tm_store = ? WHERE job_guid = ?", (tm_store, job_guid)
            )
        if cursor.rowcount == 0:
            raise JobNotFoundError(job_guid)

    def delete_job(self, job_guid: str) -> None:
        """Delete a job and its TUs.

        Raises:
            JobNotFoundError: If the job does not exist
        """
        row = self.get_job_row(job_guid)
        if row is None:
            raise JobNotFoundError(job_guid)
        self.db.tus(row["source_lang"], row["target_lang"]).delete_jobs([job_guid])

    def get_job_toc(self, source_lang: str, target_lang: str) -> list[dict[str, Any]]:
        """List jobs of a pair with their status and owner."""
        cursor = self.db.conn.execute(
            """
            SELECT job_guid, status, translation_provider, updated_at, tm_store
            FROM jobs WHERE source_lang = ? AND target_lang = ?
            ORDER BY updated_at DESC, job_guid
            """,
            (source_lang, target_lang),
        )
        return [
            {
                "jobGuid": row["job_guid"],
                "status": row["status"],
                "translationProvider": row["translation_provider"],
                "updatedAt": row["updated_at"],
                "tmStore": row["tm_store"],
            }
            for row in cursor
        ]


class TuDAL:
    """Access to jobs and TUs of one language pair."""

    def __init__(self, db: TMDatabase, source_lang: str, target_lang: str):
        self.db = db
        self.source_lang = source_lang
        self.target_lang = target_lang
        self._pair = (source_lang, target_lang)

    # --- row mapping ---------------------------------------------------------

    @staticmethod
    def _row_to_tu(row: sqlite3.Row) -> TU:
        data: dict[str, Any] = json.loads(row["tu_props"]) if row["tu_props"] else {}
        data["guid"] = row["guid"]
        data["jobGuid"] = row["job_guid"]
        for key, column in (
            ("rid", "rid"),
            ("sid", "sid"),
            ("nid", "nid"),
            ("q", "q"),
            ("ts", "ts"),
            ("translationProvider", "translation_provider"),
        ):
            if row[column] is not None:
                data[key] = row[column]
        if row["nsrc"] is not None:
            data["nsrc"] = json.loads(row["nsrc"])
        if row["ntgt"] is not None:
            data["ntgt"] = json.loads(row["ntgt"])
        return TU.model_validate(data)

    def _tu_to_row(self, tu: TU, job_guid: str, tu_order: int) -> tuple[Any, ...]:
        data = tu.to_dict()
        props = {k: v for k, v in data.items() if k not in _TU_COLUMNS}
        return (
            self.source_lang,
            self.target_lang,
            tu.guid,
            job_guid,
            tu.rid,
            tu.sid,
            tu.nid,
            json.dumps(data["nsrc"]) if tu.nsrc is not None else None,
            flatten_to_ordinal(tu.nsrc) if tu.nsrc is not None else None,
            json.dumps(data["ntgt"]) if tu.ntgt is not None else None,
            flatten_to_ordinal(tu.ntgt) if tu.ntgt is not None else None,
            tu.q,
            tu.ts,
            tu.translation_provider,
            json.dumps(props) if props else None,
            tu_order,
        )

    # --- queries -------------------------------------------------------------

    def get_entries(self, guids: Sequence[str]) -> dict[str, TU]:
        """Winning entries for the given guids."""
        entries: dict[str, TU] = {}
        for chunk in _chunks(list(dict.fromkeys(guids))):
            marks = ",".join("?" * len(chunk))
            cursor = self.db.conn.execute(
                f"""
                SELECT * FROM tus
                WHERE source_lang = ? AND target_lang = ? AND rank = 1 AND guid IN ({marks})
                """,
                (*self._pair, *chunk),
            )
            for row in cursor:
                entries[row["guid"]] = self._row_to_tu(row)
        return entries

    def get_job_tus(self, job_guid: str) -> list[TU]:
        cursor = self.db.conn.execute(
            """
            SELECT * FROM tus
            WHERE source_lang = ? AND target_lang = ? AND job_guid = ?
            ORDER BY tu_order
            """,
            (*self._pair, job_guid),
        )
        return [self._row_to_tu(row) for row in cursor]

    def get_exact_match_candidates(self, nsrc: Sequence[Any]) -> list[TU]:
        """Winning entries whose source has the same ordinal form."""
        cursor = self.db.conn.execute(
            """
            SELECT * FROM tus
            WHERE source_lang = ? AND target_lang = ? AND nsrc_flat = ? AND rank = 1
              AND ntgt IS NOT NULL
            ORDER BY q DESC, ts DESC
            """,
            (*self._pair, flatten_to_ordinal(nsrc)),
        )
        return [self._row_to_tu(row) for row in cursor]

    def lookup(
        self,
        guid: str | None = None,
        nid: str | None = None,
        rid: str | None = None,
        sid: str | None = None,
    ) -> list[TU]:
        """Winning entries matching every given key."""
        clauses, params = self._filters(guid=guid, nid=nid, rid=rid, sid=sid)
        cursor = self.db.conn.execute(
            f"SELECT * FROM tus WHERE {' AND '.join(clauses)} AND rank = 1 ORDER BY guid",
            params,
        )
        return [self._row_to_tu(row) for row in cursor]

    def search(
        self,
        offset: int = 0,
        limit: int = 100,
        only_winners: bool = True,
        **filters: Any,
    ) -> list[TU]:
        """Page through entries.

        Args:
            offset: Rows to skip
            limit: Maximum rows returned
            only_winners: Restrict to rank 1 entries
            **filters: guid, job_guid, rid, sid, nid, translation_provider (exact),
                nsrc, ntgt (substring of flattened text), min_q, max_q
        """
        clauses, params = self._filters(**filters)
        if only_winners:
            clauses.append("rank = 1")
        params.extend([limit, offset])
        cursor = self.db.conn.execute(
            f"""
            SELECT * FROM tus WHERE {' AND '.join(clauses)}
            ORDER BY rid, sid, guid, rank LIMIT ? OFFSET ?
            """,
            params,
        )
        return [self._row_to_tu(row) for row in cursor]

    def _filters(self, **filters: Any) -> tuple[list[str], list[Any]]:
        clauses = ["source_lang = ?", "target_lang = ?"]
        params: list[Any] = list(self._pair)
        for name in ("guid", "job_guid", "rid", "sid", "nid", "translation_provider"):
            if filters.get(name) is not None:
                clauses.append(f"{name} = ?")
                params.append(filters[name])
        for name in ("nsrc", "ntgt"):
            if filters.get(name):
                clauses.append(f"{name}_flat LIKE ?")
                params.append(f"%{filters[name]}%")
        if filters.get("min_q") is not None:
            clauses.append("q >= ?")
            params.append(filters["min_q"])
        if filters.get("max_q") is not None:
            clauses.append("q <= ?")
            params.append(filters["max_q"])
        return clauses, params

    def get_stats(self) -> TMStats:
        row = self.db.conn.execute(
            """
            SELECT COUNT(*) AS tu_count, COUNT(DISTINCT guid) AS distinct_guids,
                   COUNT(DISTINCT job_guid) AS job_count
            FROM tus WHERE source_lang = ? AND target_lang = ?
            """,
            self._pair,
        ).fetchone()
        return TMStats(
            source_lang=self.source_lang,
            target_lang=self.target_lang,
            job_count=row["job_count"],
            tu_count=row["tu_count"],
            distinct_guids=row["distinct_guids"],
        )

    def get_quality_distribution(self) -> dict[int, int]:
        """Number of winning translations per quality score."""
        cursor = self.db.conn.execute(
            """
            SELECT q, COUNT(*) AS count FROM tus
            WHERE source_lang = ? AND target_lang = ? AND rank = 1 AND ntgt IS NOT NULL
            GROUP BY q ORDER BY q DESC
            """,
            self._pair,
        )
        return {row["q"]: row["count"] for row in cursor}

    # --- channel content -----------------------------------------------------

    def _channel_segments(self, channel: str) -> list[tuple[ChannelSegment, int]]:
        """Segments of a channel planned for this target language with their minimum q."""
        cursor = self.db.conn.execute(
            "SELECT * FROM segments WHERE channel = ? AND source_lang = ? ORDER BY rid, sid",
            (channel, self.source_lang),
        )
        planned = []
        for row in cursor:
            plan = json.loads(row["plan"]) if row["plan"] else {}
            if self.target_lang not in plan:
                continue
            segment = ChannelSegment(
                channel=row["channel"],
                guid=row["guid"],
                rid=row["rid"],
                sid=row["sid"],
                prj=row["prj"],
                nsrc=json.loads(row["nsrc"]),
                notes=json.loads(row["notes"]) if row["notes"] else None,
                words=row["words"],
                chars=row["chars"],
                plan=plan,
            )
            planned.append((segment, int(plan[self.target_lang])))
        return planned

    def get_translation_status(self, channel: str) -> dict[str, dict[str, int]]:
        """Translation status of a channel, per project.

        Each project reports segment counts for ``translated``, ``low_quality``
        and ``untranslated`` plus the corresponding word counts.
        """
        planned = self._channel_segments(channel)
        winners = self.get_entries([segment.guid for segment, _ in planned])
        status: dict[str, dict[str, int]] = {}
        for segment, min_q in planned:
            counts = status.setdefault(
                segment.prj or "default",
                {
                    "translated": 0,
                    "low_quality": 0,
                    "untranslated": 0,
                    "translated_words": 0,
                    "untranslated_words": 0,
                },
            )
            entry = winners.get(segment.guid)
            if entry is None or entry.ntgt is None:
                counts["untranslated"] += 1
                counts["untranslated_words"] += segment.words
            elif (entry.q or 0) >= min_q:
                counts["translated"] += 1
                counts["translated_words"] += segment.words
            else:
                counts["low_quality"] += 1
                counts["untranslated_words"] += segment.words
        return status

    def get_untranslated_content(self, channel: str, limit: int = 5000) -> list[TU]:
        """Source TUs of a channel lacking a good enough translation."""
        planned = self._channel_segments(channel)
        winners = self.get_entries([segment.guid for segment, _ in planned])
        untranslated: list[TU] = []
        for segment, min_q in planned:
            entry = winners.get(segment.guid)
            if entry is not None and entry.ntgt is not None and (entry.q or 0) >= min_q:
                continue
            untranslated.append(
                TU.as_source(
                    {
                        "guid": segment.guid,
                        "rid": segment.rid,
                        "sid": segment.sid,
                        "nsrc": segment.nsrc,
                        "prj": segment.prj,
                        "notes": segment.notes,
                    }
                )
            )
            if len(untranslated) >= limit:
                break
        return untranslated

    # --- sync support --------------------------------------------------------

    def _local_jobs(self) -> dict[str, sqlite3.Row]:
        cursor = self.db.conn.execute(
            """
            SELECT job_guid, updated_at, tm_store FROM jobs
            WHERE source_lang = ? AND target_lang = ?
            """,
            self._pair,
        )
        return {row["job_guid"]: row for row in cursor}

    def _check_toc(self, toc: TOC) -> None:
        if toc.v != 1:
            raise InvalidTOCError(
                f"Unsupported TOC version {toc.v} for {self.source_lang}->{self.target_lang}"
            )

    def get_job_deltas(self, toc: TOC, store_id: str) -> list[DeltaRow]:
        """Jobs whose local and remote state differ.

        A remote job is a delta when it is missing locally, when timestamps
        differ, or when the local copy is tagged to a store other than
        ``store_id``. A local job is a delta when it is absent from the TOC.

        Raises:
            InvalidTOCError: If the TOC version is not supported
        """
        self._check_toc(toc)
        local = self._local_jobs()
        deltas: list[DeltaRow] = []
        seen: set[str] = set()
        for block_id, block in toc.blocks.items():
            for job_guid, updated_at in block.jobs:
                seen.add(job_guid)
                row = local.get(job_guid)
                if row is None:
                    deltas.append(
                        DeltaRow(
                            block_id=block_id,
                            remote_job_guid=job_guid,
                            remote_updated_at=updated_at,
                        )
                    )
                elif row["updated_at"] != updated_at or (
                    row["tm_store"] is not None and row["tm_store"] != store_id
                ):
                    deltas.append(
                        DeltaRow(
                            block_id=block_id,
                            local_job_guid=job_guid,
                            remote_job_guid=job_guid,
                            local_updated_at=row["updated_at"],
                            remote_updated_at=updated_at,
                            tm_store=row["tm_store"],
                        )
                    )
        for job_guid, row in local.items():
            if job_guid not in seen:
                deltas.append(
                    DeltaRow(
                        local_job_guid=job_guid,
                        local_updated_at=row["updated_at"],
                        tm_store=row["tm_store"],
                    )
                )
        return deltas

    def get_valid_job_ids(self, toc: TOC, block_id: str, store_id: str) -> list[str]:
        """Jobs of a remote block that exist locally and belong to ``store_id``."""
        self._check_toc(toc)
        block = toc.blocks.get(block_id)
        if block is None:
            return []
        local = self._local_jobs()
        return [
            job_guid
            for job_guid, _ in block.jobs
            if job_guid in local and local[job_guid]["tm_store"] == store_id
        ]

    def get_jobs(self, job_guids: Iterable[str]) -> Iterator[Job]:
        """Lazily load jobs, skipping unknown guids."""
        for job_guid in job_guids:
            job = self.db.jobs.get_job(job_guid)
            if job is not None:
                yield job

    def get_job_guids(self) -> list[str]:
        return sorted(self._local_jobs())

    # --- writes --------------------------------------------------------------

    def _guids_of_jobs(self, job_guids: Sequence[str]) -> set[str]:
        guids: set[str] = set()
        for chunk in _chunks(list(job_guids)):
            marks = ",".join("?" * len(chunk))
            cursor = self.db.conn.execute(
                f"""
                SELECT DISTINCT guid FROM tus
                WHERE source_lang = ? AND target_lang = ? AND job_guid IN ({marks})
                """,
                (*self._pair, *chunk),
            )
            guids.update(row["guid"] for row in cursor)
        return guids

    def save_jobs(self, jobs: Iterable[Job], tm_store: str | None = None) -> int:
        """Upsert jobs and replace their TUs.

        Each job is written in its own transaction. Winner ranks are
        recomputed for every guid the jobs touched, unless bulk load mode
        defers it.

        Returns:
            Number of TUs written
        """
        tu_count = 0
        for job in jobs:
            old_guids = self._guids_of_jobs([job.job_guid])
            rows = [
                self._tu_to_row(tu, job.job_guid, order) for order, tu in enumerate(job.tus)
            ]
            with self.db.conn:
                self.db.conn.execute(
                    """
                    INSERT OR REPLACE INTO jobs
                    (job_guid, source_lang, target_lang, translation_provider, status,
                     updated_at, job_props, tm_store)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        job.job_guid,
                        self.source_lang,
                        self.target_lang,
                        job.translation_provider,
                        JobStatus(job.status).value,
                        job.updated_at,
                        json.dumps(job.job_props()),
                        tm_store,
                    ),
                )
                self.db.conn.execute(
                    "DELETE FROM tus WHERE source_lang = ? AND target_lang = ? AND job_guid = ?",
                    (*self._pair, job.job_guid),
                )
                self.db.conn.executemany(
                    """
                    INSERT OR REPLACE INTO tus
                    (source_lang, target_lang, guid, job_guid, rid, sid, nid, nsrc, nsrc_flat,
                     ntgt, ntgt_flat, q, ts, translation_provider, tu_props, tu_order)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    rows,
                )
            tu_count += len(rows)
            self._rerank_guids(old_guids | {tu.guid for tu in job.tus})
        return tu_count

    def _rerank_guids(self, guids: Iterable[str]) -> None:
        if self.db.bulk_mode:
            self.db.request_rerank(*self._pair)
            return
        guid_list = sorted(guids)
        for chunk in _chunks(guid_list):
            marks = ",".join("?" * len(chunk))
            with self.db.conn:
                self.db.conn.execute(
                    f"""
                    WITH ranked AS (
                        SELECT rowid AS row_id,
                               ROW_NUMBER() OVER (PARTITION BY guid ORDER BY {_RANK_ORDER}) AS r
                        FROM tus
                        WHERE source_lang = ? AND target_lang = ? AND guid IN ({marks})
                    )
                    UPDATE tus SET rank = (SELECT r FROM ranked WHERE ranked.row_id = tus.rowid)
                    WHERE rowid IN (SELECT row_id FROM ranked)
                    """,
                    (*self._pair, *chunk),
                )

    def rerank(self) -> None:
        """Recompute winner ranks for the whole pair."""
        with self.db.conn:
            self.db.conn.execute(
                f"""
                WITH ranked AS (
                    SELECT rowid AS row_id,
                           ROW_NUMBER() OVER (PARTITION BY guid ORDER BY {_RANK_ORDER}) AS r
                    FROM tus WHERE source_lang = ? AND target_lang = ?
                )
                UPDATE tus SET rank = (SELECT r FROM ranked WHERE ranked.row_id = tus.rowid)
                WHERE rowid IN (SELECT row_id FROM ranked)
                """,
                self._pair,
            )
        logger.debug(f"Reranked {self.source_lang}->{self.target_lang}")

    def delete_jobs(self, job_guids: Sequence[str]) -> int:
        """Delete jobs with their TUs and re-elect winners."""
        guids = self._guids_of_jobs(job_guids)
        deleted = 0
        for chunk in _chunks(list(job_guids)):
            marks = ",".join("?" * len(chunk))
            with self.db.conn:
                self.db.conn.execute(
                    f"""
                    DELETE FROM tus
                    WHERE source_lang = ? AND target_lang = ? AND job_guid IN ({marks})
                    """,
                    (*self._pair, *chunk),
                )
                cursor = self.db.conn.execute(
                    f"""
                    DELETE FROM jobs
                    WHERE source_lang = ? AND target_lang = ? AND job_guid IN ({marks})
                    """,
                    (*self._pair, *chunk),
                )
                deleted += cursor.rowcount
        self._rerank_guids(guids)
        return deleted

    def truncate(self) -> None:
        """Delete every job and TU of the pair."""
        with self.db.conn:
            self.db.conn.execute(
                "DELETE FROM tus WHERE source_lang = ? AND target_lang = ?", self._pair
            )
            self.db.conn.execute(
                "DELETE FROM jobs WHERE source_lang = ? AND target_lang = ?", self._pair
            )
        logger.info(f"Truncated local TM {self.source_lang}->{self.target_lang}")

    def delete_empty_jobs(self, dryrun: bool = True) -> int:
        """Delete jobs of the pair that have no TUs left.

        Returns:
            Number of empty jobs found (and deleted unless dry run)
        """
        cursor = self.db.conn.execute(
            """
            SELECT job_guid FROM jobs j
            WHERE source_lang = ? AND target_lang = ?
              AND NOT EXISTS (
                  SELECT 1 FROM tus t
                  WHERE t.source_lang = j.source_lang AND t.target_lang = j.target_lang
                    AND t.job_guid = j.job_guid
              )
            """,
            self._pair,
        )
        empty = [row["job_guid"] for row in cursor]
        if empty and not dryrun:
            self.delete_jobs(empty)
        return len(empty)

    def get_over_rank_keys(self, max_rank: int) -> list[tuple[str, str]]:
        cursor = self.db.conn.execute(
            """
            SELECT guid, job_guid FROM tus
            WHERE source_lang = ? AND target_lang = ? AND rank > ?
            ORDER BY guid, rank
            """,
            (*self._pair, max_rank),
        )
        return [(row["guid"], row["job_guid"]) for row in cursor]

    def get_quality_keys(self, q: int) -> list[tuple[str, str]]:
        cursor = self.db.conn.execute(
            """
            SELECT guid, job_guid FROM tus
            WHERE source_lang = ? AND target_lang = ? AND q = ?
            ORDER BY guid, job_guid
            """,
            (*self._pair, q),
        )
        return [(row["guid"], row["job_guid"]) for row in cursor]

    def delete_tu_keys(
        self, tu_keys: Sequence[tuple[str, str]], updated_at: str | None = None
    ) -> TuDeletion:
        """Delete individual TU rows and bump updatedAt of the jobs they belonged to.

        Args:
            tu_keys: (guid, job guid) pairs to delete
            updated_at: Stamp for touched jobs, current time when omitted
        """
        deleted = 0
        jobs = sorted({job_guid for _, job_guid in tu_keys})
        now = updated_at or utc_now()
        with self.db.conn:
            for guid, job_guid in tu_keys:
                cursor = self.db.conn.execute(
                    """
                    DELETE FROM tus
                    WHERE source_lang = ? AND target_lang = ? AND guid = ? AND job_guid = ?
                    """,
                    (*self._pair, guid, job_guid),
                )
                deleted += cursor.rowcount
            touched = 0
            for job_guid in jobs:
                row = self.db.conn.execute(
                    "SELECT job_props FROM jobs WHERE job_guid = ?", (job_guid,)
                ).fetchone()
                if row is None:
                    continue
                props = json.loads(row["job_props"])
                props["updatedAt"] = now
                self.db.conn.execute(
                    "UPDATE jobs SET updated_at = ?, job_props = ? WHERE job_guid = ?",
                    (now, json.dumps(props), job_guid),
                )
                touched += 1
        self._rerank_guids({guid for guid, _ in tu_keys})
        return TuDeletion(
            dryrun=False,
            tu_keys=list(tu_keys),
            deleted_tus_count=deleted,
            touched_jobs_count=touched,
        )


__all__ = [
    "CHUNK_SIZE",
    "REGRESSION_UPDATED_AT",
    "JobDAL",
    "TMDatabase",
    "TuDAL",
    "TuDeletion",
    "utc_now",
]
