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

"""Core data models for the translation memory engine.

This module defines the data structures shared by the DAL, the TM facade,
the manager and the stores:
- Translation units with source/target whitelists
- Jobs, blocks and tables of contents
- Sync plans, bootstrap results and their options

Models serialize with camelCase keys (``model_dump(by_alias=True)``) so the
records stored remotely stay readable by other tools.
"""

from __future__ import annotations

from collections import defaultdict, deque
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic.alias_generators import to_camel

from l10ntm.core.exceptions import InvalidTUError
from l10ntm.core.normalized import NormalizedString, flatten_with_legacy_ids

CAMEL_CONFIG = ConfigDict(alias_generator=to_camel, populate_by_name=True)

SOURCE_TU_KEYS = frozenset(
    {"guid", "rid", "sid", "nsrc", "prj", "notes", "pluralForm", "nid", "seq", "jobProps"}
)
TARGET_TU_KEYS = frozenset(
    {
        "guid",
        "ntgt",
        "inflight",
        "q",
        "ts",
        "cost",
        "jobGuid",
        "translationProvider",
        "tconf",
        "tnotes",
        "qa",
        "th",
        "rev",
    }
)


class JobStatus(str, Enum):
    """Lifecycle status of a translation job."""

    CREATED = "created"
    REQ = "req"
    PENDING = "pending"
    DONE = "done"
    BLOCKED = "blocked"
    CANCELLED = "cancelled"


class StoreAccess(str, Enum):
    """Access mode of a TM store."""

    READWRITE = "readwrite"
    READONLY = "readonly"
    WRITEONLY = "writeonly"

    @property
    def can_read(self) -> bool:
        return self is not StoreAccess.WRITEONLY

    @property
    def can_write(self) -> bool:
        return self is not StoreAccess.READONLY


class Partitioning(str, Enum):
    """How a TM store groups jobs into blocks.

    ``none`` stores everything the way ``language`` does.
    """

    NONE = "none"
    JOB = "job"
    PROVIDER = "provider"
    LANGUAGE = "language"


class TU(BaseModel):
    """Translation unit.

    A TU carries source-side properties, target-side properties or both.
    Build them through :meth:`as_source`, :meth:`as_target` or
    :meth:`as_pair` to get whitelisting and validation.
    """

    guid: str = Field(..., description="Content-derived fingerprint")
    # source side
    rid: str | None = Field(default=None, description="Resource id")
    sid: str | None = Field(default=None, description="Segment id")
    nsrc: NormalizedString | None = Field(default=None, description="Normalized source")
    prj: str | None = Field(default=None, description="Project name")
    notes: Any = Field(default=None, description="Translator notes")
    plural_form: str | None = Field(default=None, description="Plural form of the segment")
    nid: str | None = Field(default=None, description="Native id of the segment")
    seq: int | None = Field(default=None, description="Sequence number")
    job_props: dict[str, Any] | None = Field(default=None, description="Extra job properties")
    # target side
    ntgt: NormalizedString | None = Field(default=None, description="Normalized target")
    inflight: bool | None = Field(default=None, description="Translation still pending")
    q: int | None = Field(default=None, description="Quality score")
    ts: int | None = Field(default=None, description="Translation timestamp (ms)")
    cost: Any = Field(default=None, description="Cost reported by the provider")
    job_guid: str | None = Field(default=None, description="Job that produced the target")
    translation_provider: str | None = Field(default=None, description="Provider id")
    tconf: Any = Field(default=None, description="Translation confidence")
    tnotes: Any = Field(default=None, description="Notes returned by the provider")
    qa: Any = Field(default=None, description="QA results")
    th: str | None = Field(default=None, description="Target hash")
    rev: Any = Field(default=None, description="Review information")

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    def to_dict(self) -> dict[str, Any]:
        """Serialize with camelCase keys and without unset values."""
        return self.model_dump(by_alias=True, exclude_none=True)

    @staticmethod
    def _raw(data: TU | dict[str, Any]) -> dict[str, Any]:
        raw = data.to_dict() if isinstance(data, TU) else dict(data)
        # legacy plain-text entries
        if "nsrc" not in raw and isinstance(raw.get("src"), str):
            raw["nsrc"] = [raw["src"]]
        if "ntgt" not in raw and isinstance(raw.get("tgt"), str):
            raw["ntgt"] = [raw["tgt"]]
        return raw

    @classmethod
    def _build(cls, raw: dict[str, Any], keys: frozenset[str]) -> TU:
        try:
            return cls.model_validate({k: v for k, v in raw.items() if k in keys})
        except ValidationError as e:
            raise InvalidTUError(f"Invalid TU {raw.get('guid')}: {e}") from e

    def _check_source(self) -> None:
        missing = [name for name in ("rid", "sid") if getattr(self, name) is None]
        if missing or not isinstance(self.nsrc, list):
            raise InvalidTUError(
                f"Source TU {self.guid} is missing {', '.join(missing) or 'nsrc'}"
            )

    def _check_target(self) -> None:
        if self.q is None or self.ts is None:
            raise InvalidTUError(f"Target TU {self.guid} needs integer q and ts")
        if self.ntgt is None and not self.inflight:
            raise InvalidTUError(f"Target TU {self.guid} has neither ntgt nor inflight")

    @classmethod
    def as_source(cls, data: TU | dict[str, Any]) -> TU:
        """Build a source-only TU.

        Raises:
            InvalidTUError: If guid, rid, sid or nsrc are missing
        """
        tu = cls._build(cls._raw(data), SOURCE_TU_KEYS)
        tu._check_source()
        return tu

    @classmethod
    def as_target(cls, data: TU | dict[str, Any]) -> TU:
        """Build a target-only TU.

        Raises:
            InvalidTUError: If guid, q, ts are missing or neither ntgt nor inflight is set
        """
        tu = cls._build(cls._raw(data), TARGET_TU_KEYS)
        tu._check_target()
        return tu

    @classmethod
    def as_pair(cls, data: TU | dict[str, Any]) -> TU:
        """Build a TU carrying both source and target properties.

        Target placeholders without a legacy id get one from the source,
        first come first served among placeholders sharing the same value.

        Raises:
            InvalidTUError: If either side fails validation
        """
        tu = cls._build(cls._raw(data), SOURCE_TU_KEYS | TARGET_TU_KEYS)
        tu._check_source()
        tu._check_target()
        if tu.nsrc and tu.ntgt:
            tu = tu.model_copy(update={"ntgt": fill_legacy_ids(tu.nsrc, tu.ntgt)})
        return tu


def fill_legacy_ids(nsrc: NormalizedString, ntgt: NormalizedString) -> NormalizedString:
    """Copy legacy ids from source placeholders to target placeholders lacking one."""
    _, ph_map = flatten_with_legacy_ids(nsrc)
    pending: dict[str, deque[str]] = defaultdict(deque)
    for mangled, ph in ph_map.items():
        pending[ph.v].append(mangled)
    filled: NormalizedString = []
    for part in ntgt:
        if not isinstance(part, str) and part.v1 is None and pending[part.v]:
            part = part.model_copy(update={"v1": pending[part.v].popleft()})
        filled.append(part)
    return filled


class Job(BaseModel):
    """Translation job with its TUs.

    Properties other than the declared ones are preserved and travel with
    the job props.
    """

    job_guid: str = Field(..., description="Unique job id")
    source_lang: str = Field(..., description="Source language code")
    target_lang: str = Field(..., description="Target language code")
    status: JobStatus = Field(default=JobStatus.CREATED, description="Job status")
    updated_at: str | None = Field(default=None, description="Last update (ISO 8601)")
    translation_provider: str | None = Field(default=None, description="Provider id")
    tm_store: str | None = Field(default=None, description="Owning TM store (local only)")
    tus: list[TU] = Field(default_factory=list, description="Translation units")
    inflight: list[str] | None = Field(default=None, description="Guids still in flight")

    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, extra="allow", use_enum_values=True
    )

    def job_props(self) -> dict[str, Any]:
        """Job properties without TUs, as stored remotely."""
        return self.model_dump(
            by_alias=True, exclude_none=True, exclude={"tus", "inflight", "tm_store"}
        )

    def to_dict(self) -> dict[str, Any]:
        data = self.job_props()
        data["tus"] = [tu.to_dict() for tu in self.tus]
        if self.inflight is not None:
            data["inflight"] = self.inflight
        return data


class BlockJob(BaseModel):
    """One job inside a remote block."""

    job_props: dict[str, Any] = Field(..., description="Job properties")
    tus: list[TU] = Field(default_factory=list, description="Translation units of the job")

    model_config = CAMEL_CONFIG

    def to_job(self) -> Job:
        return Job.model_validate({**self.job_props, "tus": self.tus})

    def to_dict(self) -> dict[str, Any]:
        return {"jobProps": self.job_props, "tus": [tu.to_dict() for tu in self.tus]}


class BlockProps(BaseModel):
    """Identity of a block being written."""

    block_id: str = Field(..., description="Block id")
    translation_provider: str | None = Field(default=None, description="Provider group, if any")


class TOCBlock(BaseModel):
    """Directory entry of one block."""

    block_name: str | None = Field(default=None, description="Storage name of the block")
    modified: str = Field(..., description="Opaque modification marker")
    jobs: list[tuple[str, str]] = Field(
        default_factory=list, description="[jobGuid, updatedAt] pairs"
    )

    model_config = CAMEL_CONFIG


class TOC(BaseModel):
    """Table of contents of a store for one language pair."""

    v: int = Field(default=1, description="Format version")
    source_lang: str = Field(..., description="Source language code")
    target_lang: str = Field(..., description="Target language code")
    blocks: dict[str, TOCBlock] = Field(default_factory=dict, description="Blocks by id")

    model_config = CAMEL_CONFIG

    def job_count(self) -> int:
        return sum(len(block.jobs) for block in self.blocks.values())


class DeltaRow(BaseModel):
    """Relationship between a local job and its remote counterpart."""

    block_id: str | None = Field(default=None, description="Remote block holding the job")
    local_job_guid: str | None = Field(default=None, description="Local job guid, if present")
    remote_job_guid: str | None = Field(default=None, description="Remote job guid, if present")
    local_updated_at: str | None = Field(default=None)
    remote_updated_at: str | None = Field(default=None)
    tm_store: str | None = Field(default=None, description="Store the local job is tagged to")


class SyncDownOptions(BaseModel):
    """Options for pulling a store into the local TM."""

    dryrun: bool = Field(default=True, description="Only compute the plan")
    source_lang: str | None = Field(default=None, description="Restrict to one source language")
    target_lang: str | None = Field(default=None, description="Restrict to one target language")
    delete_extra_jobs: bool = Field(
        default=False, description="Delete local jobs of the store missing remotely"
    )
    erase_parent_tm_store: bool = Field(
        default=False, description="Do not tag imported jobs with the store id"
    )
    store_alias: str | None = Field(default=None, description="Id used to tag local ownership")
    parallelism: int | None = Field(default=None, ge=1, description="Pairs processed at once")


class SyncUpOptions(BaseModel):
    """Options for pushing the local TM to a store."""

    dryrun: bool = Field(default=True, description="Only compute the plan")
    source_lang: str | None = Field(default=None)
    target_lang: str | None = Field(default=None)
    delete_empty_blocks: bool = Field(
        default=False, description="Rewrite blocks that end up empty or foreign"
    )
    include_unassigned: bool = Field(
        default=True, description="Push local jobs not tagged to any store"
    )
    assign_unassigned: bool = Field(
        default=True, description="Tag pushed jobs with the store id"
    )
    store_alias: str | None = Field(default=None)
    parallelism: int | None = Field(default=None, ge=1)


class BootstrapOptions(BaseModel):
    """Options for reloading the local TM from a store."""

    dryrun: bool = Field(default=True, description="Only list the pairs to reload")
    source_lang: str | None = Field(default=None)
    target_lang: str | None = Field(default=None)
    parallelism: int | None = Field(default=None, ge=1)


class SyncDownPlan(BaseModel):
    """What a sync-down fetches and deletes for one pair."""

    source_lang: str
    target_lang: str
    blocks_to_store: list[str] = Field(default_factory=list)
    jobs_to_delete: list[str] = Field(default_factory=list)


class SyncUpPlan(BaseModel):
    """What a sync-up writes for one pair."""

    source_lang: str
    target_lang: str
    blocks_to_update: list[tuple[str, list[str]]] = Field(default_factory=list)
    jobs_to_update: list[str] = Field(default_factory=list)


class BootstrapStats(BaseModel):
    source_lang: str
    target_lang: str
    job_count: int = 0
    tu_count: int = 0


class BootstrapResult(BaseModel):
    """Outcome of a bootstrap run."""

    dryrun: bool
    pairs: list[tuple[str, str]] = Field(default_factory=list)
    stats: list[BootstrapStats] = Field(default_factory=list)


class TmStoreInfo(BaseModel):
    """Public description of a configured store."""

    id: str
    type: str
    access: StoreAccess
    partitioning: Partitioning


class TMStats(BaseModel):
    """Size of the TM for one pair."""

    source_lang: str
    target_lang: str
    job_count: int = 0
    tu_count: int = 0
    distinct_guids: int = 0


class ChannelSegment(BaseModel):
    """Source segment of a content channel with its translation plan.

    ``plan`` maps a target language to the minimum quality a translation
    must reach to count as translated.
    """

    channel: str
    guid: str
    rid: str
    sid: str
    nsrc: NormalizedString
    prj: str | None = None
    notes: Any = None
    words: int = 0
    chars: int = 0
    plan: dict[str, int] = Field(default_factory=dict)


__all__ = [
    "BlockJob",
    "BlockProps",
    "BootstrapOptions",
    "BootstrapResult",
    "BootstrapStats",
    "ChannelSegment",
    "DeltaRow",
    "Job",
    "JobStatus",
    "Partitioning",
    "SOURCE_TU_KEYS",
    "StoreAccess",
    "SyncDownOptions",
    "SyncDownPlan",
    "SyncUpOptions",
    "SyncUpPlan",
    "TARGET_TU_KEYS",
    "TMStats",
    "TOC",
    "TOCBlock",
    "TU",
    "TmStoreInfo",
    "fill_legacy_ids",
]
