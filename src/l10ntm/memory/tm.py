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

"""Translation Memory query facade.

Provides per-language-pair access to the local TM with:
- Winner lookup by guid, job or exact source match
- Placeholder-compatible exact matches for leverage
- Channel translation status and untranslated content
- Maintenance deletions with dry-run plans
"""

from __future__ import annotations

import logging
from collections.abc import Iterator, Sequence
from typing import Any

from l10ntm.core.models import TU, BlockJob, TMStats
from l10ntm.core.normalized import parse_parts
from l10ntm.core.placeholders import are_compatible
from l10ntm.memory.dal import REGRESSION_UPDATED_AT, TuDAL, TuDeletion

logger = logging.getLogger(__name__)


class TM:
    """Translation Memory for one language pair.

    Example:
        >>> tm = manager.get_tm("en", "fr")
        >>> matches = await tm.get_exact_matches(["Hello, ", Placeholder(t="x", v="{name}")])
        >>> for tu in matches:
        ...     print(tu.ntgt, tu.q)
    """

    def __init__(self, source_lang: str, target_lang: str, dal: TuDAL, regression: bool = False):
        """Initialize the facade.

        Args:
            source_lang: Source language code
            target_lang: Target language code
            dal: TU accessor scoped to the same pair
            regression: Stamp touched jobs with a fixed time
        """
        self.source_lang = source_lang
        self.target_lang = target_lang
        self.dal = dal
        self.regression = regression

    def __repr__(self) -> str:
        return f"TM({self.source_lang!r}, {self.target_lang!r})"

    async def get_entries(self, guids: Sequence[str]) -> dict[str, TU]:
        """Get winning entries keyed by guid. Unknown guids are omitted."""
        return self.dal.get_entries(guids)

    async def get_entry(self, guid: str) -> TU | None:
        return self.dal.get_entries([guid]).get(guid)

    async def get_entries_by_job(self, job_guid: str) -> list[TU]:
        return self.dal.get_job_tus(job_guid)

    async def get_job(self, job_guid: str) -> BlockJob | None:
        """Get job properties and TUs in the shape stored remotely."""
        job = self.dal.db.jobs.get_job(job_guid)
        if job is None:
            return None
        return BlockJob(job_props=job.job_props(), tus=job.tus)

    def iter_jobs(self, job_guids: Sequence[str]) -> Iterator[BlockJob]:
        """Lazily yield jobs, one at a time."""
        for job in self.dal.get_jobs(job_guids):
            yield BlockJob(job_props=job.job_props(), tus=job.tus)

    async def get_exact_matches(self, nsrc: Sequence[Any]) -> list[TU]:
        """Winning entries with the same source shape and compatible placeholders.

        Args:
            nsrc: Normalized source; placeholders may be models or JSON dicts

        Raises:
            pydantic.ValidationError: If a source part is not a valid placeholder
        """
        source = parse_parts(nsrc)
        candidates = self.dal.get_exact_match_candidates(source)
        matches = [tu for tu in candidates if are_compatible(source, tu.ntgt)]
        logger.debug(
            f"Exact matches {self.source_lang}->{self.target_lang}: "
            f"{len(matches)}/{len(candidates)} compatible"
        )
        return matches

    async def get_stats(self) -> TMStats:
        return self.dal.get_stats()

    async def get_translation_status(self, channel: str) -> dict[str, dict[str, int]]:
        return self.dal.get_translation_status(channel)

    async def get_untranslated_content(self, channel: str, limit: int = 5000) -> list[TU]:
        return self.dal.get_untranslated_content(channel, limit)

    async def search(self, offset: int = 0, limit: int = 100, **filters: Any) -> list[TU]:
        """Free-form search, see :meth:`TuDAL.search` for filters."""
        return self.dal.search(offset=offset, limit=limit, **filters)

    async def lookup(
        self,
        guid: str | None = None,
        nid: str | None = None,
        rid: str | None = None,
        sid: str | None = None,
    ) -> list[TU]:
        return self.dal.lookup(guid=guid, nid=nid, rid=rid, sid=sid)

    async def get_quality_distribution(self) -> dict[int, int]:
        return self.dal.get_quality_distribution()

    async def delete_empty_jobs(self, dryrun: bool = True) -> int:
        """Delete jobs with no TUs. Returns how many were (or would be) deleted."""
        count = self.dal.delete_empty_jobs(dryrun=dryrun)
        if not dryrun and count:
            logger.info(f"Deleted {count} empty jobs in {self.source_lang}->{self.target_lang}")
        return count

    async def delete_over_rank(self, max_rank: int, dryrun: bool = True) -> TuDeletion:
        """Delete entries ranked below the ``max_rank`` best ones of their guid."""
        return self._delete_keys(self.dal.get_over_rank_keys(max_rank), dryrun)

    async def delete_by_quality(self, q: int, dryrun: bool = True) -> TuDeletion:
        """Delete entries with exactly quality ``q``."""
        return self._delete_keys(self.dal.get_quality_keys(q), dryrun)

    def _delete_keys(self, tu_keys: list[tuple[str, str]], dryrun: bool) -> TuDeletion:
        if dryrun or not tu_keys:
            return TuDeletion(dryrun=dryrun, tu_keys=tu_keys)
        updated_at = REGRESSION_UPDATED_AT if self.regression else None
        result = self.dal.delete_tu_keys(tu_keys, updated_at)
        logger.info(
            f"Deleted {result.deleted_tus_count} TUs in {self.source_lang}->{self.target_lang}, "
            f"touched {result.touched_jobs_count} jobs"
        )
        return result


__all__ = ["TM"]
