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

"""Base abstract class for TM stores.

Defines the interface that every remote translation memory store must
implement. A store keeps jobs grouped in blocks and exposes a table of
contents per language pair so callers can diff without downloading blocks.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import AsyncIterator, Sequence
from contextlib import AbstractAsyncContextManager
from typing import ClassVar, Protocol

from l10ntm.core.exceptions import InvalidStoreSettingError, StoreAccessError
from l10ntm.core.models import TOC, BlockJob, BlockProps, Partitioning, StoreAccess, TmStoreInfo


class StoreWriter(Protocol):
    """Write session for one language pair.

    Attributes:
        toc: TOC of the pair, updated as blocks are written
    """

    toc: TOC

    async def write_block(self, block_props: BlockProps, jobs: Sequence[BlockJob]) -> None:
        """Replace a block with ``jobs``. An empty sequence deletes the block."""
        ...


class TMStore(ABC):
    """Abstract base class for TM stores.

    Attributes:
        id: Store id, compared case-insensitively by the manager
        access: Whether the store can be read, written or both
        partitioning: How jobs are grouped into blocks on sync-up
    """

    type: ClassVar[str] = "abstract"

    def __init__(
        self,
        id: str,
        access: StoreAccess | str = StoreAccess.READWRITE,
        partitioning: Partitioning | str = Partitioning.LANGUAGE,
    ):
        """Initialize store settings.

        Raises:
            InvalidStoreSettingError: If access or partitioning is unknown
        """
        self.id = id
        try:
            self.access = StoreAccess(access)
        except ValueError as e:
            raise InvalidStoreSettingError(f"Unknown access '{access}' for TM store {id}") from e
        try:
            self.partitioning = Partitioning(partitioning)
        except ValueError as e:
            raise InvalidStoreSettingError(
                f"Unknown partitioning '{partitioning}' for TM store {id}"
            ) from e

    def __repr__(self) -> str:
        return f"{type(self).__name__}(id={self.id!r}, access={self.access.value})"

    def info(self) -> TmStoreInfo:
        return TmStoreInfo(
            id=self.id, type=self.type, access=self.access, partitioning=self.partitioning
        )

    def ensure_readable(self, operation: str) -> None:
        if not self.access.can_read:
            raise StoreAccessError(self.id, self.access.value, operation)

    def ensure_writable(self, operation: str) -> None:
        if not self.access.can_write:
            raise StoreAccessError(self.id, self.access.value, operation)

    @abstractmethod
    async def get_available_lang_pairs(self) -> list[tuple[str, str]]:
        """List language pairs the store holds TOCs for."""

    @abstractmethod
    async def get_toc(self, source_lang: str, target_lang: str) -> TOC:
        """Get the table of contents of a pair. Missing pairs yield an empty TOC."""

    @abstractmethod
    def get_tm_blocks(
        self, source_lang: str, target_lang: str, block_ids: Sequence[str]
    ) -> AsyncIterator[BlockJob]:
        """Stream the jobs of the given blocks, one at a time."""

    @abstractmethod
    def writer(
        self, source_lang: str, target_lang: str
    ) -> AbstractAsyncContextManager[StoreWriter]:
        """Open a write session for a pair.

        The TOC is saved when the session exits, including on errors.

        Raises:
            StoreAccessError: If the store is read-only
        """


__all__ = ["StoreWriter", "TMStore"]
