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

"""Remote TM stores."""

from __future__ import annotations

from l10ntm.core.exceptions import InvalidStoreSettingError
from l10ntm.stores.base import StoreWriter, TMStore
from l10ntm.stores.jsonl import FsStoreDelegate, JsonlTmStore
from l10ntm.utils.config import TmStoreConfig

STORE_TYPES: dict[str, type[JsonlTmStore]] = {"jsonl": JsonlTmStore}


def create_tm_store(config: TmStoreConfig) -> TMStore:
    """Instantiate a store from its configuration.

    Raises:
        InvalidStoreSettingError: If the store type is unknown
    """
    store_class = STORE_TYPES.get(config.type.lower())
    if store_class is None:
        raise InvalidStoreSettingError(
            f"Unknown TM store type '{config.type}' for store {config.id}"
        )
    return store_class(
        config.id, config.base_dir, access=config.access, partitioning=config.partitioning
    )


__all__ = [
    "FsStoreDelegate",
    "JsonlTmStore",
    "STORE_TYPES",
    "StoreWriter",
    "TMStore",
    "create_tm_store",
]
