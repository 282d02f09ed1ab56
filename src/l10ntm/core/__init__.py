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


"""Core data structures: normalized segments, placeholders, TUs and jobs."""

from l10ntm.core.exceptions import (
    ConfigurationError,
    IncompatiblePlaceholdersError,
    IntegrityError,
    InvalidStoreSettingError,
    InvalidTOCError,
    InvalidTUError,
    JobNotFoundError,
    StoreAccessError,
    TMError,
    UnknownStoreError,
)
from l10ntm.core.models import (
    TOC,
    TU,
    BlockJob,
    BlockProps,
    BootstrapOptions,
    BootstrapResult,
    BootstrapStats,
    ChannelSegment,
    DeltaRow,
    Job,
    JobStatus,
    Partitioning,
    StoreAccess,
    SyncDownOptions,
    SyncDownPlan,
    SyncUpOptions,
    SyncUpPlan,
    TmStoreInfo,
    TMStats,
    TOCBlock,
)
from l10ntm.core.normalized import (
    FlaggedText,
    NormalizedString,
    Placeholder,
    decode,
    flatten_to_ordinal,
    flatten_with_legacy_ids,
    generate_guid,
    source_guid,
)
from l10ntm.core.placeholders import (
    PlaceholderMatcher,
    are_compatible,
    ensure_compatible,
    make_matcher,
)

__all__ = [
    "BlockJob",
    "BlockProps",
    "BootstrapOptions",
    "BootstrapResult",
    "BootstrapStats",
    "ChannelSegment",
    "ConfigurationError",
    "DeltaRow",
    "FlaggedText",
    "IncompatiblePlaceholdersError",
    "IntegrityError",
    "InvalidStoreSettingError",
    "InvalidTOCError",
    "InvalidTUError",
    "Job",
    "JobNotFoundError",
    "JobStatus",
    "NormalizedString",
    "Partitioning",
    "Placeholder",
    "PlaceholderMatcher",
    "StoreAccess",
    "StoreAccessError",
    "SyncDownOptions",
    "SyncDownPlan",
    "SyncUpOptions",
    "SyncUpPlan",
    "TMError",
    "TMStats",
    "TOC",
    "TOCBlock",
    "TU",
    "TmStoreInfo",
    "UnknownStoreError",
    "are_compatible",
    "decode",
    "ensure_compatible",
    "flatten_to_ordinal",
    "flatten_with_legacy_ids",
    "generate_guid",
    "make_matcher",
    "source_guid",
]
