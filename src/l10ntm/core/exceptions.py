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

"""Exception hierarchy for the translation memory engine.

Errors fall into three families:
- Configuration errors: raised before any I/O (unknown store, wrong access mode)
- Integrity errors: a single operation cannot complete (missing job, bad TOC)
- Compatibility errors: a TM entry cannot be used to render a target
"""

from __future__ import annotations


class TMError(Exception):
    """Base exception for all translation memory errors."""


class ConfigurationError(TMError):
    """Invalid engine or store configuration."""


class UnknownStoreError(ConfigurationError):
    """No TM store is configured with the requested id."""

    def __init__(self, store_id: str, available: list[str] | None = None):
        self.store_id = store_id
        self.available = available or []
        hint = f" (available: {', '.join(self.available)})" if self.available else ""
        super().__init__(f"Unknown TM store: {store_id}{hint}")


class StoreAccessError(ConfigurationError):
    """Operation is not allowed by the store access mode."""

    def __init__(self, store_id: str, access: str, operation: str):
        self.store_id = store_id
        self.access = access
        self.operation = operation
        super().__init__(f"Cannot {operation} TM store {store_id} because it is {access}")


class InvalidStoreSettingError(ConfigurationError):
    """Store was configured with an unsupported access or partitioning value."""


class IntegrityError(TMError):
    """Stored data does not allow the operation to complete."""


class JobNotFoundError(IntegrityError):
    """Referenced job does not exist locally."""

    def __init__(self, job_guid: str):
        self.job_guid = job_guid
        super().__init__(f"Job not found: {job_guid}")


class InvalidTOCError(IntegrityError):
    """Table of contents returned by a store is malformed or has an unknown version."""


class InvalidTUError(IntegrityError):
    """Translation unit is missing mandatory properties."""


class IncompatiblePlaceholdersError(TMError):
    """Target placeholders do not match the source placeholders."""

    def __init__(self, message: str, guid: str | None = None):
        self.guid = guid
        super().__init__(message if guid is None else f"{message} (guid={guid})")


__all__ = [
    "ConfigurationError",
    "IncompatiblePlaceholdersError",
    "IntegrityError",
    "InvalidStoreSettingError",
    "InvalidTOCError",
    "InvalidTUError",
    "JobNotFoundError",
    "StoreAccessError",
    "TMError",
    "UnknownStoreError",
]
