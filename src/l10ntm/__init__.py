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


"""
l10ntm - Translation memory engine

Content-addressed translation memory with quality-ranked winners and
block-based synchronization against remote TM stores.
"""

__version__ = "0.1.0"

from l10ntm.core.exceptions import TMError
from l10ntm.core.models import TU, Job, SyncDownOptions, SyncUpOptions
from l10ntm.memory.dal import TMDatabase
from l10ntm.memory.manager import TMManager
from l10ntm.memory.tm import TM

__all__ = [
    "TM",
    "TMDatabase",
    "TMError",
    "TMManager",
    "TU",
    "Job",
    "SyncDownOptions",
    "SyncUpOptions",
    "__version__",
]
