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

"""Placeholder matching between a source and a candidate target.

A TM entry can only be used to render a target when every placeholder of
the translation maps back to a placeholder of the source and no placeholder
was dropped or duplicated along the way.
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any

from pydantic import ValidationError

from l10ntm.core.exceptions import IncompatiblePlaceholdersError
from l10ntm.core.normalized import (
    NormalizedString,
    Part,
    Placeholder,
    flatten_with_legacy_ids,
    minify_legacy_id,
    parse_parts,
)


class PlaceholderMatcher:
    """Resolves target placeholders against the placeholders of a source.

    Lookup order: minified legacy id (positional letter dropped), then raw
    value equality. Legacy ids are derived from the source itself, so a
    translation that reordered ``{{a_x_name}}`` into ``{{b_x_name}}`` still
    resolves.

    Example:
        >>> nsrc = ["Hello, ", Placeholder(t="x", v="{name}"), "!"]
        >>> matcher = PlaceholderMatcher(nsrc)
        >>> matcher.match(Placeholder(t="x", v="{{b_x_name}}", v1="b_x_name")).v
        '{name}'
    """

    def __init__(self, nsrc: Sequence[Any]):
        parts = parse_parts(nsrc)
        self.by_legacy_id: dict[str, Placeholder] = {}
        self.by_value: dict[str, Placeholder] = {}
        _, ph_map = flatten_with_legacy_ids(parts)
        for mangled, placeholder in ph_map.items():
            mini = minify_legacy_id(mangled)
            if mini is not None:
                self.by_legacy_id.setdefault(mini, placeholder)
        for part in parts:
            if isinstance(part, str):
                continue
            # ids carried over from an earlier flattening
            mini = minify_legacy_id(part.v1)
            if mini is not None:
                self.by_legacy_id.setdefault(mini, part)
            self.by_value.setdefault(part.v, part)

    def match(self, part: Placeholder) -> Placeholder | None:
        """Return the source placeholder matching ``part``, if any."""
        mini = minify_legacy_id(part.v1)
        if mini is not None and mini in self.by_legacy_id:
            return self.by_legacy_id[mini]
        return self.by_value.get(part.v)


def make_matcher(nsrc: Sequence[Any]) -> PlaceholderMatcher:
    """Build a matcher for the placeholders of ``nsrc``."""
    return PlaceholderMatcher(nsrc)


def placeholder_count(nstr: Sequence[Part]) -> int:
    return sum(1 for part in nstr if not isinstance(part, str))


def _coerce(nsrc: Any, ntgt: Any) -> tuple[NormalizedString, NormalizedString] | None:
    if not isinstance(nsrc, list) or not isinstance(ntgt, list):
        return None
    try:
        return parse_parts(nsrc), parse_parts(ntgt)
    except ValidationError:
        return None


def are_compatible(nsrc: Any, ntgt: Any) -> bool:
    """Check whether ``ntgt`` can be rendered against ``nsrc``.

    True only when both are normalized strings, every target placeholder
    resolves to a source placeholder and placeholder counts are equal.
    Reordered placeholders are compatible. Placeholders may be given as
    models or in their JSON form; anything else is incompatible.
    """
    parsed = _coerce(nsrc, ntgt)
    if parsed is None:
        return False
    src, tgt = parsed
    matcher = make_matcher(src)
    for part in tgt:
        if not isinstance(part, str) and matcher.match(part) is None:
            return False
    return placeholder_count(src) == placeholder_count(tgt)


def ensure_compatible(nsrc: Any, ntgt: Any, guid: str | None = None) -> None:
    """Raise :class:`IncompatiblePlaceholdersError` unless compatible.

    Raises:
        IncompatiblePlaceholdersError: If placeholders cannot be re-associated
    """
    parsed = _coerce(nsrc, ntgt)
    if parsed is None:
        raise IncompatiblePlaceholdersError("Source and target must be normalized strings", guid)
    src, tgt = parsed
    matcher = make_matcher(src)
    for part in tgt:
        if not isinstance(part, str) and matcher.match(part) is None:
            raise IncompatiblePlaceholdersError(
                f"Target placeholder {part.v1 or part.v!r} not found in source", guid
            )
    src_count, tgt_count = placeholder_count(src), placeholder_count(tgt)
    if src_count != tgt_count:
        raise IncompatiblePlaceholdersError(
            f"Placeholder count mismatch: source has {src_count}, target has {tgt_count}", guid
        )


__all__ = [
    "PlaceholderMatcher",
    "are_compatible",
    "ensure_compatible",
    "make_matcher",
    "placeholder_count",
]
