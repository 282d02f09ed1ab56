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

"""Normalized segment model.

A normalized string is an ordered list of parts. Each part is either a
literal ``str`` or a :class:`Placeholder`. Placeholders keep the raw value
found in the resource (``v``), an optional human sample (``s``) and an
optional legacy mangled id (``v1``) used to re-associate placeholders that
come back inside translations.

The GUID of a segment only depends on its resource id, segment id and the
*shape* of the source: literal text plus the sequence of placeholder kinds.
"""

from __future__ import annotations

import base64
import hashlib
import re
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass
from typing import Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field

PlaceholderKind = Literal["x", "bx", "ex"]

LEGACY_ID_PATTERN = re.compile(
    r"{{(?P<ph>(?P<idx>[a-y]|z\d+)_(?P<t>x|bx|ex)_(?P<name>[0-9A-Za-z_]*))}}"
)
_VALUE_FRAGMENT = re.compile(r"[0-9A-Za-z_]+")

# Base32 alphabet without 0/1/O/I so labels survive being read off a screen
_LABEL_CHARS = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"


class Placeholder(BaseModel):
    """Non-translatable part of a normalized string."""

    t: PlaceholderKind = Field(..., description="Tag kind: x (standalone), bx (open), ex (close)")
    v: str = Field(..., description="Raw placeholder value as found in the resource")
    s: str | None = Field(default=None, description="Sample text shown to translators")
    v1: str | None = Field(default=None, description="Legacy mangled id (e.g. 'a_x_name')")

    model_config = ConfigDict(frozen=True)


Part = Union[str, Placeholder]
NormalizedString = list[Part]


@dataclass(frozen=True)
class FlaggedText:
    """Text part produced by a decoder, optionally raising a segment flag."""

    v: str
    flag: str | None = None


DecodedPart = Union[str, Placeholder, FlaggedText]
Decoder = Callable[[list[Part]], Sequence[DecodedPart]]


def parse_parts(raw: Iterable[Any]) -> NormalizedString:
    """Convert a JSON-decoded normalized string into parts."""
    parts: NormalizedString = []
    for part in raw:
        if isinstance(part, (str, Placeholder)):
            parts.append(part)
        else:
            parts.append(Placeholder.model_validate(part))
    return parts


def dump_parts(nstr: Sequence[Part]) -> list[str | dict[str, Any]]:
    """Convert parts into JSON-friendly values."""
    return [part if isinstance(part, str) else part.model_dump(exclude_none=True) for part in nstr]


def consolidate_parts(
    parts: Iterable[DecodedPart], flags: dict[str, bool] | None = None
) -> NormalizedString:
    """Merge adjacent text parts and record decoder flags."""
    consolidated: NormalizedString = []
    buffer: list[str] = []
    for part in parts:
        if isinstance(part, str):
            buffer.append(part)
        elif isinstance(part, FlaggedText):
            buffer.append(part.v)
            if part.flag and flags is not None:
                flags[part.flag] = True
        else:
            if buffer:
                consolidated.append("".join(buffer))
                buffer = []
            consolidated.append(part)
    text = "".join(buffer)
    if text:
        consolidated.append(text)
    return consolidated


def decode(
    text: str,
    decoders: Sequence[Decoder] | None = None,
    flags: dict[str, bool] | None = None,
) -> NormalizedString:
    """Decode raw segment text into a normalized string.

    Each decoder receives the current parts and returns new parts; only text
    parts are expected to be rewritten. Adjacent text is merged after every
    decoder so the next one sees whole runs of text.

    Args:
        text: Raw segment text
        decoders: Decoders applied in order
        flags: Optional dict collecting flags raised by decoders

    Returns:
        Normalized string
    """
    parts: NormalizedString = [text] if text else []
    for decoder in decoders or ():
        parts = consolidate_parts(decoder(parts), flags)
    return parts


def make_regex_decoder(
    pattern: str | re.Pattern[str],
    kind: PlaceholderKind = "x",
    sample: Callable[[re.Match[str]], str | None] | None = None,
) -> Decoder:
    """Build a decoder turning regex matches inside text parts into placeholders.

    Example:
        >>> braces = make_regex_decoder(r"{\\w+}")
        >>> decode("Hello, {name}!", [braces])
        ['Hello, ', Placeholder(t='x', v='{name}', s=None, v1=None), '!']
    """
    regex = re.compile(pattern) if isinstance(pattern, str) else pattern

    def decoder(parts: list[Part]) -> list[DecodedPart]:
        decoded: list[DecodedPart] = []
        for part in parts:
            if not isinstance(part, str):
                decoded.append(part)
                continue
            pos = 0
            for match in regex.finditer(part):
                if match.start() > pos:
                    decoded.append(part[pos : match.start()])
                decoded.append(
                    Placeholder(t=kind, v=match.group(0), s=sample(match) if sample else None)
                )
                pos = match.end()
            if pos < len(part):
                decoded.append(part[pos:])
        return decoded

    return decoder


def flatten_to_ordinal(nstr: Sequence[Any]) -> str:
    """Flatten a normalized string keeping only the kind of each placeholder.

    Placeholders may be models or their JSON form.
    """
    return "".join(
        part if isinstance(part, str) else f"{{{{{part.t}}}}}" for part in parse_parts(nstr)
    )


def hash_string(value: str) -> str:
    """SHA-256 of a string as 43 URL-safe base64 characters."""
    digest = hashlib.sha256(value.encode("utf-8")).digest()
    return base64.urlsafe_b64encode(digest).decode("ascii")[:43]


def generate_guid(rid: str, sid: str, ordinal_form: str) -> str:
    """Derive the TU fingerprint from resource id, segment id and ordinal source."""
    return hash_string(f"{rid}|{sid}|{ordinal_form}")


def source_guid(rid: str, sid: str, nsrc: Sequence[Part]) -> str:
    """Shorthand for :func:`generate_guid` on a normalized source."""
    return generate_guid(rid, sid, flatten_to_ordinal(nsrc))


def _legacy_prefix(index: int) -> str:
    return chr(96 + index) if index < 26 else f"z{index}"


def flatten_with_legacy_ids(nstr: Sequence[Part]) -> tuple[str, dict[str, Placeholder]]:
    """Flatten a normalized string using mangled placeholder ids.

    Every placeholder becomes ``{{<index>_<kind>_<fragment>}}`` where index is
    ``a``..``y`` then ``z26``, ``z27``...; kind is the tag kind and fragment is
    the first alphanumeric run of the raw value. The returned map goes from
    mangled id to the placeholder (with ``v1`` set).
    """
    flattened: list[str] = []
    ph_map: dict[str, Placeholder] = {}
    index = 0
    for part in nstr:
        if isinstance(part, str):
            flattened.append(part)
            continue
        index += 1
        fragment_match = _VALUE_FRAGMENT.search(part.v or "")
        fragment = fragment_match.group(0) if fragment_match else ""
        mangled = f"{_legacy_prefix(index)}_{part.t}_{fragment}"
        flattened.append(f"{{{{{mangled}}}}}")
        ph_map[mangled] = part.model_copy(update={"v1": mangled})
    return "".join(flattened), ph_map


def extract_parts_with_legacy_ids(text: str, ph_map: dict[str, Placeholder]) -> NormalizedString:
    """Parse a flattened string (usually a translation) back into parts.

    Mangled ids not present in ``ph_map`` are kept as placeholders carrying
    only the mangled id, so compatibility checks can still resolve them.
    """
    parts: NormalizedString = []
    pos = 0
    for match in LEGACY_ID_PATTERN.finditer(text):
        if match.start() > pos:
            parts.append(text[pos : match.start()])
        mangled = match.group("ph")
        known = ph_map.get(mangled)
        if known is not None:
            parts.append(known.model_copy(update={"v1": mangled}))
        else:
            parts.append(Placeholder(t=match.group("t"), v=match.group(0), v1=mangled))
        pos = match.end()
    if pos < len(text):
        parts.append(text[pos:])
    return parts


def minify_legacy_id(v1: str | None) -> str | None:
    """Drop the positional index from a mangled id ('c_x_name' -> 'x_name')."""
    if not v1 or "_" not in v1:
        return None
    return v1.split("_", 1)[1]


def normalized_strings_are_equal(first: Sequence[Part], second: Sequence[Part]) -> bool:
    """Compare normalized strings treating compatible placeholders as equal."""

    def mini(nstr: Sequence[Part]) -> str:
        return "".join(
            part if isinstance(part, str) else f"{{{{{minify_legacy_id(part.v1) or part.v}}}}}"
            for part in nstr
        )

    return mini(first) == mini(second)


def integer_to_label(value: int) -> str:
    """Encode a positive integer as a short unambiguous label."""
    label: list[str] = []
    while value > 0:
        label.append(_LABEL_CHARS[value % 32])
        value //= 32
    return "".join(label)


__all__ = [
    "Decoder",
    "FlaggedText",
    "NormalizedString",
    "Part",
    "Placeholder",
    "consolidate_parts",
    "decode",
    "dump_parts",
    "extract_parts_with_legacy_ids",
    "flatten_to_ordinal",
    "flatten_with_legacy_ids",
    "generate_guid",
    "hash_string",
    "integer_to_label",
    "make_regex_decoder",
    "minify_legacy_id",
    "normalized_strings_are_equal",
    "parse_parts",
    "source_guid",
]
