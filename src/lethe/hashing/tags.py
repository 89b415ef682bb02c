"""Parse, strip and render identifier tags embedded in rendered text."""

from __future__ import annotations

import re
from collections.abc import Iterable
from dataclasses import dataclass

from lethe.hashing.registry import normalize_type

_HASH = r"[a-f0-9]{6}(?:_\d+)?"
_NAME = r"[a-zA-Z_][a-zA-Z0-9_]*"

# <acp:TYPE prunable_hash="H">content</acp:TYPE>
ACP_WRAP_RE = re.compile(
    rf'<acp:({_NAME})\s+prunable_hash="({_HASH})">(.*?)</acp:\1>', re.IGNORECASE | re.DOTALL
)

# <acp:TYPE prunable_hash="H"/>
ACP_REF_RE = re.compile(rf'<acp:({_NAME})\s+prunable_hash="({_HASH})"\s*/>', re.IGNORECASE)

# <TAG prunable_hash="H">content</TAG>, never acp-prefixed
ATTR_HASH_RE = re.compile(
    rf'<(?!acp:)({_NAME})\s+prunable_hash="({_HASH})">(.*?)</\1>', re.IGNORECASE | re.DOTALL
)

# <TYPE_hash>H</TYPE_hash>
ELEMENT_RE = re.compile(rf"<({_NAME})_hash>\s*({_HASH})\s*</\1_hash>", re.IGNORECASE)

_ANY_ATTR_RE = re.compile(
    rf'<(?:acp:)?({_NAME})\s+prunable_hash="({_HASH})"(?:\s*/>|>(.*?)</(?:acp:)?\1>)',
    re.IGNORECASE | re.DOTALL,
)


@dataclass(frozen=True)
class HashTag:
    """One identifier tag found in text."""

    type: str
    hash: str
    position: int
    """Character offset of the tag's opening ``<``."""


def extract_tags(text: str) -> list[HashTag]:
    """
    Return every identifier tag in ``text``, ordered by position.

    Types are normalized, so ``<acp:thinking ...>`` and ``<reasoning_hash>``
    both report ``"reasoning"``. Tags nested inside a wrapping tag are not
    reported separately.
    """
    found = [
        HashTag(type=normalize_type(m.group(1)), hash=m.group(2).lower(), position=m.start())
        for m in _ANY_ATTR_RE.finditer(text)
    ]
    found.extend(
        HashTag(type=normalize_type(m.group(1)), hash=m.group(2).lower(), position=m.start())
        for m in ELEMENT_RE.finditer(text)
    )
    found.sort(key=lambda tag: tag.position)
    return found


def strip_tags(text: str, keep_types: Iterable[str] = ()) -> str:
    """
    Remove identifier markup from ``text`` without deleting content.

    - Namespaced wrappers are unwrapped; their inner content is kept verbatim.
    - Namespaced self-closing refs and element-form tags are removed (they
      carry only the identifier).
    - Attribute tags keep their element and content; only the attribute goes.

    Tags whose normalized type is in ``keep_types`` are left untouched.
    """
    keep = {normalize_type(t) for t in keep_types}

    def _kept(name: str) -> bool:
        return normalize_type(name) in keep

    def _unwrap(match: re.Match[str]) -> str:
        return match.group(0) if _kept(match.group(1)) else match.group(3)

    def _drop(match: re.Match[str]) -> str:
        return match.group(0) if _kept(match.group(1)) else ""

    def _drop_attr(match: re.Match[str]) -> str:
        if _kept(match.group(1)):
            return match.group(0)
        tag = match.group(1)
        return f"<{tag}>{match.group(3)}</{tag}>"

    result = ACP_WRAP_RE.sub(_unwrap, text)
    result = ACP_REF_RE.sub(_drop, result)
    result = ATTR_HASH_RE.sub(_drop_attr, result)
    return ELEMENT_RE.sub(_drop, result)


def render_tag(unit_type: str, hash_value: str, content: str) -> str:
    """Wrap ``content`` in the namespaced tag form for ``unit_type``."""
    kind = normalize_type(unit_type)
    return f'<acp:{kind} prunable_hash="{hash_value}">{content}</acp:{kind}>'


def render_ref(unit_type: str, hash_value: str) -> str:
    """Return the self-closing reference form, for units whose content is not shown."""
    return f'<acp:{normalize_type(unit_type)} prunable_hash="{hash_value}"/>'
