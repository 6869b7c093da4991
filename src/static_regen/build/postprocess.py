"""HTML post-processing applied before a snapshot is written."""

from __future__ import annotations

import html
import re
from datetime import datetime

GENERATOR_NAME = "static-regen"
_HEAD_CLOSE_RE = re.compile(r"</head>", re.IGNORECASE)
_PRESERVE_TAGS: tuple[str, ...] = ("pre", "code", "textarea", "script")
_PLACEHOLDER = "<!--STATIC_REGEN_PRESERVE_{index}-->"
_COMMENT_RE = re.compile(r"<!--(?!STATIC_REGEN_PRESERVE).*?-->", re.DOTALL)


def build_marker(built_at: datetime, *, generator: str = GENERATOR_NAME) -> str:
    return f"\n<!-- Built by {generator} {built_at.isoformat()} -->\n"


def inject_build_meta(
    document: str,
    canonical_url: str,
    built_at: datetime,
    *,
    generator: str = GENERATOR_NAME,
) -> str:
    """Insert canonical link and build marker before ``</head>``.

    Documents without a head tag only get the marker appended.
    """

    marker = build_marker(built_at, generator=generator)
    match = _HEAD_CLOSE_RE.search(document)
    if match is None:
        return document + marker
    tag = f'<link rel="canonical" href="{html.escape(canonical_url, quote=True)}"/>' + marker
    return document[: match.start()] + tag + document[match.start() :]


def minify_html(document: str) -> str:
    """Collapse whitespace and drop comments outside whitespace-sensitive blocks."""

    preserved: list[str] = []

    def _stash(match: re.Match[str]) -> str:
        preserved.append(match.group(0))
        return _PLACEHOLDER.format(index=len(preserved) - 1)

    for tag in _PRESERVE_TAGS:
        pattern = re.compile(rf"<{tag}\b[^>]*>.*?</{tag}>", re.IGNORECASE | re.DOTALL)
        document = pattern.sub(_stash, document)

    document = re.sub(r"\s+", " ", document)
    document = re.sub(r">\s+<", "><", document)
    document = _COMMENT_RE.sub("", document)

    for index, block in enumerate(preserved):
        document = document.replace(_PLACEHOLDER.format(index=index), block, 1)
    return document.strip()
