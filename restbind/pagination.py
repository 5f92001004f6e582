"""
Pagination helpers for list requests.

Pages are zero-based. A list query fetches ``page_size + 1`` records; the
presence of the extra record is what signals a next page. Links follow
RFC 5988: ``<href>; rel="first", <href>; rel="prev", <href>; rel="next"``.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Iterable
from urllib.parse import quote, urlencode

PAGE_PARAM = "p"

# Largest skip a store accepts (BSON int64).
MAX_SKIP = 2**63 - 1


def max_page(page_size: int) -> int:
    """Highest page whose skip still fits in MAX_SKIP."""
    return MAX_SKIP // page_size


def parse_page(raw: str | None, page_size: int | None = None) -> int:
    """
    Coerce the ``p`` parameter to a page number.

    Anything that is not a finite number >= 0 becomes page 0; fractional
    values are floored. A missing or empty value is page 0. With
    ``page_size`` given, the page is capped at max_page(page_size).
    """
    if raw is None or not raw.strip():
        return 0
    try:
        value = float(raw)
    except ValueError:
        return 0
    if not math.isfinite(value) or value < 0:
        return 0
    page = int(value)
    if page_size is not None:
        page = min(page, max_page(page_size))
    return page


@dataclass(frozen=True)
class PageWindow:
    """Store window for a page: where to start and how many to fetch."""

    page: int
    page_size: int

    @property
    def skip(self) -> int:
        return self.page_size * self.page

    @property
    def limit(self) -> int:
        # One extra record tells us whether another page exists.
        return self.page_size + 1


def page_href(
    path: str,
    params: Iterable[tuple[str, str]],
    page: int,
    base_url: str = "",
) -> str:
    """
    Build the href for ``page``, keeping every other query parameter.

    ``p`` keeps its original position when it was present and is
    appended otherwise.
    """
    items: list[tuple[str, str]] = []
    replaced = False
    for key, value in params:
        if key == PAGE_PARAM:
            if not replaced:
                items.append((PAGE_PARAM, str(page)))
                replaced = True
            continue
        items.append((key, value))
    if not replaced:
        items.append((PAGE_PARAM, str(page)))

    return f"{base_url}{path}?{urlencode(items, quote_via=quote)}"


def page_links(
    path: str,
    params: Iterable[tuple[str, str]],
    page: int,
    has_next: bool,
    base_url: str = "",
) -> list[tuple[str, str]]:
    """Return ``(rel, href)`` pairs for the first, prev and next pages."""
    params = list(params)
    links = [("first", page_href(path, params, 0, base_url))]
    if page > 0:
        links.append(("prev", page_href(path, params, page - 1, base_url)))
    if has_next:
        links.append(("next", page_href(path, params, page + 1, base_url)))
    return links


def format_link_header(links: Iterable[tuple[str, str]]) -> str:
    """Format ``(rel, href)`` pairs as a Link header value."""
    return ", ".join(f'<{href}>; rel="{rel}"' for rel, href in links)


def parse_link_header(header: str) -> dict[str, str]:
    """Parse a Link header value into ``{rel: href}``."""
    links: dict[str, str] = {}
    for part in header.split(","):
        part = part.strip()
        if not part.startswith("<") or ">" not in part:
            continue
        href, _, rest = part[1:].partition(">")
        for attr in rest.split(";"):
            name, _, value = attr.strip().partition("=")
            if name == "rel":
                links[value.strip('"')] = href
    return links


__all__ = [
    "PAGE_PARAM",
    "MAX_SKIP",
    "max_page",
    "PageWindow",
    "parse_page",
    "page_href",
    "page_links",
    "format_link_header",
    "parse_link_header",
]
