"""ASP.NET Web-Forms postback helpers.

A Web-Forms grid pages by posting the whole form back with two event fields
set (``__EVENTTARGET`` = control name, ``__EVENTARGUMENT`` = e.g. ``Page$3``)
and every other input echoed unchanged (view-state, event-validation, ...).

Pager discovery does not hard-code a control naming scheme. Postback links
are grouped by inferred pager control:

- GridView style: one target, argument ``Page$N``; the group key is the target.
- Numbered link-button style: one target per page, empty argument, the page
  number is the link text; the group key is the target minus its last
  ``$`` segment.

The group exposing the most distinct page numbers wins.
"""
from __future__ import annotations

import html
import re
from dataclasses import dataclass, field
from typing import Iterable, Optional

from bs4 import BeautifulSoup, Tag

EVENT_TARGET = "__EVENTTARGET"
EVENT_ARGUMENT = "__EVENTARGUMENT"

_DO_POSTBACK_RE = re.compile(r"""__doPostBack\(\s*['"]([^'"]*)['"]\s*,\s*['"]([^'"]*)['"]\s*\)""")
_POSTBACK_OPTIONS_RE = re.compile(r"""WebForm_PostBackOptions\(\s*['"]([^'"]*)['"]\s*,\s*['"]([^'"]*)['"]""")
_PAGE_ARG_RE = re.compile(r"^Page\$(\d+)$", re.IGNORECASE)

_SKIPPED_INPUT_TYPES = {"submit", "button", "image", "reset", "file"}


@dataclass(slots=True, frozen=True)
class PostbackLink:
    target: str
    argument: str
    text: str

    @property
    def page_number(self) -> Optional[int]:
        m = _PAGE_ARG_RE.match(self.argument)
        if m:
            return int(m.group(1))
        if not self.argument and self.text.isdigit():
            return int(self.text)
        return None

    @property
    def control_name(self) -> str:
        if _PAGE_ARG_RE.match(self.argument):
            return self.target
        return self.target.rsplit("$", 1)[0] if "$" in self.target else self.target


@dataclass(slots=True)
class PagerControl:
    name: str
    pages: dict[int, PostbackLink] = field(default_factory=dict)

    def next_page_after(self, current: int, visited: Iterable[int] = ()) -> Optional[int]:
        """Smallest exposed page number above ``current`` not yet visited."""
        done = set(visited)
        ahead = sorted(p for p in self.pages if p > current and p not in done)
        return ahead[0] if ahead else None


def collect_form_fields(soup: BeautifulSoup | Tag) -> dict[str, str]:
    """Every named input (hidden state included) as a browser would submit it."""
    fields: dict[str, str] = {}
    for inp in soup.find_all("input"):
        name = inp.get("name")
        if not name:
            continue
        input_type = (inp.get("type") or "text").lower()
        if input_type in _SKIPPED_INPUT_TYPES:
            continue
        if input_type in {"checkbox", "radio"} and not inp.has_attr("checked"):
            continue
        fields[name] = inp.get("value", "")
    for select in soup.find_all("select"):
        name = select.get("name")
        if not name:
            continue
        chosen = select.find("option", selected=True) or select.find("option")
        if chosen is not None:
            fields[name] = chosen.get("value", chosen.get_text(strip=True))
    return fields


def build_postback_form(fields: dict[str, str], target: str, argument: str) -> dict[str, str]:
    """Copy ``fields`` with only the two event fields replaced."""
    form = dict(fields)
    form[EVENT_TARGET] = target
    form[EVENT_ARGUMENT] = argument
    return form


def parse_postback(script: str) -> Optional[tuple[str, str]]:
    text = html.unescape(script)
    m = _DO_POSTBACK_RE.search(text) or _POSTBACK_OPTIONS_RE.search(text)
    if not m:
        return None
    return m.group(1), m.group(2)


def find_postback_links(soup: BeautifulSoup | Tag) -> list[PostbackLink]:
    links: list[PostbackLink] = []
    for a in soup.find_all("a"):
        parsed = parse_postback(a.get("href", "")) or parse_postback(a.get("onclick", ""))
        if parsed is None:
            continue
        target, argument = parsed
        links.append(PostbackLink(target=target, argument=argument, text=a.get_text(strip=True)))
    return links


def choose_pager(links: Iterable[PostbackLink]) -> Optional[PagerControl]:
    groups: dict[str, PagerControl] = {}
    for link in links:
        number = link.page_number
        if number is None:
            continue
        group = groups.setdefault(link.control_name, PagerControl(name=link.control_name))
        group.pages.setdefault(number, link)
    if not groups:
        return None
    # max() keeps the first group on ties, i.e. document order
    return max(groups.values(), key=lambda g: len(g.pages))


def _digit_span(container: Tag) -> Optional[int]:
    for span in container.find_all("span"):
        if span.find_parent("a") is not None:
            continue
        text = span.get_text(strip=True)
        if text.isdigit():
            return int(text)
    return None


def detect_current_page(soup: BeautifulSoup, pager: Optional[PagerControl] = None) -> Optional[int]:
    """Read the current page from the pager's non-link ``<span>N</span>`` marker.

    Looks in elements whose class mentions ``pager`` first, then around the
    chosen pager's own links. Returns None when no marker is found.
    """
    for el in soup.find_all(class_=re.compile("pager", re.IGNORECASE)):
        found = _digit_span(el)
        if found is not None:
            return found
    if pager is None:
        return None
    for a in soup.find_all("a"):
        parsed = parse_postback(a.get("href", "")) or parse_postback(a.get("onclick", ""))
        if parsed is None:
            continue
        link = PostbackLink(target=parsed[0], argument=parsed[1], text=a.get_text(strip=True))
        if link.control_name != pager.name:
            continue
        container = a.parent
        for _ in range(3):
            if container is None:
                break
            found = _digit_span(container)
            if found is not None:
                return found
            container = container.parent
        break
    return None


__all__ = [
    "EVENT_TARGET",
    "EVENT_ARGUMENT",
    "PostbackLink",
    "PagerControl",
    "collect_form_fields",
    "build_postback_form",
    "parse_postback",
    "find_postback_links",
    "choose_pager",
    "detect_current_page",
]
