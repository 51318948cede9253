"""Detail-page field extraction.

Each field is an ordered list of strategies; the first one that yields a
non-empty value wins. Strategies take the parsed page and return a value or
None, so adding a new heuristic is a one-line change to the chain.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Iterable, List, Optional, Sequence, TypeVar

import trafilatura
from bs4 import BeautifulSoup

from compradar.ingestion.dates import parse_timestamp, to_iso

T = TypeVar("T")


@dataclass
class Page:
    """A fetched detail page plus lazily-computed text views."""

    url: str
    html: str
    soup: BeautifulSoup
    _main_text: Optional[str] = None

    @classmethod
    def parse(cls, url: str, html: str) -> "Page":
        return cls(url=url, html=html, soup=BeautifulSoup(html, "html.parser"))

    def select_text(self, selector: str) -> str:
        try:
            el = self.soup.select_one(selector)
        except (ValueError, NotImplementedError):
            return ""
        return collapse(el.get_text(" ")) if el is not None else ""

    def meta(self, *, prop: Optional[str] = None, name: Optional[str] = None) -> str:
        attrs = {"property": prop} if prop else {"name": name}
        el = self.soup.find("meta", attrs=attrs)
        return collapse(el.get("content")) if el is not None else ""

    @property
    def main_text(self) -> str:
        """Boilerplate-free article text (trafilatura); empty when extraction fails."""
        if self._main_text is None:
            self._main_text = collapse(trafilatura.extract(self.html, include_comments=False, include_tables=True) or "")
        return self._main_text

    def text_sources(self) -> List[str]:
        """Visible-text views in order of preference: main, article, extracted content, body."""
        out = []
        for sel in ("main", "article"):
            txt = self.select_text(sel)
            if txt:
                out.append(txt)
        if self.main_text:
            out.append(self.main_text)
        body = self.soup.body or self.soup
        txt = collapse(body.get_text(" "))
        if txt:
            out.append(txt)
        return out


def collapse(s: Optional[str]) -> str:
    return re.sub(r"\s+", " ", s or "").strip()


def first_of(strategies: Iterable[Callable[[], Optional[T]]]) -> Optional[T]:
    for strategy in strategies:
        value = strategy()
        if value:
            return value
    return None


# -----------------------------
# Title
# -----------------------------
def extract_title(page: Page, *, selector: Optional[str] = None) -> str:
    chain = []
    if selector:
        chain.append(lambda: page.select_text(selector))
    chain += [
        lambda: page.select_text("h1"),
        lambda: page.meta(prop="og:title"),
        lambda: collapse(page.soup.title.get_text()) if page.soup.title else "",
        lambda: page.url,
    ]
    return first_of(chain) or ""


# -----------------------------
# Published timestamp
# -----------------------------
PUBLISHED_META = (
    ("property", "article:published_time"),
    ("name", "article:published_time"),
    ("property", "og:published_time"),
    ("property", "og:updated_time"),
    ("name", "pubdate"),
    ("name", "publishdate"),
    ("name", "date"),
    ("name", "dc.date"),
)

MONTH = r"(?:Jan(?:uary)?|Feb(?:ruary)?|Mar(?:ch)?|Apr(?:il)?|May|Jun(?:e)?|Jul(?:y)?|Aug(?:ust)?|Sep(?:t(?:ember)?)?|Oct(?:ober)?|Nov(?:ember)?|Dec(?:ember)?)"
DATE_PHRASE = (
    r"(?:\d{1,2}(?:st|nd|rd|th)?\s+" + MONTH + r"(?:,?\s+\d{4})?"
    r"|" + MONTH + r"\s+\d{1,2}(?:st|nd|rd|th)?(?:,?\s+\d{4})?"
    r"|\d{1,2}/\d{1,2}/\d{2,4}"
    r"|\d{4}-\d{2}-\d{2})"
)
_DATE_IN_TEXT = re.compile(r"\b" + DATE_PHRASE + r"\b", re.I)


def _date_value(text: Optional[str], now: Optional[datetime]) -> Optional[str]:
    if not text:
        return None
    cleaned = re.sub(r"(\d)(st|nd|rd|th)\b", r"\1", text, flags=re.I)
    return to_iso(parse_timestamp(cleaned, now=now))


def _published_from_meta(page: Page, now: Optional[datetime]) -> Optional[str]:
    for attr, value in PUBLISHED_META:
        el = page.soup.find("meta", attrs={attr: value})
        iso = _date_value(el.get("content") if el is not None else None, now)
        if iso:
            return iso
    for el in page.soup.find_all("time"):
        iso = _date_value(el.get("datetime"), now)
        if iso:
            return iso
    return None


def _published_from_text(page: Page, now: Optional[datetime]) -> Optional[str]:
    for txt in page.text_sources():
        m = _DATE_IN_TEXT.search(txt)
        if m:
            return _date_value(m.group(0), now)
    return None


def extract_published(page: Page, *, now: datetime) -> str:
    return first_of(
        [
            lambda: _published_from_meta(page, now),
            lambda: _published_from_text(page, now),
            lambda: to_iso(now),
        ]
    )


# -----------------------------
# Deadline
# -----------------------------
GENERIC_DEADLINE_RE = re.compile(
    r"(Entries?\s+close|Closes?|Closing(?:\s+date)?|Ends?)(?:\s*[:\-]|\s+on)?\s+(" + DATE_PHRASE + r")",
    re.I,
)


def _match_date(regex: re.Pattern, text: str, now: Optional[datetime]) -> Optional[str]:
    m = regex.search(text)
    if not m:
        return None
    groups = [m.group(i) for i in range(min(regex.groups, 2), -1, -1)]
    for candidate in groups:
        iso = _date_value(candidate, now)
        if iso:
            return iso
    return None


def extract_deadline(page: Page, *, custom_regex: Optional[str] = None, now: Optional[datetime] = None) -> Optional[str]:
    """Custom per-site regex first, else the generic "closes <date>" pattern, over each text view."""
    regexes: List[re.Pattern] = []
    if custom_regex:
        regexes.append(re.compile(custom_regex, re.I))
    else:
        regexes.append(GENERIC_DEADLINE_RE)
    for regex in regexes:
        for txt in page.text_sources():
            iso = _match_date(regex, txt, now)
            if iso:
                return iso
    return None


# -----------------------------
# Prize / surrounding text
# -----------------------------
def extract_prize(page: Page, *, selector: Optional[str] = None) -> Optional[str]:
    if not selector:
        return None
    return page.select_text(selector) or None


CONTEXT_SELECTORS: Sequence[str] = (
    "nav[aria-label*=readcrumb]",
    ".breadcrumb",
    ".breadcrumbs",
    "[itemtype*=BreadcrumbList]",
    ".category",
    ".post-categories",
    "a[rel~=tag]",
)


def surrounding_text(page: Page) -> str:
    """Breadcrumb / section / category text around the headline."""
    parts = [page.meta(prop="article:section"), page.meta(prop="og:site_name")]
    for sel in CONTEXT_SELECTORS:
        try:
            parts.extend(collapse(el.get_text(" ")) for el in page.soup.select(sel))
        except (ValueError, NotImplementedError):
            continue
    return " ".join(p for p in parts if p)
