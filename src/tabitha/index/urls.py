"""URL helpers: normalized keys for dedup/caching, domains, and tab → card."""

from __future__ import annotations

from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from tabitha.browser.surface import NO_GROUP, Tab, TabGroup
from tabitha.db.models import Card, tab_card_id

TRACKING_PARAMS: frozenset[str] = frozenset(
    [
        "utm_source",
        "utm_medium",
        "utm_campaign",
        "utm_term",
        "utm_content",
        "ref",
        "source",
        "fbclid",
        "gclid",
        "_ga",
        "gclsrc",
        "dclid",
    ]
)


def normalize_url(url: str) -> str:
    """Normalized URL key: drop fragment and tracking params, lowercase, no trailing ``/``.

    Unparseable input comes back lowercased and trimmed.
    """
    raw = (url or "").strip()
    try:
        parts = urlsplit(raw)
        if not parts.scheme or not parts.netloc:
            return raw.lower()
        query = [
            (k, v)
            for k, v in parse_qsl(parts.query, keep_blank_values=True)
            if k.lower() not in TRACKING_PARAMS and not k.lower().startswith("utm_")
        ]
        rebuilt = urlunsplit(
            (parts.scheme, parts.netloc, parts.path, urlencode(query), "")
        )
    except ValueError:
        return raw.lower()
    return rebuilt.rstrip("/").lower().strip()


def domain_of(url: str) -> str:
    """Hostname without ``www.``, lowercased; empty string when unparseable."""
    try:
        host = urlsplit((url or "").strip()).hostname or ""
    except ValueError:
        return ""
    host = host.lower()
    return host[4:] if host.startswith("www.") else host


def parent_domain(domain: str) -> str:
    """Last two labels of *domain* (``docs.google.com`` → ``google.com``)."""
    labels = [p for p in domain.split(".") if p]
    return ".".join(labels[-2:]) if len(labels) >= 2 else domain


def last_path_segment(url: str) -> str:
    try:
        path = urlsplit(url or "").path
    except ValueError:
        return ""
    segments = [s for s in path.split("/") if s]
    return segments[-1].lower() if segments else ""


def card_type(url: str) -> str:
    try:
        path = urlsplit(url or "").path.lower()
    except ValueError:
        return "page"
    return "pdf" if path.endswith(".pdf") else "page"


def group_label(group: TabGroup | None, group_id: int) -> str | None:
    if group_id == NO_GROUP:
        return None
    if group is not None and group.title:
        return group.title
    return f"group:{group_id}"


def card_from_tab(tab: Tab, group: TabGroup | None, now: int) -> Card:
    """Build the card for an open *tab*. Active tabs count as visited *now*."""
    return Card(
        card_id=tab_card_id(tab.id),
        source="tab",
        source_id=tab.id,
        tab_id=tab.id,
        window_id=tab.window_id,
        title=tab.title or "",
        url=tab.url or "",
        domain=domain_of(tab.url),
        type=card_type(tab.url),
        is_pinned=tab.pinned,
        group_name=group_label(group, tab.group_id),
        last_visited_at=now if tab.active else (tab.last_accessed or now),
        updated_at=now,
    )
