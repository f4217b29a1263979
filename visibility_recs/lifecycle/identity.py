"""
Context identity: domain normalization and the deterministic context key.

    context_key = sha256("{account_id}:{normalized_domain}:{page_set_hash}")[:32]
    page_set_hash = "homepage-only"                       if no pages
                  = md5("|".join(sorted(paths)))[:16]      otherwise

Paths are the path + query of each page URL, so ``https://x.com/a?b=1`` and
``/a?b=1`` hash identically.
"""

from __future__ import annotations

import hashlib
import re
from typing import Iterable, Optional
from urllib.parse import urlsplit

from visibility_recs.errors import ValidationError

HOMEPAGE_ONLY = "homepage-only"

_SCHEME_RE = re.compile(r"^[a-z][a-z0-9+.-]*://")
_PORT_RE = re.compile(r":\d+$")


def normalize_domain(domain: str) -> str:
    """Lowercase, then strip scheme, leading ``www.``, path/trailing slash and port.

    >>> normalize_domain("https://WWW.Example.com:8443/")
    'example.com'
    """
    value = (domain or "").strip().lower()
    value = _SCHEME_RE.sub("", value)
    value = value.split("/", 1)[0]
    value = value.split("?", 1)[0]
    value = _PORT_RE.sub("", value)
    if value.startswith("www."):
        value = value[4:]
    return value


def normalize_path(page: str) -> Optional[str]:
    """Reduce a page URL or path to ``/path?query``; blank input gives ``None``."""
    page = (page or "").strip()
    if not page:
        return None
    if not _SCHEME_RE.match(page.lower()) and not page.startswith("/"):
        # Bare "about" or "example.com/about": parse as if schemeless
        page = "//" + page if "." in page.split("/", 1)[0] else "/" + page
    parts = urlsplit(page)
    path = parts.path or "/"
    return f"{path}?{parts.query}" if parts.query else path


def page_set_hash(page_set: Optional[Iterable[str]]) -> str:
    paths = sorted({p for p in (normalize_path(x) for x in page_set or ()) if p})
    if not paths:
        return HOMEPAGE_ONLY
    return hashlib.md5("|".join(paths).encode("utf-8")).hexdigest()[:16]


def context_key(account_id: int, domain: str, page_set: Optional[Iterable[str]]) -> str:
    """Deterministic identity key for ``(account, domain, page set)``.

    Raises:
        ValidationError: On a non-positive account id or a domain that
            normalizes to the empty string.
    """
    if account_id is None or account_id <= 0:
        raise ValidationError("account_id", f"must be a positive integer, got {account_id!r}.")
    normalized = normalize_domain(domain)
    if not normalized:
        raise ValidationError("domain", f"{domain!r} normalizes to an empty string.")
    raw = f"{account_id}:{normalized}:{page_set_hash(page_set)}"
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()[:32]
