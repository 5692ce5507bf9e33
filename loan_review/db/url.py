from __future__ import annotations

from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

_SSL_DISABLED = {"0", "false", "no", "off", "disable"}


def normalize_database_url(url: str) -> str:
    """Coerce a Postgres URL to the asyncpg driver.

    asyncpg rejects libpq's ``sslmode``; it is rewritten to ``ssl`` with the same meaning.
    """
    url = (url or "").strip()
    if not url:
        return url

    parts = urlsplit(url)
    scheme = parts.scheme
    if scheme in {"postgres", "postgresql", "postgresql+psycopg", "postgresql+psycopg2"}:
        scheme = "postgresql+asyncpg"

    query = dict(parse_qsl(parts.query, keep_blank_values=True))
    if scheme == "postgresql+asyncpg":
        sslmode = query.pop("sslmode", None)
        if sslmode is not None and "ssl" not in query:
            normalized = sslmode.lower().strip()
            query["ssl"] = "disable" if normalized in _SSL_DISABLED else normalized

    new_query = urlencode(query, doseq=True)
    return urlunsplit((scheme, parts.netloc, parts.path, new_query, parts.fragment))
