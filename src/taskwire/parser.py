"""Extraction of connection parameters from connection strings.

The strings are split on literal tokens, not parsed as URIs: there is no escaping and no query string support, a
password is everything before `@` and a database index is everything after the first `/`.
"""

import re
import typing as t

from taskwire.model import InvalidSchemeError, MalformedMemcacheURLError, MalformedRedisURLError
from taskwire.options import MemcacheParameters, RedisParameters
from taskwire.scheme import Scheme, get_prefix

REDIS_PREFIX: t.Final[str] = get_prefix(Scheme.REDIS)
MEMCACHE_PREFIX: t.Final[str] = get_prefix(Scheme.MEMCACHE)

DEFAULT_REDIS_DB: t.Final[int] = 0
# NOTE: bigger values overflow a 64-bit integer and fall back to the default database.
MAX_REDIS_DB: t.Final[int] = 2**63 - 1

_REDIS_DB_RE: t.Final[re.Pattern[str]] = re.compile(r"\+?[0-9]+")


def check_redis_url(url: str) -> None:
    """Ensure `redis://` occurs exactly once, at the very start."""
    match url.split(REDIS_PREFIX):
        case ["", _]:
            return

        case _:
            details = f"redis connection string should be in format {REDIS_PREFIX}password@host:port/db"
            raise MalformedRedisURLError(details, url)


def parse_redis_url(url: str) -> RedisParameters:
    parts = url.split(REDIS_PREFIX)
    if parts[0] != "":
        details = "no redis scheme found"
        raise InvalidSchemeError(details, url)

    if len(parts) != 2:  # noqa: PLR2004
        details = f"redis connection string should be in format {REDIS_PREFIX}password@host:port/db"
        raise InvalidSchemeError(details, url)

    password = ""
    match parts[1].split("@"):
        case [password, host_and_db]:
            pass

        case [host_and_db, *_]:
            pass

    match host_and_db.split("/"):
        case [host]:
            db = DEFAULT_REDIS_DB

        case [host, db_text, *_]:
            db = parse_redis_db(db_text)

    return RedisParameters(host=host, password=password, db=db)


def parse_redis_db(value: str) -> int:
    """Parse the database index of a redis connection string.

    Malformed values (not a number, negative, empty, above `MAX_REDIS_DB`) fall back to the default database `0`
    instead of failing, so `redis://host/` and `redis://host/notanumber` both select database `0`.
    """
    if _REDIS_DB_RE.fullmatch(value) is None:
        return DEFAULT_REDIS_DB

    db = int(value)
    return db if db <= MAX_REDIS_DB else DEFAULT_REDIS_DB


def parse_memcache_url(url: str) -> MemcacheParameters:
    match url.split(MEMCACHE_PREFIX):
        case ["", remainder]:
            pass

        case _:
            details = f"memcache connection string should be in format {MEMCACHE_PREFIX}server1:port,server2:port"
            raise MalformedMemcacheURLError(details, url)

    servers = tuple(server for server in remainder.split(",") if server)
    if not servers:
        details = "memcache connection string has no servers"
        raise MalformedMemcacheURLError(details, url)

    return MemcacheParameters(servers=servers)
