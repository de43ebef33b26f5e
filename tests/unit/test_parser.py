import pytest

from taskwire.model import InvalidSchemeError, MalformedMemcacheURLError, MalformedRedisURLError
from taskwire.options import MemcacheParameters, RedisParameters
from taskwire.parser import check_redis_url, parse_memcache_url, parse_redis_db, parse_redis_url


@pytest.mark.parametrize(
    ("url", "expected"),
    [
        pytest.param("redis://host", RedisParameters(host="host", password="", db=0), id="host only"),
        pytest.param("redis://secret@host/3", RedisParameters(host="host", password="secret", db=3), id="full"),
        pytest.param(
            "redis://secret@localhost:6379/15",
            RedisParameters(host="localhost:6379", password="secret", db=15),
            id="host with port",
        ),
        pytest.param("redis://localhost:6379", RedisParameters(host="localhost:6379"), id="port is part of host"),
        pytest.param("redis://host/1/2", RedisParameters(host="host", db=1), id="extra path segments are ignored"),
        pytest.param("redis://host/+2", RedisParameters(host="host", db=2), id="plus sign"),
        pytest.param("redis://host/007", RedisParameters(host="host", db=7), id="leading zeros"),
        pytest.param(
            "redis://host/db1@host2",
            RedisParameters(host="host2", password="host/db1", db=0),
            id="password is everything before at sign",
        ),
        pytest.param("redis://a@b@c", RedisParameters(host="a", password="", db=0), id="many at signs"),
        pytest.param("redis://@host", RedisParameters(host="host", password="", db=0), id="empty password"),
        pytest.param("redis://", RedisParameters(host="", password="", db=0), id="empty host is accepted"),
    ],
)
def test_parse_redis_url_ok(url: str, expected: RedisParameters) -> None:
    assert parse_redis_url(url) == expected


@pytest.mark.parametrize(
    "url",
    [
        pytest.param("redis://host/notanumber", id="not a number"),
        pytest.param("redis://host/", id="empty"),
        pytest.param("redis://host/-1", id="negative"),
        pytest.param("redis://host/1.5", id="float"),
        pytest.param("redis://host/ 1", id="whitespace"),
        pytest.param("redis://host/1_0", id="underscore"),
        pytest.param("redis://secret@host/x", id="with password"),
    ],
)
def test_parse_redis_url_malformed_db_falls_back_to_default(url: str) -> None:
    params = parse_redis_url(url)

    assert params.db == 0
    assert params.host == "host"


@pytest.mark.parametrize(
    "url",
    [
        pytest.param("", id="empty"),
        pytest.param("host:6379", id="no scheme"),
        pytest.param("xredis://host", id="text before scheme"),
        pytest.param("rediss://host", id="tls scheme"),
        pytest.param("redis://a/redis://b", id="scheme twice"),
        pytest.param("redis://redis://", id="scheme twice in a row"),
    ],
)
def test_parse_redis_url_invalid_scheme(url: str) -> None:
    with pytest.raises(InvalidSchemeError) as err_info:
        parse_redis_url(url)

    assert err_info.value.url == url
    assert repr(url) in str(err_info.value)


def test_parse_redis_url_is_idempotent() -> None:
    url = "redis://secret@host:6379/2"

    assert parse_redis_url(url) == parse_redis_url(url)


@pytest.mark.parametrize(
    ("value", "expected"),
    [
        pytest.param("0", 0),
        pytest.param("15", 15),
        pytest.param("+3", 3),
        pytest.param("", 0),
        pytest.param("abc", 0),
        pytest.param("-5", 0),
        pytest.param("3a", 0),
        pytest.param("３", 0, id="fullwidth digit"),
        pytest.param("9223372036854775807", 9223372036854775807, id="int64 max"),
        pytest.param("9223372036854775808", 0, id="int64 overflow"),
        pytest.param("99999999999999999999", 0, id="huge"),
    ],
)
def test_parse_redis_db(value: str, expected: int) -> None:
    assert parse_redis_db(value) == expected


@pytest.mark.parametrize("url", ["redis://host", "redis://", "redis://secret@host/notanumber"])
def test_check_redis_url_ok(url: str) -> None:
    check_redis_url(url)


@pytest.mark.parametrize("url", ["redis://a/redis://b", "xredis://host", "host"])
def test_check_redis_url_malformed(url: str) -> None:
    with pytest.raises(MalformedRedisURLError) as err_info:
        check_redis_url(url)

    assert err_info.value.url == url


@pytest.mark.parametrize(
    ("url", "expected"),
    [
        pytest.param(
            "memcache://a:11211,b:11211",
            MemcacheParameters(servers=("a:11211", "b:11211")),
            id="two servers",
        ),
        pytest.param(
            "memcache://c:1,a:2,b:3",
            MemcacheParameters(servers=("c:1", "a:2", "b:3")),
            id="order is preserved",
        ),
        pytest.param("memcache://localhost:11211", MemcacheParameters(servers=("localhost:11211",)), id="single"),
        pytest.param(
            "memcache://a:1,,b:2,",
            MemcacheParameters(servers=("a:1", "b:2")),
            id="empty entries are dropped",
        ),
    ],
)
def test_parse_memcache_url_ok(url: str, expected: MemcacheParameters) -> None:
    assert parse_memcache_url(url) == expected


@pytest.mark.parametrize(
    "url",
    [
        pytest.param("memcache://", id="no servers"),
        pytest.param("memcache://,,", id="only commas"),
        pytest.param("memcache://a:1/memcache://b:2", id="scheme twice"),
        pytest.param("redis://a:1", id="other scheme"),
    ],
)
def test_parse_memcache_url_malformed(url: str) -> None:
    with pytest.raises(MalformedMemcacheURLError) as err_info:
        parse_memcache_url(url)

    assert err_info.value.url == url
