from __future__ import annotations

import typing as t
from dataclasses import dataclass, field
from datetime import timedelta

type ExchangeType = t.Literal["direct", "fanout", "topic", "headers"]

EXCHANGE_TYPES: t.Final[frozenset[str]] = frozenset(t.get_args(ExchangeType.__value__))


@dataclass(frozen=True, kw_only=True)
class AMQPOptions:
    exchange: str = "taskwire_exchange"
    exchange_type: ExchangeType = "direct"
    binding_key: str = "taskwire_task"
    durable: bool = True
    prefetch_count: int | None = None

    def __post_init__(self) -> None:
        if self.exchange_type not in EXCHANGE_TYPES:
            details = "unknown exchange type"
            raise ValueError(details, self)

        if self.prefetch_count is not None and self.prefetch_count < 0:
            details = "prefetch count must be greater than or equal to 0"
            raise ValueError(details, self)


@dataclass(frozen=True, kw_only=True)
class RedisOptions:
    retries: int = 10
    retry_backoff: timedelta = timedelta(seconds=3)
    socket_timeout: timedelta | None = None
    # NOTE: prepended to task uuids, keeps task states apart from broker queues in the same db.
    state_key_prefix: str = "taskwire:"

    def __post_init__(self) -> None:
        if self.retries < 0:
            details = "retries must be greater than or equal to 0"
            raise ValueError(details, self)


@dataclass(frozen=True, kw_only=True)
class MongoDBOptions:
    # NOTE: when not set, the default database of mongodb URI is used and then `taskwire`.
    database: str | None = None
    collection: str = "task_states"


@dataclass(frozen=True, kw_only=True)
class MemcacheOptions:
    key_prefix: str = "taskwire:"
    timeout: timedelta | None = None
    # NOTE: how long a failed server stays out of the ring.
    dead_timeout: timedelta = timedelta(seconds=60)

    def __post_init__(self) -> None:
        if self.dead_timeout < timedelta():
            details = "dead timeout must not be negative"
            raise ValueError(details, self)


@dataclass(frozen=True, kw_only=True)
class Config:
    broker: str
    result_backend: str
    default_queue: str = "taskwire_tasks"
    results_expire_in: timedelta = timedelta(hours=1)
    amqp: AMQPOptions = field(default_factory=AMQPOptions)
    redis: RedisOptions = field(default_factory=RedisOptions)
    mongodb: MongoDBOptions = field(default_factory=MongoDBOptions)
    memcache: MemcacheOptions = field(default_factory=MemcacheOptions)

    def __post_init__(self) -> None:
        if self.results_expire_in <= timedelta():
            details = "results expiration must be positive"
            raise ValueError(details, self)

        if not self.default_queue:
            details = "default queue name must be set"
            raise ValueError(details, self)


@dataclass(frozen=True, kw_only=True)
class RedisParameters:
    host: str
    password: str = ""
    db: int = 0


@dataclass(frozen=True, kw_only=True)
class MemcacheParameters:
    servers: tuple[str, ...]

    def __post_init__(self) -> None:
        if isinstance(self.servers, str):
            details = "a string can't be used as a list of servers, provide a sequence of `host:port` values"
            raise ValueError(details, self.servers)  # noqa: TRY004

        if not self.servers:
            details = "at least one memcache server must be set"
            raise ValueError(details, self)
