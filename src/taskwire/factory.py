from __future__ import annotations

import typing as t
from dataclasses import dataclass

if t.TYPE_CHECKING:
    from taskwire.abc import Backend, Broker
    from taskwire.options import Config

from taskwire.model import UnsupportedBackendError, UnsupportedBrokerError
from taskwire.parser import check_redis_url, parse_memcache_url, parse_redis_url
from taskwire.scheme import Scheme, detect_scheme
from taskwire.stringify import to_str_obj

type RedisFactory[T] = t.Callable[[Config, str, str, int], T]


def create_amqp_broker(cnf: Config) -> Broker:
    from taskwire.driver.amqp import AMQPBroker

    return AMQPBroker(cnf)


def create_redis_broker(cnf: Config, host: str, password: str, db: int) -> Broker:
    from taskwire.driver.redis import RedisBroker

    return RedisBroker(cnf, host, password, db)


def create_eager_broker() -> Broker:
    from taskwire.driver.eager import EagerBroker

    return EagerBroker()


def create_amqp_backend(cnf: Config) -> Backend:
    from taskwire.driver.amqp import AMQPBackend

    return AMQPBackend(cnf)


def create_memcache_backend(cnf: Config, servers: t.Sequence[str]) -> Backend:
    from taskwire.driver.memcache import MemcacheBackend

    return MemcacheBackend(cnf, servers)


def create_redis_backend(cnf: Config, host: str, password: str, db: int) -> Backend:
    from taskwire.driver.redis import RedisBackend

    return RedisBackend(cnf, host, password, db)


def create_mongodb_backend(cnf: Config) -> Backend:
    from taskwire.driver.mongodb import MongoDBBackend

    return MongoDBBackend(cnf)


def create_eager_backend() -> Backend:
    from taskwire.driver.eager import EagerBackend

    return EagerBackend()


@dataclass(frozen=True, kw_only=True)
class BrokerFactories:
    amqp: t.Callable[[Config], Broker] = create_amqp_broker
    redis: RedisFactory[Broker] = create_redis_broker
    eager: t.Callable[[], Broker] = create_eager_broker


@dataclass(frozen=True, kw_only=True)
class BackendFactories:
    amqp: t.Callable[[Config], Backend] = create_amqp_backend
    memcache: t.Callable[[Config, t.Sequence[str]], Backend] = create_memcache_backend
    redis: RedisFactory[Backend] = create_redis_backend
    # NOTE: the only fallible factory, its errors (e.g. invalid mongodb URI) are propagated as is.
    mongodb: t.Callable[[Config], Backend] = create_mongodb_backend
    eager: t.Callable[[], Backend] = create_eager_backend


class BrokerResolver:
    def __init__(self, factories: BrokerFactories | None = None) -> None:
        self.__factories = factories if factories is not None else BrokerFactories()

    def __str__(self) -> str:
        return to_str_obj(self, factories=self.__factories)

    def resolve(self, cnf: Config) -> Broker:
        url = cnf.broker

        match detect_scheme(url):
            case Scheme.AMQP:
                return self.__factories.amqp(cnf)

            case Scheme.REDIS:
                check_redis_url(url)
                params = parse_redis_url(url)
                return self.__factories.redis(cnf, params.host, params.password, params.db)

            case Scheme.EAGER:
                return self.__factories.eager()

            case _:
                details = "unsupported broker"
                raise UnsupportedBrokerError(details, url)


class BackendResolver:
    def __init__(self, factories: BackendFactories | None = None) -> None:
        self.__factories = factories if factories is not None else BackendFactories()

    def __str__(self) -> str:
        return to_str_obj(self, factories=self.__factories)

    def resolve(self, cnf: Config) -> Backend:
        url = cnf.result_backend

        match detect_scheme(url):
            case Scheme.AMQP:
                return self.__factories.amqp(cnf)

            case Scheme.MEMCACHE:
                return self.__factories.memcache(cnf, parse_memcache_url(url).servers)

            case Scheme.REDIS:
                params = parse_redis_url(url)
                return self.__factories.redis(cnf, params.host, params.password, params.db)

            case Scheme.MONGODB:
                return self.__factories.mongodb(cnf)

            case Scheme.EAGER:
                return self.__factories.eager()

            case _:
                details = "unsupported result backend"
                raise UnsupportedBackendError(details, url)


def create_broker(cnf: Config) -> Broker:
    return BrokerResolver().resolve(cnf)


def create_backend(cnf: Config) -> Backend:
    return BackendResolver().resolve(cnf)
