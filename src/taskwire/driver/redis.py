from __future__ import annotations

import logging
import typing as t

from pydantic import ValidationError
from redis import ConnectionError as RedisConnectionError
from redis import RedisError
from redis import TimeoutError as RedisTimeoutError
from redis.asyncio import Redis
from redis.asyncio.retry import Retry
from redis.backoff import ConstantBackoff

if t.TYPE_CHECKING:
    from taskwire.options import Config

from taskwire.abc import Backend, Broker
from taskwire.errors import ErrorTransformer
from taskwire.model import BackendConnectionError, BackendError, BrokerConnectionError, BrokerError, TaskState
from taskwire.stringify import mask_secret, to_str_obj

DEFAULT_HOST: t.Final[str] = "localhost"
DEFAULT_PORT: t.Final[int] = 6379

_BROKER_ERRORS = ErrorTransformer()
_BACKEND_ERRORS = ErrorTransformer()


@_BROKER_ERRORS.register
def _transform_broker_conn_err(err: RedisConnectionError) -> BrokerConnectionError:
    return BrokerConnectionError(str(err))


@_BROKER_ERRORS.register
def _transform_broker_generic_err(err: RedisError) -> BrokerError:
    return BrokerError(str(err))


@_BACKEND_ERRORS.register
def _transform_backend_conn_err(err: RedisConnectionError) -> BackendConnectionError:
    return BackendConnectionError(str(err))


@_BACKEND_ERRORS.register
def _transform_backend_generic_err(err: RedisError) -> BackendError:
    return BackendError(str(err))


def split_address(address: str) -> tuple[str, int]:
    """Split `host[:port]` into host & port, the host is passed to redis client as is, without validation."""
    host, sep, port = address.rpartition(":")
    if sep and port.isdigit() and (":" not in host or host.startswith("[")):
        return host.strip("[]") or DEFAULT_HOST, int(port)

    # NOTE: no port (or a bare IPv6 address), the whole string is the host.
    return address or DEFAULT_HOST, DEFAULT_PORT


def create_redis(cnf: Config, host: str, password: str, db: int) -> Redis:
    address, port = split_address(host)

    return Redis(
        host=address,
        port=port,
        password=password or None,
        db=db,
        socket_timeout=cnf.redis.socket_timeout.total_seconds() if cnf.redis.socket_timeout is not None else None,
        retry=Retry(
            backoff=ConstantBackoff(backoff=cnf.redis.retry_backoff.total_seconds()),
            retries=cnf.redis.retries,
            supported_errors=(RedisConnectionError, RedisTimeoutError, ConnectionError),  # type: ignore[arg-type]
        ),
    )


class RedisBroker(Broker):
    """Broker on top of redis lists: `RPUSH` to publish, `BLPOP` to consume."""

    def __init__(self, cnf: Config, host: str, password: str, db: int) -> None:
        self.__cnf = cnf
        self.__host = host
        self.__password = password
        self.__db = db
        self.__redis = create_redis(cnf, host, password, db)
        self.__connected = False

    def __str__(self) -> str:
        return to_str_obj(
            self,
            host=self.__host,
            password=mask_secret(self.__password),
            db=self.__db,
            is_connected=self.is_connected,
        )

    @property
    def is_connected(self) -> bool:
        return self.__connected

    @_BROKER_ERRORS.wrap
    async def connect(self) -> None:
        if self.__connected:
            return

        try:
            await self.__redis.initialize()
            await self.__redis.ping()

        except RedisError as err:
            logging.warning("can't connect to redis broker %s", self, exc_info=err)
            raise

        self.__connected = True
        logging.debug("connected to redis broker %s", self)

    async def close(self) -> None:
        self.__connected = False
        await self.__redis.aclose()

    @_BROKER_ERRORS.wrap
    async def publish(self, body: bytes, routing_key: str | None = None) -> None:
        await self.__redis.rpush(self.__get_key(routing_key), body)

    @_BROKER_ERRORS.wrap_iter
    async def consume(self, routing_key: str | None = None) -> t.AsyncIterator[bytes]:
        key = self.__get_key(routing_key)

        while self.__connected:
            # NOTE: short timeout allows to notice the broker closing between polls.
            item = await self.__redis.blpop([key], timeout=1)
            if item is None:
                continue

            _, body = item
            yield body

    @_BROKER_ERRORS.wrap
    async def pending(self, routing_key: str | None = None) -> int:
        return t.cast(int, await self.__redis.llen(self.__get_key(routing_key)))

    def __get_key(self, routing_key: str | None) -> str:
        return routing_key if routing_key is not None else self.__cnf.default_queue


class RedisBackend(Backend):
    """Result backend storing JSON encoded task states with expiration."""

    def __init__(self, cnf: Config, host: str, password: str, db: int) -> None:
        self.__cnf = cnf
        self.__host = host
        self.__password = password
        self.__db = db
        self.__redis = create_redis(cnf, host, password, db)
        self.__connected = False

    def __str__(self) -> str:
        return to_str_obj(
            self,
            host=self.__host,
            password=mask_secret(self.__password),
            db=self.__db,
            is_connected=self.is_connected,
        )

    @property
    def is_connected(self) -> bool:
        return self.__connected

    @_BACKEND_ERRORS.wrap
    async def connect(self) -> None:
        if self.__connected:
            return

        try:
            await self.__redis.initialize()
            await self.__redis.ping()

        except RedisError as err:
            logging.warning("can't connect to redis result backend %s", self, exc_info=err)
            raise

        self.__connected = True
        logging.debug("connected to redis result backend %s", self)

    async def close(self) -> None:
        self.__connected = False
        await self.__redis.aclose()

    @_BACKEND_ERRORS.wrap
    async def set_state(self, state: TaskState) -> None:
        await self.__redis.set(
            self.__get_key(state.task_uuid),
            state.model_dump_json(),
            ex=self.__cnf.results_expire_in,
        )

    @_BACKEND_ERRORS.wrap
    async def get_state(self, task_uuid: str) -> TaskState | None:
        value = await self.__redis.get(self.__get_key(task_uuid))
        if value is None:
            return None

        try:
            return TaskState.model_validate_json(value)

        except ValidationError as err:
            details = "can't load task state"
            raise BackendError(details, task_uuid) from err

    @_BACKEND_ERRORS.wrap
    async def purge_state(self, task_uuid: str) -> None:
        await self.__redis.delete(self.__get_key(task_uuid))

    def __get_key(self, task_uuid: str) -> str:
        return f"{self.__cnf.redis.state_key_prefix}{task_uuid}"
