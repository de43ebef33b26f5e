from __future__ import annotations

import asyncio
import logging
import typing as t

from pydantic import ValidationError
from pymemcache.client.hash import HashClient
from pymemcache.exceptions import MemcacheError

if t.TYPE_CHECKING:
    from taskwire.options import Config

from taskwire.abc import Backend
from taskwire.errors import ErrorTransformer
from taskwire.model import BackendConnectionError, BackendError, TaskState, TaskwireError
from taskwire.stringify import to_str_obj

_ERRORS = ErrorTransformer()


@_ERRORS.register
def _keep_own_err(_: TaskwireError) -> None:
    return None


@_ERRORS.register
def _transform_conn_err(err: OSError) -> BackendConnectionError:
    return BackendConnectionError(str(err))


@_ERRORS.register
def _transform_generic_err(err: MemcacheError) -> BackendError:
    return BackendError(str(err))


class MemcacheBackend(Backend):
    """Result backend spreading task states over memcache servers by key hash.

    pymemcache client is blocking, so each command runs in a worker thread.
    """

    def __init__(self, cnf: Config, servers: t.Sequence[str]) -> None:
        self.__cnf = cnf
        self.__servers = tuple(servers)
        self.__client: HashClient | None = None

    def __str__(self) -> str:
        return to_str_obj(self, servers=",".join(self.__servers), is_connected=self.is_connected)

    @property
    def servers(self) -> t.Sequence[str]:
        return self.__servers

    @property
    def is_connected(self) -> bool:
        return self.__client is not None

    @_ERRORS.wrap
    async def connect(self) -> None:
        if self.__client is not None:
            return

        timeout = self.__cnf.memcache.timeout.total_seconds() if self.__cnf.memcache.timeout is not None else None
        client = HashClient(
            list(self.__servers),
            connect_timeout=timeout,
            timeout=timeout,
            # NOTE: no retries, a failed server leaves the ring at once. Otherwise the client returns defaults (`None`,
            #  `False`) instead of raising until the retry timeout passes.
            retry_attempts=0,
            dead_timeout=self.__cnf.memcache.dead_timeout.total_seconds(),
        )

        try:
            # NOTE: memcache client connects lazily, so the first command checks that servers are reachable.
            await asyncio.to_thread(client.get, self.__get_key("ping"))

        except (MemcacheError, OSError) as err:
            logging.warning("can't connect to memcache %s", self, exc_info=err)
            client.close()
            raise

        self.__client = client
        logging.debug("connected to memcache result backend %s", self)

    async def close(self) -> None:
        client, self.__client = self.__client, None
        if client is not None:
            await asyncio.to_thread(client.close)

    @_ERRORS.wrap
    async def set_state(self, state: TaskState) -> None:
        stored = await asyncio.to_thread(
            self.__get_client().set,
            self.__get_key(state.task_uuid),
            state.model_dump_json().encode(),
            expire=int(self.__cnf.results_expire_in.total_seconds()),
            noreply=False,
        )
        if not stored:
            details = "task state was not stored"
            raise BackendError(details, state.task_uuid)

    @_ERRORS.wrap
    async def get_state(self, task_uuid: str) -> TaskState | None:
        value = await asyncio.to_thread(self.__get_client().get, self.__get_key(task_uuid))
        if value is None:
            return None

        try:
            return TaskState.model_validate_json(value)

        except ValidationError as err:
            details = "can't load task state"
            raise BackendError(details, task_uuid) from err

    @_ERRORS.wrap
    async def purge_state(self, task_uuid: str) -> None:
        await asyncio.to_thread(self.__get_client().delete, self.__get_key(task_uuid), noreply=False)

    def __get_client(self) -> HashClient:
        if self.__client is None:
            raise BackendConnectionError(self)

        return self.__client

    def __get_key(self, task_uuid: str) -> str:
        return f"{self.__cnf.memcache.key_prefix}{task_uuid}"
