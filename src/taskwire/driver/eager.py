from __future__ import annotations

import asyncio
import logging
import typing as t
from collections import defaultdict

from taskwire.abc import Backend, Broker
from taskwire.model import BackendConnectionError, BrokerConnectionError, TaskState
from taskwire.stringify import to_str_obj


class EagerBroker(Broker):
    """In-process broker, each routing key is an unbounded asyncio queue. Nothing leaves the process."""

    def __init__(self) -> None:
        self.__queues = defaultdict[str | None, asyncio.Queue[bytes | None]](asyncio.Queue)
        self.__consumers = defaultdict[str | None, int](int)
        self.__connected = False

    def __str__(self) -> str:
        return to_str_obj(self, is_connected=self.is_connected, queues=len(self.__queues))

    @property
    def is_connected(self) -> bool:
        return self.__connected

    async def connect(self) -> None:
        self.__connected = True

    async def close(self) -> None:
        if not self.__connected:
            return

        self.__connected = False

        # NOTE: `None` wakes up consumers waiting for a message and tells them to stop.
        for routing_key, consumers in self.__consumers.items():
            for _ in range(consumers):
                self.__queues[routing_key].put_nowait(None)

        self.__queues.clear()
        self.__consumers.clear()
        logging.debug("eager broker closed")

    async def publish(self, body: bytes, routing_key: str | None = None) -> None:
        self.__check_connected()
        await self.__queues[routing_key].put(body)

    async def consume(self, routing_key: str | None = None) -> t.AsyncIterator[bytes]:
        self.__check_connected()
        queue = self.__queues[routing_key]

        self.__consumers[routing_key] += 1
        try:
            while (body := await queue.get()) is not None:
                yield body

        finally:
            if self.__consumers.get(routing_key):
                self.__consumers[routing_key] -= 1

    async def pending(self, routing_key: str | None = None) -> int:
        queue = self.__queues.get(routing_key)
        return queue.qsize() if queue is not None else 0

    def __check_connected(self) -> None:
        if not self.__connected:
            raise BrokerConnectionError(self)


class EagerBackend(Backend):
    """In-process result backend, states live in a dict until the backend is closed."""

    def __init__(self) -> None:
        self.__states = dict[str, TaskState]()
        self.__connected = False

    def __str__(self) -> str:
        return to_str_obj(self, is_connected=self.is_connected, states=len(self.__states))

    @property
    def is_connected(self) -> bool:
        return self.__connected

    async def connect(self) -> None:
        self.__connected = True

    async def close(self) -> None:
        self.__connected = False
        self.__states.clear()

    async def set_state(self, state: TaskState) -> None:
        self.__check_connected()
        self.__states[state.task_uuid] = state

    async def get_state(self, task_uuid: str) -> TaskState | None:
        self.__check_connected()
        return self.__states.get(task_uuid)

    async def purge_state(self, task_uuid: str) -> None:
        self.__check_connected()
        self.__states.pop(task_uuid, None)

    def __check_connected(self) -> None:
        if not self.__connected:
            raise BackendConnectionError(self)
