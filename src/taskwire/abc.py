import abc
import typing as t

from taskwire.model import TaskState


class Client(t.AsyncContextManager["Client"], metaclass=abc.ABCMeta):
    async def __aenter__(self) -> t.Self:
        await self.connect()
        return self

    async def __aexit__(self, exc_type: object, exc_val: object, exc_tb: object) -> bool | None:
        await self.close()
        return None

    @property
    @abc.abstractmethod
    def is_connected(self) -> bool:
        raise NotImplementedError

    @abc.abstractmethod
    async def connect(self) -> None:
        raise NotImplementedError

    @abc.abstractmethod
    async def close(self) -> None:
        raise NotImplementedError


class Broker(Client, metaclass=abc.ABCMeta):
    """Message transport: task producers publish bodies, workers consume them.

    When `routing_key` is omitted, the broker's default queue (or binding key) is used.
    """

    @abc.abstractmethod
    async def publish(self, body: bytes, routing_key: str | None = None) -> None:
        raise NotImplementedError

    @abc.abstractmethod
    def consume(self, routing_key: str | None = None) -> t.AsyncIterator[bytes]:
        raise NotImplementedError

    @abc.abstractmethod
    async def pending(self, routing_key: str | None = None) -> int:
        """Count of published bodies not consumed yet."""
        raise NotImplementedError


class Backend(Client, metaclass=abc.ABCMeta):
    """Store of task states, independent of the broker."""

    @abc.abstractmethod
    async def set_state(self, state: TaskState) -> None:
        raise NotImplementedError

    @abc.abstractmethod
    async def get_state(self, task_uuid: str) -> TaskState | None:
        raise NotImplementedError

    @abc.abstractmethod
    async def purge_state(self, task_uuid: str) -> None:
        raise NotImplementedError
