from __future__ import annotations

import enum
import typing as t
from datetime import UTC, datetime

from pydantic import BaseModel, ConfigDict, Field


class TaskStatus(enum.StrEnum):
    PENDING = "PENDING"
    RECEIVED = "RECEIVED"
    STARTED = "STARTED"
    RETRY = "RETRY"
    SUCCESS = "SUCCESS"
    FAILURE = "FAILURE"


def _now() -> datetime:
    return datetime.now(tz=UTC)


class TaskState(BaseModel):
    """Last known state of a task, the document stored by result backends."""

    model_config = ConfigDict(frozen=True)

    task_uuid: str = Field(min_length=1)
    status: TaskStatus
    results: list[t.Any] | None = None
    error: str | None = None
    created_at: datetime = Field(default_factory=_now)

    @classmethod
    def pending(cls, task_uuid: str) -> TaskState:
        return cls(task_uuid=task_uuid, status=TaskStatus.PENDING)

    @classmethod
    def received(cls, task_uuid: str) -> TaskState:
        return cls(task_uuid=task_uuid, status=TaskStatus.RECEIVED)

    @classmethod
    def started(cls, task_uuid: str) -> TaskState:
        return cls(task_uuid=task_uuid, status=TaskStatus.STARTED)

    @classmethod
    def retry(cls, task_uuid: str) -> TaskState:
        return cls(task_uuid=task_uuid, status=TaskStatus.RETRY)

    @classmethod
    def success(cls, task_uuid: str, results: t.Sequence[object]) -> TaskState:
        return cls(task_uuid=task_uuid, status=TaskStatus.SUCCESS, results=list(results))

    @classmethod
    def failure(cls, task_uuid: str, error: str) -> TaskState:
        return cls(task_uuid=task_uuid, status=TaskStatus.FAILURE, error=error)

    @property
    def is_completed(self) -> bool:
        return self.is_success or self.is_failure

    @property
    def is_success(self) -> bool:
        return self.status is TaskStatus.SUCCESS

    @property
    def is_failure(self) -> bool:
        return self.status is TaskStatus.FAILURE


class TaskwireError(Exception):
    pass


class ResolverError(TaskwireError, ValueError):
    """Connection string can't be turned into a client. The offending string is kept verbatim in `url`."""

    def __init__(self, details: str, url: str) -> None:
        super().__init__(details, url)
        self.details = details
        self.url = url

    def __str__(self) -> str:
        return f"{self.details}: {self.url!r}"


class InvalidSchemeError(ResolverError):
    pass


class MalformedURLError(ResolverError):
    pass


class MalformedRedisURLError(MalformedURLError):
    pass


class MalformedMemcacheURLError(MalformedURLError):
    pass


class UnsupportedBrokerError(ResolverError):
    pass


class UnsupportedBackendError(ResolverError):
    pass


class BrokerError(TaskwireError):
    pass


class BrokerConnectionError(BrokerError, ConnectionError):
    pass


class BackendError(TaskwireError):
    pass


class BackendConnectionError(BackendError, ConnectionError):
    pass
