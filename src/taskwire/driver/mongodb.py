from __future__ import annotations

import logging
import typing as t
from datetime import UTC, datetime

from pydantic import ValidationError
from pymongo import AsyncMongoClient
from pymongo.errors import ConnectionFailure, PyMongoError

if t.TYPE_CHECKING:
    from pymongo.asynchronous.collection import AsyncCollection

    from taskwire.options import Config

from taskwire.abc import Backend
from taskwire.errors import ErrorTransformer
from taskwire.model import BackendConnectionError, BackendError, TaskState
from taskwire.stringify import mask_url, to_str_obj

DEFAULT_DATABASE: t.Final[str] = "taskwire"
EXPIRES_AT_FIELD: t.Final[str] = "expires_at"

_ERRORS = ErrorTransformer()


@_ERRORS.register
def _transform_conn_err(err: ConnectionFailure) -> BackendConnectionError:
    return BackendConnectionError(str(err))


@_ERRORS.register
def _transform_generic_err(err: PyMongoError) -> BackendError:
    return BackendError(str(err))


class MongoDBBackend(Backend):
    """Result backend storing one document per task, removed by a TTL index after `Config.results_expire_in`.

    Unlike the other backends the constructor may fail: the URI is parsed right away and pymongo errors (e.g.
    `pymongo.errors.InvalidURI`) are raised as is. No connection is made until `connect`.
    """

    def __init__(self, cnf: Config) -> None:
        self.__cnf = cnf
        self.__client: AsyncMongoClient[dict[str, t.Any]] = AsyncMongoClient(
            cnf.result_backend,
            connect=False,
            tz_aware=True,
        )
        database = (
            self.__client[cnf.mongodb.database]
            if cnf.mongodb.database is not None
            else self.__client.get_default_database(default=DEFAULT_DATABASE)
        )
        self.__collection: AsyncCollection[dict[str, t.Any]] = database[cnf.mongodb.collection]
        self.__connected = False

    def __str__(self) -> str:
        return to_str_obj(
            self,
            url=mask_url(self.__cnf.result_backend),
            collection=self.__collection.full_name,
            is_connected=self.is_connected,
        )

    @property
    def is_connected(self) -> bool:
        return self.__connected

    @_ERRORS.wrap
    async def connect(self) -> None:
        if self.__connected:
            return

        try:
            await self.__client.admin.command("ping")
            await self.__collection.create_index(EXPIRES_AT_FIELD, expireAfterSeconds=0)

        except PyMongoError as err:
            logging.warning("can't connect to mongodb %s", self, exc_info=err)
            raise

        self.__connected = True
        logging.debug("connected to mongodb result backend %s", self)

    async def close(self) -> None:
        self.__connected = False
        await self.__client.close()

    @_ERRORS.wrap
    async def set_state(self, state: TaskState) -> None:
        await self.__collection.replace_one(
            {"_id": state.task_uuid},
            {
                **state.model_dump(mode="json"),
                EXPIRES_AT_FIELD: datetime.now(tz=UTC) + self.__cnf.results_expire_in,
            },
            upsert=True,
        )

    @_ERRORS.wrap
    async def get_state(self, task_uuid: str) -> TaskState | None:
        document = await self.__collection.find_one(
            {"_id": task_uuid},
            projection={"_id": False, EXPIRES_AT_FIELD: False},
        )
        if document is None:
            return None

        try:
            return TaskState.model_validate(document)

        except ValidationError as err:
            details = "can't load task state"
            raise BackendError(details, task_uuid) from err

    @_ERRORS.wrap
    async def purge_state(self, task_uuid: str) -> None:
        await self.__collection.delete_one({"_id": task_uuid})
