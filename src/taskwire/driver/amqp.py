from __future__ import annotations

import asyncio
import logging
import typing as t
from datetime import UTC, datetime
from uuid import uuid4

from aiormq import Channel, Connection, spec
from aiormq.abc import DeliveredMessage
from aiormq.exceptions import AMQPConnectionError, AMQPError, ChannelNotFoundEntity
from pydantic import ValidationError

if t.TYPE_CHECKING:
    from taskwire.options import Config

from taskwire.abc import Backend, Broker
from taskwire.errors import ErrorTransformer
from taskwire.model import (
    BackendConnectionError,
    BackendError,
    BrokerConnectionError,
    BrokerError,
    TaskState,
    TaskwireError,
)
from taskwire.stringify import mask_url, to_str_obj

PERSISTENT_DELIVERY_MODE: t.Final[int] = 2

_BROKER_ERRORS = ErrorTransformer()
_BACKEND_ERRORS = ErrorTransformer()


@_BROKER_ERRORS.register
@_BACKEND_ERRORS.register
def _keep_own_err(_: TaskwireError) -> None:
    return None


@_BROKER_ERRORS.register
def _transform_broker_conn_err(err: AMQPConnectionError | OSError) -> BrokerConnectionError:
    return BrokerConnectionError(str(err))


@_BROKER_ERRORS.register
def _transform_broker_generic_err(err: AMQPError) -> BrokerError:
    return BrokerError(str(err))


@_BACKEND_ERRORS.register
def _transform_backend_conn_err(err: AMQPConnectionError | OSError) -> BackendConnectionError:
    return BackendConnectionError(str(err))


@_BACKEND_ERRORS.register
def _transform_backend_generic_err(err: AMQPError) -> BackendError:
    return BackendError(str(err))


class AMQPBroker(Broker):
    """Broker on top of an AMQP exchange.

    On connect the exchange from `Config.amqp` and the default queue are declared, the queue is bound with the
    binding key. Bodies published without routing key (or with the binding key) go to the default queue, as do
    consumers without routing key. Other routing keys get their own queue named after the key, declared and bound
    before the first publish or consume.
    """

    def __init__(self, cnf: Config) -> None:
        self.__cnf = cnf
        self.__connection: Connection | None = None
        self.__channel: Channel | None = None
        self.__consumers = set[asyncio.Queue[DeliveredMessage | None]]()
        self.__bound_queues = set[str]()

    def __str__(self) -> str:
        return to_str_obj(
            self,
            url=mask_url(self.__cnf.broker),
            exchange=self.__cnf.amqp.exchange,
            is_connected=self.is_connected,
        )

    @property
    def is_connected(self) -> bool:
        return self.__channel is not None and not self.__channel.is_closed

    @_BROKER_ERRORS.wrap
    async def connect(self) -> None:
        if self.is_connected:
            return

        # NOTE: the channel was closed by the server (e.g. on a channel level error), start over.
        if self.__connection is not None:
            await self.close()

        connection = Connection(self.__cnf.broker)
        try:
            await connection.connect()
            channel = await connection.channel()
            assert isinstance(channel, Channel)

            await channel.exchange_declare(
                exchange=self.__cnf.amqp.exchange,
                exchange_type=self.__cnf.amqp.exchange_type,
                durable=self.__cnf.amqp.durable,
            )
            await self.__bind_queue(channel, self.__cnf.default_queue, self.__cnf.amqp.binding_key)

        except (AMQPError, OSError) as err:
            logging.warning("can't connect to rabbitmq %s", self, exc_info=err)
            await connection.close()
            raise

        self.__connection = connection
        self.__channel = channel
        logging.debug("connected to amqp broker %s", self)

    async def close(self) -> None:
        connection, self.__connection, self.__channel = self.__connection, None, None
        self.__bound_queues.clear()

        for consumer in self.__consumers:
            consumer.put_nowait(None)
        self.__consumers.clear()

        if connection is not None:
            await connection.close()

    @_BROKER_ERRORS.wrap
    async def publish(self, body: bytes, routing_key: str | None = None) -> None:
        channel = self.__get_channel()

        # NOTE: the queue must be bound before publishing, otherwise the exchange drops the body as unroutable.
        await self.__get_queue(channel, routing_key)
        await channel.basic_publish(
            body=body,
            exchange=self.__cnf.amqp.exchange,
            routing_key=routing_key if routing_key is not None else self.__cnf.amqp.binding_key,
            properties=spec.Basic.Properties(
                delivery_mode=PERSISTENT_DELIVERY_MODE if self.__cnf.amqp.durable else None,
                message_id=uuid4().hex,
                timestamp=datetime.now(tz=UTC),
            ),
        )

    @_BROKER_ERRORS.wrap_iter
    async def consume(self, routing_key: str | None = None) -> t.AsyncIterator[bytes]:
        channel = await self.__open_channel()

        deliveries = asyncio.Queue[DeliveredMessage | None]()
        self.__consumers.add(deliveries)
        try:
            if self.__cnf.amqp.prefetch_count is not None:
                await channel.basic_qos(prefetch_count=self.__cnf.amqp.prefetch_count)

            queue = await self.__get_queue(channel, routing_key)
            consume_ok = await channel.basic_consume(queue=queue, consumer_callback=deliveries.put)
            assert isinstance(consume_ok.consumer_tag, str)

            while (message := await deliveries.get()) is not None:
                assert isinstance(message.delivery_tag, int)

                yield message.body
                await channel.basic_ack(message.delivery_tag)

        finally:
            self.__consumers.discard(deliveries)
            if not channel.is_closed:
                await channel.close()

    @_BROKER_ERRORS.wrap
    async def pending(self, routing_key: str | None = None) -> int:
        # NOTE: passive declare of a missing queue closes the channel, so a short-lived one is used.
        channel = await self.__open_channel()
        try:
            declare_ok = await channel.queue_declare(queue=self.__get_queue_name(routing_key), passive=True)

        except ChannelNotFoundEntity:
            return 0

        finally:
            if not channel.is_closed:
                await channel.close()

        return declare_ok.message_count or 0

    def __get_channel(self) -> Channel:
        if self.__channel is None or self.__channel.is_closed:
            raise BrokerConnectionError(self)

        return self.__channel

    async def __open_channel(self) -> Channel:
        if self.__connection is None:
            raise BrokerConnectionError(self)

        channel = await self.__connection.channel()
        assert isinstance(channel, Channel)

        return channel

    def __get_queue_name(self, routing_key: str | None) -> str:
        if routing_key is None or routing_key == self.__cnf.amqp.binding_key:
            return self.__cnf.default_queue

        return routing_key

    async def __get_queue(self, channel: Channel, routing_key: str | None) -> str:
        queue = self.__get_queue_name(routing_key)
        if queue not in self.__bound_queues:
            binding_key = routing_key if routing_key is not None else self.__cnf.amqp.binding_key
            await self.__bind_queue(channel, queue, binding_key)

        return queue

    async def __bind_queue(self, channel: Channel, queue: str, binding_key: str) -> None:
        await channel.queue_declare(queue=queue, durable=self.__cnf.amqp.durable)
        await channel.queue_bind(queue=queue, exchange=self.__cnf.amqp.exchange, routing_key=binding_key)
        self.__bound_queues.add(queue)


class AMQPBackend(Backend):
    """Result backend keeping the latest state of each task in a queue named after the task uuid.

    Queues expire after `Config.results_expire_in` of inactivity. Reading a state doesn't consume it: the message is
    returned to the queue.
    """

    def __init__(self, cnf: Config) -> None:
        self.__cnf = cnf
        self.__connection: Connection | None = None
        self.__channel: Channel | None = None

    def __str__(self) -> str:
        return to_str_obj(self, url=mask_url(self.__cnf.result_backend), is_connected=self.is_connected)

    @property
    def is_connected(self) -> bool:
        return self.__channel is not None and not self.__channel.is_closed

    @_BACKEND_ERRORS.wrap
    async def connect(self) -> None:
        if self.is_connected:
            return

        if self.__connection is not None:
            await self.close()

        connection = Connection(self.__cnf.result_backend)
        try:
            await connection.connect()
            channel = await connection.channel()
            assert isinstance(channel, Channel)

        except (AMQPError, OSError) as err:
            logging.warning("can't connect to rabbitmq %s", self, exc_info=err)
            await connection.close()
            raise

        self.__connection = connection
        self.__channel = channel
        logging.debug("connected to amqp result backend %s", self)

    async def close(self) -> None:
        connection, self.__connection, self.__channel = self.__connection, None, None
        if connection is not None:
            await connection.close()

    @_BACKEND_ERRORS.wrap
    async def set_state(self, state: TaskState) -> None:
        channel = self.__get_channel()

        await self.__declare_queue(channel, state.task_uuid)
        await channel.queue_purge(queue=state.task_uuid)
        await channel.basic_publish(
            body=state.model_dump_json().encode(),
            exchange="",
            routing_key=state.task_uuid,
            properties=spec.Basic.Properties(
                content_type="application/json",
                content_encoding="utf-8",
                delivery_mode=PERSISTENT_DELIVERY_MODE,
            ),
        )

    @_BACKEND_ERRORS.wrap
    async def get_state(self, task_uuid: str) -> TaskState | None:
        channel = self.__get_channel()

        await self.__declare_queue(channel, task_uuid)
        message = await channel.basic_get(queue=task_uuid, no_ack=False)
        if isinstance(message.delivery, spec.Basic.GetEmpty):
            return None

        assert isinstance(message.delivery_tag, int)
        try:
            return TaskState.model_validate_json(message.body)

        except ValidationError as err:
            details = "can't load task state"
            raise BackendError(details, task_uuid) from err

        finally:
            await channel.basic_nack(message.delivery_tag, requeue=True)

    @_BACKEND_ERRORS.wrap
    async def purge_state(self, task_uuid: str) -> None:
        await self.__get_channel().queue_delete(queue=task_uuid)

    def __get_channel(self) -> Channel:
        if self.__channel is None or self.__channel.is_closed:
            raise BackendConnectionError(self)

        return self.__channel

    async def __declare_queue(self, channel: Channel, task_uuid: str) -> None:
        await channel.queue_declare(
            queue=task_uuid,
            durable=True,
            arguments={"x-expires": int(self.__cnf.results_expire_in.total_seconds() * 1000)},
        )
