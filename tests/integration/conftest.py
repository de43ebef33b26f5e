import typing as t
from uuid import uuid4

import pytest
from _pytest.fixtures import SubRequest

from taskwire.abc import Backend, Broker
from taskwire.factory import create_backend, create_broker
from taskwire.options import Config

BROKER_DRIVERS: t.Final[t.Sequence[str]] = ("amqp", "redis")
BACKEND_DRIVERS: t.Final[t.Sequence[str]] = ("amqp", "redis", "memcache", "mongodb")


def get_driver_url(request: SubRequest, driver: str) -> str:
    enabled = request.config.getoption("drivers") or ()
    if driver not in enabled:
        pytest.skip(f"{driver} driver is not enabled, use `--drivers={driver}`")

    return t.cast(str, request.config.getoption(f"{driver}_url"))


@pytest.fixture
def stub_queue_name(request: SubRequest) -> str:
    # NOTE: live queues outlive the test run, a unique name keeps leftovers of previous runs away.
    return f"{request.node.originalname}-{uuid4().hex}"


@pytest.fixture(params=BROKER_DRIVERS)
def live_broker_url(request: SubRequest) -> str:
    return get_driver_url(request, request.param)


@pytest.fixture(params=BACKEND_DRIVERS)
def live_backend_url(request: SubRequest) -> str:
    return get_driver_url(request, request.param)


@pytest.fixture
async def broker(live_broker_url: str, stub_queue_name: str) -> t.AsyncIterator[Broker]:
    cnf = Config(broker=live_broker_url, result_backend="eager", default_queue=stub_queue_name)

    async with create_broker(cnf) as broker:
        yield broker


@pytest.fixture
async def backend(live_backend_url: str) -> t.AsyncIterator[Backend]:
    cnf = Config(broker="eager", result_backend=live_backend_url)

    async with create_backend(cnf) as backend:
        yield backend
