from collections.abc import Iterator

import pytest
import structlog

from tests.gateway_fakes import FakeTransport, ManualClock, RecordingSleep


@pytest.fixture(autouse=True)
def _reset_logging() -> Iterator[None]:
    yield
    structlog.reset_defaults()


@pytest.fixture
def fake_transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock()


@pytest.fixture
def recording_sleep() -> RecordingSleep:
    return RecordingSleep()
