"""Test helpers for the pool agent test suite"""

from tests.helpers.gateway_stubs import (
    FakeClock,
    FakeGateway,
    make_pool,
)

__all__ = [
    "FakeClock",
    "FakeGateway",
    "make_pool",
]
