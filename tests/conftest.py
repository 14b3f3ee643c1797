"""Shared fixtures for BK168xB tests."""

import math
from unittest.mock import MagicMock

import pytest

import sys, os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from bk168xb import BK168xB, BK1685B, BK1687B, BK1688B, Capabilities


@pytest.fixture(params=[BK1685B, BK1687B, BK1688B], ids=lambda v: v.model)
def any_psu(request):
    return request.param


@pytest.fixture(params=[BK1687B, BK1688B], ids=lambda v: v.model)
def low_voltage_psu(request):
    """Models encoding current with one decimal."""
    return request.param


@pytest.fixture
def high_voltage_psu():
    """The 60V model, which encodes current with two decimals."""
    return BK1685B


_UNREPRESENTABLE = [-1.0, math.nan, math.inf, -math.inf]


@pytest.fixture(params=_UNREPRESENTABLE + [100.0, 101.0])
def invalid_voltage(request):
    return request.param


@pytest.fixture(params=_UNREPRESENTABLE + [100.0, 101.0])
def invalid_current_low_voltage(request):
    return request.param


@pytest.fixture(params=_UNREPRESENTABLE + [10.0, 10.1])
def invalid_current_high_voltage(request):
    return request.param


@pytest.fixture
def mock_psu():
    """A BK1685B client with the serial port mocked out.

    - _ser is a MagicMock whose read() returns a bare "OK\\r" by default
    - capabilities are pre-loaded (60.1V / 5.01A)
    """
    psu = BK168xB("/dev/fake", variant=BK1685B)

    psu._ser = MagicMock()
    psu._ser.is_open = True
    psu._ser.read = MagicMock(return_value=b"OK\r")

    psu._capabilities = Capabilities(max_voltage=60.1, max_current=5.01)

    return psu
