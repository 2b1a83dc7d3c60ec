"""Tests for the radio adapter helpers and the mock radio."""

from __future__ import annotations

from types import SimpleNamespace
from unittest.mock import AsyncMock, patch

import pytest

from waveplus_receiver.identity import is_wave_plus, resolve_serial_number
from waveplus_receiver.radio import (
    BleakRadioAdapter,
    MockRadioAdapter,
    manufacturer_data_from_bleak,
)
from waveplus_receiver.scanner import BleScanner


def test_manufacturer_data_restores_company_id():
    adv = SimpleNamespace(manufacturer_data={0x0334: b"\x01\x00\x00\x00\x09\x00"})

    data = manufacturer_data_from_bleak(adv)

    assert data[:2] == b"\x34\x03"
    assert resolve_serial_number(data) == "1"


def test_manufacturer_data_prefers_wave_plus_entry():
    adv = SimpleNamespace(
        manufacturer_data={0x004C: b"\x02\x15", 0x0334: b"\x05\x00\x00\x00"}
    )
    assert manufacturer_data_from_bleak(adv) == b"\x34\x03\x05\x00\x00\x00"


def test_manufacturer_data_empty():
    assert manufacturer_data_from_bleak(SimpleNamespace(manufacturer_data={})) == b""
    assert manufacturer_data_from_bleak(SimpleNamespace(manufacturer_data=None)) == b""


@pytest.mark.asyncio
async def test_bleak_adapter_scan_converts_and_filters():
    wave = (
        SimpleNamespace(address="AA:BB:CC:DD:EE:01", name=None),
        SimpleNamespace(
            manufacturer_data={0x0334: b"\x2a\x00\x00\x00"}, rssi=-61, local_name="Wave+"
        ),
    )
    other = (
        SimpleNamespace(address="11:22:33:44:55:66", name="phone"),
        SimpleNamespace(manufacturer_data={0x004C: b"\x10\x05"}, rssi=-40, local_name=None),
    )
    discover = AsyncMock(return_value={"a": wave, "b": other})

    with patch("waveplus_receiver.radio.BleakScanner.discover", discover):
        ads = await BleakRadioAdapter(power_cycle=False).scan(1.0, is_wave_plus)

    discover.assert_awaited_once_with(timeout=1.0, return_adv=True)
    assert [a.address for a in ads] == ["AA:BB:CC:DD:EE:01"]
    assert resolve_serial_number(ads[0].manufacturer_data) == "42"
    assert ads[0].name == "Wave+"


@pytest.mark.asyncio
async def test_bleak_adapter_passes_controller_name():
    discover = AsyncMock(return_value={})

    with patch("waveplus_receiver.radio.BleakScanner.discover", discover):
        await BleakRadioAdapter(adapter="hci1", power_cycle=False).scan(2.0, is_wave_plus)

    discover.assert_awaited_once_with(timeout=2.0, return_adv=True, adapter="hci1")


@pytest.mark.asyncio
async def test_power_cycle_runs_bluetoothctl():
    adapter = BleakRadioAdapter()
    with patch.object(adapter, "_bluetoothctl", AsyncMock()) as ctl:
        await adapter.reopen_device()

    assert [c.args for c in ctl.await_args_list] == [("power", "off"), ("power", "on")]


@pytest.mark.asyncio
async def test_power_cycle_disabled():
    adapter = BleakRadioAdapter(power_cycle=False)
    with patch.object(adapter, "_bluetoothctl", AsyncMock()) as ctl:
        await adapter.reopen_device()

    ctl.assert_not_awaited()


@pytest.mark.asyncio
async def test_mock_radio_end_to_end():
    radio = MockRadioAdapter(serial_numbers=[1234, 5678], failure_rate=0.0)
    await radio.open_device()
    scanner = BleScanner(radio, scan_duration=0.01, retries=1, operation_timeout=1.0)

    sessions = await scanner.scan()

    assert sorted(sessions) == ["1234", "5678"]
    values = await sessions["1234"].receive()
    assert 0.0 <= values.humidity <= 100.0
    assert 900.0 < values.pressure < 1100.0


@pytest.mark.asyncio
async def test_power_cycle_survives_unrunnable_bluetoothctl():
    adapter = BleakRadioAdapter()
    spawn = AsyncMock(side_effect=PermissionError("denied"))

    with patch("waveplus_receiver.radio.asyncio.create_subprocess_exec", spawn):
        await adapter.reopen_device()

    assert spawn.await_count == 2
