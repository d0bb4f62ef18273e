"""Unit tests for descriptors, gaze samples and connection options."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

import neon_client
from neon_client.errors import ErrorCode, GeneralError
from neon_client.models import ConnectionOptions, DeviceDescriptor, DeviceModel, GazeSample
from neon_client.simple import SimpleDevice
from tests.helpers.expectations import expect_exception


class TestDeviceDescriptor:
    """Tests for DeviceDescriptor."""

    def test_from_address(self):
        descriptor = DeviceDescriptor.from_address("10.0.0.7", 8081)

        assert descriptor.id == "10.0.0.7:8081"
        assert descriptor.model is DeviceModel.UNKNOWN
        assert descriptor.base_url == "http://10.0.0.7:8081"
        assert descriptor.ws_url == "ws://10.0.0.7:8081"
        assert descriptor.capabilities == {}

    def test_merge_camel_case_status(self):
        """Test wire keys land on snake_case fields and unknown keys are kept."""
        descriptor = DeviceDescriptor.from_address("10.0.0.7", 8081)

        merged = descriptor.merged({"batteryLevel": 42, "isWorn": True, "isRecording": False})

        assert merged.battery_level == 42
        assert merged.is_worn is True
        assert merged.model_extra == {"isRecording": False}
        assert merged.ip_address == "10.0.0.7"
        assert descriptor.battery_level is None

    def test_merge_rejects_out_of_range_battery(self):
        descriptor = DeviceDescriptor.from_address("10.0.0.7")

        with pytest.raises(ValidationError):
            _ = descriptor.merged({"batteryLevel": 101})

    def test_snapshot_is_independent(self):
        descriptor = DeviceDescriptor.from_address("10.0.0.7")
        snapshot = descriptor.snapshot()
        snapshot.txt_record["id"] = "changed"

        assert descriptor.txt_record == {}

    def test_capabilities_by_model(self):
        neon = DeviceDescriptor(id="n", name="Neon monitor:a:b", model=DeviceModel.NEON, ip_address="10.0.0.1")
        invisible = neon.model_copy(update={"model": DeviceModel.INVISIBLE})

        assert neon.capabilities["has_pupil_diameter"] is True
        assert invisible.capabilities["has_pupil_diameter"] is False
        assert neon.port == 8080


class TestGazeSample:
    """Tests for GazeSample."""

    def test_decode_with_extras(self):
        sample = GazeSample.model_validate_json('{"x": 0.4, "y": 0.6, "timestamp": 12.5, "pupilDiameter": 3.1}')

        assert (sample.x, sample.y, sample.timestamp) == (0.4, 0.6, 12.5)
        assert sample.confidence == 1.0
        assert sample.worn is True
        assert sample.model_extra == {"pupilDiameter": 3.1}

    @pytest.mark.parametrize(
        ("fields", "valid"),
        [
            ({"x": 0.0, "y": 1.0}, True),
            ({"x": 1.2, "y": 0.5}, False),
            ({"x": 0.5, "y": -0.1}, False),
            ({"x": 0.5, "y": 0.5, "confidence": 1.5}, False),
        ],
    )
    def test_is_valid(self, fields: dict[str, float], valid: bool):
        assert GazeSample(timestamp=0.0, **fields).is_valid() is valid

    def test_missing_field_is_a_value_error(self):
        with pytest.raises(ValueError):
            _ = GazeSample.model_validate_json('{"x": 0.4}')


class TestConnectionOptions:
    """Tests for ConnectionOptions.build."""

    def test_defaults(self):
        options = ConnectionOptions.build()

        assert options.timeout == 5.0
        assert options.auto_reconnect is True
        assert options.reconnect_interval == 1.0
        assert options.max_reconnect_attempts == 10
        assert options.buffer_size == 1000

    def test_overrides_apply_on_top_of_base(self):
        base = ConnectionOptions(timeout=2.0, buffer_size=10)

        options = ConnectionOptions.build(base, buffer_size=20, auto_reconnect=False)

        assert options.timeout == 2.0
        assert options.buffer_size == 20
        assert options.auto_reconnect is False
        assert base.buffer_size == 10

    @pytest.mark.parametrize(
        "overrides",
        [
            {"timeout": 0},
            {"reconnect_interval": -1},
            {"max_reconnect_attempts": -1},
            {"buffer_size": 0},
            {"unknown_option": True},
        ],
    )
    def test_invalid_values(self, overrides: dict[str, object]):
        err = expect_exception(ConnectionOptions.build, GeneralError, None, **overrides)

        assert err.code is ErrorCode.INVALID_PARAMETER
        assert err.details["errors"]


class TestPackageExports:
    """Tests for the top-level package namespace."""

    def test_version_and_exports(self):
        assert neon_client.__version__ == "0.1.0"
        assert neon_client.SimpleDevice is SimpleDevice
        assert set(neon_client.__all__) >= {"connect", "discover", "connect_to_device", "__version__"}
