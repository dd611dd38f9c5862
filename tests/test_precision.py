"""Tests for import-time precision configuration."""

import jax.numpy as jnp

import cirmcut
from cirmcut.devices import diode_law


class TestPrecision:
    def test_x64_on_cpu(self):
        info = cirmcut.get_precision_info()
        assert info["backend"] == "cpu"
        assert info["x64_enabled"]
        assert cirmcut.get_float_dtype() == jnp.float64

    def test_device_laws_are_float64(self):
        law = diode_law(jnp.asarray(0.6))
        assert law.rhs.dtype == jnp.float64
        assert law.voltage_drop.dtype == jnp.float64
