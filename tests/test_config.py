"""Tests for the odjax.config module."""

import jax
import jax.numpy as jnp
import pytest

from odjax.config import get_dtype, get_symmetry_tolerance, set_dtype


@pytest.fixture(autouse=True)
def reset_dtype():
    """Reset dtype to float32 before and after each test."""
    set_dtype(jnp.float32)
    yield
    set_dtype(jnp.float32)


class TestGetSetDtype:
    def test_default_dtype(self):
        assert get_dtype() == jnp.float32

    def test_set_float64(self):
        set_dtype(jnp.float64)
        assert get_dtype() == jnp.float64

    def test_set_float32(self):
        set_dtype(jnp.float64)
        set_dtype(jnp.float32)
        assert get_dtype() == jnp.float32

    def test_invalid_dtype_raises(self):
        with pytest.raises(ValueError, match="Unsupported dtype"):
            set_dtype(jnp.int32)

    def test_half_precision_rejected(self):
        """Normal equations are never accumulated in half precision."""
        with pytest.raises(ValueError, match="Unsupported dtype"):
            set_dtype(jnp.float16)

    def test_float64_enables_x64(self):
        set_dtype(jnp.float64)
        assert jax.config.jax_enable_x64 is True


class TestSymmetryTolerance:
    def test_float32_tolerance(self):
        assert get_symmetry_tolerance() == pytest.approx(1e-5)

    def test_float64_tolerance(self):
        set_dtype(jnp.float64)
        assert get_symmetry_tolerance() == pytest.approx(1e-10)
