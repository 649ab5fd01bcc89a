"""Module-wide floating-point precision configuration.

Provides ``set_dtype`` and ``get_dtype`` to control the float dtype used
for observation values, partials and normal equations throughout odjax.
The default is ``jnp.float32`` to match JAX's own default.  Batch
estimation accumulates ``H^T W H`` over many observations and should
normally run in ``jnp.float64``; switching to ``jnp.float64``
automatically enables JAX's 64-bit mode (``jax_enable_x64``).

Call ``set_dtype`` **before** any JIT compilation, just like JAX's own
``jax.config.update("jax_enable_x64", True)``.
"""

from __future__ import annotations

import jax
import jax.numpy as jnp

_VALID_DTYPES = (jnp.float32, jnp.float64)

_dtype = jnp.float32


def set_dtype(dtype) -> None:
    """Set the module-wide float dtype for odjax.

    If *dtype* is ``jnp.float64``, JAX's 64-bit mode is automatically
    enabled via ``jax.config.update("jax_enable_x64", True)``.

    Args:
        dtype: ``jnp.float32`` or ``jnp.float64``.

    Raises:
        ValueError: If *dtype* is not a supported float type.
    """
    global _dtype
    if dtype not in _VALID_DTYPES:
        raise ValueError(
            f"Unsupported dtype {dtype}. Must be one of: "
            f"jnp.float32, jnp.float64"
        )
    if dtype == jnp.float64:
        jax.config.update("jax_enable_x64", True)
    _dtype = dtype


def get_dtype():
    """Return the current module-wide float dtype.

    Returns:
        The active float dtype (default ``jnp.float32``).
    """
    return _dtype


def get_symmetry_tolerance() -> float:
    """Return the dtype-adaptive relative tolerance for matrix symmetry checks.

    Used when validating a-priori inverse covariance matrices, which must be
    symmetric and positive semi-definite.  The tolerance is relative to the
    largest absolute entry of the matrix:

    - ``float32``: 1e-5
    - ``float64``: 1e-10

    Returns:
        float: Relative tolerance.
    """
    if _dtype == jnp.float64:
        return 1e-10
    return 1e-5
