"""
lending_engines.tracer -- LENDING_ENGINE_TRACE records for calculator calls.

``@traced_engine`` wraps a pure calculator and, after it returns, logs one
record naming the engine, its version, a fingerprint of the money-relevant
inputs and the wall time spent.  Two calls with the same principal, rate,
policy and rate snapshot produce the same fingerprint, so a disputed quote
can be matched to the exact inputs that produced it.

The tracer only reads arguments and logs.  Results are returned untouched;
a calculator that raises propagates unchanged and emits no trace.

Usage:
    @traced_engine("loan_origination", "1.0",
                   fingerprint_fields=("principal", "interest_rate", "policy"))
    def calculate_loan_origination(*, principal, interest_rate, ...):
        ...
"""

from __future__ import annotations

import functools
import hashlib
import inspect
import logging
import time
from collections.abc import Callable
from dataclasses import fields, is_dataclass
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any

_logger = logging.getLogger("lending_kernel.engines.tracer")

TRACE_TYPE = "LENDING_ENGINE_TRACE"


@functools.singledispatch
def _canonicalize(value: Any) -> str:
    if is_dataclass(value) and not isinstance(value, type):
        return _canonicalize({f.name: getattr(value, f.name) for f in fields(value)})
    return str(value)


@_canonicalize.register(type(None))
def _(value) -> str:
    return "null"


@_canonicalize.register
def _(value: bool) -> str:
    return "true" if value else "false"


@_canonicalize.register
def _(value: Decimal) -> str:
    # 0.10 and 0.1 are the same rate.
    return format(value.normalize(), "f")


@_canonicalize.register
def _(value: Enum) -> str:
    return str(value.value)


@_canonicalize.register
def _(value: date) -> str:
    return value.isoformat()


@_canonicalize.register
def _(value: dict) -> str:
    body = ",".join(f"{key}:{_canonicalize(value[key])}" for key in sorted(value))
    return "{" + body + "}"


@_canonicalize.register(list)
@_canonicalize.register(tuple)
def _(value) -> str:
    return "[" + ",".join(_canonicalize(item) for item in value) + "]"


def compute_input_fingerprint(
    fingerprint_fields: tuple[str, ...],
    kwargs: dict[str, Any],
) -> str:
    """
    First 16 hex chars of the SHA-256 over ``field=value`` pairs.

    Fields absent from ``kwargs`` hash as ``null``.
    """
    canonical = "|".join(
        f"{name}={_canonicalize(kwargs.get(name))}" for name in fingerprint_fields
    )
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()[:16]


def traced_engine(
    engine_name: str,
    engine_version: str,
    fingerprint_fields: tuple[str, ...] = (),
) -> Callable:
    """Decorate a calculator so each successful call logs a trace record."""

    def decorator(func: Callable) -> Callable:
        signature = inspect.signature(func)

        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            started = time.perf_counter()
            result = func(*args, **kwargs)
            elapsed_ms = round((time.perf_counter() - started) * 1000, 2)

            fingerprint = ""
            if fingerprint_fields:
                bound = signature.bind(*args, **kwargs)
                fingerprint = compute_input_fingerprint(fingerprint_fields, bound.arguments)

            _logger.info(
                TRACE_TYPE,
                extra={
                    "trace_type": TRACE_TYPE,
                    "engine_name": engine_name,
                    "engine_version": engine_version,
                    "input_fingerprint": fingerprint,
                    "duration_ms": elapsed_ms,
                    "function": func.__qualname__,
                },
            )
            return result

        return wrapper

    return decorator
