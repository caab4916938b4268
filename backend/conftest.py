"""Pytest helpers for running asyncio tests without external plugins."""

from __future__ import annotations

import asyncio
import inspect

import pytest


@pytest.hookimpl(tryfirst=True)
def pytest_pyfunc_call(pyfuncitem: pytest.Function) -> bool | None:
    """Execute tests marked with ``pytest.mark.asyncio`` using an event loop.

    Each coroutine test runs in its own fresh event loop, so batch processors
    and streaming managers created inside a test never leak tasks into the
    next one.
    """

    marker = pyfuncitem.get_closest_marker("asyncio")
    if not marker:
        return None

    test_function = pyfuncitem.obj
    if not inspect.iscoroutinefunction(test_function):
        return None

    arguments = {name: pyfuncitem.funcargs[name] for name in pyfuncitem._fixtureinfo.argnames}
    loop = asyncio.new_event_loop()
    try:
        loop.run_until_complete(test_function(**arguments))
    finally:
        loop.close()

    return True
