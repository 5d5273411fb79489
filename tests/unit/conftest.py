from __future__ import annotations

import pytest


@pytest.fixture(autouse=True)
def _inline_to_thread(request: pytest.FixtureRequest, monkeypatch: pytest.MonkeyPatch):
    """Run `asyncio.to_thread` inline unless the test is marked `real_threads`.

    Blocking sinks adapted with `callmeter.sinks.to_thread` then deliver on the
    test's own thread, which keeps delivery order deterministic. Tests about
    records crossing threads opt out with `@pytest.mark.real_threads`.
    """
    if request.node.get_closest_marker("real_threads") is not None:
        yield
        return

    async def _to_thread(func, /, *args, **kwargs):  # noqa: ANN001
        return func(*args, **kwargs)

    monkeypatch.setattr("callmeter.sinks.asyncio.to_thread", _to_thread)
    yield
