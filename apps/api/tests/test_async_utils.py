import asyncio

import anyio
import pytest

from formrelay.core.async_utils import run_async


async def _sample() -> str:
    await anyio.sleep(0)
    return "ok"


async def _slow() -> str:
    await anyio.sleep(5)
    return "late"


async def test_run_async_avoids_asyncio_run_in_worker_thread(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    def _fail_run(*_args: object, **_kwargs: object) -> None:
        pytest.fail("asyncio.run should not be used in request threads")

    monkeypatch.setattr(asyncio, "run", _fail_run)

    def _call() -> str:
        return run_async(_sample())

    result = await anyio.to_thread.run_sync(_call)
    assert result == "ok"


def test_run_async_without_loop():
    assert run_async(_sample()) == "ok"


def test_run_async_timeout():
    with pytest.raises(TimeoutError):
        run_async(_slow(), timeout=0.05)


async def test_run_async_refuses_running_loop():
    with pytest.raises(RuntimeError):
        run_async(_sample())
