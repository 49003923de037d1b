import asyncio

import pytest

from workspace.interactive import InteractiveSession, ProcessNotRunning


def test_kill_without_process_is_idempotent(tmp_path):
    session = InteractiveSession(str(tmp_path))
    session.kill()
    assert not session.is_alive()
    session.kill()
    assert not session.is_alive()


def test_spawn_returns_settle_window_output(tmp_path):
    async def scenario():
        session = InteractiveSession(str(tmp_path), settle_seconds=0.3)
        try:
            return await session.spawn("echo ready")
        finally:
            await session.close()

    assert "ready" in asyncio.run(scenario())


def test_write_and_consume_once_read(tmp_path):
    async def scenario():
        session = InteractiveSession(str(tmp_path), settle_seconds=0.2)
        try:
            await session.spawn("cat")
            assert session.is_alive()
            await session.write("hello\n")
            for _ in range(50):
                await asyncio.sleep(0.05)
                output = session.read()
                if output:
                    break
            repeat = session.read()
            return output, repeat
        finally:
            await session.close()

    output, repeat = asyncio.run(scenario())
    assert "hello" in output
    assert repeat == ""


def test_spawn_replaces_running_process(tmp_path):
    async def scenario():
        session = InteractiveSession(str(tmp_path), settle_seconds=0.2)
        try:
            await session.spawn("sleep 30")
            first = session._process
            output = await session.spawn("echo second")
            return first.returncode, output
        finally:
            await session.close()

    first_code, output = asyncio.run(scenario())
    assert first_code is not None
    assert "second" in output


def test_write_without_process_raises(tmp_path):
    async def scenario():
        session = InteractiveSession(str(tmp_path))
        await session.write("ls\n")

    with pytest.raises(ProcessNotRunning):
        asyncio.run(scenario())


def test_kill_stops_live_process(tmp_path):
    async def scenario():
        session = InteractiveSession(str(tmp_path), settle_seconds=0.1)
        await session.spawn("sleep 30")
        assert session.is_alive()
        session.kill()
        alive_after_kill = session.is_alive()
        session.kill()
        await session.close()
        return alive_after_kill

    assert asyncio.run(scenario()) is False
