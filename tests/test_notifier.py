import asyncio
import logging

from starlette.websockets import WebSocketDisconnect

from services.notifier import Notifier


class FakeChannel:
    def __init__(self, fail=False):
        self.sent = []
        self.closed_with = None
        self.fail = fail

    async def send_json(self, message):
        if self.fail:
            raise WebSocketDisconnect(code=1006)
        self.sent.append(message)

    async def close(self, code=1000):
        self.closed_with = code


def test_send_fans_out_to_every_channel_of_the_user():
    notifier = Notifier()
    phone, laptop, other = FakeChannel(), FakeChannel(), FakeChannel()
    notifier.register_channel(1, phone)
    notifier.register_channel("1", laptop)
    notifier.register_channel(2, other)

    delivered = asyncio.run(notifier.send(1, "session_invite", {"sessionId": "abc"}))

    assert delivered == 2
    assert phone.sent == laptop.sent == [{"event": "session_invite", "data": {"sessionId": "abc"}}]
    assert other.sent == []


def test_send_without_channels_is_a_silent_no_op():
    notifier = Notifier()

    assert asyncio.run(notifier.send(42, "session_ended", {})) == 0


def test_unregister_removes_only_that_channel():
    notifier = Notifier()
    phone, laptop = FakeChannel(), FakeChannel()
    notifier.register_channel(1, phone)
    notifier.register_channel(1, laptop)

    notifier.unregister_channel(phone)
    notifier.unregister_channel(phone)

    assert notifier.channels_for(1) == [laptop]
    assert notifier.connection_count == 1


def test_dead_channel_is_dropped_on_send():
    notifier = Notifier()
    dead, alive = FakeChannel(fail=True), FakeChannel()
    notifier.register_channel(1, dead)
    notifier.register_channel(1, alive)

    delivered = asyncio.run(notifier.send(1, "session_accepted", {"status": "accepted"}))

    assert delivered == 1
    assert notifier.channels_for(1) == [alive]


def test_publish_without_bound_loop_does_nothing():
    notifier = Notifier()
    notifier.register_channel(1, FakeChannel())

    assert notifier.publish(1, "session_invite", {}) is False


def test_publish_from_worker_thread_is_delivered_on_the_loop():
    notifier = Notifier()
    channel = FakeChannel()

    async def scenario():
        loop = asyncio.get_running_loop()
        notifier.bind(loop)
        notifier.register_channel(7, channel)
        scheduled = await loop.run_in_executor(None, notifier.publish, 7, "session_ended", {"endedBy": "host"})
        for _ in range(50):
            if channel.sent:
                break
            await asyncio.sleep(0.01)
        return scheduled

    assert asyncio.run(scenario()) is True
    assert channel.sent == [{"event": "session_ended", "data": {"endedBy": "host"}}]


def test_publish_skips_users_without_channels():
    notifier = Notifier()

    async def scenario():
        notifier.bind(asyncio.get_running_loop())
        return notifier.publish(99, "session_invite", {})

    assert asyncio.run(scenario()) is False


def test_shutdown_closes_channels_and_clears_the_map():
    notifier = Notifier()
    channel = FakeChannel()
    notifier.register_channel(1, channel)

    asyncio.run(notifier.shutdown())

    assert channel.closed_with == 1001
    assert notifier.connection_count == 0
    assert notifier.is_connected(1) is False


class BrokenChannel(FakeChannel):
    async def send_json(self, message):
        raise ValueError("cannot encode payload")


def test_unexpected_send_failure_is_logged(caplog):
    notifier = Notifier()
    notifier.register_channel(3, BrokenChannel())

    async def scenario():
        loop = asyncio.get_running_loop()
        notifier.bind(loop)
        scheduled = await loop.run_in_executor(None, notifier.publish, 3, "session_invite", {"sessionId": "abc"})
        for _ in range(50):
            if any("session_invite" in r.getMessage() for r in caplog.records):
                break
            await asyncio.sleep(0.01)
        return scheduled

    with caplog.at_level(logging.ERROR, logger="services.notifier"):
        assert asyncio.run(scenario()) is True

    failures = [r for r in caplog.records if r.levelno == logging.ERROR]
    assert len(failures) == 1
    assert "session_invite" in failures[0].getMessage()
    assert "cannot encode payload" in failures[0].getMessage()
