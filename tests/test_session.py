import pytest

from conftest import FakeTransport, rate_limited_response, response, token_response
from ratelimit_probe.session import Session, bootstrap_session


@pytest.mark.asyncio
class TestBootstrapSession:
    async def test_first_attempt_succeeds(self, settings, clock):
        transport = FakeTransport([token_response("abc")])

        session = await bootstrap_session(transport, settings, clock)

        assert session == Session(token="abc")
        assert session.authenticated
        assert clock.sleeps == []
        assert transport.requests[0]["url"] == "http://api.test/login"
        assert transport.requests[0]["payload"] == {"number": "8123456789", "password": "123456"}

    async def test_retries_through_rate_limits(self, settings, clock):
        transport = FakeTransport([
            rate_limited_response(),
            rate_limited_response(),
            token_response("late"),
        ])

        session = await bootstrap_session(transport, settings, clock)

        assert session.token == "late"
        assert clock.sleeps == [15.0, 15.0]
        assert len(transport.requests) == 3

    async def test_gives_up_after_three_rate_limits(self, settings, clock, caplog):
        transport = FakeTransport(default=rate_limited_response())

        with caplog.at_level("WARNING", logger="ratelimit_probe.session"):
            session = await bootstrap_session(transport, settings, clock)

        assert session == Session(token=None)
        assert not session.authenticated
        assert len(transport.requests) == 3
        assert clock.sleeps == [15.0, 15.0, 15.0]
        assert "Failed to get token after 3 attempts" in caplog.text

    async def test_other_failures_wait_only_between_attempts(self, settings, clock):
        transport = FakeTransport(default=response(500, "boom"))

        session = await bootstrap_session(transport, settings, clock)

        assert not session.authenticated
        assert clock.sleeps == [10.0, 10.0]

    async def test_mixed_failures(self, settings, clock):
        transport = FakeTransport([response(401, {"success": False}), rate_limited_response(), response(0, "")])

        session = await bootstrap_session(transport, settings, clock)

        assert not session.authenticated
        assert clock.sleeps == [10.0, 15.0]

    async def test_success_without_token_is_a_failure(self, settings, clock):
        transport = FakeTransport([response(200, {"success": True, "data": {}}), token_response("ok")])

        session = await bootstrap_session(transport, settings, clock)

        assert session.token == "ok"
        assert clock.sleeps == [10.0]

    async def test_custom_attempt_count(self, settings, clock):
        transport = FakeTransport(default=response(503, ""))

        await bootstrap_session(transport, settings, clock, max_attempts=1)

        assert len(transport.requests) == 1
        assert clock.sleeps == []
