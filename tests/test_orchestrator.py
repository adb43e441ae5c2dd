import pytest

from conftest import FakeTransport, ScriptedRandom
from ratelimit_probe.generators import PayloadFactory
from ratelimit_probe.orchestrator import AUTHENTICATED_STEPS, IterationOrchestrator
from ratelimit_probe.probe import EndpointProbe
from ratelimit_probe.session import Session


def build(settings, sinks, clock, transport, draws):
    rng = ScriptedRandom(draws)
    probe = EndpointProbe(transport, settings, sinks, clock, rng, PayloadFactory(rng, settings.credentials))
    return IterationOrchestrator(probe, clock, rng)


@pytest.mark.asyncio
class TestIterationOrchestrator:
    async def test_without_session_only_auth_steps_run(self, settings, sinks, clock, caplog):
        # register and login gates both pass
        transport = FakeTransport()
        orchestrator = build(settings, sinks, clock, transport, [0.0, 0.0])

        with caplog.at_level("INFO", logger="ratelimit_probe.orchestrator"):
            outcomes = await orchestrator.run(Session())

        assert [o.endpoint for o in outcomes] == ["register", "login"]
        assert transport.paths() == ["/register", "/login"]
        assert sinks.read_requests.count == 0
        assert sinks.write_requests.count == 0
        assert sinks.auth_requests.count == 2
        assert "No token available" in caplog.text
        assert clock.sleeps == []

    async def test_without_session_and_closed_gates_issues_nothing(self, settings, sinks, clock):
        transport = FakeTransport()
        orchestrator = build(settings, sinks, clock, transport, [0.99, 0.99])

        assert await orchestrator.run(Session()) == []
        assert transport.requests == []

    async def test_skip_notice_is_logged_once_at_info(self, settings, sinks, clock, caplog):
        orchestrator = build(settings, sinks, clock, FakeTransport(), [0.99] * 4)

        with caplog.at_level("DEBUG", logger="ratelimit_probe.orchestrator"):
            await orchestrator.run(Session())
            await orchestrator.run(Session())

        notices = [r for r in caplog.records if "No token available" in r.getMessage()]
        assert [r.levelname for r in notices] == ["INFO", "DEBUG"]

    async def test_full_iteration_order(self, settings, sinks, clock):
        # Every draw is 0.0: all gates open, every pause at its lower bound.
        transport = FakeTransport()
        orchestrator = build(settings, sinks, clock, transport, [0.0] * 100)

        outcomes = await orchestrator.run(Session(token="tok"))

        assert [o.endpoint for o in outcomes] == [
            "register", "login",
            "products", "user_info",
            "team_invited", "team_level",
            "spin_prize_list", "spin",
            "tasks", "transactions", "bank_update",
            "create_investment", "payment_lookup",
            "change_password",
        ]
        # opening pause, spin pause, payment pause, then one pause after each step
        expected_sleeps = [1.0]
        for name, (low, _) in AUTHENTICATED_STEPS:
            if name == "spin_prize_list":
                expected_sleeps.append(1.0)
            if name == "create_investment":
                expected_sleeps.append(2.0)
            expected_sleeps.append(low)
        assert clock.sleeps == expected_sleeps

    async def test_pauses_stay_within_bounds(self, settings, sinks, clock):
        transport = FakeTransport()
        # auth gates closed, then pause draw 0.999 and closed gates after that
        orchestrator = build(settings, sinks, clock, transport, [0.99, 0.99, 0.999] + [0.99, 0.999] * 9)

        await orchestrator.run(Session(token="tok"))

        assert transport.requests == []
        assert len(clock.sleeps) == 1 + len(AUTHENTICATED_STEPS)
        assert 1.0 <= clock.sleeps[0] < 3.0
        for sleep, (_, (low, high)) in zip(clock.sleeps[1:], AUTHENTICATED_STEPS):
            assert low <= sleep < high
