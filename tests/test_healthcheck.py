"""Unit tests for braintrust/healthcheck.py, no real API calls."""

import braintrust.healthcheck as hc
from braintrust.healthcheck import run_health_checks
from braintrust.providers.base import BackendTransportError

from tests.conftest import ScriptedProvider


async def test_all_providers_pass():
    providers = {"claude": ScriptedProvider("claude", ["OK"]), "gemini": ScriptedProvider("gemini", ["OK"])}

    results = await run_health_checks(providers)

    assert results["claude"] == (True, "")
    assert results["gemini"] == (True, "")


async def test_ping_offers_no_tools():
    provider = ScriptedProvider("claude", ["OK"])

    await run_health_checks({"claude": provider})

    assert provider.calls[0]["tools"] is None


async def test_one_provider_fails():
    providers = {
        "claude": ScriptedProvider("claude", ["OK"]),
        "grok": ScriptedProvider("grok", [BackendTransportError("grok", "403 Forbidden", "auth")]),
    }

    results = await run_health_checks(providers)

    assert results["claude"] == (True, "")
    ok, err = results["grok"]
    assert ok is False
    assert "403" in err


async def test_all_providers_fail():
    providers = {name: ScriptedProvider(name, [Exception(f"{name} down")]) for name in ("openai", "gemini")}

    results = await run_health_checks(providers)

    for name in providers:
        ok, err = results[name]
        assert ok is False
        assert name in err


async def test_empty_providers():
    assert await run_health_checks({}) == {}


async def test_timeout_counts_as_failure(monkeypatch):
    monkeypatch.setattr(hc, "_TIMEOUT_SEC", 0.05)
    providers = {"slow": ScriptedProvider("slow", delay=10.0)}

    results = await run_health_checks(providers)

    ok, err = results["slow"]
    assert ok is False
    assert "no reply" in err
