from __future__ import annotations

import pytest

from sentinel.health.classifier import (
    ChecksBody,
    EmptyBody,
    StatusFieldBody,
    classify,
    extract_metrics_resources,
    parse_health_body,
    round1,
)


@pytest.mark.parametrize("code", [500, 502, 503, 504])
def test_5xx_is_down_even_when_body_says_ok(code: int) -> None:
    result = classify(code, {"status": "ok"})
    assert result.status == "down"
    assert result.reason == "http_5xx"


def test_any_down_check_makes_service_down() -> None:
    body = {"checks": [{"name": "db", "status": "ok"}, {"name": "cache", "status": "UNHEALTHY"}]}
    result = classify(200, body)
    assert result.status == "down"
    assert result.reason == "checks"


def test_all_ok_checks_make_service_ok() -> None:
    body = {"checks": [{"status": "up"}, {"status": "Healthy"}, {"state": "ok"}]}
    assert classify(200, body).status == "ok"


def test_checks_decide_even_on_5xx() -> None:
    # A non-empty checks list is the first rule and wins over the HTTP code.
    assert classify(503, {"checks": [{"status": "ok"}]}).status == "ok"


def test_degraded_or_unknown_check_makes_service_degraded() -> None:
    assert classify(200, {"checks": [{"status": "ok"}, {"status": "warning"}]}).status == "degraded"
    assert classify(200, {"checks": [{"status": "ok"}, {"status": "starting"}]}).status == "degraded"
    assert classify(200, {"checks": [{"status": "ok"}, "not-a-dict"]}).status == "degraded"


def test_empty_checks_list_falls_through_to_status_field() -> None:
    result = classify(200, {"checks": [], "status": "degraded"})
    assert result.status == "degraded"
    assert result.reason == "status_field"


@pytest.mark.parametrize(
    "body",
    [
        {"status": "ok", "error": "db timeout"},
        {"status": "ok", "errors": ["x"]},
        {"status": "ok", "failed": True},
        {"status": "ok", "healthy": False},
        {"status": "ok", "health": False},
    ],
)
def test_error_indicators_are_down(body: dict) -> None:
    result = classify(200, body)
    assert result.status == "down"
    assert result.reason == "error_indicator"


def test_empty_errors_list_is_not_an_error() -> None:
    assert classify(200, {"status": "ok", "errors": []}).status == "ok"


@pytest.mark.parametrize(
    "status,expected",
    [
        ("DOWN", "down"),
        ("Down", "down"),
        ("UNHEALTHY", "down"),
        ("UP", "ok"),
        ("healthy", "ok"),
        ("Degraded", "degraded"),
        ("WARNING", "degraded"),
    ],
)
def test_status_field_is_case_insensitive(status: str, expected: str) -> None:
    assert classify(200, {"status": status}).status == expected


def test_status_field_down_wins_over_http_200() -> None:
    assert classify(200, {"status": "down"}).status == "down"


@pytest.mark.parametrize("code,expected", [(200, "ok"), (404, "degraded"), (429, "degraded"), (302, "down")])
def test_unrecognized_status_falls_back_to_http_code(code: int, expected: str) -> None:
    result = classify(code, {"status": "starting", "uptime": 12})
    assert result.status == expected
    assert result.reason == "http_code"


@pytest.mark.parametrize("body", [None, "", "   ", b""])
def test_no_body_uses_http_code(body) -> None:
    assert classify(200, body).status == "ok"
    assert classify(503, body).status == "down"
    assert classify(401, body).status == "degraded"
    assert classify(0, body).status == "down"
    assert classify(200, body).reason == "no_body"


def test_plain_text_body_uses_http_code() -> None:
    assert classify(200, "OK").status == "ok"
    assert classify(418, "teapot").status == "degraded"


def test_parse_health_body_shapes() -> None:
    assert isinstance(parse_health_body(None), EmptyBody)
    assert isinstance(parse_health_body({"checks": [{"status": "ok"}]}), ChecksBody)
    parsed = parse_health_body({"status": "OK", "error": None})
    assert isinstance(parsed, StatusFieldBody)
    assert parsed.status == "ok"
    assert parsed.has_error is False
    assert parse_health_body([1, 2, 3]) == StatusFieldBody(status=None, has_error=False)


def test_resource_extraction_from_system_block() -> None:
    body = {
        "status": "ok",
        "system": {
            "memory_usage": {"heapUsed": 52428800, "rss": 104857600},
            "cpu_load": [0.5, 0.25, 0.0],
        },
    }
    result = classify(200, body, latency_ms=42.0)
    assert result.memory_mb == 50.0
    # Zero loads are ignored: (0.5 + 0.25) / 2 * 100
    assert result.cpu_percent == 37.5
    assert result.latency_ms == 42.0


def test_memory_falls_back_to_rss() -> None:
    body = {"status": "ok", "system": {"memory_usage": {"rss": 3 * 1024 * 1024}}}
    result = classify(200, body)
    assert result.memory_mb == 3.0
    assert result.cpu_percent == 0.0


def test_missing_system_block_yields_zero_resources() -> None:
    result = classify(200, {"status": "ok"})
    assert result.cpu_percent == 0.0
    assert result.memory_mb == 0.0


def test_metrics_body_extraction() -> None:
    usage = extract_metrics_resources({"cpu": {"usage": 12.34}, "mem": {"heapUsed": 1048576 * 10}})
    assert usage.cpu_percent == 12.3
    assert usage.memory_mb == 10.0

    usage = extract_metrics_resources({"cpuUsage": 7, "memoryUsage": {"rss": 1048576 * 2.5}})
    assert usage.cpu_percent == 7.0
    assert usage.memory_mb == 2.5

    usage = extract_metrics_resources("not json")
    assert usage.cpu_percent == 0.0
    assert usage.memory_mb == 0.0


def test_round1_rounds_half_up() -> None:
    assert round1(0.25) == 0.3
    assert round1(2.45) == 2.5
    assert round1(10.0) == 10.0


def test_overflowing_cpu_load_yields_zero_cpu() -> None:
    result = classify(200, {"status": "ok", "system": {"cpu_load": [1e307, 1e307]}})
    assert result.status == "ok"
    assert result.cpu_percent == 0.0


def test_integer_too_large_for_float_is_ignored() -> None:
    huge = int("9" * 400)
    body = {"status": "ok", "system": {"memory_usage": {"heapUsed": huge, "rss": 2 * 1048576}}}
    result = classify(200, body)
    assert result.status == "ok"
    assert result.memory_mb == 2.0


def test_overflowing_metrics_values_yield_zero() -> None:
    usage = extract_metrics_resources({"cpuUsage": 1e308, "memoryUsage": {"heapUsed": int("1" * 400)}})
    assert usage.cpu_percent == 0.0
    assert usage.memory_mb == 0.0
    assert round1(float("inf")) == 0.0
    assert round1(float("nan")) == 0.0
