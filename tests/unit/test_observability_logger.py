# pylint: disable=missing-module-docstring,missing-function-docstring

import json
from typing import Any

import pytest

from observability import logger, metrics


@pytest.fixture
def captured(monkeypatch: pytest.MonkeyPatch) -> list[str]:
    lines: list[str] = []
    # Patch the explicit output sink used by logger
    monkeypatch.setattr(logger, "_print", lines.append)
    monkeypatch.setattr(logger, "_enabled", True)
    return lines


# ---------------------------------------------------------------------
# log_event
# ---------------------------------------------------------------------


def test_log_event_emits_valid_jsonl(captured: list[str]) -> None:
    """
    - log_event emits exactly one JSONL line
    - caller fields are serialized as-is
    - ts_ms is added when missing
    """
    payload: dict[str, Any] = {
        "event_type": "TEST",
        "value": 123,
    }

    logger.log_event(payload)

    assert len(captured) == 1
    decoded = json.loads(captured[0])
    assert isinstance(decoded.pop("ts_ms"), int)
    assert decoded == payload


def test_log_event_keeps_caller_timestamp(captured: list[str]) -> None:
    logger.log_event({"ts_ms": 42, "event_type": "TEST"})

    assert json.loads(captured[0]) == {"ts_ms": 42, "event_type": "TEST"}


def test_unserializable_event_never_raises(captured: list[str]) -> None:
    logger.log_event({"ts_ms": 1, "event_type": "TEST", "obj": object()})

    decoded = json.loads(captured[0])
    assert decoded["event_type"] == "LOGGER_SERIALIZATION_ERROR"
    assert decoded["ts_ms"] == 1


def test_disabled_logger_is_silent(captured: list[str]) -> None:
    logger.set_enabled(False)
    logger.log_event({"event_type": "TEST"})

    assert captured == []


# ---------------------------------------------------------------------
# metrics
# ---------------------------------------------------------------------


def test_timed_emits_one_metric_even_on_error(captured: list[str]) -> None:
    before = metrics.active_timer_count()

    with pytest.raises(RuntimeError):
        with metrics.timed("channel_open", session_id="call_x", state="connecting"):
            raise RuntimeError("boom")

    assert metrics.active_timer_count() == before
    assert len(captured) == 1
    event = json.loads(captured[0])
    assert event["event_type"] == "METRIC_TIMER"
    assert event["metric"] == "channel_open"
    assert event["session_id"] == "call_x"
    assert event["value_ms"] >= 0


def test_stop_unknown_timer_returns_none(captured: list[str]) -> None:
    assert metrics.stop_timer("timer_missing") is None
    assert captured == []


def test_record_values_emits_one_event_per_counter(captured: list[str]) -> None:
    metrics.record_values({"blocks_sent": 3, "frames_dropped": 0}, session_id="call_x", prefix="call_")

    events = [json.loads(line) for line in captured]
    assert [(e["metric"], e["value"]) for e in events] == [
        ("call_blocks_sent", 3),
        ("call_frames_dropped", 0),
    ]
    assert all(e["event_type"] == "METRIC_VALUE" for e in events)
