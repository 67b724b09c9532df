"""Tests for logging helpers and debug body logging."""

from __future__ import annotations

import pytest

from polyllm import core
from polyllm import logging as polyllm_logging
from polyllm.domain import Features, ModelConfig, ModelInfo, ServiceOptions
from polyllm.logging import LogLevel, _normalise_level, log_error, log_info
from polyllm.registry import ModelCatalog
from polyllm.transport import Endpoint


class _RecordingLogger:
    def __init__(self) -> None:
        self.records: list[tuple[str, str, object | None]] = []

    def log(
        self,
        level: str,
        message: str,
        /,
        *,
        exc_info: object | None = None,
        stack_info: bool = False,
    ) -> None:
        self.records.append((level, message, exc_info))


def _core() -> core.AdapterCore:
    return core.AdapterCore(
        name="Example",
        catalog=ModelCatalog((ModelInfo(name="m"),)),
        model="m",
        default_config=ModelConfig(),
        features=Features(functions=False, streaming=False),
    )


@pytest.mark.parametrize(
    ("requested", "expected", "used_default"),
    [
        ("debug", LogLevel.DEBUG, False),
        (" error ", LogLevel.ERROR, False),
        (None, LogLevel.INFO, True),
        ("chatty", LogLevel.INFO, True),
    ],
)
def test_normalise_level(
    requested: str | None,
    expected: LogLevel,
    used_default: bool,  # noqa: FBT001
) -> None:
    """Level names are normalised; unknown names fall back to INFO."""
    assert _normalise_level(requested) == (expected, used_default), (
        f"Expected {requested!r} to normalise to {expected}."
    )


def test_warn_level_is_deprecated() -> None:
    """WARN is accepted with a deprecation warning and mapped to WARNING."""
    with pytest.warns(DeprecationWarning, match="LogLevel.WARN is deprecated"):
        level, _ = _normalise_level("WARN")

    assert level is LogLevel.WARNING, "Expected WARN to map to WARNING."


def test_log_helpers_format_percent_templates() -> None:
    """Templates are interpolated before reaching the logger."""
    logger = _RecordingLogger()

    log_info(logger, "%s called %d times", "chat", 2)
    log_error(logger, "plain message")

    assert logger.records == [
        (LogLevel.INFO, "chat called 2 times", None),
        (LogLevel.ERROR, "plain message", None),
    ], "Expected formatted messages at the requested levels."


def test_debug_option_logs_native_bodies(monkeypatch: pytest.MonkeyPatch) -> None:
    """Request bodies are logged only when debug is enabled."""
    emitted: list[tuple[object, ...]] = []

    def fake_log_info(_logger: object, template: str, *args: object) -> None:
        emitted.append((template, *args))

    monkeypatch.setattr(core, "log_info", fake_log_info)
    adapter_core = _core()
    endpoint = Endpoint(
        backend="Example", base_url="https://x", path="chat", credential="k"
    )

    adapter_core.log_request(ServiceOptions(debug=False), endpoint, {"b": 1})
    adapter_core.log_request(ServiceOptions(debug=True), endpoint, {"b": 1, "a": 2})

    assert emitted == [
        ("%s request to %s: %s", "Example", "https://x/chat", '{"a": 2, "b": 1}')
    ], "Expected one sorted JSON body logged for the debug call only."


def test_dropped_settings_are_logged(monkeypatch: pytest.MonkeyPatch) -> None:
    """Unsupported tunables that were set are reported at debug level."""
    emitted: list[tuple[object, ...]] = []

    def fake_log_debug(_logger: object, template: str, *args: object) -> None:
        emitted.append((template, *args))

    monkeypatch.setattr(core, "log_debug", fake_log_debug)

    _core().log_dropped(
        ModelConfig(top_k=3, end_sequences=None), ("top_k", "end_sequences")
    )

    assert emitted == [("%s ignores unsupported settings: %s", "Example", "top_k")], (
        "Expected only the set field to be reported."
    )


def test_configure_logging_from_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    """The level is read from POLYLLM_LOG_LEVEL and passed to femtologging."""
    calls: list[dict[str, object]] = []

    def fake_basic_config(**kwargs: object) -> None:
        calls.append(kwargs)

    monkeypatch.setattr(polyllm_logging, "basicConfig", fake_basic_config)
    monkeypatch.setenv(polyllm_logging.LOG_LEVEL_ENV, "debug")

    level, used_default = polyllm_logging.configure_logging_from_environment()

    assert (level, used_default) == (LogLevel.DEBUG, False), (
        "Expected the environment level to be used."
    )
    assert calls == [{"level": LogLevel.DEBUG, "force": False}], (
        "Expected femtologging to be configured once with the level."
    )
