"""Pytest fixtures for adapter tests.

Adapters are exercised against :class:`RecordingTransport`, which returns
queued payloads instead of touching the network, and tracing is checked with
the OpenTelemetry SDK's in-memory exporter.

Examples
--------
Run the adapter suite:

>>> pytest -k adapter
"""

from __future__ import annotations

import asyncio
import typing as typ

import pytest
from _transport_helpers import RecordingTransport
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import SimpleSpanProcessor
from opentelemetry.sdk.trace.export.in_memory_span_exporter import (
    InMemorySpanExporter,
)

from polyllm.domain import ChatMessage, ChatRequest, Role, ServiceOptions

if typ.TYPE_CHECKING:
    from opentelemetry.trace import Tracer


@pytest.fixture
def recording_transport() -> RecordingTransport:
    """Provide a transport double with no queued responses."""
    return RecordingTransport()


@pytest.fixture
def service_options(recording_transport: RecordingTransport) -> ServiceOptions:
    """Provide service options routing calls to the recording transport."""
    return ServiceOptions(transport=recording_transport)


@pytest.fixture
def span_exporter() -> InMemorySpanExporter:
    """Provide an in-memory exporter collecting finished spans."""
    return InMemorySpanExporter()


@pytest.fixture
def tracer(span_exporter: InMemorySpanExporter) -> Tracer:
    """Provide a tracer whose spans land in ``span_exporter``."""
    provider = TracerProvider()
    provider.add_span_processor(SimpleSpanProcessor(span_exporter))
    return provider.get_tracer("polyllm.tests")


@pytest.fixture
def chat_request() -> ChatRequest:
    """Provide a short system-plus-user conversation."""
    return ChatRequest(
        messages=(
            ChatMessage(role=Role.SYSTEM, content="You are terse."),
            ChatMessage(role=Role.USER, content="Say hello."),
        )
    )


@pytest.fixture
def _function_scoped_runner() -> typ.Iterator[asyncio.Runner]:
    """Provide a function-scoped asyncio.Runner for sync BDD steps."""
    with asyncio.Runner() as runner:
        yield runner
