"""Serialization worker, message protocol and dispatcher."""

from state_persistence.serialization.dispatcher import (
    DispatcherMetrics,
    SerializationDispatcher,
    SerializationJob,
    estimate_size,
)
from state_persistence.serialization.protocol import (
    RequestType,
    ResponseType,
    compress_payload,
    decompress_payload,
    handle_message,
)
from state_persistence.serialization.worker import SerializationWorker, Worker

__all__ = [
    "DispatcherMetrics",
    "RequestType",
    "ResponseType",
    "SerializationDispatcher",
    "SerializationJob",
    "SerializationWorker",
    "Worker",
    "compress_payload",
    "decompress_payload",
    "estimate_size",
    "handle_message",
]
