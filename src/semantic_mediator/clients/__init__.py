"""Clients for external collaborators: inference oracle and telemetry."""

from semantic_mediator.clients.oracle import InferenceOracle, OracleError, PydanticAIOracle
from semantic_mediator.clients.telemetry import LoggingTelemetry, Telemetry

__all__ = [
    "InferenceOracle",
    "LoggingTelemetry",
    "OracleError",
    "PydanticAIOracle",
    "Telemetry",
]
