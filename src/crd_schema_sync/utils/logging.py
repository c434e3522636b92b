# ABOUTME: Structured logging with run ids for crd-schema-sync
# ABOUTME: Configures structlog and tags every log line of a command run

"""
Structured logging with run ids.

=============================================================================
WHAT IS THIS FILE?
=============================================================================

This module sets up structlog for the whole tool:

1. STRUCTURED LOGGING: Every log line is an event name plus key/value
   fields, rendered as colored console output or as JSON lines.

2. RUN IDs: A short identifier attached to every log line of one command
   run (one `sync`, one `dump`, ...). When the tool runs in CI alongside
   other jobs, filtering on the run id isolates one run's output:

       {"run_id": "a1b2c3d4", "event": "Fetching CRDs", "source": "kong"}
       {"run_id": "a1b2c3d4", "event": "Saved schemas", "count": 12}

3. CI DEBUG SWITCHES: GitHub Actions exposes "debug logging" through the
   RUNNER_DEBUG and ACTIONS_STEP_DEBUG variables. debug_requested() honours
   them so re-running a failed workflow with debug logging enabled also
   turns on this tool's DEBUG output.

=============================================================================
LOGGER INJECTION
=============================================================================

Components never configure logging themselves. Each public entry point
takes an optional ``log`` argument and falls back to its module logger:

    crds = parse_crds(raws, source, log=log.bind(source=source.id))

so callers decide what context is bound, and tests can pass a stub.
"""

from __future__ import annotations

import logging
import os
import uuid
from contextvars import ContextVar
from typing import TYPE_CHECKING, Any

import structlog

if TYPE_CHECKING:
    from collections.abc import MutableMapping


# ContextVar holding the id of the current command run.
run_id: ContextVar[str] = ContextVar("run_id", default="")


def get_run_id() -> str:
    """
    Get the current run id, generating one if none is set.

    Returns:
        8-character hex run id.
    """
    rid = run_id.get()
    if not rid:
        rid = uuid.uuid4().hex[:8]
        run_id.set(rid)
    return rid


def new_run_id() -> str:
    """Start a new run: generate, store and return a fresh run id."""
    rid = uuid.uuid4().hex[:8]
    run_id.set(rid)
    return rid


def add_run_id(
    logger: structlog.types.WrappedLogger,  # noqa: ARG001 - Required by structlog Processor API
    method_name: str,  # noqa: ARG001 - Required by structlog Processor API
    event_dict: MutableMapping[str, Any],
) -> MutableMapping[str, Any]:
    """
    structlog processor that adds the run id to every event.

    Args:
        logger: The wrapped logger (unused, required by the processor API)
        method_name: The log method name (unused, required by the processor API)
        event_dict: Event data to enrich

    Returns:
        The event_dict with a "run_id" field.
    """
    event_dict["run_id"] = get_run_id()
    return event_dict


def debug_requested(verbose: bool = False) -> bool:
    """
    Decide whether DEBUG logging should be enabled.

    True when verbose output was asked for explicitly, or when the GitHub
    Actions debug switches are set (RUNNER_DEBUG=1 or ACTIONS_STEP_DEBUG=true).
    """
    if verbose:
        return True
    if os.environ.get("RUNNER_DEBUG") == "1":
        return True
    return os.environ.get("ACTIONS_STEP_DEBUG", "").lower() == "true"


def configure_logging(
    level: str = "INFO",
    json_output: bool = False,
) -> None:
    """
    Configure structured logging.

    Call once at startup. Calling it again reconfigures logging.

    PROCESSOR PIPELINE:
    -------------------
    1. merge_contextvars: Adds anything bound via bind_contextvars()
    2. add_log_level: Adds the "level" field
    3. TimeStamper: Adds an ISO 8601 timestamp
    4. add_run_id: Adds the run id
    5. Renderer: JSON lines or colored console output

    Args:
        level: Logging level name ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")
        json_output: Emit JSON lines instead of console output
    """
    processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        add_run_id,
    ]

    if json_output:
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, level.upper(), logging.INFO)
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        # Not cached so a later configure_logging() call (e.g. --verbose) takes effect
        cache_logger_on_first_use=False,
    )
