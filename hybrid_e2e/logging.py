"""loguru sinks for hybrid node test runs.

hybrid_e2e is silent by default. A test driver turns it on around a run with
setup_logging; records carry the node they concern (instance id, provider,
command id) and are scrubbed of node secrets before any sink sees them.

Example:
    from hybrid_e2e.logging import LogConfig, setup_logging, teardown_logging

    handler_ids = setup_logging(LogConfig(level="DEBUG", file="out/run.log"))
    try:
        run_suite()
    finally:
        teardown_logging(handler_ids)
"""

from __future__ import annotations

import re
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Literal

from loguru import logger

type LogLevel = Literal["TRACE", "DEBUG", "INFO", "WARNING", "ERROR"]

NAMESPACE = "hybrid_e2e"

_CONTEXT_KEYS = (
    "component", "provider", "instance_id", "command_id", "node_name",
)

_PRIVATE_KEY = re.compile(
    r"-----BEGIN [A-Z ]*PRIVATE KEY-----.*?-----END [A-Z ]*PRIVATE KEY-----",
    re.DOTALL,
)
_ACTIVATION_CODE = re.compile(r"(activation_?code[\"']?\s*[:=]\s*[\"']?)[^\s\"',}]+", re.IGNORECASE)


def redact(message: str) -> str:
    """Mask PEM private keys and SSM activation codes in ``message``."""
    message = _PRIVATE_KEY.sub("<private key redacted>", message)
    return _ACTIVATION_CODE.sub(r"\1***", message)


def _patch(record: Any) -> None:
    extra = record["extra"]
    parts = [f"{k}={extra[k]}" for k in _CONTEXT_KEYS if k in extra]
    extra["_ctx"] = f" [{' '.join(parts)}]" if parts else ""
    record["message"] = redact(record["message"])


CONSOLE_FORMAT = (
    "<green>{time:HH:mm:ss.SSS}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{line}</cyan>"
    "<dim>{extra[_ctx]}</dim> - "
    "<level>{message}</level>"
)

FILE_FORMAT = (
    "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | {thread.name} | "
    "{name}:{function}:{line}{extra[_ctx]} - {message}"
)


@dataclass(frozen=True, slots=True)
class LogConfig:
    """The ``[logging]`` section of hybrid-e2e.toml.

    The file sink always records DEBUG, so command output from a failed node
    is on disk even when the console shows only INFO.
    """

    level: LogLevel = "INFO"
    file: str | None = ".hybrid-e2e/hybrid-e2e.log"
    console: bool = True
    rotation: str = "50 MB"
    retention: int = 10


def setup_logging(config: LogConfig) -> list[int]:
    """Enable the hybrid_e2e namespace and attach the configured sinks.

    Returns:
        Handler ids to pass to teardown_logging.
    """
    logger.remove()
    logger.enable(NAMESPACE)
    logger.configure(patcher=_patch)

    handler_ids: list[int] = []

    if config.console:
        handler_ids.append(
            logger.add(
                sys.stderr,
                level=config.level,
                format=CONSOLE_FORMAT,
                colorize=True,
                filter=NAMESPACE,
            )
        )

    if config.file:
        Path(config.file).parent.mkdir(parents=True, exist_ok=True)
        handler_ids.append(
            logger.add(
                config.file,
                level="DEBUG",
                format=FILE_FORMAT,
                rotation=config.rotation,
                retention=config.retention,
                compression="zip",
                diagnose=False,
                enqueue=True,
                filter=NAMESPACE,
            )
        )

    return handler_ids


def teardown_logging(handler_ids: list[int]) -> None:
    """Detach the sinks from setup_logging and silence hybrid_e2e again."""
    for hid in handler_ids:
        logger.remove(hid)
    logger.disable(NAMESPACE)
