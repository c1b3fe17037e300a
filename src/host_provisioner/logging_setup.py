"""structlog configuration for Host Provisioner."""

import logging
import sys
from pathlib import Path
from typing import Optional

import structlog


def configure_logging(
    level: str = "INFO", file: Optional[Path] = None, verbose: bool = False
) -> None:
    """Route structlog events through stdlib logging.

    Console output goes to stderr so it never mixes with the menu on
    stdout. An optional file sink receives the same events as plain text.
    """
    log_level = logging.DEBUG if verbose else getattr(logging, level.upper(), logging.INFO)

    shared_processors = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
    ]

    structlog.configure(
        processors=shared_processors
        + [structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    console = logging.StreamHandler(sys.stderr)
    console.setLevel(log_level)
    console.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=shared_processors,
            processor=structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty()),
        )
    )

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(console)
    root.setLevel(logging.DEBUG if file else log_level)

    if file:
        file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(file)
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(
            structlog.stdlib.ProcessorFormatter(
                foreign_pre_chain=shared_processors,
                processor=structlog.processors.KeyValueRenderer(
                    key_order=["timestamp", "level", "event"]
                ),
            )
        )
        root.addHandler(file_handler)
