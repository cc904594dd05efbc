"""
Structured logging for CDK synthesis using structlog.

Synthesis runs once per `cdk synth`/`cdk deploy`, so the log stream is short:
which stack was selected, which topology branches were taken, and why a
configuration was rejected.

Usage:
    from gateway_stacks.logging import get_logger

    logger = get_logger(__name__)
    logger.info("database_topology_selected", platform="EKS", isolated=True)

Values that are still unresolved CDK tokens (for example a VPC id that only
exists after deployment) are rendered as ``<unresolved>`` instead of the
opaque ``${Token[...]}`` placeholder.
"""

import logging
import sys

import aws_cdk as cdk
import structlog
from structlog.types import EventDict, Processor

UNRESOLVED = "<unresolved>"


def _render_unresolved_tokens(
    logger: logging.Logger, method_name: str, event_dict: EventDict
) -> EventDict:
    """Replace unresolved CDK token strings with a readable marker."""
    for key, value in event_dict.items():
        if isinstance(value, str) and cdk.Token.is_unresolved(value):
            event_dict[key] = UNRESOLVED
    return event_dict


def configure_logging(json_format: bool = False, log_level: str = "INFO") -> None:
    """
    Configure structlog on top of stdlib logging.

    Logs go to stderr so they never mix with templates the CDK CLI reads
    from stdout.

    Args:
        json_format: If True, output JSON (CI). If False, pretty console output.
        log_level: Minimum log level to output.
    """
    log_level_int = getattr(logging, log_level.upper(), logging.INFO)

    pre_chain: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        _render_unresolved_tokens,
    ]

    if json_format:
        renderer: Processor = structlog.processors.JSONRenderer()
        pre_chain.append(structlog.processors.format_exc_info)
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty())

    structlog.configure(
        processors=[
            *pre_chain,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=pre_chain,
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            renderer,
        ],
    )

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(log_level_int)


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    """Get a structured logger, typically with ``__name__``."""
    return structlog.get_logger(name)
