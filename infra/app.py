#!/usr/bin/env python3
"""
AWS CDK app entry point for the LiteLLM gateway infrastructure.

Synthesizes one stack, selected with the ``target`` context value:

    cdk deploy                      # application stack (default)
    cdk deploy -c target=database   # database-only stack
"""

import os
import sys

import aws_cdk as cdk

from gateway_stacks import GatewayDatabaseStack, GatewayStack
from gateway_stacks.config import (
    ConfigurationError,
    DatabaseSettings,
    GatewaySettings,
    LoggingSettings,
    load_settings,
)
from gateway_stacks.logging import configure_logging, get_logger
from gateway_stacks.validation import add_validation_aspects

logger = get_logger(__name__)

TARGETS = ("gateway", "database")


def create_stack(app: cdk.App) -> cdk.Stack:
    """Build the stack named by the ``target`` context value."""
    target = app.node.try_get_context("target") or "gateway"
    if target not in TARGETS:
        raise ConfigurationError(
            f"target must be one of {', '.join(TARGETS)}, got {target!r}", ["target"]
        )

    env = cdk.Environment(
        account=app.node.try_get_context("account") or os.environ.get("CDK_DEFAULT_ACCOUNT"),
        region=(
            app.node.try_get_context("region")
            or os.environ.get("CDK_DEFAULT_REGION")
            or "us-east-1"
        ),
    )

    logger.info("stack_selected", target=target, account=env.account, region=env.region)

    if target == "database":
        return GatewayDatabaseStack(
            app,
            "LitellmDatabaseCdkStack",
            settings=load_settings(DatabaseSettings, app),
            env=env,
        )

    return GatewayStack(
        app,
        "LitellmCdkStack",
        settings=load_settings(GatewaySettings, app),
        env=env,
    )


def main() -> None:
    app = cdk.App()

    logging_settings = load_settings(LoggingSettings, app)
    configure_logging(
        json_format=logging_settings.log_json,
        log_level=logging_settings.log_level,
    )

    try:
        create_stack(app)
    except ConfigurationError as exc:
        logger.error("invalid_configuration", error=str(exc), fields=exc.fields)
        sys.exit(1)

    add_validation_aspects(app, enforce_ha=True)

    app.synth()


if __name__ == "__main__":
    main()
