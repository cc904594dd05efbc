"""
CDK validation aspects and pre-construction checks.

The aspects run during `cdk synth` and add errors/warnings/info to the
affected constructs. Errors fail `cdk deploy`; warnings fail only with
`cdk synth --strict`.

Usage:
    from gateway_stacks.validation import add_validation_aspects
    add_validation_aspects(app)
"""

import json
import re

import aws_cdk as cdk
import jsii
from aws_cdk import aws_ecs as ecs
from aws_cdk import aws_elasticache as elasticache
from aws_cdk import aws_elasticloadbalancingv2 as elbv2
from aws_cdk import aws_rds as rds
from aws_cdk import aws_s3 as s3
from constructs import IConstruct

from gateway_stacks.config import ConfigurationError

_SECRET_NAME_PATTERN = re.compile(r"(API_KEY|SECRET|PASSWORD|TOKEN|SALT_KEY|MASTER_KEY)$")


def assert_no_plaintext_secrets(environment: dict[str, str]) -> None:
    """
    Reject container environment entries that look like credentials.

    Credentials must be injected with ``ecs.Secret`` references so the value
    never appears in the task definition. Empty values and unresolved tokens
    are allowed.

    Raises:
        ConfigurationError: naming the offending variables.
    """
    offending = sorted(
        name
        for name, value in environment.items()
        if _SECRET_NAME_PATTERN.search(name)
        and value
        and not cdk.Token.is_unresolved(value)
    )
    if offending:
        raise ConfigurationError(
            "Credentials must be passed as secrets, not environment: " + ", ".join(offending),
            offending,
        )


@jsii.implements(cdk.IAspect)
class ListenerRulePriorityAspect:
    """
    Ensures listener rule priorities are unique per listener.

    ALB evaluates rules by ascending priority and rejects duplicates at
    deploy time; this surfaces the clash at synth time instead.
    """

    def __init__(self) -> None:
        self._seen: dict[tuple[str, int], str] = {}

    def visit(self, node: IConstruct) -> None:
        if not isinstance(node, elbv2.CfnListenerRule):
            return
        if not isinstance(node.priority, (int, float)):
            return

        listener = json.dumps(cdk.Stack.of(node).resolve(node.listener_arn), sort_keys=True)
        key = (listener, int(node.priority))
        if key in self._seen:
            cdk.Annotations.of(node).add_error(
                f"Listener rule priority {key[1]} is already used by {self._seen[key]}"
            )
        else:
            self._seen[key] = node.node.path


@jsii.implements(cdk.IAspect)
class ProductionReadinessAspect:
    """
    Flags resources that are fine for a trial deployment but not for production.

    Checks:
    - RDS instances have storage encryption enabled
    - Redis replication groups are encrypted at rest
    - ECS services run at least 2 tasks (if enforce_ha)
    """

    def __init__(self, enforce_ha: bool = False):
        self._enforce_ha = enforce_ha

    def visit(self, node: IConstruct) -> None:
        if isinstance(node, rds.CfnDBInstance) and node.storage_encrypted is not True:
            cdk.Annotations.of(node).add_warning(
                "RDS instance does not have storage encryption enabled"
            )

        if (
            isinstance(node, elasticache.CfnReplicationGroup)
            and node.at_rest_encryption_enabled is not True
        ):
            cdk.Annotations.of(node).add_info("Redis replication group is not encrypted at rest")

        if (
            self._enforce_ha
            and isinstance(node, ecs.CfnService)
            and isinstance(node.desired_count, (int, float))
            and node.desired_count < 2
        ):
            cdk.Annotations.of(node).add_info(
                "ECS service runs a single task; set desired count >= 2 for production HA"
            )


@jsii.implements(cdk.IAspect)
class SecurityAspect:
    """Checks S3 buckets are encrypted."""

    def visit(self, node: IConstruct) -> None:
        if isinstance(node, s3.CfnBucket) and node.bucket_encryption is None:
            cdk.Annotations.of(node).add_warning("S3 bucket has no default encryption configured")


def add_validation_aspects(
    scope: cdk.App,
    enforce_ha: bool = False,
    enable_security_checks: bool = True,
) -> None:
    """
    Add validation aspects to all stacks in the CDK app.

    Args:
        scope: The CDK App (or a single stack) to add aspects to
        enforce_ha: Whether to check for high-availability configurations
        enable_security_checks: Whether to run security-related validations
    """
    cdk.Aspects.of(scope).add(ListenerRulePriorityAspect())
    cdk.Aspects.of(scope).add(ProductionReadinessAspect(enforce_ha=enforce_ha))

    if enable_security_checks:
        cdk.Aspects.of(scope).add(SecurityAspect())
