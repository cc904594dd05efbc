"""
Shared pytest fixtures for the CDK stack tests.

Stacks are synthesized environment-agnostic, so nothing here touches an AWS
account: the hosted zone is given by id and interface endpoints skip the
availability-zone lookup.

Example usage:

    def test_something(gateway_template):
        gateway_template.resource_count_is("AWS::RDS::DBInstance", 2)
"""

import aws_cdk as cdk
import pytest
from aws_cdk.assertions import Template

from gateway_stacks import GatewayStack
from gateway_stacks.config import DatabaseSettings, GatewaySettings

GATEWAY_CONTEXT = {
    "domain_name": "llm.example.com",
    "certificate_arn": "arn:aws:acm:us-east-1:123456789012:certificate/abc-123",
    "litellm_version": "v1.55.0",
    "log_bucket_arn": "arn:aws:s3:::gateway-logs",
    "hosted_zone_id": "Z0123456789ABC",
    "okta_issuer": "https://example.okta.com/oauth2/default",
    "okta_audience": "api://default",
}


def make_gateway_settings(**overrides) -> GatewaySettings:
    """Gateway settings that ignore any local .env file."""
    return GatewaySettings(_env_file=None, **{**GATEWAY_CONTEXT, **overrides})


def make_database_settings(**overrides) -> DatabaseSettings:
    """Database settings that ignore any local .env file."""
    return DatabaseSettings(_env_file=None, **{"lookup_endpoint_azs": False, **overrides})


def logical_id(construct) -> str:
    """CloudFormation logical id of an L2 construct's underlying resource."""
    stack = cdk.Stack.of(construct)
    return stack.get_logical_id(construct.node.default_child)


@pytest.fixture(scope="module")
def gateway_stack() -> GatewayStack:
    app = cdk.App()
    return GatewayStack(app, "TestGatewayStack", settings=make_gateway_settings())


@pytest.fixture(scope="module")
def gateway_template(gateway_stack) -> Template:
    return Template.from_stack(gateway_stack)
