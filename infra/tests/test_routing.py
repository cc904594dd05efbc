"""
Tests for the middleware path routing table.
"""

import aws_cdk as cdk
import pytest
from aws_cdk import aws_ec2 as ec2
from aws_cdk import aws_elasticloadbalancingv2 as elbv2
from aws_cdk.assertions import Template

from gateway_stacks.config import ConfigurationError
from gateway_stacks.routing import (
    BEDROCK_MODEL_ROUTE,
    MAX_PATTERNS_PER_RULE,
    MIDDLEWARE_ROUTES,
    PathRoute,
    add_middleware_routes,
    check_routes,
)


class TestRoutingTable:
    """Tests for the declared middleware routes."""

    def test_declared_routes_are_valid(self):
        check_routes([BEDROCK_MODEL_ROUTE, *MIDDLEWARE_ROUTES])

    def test_priorities(self):
        assert BEDROCK_MODEL_ROUTE.priority == 5
        assert [route.priority for route in MIDDLEWARE_ROUTES] == [6, 7]

    def test_chat_paths_route_to_middleware(self):
        openai_paths = MIDDLEWARE_ROUTES[0]

        assert openai_paths.path_patterns == (
            "/v1/chat/completions",
            "/chat/completions",
            "/chat-history",
            "/bedrock/chat-history",
            "/bedrock/health/liveliness",
        )

    def test_key_management_paths_route_to_middleware(self):
        assert MIDDLEWARE_ROUTES[1].path_patterns == ("/session-ids", "/key/generate", "/user/new")


class TestCheckRoutes:
    """Tests for check_routes."""

    def test_duplicate_priority_rejected(self):
        routes = [PathRoute("A", 10, ("/a",)), PathRoute("B", 10, ("/b",))]

        with pytest.raises(ConfigurationError, match="share listener priority 10"):
            check_routes(routes)

    def test_reusing_bedrock_priority_rejected(self):
        routes = [BEDROCK_MODEL_ROUTE, PathRoute("Clash", BEDROCK_MODEL_ROUTE.priority, ("/x",))]

        with pytest.raises(ConfigurationError, match="share listener priority"):
            check_routes(routes)

    def test_duplicate_name_rejected(self):
        routes = [PathRoute("A", 10, ("/a",)), PathRoute("A", 11, ("/b",))]

        with pytest.raises(ConfigurationError, match="Duplicate route name A"):
            check_routes(routes)

    @pytest.mark.parametrize("priority", [0, -1])
    def test_non_positive_priority_rejected(self, priority):
        with pytest.raises(ConfigurationError, match="invalid priority"):
            check_routes([PathRoute("A", priority, ("/a",))])

    def test_empty_patterns_rejected(self):
        with pytest.raises(ConfigurationError, match="path patterns"):
            check_routes([PathRoute("A", 10, ())])

    def test_too_many_patterns_rejected(self):
        patterns = tuple(f"/p{i}" for i in range(MAX_PATTERNS_PER_RULE + 1))

        with pytest.raises(ConfigurationError, match="got 6"):
            check_routes([PathRoute("A", 10, patterns)])


class TestAddMiddlewareRoutes:
    """Tests for add_middleware_routes on a real listener."""

    def _listener(self):
        stack = cdk.Stack(cdk.App(), "RoutingStack")
        vpc = ec2.Vpc(stack, "Vpc", max_azs=2)
        alb = elbv2.ApplicationLoadBalancer(stack, "Alb", vpc=vpc)
        listener = alb.add_listener("Listener", port=80, open=False)
        listener.add_action("Default", action=elbv2.ListenerAction.fixed_response(404))
        target_group = elbv2.ApplicationTargetGroup(
            stack, "Middleware", vpc=vpc, port=3000, protocol=elbv2.ApplicationProtocol.HTTP
        )
        return stack, listener, target_group

    def test_rules_created_per_route(self):
        stack, listener, target_group = self._listener()

        add_middleware_routes(listener, target_group)

        template = Template.from_stack(stack)
        rules = template.find_resources("AWS::ElasticLoadBalancingV2::ListenerRule")
        assert sorted(rule["Properties"]["Priority"] for rule in rules.values()) == [6, 7]

    def test_conflicting_route_rejected_before_any_rule(self):
        stack, listener, target_group = self._listener()
        routes = (PathRoute("Clash", BEDROCK_MODEL_ROUTE.priority, ("/x",)),)

        with pytest.raises(ConfigurationError):
            add_middleware_routes(listener, target_group, routes)

        template = Template.from_stack(stack)
        template.resource_count_is("AWS::ElasticLoadBalancingV2::ListenerRule", 0)
