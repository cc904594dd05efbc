"""
Path-based routing between the gateway and middleware target groups.

All traffic goes to the gateway (port 4000) by default. The routes below send
specific paths to the middleware (port 3000) instead. Lower priority numbers
are evaluated first and every priority must be unique on the listener.
"""

from collections.abc import Iterable
from dataclasses import dataclass

from aws_cdk import aws_elasticloadbalancingv2 as elbv2

from gateway_stacks.config import ConfigurationError

# ALB rejects more than five values in one path-pattern condition
MAX_PATTERNS_PER_RULE = 5


@dataclass(frozen=True)
class PathRoute:
    """A listener rule forwarding a set of path patterns to one target group."""

    name: str
    priority: int
    path_patterns: tuple[str, ...]


# Attached together with the middleware target group itself
BEDROCK_MODEL_ROUTE = PathRoute("BedrockModel", 5, ("/bedrock/model/*",))

MIDDLEWARE_ROUTES = (
    PathRoute(
        "OpenAIPaths",
        6,
        (
            "/v1/chat/completions",
            "/chat/completions",
            "/chat-history",
            "/bedrock/chat-history",
            "/bedrock/health/liveliness",
        ),
    ),
    PathRoute("MorePaths", 7, ("/session-ids", "/key/generate", "/user/new")),
)


def check_routes(routes: Iterable[PathRoute]) -> None:
    """
    Validate a listener's rule set before any rule is declared.

    Raises:
        ConfigurationError: on duplicate priorities or names, non-positive
            priorities, or a rule with no or too many path patterns.
    """
    seen_priorities: dict[int, str] = {}
    seen_names: set[str] = set()

    for route in routes:
        if route.priority < 1:
            raise ConfigurationError(f"Route {route.name} has invalid priority {route.priority}")
        if route.priority in seen_priorities:
            raise ConfigurationError(
                f"Routes {seen_priorities[route.priority]} and {route.name} "
                f"share listener priority {route.priority}"
            )
        if route.name in seen_names:
            raise ConfigurationError(f"Duplicate route name {route.name}")
        if not route.path_patterns or len(route.path_patterns) > MAX_PATTERNS_PER_RULE:
            raise ConfigurationError(
                f"Route {route.name} must have between 1 and {MAX_PATTERNS_PER_RULE} "
                f"path patterns, got {len(route.path_patterns)}"
            )
        seen_priorities[route.priority] = route.name
        seen_names.add(route.name)


def add_middleware_routes(
    listener: elbv2.ApplicationListener,
    target_group: elbv2.IApplicationTargetGroup,
    routes: tuple[PathRoute, ...] = MIDDLEWARE_ROUTES,
) -> None:
    """Forward each route's paths on ``listener`` to the middleware target group."""
    check_routes([BEDROCK_MODEL_ROUTE, *routes])

    for route in routes:
        listener.add_action(
            route.name,
            priority=route.priority,
            conditions=[elbv2.ListenerCondition.path_patterns(list(route.path_patterns))],
            action=elbv2.ListenerAction.forward([target_group]),
        )
