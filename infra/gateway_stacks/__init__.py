"""CDK stacks for the LiteLLM gateway infrastructure."""

from .database_stack import GatewayDatabaseStack
from .gateway_stack import GatewayStack

__all__ = [
    "GatewayDatabaseStack",
    "GatewayStack",
]
