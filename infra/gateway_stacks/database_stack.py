"""
Database stack - data stores and VPC endpoints without the application.

Used when the gateway runs elsewhere (for example on EKS) and only needs the
databases, Redis and private paths to AWS services. Everything the workload
needs to connect is exported as stack outputs.
"""

from aws_cdk import CfnOutput, RemovalPolicy, Stack
from aws_cdk import aws_ec2 as ec2
from aws_cdk import aws_ecr as ecr
from constructs import Construct

from gateway_stacks.config import DatabaseSettings
from gateway_stacks.data_stores import GatewayDataStores
from gateway_stacks.logging import get_logger
from gateway_stacks.network import (
    NODE_MANAGEMENT_ENDPOINTS,
    SERVICE_ENDPOINTS,
    add_interface_endpoints,
    create_vpc,
    endpoint_security_group,
    private_subnet_type,
)

logger = get_logger(__name__)

PUBLIC_ECR_REGISTRY = "public.ecr.aws"


class GatewayDatabaseStack(Stack):
    """
    PostgreSQL, Redis and VPC endpoints for an externally hosted gateway.

    Storage is GP3 with encryption at rest for RDS and Redis.

    With outbound access disabled the data stores sit in isolated subnets and
    the VPC has no NAT gateway. If the platform is also EKS, the stack adds a
    pull-through cache for public.ecr.aws and the endpoints worker nodes need
    to join the cluster without internet access.
    """

    def __init__(
        self,
        scope: Construct,
        construct_id: str,
        *,
        settings: DatabaseSettings,
        **kwargs,
    ) -> None:
        super().__init__(scope, construct_id, **kwargs)

        self.settings = settings
        self.subnet_type = private_subnet_type(settings.disable_outbound_network_access)

        # =================================================================
        # Image cache (isolated EKS only)
        # =================================================================

        self.cache_repository = None
        self.pull_through_cache = None
        if settings.requires_node_management_endpoints:
            self.cache_repository = ecr.Repository(
                self,
                "EcrCacheRepository",
                repository_name=f"{settings.resource_prefix}-public-ecr-cache",
                removal_policy=RemovalPolicy.DESTROY,
            )
            self.pull_through_cache = ecr.CfnPullThroughCacheRule(
                self,
                "PublicEcrPullThroughCache",
                ecr_repository_prefix=self.cache_repository.repository_name,
                upstream_registry_url=PUBLIC_ECR_REGISTRY,
            )

        # =================================================================
        # VPC
        # =================================================================

        if settings.vpc_id:
            self.vpc = ec2.Vpc.from_lookup(self, "ImportedVpc", vpc_id=settings.vpc_id)
        else:
            self.vpc = create_vpc(
                self,
                "LiteLLMVpc",
                disable_outbound_network_access=settings.disable_outbound_network_access,
                flow_logs=True,
            )

        # =================================================================
        # VPC endpoints
        # =================================================================

        self.endpoint_security_group = endpoint_security_group(self, self.vpc)

        self.s3_endpoint = self.vpc.add_gateway_endpoint(
            "S3Endpoint",
            service=ec2.GatewayVpcEndpointAwsService.S3,
        )

        endpoints = list(SERVICE_ENDPOINTS)
        if settings.requires_node_management_endpoints:
            endpoints.extend(NODE_MANAGEMENT_ENDPOINTS)

        self.interface_endpoints = add_interface_endpoints(
            self.vpc,
            endpoints,
            subnet_type=self.subnet_type,
            security_group=self.endpoint_security_group,
            lookup_supported_azs=settings.lookup_endpoint_azs,
        )

        # =================================================================
        # Data stores
        # =================================================================

        self.data_stores = GatewayDataStores(
            self,
            "DataStores",
            vpc=self.vpc,
            subnet_type=self.subnet_type,
            resource_prefix=settings.resource_prefix,
            encrypted=True,
            redis_engine_version="7.1",
        )

        logger.info(
            "database_topology_selected",
            stack=construct_id,
            platform=settings.deployment_platform.value,
            isolated=settings.disable_outbound_network_access,
            imported_vpc=settings.vpc_id is not None,
            interface_endpoints=sorted(self.interface_endpoints),
        )

        # =================================================================
        # Outputs
        # =================================================================

        CfnOutput(
            self,
            "RdsLitellmHostname",
            value=self.data_stores.litellm_database.instance_endpoint.hostname,
            description="The hostname of the LiteLLM RDS instance",
        )

        CfnOutput(
            self,
            "RdsLitellmSecretArn",
            value=self.data_stores.litellm_secret.secret_arn,
            description="The ARN of the LiteLLM RDS secret",
        )

        CfnOutput(
            self,
            "RdsMiddlewareHostname",
            value=self.data_stores.middleware_database.instance_endpoint.hostname,
            description="The hostname of the Middleware RDS instance",
        )

        CfnOutput(
            self,
            "RdsMiddlewareSecretArn",
            value=self.data_stores.middleware_secret.secret_arn,
            description="The ARN of the Middleware RDS secret",
        )

        CfnOutput(
            self,
            "RedisHostName",
            value=self.data_stores.redis_endpoint_address,
            description="The hostname of the Redis cluster",
        )

        CfnOutput(
            self,
            "RedisPort",
            value=self.data_stores.redis_endpoint_port,
            description="The port of the Redis cluster",
        )

        CfnOutput(
            self,
            "RdsSecurityGroupId",
            value=self.data_stores.database_security_group.security_group_id,
            description="The ID of the RDS security group",
        )

        CfnOutput(
            self,
            "RedisSecurityGroupId",
            value=self.data_stores.redis_security_group.security_group_id,
            description="The ID of the Redis security group",
        )

        CfnOutput(
            self,
            "VpcId",
            value=self.vpc.vpc_id,
            description="The ID of the VPC",
        )
