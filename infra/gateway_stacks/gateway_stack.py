"""
Application stack - LiteLLM gateway and middleware on ECS Fargate.

This stack deploys:
- S3 bucket holding the gateway's config.yaml
- VPC, ECS cluster, two RDS PostgreSQL instances and Redis
- Secrets Manager entries for DB URLs, master/salt keys and provider API keys
- One Fargate task running the gateway (port 4000) and middleware (port 3000)
- HTTPS Application Load Balancer with path-based routing to the middleware
- Route53 alias record, regional WAF WebACL and CPU autoscaling
"""

import json
import secrets

from aws_cdk import (
    CfnOutput,
    Duration,
    RemovalPolicy,
    SecretValue,
    Stack,
    Tags,
)
from aws_cdk import (
    aws_certificatemanager as acm,
)
from aws_cdk import (
    aws_ec2 as ec2,
)
from aws_cdk import (
    aws_ecr as ecr,
)
from aws_cdk import (
    aws_ecs as ecs,
)
from aws_cdk import (
    aws_ecs_patterns as ecs_patterns,
)
from aws_cdk import (
    aws_elasticloadbalancingv2 as elbv2,
)
from aws_cdk import (
    aws_iam as iam,
)
from aws_cdk import (
    aws_logs as logs,
)
from aws_cdk import (
    aws_rds as rds,
)
from aws_cdk import (
    aws_route53 as route53,
)
from aws_cdk import (
    aws_s3 as s3,
)
from aws_cdk import (
    aws_s3_deployment as s3deploy,
)
from aws_cdk import (
    aws_secretsmanager as secretsmanager,
)
from aws_cdk import (
    custom_resources as cr,
)
from constructs import Construct

from gateway_stacks.config import CONFIG_OBJECT_KEY, PROVIDER_API_KEY_NAMES, GatewaySettings
from gateway_stacks.data_stores import (
    LITELLM_DATABASE,
    MIDDLEWARE_DATABASE,
    POSTGRES_PORT,
    GatewayDataStores,
)
from gateway_stacks.logging import get_logger
from gateway_stacks.network import create_vpc
from gateway_stacks.routing import BEDROCK_MODEL_ROUTE, add_middleware_routes
from gateway_stacks.validation import assert_no_plaintext_secrets
from gateway_stacks.waf import create_regional_web_acl

logger = get_logger(__name__)

GATEWAY_PORT = 4000
MIDDLEWARE_PORT = 3000

GATEWAY_CONTAINER = "LiteLLMContainer"
MIDDLEWARE_CONTAINER = "MiddlewareContainer"

MASTER_KEY_FIELD = "LITELLM_MASTER_KEY"
SALT_KEY_FIELD = "LITELLM_SALT_KEY"


def _generate_key() -> str:
    return "sk-" + secrets.token_hex(16)


def _health_check(path: str, port: int) -> elbv2.HealthCheck:
    return elbv2.HealthCheck(
        path=path,
        port=str(port),
        protocol=elbv2.Protocol.HTTP,
        healthy_threshold_count=2,
        unhealthy_threshold_count=3,
        timeout=Duration.seconds(10),
        interval=Duration.seconds(30),
    )


class GatewayStack(Stack):
    """
    Creates the full LiteLLM gateway deployment.

    Routing:
    - Default listener action forwards to the gateway target group (4000)
    - /bedrock/model/* (priority 5) and the middleware routes (6, 7)
      forward to the middleware target group (3000)

    Secrets are always injected into containers by reference; the master and
    salt keys are randomized by a one-shot custom resource before the task
    definition is created.
    """

    def __init__(
        self,
        scope: Construct,
        construct_id: str,
        *,
        settings: GatewaySettings,
        **kwargs,
    ) -> None:
        super().__init__(scope, construct_id, **kwargs)

        self.settings = settings
        resource_prefix = settings.resource_prefix

        Tags.of(self).add("stack-id", self.stack_name)

        # =================================================================
        # Gateway configuration file
        # =================================================================

        self.config_bucket = s3.Bucket(
            self,
            "LiteLLMConfigBucket",
            removal_policy=RemovalPolicy.DESTROY,
            auto_delete_objects=True,
            encryption=s3.BucketEncryption.S3_MANAGED,
        )

        s3deploy.BucketDeployment(
            self,
            "DeployConfig",
            sources=[s3deploy.Source.asset(str(settings.config_dir))],
            destination_bucket=self.config_bucket,
            include=[CONFIG_OBJECT_KEY],
            exclude=["*"],
        )

        # =================================================================
        # Network, cluster and data stores
        # =================================================================

        self.vpc = create_vpc(self, "LiteLLMVpc")

        self.cluster = ecs.Cluster(
            self,
            "LiteLLMCluster",
            vpc=self.vpc,
            container_insights_v2=ecs.ContainerInsights.ENABLED,
        )

        self.data_stores = GatewayDataStores(
            self,
            "DataStores",
            vpc=self.vpc,
            subnet_type=ec2.SubnetType.PRIVATE_WITH_EGRESS,
            resource_prefix=resource_prefix,
            redis_engine_version="7.0",
        )

        # =================================================================
        # Application secrets
        # =================================================================

        # Created with placeholders; GenerateSecretKeys overwrites them once
        self.master_key_secret = secretsmanager.Secret(
            self,
            "LiteLLMSecret",
            generate_secret_string=secretsmanager.SecretStringGenerator(
                secret_string_template=json.dumps(
                    {MASTER_KEY_FIELD: "placeholder", SALT_KEY_FIELD: "placeholder"}
                ),
                generate_string_key="dummy",
            ),
        )

        self.provider_keys_secret = secretsmanager.Secret(
            self,
            "LiteLLMApiKeySecret",
            generate_secret_string=secretsmanager.SecretStringGenerator(
                secret_string_template=json.dumps(settings.provider_api_keys),
                generate_string_key="dummy",
            ),
        )

        self.generate_secret_keys = cr.AwsCustomResource(
            self,
            "GenerateSecretKeys",
            on_create=cr.AwsSdkCall(
                service="SecretsManager",
                action="putSecretValue",
                parameters={
                    "SecretId": self.master_key_secret.secret_arn,
                    "SecretString": json.dumps(
                        {MASTER_KEY_FIELD: _generate_key(), SALT_KEY_FIELD: _generate_key()}
                    ),
                },
                physical_resource_id=cr.PhysicalResourceId.of("SecretInitializer"),
            ),
            policy=cr.AwsCustomResourcePolicy.from_sdk_calls(
                resources=[self.master_key_secret.secret_arn],
            ),
            install_latest_aws_sdk=False,
        )
        self.master_key_secret.grant_write(self.generate_secret_keys)

        self.database_url_secret = self._database_url_secret(
            "DBUrlSecret",
            self.data_stores.litellm_secret,
            self.data_stores.litellm_database,
            LITELLM_DATABASE,
        )
        self.middleware_database_url_secret = self._database_url_secret(
            "DBMiddlewareUrlSecret",
            self.data_stores.middleware_secret,
            self.data_stores.middleware_database,
            MIDDLEWARE_DATABASE,
        )

        # =================================================================
        # Task definition
        # =================================================================

        task_definition = ecs.FargateTaskDefinition(
            self,
            "LiteLLMTaskDef",
            memory_limit_mib=1024,
            cpu=512,
            runtime_platform=ecs.RuntimePlatform(
                cpu_architecture=(
                    ecs.CpuArchitecture.X86_64
                    if settings.architecture == "x86"
                    else ecs.CpuArchitecture.ARM64
                ),
                operating_system_family=ecs.OperatingSystemFamily.LINUX,
            ),
        )
        # Containers must never start against the placeholder keys
        task_definition.node.add_dependency(self.generate_secret_keys)
        self.task_definition = task_definition

        task_definition.add_to_task_role_policy(
            iam.PolicyStatement(
                effect=iam.Effect.ALLOW,
                actions=["s3:GetObject", "s3:ListBucket"],
                resources=[self.config_bucket.bucket_arn, f"{self.config_bucket.bucket_arn}/*"],
            )
        )

        task_definition.add_to_task_role_policy(
            iam.PolicyStatement(
                effect=iam.Effect.ALLOW,
                actions=["s3:*"],
                resources=[settings.log_bucket_arn, f"{settings.log_bucket_arn}/*"],
            )
        )

        task_definition.add_to_task_role_policy(
            iam.PolicyStatement(
                effect=iam.Effect.ALLOW,
                actions=["bedrock:*"],
                resources=["*"],
            )
        )

        task_definition.add_to_task_role_policy(
            iam.PolicyStatement(
                effect=iam.Effect.ALLOW,
                actions=["sagemaker:InvokeEndpoint"],
                resources=["*"],
            )
        )

        # =================================================================
        # Containers
        # =================================================================

        gateway_repository = ecr.Repository.from_repository_name(
            self,
            "LitellmRepository",
            repository_name=settings.ecr_litellm_repository,
        )

        gateway_environment = {
            "LITELLM_CONFIG_BUCKET_NAME": self.config_bucket.bucket_name,
            "LITELLM_CONFIG_BUCKET_OBJECT_KEY": CONFIG_OBJECT_KEY,
            "UI_USERNAME": "admin",
            "REDIS_URL": (
                f"redis://{self.data_stores.redis_endpoint_address}"
                f":{self.data_stores.redis_endpoint_port}"
            ),
        }
        assert_no_plaintext_secrets(gateway_environment)

        self.gateway_container = task_definition.add_container(
            GATEWAY_CONTAINER,
            image=ecs.ContainerImage.from_ecr_repository(
                gateway_repository, settings.litellm_version
            ),
            logging=ecs.LogDrivers.aws_logs(
                stream_prefix="LiteLLM",
                log_retention=logs.RetentionDays.ONE_MONTH,
            ),
            environment=gateway_environment,
            secrets={
                "DATABASE_URL": ecs.Secret.from_secrets_manager(self.database_url_secret),
                "LITELLM_MASTER_KEY": ecs.Secret.from_secrets_manager(
                    self.master_key_secret, field=MASTER_KEY_FIELD
                ),
                "UI_PASSWORD": ecs.Secret.from_secrets_manager(
                    self.master_key_secret, field=MASTER_KEY_FIELD
                ),
                "LITELLM_SALT_KEY": ecs.Secret.from_secrets_manager(
                    self.master_key_secret, field=SALT_KEY_FIELD
                ),
                **{
                    name: ecs.Secret.from_secrets_manager(self.provider_keys_secret, field=name)
                    for name in PROVIDER_API_KEY_NAMES
                },
            },
        )
        self.gateway_container.add_port_mappings(
            ecs.PortMapping(container_port=GATEWAY_PORT, protocol=ecs.Protocol.TCP)
        )

        middleware_repository = ecr.Repository.from_repository_name(
            self,
            "MiddlewareRepository",
            repository_name=settings.ecr_middleware_repository,
        )

        middleware_environment = {
            "OKTA_ISSUER": settings.okta_issuer,
            "OKTA_AUDIENCE": settings.okta_audience,
        }
        assert_no_plaintext_secrets(middleware_environment)

        self.middleware_container = task_definition.add_container(
            MIDDLEWARE_CONTAINER,
            image=ecs.ContainerImage.from_ecr_repository(middleware_repository, "latest"),
            logging=ecs.LogDrivers.aws_logs(
                stream_prefix="Middleware",
                log_retention=logs.RetentionDays.ONE_MONTH,
            ),
            environment=middleware_environment,
            secrets={
                "DATABASE_MIDDLEWARE_URL": ecs.Secret.from_secrets_manager(
                    self.middleware_database_url_secret
                ),
                "MASTER_KEY": ecs.Secret.from_secrets_manager(
                    self.master_key_secret, field=MASTER_KEY_FIELD
                ),
            },
        )
        self.middleware_container.add_port_mappings(
            ecs.PortMapping(container_port=MIDDLEWARE_PORT, protocol=ecs.Protocol.TCP)
        )

        # =================================================================
        # Fargate service with HTTPS ALB
        # =================================================================

        hosted_zone = self._hosted_zone()

        certificate = acm.Certificate.from_certificate_arn(
            self, "Certificate", settings.certificate_arn
        )

        # The gateway is the default container, so target group 0 maps to it
        self.fargate_service = ecs_patterns.ApplicationMultipleTargetGroupsFargateService(
            self,
            "LiteLLMService",
            cluster=self.cluster,
            task_definition=task_definition,
            service_name="LiteLLMService",
            load_balancers=[
                ecs_patterns.ApplicationLoadBalancerProps(
                    name="ALB",
                    public_load_balancer=True,
                    domain_name=settings.domain_name,
                    domain_zone=hosted_zone,
                    listeners=[
                        ecs_patterns.ApplicationListenerProps(
                            name="Listener",
                            protocol=elbv2.ApplicationProtocol.HTTPS,
                            certificate=certificate,
                            ssl_policy=elbv2.SslPolicy.RECOMMENDED,
                        ),
                    ],
                ),
            ],
            target_groups=[
                ecs_patterns.ApplicationTargetProps(
                    container_port=GATEWAY_PORT,
                    listener="Listener",
                ),
            ],
            desired_count=1,
            health_check_grace_period=Duration.seconds(300),
        )

        self.load_balancer = self.fargate_service.load_balancer
        self.listener = self.fargate_service.listener
        self.service_security_group = self.fargate_service.service.connections.security_groups[0]

        self.gateway_target_group = self.fargate_service.target_group
        self.gateway_target_group.configure_health_check(
            **_health_check("/health/liveliness", GATEWAY_PORT)._values
        )

        self.middleware_target_group = self.listener.add_targets(
            "MiddlewareTargets",
            port=MIDDLEWARE_PORT,
            protocol=elbv2.ApplicationProtocol.HTTP,
            targets=[
                self.fargate_service.service.load_balancer_target(
                    container_name=MIDDLEWARE_CONTAINER,
                    container_port=MIDDLEWARE_PORT,
                )
            ],
            priority=BEDROCK_MODEL_ROUTE.priority,
            conditions=[
                elbv2.ListenerCondition.path_patterns(list(BEDROCK_MODEL_ROUTE.path_patterns))
            ],
            health_check=_health_check("/bedrock/health/liveliness", MIDDLEWARE_PORT),
        )

        add_middleware_routes(self.listener, self.middleware_target_group)

        # =================================================================
        # WAF
        # =================================================================

        self.web_acl = create_regional_web_acl(
            self,
            "LiteLLMWAF",
            metric_prefix="LiteLLM",
            resource_arn=self.load_balancer.load_balancer_arn,
        )

        # =================================================================
        # Data store access and autoscaling
        # =================================================================

        self.data_stores.allow_from(self.service_security_group)

        scaling = self.fargate_service.service.auto_scale_task_count(
            min_capacity=1,
            max_capacity=4,
        )
        scaling.scale_on_cpu_utilization(
            "CpuScaling",
            target_utilization_percent=70,
        )

        logger.info(
            "gateway_stack_declared",
            stack=construct_id,
            domain_name=settings.domain_name,
            architecture=settings.architecture,
            litellm_version=settings.litellm_version,
            configured_providers=sorted(
                name for name, value in settings.provider_api_keys.items() if value
            ),
        )

        # =================================================================
        # Outputs
        # =================================================================

        CfnOutput(
            self,
            "ServiceURL",
            value=f"https://{settings.domain_name}",
            description="Public URL of the LiteLLM gateway",
        )

        CfnOutput(
            self,
            "LitellmEcsCluster",
            value=self.cluster.cluster_name,
            description="Name of the ECS Cluster",
        )

        CfnOutput(
            self,
            "LitellmEcsTask",
            value=self.fargate_service.service.service_name,
            description="Name of the task service",
        )

    def _hosted_zone(self) -> route53.IHostedZone:
        """Use the configured hosted zone id, or look the zone up by name."""
        if self.settings.hosted_zone_id:
            return route53.HostedZone.from_hosted_zone_attributes(
                self,
                "Zone",
                hosted_zone_id=self.settings.hosted_zone_id,
                zone_name=self.settings.zone_name,
            )
        return route53.HostedZone.from_lookup(
            self,
            "Zone",
            domain_name=f"{self.settings.zone_name}.",
        )

    def _database_url_secret(
        self,
        construct_id: str,
        credentials: secretsmanager.ISecret,
        database: rds.DatabaseInstance,
        database_config: dict[str, str],
    ) -> secretsmanager.Secret:
        """
        Compose a postgresql:// URL secret from the generated credentials.

        The password is a dynamic reference resolved by CloudFormation, so
        the template never contains it.
        """
        password = credentials.secret_value_from_json("password").unsafe_unwrap()
        return secretsmanager.Secret(
            self,
            construct_id,
            secret_string_value=SecretValue.unsafe_plain_text(
                f"postgresql://{database_config['username']}:{password}"
                f"@{database.instance_endpoint.hostname}:{POSTGRES_PORT}"
                f"/{database_config['name']}"
            ),
        )
