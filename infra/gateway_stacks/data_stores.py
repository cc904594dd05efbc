"""
Data stores shared by both stacks: two PostgreSQL instances and Redis.

- `litellm` database for the gateway (user `llmproxy`)
- `middleware` database for the middleware (user `middleware`)
- Redis replication group (primary + replica, automatic failover)

Each database has its own generated credential secret. Nothing can reach the
data stores until `allow_from` opens 5432 and 6379 to a client security group.
"""

import json

from aws_cdk import aws_ec2 as ec2
from aws_cdk import aws_elasticache as elasticache
from aws_cdk import aws_rds as rds
from aws_cdk import aws_secretsmanager as secretsmanager
from constructs import Construct

POSTGRES_PORT = 5432
REDIS_PORT = 6379

LITELLM_DATABASE = {"name": "litellm", "username": "llmproxy"}
MIDDLEWARE_DATABASE = {"name": "middleware", "username": "middleware"}


class GatewayDataStores(Construct):
    """
    Dual RDS PostgreSQL + ElastiCache Redis topology.

    Args:
        vpc: VPC to place the data stores in
        subnet_type: Subnets for RDS and the cache subnet group
        resource_prefix: Prefix for fixed-name resources
        encrypted: GP3 storage with encryption at rest for RDS and Redis
        redis_engine_version: Redis engine version
    """

    def __init__(
        self,
        scope: Construct,
        construct_id: str,
        *,
        vpc: ec2.IVpc,
        subnet_type: ec2.SubnetType,
        resource_prefix: str,
        encrypted: bool = False,
        redis_engine_version: str = "7.0",
    ) -> None:
        super().__init__(scope, construct_id)

        self._vpc = vpc
        self._subnet_type = subnet_type
        self._encrypted = encrypted

        # =================================================================
        # PostgreSQL
        # =================================================================

        self.litellm_secret = self._credentials_secret("DBSecret", LITELLM_DATABASE["username"])
        self.middleware_secret = self._credentials_secret(
            "DBMiddlewareSecret", MIDDLEWARE_DATABASE["username"]
        )

        # One group for both instances; only opened via allow_from
        self.database_security_group = ec2.SecurityGroup(
            self,
            "DBSecurityGroup",
            vpc=vpc,
            description="Security group for RDS instance",
            allow_all_outbound=True,
        )

        self.litellm_database = self._postgres_instance(
            "Database", LITELLM_DATABASE["name"], self.litellm_secret
        )
        self.middleware_database = self._postgres_instance(
            "DatabaseMiddleware", MIDDLEWARE_DATABASE["name"], self.middleware_secret
        )

        # =================================================================
        # Redis
        # =================================================================

        self.redis_security_group = ec2.SecurityGroup(
            self,
            "RedisSecurityGroup",
            vpc=vpc,
            description="Security group for Redis cluster",
            allow_all_outbound=True,
        )

        self.redis_subnet_group = elasticache.CfnSubnetGroup(
            self,
            "RedisSubnetGroup",
            description="Subnet group for Redis cluster",
            subnet_ids=vpc.select_subnets(subnet_type=subnet_type).subnet_ids,
            cache_subnet_group_name=f"{resource_prefix}-redis-subnet-group",
        )

        self.redis_parameter_group = elasticache.CfnParameterGroup(
            self,
            "RedisParameterGroup",
            cache_parameter_group_family="redis7",
            description="Redis parameter group",
        )

        self.redis = elasticache.CfnReplicationGroup(
            self,
            "RedisCluster",
            replication_group_description="Redis cluster",
            engine="redis",
            cache_node_type="cache.t3.micro",
            num_cache_clusters=2,
            automatic_failover_enabled=True,
            cache_parameter_group_name=self.redis_parameter_group.ref,
            cache_subnet_group_name=self.redis_subnet_group.ref,
            security_group_ids=[self.redis_security_group.security_group_id],
            engine_version=redis_engine_version,
            port=REDIS_PORT,
            at_rest_encryption_enabled=encrypted or None,
        )

        # Subnet group name is a plain string to CloudFormation, so order explicitly
        self.redis.add_resource_dependency(self.redis_subnet_group)
        self.redis.add_resource_dependency(self.redis_parameter_group)

    @property
    def redis_endpoint_address(self) -> str:
        return self.redis.attr_primary_end_point_address

    @property
    def redis_endpoint_port(self) -> str:
        return self.redis.attr_primary_end_point_port

    def allow_from(self, client_security_group: ec2.ISecurityGroup) -> None:
        """
        Open Postgres and Redis to exactly one client security group.

        Uses CfnSecurityGroupIngress so the rules live with the data stores
        even when the client group belongs to another construct.
        """
        ec2.CfnSecurityGroupIngress(
            self,
            "ClientToDbIngress",
            ip_protocol="tcp",
            from_port=POSTGRES_PORT,
            to_port=POSTGRES_PORT,
            group_id=self.database_security_group.security_group_id,
            source_security_group_id=client_security_group.security_group_id,
            description="Allow ECS tasks to connect to RDS",
        )

        ec2.CfnSecurityGroupIngress(
            self,
            "ClientToRedisIngress",
            ip_protocol="tcp",
            from_port=REDIS_PORT,
            to_port=REDIS_PORT,
            group_id=self.redis_security_group.security_group_id,
            source_security_group_id=client_security_group.security_group_id,
            description="Allow ECS tasks to connect to Redis",
        )

    def _credentials_secret(self, construct_id: str, username: str) -> secretsmanager.Secret:
        return secretsmanager.Secret(
            self,
            construct_id,
            generate_secret_string=secretsmanager.SecretStringGenerator(
                secret_string_template=json.dumps({"username": username}),
                generate_string_key="password",
                exclude_punctuation=True,
            ),
        )

    def _postgres_instance(
        self, construct_id: str, database_name: str, secret: secretsmanager.ISecret
    ) -> rds.DatabaseInstance:
        return rds.DatabaseInstance(
            self,
            construct_id,
            engine=rds.DatabaseInstanceEngine.postgres(
                version=rds.PostgresEngineVersion.VER_15,
            ),
            instance_type=ec2.InstanceType.of(ec2.InstanceClass.T3, ec2.InstanceSize.MICRO),
            vpc=self._vpc,
            vpc_subnets=ec2.SubnetSelection(subnet_type=self._subnet_type),
            security_groups=[self.database_security_group],
            credentials=rds.Credentials.from_secret(secret),
            database_name=database_name,
            storage_type=rds.StorageType.GP3 if self._encrypted else None,
            storage_encrypted=self._encrypted or None,
        )
