"""
VPC construction and the VPC endpoint catalogue.

Compute in the VPC reaches AWS services either through the NAT gateway or,
when outbound access is disabled, only through the interface endpoints
declared here.
"""

from aws_cdk import RemovalPolicy
from aws_cdk import aws_ec2 as ec2
from aws_cdk import aws_logs as logs
from constructs import Construct

# Needed by every workload: secrets, image pulls, logs, role assumption, model calls
SERVICE_ENDPOINTS = [
    {"id": "SecretsManagerEndpoint", "service": ec2.InterfaceVpcEndpointAwsService.SECRETS_MANAGER},
    {"id": "ECREndpoint", "service": ec2.InterfaceVpcEndpointAwsService.ECR},
    {"id": "ECRDockerEndpoint", "service": ec2.InterfaceVpcEndpointAwsService.ECR_DOCKER},
    {"id": "CloudWatchLogsEndpoint", "service": ec2.InterfaceVpcEndpointAwsService.CLOUDWATCH_LOGS},
    {"id": "STSEndpoint", "service": ec2.InterfaceVpcEndpointAwsService.STS},
    {
        "id": "SageMakerRuntimeEndpoint",
        "service": ec2.InterfaceVpcEndpointAwsService.SAGEMAKER_RUNTIME,
    },
    {"id": "BedrockEndpoint", "service": ec2.InterfaceVpcEndpointAwsService.BEDROCK},
    {"id": "BedrockRuntimeEndpoint", "service": ec2.InterfaceVpcEndpointAwsService.BEDROCK_RUNTIME},
    # Middleware reads Bedrock managed prompts
    {"id": "BedrockAgentEndpoint", "service": ec2.InterfaceVpcEndpointAwsService.BEDROCK_AGENT},
]

# EKS worker nodes without internet egress: bootstrap, SSM, metrics,
# AWS Load Balancer Controller and Cluster Autoscaler
NODE_MANAGEMENT_ENDPOINTS = [
    {"id": "EKSEndpoint", "service": ec2.InterfaceVpcEndpointAwsService.EKS},
    {"id": "EC2Endpoint", "service": ec2.InterfaceVpcEndpointAwsService.EC2},
    {"id": "EC2MessagesEndpoint", "service": ec2.InterfaceVpcEndpointAwsService.EC2_MESSAGES},
    {"id": "SSMEndpoint", "service": ec2.InterfaceVpcEndpointAwsService.SSM},
    {"id": "SSMMessagesEndpoint", "service": ec2.InterfaceVpcEndpointAwsService.SSM_MESSAGES},
    {
        "id": "MonitoringEndpoint",
        "service": ec2.InterfaceVpcEndpointAwsService.CLOUDWATCH_MONITORING,
    },
    {
        "id": "ElasticLoadBalancingEndpoint",
        "service": ec2.InterfaceVpcEndpointAwsService.ELASTIC_LOAD_BALANCING,
    },
    {"id": "AutoScalingEndpoint", "service": ec2.InterfaceVpcEndpointAwsService.AUTOSCALING},
    {"id": "WAFv2Endpoint", "service": ec2.InterfaceVpcEndpointAwsService("wafv2")},
]


def private_subnet_type(disable_outbound_network_access: bool) -> ec2.SubnetType:
    """Subnet type for workloads and data stores."""
    if disable_outbound_network_access:
        return ec2.SubnetType.PRIVATE_ISOLATED
    return ec2.SubnetType.PRIVATE_WITH_EGRESS


def create_vpc(
    scope: Construct,
    construct_id: str,
    *,
    disable_outbound_network_access: bool = False,
    flow_logs: bool = False,
) -> ec2.Vpc:
    """
    Create a two-AZ VPC with public subnets and one private tier.

    The private tier is isolated (and the VPC has no NAT gateway) when
    outbound access is disabled. With ``flow_logs`` all traffic is logged to
    CloudWatch Logs at one-minute aggregation.
    """
    subnet_type = private_subnet_type(disable_outbound_network_access)

    flow_log_options = None
    if flow_logs:
        log_group = logs.LogGroup(
            scope,
            "VPCFlowLogs",
            retention=logs.RetentionDays.ONE_MONTH,
            removal_policy=RemovalPolicy.DESTROY,
        )
        flow_log_options = {
            "flowlog1": ec2.FlowLogOptions(
                destination=ec2.FlowLogDestination.to_cloud_watch_logs(log_group),
                traffic_type=ec2.FlowLogTrafficType.ALL,
                max_aggregation_interval=ec2.FlowLogMaxAggregationInterval.ONE_MINUTE,
            )
        }

    return ec2.Vpc(
        scope,
        construct_id,
        max_azs=2,
        nat_gateways=0 if disable_outbound_network_access else 1,
        subnet_configuration=[
            ec2.SubnetConfiguration(
                name="Public",
                subnet_type=ec2.SubnetType.PUBLIC,
                cidr_mask=24,
            ),
            ec2.SubnetConfiguration(
                name="Isolated" if disable_outbound_network_access else "Private",
                subnet_type=subnet_type,
                cidr_mask=24,
            ),
        ],
        flow_logs=flow_log_options,
    )


def endpoint_security_group(scope: Construct, vpc: ec2.IVpc) -> ec2.SecurityGroup:
    """Security group for interface endpoints: HTTPS from anywhere inside the VPC."""
    security_group = ec2.SecurityGroup(
        scope,
        "VPCEndpointsSG",
        vpc=vpc,
        description="Security group for Interface VPC Endpoints",
        allow_all_outbound=True,
    )
    security_group.add_ingress_rule(
        ec2.Peer.ipv4(vpc.vpc_cidr_block),
        ec2.Port.tcp(443),
        "HTTPS from inside the VPC",
    )
    return security_group


def add_interface_endpoints(
    vpc: ec2.IVpc,
    endpoints: list[dict],
    *,
    subnet_type: ec2.SubnetType,
    security_group: ec2.ISecurityGroup,
    lookup_supported_azs: bool = True,
) -> dict[str, ec2.InterfaceVpcEndpoint]:
    """Add each catalogue entry as an interface endpoint, keyed by construct id."""
    return {
        endpoint["id"]: vpc.add_interface_endpoint(
            endpoint["id"],
            service=endpoint["service"],
            subnets=ec2.SubnetSelection(subnet_type=subnet_type),
            security_groups=[security_group],
            private_dns_enabled=True,
            lookup_supported_azs=lookup_supported_azs,
        )
        for endpoint in endpoints
    }
