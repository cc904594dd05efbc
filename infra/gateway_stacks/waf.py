"""
Regional AWS WAF WebACL for the gateway load balancer.

REGIONAL scope is required for ALB association. Traffic is allowed by
default; the AWS managed rule groups below block known-bad requests.
"""

from aws_cdk import aws_wafv2 as wafv2
from constructs import Construct

_MANAGED_RULE_GROUPS = [
    {
        "name": "AWSManagedRulesCommonRuleSet",
        "vendor": "AWS",
        "priority": 1,
        "metric": "CommonRuleSet",
    },
]


def _visibility(metric_name: str) -> wafv2.CfnWebACL.VisibilityConfigProperty:
    return wafv2.CfnWebACL.VisibilityConfigProperty(
        cloud_watch_metrics_enabled=True,
        metric_name=metric_name,
        sampled_requests_enabled=True,
    )


def _build_managed_rules(metric_prefix: str) -> list[wafv2.CfnWebACL.RuleProperty]:
    """Build rule properties for each managed rule group."""
    return [
        wafv2.CfnWebACL.RuleProperty(
            name=f"{rule['vendor']}-{rule['name']}",
            priority=rule["priority"],
            override_action=wafv2.CfnWebACL.OverrideActionProperty(none={}),
            statement=wafv2.CfnWebACL.StatementProperty(
                managed_rule_group_statement=wafv2.CfnWebACL.ManagedRuleGroupStatementProperty(
                    vendor_name=rule["vendor"],
                    name=rule["name"],
                ),
            ),
            visibility_config=_visibility(f"{metric_prefix}{rule['metric']}"),
        )
        for rule in _MANAGED_RULE_GROUPS
    ]


def create_regional_web_acl(
    scope: Construct,
    construct_id: str,
    *,
    metric_prefix: str,
    resource_arn: str,
) -> wafv2.CfnWebACL:
    """Create the WebACL and associate it with ``resource_arn`` (the ALB)."""
    web_acl = wafv2.CfnWebACL(
        scope,
        construct_id,
        default_action=wafv2.CfnWebACL.DefaultActionProperty(allow={}),
        scope="REGIONAL",
        visibility_config=_visibility(f"{metric_prefix}WebAcl"),
        rules=_build_managed_rules(metric_prefix),
    )

    wafv2.CfnWebACLAssociation(
        scope,
        f"{construct_id}ALBAssociation",
        resource_arn=resource_arn,
        web_acl_arn=web_acl.attr_arn,
    )

    return web_acl
