"""
Tests for deployment configuration loading and validation.
"""

import os

import aws_cdk as cdk
import pytest

from gateway_stacks.config import (
    PROVIDER_API_KEY_NAMES,
    ConfigurationError,
    DatabaseSettings,
    DeploymentPlatform,
    GatewaySettings,
    LoggingSettings,
    load_settings,
    split_domain_name,
)
from tests.conftest import GATEWAY_CONTEXT, make_database_settings, make_gateway_settings


@pytest.fixture(autouse=True)
def _isolate_environment(monkeypatch, tmp_path):
    """Run each test without GATEWAY_* variables or a .env file."""
    monkeypatch.chdir(tmp_path)
    for name in list(os.environ):
        if name.startswith("GATEWAY_"):
            monkeypatch.delenv(name)


class TestSplitDomainName:
    """Tests for split_domain_name."""

    def test_splits_host_from_zone(self):
        assert split_domain_name("llm.example.com") == ("llm", "example.com")

    def test_multi_label_zone(self):
        assert split_domain_name("api.llm.corp.example.com") == ("api", "llm.corp.example.com")

    def test_trailing_dot_ignored(self):
        assert split_domain_name("llm.example.com.") == ("llm", "example.com")

    @pytest.mark.parametrize("value", ["localhost", "", "llm..com", ".example.com"])
    def test_rejects_names_without_zone(self, value):
        with pytest.raises(ConfigurationError) as exc_info:
            split_domain_name(value)

        assert exc_info.value.fields == ["domain_name"]


class TestGatewaySettings:
    """Tests for GatewaySettings validation."""

    def test_valid_settings(self):
        settings = make_gateway_settings()

        assert settings.domain_name == "llm.example.com"
        assert settings.host_name == "llm"
        assert settings.zone_name == "example.com"
        assert settings.architecture == "x86"
        assert settings.resource_prefix == "litellm"
        assert settings.ecr_litellm_repository == "litellm"
        assert settings.ecr_middleware_repository == "middleware"

    def test_architecture_is_normalized(self):
        assert make_gateway_settings(architecture=" ARM ").architecture == "arm"

    def test_unknown_architecture_rejected(self):
        with pytest.raises(ValueError, match="architecture"):
            make_gateway_settings(architecture="ppc64")

    def test_certificate_must_be_arn(self):
        with pytest.raises(ValueError, match="certificate_arn"):
            make_gateway_settings(certificate_arn="my-certificate")

    def test_log_bucket_must_be_arn(self):
        with pytest.raises(ValueError, match="log_bucket_arn"):
            make_gateway_settings(log_bucket_arn="gateway-logs")

    def test_blank_repository_rejected(self):
        with pytest.raises(ValueError, match="ecr_middleware_repository"):
            make_gateway_settings(ecr_middleware_repository="  ")

    def test_blank_hosted_zone_id_is_none(self):
        assert make_gateway_settings(hosted_zone_id="").hosted_zone_id is None

    def test_config_dir_must_contain_config_file(self, tmp_path):
        with pytest.raises(ValueError, match="config.yaml"):
            make_gateway_settings(config_dir=tmp_path)

    def test_provider_api_keys_keyed_by_environment_name(self):
        settings = make_gateway_settings(openai_api_key="sk-openai", hf_token="hf-token")

        keys = settings.provider_api_keys
        assert list(keys) == list(PROVIDER_API_KEY_NAMES)
        assert len(keys) == 19
        assert keys["OPENAI_API_KEY"] == "sk-openai"
        assert keys["HF_TOKEN"] == "hf-token"
        assert keys["DEEPSEEK_API_KEY"] == ""


class TestDatabaseSettings:
    """Tests for DatabaseSettings validation."""

    def test_defaults(self):
        settings = make_database_settings()

        assert settings.vpc_id is None
        assert settings.deployment_platform == DeploymentPlatform.ECS
        assert settings.disable_outbound_network_access is False
        assert settings.requires_node_management_endpoints is False

    def test_platform_is_case_insensitive(self):
        assert make_database_settings(deployment_platform="eks").deployment_platform == (
            DeploymentPlatform.EKS
        )

    def test_unknown_platform_rejected(self):
        with pytest.raises(ValueError, match="deployment_platform"):
            make_database_settings(deployment_platform="GKE")

    def test_blank_vpc_id_is_none(self):
        assert make_database_settings(vpc_id=" ").vpc_id is None

    @pytest.mark.parametrize(
        "platform,isolated,expected",
        [
            ("EKS", True, True),
            ("EKS", False, False),
            ("ECS", True, False),
            ("ECS", False, False),
        ],
    )
    def test_node_management_endpoints_need_isolated_eks(self, platform, isolated, expected):
        settings = make_database_settings(
            deployment_platform=platform,
            disable_outbound_network_access=isolated,
        )

        assert settings.requires_node_management_endpoints is expected


class TestLoadSettings:
    """Tests for load_settings with CDK context and environment variables."""

    def test_loads_from_context(self):
        app = cdk.App(context=GATEWAY_CONTEXT)

        settings = load_settings(GatewaySettings, app)

        assert settings.domain_name == "llm.example.com"
        assert settings.hosted_zone_id == "Z0123456789ABC"

    def test_loads_from_environment(self, monkeypatch):
        for name, value in GATEWAY_CONTEXT.items():
            monkeypatch.setenv(f"GATEWAY_{name.upper()}", value)

        settings = load_settings(GatewaySettings, cdk.App())

        assert settings.litellm_version == "v1.55.0"

    def test_context_overrides_environment(self, monkeypatch):
        for name, value in GATEWAY_CONTEXT.items():
            monkeypatch.setenv(f"GATEWAY_{name.upper()}", value)
        app = cdk.App(context={"litellm_version": "v1.60.0"})

        settings = load_settings(GatewaySettings, app)

        assert settings.litellm_version == "v1.60.0"

    def test_context_strings_are_coerced(self):
        app = cdk.App(
            context={"disable_outbound_network_access": "true", "deployment_platform": "eks"}
        )

        settings = load_settings(DatabaseSettings, app)

        assert settings.disable_outbound_network_access is True
        assert settings.requires_node_management_endpoints is True

    def test_missing_values_reported_together(self):
        with pytest.raises(ConfigurationError) as exc_info:
            load_settings(GatewaySettings, cdk.App())

        fields = set(exc_info.value.fields)
        assert {"domain_name", "certificate_arn", "litellm_version", "log_bucket_arn"} <= fields
        assert "Invalid deployment configuration" in str(exc_info.value)

    def test_malformed_domain_reported(self):
        app = cdk.App(context={**GATEWAY_CONTEXT, "domain_name": "localhost"})

        with pytest.raises(ConfigurationError) as exc_info:
            load_settings(GatewaySettings, app)

        assert exc_info.value.fields == ["domain_name"]

    def test_logging_settings_defaults(self):
        settings = load_settings(LoggingSettings, cdk.App())

        assert settings.log_json is False
        assert settings.log_level == "INFO"

    def test_configuration_error_is_value_error(self):
        assert issubclass(ConfigurationError, ValueError)
