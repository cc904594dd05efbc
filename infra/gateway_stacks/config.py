"""
Deployment configuration for the gateway and database stacks.

Values come from environment variables prefixed with ``GATEWAY_`` (or an
``.env`` file) and can be overridden per deployment with CDK context:

    cdk deploy -c domain_name=llm.example.com -c certificate_arn=arn:aws:acm:...

Context keys use the same snake_case names as the settings fields.
"""

from enum import Enum
from pathlib import Path
from typing import TypeVar

from constructs import Construct
from pydantic import ValidationError, field_validator
from pydantic_settings import BaseSettings

REPO_ROOT = Path(__file__).resolve().parents[2]

CONFIG_OBJECT_KEY = "config.yaml"

# Provider API keys forwarded to the gateway container, by environment name
PROVIDER_API_KEY_NAMES = (
    "OPENAI_API_KEY",
    "AZURE_OPENAI_API_KEY",
    "AZURE_API_KEY",
    "ANTHROPIC_API_KEY",
    "GROQ_API_KEY",
    "COHERE_API_KEY",
    "CO_API_KEY",
    "HF_TOKEN",
    "HUGGINGFACE_API_KEY",
    "DATABRICKS_API_KEY",
    "GEMINI_API_KEY",
    "CODESTRAL_API_KEY",
    "MISTRAL_API_KEY",
    "AZURE_AI_API_KEY",
    "NVIDIA_NIM_API_KEY",
    "XAI_API_KEY",
    "PERPLEXITYAI_API_KEY",
    "GITHUB_API_KEY",
    "DEEPSEEK_API_KEY",
)

SUPPORTED_ARCHITECTURES = ("x86", "arm")


class ConfigurationError(ValueError):
    """Raised when deployment configuration is missing or malformed."""

    def __init__(self, message: str, fields: list[str] | None = None):
        super().__init__(message)
        self.fields = fields or []

    @classmethod
    def from_validation_error(cls, exc: ValidationError) -> "ConfigurationError":
        """Collapse a pydantic ValidationError into one error naming every bad field."""
        fields = []
        problems = []
        for error in exc.errors():
            field = ".".join(str(part) for part in error["loc"]) or "<root>"
            fields.append(field)
            problems.append(f"{field}: {error['msg']}")
        return cls("Invalid deployment configuration - " + "; ".join(problems), fields)


class DeploymentPlatform(str, Enum):
    """Container orchestration platform the database stack is prepared for."""

    ECS = "ECS"
    EKS = "EKS"


def split_domain_name(fqdn: str) -> tuple[str, str]:
    """
    Split a fully-qualified domain name into host label and zone name.

    "llm.example.com" -> ("llm", "example.com")
    """
    labels = fqdn.strip().rstrip(".").split(".")
    if len(labels) < 2 or not all(labels):
        raise ConfigurationError(
            f"domain_name must be a fully-qualified name like 'llm.example.com', got {fqdn!r}",
            ["domain_name"],
        )
    return labels[0], ".".join(labels[1:])


class LoggingSettings(BaseSettings):
    """Synth-time logging options."""

    log_json: bool = False
    log_level: str = "INFO"

    model_config = {"env_prefix": "GATEWAY_", "env_file": ".env", "extra": "ignore"}


class GatewaySettings(BaseSettings):
    """Inputs for the application stack (ECS service, ALB, DNS, WAF)."""

    resource_prefix: str = "litellm"

    # DNS and TLS
    domain_name: str
    certificate_arn: str
    hosted_zone_id: str | None = None

    # Middleware token validation
    okta_issuer: str = ""
    okta_audience: str = ""

    # Container images
    litellm_version: str
    architecture: str = "x86"
    ecr_litellm_repository: str = "litellm"
    ecr_middleware_repository: str = "middleware"

    log_bucket_arn: str
    config_dir: Path = REPO_ROOT / "config"

    # Provider API keys (see PROVIDER_API_KEY_NAMES)
    openai_api_key: str = ""
    azure_openai_api_key: str = ""
    azure_api_key: str = ""
    anthropic_api_key: str = ""
    groq_api_key: str = ""
    cohere_api_key: str = ""
    co_api_key: str = ""
    hf_token: str = ""
    huggingface_api_key: str = ""
    databricks_api_key: str = ""
    gemini_api_key: str = ""
    codestral_api_key: str = ""
    mistral_api_key: str = ""
    azure_ai_api_key: str = ""
    nvidia_nim_api_key: str = ""
    xai_api_key: str = ""
    perplexityai_api_key: str = ""
    github_api_key: str = ""
    deepseek_api_key: str = ""

    model_config = {"env_prefix": "GATEWAY_", "env_file": ".env", "extra": "ignore"}

    @field_validator("domain_name")
    @classmethod
    def _validate_domain_name(cls, value: str) -> str:
        value = value.strip().rstrip(".")
        split_domain_name(value)
        return value

    @field_validator("certificate_arn", "log_bucket_arn")
    @classmethod
    def _validate_arn(cls, value: str) -> str:
        value = value.strip()
        if not value.startswith("arn:"):
            raise ValueError(f"expected an ARN, got {value!r}")
        return value

    @field_validator("architecture")
    @classmethod
    def _validate_architecture(cls, value: str) -> str:
        value = value.strip().lower()
        if value not in SUPPORTED_ARCHITECTURES:
            raise ValueError(f"must be one of {', '.join(SUPPORTED_ARCHITECTURES)}")
        return value

    @field_validator("litellm_version", "ecr_litellm_repository", "ecr_middleware_repository")
    @classmethod
    def _validate_not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("must not be empty")
        return value

    @field_validator("hosted_zone_id")
    @classmethod
    def _blank_zone_id_is_none(cls, value: str | None) -> str | None:
        if value is None:
            return None
        return value.strip() or None

    @field_validator("config_dir")
    @classmethod
    def _validate_config_dir(cls, value: Path) -> Path:
        if not (value / CONFIG_OBJECT_KEY).is_file():
            raise ValueError(f"{value} does not contain {CONFIG_OBJECT_KEY}")
        return value

    @property
    def host_name(self) -> str:
        return split_domain_name(self.domain_name)[0]

    @property
    def zone_name(self) -> str:
        return split_domain_name(self.domain_name)[1]

    @property
    def provider_api_keys(self) -> dict[str, str]:
        """Provider keys keyed by the environment variable the gateway expects."""
        return {name: getattr(self, name.lower()) for name in PROVIDER_API_KEY_NAMES}


class DatabaseSettings(BaseSettings):
    """Inputs for the database-only stack."""

    resource_prefix: str = "litellm"
    vpc_id: str | None = None
    deployment_platform: DeploymentPlatform = DeploymentPlatform.ECS
    disable_outbound_network_access: bool = False

    # Endpoint AZ lookups need a concrete account/region at synth time
    lookup_endpoint_azs: bool = True

    model_config = {"env_prefix": "GATEWAY_", "env_file": ".env", "extra": "ignore"}

    @field_validator("vpc_id")
    @classmethod
    def _blank_vpc_id_is_none(cls, value: str | None) -> str | None:
        if value is None:
            return None
        return value.strip() or None

    @field_validator("deployment_platform", mode="before")
    @classmethod
    def _normalize_platform(cls, value: object) -> object:
        if isinstance(value, str):
            return value.strip().upper()
        return value

    @property
    def requires_node_management_endpoints(self) -> bool:
        """EKS nodes in an isolated VPC need private paths to the control-plane services."""
        return (
            self.disable_outbound_network_access
            and self.deployment_platform == DeploymentPlatform.EKS
        )


SettingsT = TypeVar("SettingsT", bound=BaseSettings)


def load_settings(settings_cls: type[SettingsT], scope: Construct) -> SettingsT:
    """
    Build settings from the environment, overridden by CDK context on ``scope``.

    Raises:
        ConfigurationError: if a required value is missing or malformed.
    """
    overrides = {}
    for name in settings_cls.model_fields:
        value = scope.node.try_get_context(name)
        if value is not None:
            overrides[name] = value

    try:
        return settings_cls(**overrides)
    except ValidationError as exc:
        raise ConfigurationError.from_validation_error(exc) from exc
