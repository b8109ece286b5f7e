"""
Environment configuration for the setup tool.

Values come from the process environment, optionally pre-loaded from a `.env`
file in the working directory. Command-line options override them.
"""

import os
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field


# Map environment variable names to Settings fields:
ENV_KEYS = {
    "APP_REG_NAME": "app_name",  # App registration display name (natural key)
    "FEDERATION_CREDENTIAL_NAME": "federation_credential_name",
    "AWS_ACCOUNT_ID": "aws_account_id",  # Vendor AWS account allowed to federate
    "AWS_ROLE_NAME": "aws_role_name",  # Vendor IAM role allowed to federate
    "K8S_OIDC_ISSUER": "k8s_issuer",  # Cluster OIDC issuer URL, no default on purpose
    "K8S_NAMESPACE": "k8s_namespace",
    "K8S_SERVICE_ACCOUNT": "k8s_service_account",
    "SECRET_VALIDITY_YEARS": "secret_validity_years",
    "SP_PROPAGATION_DELAY": "sp_propagation_delay",
    "DO_VERIFY": "verify",  # 1 => display detailed setup info after completion
    "LOG_LEVEL": "log_level",
    "LOG_TO_FILE": "log_to_file",
}


class Settings(BaseModel):
    """Resolved configuration for one run."""
    app_name: str = Field("SecureOS-Evidence-Collector", min_length=1, description="App registration display name")
    federation_credential_name: str = Field("secureos-federation", min_length=1, description="Federated credential name")
    aws_account_id: str = Field("294393683475", pattern=r"^\d{12}$", description="Vendor AWS account ID")
    aws_role_name: str = Field("SecureOSAzureCollectorRole", min_length=1, description="Vendor AWS role name")
    k8s_issuer: Optional[str] = Field(None, description="Kubernetes OIDC issuer URL")
    k8s_namespace: str = Field("secureos", description="Kubernetes namespace of the collector")
    k8s_service_account: str = Field("azure-collector", description="Kubernetes service account of the collector")
    secret_validity_years: int = Field(2, ge=1, description="Client secret validity in years")
    sp_propagation_delay: float = Field(5.0, ge=0, description="Seconds to wait after creating a service principal")
    verify: bool = Field(False, description="Print verification details after setup")
    log_level: str = Field("INFO", description="Console log level")
    log_to_file: bool = Field(False, description="Also write a rotating log file under logs/")


def load_settings(**overrides) -> Settings:
    """Build Settings from `.env` + environment, then apply non-None overrides."""
    load_dotenv()

    values = {}
    for env_key, field_name in ENV_KEYS.items():
        raw = os.getenv(env_key)
        if raw is not None and raw.strip() != "":
            values[field_name] = raw.strip()

    values.update({key: value for key, value in overrides.items() if value is not None})
    return Settings(**values)
