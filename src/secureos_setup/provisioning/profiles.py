"""
Built-in provisioning profiles.

A profile fixes the RBAC roles and the credential strategy for one run:
  - aws-role:   federated trust for the vendor's AWS IAM role (STS assumed-role ARN)
  - kubernetes: federated trust for a Kubernetes service account (cluster OIDC issuer)
  - secret:     client secret plus Microsoft Graph read permissions
"""

from secureos_setup.shared.errors import FatalPreconditionError
from secureos_setup.shared.schemas import (
    FederatedStrategy,
    GraphPermission,
    ProvisioningProfile,
    SecretStrategy,
)
from secureos_setup.shared.settings import Settings


AWS_STS_ISSUER = "https://sts.amazonaws.com"

FEDERATED_ROLES = [
    "Reader",
    "Security Reader",
    "Policy Insights Data Reader",
    "Log Analytics Reader",
]

SECRET_ROLES = [
    "Reader",
    "Security Reader",
    "Log Analytics Reader",
]

# Application permissions (app roles) on Microsoft Graph, all read-only
GRAPH_PERMISSIONS = [
    GraphPermission(name="Directory.Read.All", id="7ab1d382-f21e-4acd-a863-ba3e13f7da61"),
    GraphPermission(name="AuditLog.Read.All", id="b0afded3-3588-46d8-8b3d-9842eff778da"),
    GraphPermission(name="Policy.Read.All", id="246dd0d5-5bd0-4def-940b-0421030a5b68"),
    GraphPermission(name="SecurityEvents.Read.All", id="bf394140-e372-4bf9-a898-299cfc7564e5"),
]

PROFILE_NAMES = ("aws-role", "kubernetes", "secret")


def aws_role_subject(account_id: str, role_name: str) -> str:
    """Any session of the role: arn:aws:sts::<account>:assumed-role/<role>/*"""
    return f"arn:aws:sts::{account_id}:assumed-role/{role_name}/*"


def service_account_subject(namespace: str, service_account: str) -> str:
    return f"system:serviceaccount:{namespace}:{service_account}"


def aws_role_profile(settings: Settings) -> ProvisioningProfile:
    return ProvisioningProfile(
        name="aws-role",
        roles=FEDERATED_ROLES,
        strategy=FederatedStrategy(
            credential_name=settings.federation_credential_name,
            issuer=AWS_STS_ISSUER,
            subject=aws_role_subject(settings.aws_account_id, settings.aws_role_name),
            description="Federated identity for SecureOS AWS role to access Azure",
        ),
        summary_note=(
            f"AWS role {settings.aws_role_name} (account {settings.aws_account_id}) can now access "
            "this subscription via workload identity federation (no secrets required). "
            "Works from EKS, EC2, Lambda, or any AWS service with IAM credentials."
        ),
    )


def kubernetes_profile(settings: Settings) -> ProvisioningProfile:
    if not settings.k8s_issuer:
        raise FatalPreconditionError(
            "The kubernetes profile needs the cluster's OIDC issuer URL. "
            "Pass --issuer or set K8S_OIDC_ISSUER (ask SecureOS for the value)."
        )
    if not settings.k8s_issuer.startswith("https://"):
        raise FatalPreconditionError(f"OIDC issuer must be an https:// URL, got: {settings.k8s_issuer}")
    if not settings.k8s_namespace or not settings.k8s_service_account:
        raise FatalPreconditionError("Kubernetes namespace and service account must both be set.")

    subject = service_account_subject(settings.k8s_namespace, settings.k8s_service_account)
    return ProvisioningProfile(
        name="kubernetes",
        roles=FEDERATED_ROLES,
        strategy=FederatedStrategy(
            credential_name=settings.federation_credential_name,
            issuer=settings.k8s_issuer,
            subject=subject,
            description="Federated identity for SecureOS Kubernetes workload to access Azure",
        ),
        summary_note=(
            f"Service account {subject} can now access this subscription "
            "via workload identity federation (no secrets required)."
        ),
    )


def secret_profile(settings: Settings) -> ProvisioningProfile:
    return ProvisioningProfile(
        name="secret",
        roles=SECRET_ROLES,
        strategy=SecretStrategy(
            display_name=f"{settings.app_name}-Secret",
            validity_years=settings.secret_validity_years,
            graph_permissions=GRAPH_PERMISSIONS,
        ),
        summary_note="Store the client secret in a secure vault. It cannot be displayed again.",
    )


PROFILE_BUILDERS = {
    "aws-role": aws_role_profile,
    "kubernetes": kubernetes_profile,
    "secret": secret_profile,
}


def build_profile(name: str, settings: Settings) -> ProvisioningProfile:
    """Resolve a profile by name, validating its inputs before any Azure call."""
    try:
        builder = PROFILE_BUILDERS[name]
    except KeyError:
        raise FatalPreconditionError(
            f"Unknown profile '{name}'. Choose one of: {', '.join(PROFILE_NAMES)}"
        ) from None
    return builder(settings)
