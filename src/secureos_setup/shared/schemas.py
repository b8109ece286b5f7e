"""
Pydantic schemas for the Azure setup tool.

Organized by concern: directory objects read back from Azure, credential
strategies (what kind of credential a profile provisions), and the
provisioning context threaded through every pipeline step.
"""

from datetime import datetime
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field


TOKEN_EXCHANGE_AUDIENCE = "api://AzureADTokenExchange"
EXISTING_SECRET_PLACEHOLDER = "<EXISTING_SECRET_NOT_RETRIEVABLE>"


# ============================================================================
# 1. DIRECTORY OBJECTS
# Shapes of what the Azure CLI returns, trimmed to the fields we use.
# ============================================================================

class RoleAssignment(BaseModel):
    """RBAC grant of one role to one principal at one scope."""
    model_config = ConfigDict(populate_by_name=True)

    role: str = Field(..., alias="roleDefinitionName")
    scope: str
    principal_id: Optional[str] = Field(None, alias="principalId")
    assignment_id: Optional[str] = Field(None, alias="id")


class FederatedCredential(BaseModel):
    """OIDC trust statement on an app registration."""
    name: str
    issuer: str
    subject: str
    audiences: list[str] = Field(default_factory=lambda: [TOKEN_EXCHANGE_AUDIENCE], min_length=1)
    description: Optional[str] = None


class ClientSecret(BaseModel):
    """Password credential. `value` is only known right after creation."""
    display_name: str
    value: Optional[str] = None
    key_id: Optional[str] = None
    end_date: Optional[datetime] = None


class GraphPermission(BaseModel):
    """Microsoft Graph application permission (app role)."""
    name: str = Field(..., description="Permission name, e.g. Directory.Read.All")
    id: str = Field(..., description="App role GUID on the Microsoft Graph service principal")


# ============================================================================
# 2. CREDENTIAL STRATEGIES
# Tagged union: a profile provisions either a federated credential or a secret.
# ============================================================================

class FederatedStrategy(BaseModel):
    """Secretless trust: a workload identity exchanges its own token."""
    kind: Literal["federated"] = "federated"
    credential_name: str = Field(..., min_length=1)
    issuer: str = Field(..., min_length=1, description="OIDC issuer URL of the trusted workload")
    subject: str = Field(..., min_length=1, description="Identity pattern to trust")
    audience: str = TOKEN_EXCHANGE_AUDIENCE
    description: str = ""

    def to_credential(self) -> FederatedCredential:
        return FederatedCredential(
            name=self.credential_name,
            issuer=self.issuer,
            subject=self.subject,
            audiences=[self.audience],
            description=self.description or None,
        )


class SecretStrategy(BaseModel):
    """Client secret with a fixed validity window, plus Graph read permissions."""
    kind: Literal["secret"] = "secret"
    display_name: str = Field(..., min_length=1)
    validity_years: int = Field(2, ge=1)
    graph_permissions: list[GraphPermission] = Field(default_factory=list)


CredentialStrategy = Annotated[
    Union[FederatedStrategy, SecretStrategy],
    Field(discriminator="kind"),
]


class ProvisioningProfile(BaseModel):
    """What one run should converge to: roles + credential strategy."""
    name: str
    roles: list[str] = Field(..., min_length=1)
    strategy: CredentialStrategy
    summary_note: str = ""


# ============================================================================
# 3. PROVISIONING CONTEXT
# Identifiers discovered by earlier steps, consumed by later ones.
# ============================================================================

class ProvisioningContext(BaseModel):
    """Explicit record threaded through the pipeline."""
    subscription_id: str
    app_name: str
    profile: ProvisioningProfile

    active_user: Optional[str] = None
    subscription_name: Optional[str] = None
    tenant_id: Optional[str] = None
    app_id: Optional[str] = None
    sp_object_id: Optional[str] = None

    app_created: bool = False
    sp_created: bool = False
    roles_assigned: list[str] = Field(default_factory=list)
    roles_failed: list[str] = Field(default_factory=list)
    permissions_added: list[str] = Field(default_factory=list)

    federated_credential: Optional[FederatedCredential] = None
    federated_credential_created: bool = False
    client_secret: Optional[ClientSecret] = None

    consent_required: bool = False
    warnings: list[str] = Field(default_factory=list)

    @property
    def scope(self) -> str:
        return f"/subscriptions/{self.subscription_id}"

    @property
    def secret_value(self) -> Optional[str]:
        return self.client_secret.value if self.client_secret else None

    def warn(self, message: str) -> None:
        self.warnings.append(message)
