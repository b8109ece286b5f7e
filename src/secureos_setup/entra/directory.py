"""
Entra ID / Azure RBAC operations used by the setup pipeline.

One method per control-plane call. Lookups return None (or an empty list)
when nothing matches; creates return the new identifier. Deciding whether to
create is left to the pipeline.
"""

import json
from typing import Any, Optional

from loguru import logger

from secureos_setup.entra.az_cli import AzureCli
from secureos_setup.shared.errors import AzureCliError
from secureos_setup.shared.schemas import (
    ClientSecret,
    FederatedCredential,
    GraphPermission,
    RoleAssignment,
)


MS_GRAPH_APP_ID = "00000003-0000-0000-c000-000000000000"
GRAPH_API_URL = "https://graph.microsoft.com/v1.0"


class AzureDirectory:
    """Azure AD + RBAC client backed by the Azure CLI."""

    def __init__(self, cli: Optional[AzureCli] = None):
        self.cli = cli or AzureCli()

    def _try_json(self, args: list[str]) -> Any:
        try:
            return self.cli.json(args)
        except AzureCliError as exc:
            logger.debug(f"Lookup failed, treating as not found: {exc}")
            return None

    # ---------- Account ----------

    def cli_installed(self) -> bool:
        return self.cli.is_installed()

    def signed_in_user(self) -> Optional[str]:
        return self.cli.try_tsv(["account", "show", "--query", "user.name"])

    def set_subscription(self, subscription_id: str) -> None:
        self.cli.run(["account", "set", "--subscription", subscription_id])

    def account_details(self) -> dict[str, str]:
        """Tenant ID and name of the active subscription."""
        return self.cli.json([
            "account", "show",
            "--query", "{tenantId:tenantId, name:name, id:id}",
        ]) or {}

    # ---------- App registration ----------

    def find_app(self, display_name: str) -> Optional[str]:
        return self.cli.try_tsv([
            "ad", "app", "list",
            "--display-name", display_name,
            "--query", "[0].appId",
        ])

    def create_app(self, display_name: str) -> str:
        return self.cli.tsv([
            "ad", "app", "create",
            "--display-name", display_name,
            "--query", "appId",
        ])

    def show_app(self, app_id: str) -> dict[str, Any]:
        return self.cli.json([
            "ad", "app", "show", "--id", app_id,
            "--query", "{displayName:displayName, appId:appId, objectId:id}",
        ]) or {}

    def delete_app(self, app_id: str) -> None:
        self.cli.run(["ad", "app", "delete", "--id", app_id])

    # ---------- Service principal ----------

    def find_service_principal(self, app_id: str) -> Optional[str]:
        return self.cli.try_tsv([
            "ad", "sp", "list",
            "--filter", f"appId eq '{app_id}'",
            "--query", "[0].id",
        ])

    def create_service_principal(self, app_id: str) -> str:
        return self.cli.tsv(["ad", "sp", "create", "--id", app_id, "--query", "id"])

    def show_service_principal(self, app_id: str) -> dict[str, Any]:
        return self.cli.json([
            "ad", "sp", "show", "--id", app_id,
            "--query", "{displayName:displayName, appId:appId, objectId:id}",
        ]) or {}

    # ---------- Role assignments ----------

    def list_role_assignments(self, principal_id: str, scope: str) -> list[RoleAssignment]:
        rows = self.cli.json([
            "role", "assignment", "list",
            "--assignee", principal_id,
            "--scope", scope,
            "--query", "[].{roleDefinitionName:roleDefinitionName, scope:scope, principalId:principalId, id:id}",
        ]) or []
        return [RoleAssignment.model_validate(row) for row in rows]

    def assign_role(self, principal_id: str, role: str, scope: str) -> None:
        # Object ID + principal type skips the Graph lookup that fails right after SP creation
        self.cli.run([
            "role", "assignment", "create",
            "--assignee-object-id", principal_id,
            "--assignee-principal-type", "ServicePrincipal",
            "--role", role,
            "--scope", scope,
        ])

    def delete_role_assignment(self, assignment_id: str) -> None:
        self.cli.run(["role", "assignment", "delete", "--ids", assignment_id])

    # ---------- Microsoft Graph permissions ----------

    def list_graph_permission_ids(self, app_id: str) -> list[str]:
        """App-role IDs requested on Microsoft Graph by the app registration."""
        return self.cli.tsv_lines([
            "ad", "app", "permission", "list", "--id", app_id,
            "--query", f"[?resourceAppId=='{MS_GRAPH_APP_ID}'].resourceAccess[].id",
        ])

    def add_graph_permission(self, app_id: str, permission: GraphPermission) -> None:
        self.cli.run([
            "ad", "app", "permission", "add", "--id", app_id,
            "--api", MS_GRAPH_APP_ID,
            "--api-permissions", f"{permission.id}=Role",
        ])

    def list_consented_app_role_ids(self, sp_object_id: str) -> list[str]:
        """App-role IDs already granted (admin-consented) to the service principal."""
        return self.cli.tsv_lines([
            "rest", "--method", "GET",
            "--uri", f"{GRAPH_API_URL}/servicePrincipals/{sp_object_id}/appRoleAssignments",
            "--query", "value[].appRoleId",
        ])

    def grant_admin_consent(self, app_id: str) -> None:
        self.cli.run(["ad", "app", "permission", "admin-consent", "--id", app_id])

    # ---------- Federated identity credentials ----------

    def find_federated_credential(self, app_id: str, name: str) -> Optional[FederatedCredential]:
        row = self._try_json([
            "ad", "app", "federated-credential", "list", "--id", app_id,
            "--query", f"[?name=='{name}'] | [0]",
        ])
        return FederatedCredential.model_validate(row) if row else None

    def list_federated_credentials(self, app_id: str) -> list[FederatedCredential]:
        rows = self.cli.json(["ad", "app", "federated-credential", "list", "--id", app_id]) or []
        return [FederatedCredential.model_validate(row) for row in rows]

    def create_federated_credential(self, app_id: str, credential: FederatedCredential) -> None:
        payload = credential.model_dump(exclude_none=True)
        self.cli.run([
            "ad", "app", "federated-credential", "create", "--id", app_id,
            "--parameters", json.dumps(payload),
        ])

    # ---------- Client secrets ----------

    def list_client_secrets(self, app_id: str) -> list[ClientSecret]:
        """Metadata of password credentials. Values are never returned by Azure."""
        rows = self.cli.json([
            "ad", "app", "credential", "list", "--id", app_id,
            "--query", "[].{displayName:displayName, keyId:keyId, endDateTime:endDateTime}",
        ]) or []
        return [
            ClientSecret(
                display_name=row.get("displayName") or "",
                key_id=row.get("keyId"),
                end_date=row.get("endDateTime"),
            )
            for row in rows
        ]

    def find_client_secret(self, app_id: str, display_name: str) -> Optional[ClientSecret]:
        for secret in self.list_client_secrets(app_id):
            if secret.display_name == display_name:
                return secret
        return None

    def create_client_secret(self, app_id: str, display_name: str, years: int) -> ClientSecret:
        """Append a new password credential and return it with its one-time value."""
        created = self.cli.json([
            "ad", "app", "credential", "reset", "--id", app_id,
            "--append",
            "--display-name", display_name,
            "--years", str(years),
        ]) or {}

        # The password exists only in `created`; a failed metadata read must not lose it
        try:
            metadata = self.find_client_secret(app_id, display_name)
        except AzureCliError as exc:
            logger.warning(f"Secret created, but its key ID and expiry could not be read: {exc}")
            metadata = None

        return ClientSecret(
            display_name=display_name,
            value=created.get("password"),
            key_id=metadata.key_id if metadata else None,
            end_date=metadata.end_date if metadata else None,
        )
