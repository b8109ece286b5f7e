"""Shared fixtures: an in-memory stand-in for the Azure directory."""

import itertools
from typing import Optional

import pytest

from secureos_setup.entra.directory import AzureDirectory
from secureos_setup.shared.errors import AzureCliError
from secureos_setup.shared.schemas import (
    ClientSecret,
    FederatedCredential,
    GraphPermission,
    RoleAssignment,
)
from secureos_setup.shared.settings import Settings


SUBSCRIPTION_ID = "11111111-2222-3333-4444-555555555555"
TENANT_ID = "aaaaaaaa-bbbb-cccc-dddd-eeeeeeeeeeee"


def _cli_error(*command: str, stderr: str = "Forbidden") -> AzureCliError:
    return AzureCliError(["az", *command], 1, stderr)


class FakeDirectory(AzureDirectory):
    """Keeps directory state in dicts and records every mutating call."""

    def __init__(self, user: Optional[str] = "admin@contoso.com", installed: bool = True):
        self.user = user
        self.installed = installed
        self._ids = itertools.count(1)

        self.subscription: Optional[str] = None
        self.apps: dict[str, str] = {}  # display name -> app ID
        self.service_principals: dict[str, str] = {}  # app ID -> SP object ID
        self.role_assignments: list[RoleAssignment] = []
        self.graph_permissions: dict[str, set[str]] = {}
        self.consented: dict[str, set[str]] = {}
        self.federated: dict[str, dict[str, FederatedCredential]] = {}
        self.secrets: dict[str, list[ClientSecret]] = {}

        self.failing_roles: set[str] = set()
        self.consent_fails = False
        self.mutations: list[tuple] = []

    def _new_id(self, prefix: str) -> str:
        return f"{prefix}-{next(self._ids):04d}"

    def cli_installed(self) -> bool:
        return self.installed

    def signed_in_user(self) -> Optional[str]:
        return self.user

    def set_subscription(self, subscription_id: str) -> None:
        self.subscription = subscription_id

    def account_details(self) -> dict[str, str]:
        return {"tenantId": TENANT_ID, "name": "Contoso Production", "id": self.subscription}

    def find_app(self, display_name: str) -> Optional[str]:
        return self.apps.get(display_name)

    def create_app(self, display_name: str) -> str:
        app_id = self._new_id("app")
        self.apps[display_name] = app_id
        self.mutations.append(("create_app", display_name))
        return app_id

    def show_app(self, app_id: str) -> dict:
        name = next(name for name, value in self.apps.items() if value == app_id)
        return {"displayName": name, "appId": app_id, "objectId": f"obj-{app_id}"}

    def delete_app(self, app_id: str) -> None:
        self.apps = {name: value for name, value in self.apps.items() if value != app_id}
        self.service_principals.pop(app_id, None)
        self.federated.pop(app_id, None)
        self.secrets.pop(app_id, None)
        self.mutations.append(("delete_app", app_id))

    def find_service_principal(self, app_id: str) -> Optional[str]:
        return self.service_principals.get(app_id)

    def create_service_principal(self, app_id: str) -> str:
        sp_id = self._new_id("sp")
        self.service_principals[app_id] = sp_id
        self.mutations.append(("create_sp", app_id))
        return sp_id

    def show_service_principal(self, app_id: str) -> dict:
        return {"appId": app_id, "objectId": self.service_principals[app_id]}

    def list_role_assignments(self, principal_id: str, scope: str) -> list[RoleAssignment]:
        return [a for a in self.role_assignments if a.principal_id == principal_id and a.scope == scope]

    def assign_role(self, principal_id: str, role: str, scope: str) -> None:
        self.mutations.append(("assign_role", role))
        if role in self.failing_roles:
            raise _cli_error("role", "assignment", "create", stderr="AuthorizationFailed")
        if any(a.principal_id == principal_id and a.role == role and a.scope == scope
               for a in self.role_assignments):
            raise _cli_error("role", "assignment", "create", stderr="RoleAssignmentExists")
        self.role_assignments.append(RoleAssignment(
            role=role, scope=scope, principal_id=principal_id, assignment_id=self._new_id("ra"),
        ))

    def delete_role_assignment(self, assignment_id: str) -> None:
        self.role_assignments = [a for a in self.role_assignments if a.assignment_id != assignment_id]
        self.mutations.append(("delete_role_assignment", assignment_id))

    def list_graph_permission_ids(self, app_id: str) -> list[str]:
        return sorted(self.graph_permissions.get(app_id, set()))

    def add_graph_permission(self, app_id: str, permission: GraphPermission) -> None:
        self.graph_permissions.setdefault(app_id, set()).add(permission.id)
        self.mutations.append(("add_permission", permission.name))

    def list_consented_app_role_ids(self, sp_object_id: str) -> list[str]:
        return sorted(self.consented.get(sp_object_id, set()))

    def grant_admin_consent(self, app_id: str) -> None:
        self.mutations.append(("admin_consent", app_id))
        if self.consent_fails:
            raise _cli_error("ad", "app", "permission", "admin-consent", stderr="Insufficient privileges")
        sp_id = self.service_principals[app_id]
        self.consented[sp_id] = set(self.graph_permissions.get(app_id, set()))

    def find_federated_credential(self, app_id: str, name: str) -> Optional[FederatedCredential]:
        return self.federated.get(app_id, {}).get(name)

    def list_federated_credentials(self, app_id: str) -> list[FederatedCredential]:
        return list(self.federated.get(app_id, {}).values())

    def create_federated_credential(self, app_id: str, credential: FederatedCredential) -> None:
        self.federated.setdefault(app_id, {})[credential.name] = credential
        self.mutations.append(("create_federated_credential", credential.name))

    def list_client_secrets(self, app_id: str) -> list[ClientSecret]:
        return [s.model_copy(update={"value": None}) for s in self.secrets.get(app_id, [])]

    def find_client_secret(self, app_id: str, display_name: str) -> Optional[ClientSecret]:
        return next((s for s in self.list_client_secrets(app_id) if s.display_name == display_name), None)

    def create_client_secret(self, app_id: str, display_name: str, years: int) -> ClientSecret:
        secret = ClientSecret(
            display_name=display_name,
            value=f"s3cr3t~{next(self._ids)}",
            key_id=self._new_id("key"),
            end_date="2028-10-18T00:00:00Z",
        )
        self.secrets.setdefault(app_id, []).append(secret)
        self.mutations.append(("create_secret", display_name, years))
        return secret


@pytest.fixture
def directory() -> FakeDirectory:
    return FakeDirectory()


@pytest.fixture
def settings() -> Settings:
    return Settings(sp_propagation_delay=0, k8s_issuer="https://oidc.eks.us-east-1.amazonaws.com/id/EXAMPLE")
