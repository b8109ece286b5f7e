"""
Idempotent provisioning pipeline.

Every step follows the same query-then-create pattern: look the resource up
by its natural key, treat a match as already satisfied, otherwise create it.
Steps run in a fixed order because each depends on identifiers discovered by
the previous one (app -> service principal -> role assignments -> credential).

Failure handling:
  - FatalPreconditionError: raised before any mutation (no az, no login, bad input)
  - AzureCliError: any unexpected az failure aborts the run, nothing is rolled back
  - Role assignment and Graph permission/consent failures are best-effort and
    only recorded as warnings on the context
"""

import re
import time
from typing import Callable, Optional

from loguru import logger

from secureos_setup.entra.directory import AzureDirectory
from secureos_setup.shared.errors import AzureCliError, FatalPreconditionError
from secureos_setup.shared.logging_config import log_step
from secureos_setup.shared.schemas import (
    EXISTING_SECRET_PLACEHOLDER,
    FederatedStrategy,
    ProvisioningContext,
    ProvisioningProfile,
    SecretStrategy,
)
from secureos_setup.shared.settings import Settings


SUBSCRIPTION_ID_PATTERN = re.compile(
    r"^[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{12}$"
)

CONSENT_PORTAL_URL = (
    "https://portal.azure.com/#view/Microsoft_AAD_RegisteredApps/"
    "ApplicationMenuBlade/~/CallAnAPI/appId/{app_id}"
)


def consent_portal_url(app_id: str) -> str:
    return CONSENT_PORTAL_URL.format(app_id=app_id)


def _is_already_exists(exc: AzureCliError) -> bool:
    return "RoleAssignmentExists" in exc.stderr or "already exists" in exc.stderr


class Provisioner:
    """Converges one subscription towards a provisioning profile."""

    def __init__(
            self,
            directory: AzureDirectory,
            settings: Settings,
            sleep: Callable[[float], None] = time.sleep,
    ):
        self.directory = directory
        self.settings = settings
        self._sleep = sleep

    def run(self, subscription_id: str, profile: ProvisioningProfile) -> ProvisioningContext:
        """Run every step in order and return the populated context."""
        ctx = ProvisioningContext(
            subscription_id=subscription_id.strip(),
            app_name=self.settings.app_name,
            profile=profile,
        )
        strategy = profile.strategy

        steps: list[tuple[str, Callable[[], None]]] = [
            ("Validation & Prerequisites", lambda: self.check_prerequisites(ctx)),
            ("Select Subscription", lambda: self.select_subscription(ctx)),
            ("App Registration", lambda: self.ensure_app(ctx)),
            ("Service Principal", lambda: self.ensure_service_principal(ctx)),
            ("Role Assignments", lambda: self.ensure_role_assignments(ctx)),
        ]
        if isinstance(strategy, SecretStrategy):
            steps.append(("Microsoft Graph Permissions", lambda: self.ensure_graph_permissions(ctx, strategy)))
            steps.append(("Client Secret", lambda: self.ensure_client_secret(ctx, strategy)))
        else:
            steps.append(("Federated Identity Credential", lambda: self.ensure_federated_credential(ctx, strategy)))

        for num, (title, step) in enumerate(steps, start=1):
            log_step(num, title)
            step()

        return ctx

    # ---------- Preconditions ----------

    def check_prerequisites(self, ctx: ProvisioningContext) -> None:
        """Fail fast before touching Azure."""
        if not SUBSCRIPTION_ID_PATTERN.match(ctx.subscription_id):
            raise FatalPreconditionError(
                f"Invalid subscription ID '{ctx.subscription_id}' (expected a GUID)."
            )

        if not self.directory.cli_installed():
            raise FatalPreconditionError(
                "Azure CLI (az) not found. Please install it or use Azure Cloud Shell."
            )

        ctx.active_user = self.directory.signed_in_user()
        if not ctx.active_user:
            raise FatalPreconditionError("Not logged in. Run: az login")

        logger.info(f"Logged in as: {ctx.active_user}")
        logger.info(f"Profile: {ctx.profile.name}")
        logger.success("Prerequisites OK")

    def select_subscription(self, ctx: ProvisioningContext) -> None:
        logger.info(f"Setting active subscription {ctx.subscription_id}...")
        self.directory.set_subscription(ctx.subscription_id)

        account = self.directory.account_details()
        ctx.tenant_id = account.get("tenantId")
        ctx.subscription_name = account.get("name")

        logger.info(f"Subscription: {ctx.subscription_name}")
        logger.info(f"Tenant ID: {ctx.tenant_id}")

    # ---------- App + service principal ----------

    def ensure_app(self, ctx: ProvisioningContext) -> None:
        logger.info(f"Checking for existing App Registration '{ctx.app_name}'...")
        ctx.app_id = self.directory.find_app(ctx.app_name)

        if ctx.app_id:
            logger.info(f"App Registration already exists with Client ID: {ctx.app_id}")
            return

        logger.info(f"Creating App Registration: {ctx.app_name}...")
        ctx.app_id = self.directory.create_app(ctx.app_name)
        ctx.app_created = True
        logger.success(f"App Registration created with Client ID: {ctx.app_id}")

    def ensure_service_principal(self, ctx: ProvisioningContext) -> None:
        logger.info("Checking for Service Principal...")
        ctx.sp_object_id = self.directory.find_service_principal(ctx.app_id)

        if ctx.sp_object_id:
            logger.info(f"Service Principal already exists with Object ID: {ctx.sp_object_id}")
            return

        logger.info("Creating Service Principal...")
        ctx.sp_object_id = self.directory.create_service_principal(ctx.app_id)
        ctx.sp_created = True
        logger.success(f"Service Principal created with Object ID: {ctx.sp_object_id}")

        # New principals take a moment to replicate before RBAC accepts them
        if self.settings.sp_propagation_delay > 0:
            logger.info(f"Waiting {self.settings.sp_propagation_delay:g}s for the Service Principal to propagate...")
            self._sleep(self.settings.sp_propagation_delay)

    # ---------- RBAC ----------

    def ensure_role_assignments(self, ctx: ProvisioningContext) -> None:
        """Assign each profile role at subscription scope. Failures are warnings."""
        logger.info(f"Assigning read-only roles at scope {ctx.scope}...")

        try:
            existing = {
                assignment.role
                for assignment in self.directory.list_role_assignments(ctx.sp_object_id, ctx.scope)
            }
        except AzureCliError as exc:
            logger.debug(f"Could not list role assignments, assigning all: {exc}")
            existing = set()

        for role in ctx.profile.roles:
            if role in existing:
                logger.info(f"   - {role}: already assigned")
                ctx.roles_assigned.append(role)
                continue

            try:
                self.directory.assign_role(ctx.sp_object_id, role, ctx.scope)
            except AzureCliError as exc:
                if _is_already_exists(exc):
                    logger.info(f"   - {role}: already assigned")
                    ctx.roles_assigned.append(role)
                    continue

                logger.warning(f"   - {role}: assignment failed: {exc.stderr or exc}")
                ctx.roles_failed.append(role)
                ctx.warn(
                    f"Role '{role}' could not be assigned. Assign it manually: "
                    f"az role assignment create --assignee-object-id {ctx.sp_object_id} "
                    f"--assignee-principal-type ServicePrincipal --role \"{role}\" --scope {ctx.scope}"
                )
                continue

            logger.success(f"   - {role}: assigned")
            ctx.roles_assigned.append(role)

        logger.info("Role assignments completed.")

    # ---------- Microsoft Graph ----------

    def ensure_graph_permissions(self, ctx: ProvisioningContext, strategy: SecretStrategy) -> None:
        """Request Graph application permissions and grant admin consent (best-effort)."""
        if not strategy.graph_permissions:
            logger.info("No Microsoft Graph permissions configured.")
            return

        try:
            requested = set(self.directory.list_graph_permission_ids(ctx.app_id))
        except AzureCliError as exc:
            logger.debug(f"Could not list API permissions, adding all: {exc}")
            requested = set()

        for permission in strategy.graph_permissions:
            if permission.id in requested:
                logger.info(f"   - {permission.name}: already requested")
                continue
            try:
                self.directory.add_graph_permission(ctx.app_id, permission)
            except AzureCliError as exc:
                logger.warning(f"   - {permission.name}: could not be added: {exc.stderr or exc}")
                ctx.consent_required = True
                ctx.warn(f"Microsoft Graph permission '{permission.name}' could not be added.")
                continue
            logger.success(f"   - {permission.name}: added")
            ctx.permissions_added.append(permission.name)

        try:
            consented = set(self.directory.list_consented_app_role_ids(ctx.sp_object_id))
        except AzureCliError as exc:
            logger.debug(f"Could not read granted app roles: {exc}")
            consented = set()

        if all(permission.id in consented for permission in strategy.graph_permissions):
            logger.info("Admin consent already granted.")
            return

        logger.info("Granting admin consent...")
        try:
            self.directory.grant_admin_consent(ctx.app_id)
        except AzureCliError as exc:
            url = consent_portal_url(ctx.app_id)
            logger.warning(f"Admin consent failed: {exc.stderr or exc}")
            logger.warning(f"Grant it manually (Global Administrator required): {url}")
            ctx.consent_required = True
            ctx.warn(f"Admin consent for Microsoft Graph permissions is pending. Grant it at: {url}")
            return

        logger.success("Admin consent granted.")

    # ---------- Credentials ----------

    def ensure_federated_credential(self, ctx: ProvisioningContext, strategy: FederatedStrategy) -> None:
        desired = strategy.to_credential()
        logger.info(f"Checking for Federated Identity Credential '{desired.name}'...")

        existing = self.directory.find_federated_credential(ctx.app_id, desired.name)
        if existing:
            logger.info(f"Federated Identity Credential already exists: {existing.name}")
            if existing.subject != desired.subject or existing.issuer != desired.issuer:
                message = (
                    f"Federated credential '{existing.name}' trusts issuer={existing.issuer} "
                    f"subject={existing.subject}, expected issuer={desired.issuer} "
                    f"subject={desired.subject}. It was left unchanged."
                )
                logger.warning(message)
                ctx.warn(message)
            ctx.federated_credential = existing
            return

        logger.info(f"Creating Federated Identity Credential: {desired.name}...")
        logger.info(f"   issuer={desired.issuer} subject={desired.subject}")
        self.directory.create_federated_credential(ctx.app_id, desired)
        ctx.federated_credential = desired
        ctx.federated_credential_created = True
        logger.success("Federated Identity Credential created successfully.")

    def ensure_client_secret(self, ctx: ProvisioningContext, strategy: SecretStrategy) -> None:
        """Create the named secret once. An existing one is never replaced."""
        logger.info(f"Checking for client secret '{strategy.display_name}'...")

        existing = self.directory.find_client_secret(ctx.app_id, strategy.display_name)
        if existing:
            ctx.client_secret = existing.model_copy(update={"value": EXISTING_SECRET_PLACEHOLDER})
            logger.warning(
                f"A client secret named '{strategy.display_name}' already exists "
                f"(key ID {existing.key_id}). Its value cannot be retrieved again."
            )
            ctx.warn(rotation_instructions(ctx.app_id, strategy, existing.key_id))
            return

        logger.info(f"Creating client secret valid for {strategy.validity_years} year(s)...")
        ctx.client_secret = self.directory.create_client_secret(
            ctx.app_id, strategy.display_name, strategy.validity_years
        )
        logger.success(f"Client secret created (expires {ctx.client_secret.end_date or 'unknown'}).")


def rotation_instructions(app_id: str, strategy: SecretStrategy, key_id: Optional[str]) -> str:
    """Manual steps for replacing a lost secret."""
    text = (
        f"Existing client secret '{strategy.display_name}' was kept; its value is not retrievable. "
        f"If it was lost, rotate it: az ad app credential reset --id {app_id} --append "
        f"--display-name \"{strategy.display_name}\" --years {strategy.validity_years}"
    )
    if key_id:
        text += f", then remove the old one: az ad app credential delete --id {app_id} --key-id {key_id}"
    return text
