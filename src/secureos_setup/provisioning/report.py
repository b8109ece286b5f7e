"""Verification output and the final summary handed to the operator."""

import json

import typer
from loguru import logger

from secureos_setup.entra.directory import AzureDirectory
from secureos_setup.shared.errors import AzureCliError
from secureos_setup.shared.schemas import ProvisioningContext, SecretStrategy


def credential_values(ctx: ProvisioningContext) -> dict[str, str]:
    """KEY=value pairs the operator relays to SecureOS."""
    values = {
        "AZURE_TENANT_ID": ctx.tenant_id or "",
        "AZURE_SUBSCRIPTION_ID": ctx.subscription_id,
        "AZURE_CLIENT_ID": ctx.app_id or "",
    }
    if isinstance(ctx.profile.strategy, SecretStrategy):
        values["AZURE_CLIENT_SECRET"] = ctx.secret_value or ""
    elif ctx.federated_credential:
        values["AZURE_FEDERATED_CREDENTIAL_NAME"] = ctx.federated_credential.name
    return values


def render_summary(ctx: ProvisioningContext) -> list[str]:
    """Build the human-readable summary followed by the KEY=value block."""
    lines = [
        "",
        "=" * 60,
        "SUCCESS" if not ctx.warnings else "COMPLETED WITH WARNINGS",
        "=" * 60,
        "",
        "Details:",
        f"  Subscription ID:          {ctx.subscription_id}",
        f"  Subscription Name:        {ctx.subscription_name or ''}",
        f"  Tenant ID:                {ctx.tenant_id or ''}",
        f"  Application (Client) ID:  {ctx.app_id or ''}",
        f"  Service Principal ID:     {ctx.sp_object_id or ''}",
        "",
        "Roles Assigned:",
        *[f"  - {role}" for role in ctx.roles_assigned],
    ]
    if ctx.roles_failed:
        lines += ["", "Roles NOT Assigned:", *[f"  - {role}" for role in ctx.roles_failed]]

    lines.append("")
    if ctx.federated_credential:
        lines += [
            "Federated Identity:",
            f"  Credential Name:          {ctx.federated_credential.name}",
            f"  Issuer:                   {ctx.federated_credential.issuer}",
            f"  Subject:                  {ctx.federated_credential.subject}",
            f"  Audience:                 {', '.join(ctx.federated_credential.audiences)}",
        ]
    elif ctx.client_secret:
        lines += [
            "Client Secret:",
            f"  Display Name:             {ctx.client_secret.display_name}",
            f"  Key ID:                   {ctx.client_secret.key_id or ''}",
            f"  Expires:                  {ctx.client_secret.end_date or ''}",
        ]

    if ctx.consent_required:
        lines += ["", "ACTION REQUIRED: admin consent for Microsoft Graph permissions was not granted."]
    if ctx.warnings:
        lines += ["", "Warnings:", *[f"  - {warning}" for warning in ctx.warnings]]
    if ctx.profile.summary_note:
        lines += ["", ctx.profile.summary_note]

    lines += ["", "Send these values to SecureOS over a secure channel:", ""]
    lines += [f"{key}={value}" for key, value in credential_values(ctx).items()]
    lines.append("")
    return lines


def print_summary(ctx: ProvisioningContext) -> None:
    for line in render_summary(ctx):
        typer.echo(line)


def _dump(title: str, data) -> None:
    logger.info(f"{title}\n{json.dumps(data, indent=2, default=str)}")


def verify_setup(directory: AzureDirectory, ctx: ProvisioningContext) -> None:
    """Read back what the run converged to. Never prints secret values.

    Best-effort: fresh objects may not have replicated yet, so a failed read
    is a warning and never changes the outcome of the run.
    """
    try:
        _verify(directory, ctx)
    except AzureCliError as exc:
        logger.warning(f"Verification incomplete, re-run with --verify later: {exc.stderr or exc}")


def _verify(directory: AzureDirectory, ctx: ProvisioningContext) -> None:
    logger.info("=" * 60)
    logger.info("SETUP VERIFICATION")
    logger.info("=" * 60)

    _dump("App Registration Details:", directory.show_app(ctx.app_id))
    _dump("Service Principal Details:", directory.show_service_principal(ctx.app_id))

    assignments = directory.list_role_assignments(ctx.sp_object_id, ctx.scope)
    _dump("Role Assignments:", [{"Role": a.role, "Scope": a.scope} for a in assignments])

    missing = sorted(set(ctx.profile.roles) - {a.role for a in assignments})
    if missing:
        logger.warning(f"Roles missing at {ctx.scope}: {', '.join(missing)}")

    if isinstance(ctx.profile.strategy, SecretStrategy):
        secrets = directory.list_client_secrets(ctx.app_id)
        _dump("Client Secrets (metadata only):", [s.model_dump(exclude={"value"}) for s in secrets])
    else:
        credentials = directory.list_federated_credentials(ctx.app_id)
        _dump("Federated Identity Credentials:", [c.model_dump() for c in credentials])
