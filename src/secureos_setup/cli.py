"""
Command-line entry point for the SecureOS Azure evidence setup.

Usage:
  secureos-azure-setup setup --subscription <SUBSCRIPTION_ID> [--verify] [--profile aws-role|kubernetes|secret]
  secureos-azure-setup teardown --subscription <SUBSCRIPTION_ID> [--yes]
"""

from enum import Enum
from typing import Annotated, Optional

import typer
from loguru import logger
from pydantic import ValidationError

from secureos_setup.entra.directory import AzureDirectory
from secureos_setup.provisioning.pipeline import SUBSCRIPTION_ID_PATTERN, Provisioner
from secureos_setup.provisioning.profiles import build_profile
from secureos_setup.provisioning.report import print_summary, verify_setup
from secureos_setup.provisioning.teardown import teardown as run_teardown
from secureos_setup.shared.errors import AzureCliError, FatalPreconditionError
from secureos_setup.shared.logging_config import configure_logging
from secureos_setup.shared.settings import Settings, load_settings


app = typer.Typer(no_args_is_help=True, pretty_exceptions_show_locals=False)


class Profile(str, Enum):
    aws_role = "aws-role"
    kubernetes = "kubernetes"
    secret = "secret"


def _subscription_id(value: str) -> str:
    value = value.strip()
    if not SUBSCRIPTION_ID_PATTERN.match(value):
        raise typer.BadParameter(f"'{value}' is not a subscription ID (expected a GUID)")
    return value


SubscriptionOption = Annotated[
    str,
    typer.Option(
        "--subscription",
        "--subscription-id",
        callback=_subscription_id,
        help="Azure subscription ID to grant read-only access to",
    ),
]
AppNameOption = Annotated[
    Optional[str],
    typer.Option("--app-name", help="App registration display name (default: APP_REG_NAME or SecureOS-Evidence-Collector)"),
]


def _settings(**overrides) -> Settings:
    try:
        settings = load_settings(**overrides)
    except ValidationError as exc:
        configure_logging()
        logger.error(f"Invalid configuration:\n{exc}")
        raise typer.Exit(code=1)
    configure_logging(settings.log_level, settings.log_to_file)
    return settings


@app.command()
def setup(
    subscription: SubscriptionOption,
    verify: Annotated[
        bool,
        typer.Option("--verify", envvar="DO_VERIFY", help="Display detailed setup information after completion"),
    ] = False,
    profile: Annotated[
        Profile,
        typer.Option("--profile", help="Credential strategy: AWS role federation, Kubernetes federation, or client secret"),
    ] = Profile.aws_role,
    issuer: Annotated[
        Optional[str],
        typer.Option("--issuer", help="OIDC issuer URL of the Kubernetes cluster (kubernetes profile)"),
    ] = None,
    namespace: Annotated[
        Optional[str],
        typer.Option("--namespace", help="Kubernetes namespace of the collector (kubernetes profile)"),
    ] = None,
    service_account: Annotated[
        Optional[str],
        typer.Option("--service-account", help="Kubernetes service account of the collector (kubernetes profile)"),
    ] = None,
    secret_years: Annotated[
        Optional[int],
        typer.Option("--secret-years", min=1, help="Client secret validity in years (secret profile)"),
    ] = None,
    app_name: AppNameOption = None,
):
    """Create the app registration, service principal, roles and credential."""
    settings = _settings(
        app_name=app_name,
        k8s_issuer=issuer,
        k8s_namespace=namespace,
        k8s_service_account=service_account,
        secret_validity_years=secret_years,
    )
    directory = AzureDirectory()

    logger.info(f"Subscription ID: {subscription}")
    logger.info(f"App Registration: {settings.app_name}")

    try:
        provisioning_profile = build_profile(profile.value, settings)
        ctx = Provisioner(directory, settings).run(subscription, provisioning_profile)
    except FatalPreconditionError as exc:
        logger.error(str(exc))
        raise typer.Exit(code=1)
    except AzureCliError as exc:
        logger.error(f"Command failed with exit code {exc.returncode}: {exc.stderr or exc}")
        logger.error("Resources created before the failure were kept. Fix the cause and re-run.")
        raise typer.Exit(code=exc.returncode or 1)

    print_summary(ctx)

    # Summary first: it carries the one-time secret, verification is read-only extra
    if verify or settings.verify:
        verify_setup(directory, ctx)


@app.command()
def teardown(
    subscription: SubscriptionOption,
    yes: Annotated[bool, typer.Option("--yes", "-y", help="Skip the confirmation prompt")] = False,
    app_name: AppNameOption = None,
):
    """Remove the role assignments and delete the app registration."""
    settings = _settings(app_name=app_name)

    try:
        run_teardown(AzureDirectory(), settings, subscription, assume_yes=yes)
    except FatalPreconditionError as exc:
        logger.error(str(exc))
        raise typer.Exit(code=1)
    except AzureCliError as exc:
        logger.error(f"Command failed with exit code {exc.returncode}: {exc.stderr or exc}")
        raise typer.Exit(code=exc.returncode or 1)


def main() -> None:
    app()


if __name__ == "__main__":
    main()
