"""Command-line behaviour via typer's CliRunner."""

import pytest
from typer.testing import CliRunner

from secureos_setup import cli
from secureos_setup.shared import settings as settings_module
from secureos_setup.shared.errors import AzureCliError
from secureos_setup.shared.settings import ENV_KEYS

from conftest import SUBSCRIPTION_ID, TENANT_ID, FakeDirectory


runner = CliRunner()


@pytest.fixture
def fake_directory(monkeypatch):
    monkeypatch.setattr(settings_module, "load_dotenv", lambda: False)
    for key in ENV_KEYS:
        monkeypatch.delenv(key, raising=False)
    monkeypatch.setenv("SP_PROPAGATION_DELAY", "0")
    monkeypatch.setattr(cli, "configure_logging", lambda *args, **kwargs: None)

    directory = FakeDirectory()
    monkeypatch.setattr(cli, "AzureDirectory", lambda: directory)
    return directory


def test_missing_subscription_prints_usage_and_fails(fake_directory):
    result = runner.invoke(cli.app, ["setup"])
    assert result.exit_code != 0
    assert "Missing option" in result.output
    assert fake_directory.mutations == []
    assert fake_directory.subscription is None


def test_setup_prints_values_for_vendor(fake_directory):
    result = runner.invoke(cli.app, ["setup", "--subscription", SUBSCRIPTION_ID])

    assert result.exit_code == 0, result.output
    assert f"AZURE_TENANT_ID={TENANT_ID}" in result.output
    assert f"AZURE_SUBSCRIPTION_ID={SUBSCRIPTION_ID}" in result.output
    assert "AZURE_CLIENT_ID=app-0001" in result.output
    assert "AZURE_FEDERATED_CREDENTIAL_NAME=secureos-federation" in result.output
    assert "AZURE_CLIENT_SECRET" not in result.output


def test_legacy_subscription_id_spelling(fake_directory):
    result = runner.invoke(cli.app, ["setup", "--subscription-id", SUBSCRIPTION_ID])
    assert result.exit_code == 0, result.output
    assert fake_directory.subscription == SUBSCRIPTION_ID


def test_secret_profile_second_run_does_not_reveal_secret(fake_directory):
    first = runner.invoke(cli.app, ["setup", "--subscription", SUBSCRIPTION_ID, "--profile", "secret"])
    assert first.exit_code == 0, first.output
    assert "AZURE_CLIENT_SECRET=s3cr3t~" in first.output

    second = runner.invoke(cli.app, ["setup", "--subscription", SUBSCRIPTION_ID, "--profile", "secret"])
    assert second.exit_code == 0, second.output
    assert "AZURE_CLIENT_SECRET=<EXISTING_SECRET_NOT_RETRIEVABLE>" in second.output
    assert "s3cr3t~" not in second.output


def test_kubernetes_profile_takes_issuer_flag(fake_directory):
    result = runner.invoke(cli.app, [
        "setup", "--subscription", SUBSCRIPTION_ID,
        "--profile", "kubernetes",
        "--issuer", "https://oidc.example.com/cluster",
        "--namespace", "evidence",
        "--service-account", "collector",
    ])
    assert result.exit_code == 0, result.output
    assert "system:serviceaccount:evidence:collector" in result.output


def test_kubernetes_profile_without_issuer_fails_before_azure(fake_directory):
    result = runner.invoke(cli.app, ["setup", "--subscription", SUBSCRIPTION_ID, "--profile", "kubernetes"])
    assert result.exit_code == 1
    assert fake_directory.subscription is None


def test_not_logged_in_exits_before_mutation(fake_directory):
    fake_directory.user = None
    result = runner.invoke(cli.app, ["setup", "--subscription", SUBSCRIPTION_ID])
    assert result.exit_code == 1
    assert fake_directory.mutations == []


def test_unexpected_cli_failure_aborts_with_its_exit_code(fake_directory, monkeypatch):
    def fail(display_name):
        raise AzureCliError(["az", "ad", "app", "create"], 4, "Insufficient privileges")

    monkeypatch.setattr(fake_directory, "create_app", fail)
    result = runner.invoke(cli.app, ["setup", "--subscription", SUBSCRIPTION_ID])
    assert result.exit_code == 4
    assert "AZURE_CLIENT_ID" not in result.output


def test_verify_flag_reads_back_setup(fake_directory, monkeypatch):
    seen = []
    monkeypatch.setattr(cli, "verify_setup", lambda directory, ctx: seen.append(ctx.app_id))

    result = runner.invoke(cli.app, ["setup", "--subscription", SUBSCRIPTION_ID, "--verify"])
    assert result.exit_code == 0, result.output
    assert seen == ["app-0001"]


def test_verify_enabled_by_environment(fake_directory, monkeypatch):
    seen = []
    monkeypatch.setattr(cli, "verify_setup", lambda directory, ctx: seen.append(ctx.app_id))
    monkeypatch.setenv("DO_VERIFY", "1")

    result = runner.invoke(cli.app, ["setup", "--subscription", SUBSCRIPTION_ID])
    assert result.exit_code == 0, result.output
    assert seen == ["app-0001"]


def test_teardown_with_yes(fake_directory):
    runner.invoke(cli.app, ["setup", "--subscription", SUBSCRIPTION_ID])
    result = runner.invoke(cli.app, ["teardown", "--subscription", SUBSCRIPTION_ID, "--yes"])

    assert result.exit_code == 0, result.output
    assert fake_directory.apps == {}
    assert fake_directory.role_assignments == []


def test_new_secret_is_printed_even_if_verification_fails(fake_directory, monkeypatch):
    def lagging(app_id):
        raise AzureCliError(["az", "ad", "sp", "show"], 3, "Resource does not exist")

    monkeypatch.setattr(fake_directory, "show_service_principal", lagging)
    args = ["setup", "--subscription", SUBSCRIPTION_ID, "--profile", "secret", "--verify"]

    first = runner.invoke(cli.app, args)
    assert first.exit_code == 0, first.output
    assert "AZURE_CLIENT_SECRET=s3cr3t~" in first.output

    second = runner.invoke(cli.app, args)
    assert "AZURE_CLIENT_SECRET=<EXISTING_SECRET_NOT_RETRIEVABLE>" in second.output


def test_invalid_subscription_prints_usage_and_fails(fake_directory):
    result = runner.invoke(cli.app, ["setup", "--subscription", "not-a-guid"])
    assert result.exit_code == 2
    assert "Usage" in result.output
    text = " ".join(result.output.replace("│", " ").split())
    assert "not a subscription ID" in text
    assert fake_directory.mutations == []
    assert fake_directory.subscription is None
