"""Remove what the setup created, as simply as possible."""

from typing import Callable

from loguru import logger

from secureos_setup.entra.directory import AzureDirectory
from secureos_setup.shared.errors import FatalPreconditionError
from secureos_setup.shared.settings import Settings


def teardown(
        directory: AzureDirectory,
        settings: Settings,
        subscription_id: str,
        assume_yes: bool = False,
        prompt: Callable[[str], str] = input,
) -> bool:
    """Delete the role assignments and the app registration.
    Returns:
        bool: False if the operator aborted, True otherwise.
    """
    logger.info("-" * 60)
    logger.info("SecureOS Azure Evidence Setup - REMOVE ACCESS")
    logger.info("-" * 60)
    logger.warning(
        f"This deletes App Registration '{settings.app_name}' and its role assignments "
        f"on subscription {subscription_id}!"
    )

    if not assume_yes:
        confirmation = prompt("Type 'destroy' to confirm: ").strip().lower()
        if confirmation != "destroy":
            logger.info("Aborted by user.")
            return False

    if not directory.cli_installed():
        raise FatalPreconditionError("Azure CLI (az) not found. Please install it or use Azure Cloud Shell.")
    if not directory.signed_in_user():
        raise FatalPreconditionError("Not logged in. Run: az login")

    directory.set_subscription(subscription_id)

    app_id = directory.find_app(settings.app_name)
    if not app_id:
        logger.info(f"Skipping: no App Registration named '{settings.app_name}' found.")
        return True

    # --- Role assignments go first, deleting the app orphans them otherwise ---
    sp_object_id = directory.find_service_principal(app_id)
    scope = f"/subscriptions/{subscription_id}"
    if sp_object_id:
        for assignment in directory.list_role_assignments(sp_object_id, scope):
            if not assignment.assignment_id:
                continue
            directory.delete_role_assignment(assignment.assignment_id)
            logger.success(f"Removed role assignment: {assignment.role}")
    else:
        logger.info("Skipping role assignments: no Service Principal found.")

    # --- Deleting the app also removes its SP, federated credentials and secrets ---
    directory.delete_app(app_id)
    logger.success(f"App Registration '{settings.app_name}' ({app_id}) deleted.")
    logger.success("Cleanup complete!")
    return True
