"""
Thin wrapper around the Azure CLI.

Every control-plane call goes through AzureCli.run(), which logs the command,
runs it with subprocess and raises AzureCliError on a non-zero exit.
"""

import json
import shutil
import subprocess
from typing import Any, Optional

from loguru import logger

from secureos_setup.shared.errors import AzureCliError, FatalPreconditionError


class AzureCli:
    """Runs `az` commands and decodes their output."""

    def __init__(self, executable: str = "az"):
        self.executable = executable

    def is_installed(self) -> bool:
        return shutil.which(self.executable) is not None

    def run(self, args: list[str]) -> str:
        """Execute `az <args>` and return stripped stdout.
        Args:
            args (list[str]): Arguments after the `az` executable.
        Returns:
            str: Captured stdout.
        Raises:
            AzureCliError: If the command exits non-zero.
        """
        command = [self.executable, *args, "--only-show-errors"]
        logger.debug(f"$ {' '.join(command)}")

        try:
            result = subprocess.run(command, capture_output=True, text=True, check=False)
        except FileNotFoundError as exc:
            raise FatalPreconditionError(
                "Azure CLI (az) not found. Please install it or use Azure Cloud Shell."
            ) from exc

        if result.returncode != 0:
            raise AzureCliError(command, result.returncode, result.stderr)

        return result.stdout.strip()

    def tsv(self, args: list[str]) -> Optional[str]:
        """Run with `-o tsv`; empty output or a literal `null` means not found."""
        output = self.run([*args, "-o", "tsv"]).strip()
        if not output or output == "null":
            return None
        return output

    def tsv_lines(self, args: list[str]) -> list[str]:
        """Run with `-o tsv` and return non-empty lines."""
        output = self.tsv(args)
        if output is None:
            return []
        return [line.strip() for line in output.splitlines() if line.strip()]

    def json(self, args: list[str]) -> Any:
        """Run with `-o json` and parse the result (None for empty output)."""
        output = self.run([*args, "-o", "json"]).strip()
        if not output:
            return None
        return json.loads(output)

    def try_tsv(self, args: list[str]) -> Optional[str]:
        """Like tsv(), but a failed lookup counts as not found."""
        try:
            return self.tsv(args)
        except AzureCliError as exc:
            logger.debug(f"Lookup failed, treating as not found: {exc}")
            return None
