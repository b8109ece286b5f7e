"""Command-line entry point for the SecureOS Azure evidence setup.

Same as the `secureos-azure-setup` console script:
  python main.py setup --subscription <SUBSCRIPTION_ID> [--verify]
"""

from secureos_setup.cli import main


if __name__ == "__main__":
    main()
