"""Profiles the CLI interface called "core-ami".

Copies an AMI to regions and accounts, cleans up older generations of it, and
removes single images together with their snapshots."""

from typing import Callable
import sys
import argparse
import traceback

import core_logging as log
import core_framework as util

from core_ami import __version__

from core_ami.cli.copy import run_copy, add_copy_subparser
from core_ami.cli.cleanup import run_cleanup, add_cleanup_subparser
from core_ami.cli.remove import run_remove, add_remove_subparser

from dotenv import load_dotenv
from .common import cprint, jprint

load_dotenv()

COMMAND: dict[str, Callable] = {
    "copy": run_copy,
    "cleanup": run_cleanup,
    "remove": run_remove,
}


def parse_args(argv: list[str] | None = None) -> dict:
    """Parse the CLI arguments"""

    region = util.get_region()
    profile = util.get_aws_profile()

    parser = argparse.ArgumentParser(
        description="Manage the lifecycle of an AMI across regions and accounts",
        formatter_class=argparse.RawTextHelpFormatter,
    )

    parser.add_argument(
        "--region",
        dest="region",
        type=str,
        metavar="<region>",
        help=f"The region of the source AMI. Default is '{region}'",
        default=region,
    )
    parser.add_argument(
        "--account",
        dest="account",
        type=str,
        metavar="<account>",
        help="The account that owns the source AMI. Default is the account of the current credentials",
        default=None,
    )
    parser.add_argument(
        "--aws-profile",
        dest="profile",
        type=str,
        metavar="<profile>",
        help=f"AWS Profile to use. Default is '{profile}'",
        default=profile,
    )

    subparsers = parser.add_subparsers(title="Commands", dest="command", metavar="<command>", required=True)

    add_copy_subparser(subparsers)
    add_cleanup_subparser(subparsers)
    add_remove_subparser(subparsers)

    data = vars(parser.parse_args(argv))

    return data


def execute(argv: list[str] | None = None):
    """Execute the CLI"""

    try:
        args = parse_args(argv)

        log.setup("core-ami")

        cprint(f"\nCore AMI Manager CLI v{__version__}\n")

        cmd = COMMAND.get(args.pop("command"))
        if cmd is not None:
            result = cmd(**args)
            jprint(util.to_json(result))

        cprint("\nOperation complete.\n")

    except Exception:
        traceback.print_exc()
        sys.exit(1)


def main():
    """Main entry point for the CLI"""

    execute()


if __name__ == "__main__":
    main()
