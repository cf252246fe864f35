"""Common commandline parameters"""

from typing import Any
import os

from rich.console import Console
from rich.syntax import Syntax
import darkdetect  # type: ignore

import core_framework as util

from ..context import DEFAULT_POLL_INTERVAL, AmiManagerConfig, ExecutionContext

console = Console()

# Detect OS theme and select appropriate theme
if darkdetect.isDark():
    theme = "native"
else:
    theme = "github"


def cprint(data: Any, format: str = "text", end: str = "\n"):
    console.print(Syntax(data, format, theme=theme), end=end)


def jprint(data: Any, format: str = "json", end: str = "\n"):
    console.print(Syntax(data, format, theme=theme), end=end)


def csv_list(value: str) -> list[str]:
    """Split a comma separated argument, so flags can be repeated or comma separated."""
    return [item.strip() for item in value.split(",") if item.strip()]


def add_image_parameter(parser):
    parser.add_argument(
        "--ami-id",
        "--amiID",
        dest="ami_id",
        metavar="<ami-id>",
        type=str,
        help="The source AMI ID, e.g. ami-0e38957fc6310ea8b",
        required=True,
    )


def add_regions_parameter(parser, help: str):
    parser.add_argument(
        "--regions",
        dest="regions",
        metavar="<region,...>",
        type=csv_list,
        action="extend",
        help=help,
        required=True,
    )


def build_context(**kwargs) -> ExecutionContext:
    """Create the execution context from the parsed arguments"""

    profile = kwargs.get("profile")
    if profile:
        os.environ["AWS_PROFILE"] = profile

    config = AmiManagerConfig(
        region=kwargs.get("region") or util.get_region(),
        account=kwargs.get("account"),
        accounts=kwargs.get("accounts") or [],
        role=kwargs.get("role"),
        poll_interval=kwargs.get("poll_interval") or DEFAULT_POLL_INTERVAL,
        max_wait=kwargs.get("max_wait"),
    )

    return ExecutionContext(config)
