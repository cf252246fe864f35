"""Replicate an image to regions and share it with accounts"""

import core_logging as log

from ..image import ImageEntity
from ..replication import ReplicationOrchestrator
from .common import add_image_parameter, add_regions_parameter, build_context, csv_list
from ..context import DEFAULT_MAX_WAIT, DEFAULT_POLL_INTERVAL


def run_copy(**kwargs) -> dict:
    """Copy the image to every region, grant launch permissions and propagate tags"""

    context = build_context(**kwargs)

    source = ImageEntity(kwargs["ami_id"], context.config.region, kwargs["regions"])
    report = ReplicationOrchestrator(context, source).copy()

    log.info("Image '{}' has been copied to {} regions", source.image_id, len(report.results))

    return {"source": source.image_id, "images": report.image_ids}


def add_copy_subparser(subparsers):
    """Add the copy subparser to the subparsers

    Args:
        subparsers (subparsers): The subparsers to add the copy subparser to
    """

    parser = subparsers.add_parser("copy", help="Copy an AMI to regions and authorize accounts to use it")
    parser.set_defaults(command="copy")

    add_image_parameter(parser)
    add_regions_parameter(parser, "The regions to copy this AMI to. Can be multiple flags, or a comma-separated value")

    parser.add_argument(
        "--accounts",
        dest="accounts",
        metavar="<account,...>",
        type=csv_list,
        action="extend",
        default=[],
        help="The account IDs that will be authorized to use the AMIs. Can be multiple flags, or a comma-separated value",
    )
    parser.add_argument(
        "--role",
        dest="role",
        metavar="<role>",
        type=str,
        help="The role to assume in the authorized accounts. Default is the automation provisioning role",
        default=None,
    )
    parser.add_argument(
        "--poll-interval",
        dest="poll_interval",
        metavar="<seconds>",
        type=float,
        help=f"Seconds between availability checks. Default is {DEFAULT_POLL_INTERVAL}",
        default=DEFAULT_POLL_INTERVAL,
    )
    parser.add_argument(
        "--max-wait",
        dest="max_wait",
        metavar="<seconds>",
        type=float,
        help=f"Maximum seconds to wait for a copy to become available. Default is {DEFAULT_MAX_WAIT}",
        default=DEFAULT_MAX_WAIT,
    )
