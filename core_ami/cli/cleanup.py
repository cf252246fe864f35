"""Remove earlier versions of an image"""

import core_logging as log

from ..cleanup import RetentionCleaner
from ..context import DEFAULT_VERSIONS_TO_KEEP
from ..image import ImageEntity
from .common import add_image_parameter, add_regions_parameter, build_context, csv_list


def run_cleanup(**kwargs) -> dict:
    """Keep the most recent versions with the same tags in every region and remove the rest"""

    context = build_context(**kwargs)

    source = ImageEntity(kwargs["ami_id"], context.config.region)
    report = RetentionCleaner(context, source).cleanup(
        kwargs["regions"],
        kwargs.get("tags") or [],
        kwargs["versions_to_keep"],
    )

    log.info("Older AMIs related to '{}' have been cleaned up successfully", source.image_id)

    return {"source": source.image_id, "reaped": report.reaped_image_ids}


def add_cleanup_subparser(subparsers):
    """Add the cleanup subparser to the subparsers

    Args:
        subparsers (subparsers): The subparsers to add the cleanup subparser to
    """

    parser = subparsers.add_parser(
        "cleanup",
        help="Cleanup earlier versions of the AMI. Keeps the most recent versions with the same tags",
    )
    parser.set_defaults(command="cleanup")

    add_image_parameter(parser)
    add_regions_parameter(parser, "The regions to clean up. Can be multiple flags, or a comma-separated value")

    parser.add_argument(
        "--tags",
        dest="tags",
        metavar="<tag-key,...>",
        type=csv_list,
        action="extend",
        help="The tag keys to filter the AMIs on. Can be multiple flags, or a comma-separated value",
        required=True,
    )
    parser.add_argument(
        "--versions-to-keep",
        dest="versions_to_keep",
        metavar="<count>",
        type=int,
        help=f"The number of AMIs you would like to keep. Default is {DEFAULT_VERSIONS_TO_KEEP}",
        default=DEFAULT_VERSIONS_TO_KEEP,
    )
