"""Remove a single image and its snapshots"""

from ..image import ImageEntity
from ..reaper import ResourceReaper
from .common import add_image_parameter, build_context


def run_remove(**kwargs) -> dict:
    """Deregister the image and delete its snapshots"""

    context = build_context(**kwargs)

    image = ImageEntity(kwargs["ami_id"], context.config.region)
    result = ResourceReaper(context).remove(image)

    return {"image": result.image_id, "snapshots": result.deleted_snapshots}


def add_remove_subparser(subparsers):
    """Add the remove subparser to the subparsers

    Args:
        subparsers (subparsers): The subparsers to add the remove subparser to
    """

    parser = subparsers.add_parser("remove", help="Remove an AMI and its snapshots")
    parser.set_defaults(command="remove")

    add_image_parameter(parser)
