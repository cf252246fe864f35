"""Deregister images and delete the snapshots behind them."""

from typing import Any

from pydantic import BaseModel, Field
from botocore.exceptions import BotoCoreError, ClientError

import core_logging as log

from .context import ExecutionContext
from .errors import AmiError, NotFoundError, ReapError, classify_aws_error, error_code
from .image import ImageEntity, snapshot_ids_of

DEREGISTERED = "deregistered"
NOT_FOUND = "not_found"


class SnapshotFailure(BaseModel):
    snapshot_id: str
    error: str


class ReapResult(BaseModel):
    """
    What happened when an image was removed.

    :param image_id: The image that was deregistered
    :param region: The region of the image
    :param deregistration: ``deregistered`` or ``not_found`` when the image was already gone
    :param deleted_snapshots: Snapshots that were deleted (or were already gone)
    :param failed_snapshots: Snapshots that could not be deleted
    """

    image_id: str
    region: str
    deregistration: str = DEREGISTERED
    deleted_snapshots: list[str] = Field(default_factory=list)
    failed_snapshots: list[SnapshotFailure] = Field(default_factory=list)


class ResourceReaper:
    """Removes an image together with the snapshots referenced by its block device mappings."""

    def __init__(self, context: ExecutionContext):
        self.context = context

    def remove_ami(self, image: dict[str, Any], region: str) -> ReapResult:
        """
        Deregister ``image`` and delete all of its snapshots.

        Every snapshot deletion is attempted even when an earlier one fails.  The first
        failure is raised after all attempts, carrying the partial result.

        :param image: The image record as returned by describe_images
        :type image: dict
        :param region: The region of the image
        :type region: str
        :return: The removal result
        :rtype: ReapResult
        :raises AmiError: If deregistration fails for any reason other than the image being gone
        :raises ReapError: If one or more snapshots could not be deleted
        """
        image_id = image["ImageId"]
        snapshot_ids = snapshot_ids_of(image)
        result = ReapResult(image_id=image_id, region=region)

        ec2_client = self.context.resolver.resolve_default(region)

        log.debug("Deregistering image '{}' in region '{}'", image_id, region)
        try:
            ec2_client.deregister_image(ImageId=image_id)
            log.debug("Image '{}' is deregistered", image_id)
        except (ClientError, BotoCoreError) as e:
            error = classify_aws_error(e, f"Failed to deregister image '{image_id}'")
            if not isinstance(error, NotFoundError):
                raise error from e
            log.warning("Image '{}' was not found during deregistration: {}", image_id, error)
            result.deregistration = NOT_FOUND

        first_error: AmiError | None = None

        for snapshot_id in snapshot_ids:
            log.debug("Deleting snapshot '{}'", snapshot_id)
            try:
                ec2_client.delete_snapshot(SnapshotId=snapshot_id)
                result.deleted_snapshots.append(snapshot_id)
            except (ClientError, BotoCoreError) as e:
                if isinstance(e, ClientError) and error_code(e) == "InvalidSnapshot.NotFound":
                    log.warning("Snapshot '{}' was not found during deletion", snapshot_id)
                    result.deleted_snapshots.append(snapshot_id)
                    continue
                error = classify_aws_error(e, f"Failed to delete snapshot '{snapshot_id}'")
                log.error("{}", error)
                result.failed_snapshots.append(SnapshotFailure(snapshot_id=snapshot_id, error=str(error)))
                if first_error is None:
                    first_error = error

        if first_error is not None:
            raise ReapError(
                f"Failed to delete {len(result.failed_snapshots)} of {len(snapshot_ids)} snapshots "
                f"for image '{image_id}': {first_error}",
                result,
                first_error,
            )

        log.debug("Deleted {} snapshots for image '{}'", len(result.deleted_snapshots), image_id)
        return result

    def remove(self, image: ImageEntity) -> ReapResult:
        """
        Describe ``image`` in its region and remove it.

        :raises NotFoundError: If the image does not exist
        """
        record = image.fetch_metadata(self.context)
        result = self.remove_ami(record, image.region)
        log.info("Image '{}' has been removed", image.image_id)
        return result
