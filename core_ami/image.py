"""In-memory representation of an AMI and the copies derived from it."""

from typing import Any, Generic, TypeVar
from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field
from botocore.exceptions import BotoCoreError, ClientError

import core_logging as log

from .context import ExecutionContext
from .errors import ImageValidationError, NotFoundError, classify_aws_error

T = TypeVar("T")

STATE_AVAILABLE = "available"
STATE_PENDING = "pending"
TERMINAL_FAILURE_STATES = {"failed", "error", "invalid", "deregistered"}


class Tag(BaseModel):
    """An immutable key/value pair copied from the source image."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    key: str = Field(..., alias="Key")
    value: str = Field("", alias="Value")

    @classmethod
    def from_api(cls, data: dict[str, str]) -> "Tag":
        return cls(key=data["Key"], value=data.get("Value", ""))

    def to_api(self) -> dict[str, str]:
        return {"Key": self.key, "Value": self.value}

    def to_filter(self) -> dict[str, Any]:
        """Return the describe_images filter that matches this tag exactly."""
        return {"Name": f"tag:{self.key}", "Values": [self.value]}


class Resolvable(Generic[T]):
    """
    A value that starts unresolved and can be resolved exactly once.

    Later calls to :meth:`resolve` are ignored, so refreshing an image never
    clobbers a name or tag set that was already captured.
    """

    def __init__(self):
        self._resolved = False
        self._value: T | None = None

    @property
    def resolved(self) -> bool:
        return self._resolved

    def resolve(self, value: T) -> bool:
        """Set the value if it has not been set yet. Return True if it was set by this call."""
        if self._resolved:
            return False
        self._value = value
        self._resolved = True
        return True

    def get(self, default: T | None = None) -> T | None:
        return self._value if self._resolved else default

    def __repr__(self) -> str:
        return f"Resolvable({self._value!r})" if self._resolved else "Resolvable(<unresolved>)"


def parse_creation_date(value: Any, image_id: str = "unknown") -> datetime:
    """
    Parse an EC2 ``CreationDate`` (RFC 3339, e.g. ``2024-01-15T10:30:00.000Z``).

    :raises ImageValidationError: If the value is missing or malformed
    """
    if not isinstance(value, str) or not value:
        raise ImageValidationError(f"Image '{image_id}' has no creation date")
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError as e:
        raise ImageValidationError(f"Image '{image_id}' has an invalid creation date '{value}': {e}") from e
    if parsed.tzinfo is None:
        raise ImageValidationError(f"Image '{image_id}' creation date '{value}' has no timezone")
    return parsed


def snapshot_ids_of(image: dict[str, Any]) -> list[str]:
    """Return the snapshot ids referenced by the EBS block device mappings of an image record."""
    snapshots = []
    for mapping in image.get("BlockDeviceMappings", []) or []:
        ebs_info = mapping.get("Ebs")
        if ebs_info and ebs_info.get("SnapshotId"):
            snapshots.append(ebs_info["SnapshotId"])
        else:
            log.trace("Skipping device '{}' without a snapshot", mapping.get("DeviceName", "unknown"))
    return snapshots


class ImageEntity:
    """
    One AMI in one region, plus the copies derived from it.

    A derived entity starts with only its region.  Its id is rebound once the copy
    request returns, and until it captures tags of its own it reports the tags of
    its source.

    :param image_id: The AMI id (None for a copy that has not been requested yet)
    :type image_id: str | None
    :param region: The region the image lives in
    :type region: str
    :param target_regions: Regions to create derived entities for
    :type target_regions: list[str] | None
    :param source: The image this one is derived from
    :type source: ImageEntity | None
    """

    def __init__(
        self,
        image_id: str | None,
        region: str,
        target_regions: list[str] | None = None,
        source: "ImageEntity | None" = None,
    ):
        self.image_id = image_id
        self.region = region
        self.source = source
        self._name: Resolvable[str] = Resolvable()
        self._tags: Resolvable[tuple[Tag, ...]] = Resolvable()
        self.status: str | None = None
        self.creation_date: str | None = None
        self.description: dict[str, Any] | None = None

        self.copies: dict[str, ImageEntity] = {}
        for target in target_regions or []:
            if target not in self.copies:
                self.copies[target] = ImageEntity(None, target, source=self)

    def __repr__(self) -> str:
        return f"ImageEntity(image_id={self.image_id!r}, region={self.region!r}, status={self.status!r})"

    @property
    def name(self) -> str | None:
        return self._name.get()

    @property
    def tags(self) -> tuple[Tag, ...]:
        if self._tags.resolved:
            return self._tags.get()
        if self.source is not None:
            return self.source.tags
        return ()

    @property
    def tag_map(self) -> dict[str, Tag]:
        return {tag.key: tag for tag in self.tags}

    @property
    def snapshot_ids(self) -> list[str]:
        return snapshot_ids_of(self.description or {})

    def rebind(self, image_id: str) -> None:
        """Point a derived entity at the image created by its copy request."""
        if self.image_id is not None:
            raise ImageValidationError(f"Image in region '{self.region}' is already bound to '{self.image_id}'")
        self.image_id = image_id

    def fetch_metadata(self, context: ExecutionContext) -> dict[str, Any]:
        """
        Describe the image and refresh its status.

        The name and tags are captured only the first time they are seen; a freshly
        copied image may not carry either yet.

        :param context: The execution context providing the EC2 client
        :type context: ExecutionContext
        :return: The raw image record
        :rtype: dict
        :raises NotFoundError: If no image with this id exists in the region
        """
        if self.image_id is None:
            raise NotFoundError(f"Image in region '{self.region}' has not been created yet")

        log.debug("Fetching metadata for image '{}' in region '{}'", self.image_id, self.region)
        ec2_client = context.resolver.resolve_default(self.region)

        try:
            response = ec2_client.describe_images(ImageIds=[self.image_id])
        except (ClientError, BotoCoreError) as e:
            raise classify_aws_error(e, f"Failed to describe image '{self.image_id}'") from e

        images = response.get("Images", [])
        if len(images) == 0:
            raise NotFoundError(f"No image found with id '{self.image_id}' in region '{self.region}'")

        image = images[0]
        self.description = image
        self.status = image.get("State")
        self.creation_date = image.get("CreationDate")

        if image.get("Name") and self._name.resolve(image["Name"]):
            log.debug("Image '{}' name: {}", self.image_id, self.name)

        if image.get("Tags") and self._tags.resolve(tuple(Tag.from_api(t) for t in image["Tags"])):
            log.debug("Image '{}' tags: ", self.image_id, details={t.key: t.value for t in self.tags})

        return image

    def is_available(self, context: ExecutionContext) -> bool:
        """Return True if the image is ``available``, fetching its status first if never fetched."""
        if self.status is None:
            self.fetch_metadata(context)

        log.trace("Current state of image '{}' is '{}'", self.image_id, self.status)
        return self.status == STATE_AVAILABLE
