"""Retention based cleanup of older generations of an image."""

from typing import Any

from pydantic import BaseModel, Field
from botocore.exceptions import BotoCoreError, ClientError

import core_logging as log

from .context import ExecutionContext
from .errors import ImageValidationError, classify_aws_error
from .image import ImageEntity, Tag, parse_creation_date
from .reaper import ReapResult, ResourceReaper


class RegionCleanup(BaseModel):
    """The images kept and removed in one region."""

    region: str
    retained: list[str] = Field(default_factory=list)
    reaped: list[ReapResult] = Field(default_factory=list)


class CleanupReport(BaseModel):
    source_image_id: str
    match_tags: dict[str, str] = Field(default_factory=dict)
    regions: dict[str, RegionCleanup] = Field(default_factory=dict)

    @property
    def reaped_image_ids(self) -> list[str]:
        return [r.image_id for region in self.regions.values() for r in region.reaped]


class RetentionCleaner:
    """
    Keep the newest generations of an image and remove the rest.

    Generations are the images that carry the same values as the source image for
    a chosen set of tag keys.

    :param context: The execution context
    :type context: ExecutionContext
    :param source: The image whose tags identify the generations
    :type source: ImageEntity
    """

    def __init__(self, context: ExecutionContext, source: ImageEntity):
        self.context = context
        self.source = source
        self.reaper = ResourceReaper(context)

    def match_tags(self, tag_keys: list[str]) -> list[Tag]:
        """
        Select the source tags whose key was requested.

        Requested keys that the source does not carry are skipped.

        :raises ImageValidationError: If none of the requested keys is present on the source
        """
        source_tags = self.source.tag_map

        matched: list[Tag] = []
        for key in tag_keys:
            tag = source_tags.get(key)
            if tag is None:
                log.debug("Source image '{}' has no tag '{}', skipping it", self.source.image_id, key)
                continue
            if tag not in matched:
                matched.append(tag)

        if not matched:
            raise ImageValidationError(
                f"None of the tags {tag_keys} are present on image '{self.source.image_id}', refusing to match every image"
            )
        return matched

    def list_images(self, region: str, tags: list[Tag]) -> list[dict[str, Any]]:
        """Return the images owned by the default account in ``region`` that carry every tag."""
        ec2_client = self.context.resolver.resolve_default(region)
        filters = [tag.to_filter() for tag in tags]

        log.debug("Listing images in region '{}'", region, details={"Filters": filters})
        try:
            response = ec2_client.describe_images(Owners=["self"], Filters=filters)
        except (ClientError, BotoCoreError) as e:
            raise classify_aws_error(e, f"Failed to list images in region '{region}'") from e

        return response.get("Images", [])

    @staticmethod
    def rank(images: list[dict[str, Any]]) -> list[dict[str, Any]]:
        """
        Sort images newest first by creation date.

        :raises ImageValidationError: If any creation date cannot be parsed
        """
        keyed = [(parse_creation_date(i.get("CreationDate"), i.get("ImageId", "unknown")), i) for i in images]
        keyed.sort(key=lambda pair: pair[0], reverse=True)
        return [image for _, image in keyed]

    def cleanup(self, regions: list[str], tag_keys: list[str], versions_to_keep: int) -> CleanupReport:
        """
        Remove all but the newest ``versions_to_keep`` matching images in every region.

        Every region is listed and ranked before anything is removed, so an invalid
        creation date stops the run with nothing deleted.  A failure while removing
        an image stops the run.

        :param regions: Regions to clean up
        :type regions: list[str]
        :param tag_keys: Keys of the source tags that identify a generation
        :type tag_keys: list[str]
        :param versions_to_keep: Number of newest images to keep per region
        :type versions_to_keep: int
        :return: What was kept and removed per region
        :rtype: CleanupReport
        """
        if versions_to_keep < 0:
            raise ImageValidationError(f"versions_to_keep must be zero or more, got {versions_to_keep}")

        self.source.fetch_metadata(self.context)
        tags = self.match_tags(tag_keys)

        report = CleanupReport(
            source_image_id=self.source.image_id,
            match_tags={tag.key: tag.value for tag in tags},
        )

        plan: dict[str, list[dict[str, Any]]] = {}
        for region in regions:
            if region not in plan:
                plan[region] = self.rank(self.list_images(region, tags))

        for region, images in plan.items():
            region_report = RegionCleanup(region=region)
            report.regions[region] = region_report

            if not images:
                log.debug("No matching images in region '{}'", region)
                continue

            for position, image in enumerate(images):
                if position < versions_to_keep:
                    region_report.retained.append(image["ImageId"])
                    continue

                log.debug("Deleting image '{}' in region '{}'", image["ImageId"], region)
                region_report.reaped.append(self.reaper.remove_ami(image, region))
                log.info("Image '{}' deleted", image["ImageId"])

            log.info(
                "Region '{}': kept {}, removed {}",
                region,
                len(region_report.retained),
                len(region_report.reaped),
            )

        log.info("Older images related to '{}' have been cleaned up", self.source.image_id)
        return report
