"""Replicate a source image into every target region, one thread per region."""

from concurrent.futures import ThreadPoolExecutor
import enum
import time

from pydantic import BaseModel, ConfigDict, Field

import core_logging as log

from .context import ExecutionContext
from .errors import AmiError, ReplicationError
from .image import ImageEntity
from .poller import AvailabilityPoller
from .propagation import PermissionPropagator, TagPropagator


class RegionStatus(enum.Enum):
    """Outcome of the replication task for one region."""

    SUCCEEDED = "succeeded"
    FAILED = "failed"


class RegionResult(BaseModel):
    """
    Result of replicating the source image into one region.

    :param region: The target region
    :param image_id: Id of the image in that region (None if the copy was never created)
    :param status: Whether every step for the region succeeded
    :param copied: True if a copy request was issued (False for the source region)
    :param wait_seconds: Time spent waiting for the copy to become available
    :param tagged_accounts: Accounts whose view of the image was tagged
    :param error: The error that stopped the region
    """

    model_config = ConfigDict(arbitrary_types_allowed=True)

    region: str
    image_id: str | None = None
    status: RegionStatus
    copied: bool = False
    wait_seconds: float = 0.0
    tagged_accounts: list[str] = Field(default_factory=list)
    error: AmiError | None = None


class ReplicationReport(BaseModel):
    """Per-region results for one replication run."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    source_image_id: str
    source_region: str
    results: dict[str, RegionResult] = Field(default_factory=dict)

    @property
    def succeeded(self) -> list[RegionResult]:
        return [r for r in self.results.values() if r.status == RegionStatus.SUCCEEDED]

    @property
    def failed(self) -> list[RegionResult]:
        return [r for r in self.results.values() if r.status == RegionStatus.FAILED]

    @property
    def image_ids(self) -> dict[str, str | None]:
        return {region: r.image_id for region, r in self.results.items()}


class ReplicationOrchestrator:
    """
    Copy an image to a set of regions, share it, and propagate its tags.

    For every target region a task copies the image (unless the region is the
    source region), waits for the copy, grants launch permissions and then tags
    the image for every authorized account other than the owner.  All tasks run
    concurrently and are joined before :meth:`copy` returns.

    :param context: The execution context
    :type context: ExecutionContext
    :param source: The source image with its target regions
    :type source: ImageEntity
    """

    def __init__(self, context: ExecutionContext, source: ImageEntity):
        self.context = context
        self.source = source
        self.poller = AvailabilityPoller(context)
        self.permissions = PermissionPropagator(context)
        self.tagger = TagPropagator(context)

    def copy(self, fail_fast: bool = True) -> ReplicationReport:
        """
        Run the replication.

        :param fail_fast: Raise if any region failed. When False the partial report is returned
        :type fail_fast: bool
        :return: The per-region results
        :rtype: ReplicationReport
        :raises ReplicationError: If ``fail_fast`` and at least one region failed
        :raises AmiError: If the source image cannot be described
        """
        log.info("Started copying image '{}'", self.source.image_id)
        start = time.monotonic()

        # any failure here is fatal before a single region is touched
        self.source.fetch_metadata(self.context)

        regions = list(self.source.copies.keys())
        accounts = self.context.shared_accounts

        self.context.resolver.precompute([self.context.default_account], [self.source.region, *regions])
        self.context.resolver.precompute(accounts, regions)

        report = ReplicationReport(source_image_id=self.source.image_id, source_region=self.source.region)

        if regions:
            with ThreadPoolExecutor(max_workers=len(regions), thread_name_prefix="replicate") as executor:
                futures = {region: executor.submit(self._replicate_region, region, accounts) for region in regions}
            for region, future in futures.items():
                report.results[region] = future.result()

        elapsed = time.monotonic() - start
        log.info(
            "Finished copying image '{}' after {} seconds ({} succeeded, {} failed)",
            self.source.image_id,
            round(elapsed, 1),
            len(report.succeeded),
            len(report.failed),
            details={region: r.status.value for region, r in report.results.items()},
        )

        if fail_fast and report.failed:
            first = report.failed[0]
            raise ReplicationError(
                f"Replication of image '{self.source.image_id}' failed in regions "
                f"{[r.region for r in report.failed]}: {first.error}",
                report,
            )

        return report

    def _replicate_region(self, region: str, accounts: list[str]) -> RegionResult:
        log.debug("Replicating image '{}' to region '{}'", self.source.image_id, region)
        result = RegionResult(region=region, status=RegionStatus.FAILED)

        try:
            if region == self.source.region:
                # the image already exists here
                image = self.source
            else:
                image = self.poller.copy_to_region(self.source, region)
                result.copied = True
                result.image_id = image.image_id
                result.wait_seconds = self.poller.wait_until_available(image)

            result.image_id = image.image_id

            self.permissions.set_owners(image, accounts)

            for account in accounts:
                if self.tagger.set_tags_for_account(image, account, self.source.tags):
                    result.tagged_accounts.append(account)

        except AmiError as e:
            log.error("Replication to region '{}' failed: {}", region, e)
            result.error = e
            return result

        result.status = RegionStatus.SUCCEEDED
        log.info("Image '{}' is ready in region '{}'", result.image_id, region)
        return result
