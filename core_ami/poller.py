"""Copy an image into another region and wait until the copy is available."""

import time

from botocore.exceptions import BotoCoreError, ClientError

import core_logging as log

from .context import ExecutionContext
from .errors import CopyFailedError, NotFoundError, PollTimeoutError, classify_aws_error
from .image import ImageEntity, TERMINAL_FAILURE_STATES


class AvailabilityPoller:
    """
    Issues cross-region copy requests and polls the copies until they are ready.

    The interval and the maximum wait come from the context configuration.

    :param context: The execution context
    :type context: ExecutionContext
    """

    def __init__(self, context: ExecutionContext):
        self.context = context
        self.poll_interval = context.config.poll_interval
        self.max_wait = context.config.max_wait

    def copy_to_region(self, source: ImageEntity, region: str) -> ImageEntity:
        """
        Request a copy of ``source`` in ``region`` and rebind the derived entity to the new id.

        :param source: The source image, with its metadata already fetched
        :type source: ImageEntity
        :param region: The target region
        :type region: str
        :return: The derived entity for ``region``
        :rtype: ImageEntity
        """
        derived = source.copies[region]

        log.info("Copying image '{}' from '{}' to region '{}'", source.image_id, source.region, region)
        ec2_client = self.context.resolver.resolve_default(region)

        args = {"SourceRegion": source.region, "SourceImageId": source.image_id}
        if source.name:
            args["Name"] = source.name

        try:
            response = ec2_client.copy_image(**args)
        except (ClientError, BotoCoreError) as e:
            raise classify_aws_error(e, f"Failed to copy image '{source.image_id}' to region '{region}'") from e

        new_image_id = response["ImageId"]
        log.info("New image id in region '{}': {}", region, new_image_id)
        derived.rebind(new_image_id)

        return derived

    def wait_until_available(self, image: ImageEntity) -> float:
        """
        Block until ``image`` is available.

        :param image: The image to watch
        :type image: ImageEntity
        :return: The number of seconds spent waiting
        :rtype: float
        :raises PollTimeoutError: If the image is not available within ``max_wait``
        :raises CopyFailedError: If the image reaches a failed state
        """
        start = time.monotonic()

        while True:
            try:
                image.fetch_metadata(self.context)
            except NotFoundError:
                # a copy can take a moment to become visible
                log.debug("Image '{}' is not visible in region '{}' yet", image.image_id, image.region)

            if image.status is not None and image.is_available(self.context):
                break

            if image.status in TERMINAL_FAILURE_STATES:
                raise CopyFailedError(
                    f"Image '{image.image_id}' in region '{image.region}' is in state '{image.status}'",
                    image.status,
                )

            elapsed = time.monotonic() - start
            if self.max_wait is not None and elapsed + self.poll_interval > self.max_wait:
                raise PollTimeoutError(
                    f"Image '{image.image_id}' in region '{image.region}' was not available after {elapsed:.0f} seconds"
                )

            log.info(
                "Image '{}' is not available yet. Waiting {} seconds.",
                image.image_id,
                self.poll_interval,
            )
            self.context.sleep(self.poll_interval)

        elapsed = time.monotonic() - start
        log.info("Image '{}' is available. It took {} seconds to become available", image.image_id, round(elapsed, 1))

        return elapsed
