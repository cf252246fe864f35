"""Grant launch permissions on an image and copy its tags into other accounts."""

from botocore.exceptions import BotoCoreError, ClientError

import core_logging as log

from .context import ExecutionContext
from .errors import classify_aws_error
from .image import ImageEntity, Tag


class PermissionPropagator:
    """Adds launch permissions for other accounts to an image owned by the default account."""

    def __init__(self, context: ExecutionContext):
        self.context = context

    def set_owners(self, image: ImageEntity, accounts: list[str]) -> bool:
        """
        Grant launch permission on ``image`` to every account in ``accounts`` with one call.

        Callers pass the authorized accounts without the owning account, which already
        owns the image and cannot be added to its own launch permissions.

        :param image: The image in its region
        :type image: ImageEntity
        :param accounts: Account ids to authorize
        :type accounts: list[str]
        :return: True if a permission change was made
        :rtype: bool
        """
        if not accounts:
            log.debug("No accounts to authorize for image '{}'", image.image_id)
            return False

        log.info("Setting launch permissions on image '{}' in region '{}'", image.image_id, image.region)
        ec2_client = self.context.resolver.resolve_default(image.region)

        try:
            ec2_client.modify_image_attribute(
                ImageId=image.image_id,
                LaunchPermission={"Add": [{"UserId": account_id} for account_id in accounts]},
            )
        except (ClientError, BotoCoreError) as e:
            raise classify_aws_error(e, f"Failed to set launch permissions on image '{image.image_id}'") from e

        log.debug("Launch permissions set on image '{}' for accounts {}", image.image_id, accounts)
        return True


class TagPropagator:
    """
    Writes the source tags onto an image as seen from another account.

    Tags on a shared image are private to the account that writes them, so each
    account must tag the image with its own credentials.
    """

    def __init__(self, context: ExecutionContext):
        self.context = context

    def set_tags_for_account(self, image: ImageEntity, account: str, tags: tuple[Tag, ...]) -> bool:
        """
        Apply ``tags`` to ``image`` using a client acting as ``account``.

        :return: True if tags were written
        :rtype: bool
        """
        if not tags:
            log.debug("No tags to set on image '{}' for account '{}'", image.image_id, account)
            return False

        log.info("Setting tags on image '{}' in region '{}' for account '{}'", image.image_id, image.region, account)
        ec2_client = self.context.resolver.resolve(account, image.region)

        try:
            ec2_client.create_tags(Resources=[image.image_id], Tags=[tag.to_api() for tag in tags])
        except (ClientError, BotoCoreError) as e:
            raise classify_aws_error(
                e, f"Failed to set tags on image '{image.image_id}' for account '{account}'"
            ) from e

        return True
