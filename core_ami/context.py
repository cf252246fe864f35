"""Per-invocation configuration and the (account, region) EC2 client cache."""

from typing import Any, Callable
import threading
import time

from pydantic import BaseModel, ConfigDict, Field, field_validator
from botocore.exceptions import BotoCoreError, ClientError

import core_logging as log

import core_framework as util

import core_helper.aws as aws

from .errors import AccessDeniedError

DEFAULT_POLL_INTERVAL = 5.0
DEFAULT_MAX_WAIT = 3600.0
DEFAULT_VERSIONS_TO_KEEP = 5


def _validate_account_id(account_id: str) -> str:
    if not account_id.isdigit() or len(account_id) != 12:
        raise ValueError(f"Invalid AWS account ID: {account_id}. Must be 12 digits.")
    return account_id


class AmiManagerConfig(BaseModel):
    """
    Settings for one invocation of the AMI manager.

    :param region: The region the source image lives in (defaults to the configured AWS region)
    :type region: str
    :param account: The account that owns the source image. Discovered with STS when omitted
    :type account: str | None
    :param accounts: Accounts that are authorized to launch the replicated images
    :type accounts: list[str]
    :param role: Name of the role to assume in the other accounts. When omitted the
        automation provisioning role is used
    :type role: str | None
    :param poll_interval: Seconds to wait between availability checks
    :type poll_interval: float
    :param max_wait: Maximum seconds to wait for a copy to become available (None waits forever)
    :type max_wait: float | None
    """

    model_config = ConfigDict(populate_by_name=True, validate_assignment=True)

    region: str = Field(
        default_factory=lambda: util.get_region(),
        alias="Region",
        description="The region the source image lives in",
    )
    account: str | None = Field(
        None,
        alias="Account",
        description="The account that owns the source image",
    )
    accounts: list[str] = Field(
        default_factory=list,
        alias="Accounts",
        description="Accounts authorized to launch the replicated images",
    )
    role: str | None = Field(
        None,
        alias="Role",
        description="Name of the role to assume in the other accounts",
    )
    poll_interval: float = Field(
        DEFAULT_POLL_INTERVAL,
        alias="PollInterval",
        gt=0,
        description="Seconds between availability checks",
    )
    max_wait: float | None = Field(
        DEFAULT_MAX_WAIT,
        alias="MaxWait",
        description="Maximum seconds to wait for a copy to become available",
    )

    @field_validator("account")
    @classmethod
    def validate_account(cls, v: str | None) -> str | None:
        if v is None:
            return v
        return _validate_account_id(v)

    @field_validator("accounts")
    @classmethod
    def validate_accounts(cls, v: list[str]) -> list[str]:
        """Validate the authorized accounts and drop duplicates, keeping their order."""
        result: list[str] = []
        for account_id in v:
            _validate_account_id(account_id)
            if account_id not in result:
                result.append(account_id)
        return result


class CredentialResolver:
    """
    Hands out EC2 clients scoped to an (account, region) pair.

    Clients for the owning account use the ambient credentials.  Clients for any
    other account assume a role in that account.  Every client is created once and
    memoized; first access is guarded by a lock so concurrent region tasks never
    create the same client twice.

    :param config: The invocation settings
    :type config: AmiManagerConfig
    :param client_factory: Optional ``factory(account, region)`` used instead of core_helper
    :type client_factory: Callable[[str, str], Any] | None
    """

    def __init__(
        self,
        config: AmiManagerConfig,
        client_factory: Callable[[str, str], Any] | None = None,
    ):
        self.config = config
        self._factory = client_factory or self._create_client
        self._clients: dict[tuple[str, str], Any] = {}
        self._lock = threading.Lock()
        self._identity_lock = threading.Lock()
        self._default_account = config.account

    @property
    def default_account(self) -> str:
        """The owning account, looked up with STS the first time it is needed."""
        with self._identity_lock:
            if self._default_account is None:
                self._default_account = self._discover_account()
            return self._default_account

    def _discover_account(self) -> str:
        log.debug("Looking up the caller identity in region '{}'", self.config.region)
        try:
            session = aws.get_session(region=self.config.region)
            identity = session.client("sts").get_caller_identity()
        except (ClientError, BotoCoreError) as e:
            raise AccessDeniedError(f"Unable to determine the default account: {e}") from e

        account = identity["Account"]
        log.debug("Default account is '{}'", account)
        return account

    def role_arn(self, account: str) -> str:
        """Return the ARN of the role assumed in ``account``."""
        if self.config.role:
            return f"arn:aws:iam::{account}:role/{self.config.role}"
        return util.get_provisioning_role_arn(account)

    def _create_client(self, account: str, region: str) -> Any:
        # you shouldn't assume a role in your own account
        if account == self.default_account:
            return aws.ec2_client(region=region)
        return aws.ec2_client(region=region, role=self.role_arn(account))

    def resolve(self, account: str, region: str) -> Any:
        """
        Return the EC2 client for ``account`` in ``region``, creating it on first use.

        :param account: The account the client acts as
        :type account: str
        :param region: The region the client talks to
        :type region: str
        :return: A boto3 EC2 client
        :raises AccessDeniedError: If credentials cannot be obtained or the role cannot be assumed
        """
        key = (account, region)
        with self._lock:
            client = self._clients.get(key)
            if client is None:
                log.debug("Creating EC2 client for account '{}' in region '{}'", account, region)
                try:
                    client = self._factory(account, region)
                except (ClientError, BotoCoreError) as e:
                    raise AccessDeniedError(
                        f"Failed to create EC2 client for account '{account}' in region '{region}': {e}"
                    ) from e
                self._clients[key] = client
        return client

    def resolve_default(self, region: str) -> Any:
        """Return the owning account's client for ``region``."""
        return self.resolve(self.default_account, region)

    def precompute(self, accounts: list[str], regions: list[str]) -> None:
        """Create every client that the given accounts and regions will need."""
        for account in accounts:
            for region in regions:
                self.resolve(account, region)


class ExecutionContext:
    """
    Everything a component needs for one invocation.

    Constructed once by the caller and passed to every component in place of
    process-wide state.

    :param config: The invocation settings
    :type config: AmiManagerConfig
    :param resolver: Client cache; built from ``config`` when omitted
    :type resolver: CredentialResolver | None
    :param sleep: Function used to wait between availability checks
    :type sleep: Callable[[float], None]
    """

    def __init__(
        self,
        config: AmiManagerConfig,
        resolver: CredentialResolver | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.config = config
        self.resolver = resolver or CredentialResolver(config)
        self.sleep = sleep

    @property
    def default_account(self) -> str:
        return self.resolver.default_account

    @property
    def shared_accounts(self) -> list[str]:
        """The configured accounts other than the owning account."""
        return [a for a in self.config.accounts if a != self.default_account]
