import pytest

from core_ami.errors import AccessDeniedError, NotFoundError, ReplicationError, TransientError
from core_ami.image import ImageEntity
from core_ami.replication import RegionStatus, ReplicationOrchestrator

from .aws_fixtures import *

TARGET_REGION = "eu-west-1"


@pytest.fixture
def events():
    return []


@pytest.fixture
def aws_setup(ec2_clients, events):
    """Source image in us-east-1 and a copy that becomes available in eu-west-1."""
    source = ec2_clients.get(DEFAULT_ACCOUNT, SOURCE_REGION)
    source.describe_images.return_value = {
        "Images": [make_image("ami-source", name="base-v1", tags={"pipeline": "x", "owner": "ops"})]
    }

    target = ec2_clients.get(DEFAULT_ACCOUNT, TARGET_REGION)
    target.copy_image.return_value = {"ImageId": "ami-copy"}
    target.describe_images.side_effect = [
        {"Images": [make_image("ami-copy", state="pending")]},
        {"Images": [make_image("ami-copy", state="available")]},
    ]

    for region in (SOURCE_REGION, TARGET_REGION):
        ec2_clients.get(DEFAULT_ACCOUNT, region).modify_image_attribute.side_effect = (
            lambda region=region, **kwargs: events.append(("permissions", region))
        )
        ec2_clients.get(OTHER_ACCOUNT, region).create_tags.side_effect = (
            lambda region=region, **kwargs: events.append(("tags", region))
        )

    return ec2_clients


def test_copy_skips_the_source_region(context, aws_setup):
    image = ImageEntity("ami-source", SOURCE_REGION, [SOURCE_REGION, TARGET_REGION])

    report = ReplicationOrchestrator(context, image).copy()

    aws_setup.get(DEFAULT_ACCOUNT, SOURCE_REGION).copy_image.assert_not_called()
    aws_setup.get(DEFAULT_ACCOUNT, TARGET_REGION).copy_image.assert_called_once_with(
        Name="base-v1", SourceRegion=SOURCE_REGION, SourceImageId="ami-source"
    )

    assert report.image_ids == {SOURCE_REGION: "ami-source", TARGET_REGION: "ami-copy"}
    assert report.results[SOURCE_REGION].copied is False
    assert report.results[TARGET_REGION].copied is True
    assert len(report.succeeded) == 2


def test_permissions_are_granted_before_tags_for_other_accounts_only(context, aws_setup, events):
    image = ImageEntity("ami-source", SOURCE_REGION, [TARGET_REGION])

    ReplicationOrchestrator(context, image).copy()

    assert events == [("permissions", TARGET_REGION), ("tags", TARGET_REGION)]

    aws_setup.get(DEFAULT_ACCOUNT, TARGET_REGION).modify_image_attribute.assert_called_once_with(
        ImageId="ami-copy",
        LaunchPermission={"Add": [{"UserId": OTHER_ACCOUNT}]},
    )
    aws_setup.get(OTHER_ACCOUNT, TARGET_REGION).create_tags.assert_called_once_with(
        Resources=["ami-copy"],
        Tags=[{"Key": "pipeline", "Value": "x"}, {"Key": "owner", "Value": "ops"}],
    )
    aws_setup.get(DEFAULT_ACCOUNT, TARGET_REGION).create_tags.assert_not_called()


def test_source_metadata_failure_aborts_before_any_copy(context, aws_setup):
    aws_setup.get(DEFAULT_ACCOUNT, SOURCE_REGION).describe_images.return_value = {"Images": []}
    image = ImageEntity("ami-source", SOURCE_REGION, [TARGET_REGION])

    with pytest.raises(NotFoundError):
        ReplicationOrchestrator(context, image).copy()

    aws_setup.get(DEFAULT_ACCOUNT, TARGET_REGION).copy_image.assert_not_called()


def test_region_failure_fails_the_run(context, aws_setup):
    aws_setup.get(DEFAULT_ACCOUNT, "ap-southeast-1").copy_image.side_effect = client_error(
        "UnauthorizedOperation", "not allowed", "CopyImage"
    )
    image = ImageEntity("ami-source", SOURCE_REGION, [TARGET_REGION, "ap-southeast-1"])

    with pytest.raises(ReplicationError) as e:
        ReplicationOrchestrator(context, image).copy()

    report = e.value.report
    assert [r.region for r in report.failed] == ["ap-southeast-1"]
    assert report.results[TARGET_REGION].status == RegionStatus.SUCCEEDED


def test_partial_report_without_fail_fast(context, aws_setup):
    aws_setup.get(DEFAULT_ACCOUNT, "ap-southeast-1").copy_image.side_effect = client_error("RequestLimitExceeded")
    image = ImageEntity("ami-source", SOURCE_REGION, [TARGET_REGION, "ap-southeast-1"])

    report = ReplicationOrchestrator(context, image).copy(fail_fast=False)

    failed = report.results["ap-southeast-1"]
    assert failed.status == RegionStatus.FAILED
    assert failed.image_id is None
    assert failed.error.code == "RequestLimitExceeded"
    assert report.results[TARGET_REGION].image_id == "ami-copy"


def test_network_failure_is_reported_for_its_region(context, aws_setup):
    aws_setup.get(DEFAULT_ACCOUNT, TARGET_REGION).copy_image.side_effect = connection_error(TARGET_REGION)
    image = ImageEntity("ami-source", SOURCE_REGION, [SOURCE_REGION, TARGET_REGION])

    report = ReplicationOrchestrator(context, image).copy(fail_fast=False)

    failed = report.results[TARGET_REGION]
    assert failed.status == RegionStatus.FAILED
    assert isinstance(failed.error, TransientError)
    assert report.results[SOURCE_REGION].status == RegionStatus.SUCCEEDED
    assert report.results[SOURCE_REGION].image_id == "ami-source"


def test_network_failure_with_fail_fast_raises_replication_error(context, aws_setup):
    aws_setup.get(DEFAULT_ACCOUNT, TARGET_REGION).copy_image.side_effect = connection_error(TARGET_REGION)
    image = ImageEntity("ami-source", SOURCE_REGION, [SOURCE_REGION, TARGET_REGION])

    with pytest.raises(ReplicationError) as e:
        ReplicationOrchestrator(context, image).copy()

    assert [r.region for r in e.value.report.failed] == [TARGET_REGION]


def test_tags_are_not_written_when_permissions_fail(context, aws_setup):
    aws_setup.get(DEFAULT_ACCOUNT, TARGET_REGION).modify_image_attribute.side_effect = client_error(
        "UnauthorizedOperation", "not allowed", "ModifyImageAttribute"
    )
    image = ImageEntity("ami-source", SOURCE_REGION, [TARGET_REGION])

    report = ReplicationOrchestrator(context, image).copy(fail_fast=False)

    failed = report.results[TARGET_REGION]
    assert failed.status == RegionStatus.FAILED
    assert isinstance(failed.error, AccessDeniedError)
    assert failed.image_id == "ami-copy"
    assert failed.tagged_accounts == []
    aws_setup.get(OTHER_ACCOUNT, TARGET_REGION).create_tags.assert_not_called()
