import pytest

from core_ami.cleanup import RetentionCleaner
from core_ami.errors import ImageValidationError
from core_ami.image import ImageEntity

from .aws_fixtures import *

REGION = "eu-west-1"


class RegionImages:
    """Keeps the images of one region and wires describe/deregister/delete on a mocked client."""

    def __init__(self, client, images: list[dict]):
        self.images = {image["ImageId"]: image for image in images}
        self.deregistered: list[str] = []
        client.describe_images.side_effect = self.describe_images
        client.deregister_image.side_effect = self.deregister_image

    def describe_images(self, Owners=None, Filters=None, **kwargs):
        def matches(image):
            tags = {t["Key"]: t["Value"] for t in image.get("Tags", [])}
            return all(tags.get(f["Name"][len("tag:"):]) in f["Values"] for f in Filters or [])

        return {"Images": [image for image in self.images.values() if matches(image)]}

    def deregister_image(self, ImageId):
        self.images.pop(ImageId)
        self.deregistered.append(ImageId)


@pytest.fixture
def source(ec2_clients):
    ec2_clients.get(DEFAULT_ACCOUNT, SOURCE_REGION).describe_images.return_value = {
        "Images": [make_image("ami-source", tags={"pipeline": "x", "owner": "y"})]
    }
    return ImageEntity("ami-source", SOURCE_REGION)


def generations(count: int, tags: dict[str, str] | None = None) -> list[dict]:
    # oldest first, so ranking has to reverse them
    return [
        make_image(
            f"ami-{day:02d}",
            tags=tags or {"pipeline": "x", "owner": "y"},
            created=f"2024-01-{day:02d}T10:30:00.000Z",
            snapshots=[f"snap-{day:02d}"],
        )
        for day in range(1, count + 1)
    ]


def test_cleanup_keeps_the_newest_versions(context, ec2_clients, source):
    client = ec2_clients.get(DEFAULT_ACCOUNT, REGION)
    region = RegionImages(client, generations(7))

    report = RetentionCleaner(context, source).cleanup([REGION], ["pipeline"], 3)

    assert sorted(region.deregistered) == ["ami-01", "ami-02", "ami-03", "ami-04"]
    assert report.regions[REGION].retained == ["ami-07", "ami-06", "ami-05"]
    deleted = {call.kwargs["SnapshotId"] for call in client.delete_snapshot.call_args_list}
    assert deleted == {"snap-01", "snap-02", "snap-03", "snap-04"}


def test_cleanup_filters_on_requested_tags_only(context, ec2_clients, source):
    client = ec2_clients.get(DEFAULT_ACCOUNT, REGION)
    client.describe_images.return_value = {"Images": []}

    RetentionCleaner(context, source).cleanup([REGION], ["pipeline", "missing"], 5)

    client.describe_images.assert_called_once_with(
        Owners=["self"],
        Filters=[{"Name": "tag:pipeline", "Values": ["x"]}],
    )


def test_cleanup_twice_reaps_nothing_the_second_time(context, ec2_clients, source):
    region = RegionImages(ec2_clients.get(DEFAULT_ACCOUNT, REGION), generations(4))
    cleaner = RetentionCleaner(context, source)

    first = cleaner.cleanup([REGION], ["pipeline"], 2)
    second = cleaner.cleanup([REGION], ["pipeline"], 2)

    assert sorted(first.reaped_image_ids) == ["ami-01", "ami-02"]
    assert second.reaped_image_ids == []
    assert second.regions[REGION].retained == ["ami-04", "ami-03"]
    assert len(region.deregistered) == 2


def test_cleanup_with_zero_versions_reaps_everything(context, ec2_clients, source):
    region = RegionImages(ec2_clients.get(DEFAULT_ACCOUNT, REGION), generations(3))

    RetentionCleaner(context, source).cleanup([REGION], ["pipeline"], 0)

    assert sorted(region.deregistered) == ["ami-01", "ami-02", "ami-03"]


def test_cleanup_ignores_images_with_other_tag_values(context, ec2_clients, source):
    images = generations(2) + [make_image("ami-other", tags={"pipeline": "z"}, created="2020-01-01T00:00:00Z")]
    region = RegionImages(ec2_clients.get(DEFAULT_ACCOUNT, REGION), images)

    RetentionCleaner(context, source).cleanup([REGION], ["pipeline"], 0)

    assert "ami-other" not in region.deregistered
    assert "ami-other" in region.images


def test_cleanup_without_matches_is_a_no_op(context, ec2_clients, source):
    client = ec2_clients.get(DEFAULT_ACCOUNT, REGION)
    client.describe_images.return_value = {"Images": []}

    report = RetentionCleaner(context, source).cleanup([REGION], ["pipeline"], 1)

    client.deregister_image.assert_not_called()
    assert report.regions[REGION].retained == []
    assert report.regions[REGION].reaped == []


def test_invalid_creation_date_aborts_the_whole_run(context, ec2_clients, source):
    first = RegionImages(ec2_clients.get(DEFAULT_ACCOUNT, REGION), generations(3))
    broken = generations(2)
    broken[0]["CreationDate"] = "not-a-date"
    second = RegionImages(ec2_clients.get(DEFAULT_ACCOUNT, "us-west-2"), broken)

    with pytest.raises(ImageValidationError):
        RetentionCleaner(context, source).cleanup([REGION, "us-west-2"], ["pipeline"], 0)

    assert first.deregistered == []
    assert second.deregistered == []


def test_cleanup_requires_a_matching_tag(context, ec2_clients, source):
    with pytest.raises(ImageValidationError):
        RetentionCleaner(context, source).cleanup([REGION], ["missing"], 1)

    ec2_clients.get(DEFAULT_ACCOUNT, REGION).describe_images.assert_not_called()


def test_cleanup_rejects_negative_versions(context, source):
    with pytest.raises(ImageValidationError):
        RetentionCleaner(context, source).cleanup([REGION], ["pipeline"], -1)
