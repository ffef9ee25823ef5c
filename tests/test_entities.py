from __future__ import annotations

from typing import Any, Mapping

import pytest

from labcms.services.entities import (
    AffiliationController,
    FacultyController,
    ImageUpload,
    MemberController,
    ProjectController,
    PublicationController,
    build_controllers,
    parse_flag,
    parse_list,
)
from labcms.services.local_platform import LocalPlatform
from labcms.services.platform import PlatformError
from labcms.services.table import RecordTable, UpdateDirective


class FailingInsertPlatform(LocalPlatform):
    def insert(self, table: str, record: Mapping[str, Any]):
        raise PlatformError("insert rejected")


class FailingRemovePlatform(LocalPlatform):
    def remove(self, bucket, paths):
        raise PlatformError("storage offline")


def _image() -> ImageUpload:
    return ImageUpload(filename="logo.png", data=b"png-bytes", content_type="image/png")


def _bucket_files(platform: LocalPlatform, bucket: str, folder: str):
    return [entry.name for entry in platform.list(bucket, folder)]


def test_parse_helpers() -> None:
    assert parse_flag("on") is True
    assert parse_flag("False") is False
    assert parse_flag(None) is False
    assert parse_list('["a", "b"]') == ["a", "b"]
    assert parse_list("a, b ,,c") == ["a", "b", "c"]
    assert parse_list("") == []
    assert parse_list(("x",)) == ["x"]


def test_build_controllers_covers_every_collection(platform, temp_config) -> None:
    controllers = build_controllers(platform, temp_config)

    assert sorted(controllers) == ["affiliations", "faculty", "members", "projects", "publications"]
    assert all(controller.bucket == temp_config.bucket for controller in controllers.values())


def test_add_affiliation_with_image_stores_public_url(platform, temp_config) -> None:
    controller = AffiliationController(platform, bucket=temp_config.bucket)

    result = controller.add({"name": "Uni", "type": "university"}, _image())

    assert result.success
    assert result.message == "Affiliation added successfully."
    image_url = result.record["image"]
    assert image_url.startswith("http://testserver/storage/v1/object/public/spcai_images/affiliations/")
    assert image_url.endswith(".png")
    assert len(_bucket_files(platform, temp_config.bucket, "affiliations")) == 1


def test_add_without_image_leaves_image_empty(platform, temp_config) -> None:
    controller = AffiliationController(platform, bucket=temp_config.bucket)

    result = controller.add({"name": "Lab"}, ImageUpload(filename="", data=b""))

    assert result.success
    assert result.record["image"] is None


def test_add_validates_required_fields_and_choices(platform, temp_config) -> None:
    faculty = FacultyController(platform, bucket=temp_config.bucket)
    affiliations = AffiliationController(platform, bucket=temp_config.bucket)

    assert faculty.add({"name": "Dr X", "email": "x@example.org", "bio": " "}).error == "Bio is required."
    assert affiliations.add({"name": "Uni", "type": "castle"}).error == "Invalid type: 'castle'."
    assert platform.select("faculty") == []


def test_failed_insert_removes_uploaded_image(temp_config) -> None:
    platform = FailingInsertPlatform(temp_config)
    controller = AffiliationController(platform, bucket=temp_config.bucket)

    result = controller.add({"name": "Uni"}, _image())

    assert not result.success
    assert result.error == "insert rejected"
    assert _bucket_files(platform, temp_config.bucket, "affiliations") == []


def test_member_interests_are_collected_from_form_fields(platform, temp_config) -> None:
    controller = MemberController(platform, bucket=temp_config.bucket)

    result = controller.add(
        {"name": "Ada", "interest-0": "Robotics", "interest-1": "", "interest-2": "Vision"}
    )

    assert result.record["research_interests"] == ["Robotics", "Vision"]


def test_project_form_aliases_and_flags(platform, temp_config) -> None:
    controller = ProjectController(platform, bucket=temp_config.bucket)

    result = controller.add(
        {
            "name": "atlas",
            "title": "Atlas",
            "description": "Maps",
            "link": "https://example.org",
            "is_openSource": "true",
            "project_status": "active",
            "project_type": "research",
        }
    )

    assert result.success, result.error
    record = result.record
    assert record["short_description"] == "Maps"
    assert record["is_open_source"] is True
    assert record["is_featured"] is False
    assert record["status"] == "active"
    assert record["type"] == "research"


def test_publication_date_is_formatted_on_add_and_update(platform, temp_config) -> None:
    controller = PublicationController(platform, bucket=temp_config.bucket)

    result = controller.add({"title": "Paper", "month": "3", "year": "2024", "authors": "A, B"})
    record = result.record
    assert record["date"] == "03, 2024"
    assert record["authors"] == ["A", "B"]

    controller.update(
        [
            UpdateDirective("month", "11", "id", record["id"]),
            UpdateDirective("year", "2023", "id", record["id"]),
        ],
        record,
    )
    assert controller.get(record["id"])["date"] == "11, 2023"


def test_update_through_table_sends_one_directive_per_field(platform, temp_config) -> None:
    controller = ProjectController(platform, bucket=temp_config.bucket)
    stored = controller.add(
        {"name": "atlas", "title": "Atlas", "description": "Maps", "link": "https://example.org"}
    ).record
    seen = []

    def on_update(directives, item):
        seen.append(list(directives))
        return controller.update(directives, item)

    table = RecordTable([stored], schema=controller.schema, on_update=on_update)
    table.begin_edit(stored)
    table.change_field("title", "Atlas 2")
    table.change_field("title", "Atlas 3")
    table.change_field("is_featured", "yes")
    result = table.save_edit()

    assert result.message == "Project updated successfully."
    assert [directive.column for directive in seen[0]] == ["title", "is_featured"]
    updated = controller.get(stored["id"])
    assert updated["title"] == "Atlas 3"
    assert updated["is_featured"] is True


def test_update_with_no_directives_is_a_no_op(platform, temp_config) -> None:
    controller = ProjectController(platform, bucket=temp_config.bucket)

    result = controller.update([], {"id": 1})

    assert result.success and result.message == "Nothing to update."


def test_update_reports_unknown_columns(platform, temp_config) -> None:
    controller = AffiliationController(platform, bucket=temp_config.bucket)
    stored = controller.add({"name": "Uni"}).record

    result = controller.update([UpdateDirective("colour", "red", "id", stored["id"])], stored)

    assert not result.success
    assert "colour" in result.error


def test_delete_removes_row_and_image(platform, temp_config) -> None:
    controller = FacultyController(platform, bucket=temp_config.bucket)
    stored = controller.add(
        {"name": "Dr X", "email": "x@example.org", "bio": "Hi"}, _image()
    ).record

    result = controller.delete(stored)

    assert result.message == "Faculty member deleted successfully."
    assert platform.select("faculty") == []
    assert _bucket_files(platform, temp_config.bucket, "faculty") == []


def test_delete_tolerates_foreign_image_urls(platform, temp_config) -> None:
    controller = AffiliationController(platform, bucket=temp_config.bucket)
    stored = platform.insert("affiliations", {"name": "Uni", "image": "not-a-real-url"})

    result = controller.delete(stored)

    assert result.success
    assert platform.select("affiliations") == []


def test_delete_reports_missing_rows(platform, temp_config) -> None:
    controller = AffiliationController(platform, bucket=temp_config.bucket)

    result = controller.delete({"id": 404})

    assert not result.success
    assert result.error == "Affiliation not found"


def test_delete_keeps_row_when_image_removal_fails(temp_config) -> None:
    platform = FailingRemovePlatform(temp_config)
    controller = MemberController(platform, bucket=temp_config.bucket)
    stored = platform.insert(
        "members",
        {"name": "Ada", "image": platform.get_public_url(temp_config.bucket, "member/a.png")},
    )

    result = controller.delete(stored)

    assert result.error == "Failed to delete image"
    assert len(platform.select("members")) == 1


def test_fetch_reports_platform_errors(temp_config) -> None:
    class OfflinePlatform:
        def select(self, *args, **kwargs):
            raise PlatformError("connection refused")

    result = AffiliationController(OfflinePlatform(), bucket="b").fetch()

    assert not result.ok
    assert result.error == "connection refused"
    assert result.records == []


@pytest.mark.parametrize(
    "controller_type, singular",
    [
        (AffiliationController, "Affiliation"),
        (MemberController, "Member"),
        (PublicationController, "Publication"),
    ],
)
def test_singular_labels(platform, temp_config, controller_type, singular) -> None:
    assert controller_type(platform, bucket=temp_config.bucket).singular == singular
