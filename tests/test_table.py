from __future__ import annotations

import pytest

from labcms.services.platform import ActionResult
from labcms.services.schemas import AFFILIATIONS, PROJECTS
from labcms.services.table import (
    CellKind,
    RecordTable,
    UpdateDirective,
    filter_records,
    header_label,
    page_count,
    render_cell,
)


def _rows(count: int):
    return [{"id": index, "name": f"row {index}", "tags": ["a", "b"]} for index in range(1, count + 1)]


def test_header_label_splits_words() -> None:
    assert header_label("shortDescription") == "Short Description"
    assert header_label("research_interests") == "Research Interests"
    assert header_label("name") == "Name"


def test_filter_records_ignores_id_and_matches_lists_and_flags() -> None:
    records = [
        {"id": 42, "name": "Alpha", "tags": ["vision"], "is_ours": True},
        {"id": 7, "name": "Beta", "tags": [], "is_ours": False},
    ]

    assert filter_records(records, "") == records
    assert filter_records(records, "42") == []
    assert filter_records(records, "VIS") == [records[0]]
    assert filter_records(records, "true") == [records[0]]
    # False flags are falsy and therefore never searched.
    assert filter_records(records, "false") == []


def test_render_cell_rules() -> None:
    assert render_cell("tags", ["a", "b"]).kind is CellKind.CHIPS
    assert render_cell("authors", ["a", "b"]).kind is CellKind.LIST
    check = render_cell("is_featured", True)
    assert check.kind is CellKind.CHECK and check.text == "✓"
    assert render_cell("is_featured", False).text == "✗"
    link = render_cell("url", "https://example.org")
    assert link.kind is CellKind.LINK and link.to_dict()["href"] == "https://example.org"

    long_value = "x" * 41
    truncated = render_cell("bio", long_value)
    assert truncated.text == "x" * 40 + "..."
    assert truncated.expandable is True
    assert render_cell("bio", "x" * 40).expandable is False
    assert render_cell("bio", None).text == ""


def test_pagination_is_clamped() -> None:
    table = RecordTable(_rows(13), items_per_page=6)

    assert table.total_pages == 3
    assert [row["id"] for row in table.current_data] == [1, 2, 3, 4, 5, 6]
    assert table.go_to_page(10) == 3
    assert [row["id"] for row in table.current_data] == [13]
    assert table.next_page() == 3
    assert table.go_to_page(-4) == 1
    assert table.previous_page() == 1
    assert page_count(0, 6) == 0


def test_empty_table_stays_on_first_page() -> None:
    table = RecordTable([], items_per_page=6)

    assert table.headers == []
    assert table.total_pages == 0
    assert table.next_page() == 1
    view = table.view()
    assert view.rows == [] and view.page == 1


def test_search_resets_page_and_filters() -> None:
    table = RecordTable(_rows(13), items_per_page=6)
    table.go_to_page(2)

    table.set_search("row 1")

    assert table.current_page == 1
    assert [row["id"] for row in table.filtered_data] == [1, 10, 11, 12, 13]


def test_headers_and_image_field_come_from_schema() -> None:
    table = RecordTable([], schema=AFFILIATIONS)

    assert table.headers == ["name", "type", "url", "image"]
    assert table.image_field == "image"
    assert table.display_headers == ["name", "type", "url"]
    assert table.label_for("url") == "URL"


def test_headers_inferred_from_first_row() -> None:
    table = RecordTable([{"id": 1, "name": "x", "logo_image": "A"}])

    assert table.headers == ["name", "logo_image"]
    assert table.image_field == "logo_image"
    row = table.view().rows[0]
    assert row["image"] == "A"
    assert set(row["cells"]) == {"name"}


def test_image_fallback_uses_first_character() -> None:
    table = RecordTable([{"id": 1, "name": "x", "image": None}], schema=AFFILIATIONS)

    row = table.view().rows[0]
    assert row["image"] is None
    assert row["image_fallback"] == "A"


def test_edit_session_builds_one_directive_per_field() -> None:
    calls = []
    table = RecordTable(
        [{"id": 5, "name": "Old", "title": "T"}],
        schema=PROJECTS,
        on_update=lambda directives, item: calls.append((directives, item)) or ActionResult.ok(),
    )
    row = table.data[0]

    table.begin_edit(row)
    assert table.is_editing(row)
    table.change_field("name", "New")
    table.change_field("name", "Newer")
    table.change_field("title", "Title")
    table.save_edit()

    directives, item = calls[0]
    assert directives == [
        UpdateDirective("name", "Newer", "id", 5),
        UpdateDirective("title", "Title", "id", 5),
    ]
    assert item["name"] == "Newer"
    assert table.editing_id is None
    assert table.updated_fields == []


def test_change_field_rejects_locked_columns() -> None:
    table = RecordTable([{"id": 1, "name": "x", "image": "u"}], schema=AFFILIATIONS)
    table.begin_edit(table.data[0])

    with pytest.raises(ValueError):
        table.change_field("id", 2)
    with pytest.raises(ValueError):
        table.change_field("image", "other")


def test_change_field_outside_session_is_ignored() -> None:
    table = RecordTable([{"id": 1, "name": "x"}])

    table.change_field("name", "y")

    assert table.updated_fields == []
    assert table.data[0]["name"] == "x"


def test_cancel_edit_discards_changes() -> None:
    calls = []
    table = RecordTable([{"id": 1, "name": "x"}], on_update=lambda *args: calls.append(args))
    table.begin_edit(table.data[0])
    table.change_field("name", "y")

    table.cancel_edit()
    table.save_edit()

    assert calls == []
    assert table.data[0]["name"] == "x"


def test_save_edit_reloads_data() -> None:
    table = RecordTable(
        [{"id": 1, "name": "x"}],
        on_update=lambda directives, item: ActionResult.ok(),
        on_reload=lambda: [{"id": 1, "name": "y"}],
    )
    table.begin_edit(table.data[0])
    table.change_field("name", "y")

    result = table.save_edit()

    assert result.success
    assert table.data == [{"id": 1, "name": "y"}]


def test_confirm_delete_success_with_reload() -> None:
    table = RecordTable(
        [{"id": 1, "name": "x"}],
        on_delete=lambda item: ActionResult.ok("Affiliation deleted successfully."),
        on_reload=lambda: [],
    )
    table.request_delete(table.data[0])
    assert table.view().pending_delete_id == 1

    result = table.confirm_delete()

    assert result.success
    assert result.message == "Item deleted successfully."
    assert table.data == []
    assert table.delete_candidate is None


def test_confirm_delete_without_reload_returns_controller_result() -> None:
    table = RecordTable(
        [{"id": 1, "name": "x"}],
        on_delete=lambda item: ActionResult.ok("Affiliation deleted successfully."),
    )
    table.request_delete(table.data[0])

    assert table.confirm_delete().message == "Affiliation deleted successfully."


def test_confirm_delete_failure_is_wrapped() -> None:
    table = RecordTable([{"id": 1}], on_delete=lambda item: ActionResult.failed("boom"))
    table.request_delete(table.data[0])

    result = table.confirm_delete()

    assert not result.success
    assert result.error == "Failed to delete item: boom"
    assert table.delete_candidate is None


def test_confirm_delete_without_handler_or_candidate() -> None:
    table = RecordTable([{"id": 1}])
    table.request_delete(table.data[0])
    assert table.confirm_delete() is None

    table.on_delete = lambda item: ActionResult.ok()
    assert table.confirm_delete() is None


def test_cancel_delete_clears_candidate() -> None:
    table = RecordTable([{"id": 1}], on_delete=lambda item: ActionResult.ok())
    table.request_delete(table.data[0])

    table.cancel_delete()

    assert table.delete_candidate is None
    assert table.confirm_delete() is None


def test_items_per_page_must_be_positive() -> None:
    with pytest.raises(ValueError):
        RecordTable([], items_per_page=0)


def test_headers_follow_first_row_only() -> None:
    table = RecordTable([{"id": 1, "name": "x", "title": "t"}, {"id": 2, "other": "y"}])

    assert table.headers == ["name", "title"]


@pytest.mark.parametrize("term", ["", "ROW", "1", "b", "missing"])
def test_filtered_rows_contain_term(term) -> None:
    records = _rows(9)
    filtered = filter_records(records, term)

    assert all(record in records for record in filtered)
    for record in filtered:
        assert any(
            key != "id" and term.lower() in str(value).lower()
            or key == "tags" and any(term.lower() in item.lower() for item in value)
            for key, value in record.items()
        )


@pytest.mark.parametrize("per_page", [1, 4, 6, 20])
def test_pages_concatenate_to_filtered_rows(per_page) -> None:
    table = RecordTable(_rows(13), items_per_page=per_page)
    table.set_search("row")

    collected = []
    for page in range(1, table.total_pages + 1):
        table.go_to_page(page)
        assert len(table.current_data) <= per_page
        collected.extend(table.current_data)

    assert collected == table.filtered_data
