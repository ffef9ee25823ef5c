from __future__ import annotations

from types import SimpleNamespace

import pytest

from labcms.services.platform import PlatformError
from labcms.services.supabase_platform import SupabasePlatform


class FakeQuery:
    def __init__(self, calls, data):
        self._calls = calls
        self._data = data

    def __getattr__(self, name):
        def record(*args, **kwargs):
            self._calls.append((name, args, kwargs))
            return self

        return record

    def execute(self):
        return SimpleNamespace(data=self._data)


class FakeBucket:
    def __init__(self, calls):
        self._calls = calls

    def list(self, prefix, options):
        self._calls.append(("list", prefix, options))
        return [
            {"name": "member", "id": None, "metadata": None},
            {"name": "a.png", "id": "1", "metadata": {"mimetype": "image/png"}},
        ]

    def upload(self, path, data, file_options=None):
        self._calls.append(("upload", path, file_options))

    def download(self, path):
        raise RuntimeError("Object not found")

    def remove(self, paths):
        return [{"name": path} for path in paths]

    def get_public_url(self, path):
        return f"https://project.supabase.co/storage/v1/object/public/spcai_images/{path}?"


class FakeClient:
    def __init__(self, data=None):
        self.calls = []
        self._data = data if data is not None else [{"id": 1, "name": "Uni"}]
        self.storage = SimpleNamespace(from_=lambda bucket: FakeBucket(self.calls))

    def table(self, name):
        self.calls.append(("table", (name,), {}))
        return FakeQuery(self.calls, self._data)


def test_requires_credentials_without_client() -> None:
    with pytest.raises(PlatformError, match="URL and key are required"):
        SupabasePlatform()


def test_select_builds_filtered_query() -> None:
    client = FakeClient()
    platform = SupabasePlatform(client=client)

    rows = platform.select("projects", columns=["name"], filters={"id": 3}, order_by="id", descending=True)

    assert rows == [{"id": 1, "name": "Uni"}]
    assert ("select", ("name",), {}) in client.calls
    assert ("eq", ("id", 3), {}) in client.calls
    assert ("order", ("id",), {"desc": True}) in client.calls


def test_insert_requires_returned_row() -> None:
    with pytest.raises(PlatformError, match="returned no row"):
        SupabasePlatform(client=FakeClient(data=[])).insert("affiliations", {"name": "x"})


def test_update_counts_rows_and_rejects_empty_values() -> None:
    platform = SupabasePlatform(client=FakeClient())

    assert platform.update("affiliations", {"name": "y"}, column="id", value=1) == 1
    with pytest.raises(PlatformError):
        platform.update("affiliations", {}, column="id", value=1)


def test_storage_calls_are_mapped() -> None:
    client = FakeClient()
    platform = SupabasePlatform(client=client)

    entries = platform.list("spcai_images", "", ascending=False)
    assert [entry.mimetype for entry in entries] == [None, "image/png"]
    assert client.calls[-1] == ("list", "", {"sortBy": {"column": "name", "order": "desc"}})

    platform.upload("spcai_images", "a.txt", b"x", content_type="text/plain")
    assert client.calls[-1] == ("upload", "a.txt", {"content-type": "text/plain"})

    assert platform.remove("spcai_images", ["a.txt"]) == ["a.txt"]
    assert platform.get_public_url("spcai_images", "a.png").endswith("/spcai_images/a.png")


def test_client_errors_become_platform_errors() -> None:
    platform = SupabasePlatform(client=FakeClient())

    with pytest.raises(PlatformError, match="Object not found"):
        platform.download("spcai_images", "missing.png")
