from __future__ import annotations

import pytest

from services.storage_path import normalize_storage_path, same_file, usable_file_path


@pytest.mark.parametrize(
    "raw",
    [
        "clearances/a.pdf",
        "/clearances/a.pdf",
        "application-files/clearances/a.pdf",
        "https://abc.supabase.co/storage/v1/object/public/application-files/clearances/a.pdf",
        "https://abc.supabase.co/storage/v1/object/sign/application-files/clearances/a.pdf?token=xyz",
        "https://cdn.example.com/application-files/clearances/a.pdf#page=2",
    ],
)
def test_spellings_of_one_object_normalize_to_its_key(raw):
    assert normalize_storage_path(raw) == "clearances/a.pdf"


def test_percent_encoding_is_decoded():
    assert normalize_storage_path("application-files/clearances/a%20b.pdf") == "clearances/a b.pdf"


def test_other_bucket_in_object_url():
    url = "https://abc.supabase.co/storage/v1/object/authenticated/other-bucket/x/y.pdf"
    assert normalize_storage_path(url, ["other-bucket"]) == "x/y.pdf"


@pytest.mark.parametrize("raw", [None, "", "   ", "local-file-path", "local-upload-123", "application-files/"])
def test_empty_and_placeholder_references(raw):
    assert normalize_storage_path(raw) is None


def test_usable_file_path_rejects_placeholders_only():
    assert usable_file_path("local-file-path/photo.png") is None
    assert usable_file_path({"path": "x"}) is None
    assert usable_file_path(" ids/sss.pdf ") == "ids/sss.pdf"


def test_same_file():
    a = "application-files/clearances/a.pdf"
    b = "https://abc.supabase.co/storage/v1/object/public/application-files/clearances/a.pdf"
    assert same_file(a, a)
    assert same_file(a, b) and same_file(b, a)
    assert not same_file(a, "clearances/a-v2.pdf")
    assert not same_file(None, None)
    assert not same_file("", a)
