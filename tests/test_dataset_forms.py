"""
Tests for dataset and resource form validation.
"""

import pytest
from pydantic import ValidationError

from dataset_forms import DatasetForm, ResourceDraft, form_errors, split_tags, title_to_slug


def valid_form(**overrides):
    data = {
        "title": "Air Quality",
        "name": "air-quality",
        "author": "Jo Smith",
        "author_email": "jo@example.org",
        "notes": "Hourly readings",
        "tags": "air, environment , ",
        "owner_org": "org-1",
    }
    data.update(overrides)
    return data


def errors_for(model, **data):
    with pytest.raises(ValidationError) as exc_info:
        model(**data)
    return form_errors(exc_info.value)


def test_title_to_slug():
    assert title_to_slug("Air Quality 2024!") == "air-quality-2024"
    assert title_to_slug("  --Hello__World--  ") == "hello-world"


def test_split_tags():
    assert split_tags("a, b ,,c ") == ["a", "b", "c"]
    assert split_tags("") == []
    assert split_tags(None) == []


class TestDatasetForm:
    def test_valid_form_builds_ckan_payload(self):
        payload = DatasetForm(**valid_form()).to_ckan_payload()
        assert payload["name"] == "air-quality"
        assert payload["owner_org"] == "org-1"
        assert payload["private"] is False
        assert payload["tags"] == [{"name": "air"}, {"name": "environment"}]

    def test_payload_with_id_drops_missing_fields(self):
        payload = DatasetForm(**valid_form(author=None, notes=None)).to_ckan_payload(id="air-quality")
        assert payload["id"] == "air-quality"
        assert "author" not in payload
        assert "notes" not in payload

    @pytest.mark.parametrize("field, value, message", [
        ("title", "ab", "Title must be at least 3 characters"),
        ("name", "ab", "Name must be at least 3 characters"),
        ("name", "Air Quality", "Name can only contain lowercase letters, numbers, hyphens, and underscores"),
        ("author_email", "not-an-email", "Invalid email"),
        ("owner_org", "", "Organization is required"),
    ])
    def test_field_messages(self, field, value, message):
        assert errors_for(DatasetForm, **valid_form(**{field: value}))[field] == message

    def test_empty_email_is_allowed(self):
        assert DatasetForm(**valid_form(author_email="")).author_email == ""

    def test_underscores_allowed_in_name(self):
        assert DatasetForm(**valid_form(name="air_quality_2")).name == "air_quality_2"

    def test_from_dataset_prefills_edit_form(self):
        dataset = {
            "title": "Budget",
            "name": "budget",
            "notes": None,
            "tags": [{"name": "finance"}, {"name": "city"}],
            "organization": {"id": "org-2"},
            "private": True,
        }
        form = DatasetForm.from_dataset(dataset)
        assert form.tags == "finance, city"
        assert form.owner_org == "org-2"
        assert form.private is True
        assert form.notes == ""


class TestResourceDraft:
    def test_url_resource_defaults_format(self):
        draft = ResourceDraft(name="Portal", url="https://example.org/data")
        assert draft.format == "URL"
        assert draft.to_ckan_payload("pkg-1") == {
            "package_id": "pkg-1",
            "name": "Portal",
            "description": "",
            "format": "URL",
            "url": "https://example.org/data",
        }

    def test_file_resource_format_from_extension(self):
        draft = ResourceDraft(resource_type="file", name="Readings", filename="readings.csv", content=b"a\n1\n")
        assert draft.format == "CSV"

    def test_explicit_format_is_kept(self):
        draft = ResourceDraft(resource_type="file", name="Data", filename="data.txt", content=b"x", format="TSV")
        assert draft.format == "TSV"

    def test_name_required(self):
        assert errors_for(ResourceDraft, name="  ", url="https://example.org")["name"] == "Resource name required"

    def test_invalid_url(self):
        assert errors_for(ResourceDraft, name="Bad", url="not a url")["url"] == "Invalid URL"

    def test_url_resource_without_url(self):
        errors = errors_for(ResourceDraft, name="Empty")
        assert errors["__root__"] == 'Resource "Empty" must have a URL'

    def test_file_resource_without_file(self):
        errors = errors_for(ResourceDraft, resource_type="file", name="Upload")
        assert errors["__root__"] == 'Resource "Upload" must have a file uploaded'
