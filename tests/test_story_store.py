"""
Tests for story persistence on disk.
"""

import datetime as dt
import json
import os

import pytest
from pydantic import ValidationError

from dashboard_errors import InvalidSlugError, StoryNotFoundError
from dataset_forms import form_errors
from story_store import StoryStore, StoryUpdate


@pytest.fixture
def store(tmp_path) -> StoryStore:
    return StoryStore(str(tmp_path / "stories"))


def test_save_writes_mdx_and_config(store):
    store.save("rainfall", {"title": "Rainfall"}, "# Rain", [{"type": "text"}])

    story_dir = os.path.join(store.stories_dir, "rainfall")
    with open(os.path.join(story_dir, "index.mdx"), encoding="utf-8") as f:
        assert f.read() == "# Rain"
    with open(os.path.join(story_dir, "config.json"), encoding="utf-8") as f:
        assert json.load(f) == {"metadata": {"title": "Rainfall"}, "components": [{"type": "text"}]}


def test_get_round_trip(store):
    store.save("rainfall", {"title": "Rainfall"}, "# Rain")
    assert store.get("rainfall") == {
        "slug": "rainfall",
        "metadata": {"title": "Rainfall"},
        "content": "# Rain",
        "components": [],
    }


def test_get_falls_back_to_frontmatter(store):
    story_dir = os.path.join(store.stories_dir, "hand-written")
    os.makedirs(story_dir)
    with open(os.path.join(story_dir, "index.mdx"), "w", encoding="utf-8") as f:
        f.write("---\ntitle: By hand\n---\n\nBody")

    assert store.get("hand-written")["metadata"] == {"title": "By hand"}


def test_get_missing_story(store):
    with pytest.raises(StoryNotFoundError, match="Story not found"):
        store.get("nothing-here")


@pytest.mark.parametrize("slug", ["../etc", "Upper", "-leading", "a/b", "", None])
def test_invalid_slugs_are_rejected(store, slug):
    with pytest.raises(InvalidSlugError):
        store.save(slug, {}, "x")


def test_list_sorted_and_skips_incomplete(store):
    store.save("b-story", {"title": "B"}, "b")
    store.save("a-story", {"title": "A"}, "a")
    os.makedirs(os.path.join(store.stories_dir, "draft-without-content"))

    assert store.list() == [
        {"slug": "a-story", "metadata": {"title": "A"}},
        {"slug": "b-story", "metadata": {"title": "B"}},
    ]


def write_file(store, slug, name, text):
    with open(os.path.join(store.stories_dir, slug, name), "w", encoding="utf-8") as f:
        f.write(text)


def test_corrupt_config_falls_back_to_frontmatter(store):
    store.save("rainfall", {"title": "Ignored"}, "---\ntitle: Rainfall\n---\n# Rain", [{"type": "text"}])
    write_file(store, "rainfall", "config.json", "{broken")

    story = store.get("rainfall")

    assert story["metadata"] == {"title": "Rainfall"}
    assert story["components"] == []


def test_list_skips_unreadable_story(store):
    store.save("good", {"title": "Good"}, "# Good")
    store.save("bad", {}, "---\ntitle: [unclosed\n---\nbody")
    write_file(store, "bad", "config.json", "{broken")

    assert store.list() == [{"slug": "good", "metadata": {"title": "Good"}}]


def test_list_without_directory(store):
    assert store.list() == []


class TestStoryUpdate:
    def test_nested_metadata_and_tag_string(self):
        update = StoryUpdate.from_payload({
            "slug": "rainfall",
            "metadata": {"title": "Rainfall", "author": "Sam", "tags": "weather, water"},
            "content": "# Rain",
        })
        assert update.tags == ["weather", "water"]
        assert update.metadata()["date"] == dt.date.today().isoformat()

    @pytest.mark.parametrize("field, message", [
        ("title", "Title is required"),
        ("author", "Author is required"),
        ("content", "Content is required"),
    ])
    def test_required_fields(self, field, message):
        payload = {"slug": "s", "title": "T", "author": "A", "content": "C", field: "  "}
        with pytest.raises(ValidationError) as exc_info:
            StoryUpdate(**payload)
        assert form_errors(exc_info.value)[field] == message

    def test_update_keeps_components(self, store):
        store.save("rainfall", {"title": "Old"}, "old", [{"type": "heading"}])
        update = StoryUpdate(slug="rainfall", title="New", author="Sam", content="new",
                             date="2024-05-01", tags=["a"])

        story = store.update(update)

        assert story["content"] == "new"
        assert story["components"] == [{"type": "heading"}]
        assert story["metadata"] == {
            "title": "New", "author": "Sam", "description": "", "date": "2024-05-01", "tags": ["a"],
        }
