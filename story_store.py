import json
import logging
import os
import re
import datetime as dt
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from dashboard_errors import DashboardError, InvalidSlugError, StoryNotFoundError
from dataset_forms import split_tags
from mdx_preview import split_frontmatter


logger = logging.getLogger("ckan-dashboard.stories")

SLUG_PATTERN = re.compile(r"^[a-z0-9][a-z0-9-_]*$")

CONTENT_FILE = "index.mdx"
CONFIG_FILE = "config.json"


class StoryUpdate(BaseModel):
    """Payload of the story editor's save button"""

    model_config = ConfigDict(extra="ignore")

    slug: str
    title: str = ""
    author: str = ""
    description: str = ""
    date: str = ""
    tags: List[str] = Field(default_factory=list)
    content: str = ""

    @field_validator("title")
    @classmethod
    def _check_title(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("Title is required")
        return value

    @field_validator("author")
    @classmethod
    def _check_author(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("Author is required")
        return value

    @field_validator("content")
    @classmethod
    def _check_content(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("Content is required")
        return value

    @field_validator("tags", mode="before")
    @classmethod
    def _normalize_tags(cls, value: Any) -> List[str]:
        if isinstance(value, list):
            return [str(tag).strip() for tag in value if str(tag).strip()]
        return split_tags(value)

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "StoryUpdate":
        # Accept both {slug, metadata: {...}, content} and a flat form
        metadata = payload.get("metadata") or {}
        return cls(**{**metadata, **{k: v for k, v in payload.items() if k != "metadata"}})

    def metadata(self) -> Dict[str, Any]:
        return {
            "title": self.title,
            "author": self.author,
            "description": self.description,
            "date": self.date or dt.date.today().isoformat(),
            "tags": self.tags,
        }


class StoryStore:
    """Stories kept as <content_dir>/<slug>/index.mdx plus config.json"""

    def __init__(self, stories_dir: str):
        self.stories_dir = stories_dir

    def _story_dir(self, slug: str) -> str:
        if not isinstance(slug, str) or not SLUG_PATTERN.match(slug):
            raise InvalidSlugError(f"Invalid story slug: {slug!r}")
        return os.path.join(self.stories_dir, slug)

    def exists(self, slug: str) -> bool:
        return os.path.isfile(os.path.join(self._story_dir(slug), CONTENT_FILE))

    def save(self, slug: str, metadata: Dict[str, Any], content: str,
             components: Optional[List[Any]] = None) -> str:
        story_dir = self._story_dir(slug)
        os.makedirs(story_dir, exist_ok=True)

        with open(os.path.join(story_dir, CONTENT_FILE), "w", encoding="utf-8") as f:
            f.write(content)
        with open(os.path.join(story_dir, CONFIG_FILE), "w", encoding="utf-8") as f:
            json.dump({"metadata": metadata, "components": components or []}, f, indent=2)

        logger.info(f"Saved story {slug} to {story_dir}")
        return slug

    def get(self, slug: str) -> Dict[str, Any]:
        story_dir = self._story_dir(slug)
        content_path = os.path.join(story_dir, CONTENT_FILE)
        if not os.path.isfile(content_path):
            raise StoryNotFoundError("Story not found")

        with open(content_path, encoding="utf-8") as f:
            content = f.read()

        config: Dict[str, Any] = {}
        config_path = os.path.join(story_dir, CONFIG_FILE)
        if os.path.isfile(config_path):
            try:
                with open(config_path, encoding="utf-8") as f:
                    config = json.load(f)
            except ValueError as e:
                logger.warning(f"Ignoring unreadable {CONFIG_FILE} for story {slug}: {e}")
            if not isinstance(config, dict):
                config = {}

        metadata = config.get("metadata")
        if not metadata:
            metadata, _, _ = split_frontmatter(content)

        return {
            "slug": slug,
            "metadata": metadata,
            "content": content,
            "components": config.get("components", []),
        }

    def update(self, update: StoryUpdate) -> Dict[str, Any]:
        components: List[Any] = []
        if self.exists(update.slug):
            try:
                components = self.get(update.slug).get("components", [])
            except DashboardError as e:
                logger.warning(f"Replacing unreadable story {update.slug}: {e}")
        self.save(update.slug, update.metadata(), update.content, components)
        return self.get(update.slug)

    def list(self) -> List[Dict[str, Any]]:
        if not os.path.isdir(self.stories_dir):
            return []
        stories = []
        for slug in sorted(os.listdir(self.stories_dir)):
            if not SLUG_PATTERN.match(slug) or not self.exists(slug):
                continue
            try:
                story = self.get(slug)
            except (DashboardError, OSError, ValueError) as e:
                logger.warning(f"Skipping story {slug}: {e}")
                continue
            stories.append({"slug": slug, "metadata": story["metadata"]})
        return stories
