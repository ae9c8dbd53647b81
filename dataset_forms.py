"""
Validation models for the dataset create/edit forms and their resources.

Field rules and messages follow the portal's dataset forms so that errors can
be shown next to the offending input without translation.
"""

import os
import re
from typing import Any, Dict, List, Literal, Optional

from email_validator import EmailNotValidError, validate_email
from pydantic import (
    AnyHttpUrl,
    BaseModel,
    ConfigDict,
    Field,
    TypeAdapter,
    ValidationError,
    field_validator,
    model_validator,
)


NAME_PATTERN = re.compile(r"^[a-z0-9-_]+$")

_http_url = TypeAdapter(AnyHttpUrl)


def title_to_slug(title: str) -> str:
    """Convert a title to a URL-safe dataset name"""
    slug = re.sub(r"[^a-z0-9]+", "-", title.lower())
    return slug.strip("-")


def split_tags(tags: Optional[str]) -> List[str]:
    if not tags:
        return []
    return [tag.strip() for tag in tags.split(",") if tag.strip()]


class DatasetForm(BaseModel):
    """Dataset metadata as entered in the create and edit forms"""

    model_config = ConfigDict(extra="ignore")

    title: str
    name: str
    author: Optional[str] = None
    author_email: Optional[str] = None
    notes: Optional[str] = None
    tags: Optional[str] = None
    owner_org: str = ""
    private: bool = False

    @field_validator("title")
    @classmethod
    def _check_title(cls, value: str) -> str:
        if len(value) < 3:
            raise ValueError("Title must be at least 3 characters")
        return value

    @field_validator("name")
    @classmethod
    def _check_name(cls, value: str) -> str:
        if len(value) < 3:
            raise ValueError("Name must be at least 3 characters")
        if not NAME_PATTERN.match(value):
            raise ValueError(
                "Name can only contain lowercase letters, numbers, hyphens, and underscores"
            )
        return value

    @field_validator("author_email")
    @classmethod
    def _check_email(cls, value: Optional[str]) -> Optional[str]:
        if not value:
            return value
        try:
            validate_email(value, check_deliverability=False)
        except EmailNotValidError:
            raise ValueError("Invalid email")
        return value

    @field_validator("owner_org")
    @classmethod
    def _check_owner_org(cls, value: str) -> str:
        if len(value) < 1:
            raise ValueError("Organization is required")
        return value

    @field_validator("tags", mode="before")
    @classmethod
    def _join_tag_list(cls, value: Any) -> Any:
        # Accept CKAN style [{"name": ...}] or plain lists from JSON clients
        if isinstance(value, list):
            names = [tag.get("name", "") if isinstance(tag, dict) else str(tag) for tag in value]
            return ", ".join(name for name in names if name)
        return value

    def tag_list(self) -> List[str]:
        return split_tags(self.tags)

    def to_ckan_payload(self, id: Optional[str] = None) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "name": self.name,
            "title": self.title,
            "author": self.author,
            "author_email": self.author_email,
            "notes": self.notes,
            "private": self.private,
            "owner_org": self.owner_org,
            "tags": [{"name": tag} for tag in self.tag_list()],
        }
        if id is not None:
            payload = {"id": id, **payload}
        return {key: value for key, value in payload.items() if value is not None}

    @classmethod
    def from_dataset(cls, dataset: Dict[str, Any]) -> "DatasetForm":
        """Prefill the edit form from a package_show result"""
        organization = dataset.get("organization") or {}
        return cls(
            title=dataset.get("title") or "",
            name=dataset.get("name") or "",
            author=dataset.get("author") or "",
            author_email=dataset.get("author_email") or "",
            notes=dataset.get("notes") or "",
            tags=dataset.get("tags") or [],
            owner_org=dataset.get("owner_org") or organization.get("id") or "",
            private=bool(dataset.get("private", False)),
        )


class ResourceDraft(BaseModel):
    """A resource queued in the dataset wizard, backed by a file or a URL"""

    model_config = ConfigDict(extra="ignore")

    resource_type: Literal["file", "url"] = "url"
    name: str
    description: str = ""
    format: str = ""
    url: Optional[str] = None
    filename: Optional[str] = None
    content: Optional[bytes] = Field(default=None, repr=False)
    content_type: Optional[str] = None

    @field_validator("name")
    @classmethod
    def _check_name(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("Resource name required")
        return value

    @field_validator("url")
    @classmethod
    def _check_url(cls, value: Optional[str]) -> Optional[str]:
        if not value:
            return value
        try:
            _http_url.validate_python(value)
        except ValidationError:
            raise ValueError("Invalid URL")
        return value

    @model_validator(mode="after")
    def _check_source(self) -> "ResourceDraft":
        if self.resource_type == "url":
            if not self.url:
                raise ValueError(f'Resource "{self.name}" must have a URL')
            if not self.format:
                self.format = "URL"
        else:
            if self.content is None or not self.filename:
                raise ValueError(f'Resource "{self.name}" must have a file uploaded')
            if not self.format:
                self.format = os.path.splitext(self.filename)[1].lstrip(".").upper()
        return self

    def to_ckan_payload(self, package_id: str) -> Dict[str, Any]:
        return {
            "package_id": package_id,
            "name": self.name,
            "description": self.description,
            "format": self.format,
            "url": self.url,
        }


def form_errors(error: ValidationError) -> Dict[str, str]:
    """Flatten pydantic errors into {field: message}"""
    errors: Dict[str, str] = {}
    for item in error.errors():
        field = ".".join(str(part) for part in item.get("loc", ())) or "__root__"
        message = item.get("msg", "Invalid value")
        if message.startswith("Value error, "):
            message = message[len("Value error, "):]
        errors.setdefault(field, message)
    return errors
