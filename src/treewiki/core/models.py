"""Data models for TreeWiki."""

from datetime import date
from typing import Any, Literal

import pydantic
from pydantic import BaseModel, ConfigDict, Field, field_serializer, field_validator

from treewiki.core.errors import ValidationError

IconKind = Literal["builtin", "url", "inline_vector", "data_uri"]
MenuType = Literal["single", "parent"]

DEFAULT_ICON = "guide"


class Icon(BaseModel):
    """Menu icon, classified once when it enters the system.

    The raw value is kept as-is so it round-trips untouched.
    """

    model_config = ConfigDict(frozen=True)

    kind: IconKind
    value: str

    @classmethod
    def parse(cls, raw: str) -> "Icon":
        """Classify a raw icon string."""
        probe = raw.strip()
        if probe.startswith(("http://", "https://")):
            kind = "url"
        elif probe.startswith("data:"):
            kind = "data_uri"
        elif probe.startswith("<svg"):
            kind = "inline_vector"
        else:
            kind = "builtin"
        return cls(kind=kind, value=raw)


class _Record(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="allow")


class MenuChild(_Record):
    """Entry of a parent menu mirroring a parented page."""

    id: str
    title: str = ""
    parent_id: str | None = Field(default=None, alias="parentId")


class MenuNode(_Record):
    """A navigation entry: a single leaf or a parent container."""

    id: str
    title: str = ""
    icon: Icon | None = None
    type: MenuType = "single"
    children: list[MenuChild] | None = None

    @field_validator("icon", mode="before")
    @classmethod
    def _classify_icon(cls, value: Any) -> Any:
        if isinstance(value, str):
            return Icon.parse(value) if value else None
        return value

    @field_serializer("icon")
    def _serialize_icon(self, icon: Icon | None) -> str | None:
        return icon.value if icon is not None else None

    @property
    def is_parent(self) -> bool:
        return self.type == "parent"

    def find_child(self, child_id: str) -> MenuChild | None:
        for child in self.children or []:
            if child.id == child_id:
                return child
        return None


class Page(_Record):
    """A content record. ``content`` is opaque HTML."""

    id: str
    title: str = ""
    content: str = ""
    publish_date: date | None = Field(default=None, alias="publishDate")
    parent_id: str | None = Field(default=None, alias="parentId")


class WikiDocument(BaseModel):
    """The single root aggregate persisted as one unit."""

    menus: list[MenuNode] = Field(default_factory=list)
    pages: list[Page] = Field(default_factory=list)

    @classmethod
    def from_payload(cls, data: Any) -> "WikiDocument":
        """Build a document from raw JSON data.

        Raises:
            ValidationError: if ``menus`` or ``pages`` is missing, not a
                list, or contains malformed records.
        """
        if not isinstance(data, dict):
            raise ValidationError("Invalid data structure")
        if not isinstance(data.get("menus"), list) or not isinstance(
            data.get("pages"), list
        ):
            raise ValidationError("Invalid data structure")
        try:
            return cls.model_validate({"menus": data["menus"], "pages": data["pages"]})
        except pydantic.ValidationError as exc:
            raise ValidationError(f"Invalid data structure: {exc}") from exc

    def to_payload(self) -> dict[str, Any]:
        """Serialize to the camelCase JSON shape used on the wire."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)

    def find_menu(self, menu_id: str) -> MenuNode | None:
        for menu in self.menus:
            if menu.id == menu_id:
                return menu
        return None

    def find_page(self, page_id: str) -> Page | None:
        for page in self.pages:
            if page.id == page_id:
                return page
        return None


class PageCreate(_Record):
    """Input for creating a page. ``id`` defaults to a slug of ``title``."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: str | None = None
    title: str = ""
    content: str = ""
    publish_date: date | None = Field(default=None, alias="publishDate")
    parent_id: str | None = Field(default=None, alias="parentId")


class PageUpdate(_Record):
    """Partial page update. Only fields that were set are applied."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    title: str | None = None
    content: str | None = None
    publish_date: date | None = Field(default=None, alias="publishDate")
    parent_id: str | None = Field(default=None, alias="parentId")


class MenuCreate(_Record):
    """Input for creating a menu."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: str | None = None
    title: str = ""
    icon: str | None = None
    type: MenuType = "single"
    children: list[MenuChild] | None = None


class MenuUpdate(_Record):
    """Partial menu update."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    title: str | None = None
    icon: str | None = None
    type: MenuType | None = None
    children: list[MenuChild] | None = None
