"""Tree consistency engine.

Keeps the ``menus`` forest and the flat ``pages`` list consistent:

- a parented page has exactly one mirrored entry in its parent's children
- a top-level page has exactly one single-type menu with its id
- deleting a parent menu cascades to its pages

Every mutation loads the whole document, edits a private copy and writes
the whole document back. Menu title changes are not mirrored into
children; mirroring only flows from pages to menus.
"""

import logging
import re
from datetime import date

from treewiki.core.cache import DocumentCache
from treewiki.core.errors import NotFoundError, ValidationError
from treewiki.core.models import (
    DEFAULT_ICON,
    MenuChild,
    MenuCreate,
    MenuNode,
    MenuUpdate,
    Page,
    PageCreate,
    PageUpdate,
    WikiDocument,
)

logger = logging.getLogger(__name__)

_WHITESPACE = re.compile(r"\s+")


def slugify(title: str) -> str:
    """Lower-case ``title`` and join its words with dashes.

    Non-ASCII letters are kept, so "Tài khoản" becomes "tài-khoản".
    """
    return _WHITESPACE.sub("-", title.strip().lower())


def single_menu_for(page: Page) -> MenuNode:
    """Build the single-type menu that stands in for a top-level page."""
    return MenuNode(id=page.id, title=page.title, icon=DEFAULT_ICON, type="single")


def derive_menus(document: WikiDocument) -> list[MenuNode]:
    """Return stored menus followed by synthesized ones.

    A single menu is synthesized for every top-level page that has no menu
    with its id, in page order. Nothing is written back.
    """
    menus = [menu.model_copy(deep=True) for menu in document.menus]
    known = {menu.id for menu in menus}
    for page in document.pages:
        if not page.parent_id and page.id not in known:
            menus.append(single_menu_for(page))
            known.add(page.id)
    return menus


def check_consistency(document: WikiDocument) -> list[str]:
    """List violations of the menu/page linkage rules."""
    problems = []
    for page in document.pages:
        if page.parent_id:
            parent = document.find_menu(page.parent_id)
            if parent is None or not parent.is_parent:
                problems.append(
                    f"page {page.id!r} references missing parent {page.parent_id!r}"
                )
                continue
            entries = [c for c in parent.children or [] if c.id == page.id]
            if len(entries) != 1:
                problems.append(
                    f"page {page.id!r} has {len(entries)} entries in {parent.id!r}"
                )
            elif entries[0].title != page.title:
                problems.append(
                    f"page {page.id!r} title is not mirrored in {parent.id!r}"
                )
        else:
            singles = [
                m for m in document.menus if m.id == page.id and m.type == "single"
            ]
            if len(singles) > 1:
                problems.append(f"page {page.id!r} has {len(singles)} single menus")
    page_ids = {page.id for page in document.pages}
    for menu in document.menus:
        for child in menu.children or []:
            if child.id not in page_ids:
                problems.append(f"menu {menu.id!r} has orphan child {child.id!r}")
    return problems


def _attach_child(menu: MenuNode, page: Page) -> None:
    if menu.children is None:
        menu.children = []
    child = menu.find_child(page.id)
    if child is None:
        menu.children.append(
            MenuChild(id=page.id, title=page.title, parent_id=menu.id)
        )
    else:
        child.title = page.title


def _detach_child(menu: MenuNode | None, page_id: str) -> None:
    if menu is not None and menu.children:
        menu.children = [c for c in menu.children if c.id != page_id]


def _require_parent(document: WikiDocument, parent_id: str) -> MenuNode:
    menu = document.find_menu(parent_id)
    if menu is None or not menu.is_parent:
        raise ValidationError(f"Parent menu {parent_id!r} does not exist")
    return menu


def _require_title(title: str | None, kind: str) -> str:
    if title is None or not title.strip():
        raise ValidationError(f"{kind} title is required")
    return title


class TreeEngine:
    """CRUD over pages and menus that preserves the linkage rules."""

    def __init__(self, cache: DocumentCache) -> None:
        self.cache = cache

    # ---------- reads ----------

    async def list_menus(self) -> list[MenuNode]:
        return derive_menus(await self.cache.read())

    async def list_pages(self) -> list[Page]:
        document = await self.cache.read()
        return [page.model_copy(deep=True) for page in document.pages]

    async def get_page_by_id(self, page_id: str) -> Page | None:
        page = (await self.cache.read()).find_page(page_id)
        return page.model_copy(deep=True) if page is not None else None

    async def fetch_document(self) -> WikiDocument:
        """Return the full document; store failures propagate."""
        return (await self.cache.load()).model_copy(deep=True)

    async def replace_document(self, document: WikiDocument) -> None:
        """Replace the whole document, e.g. on import."""
        await self.cache.commit(document)

    # ---------- pages ----------

    async def create_page(self, data: PageCreate) -> Page:
        title = _require_title(data.title, "Page")
        page_id = (data.id or "").strip() or slugify(title)

        document = await self.cache.load_for_update()
        if document.find_page(page_id) is not None:
            raise ValidationError(f"Page {page_id!r} already exists")
        parent = _require_parent(document, data.parent_id) if data.parent_id else None

        page = Page(
            id=page_id,
            title=title,
            content=data.content or "",
            publish_date=data.publish_date or date.today(),
            parent_id=parent.id if parent else None,
        )
        document.pages.append(page)
        if parent is not None:
            _attach_child(parent, page)
        elif document.find_menu(page.id) is None:
            document.menus.append(single_menu_for(page))

        await self.cache.commit(document)
        logger.info("Created page %s", page.id)
        return page

    async def update_page(self, page_id: str, patch: PageUpdate) -> Page:
        changes = patch.model_dump(exclude_unset=True)
        if "title" in changes:
            _require_title(changes["title"], "Page")
        if changes.get("content", "") is None:
            changes["content"] = ""
        if "parent_id" in changes:
            changes["parent_id"] = changes["parent_id"] or None

        document = await self.cache.load_for_update()
        page = document.find_page(page_id)
        if page is None:
            raise NotFoundError(f"Page {page_id!r} not found")
        old_parent_id = page.parent_id
        new_parent = None
        if changes.get("parent_id"):
            new_parent = _require_parent(document, changes["parent_id"])

        for field, value in changes.items():
            setattr(page, field, value)

        if old_parent_id and old_parent_id != page.parent_id:
            _detach_child(document.find_menu(old_parent_id), page.id)

        if page.parent_id:
            parent = new_parent or document.find_menu(page.parent_id)
            if parent is not None and parent.is_parent:
                _attach_child(parent, page)
            if not old_parent_id:
                document.menus = [
                    m
                    for m in document.menus
                    if not (m.id == page.id and m.type == "single")
                ]
        else:
            menu = document.find_menu(page.id)
            if menu is None:
                document.menus.append(single_menu_for(page))
            elif menu.type == "single":
                menu.title = page.title

        await self.cache.commit(document)
        logger.info("Updated page %s", page.id)
        return page

    async def delete_page(self, page_id: str) -> bool:
        document = await self.cache.load_for_update()
        page = document.find_page(page_id)
        if page is None:
            return False

        document.pages = [p for p in document.pages if p.id != page_id]
        if page.parent_id:
            _detach_child(document.find_menu(page.parent_id), page_id)
        else:
            document.menus = [
                m
                for m in document.menus
                if not (m.id == page_id and m.type == "single")
            ]

        await self.cache.commit(document)
        logger.info("Deleted page %s", page_id)
        return True

    # ---------- menus ----------

    async def create_menu(self, data: MenuCreate) -> MenuNode:
        title = _require_title(data.title, "Menu")
        menu_id = (data.id or "").strip() or slugify(title)

        document = await self.cache.load_for_update()
        if document.find_menu(menu_id) is not None:
            raise ValidationError(f"Menu {menu_id!r} already exists")

        children = [
            child.model_copy(update={"parent_id": child.parent_id or menu_id})
            for child in data.children or []
        ]
        menu = MenuNode(
            id=menu_id,
            title=title,
            icon=data.icon or DEFAULT_ICON,
            type=data.type,
            children=children,
        )
        document.menus.append(menu)

        await self.cache.commit(document)
        logger.info("Created %s menu %s", menu.type, menu.id)
        return menu

    async def update_menu(self, menu_id: str, patch: MenuUpdate) -> MenuNode:
        changes = patch.model_dump(exclude_unset=True)
        if "title" in changes:
            _require_title(changes["title"], "Menu")

        document = await self.cache.load_for_update()
        index = next(
            (i for i, m in enumerate(document.menus) if m.id == menu_id), None
        )
        if index is None:
            raise NotFoundError(f"Menu {menu_id!r} not found")

        merged = document.menus[index].model_dump(by_alias=True, exclude_none=True)
        for field, value in changes.items():
            if value is None and field != "icon":
                continue
            if field == "children":
                value = [c.model_dump(by_alias=True) for c in patch.children or []]
            merged[field] = value
        merged["id"] = menu_id
        if merged.get("type") == "parent" and merged.get("children") is None:
            merged["children"] = []
        menu = MenuNode.model_validate(merged)
        document.menus[index] = menu

        await self.cache.commit(document)
        logger.info("Updated menu %s", menu_id)
        return menu

    async def delete_menu(self, menu_id: str) -> bool:
        """Delete a menu and every page under it or sharing its id."""
        document = await self.cache.load_for_update()
        doomed = {
            p.id for p in document.pages if p.parent_id == menu_id or p.id == menu_id
        }
        if document.find_menu(menu_id) is None and not doomed:
            return False

        document.pages = [p for p in document.pages if p.id not in doomed]
        document.menus = [m for m in document.menus if m.id != menu_id]
        for menu in document.menus:
            if menu.children:
                menu.children = [c for c in menu.children if c.id not in doomed]

        await self.cache.commit(document)
        logger.info("Deleted menu %s and %d pages", menu_id, len(doomed))
        return True

    # ---------- maintenance ----------

    async def prune_orphans(self) -> int:
        """Drop child entries that point at no page. Returns how many."""
        document = await self.cache.load_for_update()
        page_ids = {page.id for page in document.pages}
        removed = 0
        for menu in document.menus:
            if not menu.children:
                continue
            kept = [c for c in menu.children if c.id in page_ids]
            removed += len(menu.children) - len(kept)
            menu.children = kept
        if removed:
            await self.cache.commit(document)
            logger.info("Pruned %d orphan menu entries", removed)
        return removed
