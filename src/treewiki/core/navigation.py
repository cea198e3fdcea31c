"""Navigation state machine.

Decides which page is shown from the loaded tree, the address fragment
(the URL hash, without the leading ``#``) and user gestures, and keeps the
fragment and the shown page in step.
"""

import logging
from urllib.parse import quote, unquote

from pydantic import BaseModel, Field

from treewiki.core.auth import AdminAuth
from treewiki.core.models import MenuNode, Page
from treewiki.core.tree import TreeEngine, derive_menus

logger = logging.getLogger(__name__)

ADMIN_FRAGMENT = "admin"


class NavigationState(BaseModel):
    """What the browser is currently showing."""

    active_page_id: str | None = None
    expanded_menu_id: str | None = None
    admin_mode: bool = False
    is_authenticated: bool = False


class SearchHit(BaseModel):
    """A child page matching a sidebar search."""

    id: str
    title: str
    type: str = "page"
    parent_id: str
    parent_title: str


class SearchResults(BaseModel):
    menus: list[MenuNode] = Field(default_factory=list)
    hits: list[SearchHit] = Field(default_factory=list)


def first_navigable_page(menus: list[MenuNode], pages: list[Page]) -> Page | None:
    """Pick the page shown when nothing else is requested.

    The first child of the first menu if it is a parent, its own page if it
    is a single menu, otherwise the first page.
    """
    if not pages:
        return None
    by_id = {page.id: page for page in pages}
    target_id = None
    if menus:
        first = menus[0]
        if first.is_parent and first.children:
            target_id = first.children[0].id
        elif first.type == "single":
            target_id = first.id
    return by_id.get(target_id) or pages[0]


def search_menus(menus: list[MenuNode], query: str) -> SearchResults:
    """Case-insensitive substring search over menu and child titles.

    A menu is kept when its title matches or one of its children does; kept
    menus only list their matching children. The tree is not modified.
    """
    needle = query.strip().lower()
    if not needle:
        return SearchResults(menus=[m.model_copy(deep=True) for m in menus])

    results = SearchResults()
    for menu in menus:
        matching = [c for c in menu.children or [] if needle in c.title.lower()]
        for child in matching:
            results.hits.append(
                SearchHit(
                    id=child.id,
                    title=child.title,
                    parent_id=menu.id,
                    parent_title=menu.title,
                )
            )
        if needle in menu.title.lower() or matching:
            results.menus.append(
                menu.model_copy(
                    deep=True,
                    update={"children": [c.model_copy() for c in matching]},
                )
            )
    return results


class Navigator:
    """Client navigation over a tree engine.

    ``fragment`` mirrors the address fragment; it is stored percent-encoded
    the way a browser shows it.
    """

    def __init__(self, engine: TreeEngine, auth: AdminAuth) -> None:
        self.engine = engine
        self.auth = auth
        self.state = NavigationState()
        self.menus: list[MenuNode] = []
        self.pages: list[Page] = []
        self.fragment: str = ""
        self.load_error: str | None = None

    @property
    def active_page(self) -> Page | None:
        return self._find_page(self.state.active_page_id)

    def _find_page(self, page_id: str | None) -> Page | None:
        if page_id is None:
            return None
        for page in self.pages:
            if page.id == page_id:
                return page
        return None

    def _show(self, page: Page | None) -> None:
        self.state.active_page_id = page.id if page else None
        self.fragment = quote(page.id, safe="") if page else ""

    async def reload(self, fresh: bool = True) -> None:
        """Refetch menus and pages; a failed load leaves both empty."""
        if fresh:
            self.engine.cache.invalidate()
        document = await self.engine.cache.read()
        self.menus = derive_menus(document)
        self.pages = [page.model_copy(deep=True) for page in document.pages]
        if self.engine.cache.degraded:
            self.load_error = self.engine.cache.last_error
        else:
            self.load_error = None
        logger.debug("Loaded %d menus, %d pages", len(self.menus), len(self.pages))

    def select_first_page(self) -> Page | None:
        page = first_navigable_page(self.menus, self.pages)
        self._show(page)
        return page

    def resolve_fragment(self, fragment: str) -> Page | None:
        """Find the page named by a fragment, decoded or raw."""
        raw = fragment.removeprefix("#")
        return self._find_page(unquote(raw)) or self._find_page(raw)

    async def initial_load(self, fragment: str = "") -> None:
        self.state.is_authenticated = self.auth.is_authenticated()
        await self.reload()
        await self._apply_fragment(fragment)

    async def on_fragment_change(self, fragment: str) -> None:
        """Handle back/forward or a typed address."""
        await self._apply_fragment(fragment)

    async def _apply_fragment(self, fragment: str) -> None:
        raw = fragment.removeprefix("#")
        if unquote(raw) == ADMIN_FRAGMENT:
            self.fragment = ADMIN_FRAGMENT
            self.state.admin_mode = True
            self.state.active_page_id = None
            return

        if self.state.admin_mode:
            self.state.admin_mode = False
            await self.reload()

        if raw:
            self.fragment = raw
            page = self.resolve_fragment(raw)
            self.state.active_page_id = page.id if page else None
        else:
            self.select_first_page()

    def toggle_menu(self, menu_id: str) -> None:
        """Accordion: at most one parent menu is expanded."""
        if self.state.expanded_menu_id == menu_id:
            self.state.expanded_menu_id = None
        else:
            self.state.expanded_menu_id = menu_id

    async def click_menu(self, menu_id: str) -> bool:
        """Expand a parent menu, or open the page of a single one."""
        menu = next((m for m in self.menus if m.id == menu_id), None)
        if menu is not None and menu.is_parent:
            self.toggle_menu(menu_id)
            return False
        return await self.navigate_to(menu_id)

    async def navigate_to(self, page_id: str) -> bool:
        """Show ``page_id``, fetching it once if it isn't loaded yet."""
        page = self._find_page(page_id)
        if page is None:
            self.engine.cache.invalidate()
            fetched = await self.engine.get_page_by_id(page_id)
            if fetched is not None:
                await self.reload(fresh=False)
                page = self._find_page(page_id) or fetched
        if page is None:
            logger.warning("Page not found: %s", page_id)
            return False
        self._show(page)
        return True

    def search(self, query: str) -> SearchResults:
        return search_menus(self.menus, query)

    async def open_search_hit(self, hit_id: str) -> bool:
        return await self.navigate_to(hit_id)

    def login(self, username: str, password: str) -> bool:
        self.state.is_authenticated = self.auth.login(username, password)
        return self.state.is_authenticated

    async def logout(self) -> None:
        self.auth.logout()
        self.state.is_authenticated = False
        await self._apply_fragment("")

    async def close_admin(self) -> None:
        self.state.admin_mode = False
        await self.reload()
        self.select_first_page()

    async def data_changed(self) -> None:
        """Reload after an admin edit, keeping the shown page if it survives."""
        await self.reload()
        if self.state.admin_mode:
            return
        if self._find_page(self.state.active_page_id) is None:
            self.select_first_page()
