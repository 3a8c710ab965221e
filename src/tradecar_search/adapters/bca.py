"""BCA adapter — ``bq`` query URL, search API capture, pagination.

BCA's results page is a SPA that renders from ``/search/api/search``.
Rather than scraping the DOM, the adapter loads each results page and
reads the JSON body of that API call, following ``numberOfPages``.

The whole search lives in one ``bq`` parameter: ``|``-separated
``Facet:value`` terms.  Facet values must match BCA's own filter labels
exactly (``Make:MERCEDES-BENZ``, ``ModelGroup:Focus Range``), hence the
lookup tables below.
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, Any
from urllib.parse import urlencode

from tradecar_search.adapters.base import Listing, SourceAdapter
from tradecar_search.adapters.registry import AdapterRegistry
from tradecar_search.errors import ActionableError
from tradecar_search.logging import logger
from tradecar_search.text import parse_amount, title_case_word

if TYPE_CHECKING:
    from playwright.async_api import Page, Response

    from tradecar_search.adapters.base import Credentials, SearchCriteria

_BASE_URL = "https://www.bca.co.uk"
_LOGIN_URL = "https://login.bca.co.uk/login"
_SEARCH_API = "/search/api/search"

_SELECTORS = {
    "username": "#usernameInput",
    "password": "#password\\ form-control__input",
    "login_button": "#loginBtn",
    "cookie_buttons": 'button:has-text("Accept"), button:has-text("Reject All")',
}

# Upper bound BCA uses for an open-ended numeric range
_OPEN_MAX = 9_000_000

_PAGE_DELAY = 1.0

_MAKE_ALIASES: dict[str, str] = {
    "MERCEDES": "MERCEDES-BENZ",
}

# BCA make -> requested model (uppercase) -> ModelGroup facet label
MODEL_GROUPS: dict[str, dict[str, str]] = {
    "FORD": {
        "FOCUS": "Focus Range",
        "FIESTA": "Fiesta Range",
        "KUGA": "Kuga Range",
        "TRANSIT": "Transit Range",
    },
    "VAUXHALL": {
        "ASTRA": "Astra Range",
        "CORSA": "Corsa Range",
    },
    "VOLKSWAGEN": {
        "GOLF": "Golf Range",
        "POLO": "Polo Range",
    },
    "MERCEDES-BENZ": {
        "A CLASS": "A Class",
        "C CLASS": "C Class",
    },
}

# (label, years) in ascending order; 99YEAR stands for "older than 10 years"
AGE_BANDS: tuple[tuple[str, int], ...] = (
    ("0MONTH", 0),
    ("12MONTH", 1),
    ("2YEAR", 2),
    ("3YEAR", 3),
    ("4YEAR", 4),
    ("5YEAR", 5),
    ("6YEAR", 6),
    ("7YEAR", 7),
    ("8YEAR", 8),
    ("9YEAR", 9),
    ("10YEAR", 10),
    ("99YEAR", 99),
)


def bca_make(make: str) -> str:
    """BCA's spelling of *make* (uppercase, aliases applied)."""
    upper = make.strip().upper()
    return _MAKE_ALIASES.get(upper, upper)


def model_group(make: str, model: str) -> str:
    """ModelGroup facet label for *model*, or the model as given."""
    return MODEL_GROUPS.get(bca_make(make), {}).get(model.strip().upper(), model)


def lower_age_band(years: int) -> str:
    """Largest band whose age does not exceed *years*."""
    for label, band_years in reversed(AGE_BANDS):
        if years >= band_years:
            return label
    return AGE_BANDS[0][0]


def upper_age_band(years: int) -> str:
    """Smallest band whose age is at least *years*."""
    if years > 10:
        return "99YEAR"
    for label, band_years in AGE_BANDS:
        if years <= band_years:
            return label
    return "99YEAR"


def _range_term(facet: str, low: int | None, high: int | None) -> str | None:
    if low is None and high is None:
        return None
    return f"{facet}:{low or 0}..{high if high is not None else _OPEN_MAX}"


def _age_term(min_age: int | None, max_age: int | None) -> str | None:
    if min_age is None and max_age is None:
        return None
    low = lower_age_band(min_age) if min_age is not None else "0MONTH"
    high = upper_age_band(max_age) if max_age is not None else "99YEAR"
    return f"DateRegistered:{low}..{high}"


def build_bq(criteria: SearchCriteria) -> str:
    """Return the ``bq`` facet expression for *criteria*."""
    terms = [
        "VehicleType:Cars",
        f"Make:{bca_make(criteria.make)}",
        f"ModelGroup:{model_group(criteria.make, criteria.model)}",
        f"ColourGeneric:{title_case_word(criteria.color)}" if criteria.color else None,
        _range_term("CapCleanPrice", criteria.min_price, criteria.max_price),
        _range_term("Mileage", criteria.min_mileage, criteria.max_mileage),
        _age_term(criteria.min_age, criteria.max_age),
    ]
    return "|".join(term for term in terms if term)


def build_search_url(criteria: SearchCriteria) -> str:
    return f"{_BASE_URL}/search?{urlencode({'q': '', 'bq': build_bq(criteria)})}"


def lot_url(vrm: str) -> str:
    """Lot page URL for a registration (``AB12 CDE`` -> ``/lot/AB12%20CDE``)."""
    compact = "".join(vrm.split())
    if not compact:
        return ""
    return f"{_BASE_URL}/lot/{compact[:4]}%20{compact[-3:]}"


def item_to_listing(item: dict[str, Any]) -> Listing:
    """Convert one ``/search/api/search`` item into a :class:`Listing`."""
    images = item.get("images") or []
    image_url = images[0].get("imageURI", "") if images and isinstance(images[0], dict) else ""
    vrm = item.get("vrm") or ""
    return Listing(
        url=lot_url(vrm),
        image_url=image_url,
        title=item.get("primaryVehicleDescription") or "",
        price=parse_amount(item.get("capCleanPrice")),
        location=item.get("localSaleLocation") or "",
        registration=vrm,
        source="bca",
        mileage=parse_amount(item.get("mileage")),
    )


def _is_search_response(response: Response) -> bool:
    return _SEARCH_API in response.url and response.status == 200


@AdapterRegistry.register
class BcaAdapter(SourceAdapter):
    """Browser automation adapter for BCA (British Car Auctions)."""

    @property
    def source_name(self) -> str:
        return "bca"

    @property
    def supports_query_url(self) -> bool:
        return True

    async def authenticate(self, page: Page, credentials: Credentials) -> None:
        """Two-step login: username, *Continue*, then password.

        Cookie banners are dismissed between the steps when present.
        """
        await page.goto(_LOGIN_URL, wait_until="domcontentloaded")
        await page.fill(_SELECTORS["username"], credentials.username)

        banner = page.locator(_SELECTORS["cookie_buttons"]).first
        if await banner.is_visible():
            await banner.click()

        await page.get_by_role("button", name="Continue").click()
        await page.wait_for_load_state("domcontentloaded")
        await page.fill(_SELECTORS["password"], credentials.password)
        await page.click(_SELECTORS["login_button"])
        await page.wait_for_load_state("domcontentloaded")

        if "login.bca.co.uk" in page.url and await page.locator(_SELECTORS["login_button"]).count():
            raise ActionableError.authentication(
                self.source_name,
                "Login form still present after submitting the password",
            )
        logger.info("BCA session established")

    def build_query(self, criteria: SearchCriteria) -> str:
        return build_search_url(criteria)

    async def extract_items(self, page: Page, criteria: SearchCriteria) -> list[Listing]:
        """Page through the search API and convert every item.

        Page 1 is the page the runner already navigated to, reloaded so
        its API call can be captured.  Stops at ``numberOfPages`` or the
        first empty page.
        """
        search_url = build_search_url(criteria)
        listings: list[Listing] = []
        page_num = 1

        while True:
            data = await self._fetch_page(page, search_url, page_num)
            items = data.get("items") or []
            if not items:
                break
            listings.extend(item_to_listing(item) for item in items)

            total_pages = int(data.get("numberOfPages") or 0)
            logger.debug("BCA page %d/%d: %d items", page_num, total_pages, len(items))
            if page_num >= total_pages:
                break
            page_num += 1
            await asyncio.sleep(_PAGE_DELAY)

        return listings

    async def _fetch_page(self, page: Page, search_url: str, page_num: int) -> dict[str, Any]:
        async with page.expect_response(_is_search_response) as response_info:
            if page_num == 1:
                await page.reload(wait_until="domcontentloaded")
            else:
                await page.goto(f"{search_url}&page={page_num}", wait_until="domcontentloaded")
        response = await response_info.value
        try:
            data = await response.json()
        except Exception as exc:
            raise ActionableError.extraction(
                self.source_name,
                f"Search API returned a non-JSON body: {exc}",
                selector=_SEARCH_API,
            ) from exc
        if not isinstance(data, dict):
            raise ActionableError.extraction(
                self.source_name,
                f"Unexpected search API payload: {type(data).__name__}",
                selector=_SEARCH_API,
            )
        return data
