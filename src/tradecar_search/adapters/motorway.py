"""Motorway Pro adapter — URL-driven search, card extraction.

Motorway encodes the whole search in the ``/vehicles`` query string, so
this adapter declares ``supports_query_url`` and never touches the
filter UI.  Make is sent lowercase and model uppercase, which is what
the site's own filter links use.
"""

from __future__ import annotations

from typing import TYPE_CHECKING
from urllib.parse import urlencode

from tradecar_search.adapters.base import Listing, SourceAdapter
from tradecar_search.adapters.registry import AdapterRegistry
from tradecar_search.errors import ActionableError
from tradecar_search.logging import logger
from tradecar_search.text import collapse_whitespace, parse_amount

if TYPE_CHECKING:
    from playwright.async_api import ElementHandle, Page

    from tradecar_search.adapters.base import Credentials, SearchCriteria

_BASE_URL = "https://pro.motorway.co.uk"
_LOGIN_URL = f"{_BASE_URL}/signin"

_SELECTORS = {
    "username": "#username",
    "password": "#password",
    "card": 'a[id^="vehicle_card_"]',
    "image": "img[class*='vehicleListCardImage']",
    "title": "section[class*='vehicleInfoBar'] h4",
    "price": "[class*='VehiclePrice_price']",
    "registration": "[class*='VRM_vrm']",
    "badges": "[class*='IconText_iconText']",
}

# criteria field -> query parameter
_RANGE_PARAMS = (
    ("min_price", "displayPriceFrom"),
    ("max_price", "displayPriceTo"),
    ("min_mileage", "mileageFrom"),
    ("max_mileage", "mileageTo"),
    ("min_age", "ageFrom"),
    ("max_age", "ageTo"),
)


def build_search_url(criteria: SearchCriteria) -> str:
    """Return the Motorway results URL for *criteria*.

    Make is lowercased and model uppercased; only set bounds are sent, so
    Ford Focus under 9000 becomes
    ``https://pro.motorway.co.uk/vehicles?make=ford&model=FOCUS&displayPriceTo=9000``.
    """
    params: list[tuple[str, str]] = [
        ("make", criteria.make.lower()),
        ("model", criteria.model.upper()),
    ]
    for field_name, param in _RANGE_PARAMS:
        value = getattr(criteria, field_name)
        if value is not None:
            params.append((param, str(value)))
    return f"{_BASE_URL}/vehicles?{urlencode(params)}"


def absolute_url(href: str | None) -> str:
    """Resolve a card ``href`` against the Motorway host."""
    if not href:
        return ""
    return f"{_BASE_URL}{href}" if href.startswith("/") else href


async def _text(card: ElementHandle, selector: str) -> str:
    element = await card.query_selector(selector)
    if element is None:
        return ""
    return collapse_whitespace(await element.text_content())


@AdapterRegistry.register
class MotorwayAdapter(SourceAdapter):
    """Browser automation adapter for Motorway Pro (dealer marketplace)."""

    @property
    def source_name(self) -> str:
        return "motorway"

    @property
    def supports_query_url(self) -> bool:
        return True

    async def authenticate(self, page: Page, credentials: Credentials) -> None:
        """Sign in and wait for the redirect to the vehicles area.

        Raises:
            ActionableError: If the sign-in form is still showing afterwards.
        """
        await page.goto(_LOGIN_URL, wait_until="domcontentloaded")
        await page.fill(_SELECTORS["username"], credentials.username)
        await page.fill(_SELECTORS["password"], credentials.password)
        await page.get_by_role("button", name="Sign in").click()
        try:
            await page.wait_for_url("**/vehicles*", timeout=15_000)
        except Exception:
            logger.warning("Motorway: no redirect after sign-in, at %s", page.url)

        if "/signin" in page.url:
            raise ActionableError.authentication(
                self.source_name,
                "Still on the sign-in page after submitting credentials",
            )
        logger.info("Motorway session established")

    def build_query(self, criteria: SearchCriteria) -> str:
        return build_search_url(criteria)

    async def extract_items(self, page: Page, criteria: SearchCriteria) -> list[Listing]:
        """Read every vehicle card on the results page.

        A card missing its title is skipped; other fields degrade to
        empty strings.
        """
        try:
            await page.wait_for_selector(_SELECTORS["card"], timeout=10_000)
        except Exception:
            logger.info("Motorway: no vehicle cards for %s %s", criteria.make, criteria.model)
            return []

        listings: list[Listing] = []
        for card in await page.query_selector_all(_SELECTORS["card"]):
            try:
                listing = await self._card_to_listing(card)
            except Exception as exc:
                logger.warning("Motorway: skipping a card: %s", exc)
                continue
            if listing is not None:
                listings.append(listing)
        return listings

    async def _card_to_listing(self, card: ElementHandle) -> Listing | None:
        title = await _text(card, _SELECTORS["title"])
        if not title:
            return None

        image = await card.query_selector(_SELECTORS["image"])
        image_url = (await image.get_attribute("src") or "") if image else ""

        location = ""
        for badge in await card.query_selector_all(_SELECTORS["badges"]):
            text = collapse_whitespace(await badge.text_content())
            if "mi away" in text:
                location = text
                break

        return Listing(
            url=absolute_url(await card.get_attribute("href")),
            image_url=image_url,
            title=title,
            price=parse_amount(await _text(card, _SELECTORS["price"])),
            location=location,
            registration=await _text(card, _SELECTORS["registration"]),
            source=self.source_name,
        )
