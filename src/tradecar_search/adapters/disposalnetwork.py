"""Disposal Network adapter — filter UI plus search API capture.

The site only filters by make, range (model) and colour.  Its results
come from a ``POST /uk/micro/vehicles/Search`` call; the adapter records
those responses while it drives the filters and extracts from the last
one.  Mileage and age are applied here, client-side, from the JSON.
"""

from __future__ import annotations

from datetime import date
from typing import TYPE_CHECKING, Any

from tradecar_search.adapters.base import Listing, RefinementUnavailable, SourceAdapter
from tradecar_search.adapters.registry import AdapterRegistry
from tradecar_search.errors import ActionableError
from tradecar_search.logging import logger
from tradecar_search.text import collapse_whitespace, parse_amount, title_case_word

if TYPE_CHECKING:
    from collections.abc import Iterable

    from playwright.async_api import Page, Response

    from tradecar_search.adapters.base import Credentials, SearchCriteria

_BASE_URL = "https://disposalnetwork.1link.co.uk"
_LOGIN_URL = f"{_BASE_URL}/uk/tb/app/login"
_SEARCH_API = "/uk/micro/vehicles/Search"

_SELECTORS = {
    "username": 'input[placeholder="Username"]',
    "password": 'input[placeholder="Password"]',
    "make_header": 'label:has-text("Make")',
    "make_checkboxes": 'div.checkbox input[type="checkbox"]',
    "range_header": 'label:has-text("Range")',
    "range_checkboxes": ".rangeGroup__checkboxes .checkbox",
    "option_label": 'label:has-text("{text}")',
    "primary_search": ".primary-filter__search button",
    "filter_button": 'button[data-active="false"]:has-text("Filter")',
    "colour_header": '.accordion__header-label label:has-text("Colour")',
    "colour_label": 'label.checkbox__label:text-is("{colour}")',
    "close_button": 'button:has-text("Close")',
}


def age_in_years(registered: date, today: date) -> int:
    """Whole years since *registered*, counting by calendar month."""
    age = today.year - registered.year
    if registered.month > today.month:
        age -= 1
    return age


def _registration_date(value: Any) -> date | None:
    if not value or not isinstance(value, str):
        return None
    try:
        return date.fromisoformat(value[:10])
    except ValueError:
        return None


def matches_criteria(vehicle: dict[str, Any], criteria: SearchCriteria, today: date) -> bool:
    """Apply the mileage and age bounds the site cannot filter on.

    Vehicles without a registration date pass the age check.
    """
    mileage = parse_amount(vehicle.get("mileage"))
    if mileage is not None:
        if criteria.min_mileage is not None and mileage < criteria.min_mileage:
            return False
        if criteria.max_mileage is not None and mileage > criteria.max_mileage:
            return False

    registered = _registration_date(vehicle.get("dateOfRegistration"))
    if registered is not None:
        age = age_in_years(registered, today)
        if criteria.min_age is not None and age < criteria.min_age:
            return False
        if criteria.max_age is not None and age > criteria.max_age:
            return False
    return True


def vehicle_to_listing(vehicle: dict[str, Any]) -> Listing:
    title = collapse_whitespace(
        " ".join(str(vehicle.get(key) or "") for key in ("make", "model", "derivative"))
    )
    registered = _registration_date(vehicle.get("dateOfRegistration"))
    return Listing(
        url=f"{_BASE_URL}/uk/tb/app/vehicle/{vehicle.get('vehicleId', '')}",
        image_url=vehicle.get("thumbnail") or "",
        title=title,
        price=parse_amount(vehicle.get("buyNowPrice")),
        location=vehicle.get("vehicleLocationPostCode") or "",
        registration=vehicle.get("regNo") or "",
        source="disposalnetwork",
        make=vehicle.get("make"),
        model=vehicle.get("model"),
        year=registered.year if registered else None,
        mileage=parse_amount(vehicle.get("mileage")),
    )


def filter_vehicles(
    vehicles: Iterable[dict[str, Any]],
    criteria: SearchCriteria,
    today: date | None = None,
) -> list[Listing]:
    """Listings for the vehicles within the mileage and age bounds."""
    today = today or date.today()
    return [vehicle_to_listing(v) for v in vehicles if matches_criteria(v, criteria, today)]


@AdapterRegistry.register
class DisposalNetworkAdapter(SourceAdapter):
    """Browser automation adapter for Disposal Network (1link)."""

    def __init__(self) -> None:
        self._search_responses: list[Response] = []

    @property
    def source_name(self) -> str:
        return "disposalnetwork"

    async def authenticate(self, page: Page, credentials: Credentials) -> None:
        await page.goto(_LOGIN_URL, wait_until="networkidle")
        await page.fill(_SELECTORS["username"], credentials.username)
        await page.fill(_SELECTORS["password"], credentials.password)
        await page.get_by_role("button", name="Login").click()
        await page.wait_for_load_state("networkidle")
        if page.url.rstrip("/").endswith("/login"):
            raise ActionableError.authentication(
                self.source_name,
                "Login page still shown after submitting credentials",
            )
        logger.info("Disposal Network session established")

    def _record_response(self, response: Response) -> None:
        if (
            _SEARCH_API in response.url
            and response.request.method == "POST"
            and response.status == 200
        ):
            self._search_responses.append(response)

    async def apply_refinements(
        self,
        page: Page,
        criteria: SearchCriteria,
    ) -> RefinementUnavailable | None:
        page.on("response", self._record_response)

        await page.get_by_role("button", name="Search").click()
        await page.wait_for_load_state("networkidle")

        await page.locator(_SELECTORS["make_header"]).click()
        await page.wait_for_selector(_SELECTORS["make_checkboxes"])
        make_label = page.locator(_SELECTORS["option_label"].format(text=criteria.make.upper()))
        if not await make_label.count():
            return RefinementUnavailable(f"Make '{criteria.make}' not offered by Disposal Network")
        await make_label.first.check()

        await page.locator(_SELECTORS["range_header"]).click()
        await page.wait_for_selector(_SELECTORS["range_checkboxes"])
        model_label = page.locator(_SELECTORS["option_label"].format(text=criteria.model.upper()))
        if not await model_label.count():
            return RefinementUnavailable(f"Model '{criteria.model}' not offered by Disposal Network")
        await model_label.first.check()

        await page.locator(_SELECTORS["primary_search"], has_text="Search").click()
        await page.wait_for_load_state("networkidle")

        if criteria.color:
            await self._apply_colour(page, criteria.color)
        return None

    async def _apply_colour(self, page: Page, color: str) -> None:
        await page.click(_SELECTORS["filter_button"])
        await page.click(_SELECTORS["colour_header"])
        label = page.locator(_SELECTORS["colour_label"].format(colour=title_case_word(color)))
        if await label.count():
            await label.first.click()
            await page.wait_for_load_state("networkidle")
        else:
            logger.warning("Disposal Network: colour %s not offered, ignoring", color)
        await page.locator(_SELECTORS["close_button"]).first.click()

    async def extract_items(self, page: Page, criteria: SearchCriteria) -> list[Listing]:
        """Convert the last captured search response into listings.

        Raises:
            ActionableError: If no search response was captured or it
                has no ``vehicles`` array.
        """
        if not self._search_responses:
            raise ActionableError.extraction(
                self.source_name,
                "No vehicle search API response was captured",
                selector=_SEARCH_API,
            )
        data = await self._search_responses[-1].json()
        vehicles = data.get("vehicles") if isinstance(data, dict) else None
        if not isinstance(vehicles, list):
            raise ActionableError.extraction(
                self.source_name,
                "Search API response has no 'vehicles' list",
                selector=_SEARCH_API,
            )
        listings = filter_vehicles(vehicles, criteria)
        logger.debug(
            "Disposal Network: %d of %d vehicles within bounds", len(listings), len(vehicles)
        )
        return listings
