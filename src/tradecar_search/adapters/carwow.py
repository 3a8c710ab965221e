"""Carwow dealer adapter — UI-driven filters, card extraction.

Carwow has no stable search URL, so the adapter works its filter chips:
make, then model (single or a whole series), then age and mileage
dropdowns.  When the requested model is not among the model checkboxes
for that make, refinement returns :class:`RefinementUnavailable` and
the job ends empty rather than failed.
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

from tradecar_search.adapters.base import Listing, RefinementUnavailable, SourceAdapter
from tradecar_search.adapters.registry import AdapterRegistry
from tradecar_search.logging import logger
from tradecar_search.text import collapse_whitespace, parse_amount

if TYPE_CHECKING:
    from playwright.async_api import ElementHandle, Page

    from tradecar_search.adapters.base import Credentials, SearchCriteria

_BASE_URL = "https://dealers.carwow.co.uk"
_LOGIN_URL = "https://auth.carwow.co.uk/u/login"

_SELECTORS = {
    "username": "#username",
    "password": "#password",
    "listing_type_all": 'label[for="filters-modal-desktop-listing_type__all"]',
    "make_search": 'input[data-selling--filters-search-target="searchInput"][id="brand_slugs-search"]',
    "make_checkbox": 'input[type="checkbox"][name="brand_slugs[]"][value*="{slug}"]',
    "model_chip": 'button.chip[data-selling--filters-search-target="button"]:has-text("Model")',
    "model_search": 'input[data-selling--filters-search-target="searchInput"][id="ranges-search"]',
    "model_checkboxes": 'input[type="checkbox"][name="ranges[]"]',
    "model_checkbox": 'input[type="checkbox"][name="ranges[]"][value="{value}"]',
    "age_chip": 'button.chip:has-text("Age")',
    "mileage_chip": 'button.chip:has(span.chip__label:has-text("Mileage"))',
    "min_select": 'select{scope}[data-selling--range-select-target="minRangeSelect"]',
    "max_select": 'select{scope}[data-selling--range-select-target="maxRangeSelect"]',
    "card": 'div.listings__list-item[data-listings-target="listing"]',
    "card_link": "a.listing-card-component",
    "card_image": ".swiper-slide img",
    "card_title": ".listing-card-component__make_and_model",
    "card_price": ".listing-card-price-component__price",
    "card_registration": ".listing-card-license-plate-component__value",
    "card_location": ".listing-card-distance-component__value",
}

# Requested model -> comma-separated Carwow range values, per make
SERIES_MODELS: dict[str, dict[str, str]] = {
    "BMW": {"M SERIES": "M1,M2,M3,M4,M5,M6,M8"},
    "CITROEN": {"DS3 / DS3C": "DS3"},
    "VOLKSWAGEN": {"UP!": "UP"},
}

MILEAGE_STEP = 10_000
MILEAGE_MIN = 10_000
MILEAGE_MAX = 200_000
MAX_AGE_OPTION = 20

_SCROLL_STEP = 800
_SCROLL_PAUSE = 0.5


def resolve_models(make: str, model: str) -> list[str]:
    """Range values to tick for *model*.

    Series names expand to several values; everything else is a
    single-element list holding the model as requested.
    """
    group = SERIES_MODELS.get(make.strip().upper(), {}).get(model.strip().upper())
    if group is None:
        return [model]
    return [value.strip() for value in group.split(",")]


def best_model_match(wanted: str, available: list[str]) -> str | None:
    """Pick the checkbox value that best matches *wanted*.

    Exact (case-insensitive) first, else the shortest value containing
    it, which is usually the base model rather than a variant.
    """
    needle = wanted.strip().lower()
    candidates = [value for value in available if needle in value.lower()]
    if not candidates:
        return None
    candidates.sort(key=lambda value: (value.lower() != needle, len(value)))
    return candidates[0]


def make_slug(make: str) -> str:
    return make.strip().lower().replace(" ", "-")


def mileage_option(value: int | None) -> str | None:
    """Dropdown value for a mileage bound: rounded down to the nearest
    10,000 and only if the result is one of the offered options.
    """
    if not value:
        return None
    stepped = (value // MILEAGE_STEP) * MILEAGE_STEP
    if MILEAGE_MIN <= stepped <= MILEAGE_MAX:
        return str(stepped)
    return None


def age_option(value: int | None) -> str | None:
    if value and 0 < value <= MAX_AGE_OPTION:
        return str(value)
    return None


def first_line(text: str) -> str:
    """First non-blank line; plates carry extra lines such as "Private plate"."""
    for line in text.splitlines():
        if line.strip():
            return line.strip()
    return ""


def absolute_url(href: str | None) -> str:
    if not href:
        return ""
    return f"{_BASE_URL}{href}" if href.startswith("/") else href


async def _text(card: ElementHandle, selector: str) -> str:
    element = await card.query_selector(selector)
    if element is None:
        return ""
    return collapse_whitespace(await element.text_content())


@AdapterRegistry.register
class CarwowAdapter(SourceAdapter):
    """Browser automation adapter for the Carwow dealer marketplace."""

    @property
    def source_name(self) -> str:
        return "carwow"

    async def authenticate(self, page: Page, credentials: Credentials) -> None:
        await page.goto(_LOGIN_URL, wait_until="networkidle")
        await page.fill(_SELECTORS["username"], credentials.username)
        await page.fill(_SELECTORS["password"], credentials.password)
        await page.get_by_role("button", name="Continue").click()
        await page.wait_for_load_state("domcontentloaded")
        logger.info("Carwow login submitted, now at %s", page.url)

    async def apply_refinements(
        self,
        page: Page,
        criteria: SearchCriteria,
    ) -> RefinementUnavailable | None:
        """Drive the filter chips to match *criteria*.

        Returns:
            ``RefinementUnavailable`` when the make or model is not offered.
        """
        await page.wait_for_load_state("networkidle")

        listing_type = await page.query_selector(_SELECTORS["listing_type_all"])
        if listing_type is not None:
            await listing_type.click()

        if not await self._select_make(page, criteria.make):
            return RefinementUnavailable(f"Make '{criteria.make}' not offered by Carwow")

        await page.click(_SELECTORS["model_chip"])
        models = resolve_models(criteria.make, criteria.model)
        if len(models) > 1:
            selected = await self._select_series(page, models)
            if not selected:
                return RefinementUnavailable(f"No models of '{criteria.model}' offered by Carwow")
        else:
            await page.fill(_SELECTORS["model_search"], models[0])
            if not await self._select_model(page, models[0]):
                return RefinementUnavailable(f"Model '{criteria.model}' not offered by Carwow")
            await page.click(_SELECTORS["model_chip"])

        await self._apply_age(page, criteria)
        await self._apply_mileage(page, criteria)

        await page.wait_for_load_state("networkidle")
        await self._scroll_to_bottom(page)
        return None

    async def _select_make(self, page: Page, make: str) -> bool:
        make_button = page.get_by_role("button", name="Make")
        if not await make_button.is_visible():
            return False
        await make_button.click()
        await page.fill(_SELECTORS["make_search"], make)
        checkbox = await page.query_selector(_SELECTORS["make_checkbox"].format(slug=make_slug(make)))
        if checkbox is None or not await checkbox.is_visible():
            return False
        await checkbox.check()
        await page.wait_for_selector(_SELECTORS["model_chip"], timeout=10_000)
        return True

    async def _select_series(self, page: Page, models: list[str]) -> list[str]:
        selected: list[str] = []
        for value in models:
            checkbox = page.locator(_SELECTORS["model_checkbox"].format(value=value)).first
            if await checkbox.is_visible():
                await checkbox.check()
                selected.append(value)
            else:
                logger.debug("Carwow: series member %s not offered", value)
        logger.info("Carwow: selected %d/%d series models", len(selected), len(models))
        return selected

    async def _select_model(self, page: Page, model: str) -> bool:
        available: list[str] = []
        for checkbox in await page.query_selector_all(_SELECTORS["model_checkboxes"]):
            value = await checkbox.get_attribute("value")
            if value:
                available.append(value)

        match = best_model_match(model, available)
        if match is None:
            logger.info("Carwow: model %s not in %s", model, available)
            return False
        checkbox = page.locator(_SELECTORS["model_checkbox"].format(value=match)).first
        if not await checkbox.is_visible():
            return False
        await checkbox.check()
        logger.info("Carwow: selected model %s for %s", match, model)
        return True

    async def _apply_age(self, page: Page, criteria: SearchCriteria) -> None:
        if not (criteria.min_age or criteria.max_age):
            return
        low, high = age_option(criteria.min_age), age_option(criteria.max_age)
        await page.click(_SELECTORS["age_chip"])
        if low:
            await page.select_option(_SELECTORS["min_select"].format(scope=""), low)
        if high:
            await page.select_option(_SELECTORS["max_select"].format(scope=""), high)

    async def _apply_mileage(self, page: Page, criteria: SearchCriteria) -> None:
        if not (criteria.min_mileage or criteria.max_mileage):
            return
        await page.click(_SELECTORS["mileage_chip"])
        scope = '[name="mileage[]"]'
        min_select = _SELECTORS["min_select"].format(scope=scope)
        max_select = _SELECTORS["max_select"].format(scope=scope)
        await page.wait_for_selector(min_select)
        await page.wait_for_selector(max_select)

        low, high = mileage_option(criteria.min_mileage), mileage_option(criteria.max_mileage)
        if low:
            await page.select_option(min_select, value=low)
        if high:
            await page.select_option(max_select, value=high)

    @staticmethod
    async def _scroll_to_bottom(page: Page) -> None:
        """Scroll in steps so lazily loaded cards render."""
        while True:
            at_bottom = await page.evaluate(
                "(step) => { window.scrollBy(0, step);"
                " return window.innerHeight + window.scrollY >= document.body.scrollHeight; }",
                _SCROLL_STEP,
            )
            if at_bottom:
                break
            await asyncio.sleep(_SCROLL_PAUSE)
        await page.wait_for_load_state("networkidle")

    async def extract_items(self, page: Page, criteria: SearchCriteria) -> list[Listing]:
        listings: list[Listing] = []
        for card in await page.query_selector_all(_SELECTORS["card"]):
            try:
                listing = await self._card_to_listing(card)
            except Exception as exc:
                logger.warning("Carwow: skipping a card: %s", exc)
                continue
            listings.append(listing)
        return listings

    async def _card_to_listing(self, card: ElementHandle) -> Listing:
        link = await card.query_selector(_SELECTORS["card_link"])
        href = await link.get_attribute("href") if link else None
        image = await card.query_selector(_SELECTORS["card_image"])
        image_url = (await image.get_attribute("src") or "") if image else ""
        plate = await card.query_selector(_SELECTORS["card_registration"])
        plate_text = (await plate.text_content() or "") if plate else ""
        return Listing(
            url=absolute_url(href),
            image_url=image_url,
            title=await _text(card, _SELECTORS["card_title"]),
            price=parse_amount(await _text(card, _SELECTORS["card_price"])),
            location=await _text(card, _SELECTORS["card_location"]),
            registration=first_line(plate_text),
            source=self.source_name,
        )
