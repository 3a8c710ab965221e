"""CarToTrade adapter — make checkbox, range sliders, refine panel.

The vehicles-offered page filters with a make checkbox and three
noUiSlider ranges (price, mileage, age) that are set through the
slider's JavaScript API.  Model and colour live in a second "refine"
panel; the model is a ``<select>`` whose option text must contain the
requested model.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from tradecar_search.adapters.base import Listing, RefinementUnavailable, SourceAdapter
from tradecar_search.adapters.registry import AdapterRegistry
from tradecar_search.errors import ActionableError
from tradecar_search.logging import logger
from tradecar_search.text import collapse_whitespace, parse_amount

if TYPE_CHECKING:
    from playwright.async_api import ElementHandle, Page

    from tradecar_search.adapters.base import Credentials, SearchCriteria

_BASE_URL = "https://www.cartotrade.com"
_LOGIN_URL = f"{_BASE_URL}/Account/Login?ReturnUrl=%2FHome%2FVehiclesOffered"

_SELECTORS = {
    "username": "#Username",
    "password": "#Password",
    "login_button": 'button:has-text("Login")',
    "account_picker": "a.user-select",
    "make_checkbox": (
        'xpath=//input[@type="hidden" and contains(@id, "capMan_name")'
        ' and contains(@value, "{make}")]/parent::li//input[@type="checkbox"]'
    ),
    "search_button": 'button:has-text("Search")',
    "refine_toggle": "#toggleRefine",
    "model_select": "#vehicleRangeId",
    "keyword": "#keyWordSearch",
    "refine_search": "button.btnSubmit.radius.expand",
    "card": ".panel",
    "card_link": "h2.title a",
    "card_image": "img",
    "card_price": ".column.medium-2 span.bold",
    "card_price_fallback": ".column.medium-2",
    "card_location": "dd.bold span",
    "card_registration": 'input[name="vrmReg"]',
}

# slider id -> (criteria low field, criteria high field, default low, default high)
SLIDERS: dict[str, tuple[str, str, int, int]] = {
    "#range-noui-slider-price": ("min_price", "max_price", 0, 100_000),
    "#range-noui-slider-mileage": ("min_mileage", "max_mileage", 0, 100_000),
    "#range-noui-slider-age": ("min_age", "max_age", 0, 25),
}

_SET_SLIDER_JS = """([selector, low, high]) => {
    const el = document.querySelector(selector);
    if (!el || !el.noUiSlider) return false;
    el.noUiSlider.set([low, high]);
    return true;
}"""


def slider_values(criteria: SearchCriteria) -> dict[str, tuple[int, int]]:
    """Slider selector -> ``(low, high)``; unset bounds take the slider's full range."""
    values: dict[str, tuple[int, int]] = {}
    for selector, (low_field, high_field, default_low, default_high) in SLIDERS.items():
        low = getattr(criteria, low_field)
        high = getattr(criteria, high_field)
        values[selector] = (
            low if low else default_low,
            high if high else default_high,
        )
    return values


def match_model_option(model: str, options: list[tuple[str, str]]) -> str | None:
    """Value of the first ``(value, text)`` option whose text contains *model*."""
    needle = model.strip().upper()
    for value, text in options:
        if text and needle in text.upper():
            return value
    return None


def absolute_url(href: str | None) -> str:
    if not href:
        return ""
    href = href.strip()
    return f"{_BASE_URL}{href}" if href.startswith("/") else href


@AdapterRegistry.register
class CarToTradeAdapter(SourceAdapter):
    """Browser automation adapter for CarToTrade."""

    @property
    def source_name(self) -> str:
        return "cartotrade"

    async def authenticate(self, page: Page, credentials: Credentials) -> None:
        """Log in and pick the trading account when an account picker is shown."""
        await page.goto(_LOGIN_URL, wait_until="networkidle")
        await page.fill(_SELECTORS["username"], credentials.username)
        await page.fill(_SELECTORS["password"], credentials.password)
        await page.click(_SELECTORS["login_button"])
        await page.wait_for_load_state("networkidle")

        if "/Account/Login" in page.url:
            raise ActionableError.authentication(
                self.source_name,
                "Login page still shown after submitting credentials",
            )

        picker = page.locator(_SELECTORS["account_picker"]).first
        if await picker.count():
            await picker.click()
            await page.wait_for_load_state("networkidle")
        logger.info("CarToTrade session established")

    async def apply_refinements(
        self,
        page: Page,
        criteria: SearchCriteria,
    ) -> RefinementUnavailable | None:
        make = criteria.make.strip().upper()
        checkbox = page.locator(_SELECTORS["make_checkbox"].format(make=make))
        if not await checkbox.count():
            return RefinementUnavailable(f"Make '{criteria.make}' not offered by CarToTrade")
        await checkbox.first.check()

        for selector, (low, high) in slider_values(criteria).items():
            applied = await page.evaluate(_SET_SLIDER_JS, [selector, low, high])
            if not applied:
                raise ActionableError.extraction(
                    self.source_name,
                    "noUiSlider API not found",
                    selector=selector,
                )

        await page.click(_SELECTORS["search_button"])
        await page.wait_for_load_state("domcontentloaded")

        await page.click(_SELECTORS["refine_toggle"])
        options = await page.eval_on_selector_all(
            f"{_SELECTORS['model_select']} option",
            "opts => opts.map(o => [o.value, (o.textContent || '').trim()])",
        )
        match = match_model_option(criteria.model, [(value, text) for value, text in options])
        if match is None:
            return RefinementUnavailable(f"Model '{criteria.model}' not offered by CarToTrade")
        await page.select_option(_SELECTORS["model_select"], value=match)

        if criteria.color:
            await page.fill(_SELECTORS["keyword"], criteria.color)

        await page.locator(_SELECTORS["refine_search"], has_text="Search").first.click()
        await page.wait_for_load_state("domcontentloaded")
        logger.debug("CarToTrade filters applied, now at %s", page.url)
        return None

    async def extract_items(self, page: Page, criteria: SearchCriteria) -> list[Listing]:
        """Read every result panel; panels without a title link are not listings."""
        listings: list[Listing] = []
        for card in await page.query_selector_all(_SELECTORS["card"]):
            try:
                listing = await self._card_to_listing(card)
            except Exception as exc:
                logger.warning("CarToTrade: skipping a card: %s", exc)
                continue
            if listing is not None:
                listings.append(listing)
        return listings

    async def _card_to_listing(self, card: ElementHandle) -> Listing | None:
        link = await card.query_selector(_SELECTORS["card_link"])
        if link is None:
            return None

        image = await card.query_selector(_SELECTORS["card_image"])
        image_url = ((await image.get_attribute("src")) or "").strip() if image else ""

        price_el = await card.query_selector(_SELECTORS["card_price"]) or await card.query_selector(
            _SELECTORS["card_price_fallback"]
        )
        price_text = await price_el.text_content() if price_el else None

        location_el = await card.query_selector(_SELECTORS["card_location"])
        reg_el = await card.query_selector(_SELECTORS["card_registration"])

        return Listing(
            url=absolute_url(await link.get_attribute("href")),
            image_url=image_url,
            title=collapse_whitespace(await link.text_content()),
            price=parse_amount(price_text),
            location=collapse_whitespace(await location_el.text_content()) if location_el else "",
            registration=((await reg_el.get_attribute("value")) or "") if reg_el else "",
            source=self.source_name,
        )
