"""Search criteria and listing contract tests.

Maps to BDD spec: TestCriteriaValidation, TestListingSerialisation
"""

from __future__ import annotations

import dataclasses
from datetime import datetime, timezone

import pytest

from tradecar_search.adapters.base import Listing, SearchCriteria
from tradecar_search.errors import ActionableError, ErrorType


class TestCriteriaFromDict:
    """REQUIREMENT: Request bodies become SearchCriteria regardless of key style.

    WHO: The HTTP transport and any caller holding a plain dict
    WHAT: snake_case keys map directly; camelCase keys used by existing
          front ends (minPrice, maxMileage, colour ...) are aliased;
          unknown keys and null values are ignored
    WHY: Front ends written against the old API must keep working
    """

    def test_camel_case_keys_are_aliased(self) -> None:
        """minPrice/maxMileage/colour/vatQualifying land on the snake_case fields."""
        criteria = SearchCriteria.from_dict(
            {
                "make": "FORD",
                "model": "FOCUS",
                "minPrice": 1000,
                "maxMileage": 80000,
                "colour": "silver",
                "vatQualifying": True,
            }
        )
        assert criteria.min_price == 1000
        assert criteria.max_mileage == 80000
        assert criteria.color == "silver"
        assert criteria.vat_qualifying is True

    def test_unknown_keys_and_nulls_are_ignored(self) -> None:
        """Extra keys do not raise; null bounds stay unset."""
        criteria = SearchCriteria.from_dict(
            {"make": "FORD", "model": "FOCUS", "sortBy": "price", "maxPrice": None}
        )
        assert criteria.max_price is None

    def test_missing_make_and_model_default_to_blank(self) -> None:
        """Construction succeeds; validation is what rejects the blanks."""
        criteria = SearchCriteria.from_dict({})
        assert criteria.make == ""
        with pytest.raises(ActionableError):
            criteria.validate()


class TestCriteriaValidation:
    """REQUIREMENT: Malformed criteria are rejected before any job starts.

    WHO: The orchestrator, at the top of every run
    WHAT: make and model must be non-blank strings; bounds must be
          whole numbers >= 0; a minimum above its maximum is rejected;
          valid criteria are returned unchanged
    WHY: Criteria errors are the only errors allowed to abort a run,
         and they must do so before a browser is touched
    """

    def test_valid_criteria_returns_self(self) -> None:
        """validate() returns the same object so calls can be chained."""
        criteria = SearchCriteria(make="FORD", model="FOCUS", min_price=0, max_price=9000)
        assert criteria.validate() is criteria

    @pytest.mark.parametrize("field_name", ["make", "model"])
    def test_blank_make_or_model_rejected(self, field_name: str) -> None:
        """A whitespace-only make or model is as good as missing."""
        kwargs = {"make": "FORD", "model": "FOCUS", field_name: "   "}
        with pytest.raises(ActionableError) as exc_info:
            SearchCriteria(**kwargs).validate()
        assert exc_info.value.error_type == ErrorType.VALIDATION
        assert field_name in exc_info.value.error

    def test_negative_bound_rejected(self) -> None:
        """Negative mileage makes no sense to any source."""
        with pytest.raises(ActionableError) as exc_info:
            SearchCriteria(make="FORD", model="FOCUS", min_mileage=-1).validate()
        assert "min_mileage" in exc_info.value.error

    def test_inverted_range_rejected(self) -> None:
        """min_age above max_age can never match."""
        with pytest.raises(ActionableError) as exc_info:
            SearchCriteria(make="FORD", model="FOCUS", min_age=8, max_age=3).validate()
        assert "min_age/max_age" in exc_info.value.error

    def test_non_integer_bound_rejected(self) -> None:
        """Bounds are whole numbers; booleans do not count."""
        with pytest.raises(ActionableError):
            SearchCriteria(make="FORD", model="FOCUS", max_price=True).validate()  # type: ignore[arg-type]


class TestListingSerialisation:
    """REQUIREMENT: Listings serialise to clean JSON-ready dicts.

    WHO: The aggregate, the SSE progress frames and the CLI JSON export
    WHAT: Required fields are always present; optional fields that are
          None and empty metadata are omitted; the timestamp is ISO-8601
    WHY: Consumers iterate the same shape for every source
    """

    def test_to_dict_omits_unset_optional_fields(self) -> None:
        """A listing with only required fields serialises without null keys."""
        listing = Listing(
            url="https://www.bca.co.uk/lot/AB12%20CDE",
            image_url="",
            title="FORD FOCUS",
            price=None,
            location="",
            registration="AB12 CDE",
            source="bca",
            timestamp=datetime(2026, 1, 2, 3, 4, 5, tzinfo=timezone.utc),
        )
        data = listing.to_dict()
        assert data["url"] == "https://www.bca.co.uk/lot/AB12%20CDE"
        assert data["image_url"] == ""
        assert data["timestamp"] == "2026-01-02T03:04:05+00:00"
        assert "price" not in data
        assert "mileage" not in data
        assert "metadata" not in data

    def test_to_dict_keeps_populated_optional_fields(self, make_listing) -> None:
        """Optional fields with a value are included."""
        listing = dataclasses.replace(make_listing(), mileage=54000, metadata={"grade": "3"})
        data = listing.to_dict()
        assert data["mileage"] == 54000
        assert data["metadata"] == {"grade": "3"}
        assert data["price"] == 8995

    def test_listing_cannot_be_changed_after_creation(self, make_listing) -> None:
        """Fields and metadata are read-only once a listing is built."""
        listing = dataclasses.replace(make_listing(), metadata={"grade": "3"})
        with pytest.raises(dataclasses.FrozenInstanceError):
            listing.price = 1  # type: ignore[misc]
        with pytest.raises(TypeError):
            listing.metadata["grade"] = "1"  # type: ignore[index]
        assert listing.to_dict()["metadata"] == {"grade": "3"}

    def test_metadata_is_copied_from_the_caller(self) -> None:
        """Changing the dict passed in does not reach the listing."""
        raw = {"grade": "3"}
        listing = Listing(
            url="https://www.bca.co.uk/lot/AB12%20CDE",
            image_url="",
            title="FORD FOCUS",
            price=None,
            location="",
            registration="AB12 CDE",
            source="bca",
            metadata=raw,
        )
        raw["grade"] = "5"
        assert listing.metadata["grade"] == "3"
