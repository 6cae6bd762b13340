"""Tests for the relational fallback engine."""

import logging

import pytest

from catalogsearch.catalog.fallback import FallbackEngine, compute_facets
from catalogsearch.catalog.filters import FilterClauseBuilder
from catalogsearch.errors import FallbackError
from catalogsearch.model import FilterRequest, RegionContext

EUR = RegionContext(currency_code="eur")


def run(engine, request, category_ids=(), fetch_cap=1000):
    _, params = FilterClauseBuilder(fetch_cap=fetch_cap).build_clauses(
        request, category_ids, EUR
    )
    return engine.fallback_search(request, params)


class TestFallbackEngine:
    """Test cases for FallbackEngine."""

    @pytest.fixture
    def engine(self, product_store):
        return FallbackEngine(product_store)

    def test_drafts_are_never_returned(self, engine):
        """Test that draft products are dropped."""
        response = run(engine, FilterRequest(limit=100))
        ids = {p.id for p in response.products}
        assert "prod_15" not in ids
        assert response.total_count == 19

    def test_category_filter_is_sent_to_store(self, engine, product_store):
        """Test that resolved category ids reach the store query."""
        response = run(
            engine, FilterRequest(limit=100), category_ids={"pcat_bremsen"}
        )
        assert product_store.calls[0].category_ids == ["pcat_bremsen"]
        assert {p.id for p in response.products} == {"prod_06", "prod_07"}

    def test_text_filter_applied_locally(self, engine):
        """Test the local text match when the store cannot search."""
        response = run(engine, FilterRequest(query="bremse", limit=100))
        assert {p.id for p in response.products} == {
            "prod_01",
            "prod_02",
            "prod_03",
            "prod_04",
            "prod_05",
            "prod_06",
            "prod_07",
            "prod_11",
        }

    def test_text_filter_skipped_for_searching_store(self, make_product_store):
        """Test that a store with native search is trusted with the query."""
        store = make_product_store([])
        store.supports_text_search = True
        engine = FallbackEngine(store)

        run(engine, FilterRequest(query="bremse"))
        assert store.calls[0].q == "bremse"

    def test_availability_and_price(self, engine):
        """Test availability and price range combined."""
        response = run(
            engine,
            FilterRequest(
                availability="in_stock", price_min=9, price_max=15, limit=100
            ),
        )
        assert {p.id for p in response.products} == {
            "prod_08",
            "prod_10",
            "prod_02",
            "prod_20",
            "prod_16",
        }
        assert all(p.is_available for p in response.products)

    def test_sort_price_asc(self, engine):
        """Test ascending price order with ties by id."""
        response = run(
            engine,
            FilterRequest(
                availability="in_stock",
                price_min=9,
                price_max=15,
                sort_by="price_asc",
                limit=100,
            ),
        )
        assert [p.id for p in response.products] == [
            "prod_08",
            "prod_10",
            "prod_02",
            "prod_20",
            "prod_16",
        ]

    def test_pagination_of_25_products(self, make_product_store, product_factory):
        """Test page 3 of 25 matching products at 10 per page."""
        products = [
            product_factory(f"bulk_{i:02d}", f"Artikel {i}", eur=10.0 + i, days_old=i)
            for i in range(25)
        ]
        engine = FallbackEngine(make_product_store(products))

        response = run(engine, FilterRequest(page=3, limit=10))

        assert len(response.products) == 5
        assert response.total_count == 25
        assert response.pagination.total_pages == 3
        assert response.pagination.has_next is False
        assert response.pagination.has_prev is True

    def test_facets_over_filtered_set(self, engine):
        """Test facet counts over every match, not just the page."""
        response = run(
            engine, FilterRequest(limit=1), category_ids={"pcat_karosserie"}
        )
        assert response.total_count == 4
        assert response.facets["category_names"] == {"Karosserie": 4}
        assert response.facets["is_available"] == {"true": 3, "false": 1}
        assert response.facets["collection_title"] == {"Sommer": 1, "Winter": 1}
        assert response.facets["tags"] == {}

    def test_store_error_raises_fallback_error(self, failing_product_store):
        """Test that store failures surface as FallbackError."""
        engine = FallbackEngine(failing_product_store)
        with pytest.raises(FallbackError):
            run(engine, FilterRequest())

    def test_unexpected_store_error_is_wrapped(self, product_store):
        """Test that unexpected store exceptions become FallbackError."""
        product_store.error = RuntimeError("boom")
        with pytest.raises(FallbackError):
            run(FallbackEngine(product_store), FilterRequest())

    def test_fetch_cap_is_logged(self, engine, caplog):
        """Test that hitting the fetch cap is reported."""
        with caplog.at_level(logging.WARNING):
            response = run(engine, FilterRequest(), fetch_cap=5)

        assert "capped at 5 of 20" in caplog.text
        assert response.total_count <= 5


class TestComputeFacets:
    """Test cases for compute_facets."""

    def test_empty(self):
        assert compute_facets([]) == {
            "category_names": {},
            "tags": {},
            "is_available": {},
            "collection_title": {},
        }

    def test_product_in_two_categories(self, catalog_products):
        """Test that a product counts once per category."""
        auspuff = [p for p in catalog_products if p.id == "prod_17"]
        facets = compute_facets(auspuff)
        assert facets["category_names"] == {"Motor": 1, "Fahrwerk": 1}
