"""Shared catalog fixtures and in-memory collaborators."""

import re
from datetime import datetime, timedelta, timezone

import pytest

from catalogsearch.catalog.categories import CategoryCache, CategoryTreeResolver
from catalogsearch.catalog.fallback import FallbackEngine
from catalogsearch.catalog.filters import FilterClauseBuilder
from catalogsearch.catalog.orchestrator import CatalogOrchestrator
from catalogsearch.errors import CategoryLookupError, FallbackError
from catalogsearch.index.meilisearch import IndexResult, hit_to_product
from catalogsearch.index.schema import build_index_document
from catalogsearch.model import (
    FACET_NAMES,
    Category,
    Collection,
    Money,
    Product,
    ProductPage,
    Variant,
)

NOW = datetime(2024, 5, 1, 12, 0, 0, tzinfo=timezone.utc)

CATEGORIES = [
    Category(id="pcat_motor", name="Motor", handle="motor"),
    Category(
        id="pcat_kuehlung",
        name="Kühlung",
        handle="motor-kuehlung",
        parent_id="pcat_motor",
    ),
    Category(
        id="pcat_zuendung",
        name="Zündung",
        handle="motor-zuendung",
        parent_id="pcat_motor",
    ),
    Category(
        id="pcat_thermostate",
        name="Thermostate",
        handle="motor-kuehlung-thermostate",
        parent_id="pcat_kuehlung",
    ),
    Category(id="pcat_fahrwerk", name="Fahrwerk", handle="fahrwerk"),
    Category(
        id="pcat_bremsen",
        name="Bremsen",
        handle="fahrwerk-bremsen",
        parent_id="pcat_fahrwerk",
    ),
    Category(id="pcat_karosserie", name="Karosserie", handle="karosserie"),
]

COLLECTIONS = {
    "col_sommer": Collection(id="col_sommer", title="Sommer", handle="sommer"),
    "col_winter": Collection(id="col_winter", title="Winter", handle="winter"),
}


def make_product(
    id,
    title,
    categories=(),
    eur=None,
    usd=None,
    qty=1,
    manage=True,
    tags=(),
    description=None,
    collection=None,
    sku=None,
    days_old=0,
    status="published",
    variants=None,
):
    """Build a store product with a single variant unless variants are given."""
    by_id = {c.id: c for c in CATEGORIES}
    if variants is None:
        prices = []
        if eur is not None:
            prices.append(Money(amount=eur, currency_code="eur"))
        if usd is not None:
            prices.append(Money(amount=usd, currency_code="usd"))
        variants = [
            Variant(
                id=f"{id}_v1",
                title="Standard",
                sku=sku,
                prices=prices,
                manage_inventory=manage,
                inventory_quantity=qty,
            )
        ]
    return Product(
        id=id,
        title=title,
        description=description,
        handle=id.replace("_", "-"),
        status=status,
        tags=list(tags),
        categories=[by_id[c] for c in categories],
        collection=COLLECTIONS.get(collection),
        variants=variants,
        created_at=NOW - timedelta(days=days_old),
    )


PRODUCTS = [
    make_product("prod_01", "Motorbremse Zylinder", ["pcat_motor"], eur=49.0, qty=3, days_old=1),
    make_product(
        "prod_02",
        "Kühlerdeckel",
        ["pcat_kuehlung"],
        eur=12.5,
        qty=10,
        description="Mit Bremse-Sensor",
        days_old=2,
    ),
    make_product(
        "prod_03", "Zündkerze Satz", ["pcat_zuendung"], eur=24.0, qty=2, sku="ZK-BREMSE-01", days_old=3
    ),
    make_product(
        "prod_04",
        "Thermostat Bremse Kühlkreis",
        ["pcat_thermostate"],
        eur=8.0,
        qty=0,
        manage=False,
        days_old=4,
    ),
    make_product("prod_05", "Bremse Motorhalter", ["pcat_motor"], eur=5.0, qty=0, days_old=5),
    make_product(
        "prod_06", "Bremsscheibe vorne", ["pcat_bremsen"], eur=60.0, qty=4, tags=["bremse"], days_old=6
    ),
    make_product(
        "prod_07", "Bremsbelag Set", ["pcat_bremsen"], eur=35.0, qty=8, tags=["bremse"], days_old=7
    ),
    make_product("prod_08", "Ölfilter", ["pcat_motor"], eur=9.0, qty=4, days_old=8),
    make_product(
        "prod_09", "Zündspule", ["pcat_zuendung"], eur=39.0, qty=1, tags=["zuendung"], days_old=8
    ),
    make_product(
        "prod_10",
        "Kühlwasserpumpe",
        ["pcat_kuehlung"],
        eur=9.0,
        qty=7,
        collection="col_sommer",
        days_old=10,
    ),
    make_product(
        "prod_11", "Motorbremse Ventil", ["pcat_kuehlung"], eur=49.0, qty=1, tags=["bremse"], days_old=11
    ),
    make_product(
        "prod_12", "Kotflügel", ["pcat_karosserie"], eur=120.0, qty=1, collection="col_sommer", days_old=12
    ),
    make_product("prod_13", "Spiegel links", ["pcat_karosserie"], usd=30.0, qty=2, days_old=13),
    make_product("prod_14", "Stoßstange", ["pcat_karosserie"], variants=[], days_old=14),
    make_product(
        "prod_15", "Bremse Prototyp", ["pcat_motor"], eur=1.0, qty=9, status="draft", days_old=0
    ),
    make_product(
        "prod_16",
        "Zündkabel",
        ["pcat_zuendung"],
        tags=["zuendung", "kabel"],
        days_old=16,
        variants=[
            Variant(
                id="prod_16_v1",
                title="Lang",
                prices=[Money(amount=18.0, currency_code="eur")],
                inventory_quantity=0,
            ),
            Variant(
                id="prod_16_v2",
                title="Kurz",
                prices=[Money(amount=15.0, currency_code="eur")],
                inventory_quantity=3,
            ),
        ],
    ),
    make_product("prod_17", "Auspuff", ["pcat_motor", "pcat_fahrwerk"], eur=80.0, qty=2, days_old=17),
    make_product("prod_18", "Radlager", ["pcat_fahrwerk"], eur=22.0, qty=0, days_old=18),
    make_product("prod_19", "Dichtung", [], eur=3.5, qty=100, tags=["kleinteile"], days_old=19),
    make_product(
        "prod_20",
        "Scheibenwischer",
        ["pcat_karosserie"],
        eur=14.0,
        usd=15.0,
        qty=6,
        collection="col_winter",
        days_old=20,
    ),
]


class FakeCategoryStore:
    """Category store over a fixed list, counting reads."""

    def __init__(self, categories, error=None):
        self.categories = list(categories)
        self.error = error
        self.calls = []

    def list_categories(self, handle=None, parent_id=None):
        self.calls.append((handle, parent_id))
        if self.error is not None:
            raise self.error
        result = self.categories
        if handle is not None:
            result = [c for c in result if c.handle == handle]
        if parent_id is not None:
            result = [c for c in result if c.parent_id == parent_id]
        return list(result)


class FakeProductStore:
    """Product store that applies the store-side clauses like the real ones."""

    supports_text_search = False

    def __init__(self, products, error=None):
        self.products = list(products)
        self.error = error
        self.calls = []

    def list_products(self, params):
        self.calls.append(params)
        if self.error is not None:
            raise self.error
        matched = [
            p
            for p in self.products
            if (not params.category_ids or p.category_ids & set(params.category_ids))
            and (not params.collection_id or p.collection_id == params.collection_id)
        ]
        matched.sort(key=lambda p: (-p.created_at.timestamp(), p.id))
        return ProductPage(
            products=matched[params.offset : params.offset + params.limit],
            count=len(matched),
        )


_TOKEN = re.compile(
    r'\(|\)|\bAND\b|\bOR\b|(\w+) (>=|<=|=) ("(?:[^"\\]|\\.)*"|true|false|-?\d+(?:\.\d+)?)'
)

_SEARCHABLE = ("title", "description", "tags", "variant_titles", "skus")


def _literal(raw):
    if raw.startswith('"'):
        return re.sub(r"\\(.)", r"\1", raw[1:-1])
    if raw in ("true", "false"):
        return raw == "true"
    return float(raw)


def _term_matches(document, attribute, op, expected):
    value = document.get(attribute)
    values = value if isinstance(value, list) else [value]
    for v in values:
        if v is None:
            continue
        if op == "=" and v == expected:
            return True
        if op == ">=" and v >= expected:
            return True
        if op == "<=" and v <= expected:
            return True
    return False


def evaluate_filter(expression, document):
    """Evaluate an index filter expression against one document."""
    if not expression:
        return True
    tokens = []
    for match in _TOKEN.finditer(expression):
        if match.group(1):
            tokens.append((match.group(1), match.group(2), _literal(match.group(3))))
        else:
            tokens.append(match.group(0))
    position = 0

    def parse_or():
        nonlocal position
        result = parse_and()
        while position < len(tokens) and tokens[position] == "OR":
            position += 1
            result = parse_and() or result
        return result

    def parse_and():
        nonlocal position
        result = parse_atom()
        while position < len(tokens) and tokens[position] == "AND":
            position += 1
            result = parse_atom() and result
        return result

    def parse_atom():
        nonlocal position
        token = tokens[position]
        position += 1
        if token == "(":
            result = parse_or()
            position += 1  # ")"
            return result
        return _term_matches(document, *token)

    return parse_or()


def _sort_documents(documents, sort):
    ordered = list(documents)
    for key in reversed(sort):
        attribute, direction = key.split(":")

        def value(d):
            v = d.get(attribute)
            return v.casefold() if isinstance(v, str) else v

        present = [d for d in ordered if d.get(attribute) is not None]
        missing = [d for d in ordered if d.get(attribute) is None]
        present.sort(key=value, reverse=direction == "desc")
        ordered = present + missing
    return ordered


def _facet_distribution(documents, facets):
    distribution = {}
    for name in facets:
        counts = {}
        for document in documents:
            value = document.get(name)
            values = value if isinstance(value, list) else [value]
            for v in set(values):
                if v is None:
                    continue
                if isinstance(v, bool):
                    v = "true" if v else "false"
                counts[str(v)] = counts.get(str(v), 0) + 1
        distribution[name] = counts
    return distribution


class FakeSearchIndex:
    """Search index over documents built with the index schema.

    Text matching is a case-insensitive substring match over the searchable
    attributes, which is what the relational path does too.
    """

    def __init__(self, products, currency_codes=("eur", "usd"), error=None):
        self.documents = [
            d
            for d in (build_index_document(p, currency_codes) for p in products)
            if d is not None
        ]
        self.error = error
        self.calls = []

    def search(
        self, query, filter_expr, sort, facets, offset, limit, currency_code=None
    ):
        self.calls.append(
            dict(
                query=query,
                filter_expr=filter_expr,
                sort=sort,
                facets=facets,
                offset=offset,
                limit=limit,
            )
        )
        if self.error is not None:
            raise self.error

        needle = query.casefold()
        matched = []
        for document in self.documents:
            if needle:
                haystack = []
                for attribute in _SEARCHABLE:
                    value = document.get(attribute)
                    haystack.extend(value if isinstance(value, list) else [value])
                if not any(needle in text.casefold() for text in haystack if text):
                    continue
            if evaluate_filter(filter_expr, document):
                matched.append(document)

        ordered = _sort_documents(matched, sort)
        return IndexResult(
            hits=[
                hit_to_product(d, currency_code or "eur")
                for d in ordered[offset : offset + limit]
            ],
            facets=_facet_distribution(matched, facets or FACET_NAMES),
            total_hits=len(matched),
            processing_time_ms=2,
        )


@pytest.fixture
def catalog_products():
    return list(PRODUCTS)


@pytest.fixture
def product_factory():
    return make_product


@pytest.fixture
def category_store():
    return FakeCategoryStore(CATEGORIES)


@pytest.fixture
def failing_category_store():
    return FakeCategoryStore(CATEGORIES, error=CategoryLookupError("store down"))


@pytest.fixture
def product_store():
    return FakeProductStore(PRODUCTS)


@pytest.fixture
def make_product_store():
    return FakeProductStore


@pytest.fixture
def search_index():
    return FakeSearchIndex(PRODUCTS)


@pytest.fixture
def make_search_index():
    return FakeSearchIndex


@pytest.fixture
def make_orchestrator(category_store):
    """Factory for orchestrators over the fixture catalog."""

    def factory(
        index="default",
        products=None,
        product_store=None,
        categories=None,
        index_attempts=1,
        max_page_size=100,
        fetch_cap=1000,
        regions=None,
    ):
        products = PRODUCTS if products is None else products
        if index == "default":
            index = FakeSearchIndex(products)
        store = category_store if categories is None else categories
        return CatalogOrchestrator(
            resolver=CategoryTreeResolver(store, cache=CategoryCache(ttl=60)),
            builder=FilterClauseBuilder(fetch_cap=fetch_cap),
            index=index,
            fallback=FallbackEngine(product_store or FakeProductStore(products)),
            regions=regions,
            default_currency_code="eur",
            index_attempts=index_attempts,
            max_page_size=max_page_size,
        )

    return factory


@pytest.fixture
def failing_product_store():
    return FakeProductStore(PRODUCTS, error=FallbackError("store down"))
