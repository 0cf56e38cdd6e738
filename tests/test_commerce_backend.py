"""Tests for the SQL commerce backend."""
import re

import pytest

from cart_assistant.services.commerce_backend import escape_like
from cart_assistant.utils.exceptions import ToolExecutionError


@pytest.mark.asyncio
async def test_search_is_case_insensitive(backend, catalog):
    results = await backend.search_products("CACT")
    assert [p["name"] for p in results] == ["Cacti", "Cactos"]


@pytest.mark.asyncio
async def test_search_limit_is_clamped(backend, catalog):
    assert len(await backend.search_products("", limit=500)) == 6
    assert len(await backend.search_products("", limit=0)) == 1


@pytest.mark.asyncio
async def test_wildcards_in_query_are_literal(backend, catalog):
    assert await backend.search_products("%") == []
    assert await backend.search_products("C_cti") == []
    assert [p["name"] for p in await backend.search_products("cacti")] == ["Cacti"]


def test_escape_like():
    assert escape_like("50% off_now\\") == "50\\% off\\_now\\\\"


@pytest.mark.asyncio
async def test_catalog_has_variations(backend, catalog):
    products = {p["name"]: p for p in await backend.list_catalog()}
    assert "Hidden Item" not in products
    assert [v["attributes"]["model"] for v in products["Cats"]["variations"]] == ["Standard", "Retro"]


@pytest.mark.asyncio
async def test_get_product(backend, catalog):
    assert (await backend.get_product(catalog.ids["Dogs"]))["price"] == 7.25
    assert await backend.get_product(catalog.ids["Hidden Item"]) is None


@pytest.mark.asyncio
async def test_add_line(backend, catalog):
    line = await backend.add_to_cart("cart-1", catalog.ids["Cats"], catalog.variations[("Cats", "Standard")], 2)

    assert re.fullmatch(r"[a-f0-9]{32}", line["cart_item_key"])
    assert line["product_name"] == "Cats - Standard"
    assert line["subtotal"] == 20.0


@pytest.mark.asyncio
async def test_variation_of_another_product(backend, catalog):
    with pytest.raises(ToolExecutionError):
        await backend.add_to_cart("cart-1", catalog.ids["Cats"], catalog.variations[("Cacti", "Retro")])


@pytest.mark.asyncio
async def test_out_of_stock_variation(backend, catalog):
    with pytest.raises(ToolExecutionError, match="out of stock"):
        await backend.add_to_cart("cart-1", catalog.ids["Cats"], catalog.variations[("Cats", "Retro")])


@pytest.mark.asyncio
async def test_carts_are_separate(backend, catalog):
    await backend.add_to_cart("cart-1", catalog.ids["Dogs"])
    await backend.add_to_cart("cart-2", catalog.ids["Knot Tying"])

    assert [line["product_name"] for line in await backend.get_cart("cart-1")] == ["Dogs"]
    assert await backend.empty_cart("cart-2") == 1
    assert [line["product_name"] for line in await backend.get_cart("cart-1")] == ["Dogs"]


@pytest.mark.asyncio
async def test_remove_line(backend, catalog):
    line = await backend.add_to_cart("cart-1", catalog.ids["Dogs"])

    assert await backend.remove_line("cart-2", line["cart_item_key"]) is False
    assert await backend.remove_line("cart-1", line["cart_item_key"]) is True
    assert await backend.get_cart("cart-1") == []
