from __future__ import annotations

from shelfimport.catalog.sku import disambiguate_sku, make_sku, sku_discriminator


def test_make_sku_slugifies_brand_and_name() -> None:
    assert make_sku("El Mexicano", "Crema Mexicana 15 oz") == "el-mexicano-crema-mexicana-15-oz"
    assert make_sku("Goya", "Mango  Nectar!!") == "goya-mango-nectar"


def test_make_sku_collapses_diacritics_to_single_hyphens() -> None:
    assert make_sku("Café", "Olé Salsa") == "caf-ol-salsa"
    assert make_sku("¡Jumex!", "Néctar de Mango") == "jumex-n-ctar-de-mango"


def test_make_sku_is_deterministic() -> None:
    assert make_sku("Cheetos", "Puffs") == make_sku("Cheetos", "Puffs")


def test_make_sku_truncates_without_trailing_dash() -> None:
    sku = make_sku("Brand", "a" * 43 + " bcdefgh")
    assert len(sku) <= 50
    assert sku == "brand-" + "a" * 43


def test_make_sku_falls_back_for_empty_input() -> None:
    assert make_sku("", "") == "product"
    assert make_sku("¡¡", "??") == "product"


def test_discriminator_depends_on_source_and_index() -> None:
    first = sku_discriminator("abc", 0)
    assert len(first) == 6
    assert first == sku_discriminator("abc", 0)
    assert first != sku_discriminator("abc", 1)
    assert first != sku_discriminator("abd", 0)
    assert disambiguate_sku("goya-mango-nectar", "abc", 0) == f"goya-mango-nectar-{first}"
