from __future__ import annotations

from pathlib import Path

import pytest

from _helpers import image_bytes
from shelfimport.catalog.models import ProductDraft
from shelfimport.errors import DuplicateDetectionError, DuplicateSKUError, DuplicateUPCError
from shelfimport.storage.catalog import CatalogStore
from shelfimport.storage.images import ImageStore, content_hash
from shelfimport.storage.progress import ProgressStore


def _draft(sku: str = "goya-mango-nectar", upc: str | None = None, index: int = 0, **overrides) -> ProductDraft:
    fields = dict(
        sku=sku,
        name="Goya Mango Nectar",
        brand="Goya",
        price=1.49,
        status="needs_review",
        upc=upc,
        categories=["Beverages"],
        size="9.6 oz",
        source_hash="hash-a",
        detection_index=index,
        batch_id="batch-1",
    )
    fields.update(overrides)
    return ProductDraft(**fields)


class FakeClock:
    def __init__(self, now: float = 1000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


def test_catalog_roundtrip_and_stats(tmp_path: Path) -> None:
    catalog = CatalogStore(tmp_path / "shelf.db")

    first = catalog.create_draft(_draft(upc="0001", status="verified", price=2.49))
    catalog.create_draft(_draft(sku="lala-crema", index=1, batch_id="batch-2"))

    product = catalog.get_product(first)
    assert product["categories"] == ["Beverages"]
    assert product["upc"] == "0001"
    assert catalog.get_by_sku("lala-crema")["detection_index"] == 1
    assert catalog.exists_by_upc("0001")
    assert catalog.sku_taken("goya-mango-nectar")
    assert catalog.get_for_detection("hash-a", 1)["sku"] == "lala-crema"
    assert catalog.get_for_detection("hash-a", 2) is None
    assert catalog.count_for_source("hash-a") == 2

    assert catalog.stats() == {"total": 2, "verified": 1, "needs_review": 1}
    assert catalog.stats(batch_id="batch-2") == {"total": 1, "verified": 0, "needs_review": 1}
    assert [p["sku"] for p in catalog.list_products(status="verified")] == ["goya-mango-nectar"]
    assert [p["sku"] for p in catalog.list_products(batch_id="batch-2")] == ["lala-crema"]


def test_catalog_unique_constraints_map_to_errors(tmp_path: Path) -> None:
    catalog = CatalogStore(tmp_path / "shelf.db")
    catalog.create_draft(_draft(upc="0001"))

    with pytest.raises(DuplicateUPCError):
        catalog.create_draft(_draft(sku="other", upc="0001", index=1))
    with pytest.raises(DuplicateSKUError):
        catalog.create_draft(_draft(index=2))
    with pytest.raises(DuplicateDetectionError):
        catalog.create_draft(_draft(sku="third"))


def test_products_without_upc_do_not_collide(tmp_path: Path) -> None:
    catalog = CatalogStore(tmp_path / "shelf.db")

    catalog.create_draft(_draft(sku="a", index=0))
    catalog.create_draft(_draft(sku="b", index=1))

    assert catalog.stats()["total"] == 2


def test_progress_counters_count_each_image_once(tmp_path: Path) -> None:
    progress = ProgressStore(tmp_path / "shelf.db")
    progress.init_batch("batch-1", [("h1", "a.jpg"), ("h2", "b.jpg")])

    assert progress.record_detections("batch-1", "h1", 3)
    assert not progress.record_detections("batch-1", "h1", 3)
    assert progress.finish_image("batch-1", "h1")
    assert not progress.finish_image("batch-1", "h1")
    assert not progress.mark_failed_image("batch-1", "h1")
    assert not progress.is_settled("batch-1")

    assert progress.mark_failed_image("batch-1", "h2")
    assert progress.is_settled("batch-1")

    row = progress.get("batch-1")
    assert row["total_images"] == 2
    assert row["processed_images"] == 1
    assert row["failed_images"] == 1
    assert row["total_products"] == 3


def test_progress_status_never_leaves_completed(tmp_path: Path) -> None:
    progress = ProgressStore(tmp_path / "shelf.db")
    progress.init_batch("batch-1", [("h1", "a.jpg")])

    progress.update("batch-1", status="detecting", current_image="a.jpg")
    assert progress.get("batch-1")["current_image"] == "a.jpg"

    progress.complete("batch-1")
    progress.update("batch-1", status="processing")

    row = progress.get("batch-1")
    assert row["status"] == "completed"
    assert row["current_image"] is None


def test_progress_rejects_unknown_counter_and_status(tmp_path: Path) -> None:
    progress = ProgressStore(tmp_path / "shelf.db")
    progress.init_batch("batch-1", [])

    with pytest.raises(ValueError):
        progress.count_product("batch-1", 1, "status")
    with pytest.raises(ValueError):
        progress.update("batch-1", status="exploded")


def test_progress_expires_after_ttl(tmp_path: Path) -> None:
    clock = FakeClock()
    progress = ProgressStore(tmp_path / "shelf.db", ttl_seconds=3600, clock=clock)
    progress.init_batch("batch-1", [("h1", "a.jpg")])

    clock.now += 3000
    progress.update("batch-1", status="processing")
    clock.now += 3000
    assert progress.get("batch-1") is not None

    clock.now += 3601
    assert progress.get("batch-1") is None
    assert progress.purge_expired() == 1


def test_source_images_are_content_addressed(tmp_path: Path) -> None:
    images = ImageStore(tmp_path / "images", tmp_path / "shelf.db")
    data = image_bytes()

    first = images.store_source(data, "IMG_0001.jpg", "JPEG")
    second = images.store_source(data, "copy.jpg", "JPEG")

    assert first.content_hash == second.content_hash == content_hash(data)
    assert first.stored_path.read_bytes() == data
    assert len(list(images.source_dir.iterdir())) == 1
    assert images.get_source(first.content_hash).original_filename == "IMG_0001.jpg"
    assert images.get_source("missing") is None


def test_processed_marker_is_written_once(tmp_path: Path) -> None:
    images = ImageStore(tmp_path / "images", tmp_path / "shelf.db")

    assert not images.is_processed("h1")
    assert images.mark_processed("h1", original_filename="a.jpg", batch_id="b1", products_detected=3, products_created=2)
    assert not images.mark_processed("h1", original_filename="a.jpg", batch_id="b2", products_detected=0, products_created=0)

    marker = images.get_marker("h1")
    assert marker["batch_id"] == "b1"
    assert marker["products_created"] == 2


def test_interim_crop_moves_to_sku_path(tmp_path: Path) -> None:
    images = ImageStore(tmp_path / "images", tmp_path / "shelf.db")
    crop = images.work_stem("crop", "abcdef0123456789", 2).with_suffix(".jpg")
    crop.write_bytes(b"jpeg")

    interim = images.stash_interim(crop, "goya-mango-nectar", "abcdef0123456789", 2)
    final = images.save_product_image(interim, "goya-mango-nectar")

    assert interim.name == "goya-mango-nectar-abcdef012345-2.jpg"
    assert final == images.products_dir / "goya-mango-nectar.jpg"
    assert final.read_bytes() == b"jpeg"
    assert not crop.exists() and not interim.exists()
    images.discard(final)
    assert not final.exists()


def test_product_is_counted_once_with_its_materialized_flag(tmp_path: Path) -> None:
    db_path = tmp_path / "shelf.db"
    catalog = CatalogStore(db_path)
    progress = ProgressStore(db_path)
    progress.init_batch("batch-1", [("hash-a", "a.jpg")])
    product_id = catalog.create_draft(_draft())

    assert catalog.get_product(product_id)["materialized"] == 0
    assert progress.count_product("batch-1", product_id, "review_products")
    assert not progress.count_product("batch-1", product_id, "review_products")

    assert catalog.get_product(product_id)["materialized"] == 1
    assert progress.get("batch-1")["review_products"] == 1
    with pytest.raises(ValueError):
        progress.count_product("batch-1", product_id, "total_images")


def test_cleared_marker_lets_the_image_run_again(tmp_path: Path) -> None:
    images = ImageStore(tmp_path / "images", tmp_path / "shelf.db")
    images.mark_processed("h1", original_filename="a.jpg", batch_id="b1", products_detected=1, products_created=1)

    assert images.clear_marker("h1")
    assert not images.is_processed("h1")
    assert images.get_marker("h1") is None
    assert not images.clear_marker("h1")


def test_find_interim_matches_only_its_detection(tmp_path: Path) -> None:
    images = ImageStore(tmp_path / "images", tmp_path / "shelf.db")
    for key, index in (("goya-mango-nectar", 1), ("lala-crema", 11)):
        images.work_stem(key, "abcdef0123456789", index).with_suffix(".jpg").write_bytes(b"jpeg")

    assert images.find_interim("abcdef0123456789", 1).name == "goya-mango-nectar-abcdef012345-1.jpg"
    assert images.find_interim("abcdef0123456789", 11).name == "lala-crema-abcdef012345-11.jpg"
    assert images.find_interim("abcdef0123456789", 2) is None


def test_unpriced_listing_and_price_update(tmp_path: Path) -> None:
    catalog = CatalogStore(tmp_path / "shelf.db")
    free = catalog.create_draft(_draft(sku="no-price", price=0.0))
    catalog.create_draft(_draft(sku="estimated", index=1, price=1.49))
    catalog.create_draft(_draft(sku="verified", index=2, price=2.49, status="verified", upc="0001"))

    assert [p["sku"] for p in catalog.list_unpriced()] == ["no-price"]
    assert [p["sku"] for p in catalog.list_unpriced(include_review=True)] == ["no-price", "estimated"]

    assert catalog.update_price(free, 3.456, upc="0002")
    product = catalog.get_product(free)
    assert product["price"] == 3.46
    assert product["upc"] == "0002"
    assert product["status"] == "needs_review"

    with pytest.raises(DuplicateUPCError):
        catalog.update_price(catalog.get_by_sku("estimated")["product_id"], 1.99, upc="0001")
    assert not catalog.update_price(9999, 1.0)
