import asyncio
from unittest.mock import AsyncMock, patch

import httpx
import pytest

from conftest import image_transport
from pipeline.assets import AssetIngestor, asset_filename, extension_from_url, slugify

IMAGE_URL = "https://fakestoreapi.com/img/81fPKd-2AYL._AC_SL1500_.jpg"


def make_ingestor(tmp_path, transport):
    return AssetIngestor(
        storage_dir=str(tmp_path / "products"),
        public_prefix="/storage/products/",
        client=httpx.AsyncClient(transport=transport)
    )


@pytest.mark.parametrize("value,expected", [
    ("Mens Cotton Jacket", "mens_cotton_jacket"),
    ("Fjallraven - Foldsack No. 1 Backpack, Fits 15 Laptops", "fjallraven_foldsack_no_1_backpack_fits_15_laptops"),
    ("  Crème brûlée  ", "creme_brulee"),
    ("John Hardy Women's Legends", "john_hardy_women_s_legends"),
    ("shop@home", "shop_at_home"),
])
def test_slugify(value, expected):
    assert slugify(value) == expected


@pytest.mark.parametrize("url,expected", [
    ("https://img.test/a/photo.PNG", "png"),
    ("https://img.test/a/photo.jpeg?size=large", "jpeg"),
    ("https://img.test/a/photo.gif", "jpg"),
    ("https://img.test/a/photo", "jpg"),
])
def test_extension_from_url(url, expected):
    assert extension_from_url(url) == expected


def test_asset_filename_is_bounded():
    title = "WD 4TB Gaming Drive Works with Playstation 4 Portable External Hard Drive"

    filename = asset_filename(title, IMAGE_URL)

    stem, extension = filename.rsplit(".", 1)
    assert len(stem) == 50
    assert extension == "jpg"
    assert asset_filename("!!!", IMAGE_URL) == "product.jpg"


@pytest.mark.asyncio
async def test_ingest_stores_image(tmp_path):
    ingestor = make_ingestor(tmp_path, image_transport(body=b"jpeg-bytes"))

    reference = await ingestor.ingest(IMAGE_URL, "Mens Cotton Jacket")

    assert reference == "/storage/products/mens_cotton_jacket.jpg"
    assert (tmp_path / "products" / "mens_cotton_jacket.jpg").read_bytes() == b"jpeg-bytes"


@pytest.mark.asyncio
async def test_existing_file_is_not_fetched_again(tmp_path):
    storage = tmp_path / "products"
    storage.mkdir()
    (storage / "mens_cotton_jacket.jpg").write_bytes(b"old")
    requests = []

    def handler(request):
        requests.append(request)
        return httpx.Response(200, content=b"new", headers={"Content-Type": "image/jpeg"})

    ingestor = make_ingestor(tmp_path, httpx.MockTransport(handler))

    reference = await ingestor.ingest(IMAGE_URL, "Mens Cotton Jacket")

    assert reference == "/storage/products/mens_cotton_jacket.jpg"
    assert requests == []
    assert (storage / "mens_cotton_jacket.jpg").read_bytes() == b"old"


@pytest.mark.asyncio
async def test_not_found_returns_none(tmp_path):
    ingestor = make_ingestor(tmp_path, image_transport(status_code=404))

    assert await ingestor.ingest(IMAGE_URL, "Mens Cotton Jacket") is None
    assert not (tmp_path / "products" / "mens_cotton_jacket.jpg").exists()


@pytest.mark.asyncio
async def test_non_image_content_returns_none(tmp_path):
    ingestor = make_ingestor(tmp_path, image_transport(content_type="text/html"))

    assert await ingestor.ingest(IMAGE_URL, "Mens Cotton Jacket") is None


@pytest.mark.asyncio
async def test_transport_error_returns_none(tmp_path):
    def handler(request):
        raise httpx.ReadTimeout("too slow", request=request)

    ingestor = make_ingestor(tmp_path, httpx.MockTransport(handler))

    assert await ingestor.ingest(IMAGE_URL, "Mens Cotton Jacket") is None


@pytest.mark.asyncio
async def test_store_failure_returns_none(tmp_path):
    # A regular file where the storage directory should be
    (tmp_path / "products").write_text("not a directory")
    ingestor = make_ingestor(tmp_path, image_transport())

    assert await ingestor.ingest(IMAGE_URL, "Mens Cotton Jacket") is None


@pytest.mark.asyncio
async def test_interrupted_store_leaves_no_file_behind(tmp_path):
    ingestor = make_ingestor(tmp_path, image_transport(body=b"complete-jpeg"))

    with patch("aiofiles.os.replace", AsyncMock(side_effect=asyncio.CancelledError())):
        with pytest.raises(asyncio.CancelledError):
            await ingestor.ingest(IMAGE_URL, "Mens Cotton Jacket")

    assert list((tmp_path / "products").iterdir()) == []

    reference = await ingestor.ingest(IMAGE_URL, "Mens Cotton Jacket")

    assert reference == "/storage/products/mens_cotton_jacket.jpg"
    assert (tmp_path / "products" / "mens_cotton_jacket.jpg").read_bytes() == b"complete-jpeg"


@pytest.mark.asyncio
async def test_failed_rename_returns_none_and_cleans_up(tmp_path):
    ingestor = make_ingestor(tmp_path, image_transport())

    with patch("aiofiles.os.replace", AsyncMock(side_effect=OSError("disk full"))):
        assert await ingestor.ingest(IMAGE_URL, "Mens Cotton Jacket") is None

    assert list((tmp_path / "products").iterdir()) == []
