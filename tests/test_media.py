import httpx
import pytest

from app.services.media import MediaRelocationError, delete_listing_media, listing_folder, relocate_images
from tests.fixtures_seed import IMAGE_BYTES


FOLDER = listing_folder("usr_owner1", "prop_1")


async def _relocate(services, sources):
    return await relocate_images(
        store=services.store,
        http=services.http,
        sources=sources,
        folder=services.store.make_folder(FOLDER),
        max_bytes=1024,
    )


async def test_one_unreachable_url_of_two_keeps_the_other(services, remote_images):
    remote_images["https://img.example.com/a.png"] = (200, IMAGE_BYTES, "image/png")
    # b.jpg is not registered, so the mock server answers 404

    moved = await _relocate(services, ["https://img.example.com/a.png", "https://img.example.com/b.jpg"])

    assert moved.images == [f"{FOLDER}/image-1.png"]
    assert moved.failures == [("https://img.example.com/b.jpg", "HTTP_404")]
    assert services.store.get_bytes(f"{FOLDER}/image-1.png") == IMAGE_BYTES
    assert services.store.head(f"{FOLDER}/image-1.png")["metadata"] == {"source": "https://img.example.com/a.png"}


async def test_n_minus_one_survive(services, remote_images):
    sources = [f"https://img.example.com/{i}.jpg" for i in range(5)]
    for url in sources:
        remote_images[url] = (200, IMAGE_BYTES, "image/jpeg")
    remote_images[sources[2]] = httpx.ConnectError("connection refused")

    moved = await _relocate(services, sources)

    assert len(moved.images) == 4
    assert f"{FOLDER}/image-3.jpg" not in moved.images
    assert moved.retryable_failures == 1


async def test_missing_content_type_falls_back_to_default(services, remote_images):
    remote_images["https://img.example.com/photo"] = (200, IMAGE_BYTES, "")

    moved = await _relocate(services, ["https://img.example.com/photo"])

    assert moved.images == [f"{FOLDER}/image-1.jpg"]


async def test_uploads_are_moved_with_their_metadata(services):
    services.store.put_bytes(
        key="uploads/tmp-1.png",
        data=IMAGE_BYTES,
        content_type="image/png",
        metadata={"uploader": "sub-owner-1"},
    )

    moved = await _relocate(services, ["uploads/tmp-1.png"])

    assert moved.images == [f"{FOLDER}/image-1.png"]
    assert not services.store.exists("uploads/tmp-1.png")
    assert services.store.head(f"{FOLDER}/image-1.png")["metadata"] == {"uploader": "sub-owner-1"}


async def test_oversized_download_is_skipped(services, remote_images):
    remote_images["https://img.example.com/big.jpg"] = (200, b"x" * 4096, "image/jpeg")
    remote_images["https://img.example.com/ok.jpg"] = (200, IMAGE_BYTES, "image/jpeg")

    moved = await _relocate(services, ["https://img.example.com/big.jpg", "https://img.example.com/ok.jpg"])

    assert moved.images == [f"{FOLDER}/image-2.jpg"]
    assert moved.failures == [("https://img.example.com/big.jpg", "TOO_LARGE")]


async def test_nothing_moved_raises(services):
    with pytest.raises(MediaRelocationError) as exc:
        await _relocate(services, ["uploads/missing.jpg", "ftp://example.com/x.jpg"])

    assert exc.value.retryable is False
    assert [code for _, code in exc.value.failures] == ["NOT_FOUND", "UNSUPPORTED_SOURCE"]


async def test_nothing_moved_after_transient_errors_is_retryable(services, remote_images):
    remote_images["https://img.example.com/a.jpg"] = (503, b"", "text/plain")

    with pytest.raises(MediaRelocationError) as exc:
        await _relocate(services, ["https://img.example.com/a.jpg"])

    assert exc.value.retryable is True


async def test_delete_listing_media_is_best_effort(services):
    services.store.put_bytes(key=f"{FOLDER}/image-1.jpg", data=IMAGE_BYTES, content_type="image/jpeg")

    removed = delete_listing_media(services.store, [f"{FOLDER}/image-1.jpg", "https://cdn.example.com/x.jpg"])

    assert removed == 1
    assert not services.store.exists(f"{FOLDER}/image-1.jpg")


@pytest.mark.parametrize(
    "source",
    ["uploads/../usr_victim/reports/r.pdf", "uploads/./../usr_victim/reports/r.pdf", "uploads/a/../../usr_victim/reports/r.pdf"],
)
async def test_upload_keys_cannot_leave_the_upload_area(services, source):
    victim_key = "usr_victim/reports/r.pdf"
    services.store.put_bytes(key=victim_key, data=b"%PDF-victim", content_type="application/pdf")

    with pytest.raises(MediaRelocationError) as exc:
        await _relocate(services, [source])

    assert exc.value.failures == [(source, "INVALID_KEY")]
    assert services.store.get_bytes(victim_key) == b"%PDF-victim"
    assert not services.store.exists(f"{FOLDER}/image-1.pdf")
