"""Integration tests for listing photo API endpoints."""

from fastapi.testclient import TestClient
from sqlalchemy.orm import Session

from conftest import create_test_listing, make_image_bytes
from exclusive_listings.storage.blob_store import LocalBlobStore


def jpeg(name: str) -> tuple[str, tuple[str, bytes, str]]:
    return ("photos", (name, make_image_bytes(), "image/jpeg"))


def upload(client: TestClient, listing_id: int, *files, position: int | None = None) -> dict:
    params = {"position": position} if position is not None else None
    response = client.post(f"/api/listings/{listing_id}/photos", files=list(files), params=params)
    assert response.status_code == 200
    return response.json()


def photo_ids(client: TestClient, listing_id: int) -> list[int]:
    return [p["id"] for p in client.get(f"/api/listings/{listing_id}/photos").json()["photos"]]


class TestUploadPhotos:
    """Tests for POST /api/listings/{id}/photos."""

    def test_upload_single_photo(self, client: TestClient, listing_id: int) -> None:
        data = upload(client, listing_id, jpeg("front.jpg"))

        assert data["uploaded"] == 1
        assert data["failed"] == 0
        photo = data["results"][0]["data"]
        assert photo["sort_order"] == 1
        assert photo["is_primary"] is True
        assert photo["mime_type"] == "image/webp"
        assert photo["url"].endswith("123-main-st-boston-ma-photo-1.webp")
        assert photo["alt_text"] == "123 Main St Boston - Residential for sale"

    def test_stored_file_exists(
        self, client: TestClient, listing_id: int, blob_store: LocalBlobStore
    ) -> None:
        url = upload(client, listing_id, jpeg("a.jpg"))["results"][0]["data"]["url"]
        assert blob_store.path_for(url).is_file()

    def test_partial_batch(self, client: TestClient, listing_id: int) -> None:
        """A bad file is reported without blocking the good ones."""
        data = upload(
            client,
            listing_id,
            jpeg("a.jpg"),
            ("photos", ("notes.txt", b"plain text", "text/plain")),
            jpeg("b.jpg"),
        )

        assert data["uploaded"] == 2
        assert data["failed"] == 1
        failed = data["results"][1]
        assert failed["filename"] == "notes.txt"
        assert failed["success"] is False
        assert failed["error_code"] == "validation_failed"
        assert [r["data"]["sort_order"] for r in data["results"] if r["success"]] == [1, 2]

    def test_overlong_filename_reported_per_file(self, client: TestClient, listing_id: int) -> None:
        """A filename the upload model rejects fails only that file."""
        long_name = "x" * 300 + ".jpg"

        data = upload(client, listing_id, jpeg("a.jpg"), jpeg(long_name), jpeg("b.jpg"))

        assert data["uploaded"] == 2
        assert data["failed"] == 1
        assert [r["filename"] for r in data["results"]] == ["a.jpg", long_name, "b.jpg"]
        failed = data["results"][1]
        assert failed["success"] is False
        assert failed["error_code"] == "validation_failed"
        assert [r["data"]["sort_order"] for r in data["results"] if r["success"]] == [1, 2]

    def test_spoofed_content_type_rejected(self, client: TestClient, listing_id: int) -> None:
        data = upload(client, listing_id, ("photos", ("x.jpg", b"not really", "image/jpeg")))
        assert data["results"][0]["error_code"] == "validation_failed"

    def test_insert_at_position(self, client: TestClient, listing_id: int) -> None:
        upload(client, listing_id, jpeg("a.jpg"), jpeg("b.jpg"))
        first_two = photo_ids(client, listing_id)

        new = upload(client, listing_id, jpeg("c.jpg"), position=1)["results"][0]["data"]

        assert photo_ids(client, listing_id) == [new["id"], *first_two]

    def test_unknown_listing(self, client: TestClient) -> None:
        response = client.post("/api/listings/9999/photos", files=[jpeg("a.jpg")])
        assert response.status_code == 404

    def test_no_files(self, client: TestClient, listing_id: int) -> None:
        response = client.post(f"/api/listings/{listing_id}/photos")
        assert response.status_code == 422


class TestListPhotos:
    """Tests for GET /api/listings/{id}/photos."""

    def test_empty(self, client: TestClient, listing_id: int) -> None:
        data = client.get(f"/api/listings/{listing_id}/photos").json()
        assert data == {"listing_id": listing_id, "photos": [], "count": 0}

    def test_unknown_listing(self, client: TestClient) -> None:
        assert client.get("/api/listings/9999/photos").status_code == 404


class TestDeletePhoto:
    """Tests for DELETE /api/listings/{id}/photos/{asset_id}."""

    def test_delete_first_photo_promotes_next(
        self, client: TestClient, listing_id: int, blob_store: LocalBlobStore
    ) -> None:
        upload(client, listing_id, jpeg("a.jpg"), jpeg("b.jpg"), jpeg("c.jpg"))
        photos = client.get(f"/api/listings/{listing_id}/photos").json()["photos"]

        response = client.delete(f"/api/listings/{listing_id}/photos/{photos[0]['id']}")

        assert response.status_code == 200
        remaining = client.get(f"/api/listings/{listing_id}/photos").json()["photos"]
        assert [p["id"] for p in remaining] == [photos[1]["id"], photos[2]["id"]]
        assert [p["sort_order"] for p in remaining] == [1, 2]
        assert remaining[0]["is_primary"] is True
        assert blob_store.path_for(photos[0]["url"]).exists() is False
        summary = client.get(f"/api/listings/{listing_id}/summary").json()
        assert summary["primary_photo_url"] == photos[1]["url"]

    def test_delete_unknown_photo(self, client: TestClient, listing_id: int) -> None:
        assert client.delete(f"/api/listings/{listing_id}/photos/777").status_code == 404

    def test_delete_photo_of_other_listing(
        self, client: TestClient, db_session: Session, listing_id: int
    ) -> None:
        other = create_test_listing(db_session, listing_id=43)
        upload(client, listing_id, jpeg("a.jpg"))
        asset_id = photo_ids(client, listing_id)[0]

        assert client.delete(f"/api/listings/{other}/photos/{asset_id}").status_code == 404
        assert photo_ids(client, listing_id) == [asset_id]


class TestReorderPhotos:
    """Tests for PUT /api/listings/{id}/photos/order."""

    def test_reorder(self, client: TestClient, listing_id: int) -> None:
        upload(client, listing_id, jpeg("a.jpg"), jpeg("b.jpg"), jpeg("c.jpg"))
        a, b, c = photo_ids(client, listing_id)

        response = client.put(f"/api/listings/{listing_id}/photos/order", json={"order": [c, a, b]})

        assert response.status_code == 200
        photos = response.json()["photos"]
        assert [p["id"] for p in photos] == [c, a, b]
        assert [p["sort_order"] for p in photos] == [1, 2, 3]
        summary = client.get(f"/api/listings/{listing_id}/summary").json()
        assert summary["primary_photo_url"] == photos[0]["url"]

    def test_reorder_not_a_permutation(self, client: TestClient, listing_id: int) -> None:
        upload(client, listing_id, jpeg("a.jpg"), jpeg("b.jpg"))
        a, _ = photo_ids(client, listing_id)

        response = client.put(f"/api/listings/{listing_id}/photos/order", json={"order": [a]})

        assert response.status_code == 400

    def test_reorder_duplicates(self, client: TestClient, listing_id: int) -> None:
        upload(client, listing_id, jpeg("a.jpg"), jpeg("b.jpg"))
        a, _ = photo_ids(client, listing_id)

        response = client.put(f"/api/listings/{listing_id}/photos/order", json={"order": [a, a]})

        assert response.status_code == 400
