from __future__ import annotations

import pytest

import recipebook
from recipebook import create_app
from recipebook.models import RecipeInput

TEA = {
    "title": "Tea",
    "author": "A",
    "datePublished": "2024-01-01",
    "steps": ["Boil water", "Add leaves"],
    "ingredients": ["Water", "Tea leaves"],
    "prepTimeMinutes": 3,
}


def create_test_client(backend):
    app = create_app(backend=backend)
    app.config.update(TESTING=True)
    return app.test_client()


@pytest.fixture
def local_client(local_storage):
    return create_test_client(local_storage)


@pytest.fixture
def hosted_client(hosted_storage):
    return create_test_client(hosted_storage)


def as_user(subject: str) -> dict:
    return {"X-User-Id": subject}


def test_list_shows_existing_recipes(local_client, local_storage):
    local_storage.add_recipe(RecipeInput.from_mapping(dict(TEA, title="Chocolate Cake")))

    response = local_client.get("/api/recipes")

    assert response.status_code == 200
    assert [recipe["title"] for recipe in response.get_json()] == ["Chocolate Cake"]


def test_can_create_and_fetch_recipe(local_client):
    response = local_client.post("/api/recipes", json=TEA)

    assert response.status_code == 201
    created = response.get_json()
    assert created["id"]
    assert created["createdAt"] == created["updatedAt"]
    assert len(created["steps"]) == 2
    assert created["prepTimeLabel"] == "3min"

    fetched = local_client.get(f"/api/recipes/{created['id']}").get_json()
    assert fetched == created


def test_create_trims_input_and_drops_blank_steps(local_client):
    payload = dict(TEA, title="  Tea  ", steps=["Boil water", "   ", "Add leaves"])

    created = local_client.post("/api/recipes", json=payload).get_json()

    assert created["title"] == "Tea"
    assert created["steps"] == ["Boil water", "Add leaves"]


def test_cannot_create_recipe_without_required_fields(local_client, local_storage):
    response = local_client.post(
        "/api/recipes",
        json=dict(TEA, title="", steps=["  "], prepTimeMinutes=0),
    )

    assert response.status_code == 400
    fields = response.get_json()["fields"]
    assert set(fields) == {"title", "steps", "prep_time_minutes"}
    assert not list(local_storage.list_recipes())


def test_unknown_fields_are_rejected(local_client):
    response = local_client.post("/api/recipes", json=dict(TEA, rating=5))

    assert response.status_code == 400
    assert "rating" in response.get_json()["error"]


def test_can_update_recipe_partially(local_client):
    created = local_client.post("/api/recipes", json=TEA).get_json()

    response = local_client.patch(f"/api/recipes/{created['id']}", json={"prepTimeMinutes": 5})

    assert response.status_code == 200
    updated = response.get_json()
    assert updated["prepTimeMinutes"] == 5
    assert updated["title"] == "Tea"
    assert updated["updatedAt"] > updated["createdAt"]


def test_cannot_update_recipe_with_blank_title(local_client):
    created = local_client.post("/api/recipes", json=TEA).get_json()

    response = local_client.patch(f"/api/recipes/{created['id']}", json={"title": " "})

    assert response.status_code == 400
    assert local_client.get(f"/api/recipes/{created['id']}").get_json()["title"] == "Tea"


def test_update_and_delete_missing_recipe_return_404(local_client):
    assert local_client.patch("/api/recipes/missing", json={"title": "X"}).status_code == 404
    assert local_client.delete("/api/recipes/missing").status_code == 404
    assert local_client.get("/api/recipes/missing").status_code == 404


def test_delete_recipe_removes_item(local_client):
    created = local_client.post("/api/recipes", json=TEA).get_json()

    response = local_client.delete(f"/api/recipes/{created['id']}")

    assert response.status_code == 204
    assert local_client.get(f"/api/recipes/{created['id']}").status_code == 404


def test_search_by_title(local_client):
    local_client.post("/api/recipes", json=dict(TEA, title="Green Tea"))
    local_client.post("/api/recipes", json=dict(TEA, title="Apple Pie"))

    response = local_client.get("/api/recipes", query_string={"q": "tea"})

    assert [recipe["title"] for recipe in response.get_json()] == ["Green Tea"]


def test_local_backend_does_not_offer_uploads(local_client):
    assert local_client.post("/api/uploads").status_code == 501
    response = local_client.post("/api/recipes", json=dict(TEA, imageStorageId="recipes/x"))
    assert response.status_code == 501


def test_hosted_writes_require_identity(hosted_client):
    assert hosted_client.post("/api/recipes", json=TEA).status_code == 401
    assert hosted_client.post("/api/uploads").status_code == 401
    assert hosted_client.get("/api/recipes").get_json() == []


def test_hosted_recipes_are_private(hosted_client):
    created = hosted_client.post("/api/recipes", json=TEA, headers=as_user("alice")).get_json()
    assert created["userId"] == "alice"

    path = f"/api/recipes/{created['id']}"
    assert hosted_client.get(path, headers=as_user("bob")).status_code == 404
    assert hosted_client.patch(path, json={"title": "X"}, headers=as_user("bob")).status_code == 404
    assert hosted_client.delete(path, headers=as_user("bob")).status_code == 404
    assert hosted_client.get("/api/recipes", headers=as_user("bob")).get_json() == []

    assert hosted_client.get(path, headers=as_user("alice")).get_json()["title"] == "Tea"


def test_hosted_upload_flow(hosted_client, bucket):
    upload = hosted_client.post("/api/uploads", headers=as_user("alice"))
    assert upload.status_code == 201
    target = upload.get_json()
    bucket.objects[target["storageId"]] = b"jpeg"

    created = hosted_client.post(
        "/api/recipes",
        json=dict(TEA, imageStorageId=target["storageId"]),
        headers=as_user("alice"),
    ).get_json()

    assert created["imageStorageId"] == target["storageId"]
    assert created["image"].startswith("https://signed.example.test/")

    image_path = f"/api/images/{target['storageId']}"
    image = hosted_client.get(image_path, headers=as_user("alice")).get_json()
    assert image["url"].startswith("https://signed.example.test/")
    assert hosted_client.get(image_path).get_json() == {"url": None}

    response = hosted_client.delete(f"/api/recipes/{created['id']}", headers=as_user("alice"))
    assert response.status_code == 204
    assert target["storageId"] not in bucket.objects


def test_hosted_rejects_references_outside_the_upload_area(hosted_client, bucket):
    bucket.objects["backups/firestore-export.json"] = b"precious"

    response = hosted_client.post(
        "/api/recipes",
        json=dict(TEA, imageStorageId="backups/firestore-export.json"),
        headers=as_user("mallory"),
    )
    assert response.status_code == 400
    assert hosted_client.get("/api/recipes", headers=as_user("mallory")).get_json() == []

    image = hosted_client.get("/api/images/backups/firestore-export.json", headers=as_user("mallory"))
    assert image.status_code == 400
    assert hosted_client.get("/api/images/backups/firestore-export.json").get_json() == {"url": None}

    assert bucket.objects == {"backups/firestore-export.json": b"precious"}
    assert bucket.signed == []


def test_remove_image_must_be_a_boolean(hosted_client, bucket):
    storage_id = bucket.upload()
    created = hosted_client.post(
        "/api/recipes", json=dict(TEA, imageStorageId=storage_id), headers=as_user("alice")
    ).get_json()
    path = f"/api/recipes/{created['id']}"

    response = hosted_client.patch(path, json={"removeImage": "false"}, headers=as_user("alice"))

    assert response.status_code == 400
    assert storage_id in bucket.objects
    assert hosted_client.get(path, headers=as_user("alice")).get_json()["imageStorageId"] == storage_id

    response = hosted_client.patch(path, json={"removeImage": True}, headers=as_user("alice"))
    assert response.status_code == 200
    assert response.get_json()["image"] is None
    assert storage_id not in bucket.objects


def test_hosted_backend_without_bucket_reports_storage_failure(firestore_client):
    pytest.importorskip("google.cloud.firestore")
    from recipebook.gcp_storage import FirestoreRecipeStorage

    client = create_test_client(FirestoreRecipeStorage(firestore_client=firestore_client))

    response = client.post("/api/uploads", headers=as_user("alice"))
    assert response.status_code == 502
    assert "bucket" in response.get_json()["error"]
    assert client.get(f"/api/images/recipes/{'a' * 32}", headers=as_user("alice")).status_code == 502


def test_local_backend_from_environment_is_closed_at_exit(monkeypatch):
    registered = []
    monkeypatch.setenv("RECIPES_BACKEND", "local")
    monkeypatch.setenv("RECIPES_DATABASE_URL", "sqlite://")
    monkeypatch.setattr(recipebook.atexit, "register", registered.append)

    app = create_app()
    client = app.test_client()

    assert len(client.get("/api/recipes").get_json()) == 2
    (close,) = registered
    database = close.__self__
    assert database.is_open
    close()
    assert not database.is_open

