"""Tests for the replication and repository HTTP endpoints."""

import pytest

pytest.importorskip("fastapi")

from fastapi import FastAPI
from fastapi.testclient import TestClient

from rangesync.repository import (
    Repository,
    RepositoryRegistry,
    create_replication_router,
    create_repository_router,
)


@pytest.fixture
def registry(tmp_path):
    master = Repository(tmp_path / "shop", "apache", "shop", master=True)
    master.commit(1, b"one")
    master.commit(2, b"two")
    replica = Repository(tmp_path / "store", "apache", "store", master=False)
    return RepositoryRegistry([master, replica])


@pytest.fixture
def client(registry):
    app = FastAPI()
    app.include_router(create_replication_router(registry), prefix="/replication")
    app.include_router(create_repository_router(registry), prefix="/repository")
    return TestClient(app)


def params(customer="apache", name="shop", version=None) -> dict:
    result = {"customer": customer, "name": name}
    if version is not None:
        result["version"] = str(version)
    return result


class TestQuery:
    """Tests for the query command on both endpoints."""

    @pytest.mark.parametrize("prefix", ["/replication", "/repository"])
    def test_query_all(self, client, prefix):
        response = client.get(f"{prefix}/query")
        assert response.status_code == 200
        assert response.text == "apache,shop,1-2\napache,store,\n"

    def test_query_one(self, client):
        response = client.get("/replication/query", params=params())
        assert response.text == "apache,shop,1-2\n"

    def test_query_by_name(self, client):
        assert client.get("/repository/query", params={"name": "store"}).text == "apache,store,\n"

    def test_query_filter_rejected(self, client):
        assert client.get("/replication/query", params={"filter": "(x=y)"}).status_code == 400


class TestCheckout:
    """Tests for get/checkout."""

    def test_get(self, client):
        response = client.get("/replication/get", params=params(version=2))
        assert response.status_code == 200
        assert response.content == b"two"
        assert response.headers["content-type"] == "application/octet-stream"

    def test_checkout(self, client):
        response = client.get("/repository/checkout", params=params(version=1))
        assert response.content == b"one"

    def test_missing_version(self, client):
        assert client.get("/repository/checkout", params=params(version=9)).status_code == 404

    def test_unknown_repository(self, client):
        response = client.get("/replication/get", params=params(name="nope", version=1))
        assert response.status_code == 404

    @pytest.mark.parametrize("version", ["abc", "0", None])
    def test_bad_version(self, client, version):
        query = params()
        if version is not None:
            query["version"] = version
        assert client.get("/replication/get", params=query).status_code == 400


class TestCommit:
    """Tests for the primary commit command."""

    def test_commit_next_version(self, client, registry):
        response = client.post("/repository/commit", params=params(version=3), content=b"three")
        assert response.status_code == 200
        assert registry.get("apache", "shop").checkout(3) == b"three"

    def test_commit_out_of_sequence(self, client):
        response = client.post("/repository/commit", params=params(version=5), content=b"x")
        assert response.status_code == 500

    def test_commit_repeat_version(self, client):
        response = client.post("/repository/commit", params=params(version=2), content=b"other")
        assert response.status_code == 500

    def test_commit_non_master(self, client):
        response = client.post("/repository/commit", params=params(name="store", version=1), content=b"x")
        assert response.status_code == 500

    def test_commit_unchanged(self, client, registry):
        response = client.post("/repository/commit", params=params(version=3), content=b"two")
        assert response.status_code == 304
        assert registry.get("apache", "shop").highest_version == 2

    def test_commit_missing_params(self, client):
        response = client.post("/repository/commit", params={"customer": "apache"}, content=b"x")
        assert response.status_code == 400

    def test_commit_not_on_replication_endpoint(self, client):
        response = client.post("/replication/commit", params=params(version=3), content=b"x")
        assert response.status_code in (404, 405)


class TestPut:
    """Tests for the replication put command."""

    def test_put_on_replica(self, client, registry):
        response = client.post("/replication/put", params=params(name="store", version=4), content=b"four")
        assert response.status_code == 200
        assert registry.get("apache", "store").checkout(4) == b"four"

    def test_put_identical(self, client):
        response = client.post("/replication/put", params=params(version=1), content=b"one")
        assert response.status_code == 200

    def test_put_conflict(self, client, registry):
        response = client.post("/replication/put", params=params(version=1), content=b"different")
        assert response.status_code == 409
        assert registry.get("apache", "shop").checkout(1) == b"one"
