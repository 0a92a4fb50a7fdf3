"""Tests for the in-memory and HTTP resource stores."""

import threading

import pytest

from scim_steward.decorator import ResourceServiceDecorator
from scim_steward.errors import StoreError
from scim_steward.http_client import SCIMClient
from scim_steward.outcomes import ServerError, Success
from scim_steward.payload_factory import make_user
from scim_steward.resource import Meta, Resource
from scim_steward.schemas import USER_SCHEMA_URN
from scim_steward.store import HttpResourceStore, InMemoryResourceStore
from tests.mock_scim_server import MockSCIMServer


def _user(name="ann"):
    return Resource("User", [USER_SCHEMA_URN], {"userName": name}, meta=Meta(resource_type="User"))


# -- in-memory -----------------------------------------------------------------

def test_in_memory_crud():
    store = InMemoryResourceStore("User")
    resource = _user()
    resource_id = store.create(resource)
    assert resource.id == resource_id
    assert store.exists(resource_id)
    assert store.fetch(resource_id).get("userName") == "ann"

    resource.attributes["userName"] = "bob"
    store.update(resource)
    assert store.fetch(resource_id).get("userName") == "bob"

    store.delete(resource_id)
    assert not store.exists(resource_id)
    assert store.fetch(resource_id) is None


def test_in_memory_isolates_copies():
    store = InMemoryResourceStore("User")
    resource = _user()
    resource_id = store.create(resource)
    resource.attributes["userName"] = "mutated"
    fetched = store.fetch(resource_id)
    fetched.attributes["userName"] = "also mutated"
    assert store.fetch(resource_id).get("userName") == "ann"


def test_in_memory_missing_ids():
    store = InMemoryResourceStore("User")
    missing = _user()
    missing.id = "nope"
    with pytest.raises(StoreError):
        store.update(missing)
    with pytest.raises(StoreError):
        store.delete("nope")


def test_in_memory_location():
    store = InMemoryResourceStore("User", base_url="https://scim.example.com/v2/")
    resource = _user()
    resource_id = store.create(resource)
    assert resource.meta.location == f"https://scim.example.com/v2/Users/{resource_id}"


def test_in_memory_concurrent_creates():
    store = InMemoryResourceStore("User")
    ids = []

    def worker():
        for i in range(50):
            ids.append(store.create(_user(f"user{i}")))

    threads = [threading.Thread(target=worker) for _ in range(4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    assert len(set(ids)) == 200
    assert len(store) == 200


# -- HTTP ----------------------------------------------------------------------

@pytest.fixture
def server():
    with MockSCIMServer() as s:
        yield s


@pytest.fixture
def http_store(server):
    return HttpResourceStore(SCIMClient(server.base_url), "User", "/Users")


def test_http_crud(server, http_store):
    resource = _user()
    resource_id = http_store.create(resource)
    assert resource.id == resource_id
    assert resource.meta.location == f"{server.base_url}/Users/{resource_id}"
    assert resource_id in server.stores["Users"]

    assert http_store.exists(resource_id)
    fetched = http_store.fetch(resource_id)
    assert fetched.get("userName") == "ann"
    assert fetched.id == resource_id

    fetched.attributes["userName"] = "bob"
    http_store.update(fetched)
    assert server.stores["Users"][resource_id]["userName"] == "bob"

    http_store.delete(resource_id)
    assert not http_store.exists(resource_id)
    assert http_store.fetch(resource_id) is None


def test_http_create_without_id():
    with MockSCIMServer(faults={"missing_id": True}) as server:
        store = HttpResourceStore(SCIMClient(server.base_url), "User")
        with pytest.raises(StoreError):
            store.create(_user())


def test_http_write_failure():
    with MockSCIMServer(faults={"fail_writes": True}) as server:
        store = HttpResourceStore(SCIMClient(server.base_url), "User")
        with pytest.raises(StoreError) as excinfo:
            store.create(_user())
        assert excinfo.value.status_code == 500


def test_http_conflict_is_store_error(server, http_store, caplog):
    http_store.create(_user())
    with pytest.raises(StoreError) as excinfo:
        http_store.create(_user())
    assert excinfo.value.status_code == 409
    assert "uniqueness: " in caplog.text


def test_decorator_over_http_store(server, http_store):
    service = ResourceServiceDecorator(http_store, "User")
    created = service.create_resource(make_user({"password": "s3cret"}))
    assert isinstance(created, Success)
    assert created.resource.get("password") is None
    stored = server.stores["Users"][created.resource.id]
    assert stored["meta"]["resourceType"] == "User"

    patched = service.patch_resource(
        {"schemas": ["urn:ietf:params:scim:api:messages:2.0:PatchOp"],
         "Operations": [{"op": "replace", "path": 'emails[type eq "work"].value', "value": "new@example.com"}]},
        created.resource.id,
    )
    assert isinstance(patched, Success), patched
    assert server.stores["Users"][created.resource.id]["emails"][0]["value"] == "new@example.com"


def test_decorator_reports_remote_failure():
    with MockSCIMServer(faults={"fail_writes": True}) as server:
        service = ResourceServiceDecorator(HttpResourceStore(SCIMClient(server.base_url), "User"), "User")
        assert isinstance(service.create_resource(make_user()), ServerError)
