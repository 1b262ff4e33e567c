"""
Resource API tests — slot catalog, availability and work package compilation.
"""

import pytest

BASE = "/api/v1/resources"
CATEGORIES = ["discovery", "preselection", "selection"]


@pytest.fixture()
def work_package(make):
    return make.work_package(make.project(), title="Roof repair")


@pytest.fixture()
def use_gateway(app):
    def _install(gateway):
        app.extensions["knowledge_gateway"] = gateway
        return gateway
    return _install


class TestSlotCatalog:

    def test_register_slot(self, client):
        res = client.post(f"{BASE}/slots", json={"category": "discovery", "external_ref_id": "kb_1"})
        assert res.status_code == 201
        body = res.get_json()
        assert body["status"] == "available"
        assert body["specialty"] == "generic"

    def test_register_requires_category_and_ref(self, client):
        res = client.post(f"{BASE}/slots", json={"name": "no ref"})
        assert res.status_code == 400
        assert set(res.get_json()["details"]) == {"category", "external_ref_id"}

    def test_duplicate_ref_rejected(self, client):
        client.post(f"{BASE}/slots", json={"category": "discovery", "external_ref_id": "kb_1"})
        res = client.post(f"{BASE}/slots", json={"category": "selection", "external_ref_id": "kb_1"})
        assert res.status_code == 400

    def test_list_filters(self, client, make):
        make.slot("discovery")
        make.slot("selection")

        body = client.get(f"{BASE}/slots?category=selection").get_json()

        assert body["total"] == 1
        assert body["items"][0]["category"] == "selection"

    def test_availability_includes_empty_categories(self, client, make):
        make.slot("discovery")
        body = client.get(f"{BASE}/availability").get_json()
        assert body["available"] == {"discovery": 1, "preselection": 0, "selection": 0}

    def test_release_missing_slot_is_404(self, client):
        assert client.post(f"{BASE}/slots/77/release").status_code == 404


class TestCompile:

    def test_compile_success(self, client, make, work_package, use_gateway, fake_gateway):
        use_gateway(fake_gateway)
        for c in CATEGORIES:
            make.slot(c, external_ref_id=f"kb_{c}")

        res = client.post(f"{BASE}/work-packages/{work_package.id}/compile")

        assert res.status_code == 200
        assert res.get_json()["refs"] == {c: f"kb_{c}" for c in CATEGORIES}
        slots = client.get(f"{BASE}/work-packages/{work_package.id}/slots").get_json()
        assert slots["total"] == 3

    def test_exhausted_pool_is_503_and_retryable(self, client, make, work_package, use_gateway, fake_gateway):
        use_gateway(fake_gateway)
        make.slot("discovery")

        res = client.post(f"{BASE}/work-packages/{work_package.id}/compile")

        assert res.status_code == 503
        body = res.get_json()
        assert body["code"] == "ERR_POOL_EXHAUSTED"
        assert body["details"]["retryable"] is True
        assert body["details"]["category"] == "preselection"
        assert client.get(f"{BASE}/availability").get_json()["available"]["discovery"] == 1

    def test_sync_failure_is_502(self, client, make, work_package, use_gateway, failing_gateway):
        use_gateway(failing_gateway("kb_selection"))
        for c in CATEGORIES:
            make.slot(c, external_ref_id=f"kb_{c}")

        res = client.post(f"{BASE}/work-packages/{work_package.id}/compile")

        assert res.status_code == 502
        assert res.get_json()["code"] == "ERR_SYNC_FAILURE"
        assert client.get(f"{BASE}/work-packages/{work_package.id}/slots").get_json()["total"] == 0

    def test_compile_unknown_work_package(self, client, use_gateway, fake_gateway):
        use_gateway(fake_gateway)
        assert client.post(f"{BASE}/work-packages/999/compile").status_code == 404

    def test_release_work_package_slots(self, client, make, work_package, use_gateway, fake_gateway):
        use_gateway(fake_gateway)
        for c in CATEGORIES:
            make.slot(c)
        client.post(f"{BASE}/work-packages/{work_package.id}/compile")

        res = client.post(f"{BASE}/work-packages/{work_package.id}/release")

        assert len(res.get_json()["released"]) == 3
        assert client.get(f"{BASE}/availability").get_json()["available"] == {c: 1 for c in CATEGORIES}
