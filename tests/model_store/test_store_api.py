import pytest
from fastapi.testclient import TestClient

from modelworks.model_store import api as api_module
from modelworks.model_store.errors import LoadFailed
from modelworks.model_store.pipelines import LoaderRegistry, PipelineBackend
from modelworks.model_store.service import ModelStore


class _Handle:
    def load_resources(self):
        pass

    def unload_resources(self):
        pass


class _Broken:
    def load_resources(self):
        raise LoadFailed("not enough memory")

    def unload_resources(self):
        pass


@pytest.fixture
def client(store_config, make_model):
    root = store_config.models_root
    make_model(root / "SD15Base", "VAEDecoder.mlmodelc", "TextEncoder.mlmodelc", "Unet.mlmodelc")
    make_model(root / "Broken", "Unet.mlmodelc", "TextEncoder2.mlmodelc")
    loaders = LoaderRegistry()
    loaders.register(PipelineBackend.COMPILED_GRAPH_LEGACY, lambda r, b: _Handle())
    loaders.register(PipelineBackend.COMPILED_GRAPH_WIDE, lambda r, b: _Broken())
    store = ModelStore(store_config, loaders=loaders)
    store.scan_now()
    api_module.set_store(store)
    yield TestClient(api_module.app)
    api_module.set_store(None)
    store.close()


def test_list_models(client):
    r = client.get("/v1/models")
    assert r.status_code == 200
    data = r.json()
    assert [m["name"] for m in data["legacy"]] == ["SD15Base"]
    assert [m["name"] for m in data["variant_b"]] == ["Broken"]
    assert data["legacy"][0]["variant"] == "legacy"


def test_rescan_picks_up_new_folder(client, store_config, make_model):
    make_model(store_config.models_root / "Later", "Unet.mlmodelc", "VAE.mlmodelc")
    r = client.post("/v1/models/rescan")
    assert r.status_code == 200
    assert "Later" in [m["name"] for m in r.json()["legacy"]]


def test_select_and_unload(client):
    r = client.post("/v1/select", json={"name": "SD15Base"})
    assert r.status_code == 200
    assert r.json() == {
        "name": "SD15Base",
        "backend": "compiled-graph-legacy",
        "kind": "compiled-graph",
    }
    assert client.post("/v1/unload").json() == {"status": "unloaded"}


def test_select_errors_map_to_status_codes(client):
    assert client.post("/v1/select", json={"name": "Nope"}).status_code == 404
    r = client.post("/v1/select", json={"name": "Broken"})
    assert r.status_code == 409
    assert "not enough memory" in r.json()["detail"]


def test_transfer_endpoints(client):
    r = client.post(
        "/v1/transfers",
        json={"name": "SD15Base", "source": "https://example.com/SD15Base.zip"},
    )
    assert r.status_code == 200
    assert r.json() == {"id": None, "accepted": False}
    assert client.get("/v1/transfers").json() == []
    assert client.delete("/v1/transfers/unknown").status_code == 404
    assert client.post("/v1/transfers/unknown/retry").status_code == 409


def test_delete_model_endpoint(client, store_config):
    assert client.delete("/v1/models/Missing").status_code == 404
    r = client.delete("/v1/models/SD15Base")
    assert r.status_code == 200
    assert not (store_config.models_root / "SD15Base").exists()


def test_emergency_stop_endpoint(client):
    r = client.post("/v1/emergency-stop")
    assert r.status_code == 200
    assert r.json() == {"cancelled": [], "cleanup_failures": []}
