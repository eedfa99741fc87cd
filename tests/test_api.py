import pytest
from fastapi.testclient import TestClient

from iaf.api.main import app
from iaf.api.ratelimit import limiter
from iaf.api.services.kubernetes_service import get_cluster_store
from iaf.resources import APPLICATION, MANAGED_SERVICE

BASE = "/api/v1/namespaces/test-ns"


@pytest.fixture
def client(store):
    limiter.enabled = False
    app.dependency_overrides[get_cluster_store] = lambda: store
    yield TestClient(app)
    app.dependency_overrides.clear()
    limiter.enabled = True


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "healthy"
    assert data["redis"] == "disabled"


def test_create_and_get_application(client, store):
    response = client.post(f"{BASE}/applications", json={"name": "myapp", "image": "nginx:latest"})
    assert response.status_code == 201
    assert response.json()["phase"] == "Pending"

    stored = store.get(APPLICATION, "test-ns", "myapp")
    assert stored["spec"] == {"port": 8080, "replicas": 1, "image": "nginx:latest"}

    response = client.get(f"{BASE}/applications/myapp")
    assert response.status_code == 200
    assert response.json()["image"] == "nginx:latest"

    response = client.get(f"{BASE}/applications")
    assert response.json()["total"] == 1


def test_create_application_with_git_source(client, store):
    response = client.post(f"{BASE}/applications", json={
        "name": "api", "gitUrl": "https://github.com/acme/api", "tls": False,
    })
    assert response.status_code == 201
    spec = store.get(APPLICATION, "test-ns", "api")["spec"]
    assert spec["git"] == {"url": "https://github.com/acme/api", "revision": "main"}
    assert spec["tls"] == {"enabled": False}


def test_create_application_without_source_is_rejected(client):
    response = client.post(f"{BASE}/applications", json={"name": "myapp"})
    assert response.status_code == 400
    assert "image" in response.json()["detail"]


def test_create_application_reserved_name_is_rejected(client):
    response = client.post(f"{BASE}/applications", json={"name": "iaf-app", "image": "x"})
    assert response.status_code == 400


def test_duplicate_application_conflicts(client):
    client.post(f"{BASE}/applications", json={"name": "myapp", "image": "x"})
    response = client.post(f"{BASE}/applications", json={"name": "myapp", "image": "x"})
    assert response.status_code == 409


def test_missing_application_is_404(client):
    assert client.get(f"{BASE}/applications/ghost").status_code == 404
    assert client.delete(f"{BASE}/applications/ghost").status_code == 404


def test_bind_unbind_and_delete_guard(client, store):
    client.post(f"{BASE}/applications", json={"name": "myapp", "image": "x"})
    response = client.post(f"{BASE}/services", json={"name": "pgdb", "plan": "small"})
    assert response.status_code == 201
    assert response.json()["plan"] == "small"

    response = client.post(f"{BASE}/services/pgdb/bind", json={"appName": "myapp"})
    assert response.status_code == 200
    assert response.json()["boundServices"] == ["pgdb"]
    app_spec = store.get(APPLICATION, "test-ns", "myapp")["spec"]
    assert app_spec["boundManagedServices"] == [{"serviceName": "pgdb", "secretName": "pgdb-app"}]
    assert store.get(MANAGED_SERVICE, "test-ns", "pgdb")["status"]["boundApps"] == ["myapp"]

    assert client.post(f"{BASE}/services/pgdb/bind", json={"appName": "myapp"}).status_code == 409

    response = client.delete(f"{BASE}/services/pgdb")
    assert response.status_code == 409
    assert "unbind" in response.json()["detail"]

    response = client.post(f"{BASE}/services/pgdb/unbind", json={"appName": "myapp"})
    assert response.status_code == 200
    assert response.json()["boundServices"] == []
    assert store.get(MANAGED_SERVICE, "test-ns", "pgdb")["status"]["boundApps"] == []

    assert client.delete(f"{BASE}/services/pgdb").status_code == 202
    assert store.get(MANAGED_SERVICE, "test-ns", "pgdb") is None


def test_bind_unknown_service_is_404(client):
    client.post(f"{BASE}/applications", json={"name": "myapp", "image": "x"})
    response = client.post(f"{BASE}/services/ghost/bind", json={"appName": "myapp"})
    assert response.status_code == 404


def test_deleting_application_releases_bindings(client, store):
    client.post(f"{BASE}/applications", json={"name": "myapp", "image": "x"})
    client.post(f"{BASE}/services", json={"name": "pgdb"})
    client.post(f"{BASE}/services/pgdb/bind", json={"appName": "myapp"})

    assert client.delete(f"{BASE}/applications/myapp").status_code == 202
    assert store.get(APPLICATION, "test-ns", "myapp") is None
    assert store.get(MANAGED_SERVICE, "test-ns", "pgdb")["status"]["boundApps"] == []


def test_application_events_from_conditions(client, store):
    client.post(f"{BASE}/applications", json={"name": "myapp", "image": "x"})
    obj = store.get(APPLICATION, "test-ns", "myapp")
    obj["status"] = {"phase": "Deploying", "conditions": [{
        "type": "Ready", "status": "False", "reason": "Deploying",
        "message": "Waiting for pod replicas to become available",
        "lastTransitionTime": "2026-01-01T00:00:00Z",
    }]}
    store.replace_status(APPLICATION, "test-ns", "myapp", obj)

    response = client.get(f"{BASE}/applications/myapp/events")
    assert response.status_code == 200
    events = response.json()["events"]
    assert events == [{
        "timestamp": "2026-01-01T00:00:00Z",
        "event": "Deploying",
        "message": "Waiting for pod replicas to become available",
        "source": "status",
    }]


def test_metrics_endpoint(client):
    response = client.get("/metrics")
    assert response.status_code == 200


def test_ready(client):
    response = client.get("/ready")
    assert response.status_code == 200
    assert response.json() == {"status": "ready"}


def test_update_application_switches_source_and_scales(client, store):
    client.post(f"{BASE}/applications", json={"name": "myapp", "image": "nginx:latest", "port": 80})

    response = client.put(f"{BASE}/applications/myapp", json={
        "gitUrl": "https://github.com/acme/api", "replicas": 3,
        "env": [{"name": "LOG_LEVEL", "value": "debug"}],
    })
    assert response.status_code == 200
    data = response.json()
    assert data["image"] == ""
    assert data["gitUrl"] == "https://github.com/acme/api"
    assert data["replicas"] == 3

    spec = store.get(APPLICATION, "test-ns", "myapp")["spec"]
    assert "image" not in spec
    assert spec["git"] == {"url": "https://github.com/acme/api", "revision": "main"}
    assert spec["port"] == 80
    assert spec["env"] == [{"name": "LOG_LEVEL", "value": "debug"}]


def test_update_application_keeps_unset_fields(client, store):
    client.post(f"{BASE}/applications", json={
        "name": "myapp", "image": "x", "env": [{"name": "A", "value": "1"}],
    })
    response = client.put(f"{BASE}/applications/myapp", json={"port": 9000})
    assert response.status_code == 200
    spec = store.get(APPLICATION, "test-ns", "myapp")["spec"]
    assert spec["image"] == "x"
    assert spec["port"] == 9000
    assert spec["env"] == [{"name": "A", "value": "1"}]


def test_update_missing_application_is_404(client):
    response = client.put(f"{BASE}/applications/ghost", json={"replicas": 2})
    assert response.status_code == 404


def test_update_application_rejects_bad_replicas(client):
    client.post(f"{BASE}/applications", json={"name": "myapp", "image": "x"})
    response = client.put(f"{BASE}/applications/myapp", json={"replicas": 0})
    assert response.status_code == 422


def test_application_logs_from_first_pod(client, store):
    client.post(f"{BASE}/applications", json={"name": "myapp", "image": "x"})
    store.add_pod("test-ns", "myapp-abc", {"iaf.io/application": "myapp"},
                  logs={"app": "line1\nline2\nline3"})
    store.add_pod("test-ns", "myapp-def", {"iaf.io/application": "myapp"}, logs={"app": "other"})
    store.add_pod("test-ns", "other-xyz", {"iaf.io/application": "other"}, logs={"app": "nope"})

    response = client.get(f"{BASE}/applications/myapp/logs", params={"lines": 2})
    assert response.status_code == 200
    assert response.json() == {"logs": "line2\nline3", "pods": 2, "podName": "myapp-abc"}


def test_application_logs_without_pods(client):
    client.post(f"{BASE}/applications", json={"name": "myapp", "image": "x"})
    response = client.get(f"{BASE}/applications/myapp/logs")
    assert response.status_code == 200
    assert response.json() == {"logs": "", "pods": 0, "podName": ""}


def test_logs_of_missing_application_is_404(client):
    assert client.get(f"{BASE}/applications/ghost/logs").status_code == 404
    assert client.get(f"{BASE}/applications/ghost/build").status_code == 404


def test_build_logs_join_init_containers_of_latest_pod(client, store):
    client.post(f"{BASE}/applications", json={"name": "myapp", "gitUrl": "https://github.com/acme/api"})
    obj = store.get(APPLICATION, "test-ns", "myapp")
    obj["status"] = {"phase": "Building", "buildStatus": "Building"}
    store.replace_status(APPLICATION, "test-ns", "myapp", obj)

    store.add_pod("test-ns", "myapp-build-1-pod", {"image.kpack.io/image": "myapp"},
                  logs={"detect": "old"}, init_containers=["detect"])
    # "export" has not started yet, so its log read fails and it is left out
    store.add_pod("test-ns", "myapp-build-2-pod", {"image.kpack.io/image": "myapp"},
                  logs={"detect": "detected python", "build": "pip install"},
                  init_containers=["detect", "build", "export"])

    response = client.get(f"{BASE}/applications/myapp/build")
    assert response.status_code == 200
    assert response.json() == {
        "buildLogs": "=== detect ===\ndetected python\n=== build ===\npip install\n",
        "buildStatus": "Building",
        "podName": "myapp-build-2-pod",
    }


def test_build_logs_without_build_pods(client, store):
    client.post(f"{BASE}/applications", json={"name": "myapp", "image": "x"})
    response = client.get(f"{BASE}/applications/myapp/build")
    assert response.status_code == 200
    assert response.json() == {"buildLogs": "", "buildStatus": "", "podName": ""}
