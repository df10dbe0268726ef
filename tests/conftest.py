"""Shared test fixtures."""

import sys
from pathlib import Path

import pytest
import yaml

# Add project root to path for script imports
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))


def make_kubeconfig(contexts, current_context=""):
    """
    Build a kubeconfig from (context, cluster, user) triples. A cluster or user
    of None leaves that field out of the context.
    """
    clusters = {}
    users = {}
    ctx_items = []

    for name, cluster, user in contexts:
        body = {}
        if cluster:
            body["cluster"] = cluster
            clusters.setdefault(cluster, {"name": cluster, "cluster": {"server": f"https://{cluster}.example.com"}})
        if user:
            body["user"] = user
            users.setdefault(user, {"name": user, "user": {"token": f"token-{user}"}})
        ctx_items.append({"name": name, "context": body})

    return {
        "apiVersion": "v1",
        "kind": "Config",
        "clusters": list(clusters.values()),
        "users": list(users.values()),
        "contexts": ctx_items,
        "current-context": current_context,
    }


def write_kubeconfig_file(path: Path, doc: dict):
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(yaml.safe_dump(doc, sort_keys=False))
    return path


@pytest.fixture
def kube_dir(tmp_path):
    return tmp_path / ".kube"


@pytest.fixture
def default_kubeconfig(kube_dir):
    doc = make_kubeconfig([("A", "c1", "u1")], current_context="A")
    return write_kubeconfig_file(kube_dir / "config", doc)


@pytest.fixture
def incoming_kubeconfig(tmp_path):
    doc = make_kubeconfig([("ctxX", "c2", "u1")], current_context="ctxX")
    return write_kubeconfig_file(tmp_path / "incoming" / "kubeconfig", doc)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    monkeypatch.delenv("KUBECONFIG", raising=False)
    monkeypatch.delenv("DRY_RUN", raising=False)


@pytest.fixture
def no_openssl(monkeypatch):
    """
    Make every openssl call fail as if the binary were missing.
    """
    def fake_run(cmd, **kwargs):
        raise FileNotFoundError(cmd[0])

    monkeypatch.setattr("kubemerge.cert_utils.subprocess.run", fake_run)
