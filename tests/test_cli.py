import json

import pytest
import requests

import cli
from fakes import FakeNetworkingApi, make_ingress, status_transport
from itp.reconciler import Reconciler
from itp.settings import DEFAULT_ANNOTATION_KEY as KEY


@pytest.fixture
def controller(clean_env):
    """Wire cli to an in-memory API and mocked health endpoints."""
    api = FakeNetworkingApi([make_ingress("site", namespace="web", annotations={"kubernetes.io/ingress.class": "public-nginx"})])
    transport = status_transport({"10.0.0.1": 200, "10.0.0.2": 500})
    clean_env.setattr(cli, "configure_logging", lambda level: None)
    clean_env.setattr(cli, "load_api", lambda kubeconfig=None: api)
    clean_env.setattr(cli, "Reconciler", lambda *a, **kw: Reconciler(*a, transport=transport, **kw))
    return api


def test_once_patches_and_exits_zero(controller):
    assert cli.main(["once", "--ips", "10.0.0.1,10.0.0.2", "--http-path", "/health"]) == 0
    assert controller.annotation("web", "site", KEY) == "10.0.0.1"


def test_once_without_healthy_target_exits_one(controller):
    assert cli.main(["once", "--ips", "10.0.0.2"]) == 1
    assert controller.patches == []


def test_missing_ips_is_config_error(controller):
    assert cli.main(["once"]) == 2


def test_env_supplies_required_ips(clean_env, controller):
    clean_env.setenv("IPS", "10.0.0.1")
    clean_env.setenv("INGRESS_NAME", "site")
    clean_env.setenv("INGRESS_NAMESPACE", "web")
    assert cli.main(["once"]) == 0
    assert controller.reads == 1
    assert controller.lists == 0


def test_kubernetes_client_failure_exits_one(clean_env):
    def boom(kubeconfig=None):
        raise RuntimeError("no kubeconfig")

    clean_env.setattr(cli, "configure_logging", lambda level: None)
    clean_env.setattr(cli, "load_api", boom)
    assert cli.main(["once", "--ips", "10.0.0.1"]) == 1


def test_bare_flags_mean_run(monkeypatch):
    seen = []
    monkeypatch.setattr(cli, "_controller", lambda args, once: seen.append((args.cmd, args.ips, once)) or 0)
    assert cli.main(["--ips", "10.0.0.1"]) == 0
    assert seen == [("run", "10.0.0.1", False)]


class _Resp:
    ok = True

    def __init__(self, payload):
        self._payload = payload

    def json(self):
        return self._payload


def test_status_prints_json(monkeypatch, capsys):
    calls = []

    def fake_get(url, params=None, timeout=None):
        calls.append((url, params))
        return _Resp({"running": True, "cycles": 3})

    monkeypatch.setattr(cli.requests, "get", fake_get)
    assert cli.main(["status", "--api", "http://itp:8081/"]) == 0
    assert calls == [("http://itp:8081/status", None)]
    assert json.loads(capsys.readouterr().out) == {"running": True, "cycles": 3}


def test_events_passes_limit(monkeypatch, capsys):
    calls = []

    def fake_get(url, params=None, timeout=None):
        calls.append((url, params))
        return _Resp([])

    monkeypatch.setattr(cli.requests, "get", fake_get)
    assert cli.main(["events", "--limit", "5"]) == 0
    assert calls == [("http://localhost:8081/events", {"limit": 5})]


def test_unreachable_api(monkeypatch):
    def fake_get(url, params=None, timeout=None):
        raise requests.ConnectionError("refused")

    monkeypatch.setattr(cli.requests, "get", fake_get)
    assert cli.main(["status"]) == 1


def test_malformed_ip_is_config_error(controller):
    assert cli.main(["once", "--ips", "10.0.0.1,10.0.0.2:8080"]) == 2
    assert controller.patches == []
