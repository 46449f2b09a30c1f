import os
import sys

import pytest


# Ensure project root is importable (so `import cli` works without installing)
_project_root = os.path.dirname(os.path.dirname(__file__))
if _project_root not in sys.path:
    sys.path.insert(0, _project_root)


CONFIG_ENV = [
    "IPS",
    "HTTP_SCHEME",
    "HTTP_PATH",
    "HOST_HEADER",
    "TIMEOUT",
    "INTERVAL",
    "INSECURE_SKIP_VERIFY",
    "ANNOTATION_KEY",
    "INGRESS_NAMESPACE",
    "INGRESS_NAME",
    "INGRESS_CLASS_ANNOTATION_KEY",
    "INGRESS_CLASS",
    "HEALTH_BIND",
    "LOG_LEVEL",
    "KUBECONFIG",
]


@pytest.fixture
def clean_env(monkeypatch):
    for name in CONFIG_ENV:
        monkeypatch.delenv(name, raising=False)
    return monkeypatch


