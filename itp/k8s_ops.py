from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from kubernetes import client, config
from kubernetes.client.rest import ApiException
from urllib3.exceptions import HTTPError as Urllib3HTTPError

# Errors an API round trip can surface: server-side rejections (404, 409
# conflict on a stale resourceVersion) and transport failures, including an
# expired _request_timeout.
API_ERRORS = (ApiException, Urllib3HTTPError, OSError)


@dataclass(frozen=True)
class IngressRef:
    namespace: str
    name: str

    def __str__(self) -> str:
        return f"{self.namespace}/{self.name}"


def load_api(kubeconfig: str | None = None) -> client.NetworkingV1Api:
    """Build a NetworkingV1Api, preferring in-cluster credentials."""
    if kubeconfig:
        config.load_kube_config(config_file=kubeconfig)
    else:
        try:
            config.load_incluster_config()
        except config.ConfigException:
            config.load_kube_config()
    return client.NetworkingV1Api()


def ingress_ref(ing: client.V1Ingress) -> IngressRef:
    return IngressRef(namespace=ing.metadata.namespace or "", name=ing.metadata.name or "")


def annotation(ing: client.V1Ingress, key: str) -> str | None:
    """Current value under `key`; a missing annotations map reads as absent."""
    annotations = ing.metadata.annotations if ing.metadata else None
    if not annotations:
        return None
    return annotations.get(key)


def get_ingress(api: client.NetworkingV1Api, namespace: str, name: str, timeout_s: float | None = None) -> client.V1Ingress:
    return api.read_namespaced_ingress(name=name, namespace=namespace, _request_timeout=timeout_s)


def list_ingresses(api: client.NetworkingV1Api, timeout_s: float | None = None) -> list[client.V1Ingress]:
    return list(api.list_ingress_for_all_namespaces(_request_timeout=timeout_s).items)


def annotation_patch(ing: client.V1Ingress, key: str, value: str) -> dict[str, Any]:
    """Patch body that sets only `key` and leaves other annotations alone.

    Carries the resourceVersion the object was read at, so the API server
    rejects it with 409 if the object changed in between.
    """
    metadata: dict[str, Any] = {"annotations": {key: value}}
    if ing.metadata.resource_version:
        metadata["resourceVersion"] = ing.metadata.resource_version
    return {"metadata": metadata}


def patch_annotation(
    api: client.NetworkingV1Api,
    ing: client.V1Ingress,
    key: str,
    value: str,
    timeout_s: float | None = None,
) -> client.V1Ingress:
    ref = ingress_ref(ing)
    return api.patch_namespaced_ingress(
        name=ref.name,
        namespace=ref.namespace,
        body=annotation_patch(ing, key, value),
        _request_timeout=timeout_s,
    )
