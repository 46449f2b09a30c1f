from __future__ import annotations

import time
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from typing import Sequence

import httpx


class NoHealthyTarget(Exception):
    pass


def port_for_scheme(scheme: str) -> int:
    return 443 if scheme == "https" else 80


def join_host_port(host: str, port: int) -> str:
    if ":" in host and not host.startswith("["):
        return f"[{host}]:{port}"
    return f"{host}:{port}"


def target_url(ip: str, scheme: str, path: str) -> str:
    return f"{scheme}://{join_host_port(ip, port_for_scheme(scheme))}{path}"


def check_target(client: httpx.Client, url: str, host_header: str | None = None, timeout_s: float | None = None) -> bool:
    """GET `url` once. True iff it answered with a 2xx status.

    Only the status line and headers are read; the body is never consumed.
    """
    headers = {"Host": host_header} if host_header else None
    kwargs = {} if timeout_s is None else {"timeout": timeout_s}
    try:
        with client.stream("GET", url, headers=headers, **kwargs) as resp:
            return 200 <= resp.status_code < 300
    except (httpx.HTTPError, httpx.InvalidURL):
        return False


def healthy_targets(
    targets: Sequence[str],
    scheme: str = "http",
    path: str = "/",
    host_header: str | None = None,
    timeout_s: float = 2.0,
    verify_tls: bool = True,
    deadline: float | None = None,
    transport: httpx.BaseTransport | None = None,
) -> list[str]:
    """Probe every target in order and return the healthy ones, order preserved.

    `deadline` is a time.monotonic() value; each request gets at most the time
    left until it, and targets not reached before it are counted unhealthy.
    The per-request limit is wall-clock: a target still answering when it runs
    out is abandoned and its connection closed.
    Raises NoHealthyTarget if nothing answered with a 2xx.
    """

    def new_client() -> httpx.Client:
        return httpx.Client(timeout=timeout_s, verify=verify_tls, follow_redirects=False, transport=transport)

    healthy: list[str] = []
    client = new_client()
    pool = ThreadPoolExecutor(max_workers=1, thread_name_prefix="healthcheck")
    try:
        for ip in targets:
            budget = timeout_s
            if deadline is not None:
                budget = min(timeout_s, deadline - time.monotonic())
                if budget <= 0:
                    break
            future = pool.submit(check_target, client, target_url(ip, scheme, path), host_header, budget)
            try:
                ok = future.result(timeout=budget)
            except FutureTimeout:
                # The worker is stuck on a slow peer: drop it along with its client.
                ok = False
                client.close()
                pool.shutdown(wait=False)
                client = new_client()
                pool = ThreadPoolExecutor(max_workers=1, thread_name_prefix="healthcheck")
            if ok:
                healthy.append(ip)
    finally:
        pool.shutdown(wait=False)
        client.close()
    if not healthy:
        raise NoHealthyTarget(f"no healthy target among {len(targets)} probed")
    return healthy
