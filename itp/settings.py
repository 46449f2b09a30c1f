from __future__ import annotations

import ipaddress
import os
import re
from dataclasses import dataclass
from typing import Mapping, Union


DEFAULT_ANNOTATION_KEY = "external-dns.alpha.kubernetes.io/target"
DEFAULT_CLASS_ANNOTATION_KEY = "kubernetes.io/ingress.class"
DEFAULT_INGRESS_CLASS = "public-nginx"

# prefix (dns subdomain) + "/" + name, as accepted by the API server for annotation keys
_ANNOTATION_NAME_RE = re.compile(r"^[A-Za-z0-9]([A-Za-z0-9_.\-]{0,61}[A-Za-z0-9])?$")
_DNS_SUBDOMAIN_RE = re.compile(r"^[a-z0-9]([a-z0-9\-]{0,61}[a-z0-9])?(\.[a-z0-9]([a-z0-9\-]{0,61}[a-z0-9])?)*$")
_DURATION_PART_RE = re.compile(r"(\d+(?:\.\d+)?)(ms|s|m|h)")
_TRUE = {"1", "true", "yes", "y", "on"}


class ConfigError(ValueError):
    """Invalid or missing startup configuration."""


@dataclass(frozen=True)
class FixedTarget:
    namespace: str
    name: str

    def describe(self) -> str:
        return f"{self.namespace}/{self.name}"


@dataclass(frozen=True)
class ClassMatch:
    key: str
    value: str

    def describe(self) -> str:
        return f"{self.key}={self.value}"


Selector = Union[FixedTarget, ClassMatch]


def parse_duration(raw: str) -> float:
    """Parse `2s`, `500ms`, `1m30s` or a bare number of seconds."""
    s = raw.strip().lower()
    if not s:
        raise ValueError("empty duration")
    try:
        return float(s)
    except ValueError:
        pass
    pos = 0
    total = 0.0
    for m in _DURATION_PART_RE.finditer(s):
        if m.start() != pos:
            raise ValueError(f"invalid duration {raw!r}")
        value, unit = float(m.group(1)), m.group(2)
        total += value * {"ms": 0.001, "s": 1.0, "m": 60.0, "h": 3600.0}[unit]
        pos = m.end()
    if pos != len(s):
        raise ValueError(f"invalid duration {raw!r}")
    return total


def split_and_trim(csv: str) -> tuple[str, ...]:
    return tuple(p.strip() for p in csv.split(",") if p.strip())


def validate_annotation_key(key: str) -> None:
    prefix, sep, name = key.rpartition("/")
    if not _ANNOTATION_NAME_RE.match(name):
        raise ConfigError(f"Invalid annotation key {key!r}: name part must be alphanumeric, '-', '_' or '.' (max 63 chars).")
    if sep and (len(prefix) > 253 or not _DNS_SUBDOMAIN_RE.match(prefix)):
        raise ConfigError(f"Invalid annotation key {key!r}: prefix must be a DNS subdomain.")


def _env_str(environ: Mapping[str, str], name: str, fallback: str | None) -> str | None:
    raw = environ.get(name)
    if raw:
        return raw
    return fallback


def _env_bool(environ: Mapping[str, str], name: str, fallback: bool) -> bool:
    raw = environ.get(name)
    if not raw:
        return fallback
    return raw.strip().lower() in _TRUE


def _env_duration(environ: Mapping[str, str], name: str, fallback: float) -> float:
    raw = environ.get(name)
    if not raw:
        return fallback
    try:
        return parse_duration(raw)
    except ValueError:
        return fallback


@dataclass(frozen=True)
class Settings:
    # Probing
    ips: tuple[str, ...]
    http_scheme: str = "http"
    http_path: str = "/"
    host_header: str | None = None
    timeout_s: float = 2.0
    interval_s: float = 30.0
    insecure_skip_verify: bool = False

    # Reconciliation
    annotation_key: str = DEFAULT_ANNOTATION_KEY
    selector: Selector = ClassMatch(DEFAULT_CLASS_ANNOTATION_KEY, DEFAULT_INGRESS_CLASS)

    # Process
    health_bind: str | None = "0.0.0.0:8081"
    log_level: str = "INFO"
    kubeconfig: str | None = None

    def __post_init__(self) -> None:
        if not self.ips:
            raise ConfigError("missing required config: set IPS (comma-separated)")
        for ip in self.ips:
            try:
                ipaddress.ip_address(ip)
            except ValueError:
                raise ConfigError(f"invalid IP address in IPS: {ip!r}") from None
        if self.http_scheme not in {"http", "https"}:
            raise ConfigError(f"http scheme must be 'http' or 'https', got {self.http_scheme!r}")
        if not self.http_path.startswith("/"):
            object.__setattr__(self, "http_path", "/" + self.http_path)
        if self.timeout_s <= 0:
            raise ConfigError("timeout must be positive")
        if self.interval_s <= 0:
            raise ConfigError("interval must be positive")
        validate_annotation_key(self.annotation_key)
        if isinstance(self.selector, FixedTarget):
            if not self.selector.namespace or not self.selector.name:
                raise ConfigError("fixed-target mode needs both ingress namespace and name")
        elif not self.selector.key or not self.selector.value:
            raise ConfigError("class-match mode needs both class annotation key and class value")
        else:
            validate_annotation_key(self.selector.key)

    @property
    def cycle_timeout_s(self) -> float:
        """Wall-clock budget for one full cycle."""
        return self.timeout_s * max(1, len(self.ips))

    def summary(self) -> dict[str, object]:
        return {
            "ips": ",".join(self.ips),
            "scheme": self.http_scheme,
            "path": self.http_path,
            "host_header": self.host_header,
            "timeout_s": self.timeout_s,
            "interval_s": self.interval_s,
            "annotation": self.annotation_key,
            "selector": self.selector.describe(),
        }

    @classmethod
    def from_sources(cls, args: object, environ: Mapping[str, str] | None = None) -> "Settings":
        """Build settings from parsed CLI flags, letting environment variables win."""
        env = os.environ if environ is None else environ

        ingress_name = _env_str(env, "INGRESS_NAME", getattr(args, "ingress_name", None))
        selector: Selector
        if ingress_name:
            namespace = _env_str(env, "INGRESS_NAMESPACE", getattr(args, "ingress_namespace", None)) or "default"
            selector = FixedTarget(namespace=namespace, name=ingress_name)
        else:
            selector = ClassMatch(
                key=_env_str(env, "INGRESS_CLASS_ANNOTATION_KEY", getattr(args, "ingress_class_annotation_key", DEFAULT_CLASS_ANNOTATION_KEY)) or "",
                value=_env_str(env, "INGRESS_CLASS", getattr(args, "ingress_class", DEFAULT_INGRESS_CLASS)) or "",
            )

        health_bind = env.get("HEALTH_BIND")
        if health_bind is None:
            health_bind = getattr(args, "health_bind", "0.0.0.0:8081")

        return cls(
            ips=split_and_trim(_env_str(env, "IPS", getattr(args, "ips", "")) or ""),
            http_scheme=(_env_str(env, "HTTP_SCHEME", getattr(args, "http_scheme", "http")) or "http").lower(),
            http_path=_env_str(env, "HTTP_PATH", getattr(args, "http_path", "/")) or "/",
            host_header=_env_str(env, "HOST_HEADER", getattr(args, "host_header", None)),
            timeout_s=_env_duration(env, "TIMEOUT", getattr(args, "timeout", 2.0)),
            interval_s=_env_duration(env, "INTERVAL", getattr(args, "interval", 30.0)),
            insecure_skip_verify=_env_bool(env, "INSECURE_SKIP_VERIFY", getattr(args, "insecure_skip_verify", False)),
            annotation_key=_env_str(env, "ANNOTATION_KEY", getattr(args, "annotation_key", DEFAULT_ANNOTATION_KEY)) or "",
            selector=selector,
            health_bind=health_bind or None,
            log_level=(_env_str(env, "LOG_LEVEL", getattr(args, "log_level", "INFO")) or "INFO").upper(),
            kubeconfig=_env_str(env, "KUBECONFIG", getattr(args, "kubeconfig", None)),
        )
