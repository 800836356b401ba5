"""YAML configuration for the orchestrator and the HTTP services."""

import dataclasses
from dataclasses import dataclass, field
from typing import Any, Callable

import yaml


@dataclass
class ServerConfig:
    g_port: int = 0


@dataclass
class DatabaseConfig:
    driver: str = ""
    host: str = ""
    port: int = 0
    user: str = ""
    db_name: str = ""
    password: str = ""


@dataclass
class RedisConfig:
    addr: str = ""
    password: str = ""
    db: int = 0
    max_retries: int = 0


@dataclass
class OrchestratorConfig:
    server: ServerConfig = field(default_factory=ServerConfig)
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    redis: RedisConfig = field(default_factory=RedisConfig)


@dataclass
class GrpcConfig:
    address: str = ""


@dataclass
class HttpServerConfig:
    port: int = 0


@dataclass
class ServiceConfig:
    grpc: GrpcConfig = field(default_factory=GrpcConfig)
    server: HttpServerConfig = field(default_factory=HttpServerConfig)


def _as_str(value: Any, where: str) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (str, int, float)):
        return str(value)
    raise ValueError(f"{where}: expected a scalar value")


def _as_int(value: Any, where: str) -> int:
    if value is None:
        return 0
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"{where}: expected an integer")
    return value


def _section(cls: type, data: Any, where: str) -> Any:
    if data is None:
        return cls()
    if not isinstance(data, dict):
        raise ValueError(f"{where}: expected a mapping")
    kwargs = {}
    for f in dataclasses.fields(cls):
        if f.name in data:
            convert: Callable[[Any, str], Any] = _as_int if f.type is int else _as_str
            kwargs[f.name] = convert(data[f.name], f"{where}.{f.name}")
    return cls(**kwargs)


def _load(path: str) -> dict:
    with open(path, encoding="utf-8") as fh:
        document = yaml.safe_load(fh)
    if document is None:
        return {}
    if not isinstance(document, dict):
        raise ValueError(f"{path}: expected a mapping at the top level")
    return document


def read_orchestrator_config(path: str) -> OrchestratorConfig:
    """Read the orchestrator's YAML file; raises OSError, yaml.YAMLError or ValueError."""
    doc = _load(path)
    return OrchestratorConfig(
        server=_section(ServerConfig, doc.get("server"), "server"),
        database=_section(DatabaseConfig, doc.get("database"), "database"),
        redis=_section(RedisConfig, doc.get("redis"), "redis"),
    )


def read_service_config(path: str) -> ServiceConfig:
    """Read an HTTP service's YAML file; raises OSError, yaml.YAMLError or ValueError."""
    doc = _load(path)
    return ServiceConfig(
        grpc=_section(GrpcConfig, doc.get("grpc"), "grpc"),
        server=_section(HttpServerConfig, doc.get("server"), "server"),
    )