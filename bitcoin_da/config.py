"""Shared configuration loader for the Bitcoin DA service."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping
from urllib.parse import urlparse

import yaml

from .address import Network


class ConfigurationError(RuntimeError):
    """Raised when configuration is invalid."""


DEFAULT_CONFIG_PATH = Path.home() / ".bitcoin-da.yaml"
_CONFIG_PATH_OVERRIDE: Path | None = None

DEFAULT_RPC_PORT = 18443
DEFAULT_FINALITY_DEPTH = 4
DEFAULT_POLLING_INTERVAL_SECONDS = 10.0
DEFAULT_COMPLETENESS_PREFIX_BYTES = 2
DEFAULT_CHECKPOINT_DIR = "reveal-checkpoints"


@dataclass
class RPCConfig:
    """Configuration container for Bitcoin Core RPC connection details."""

    user: str
    password: str
    host: str = "127.0.0.1"
    port: int = DEFAULT_RPC_PORT
    use_https: bool = False
    wallet: str | None = None

    @property
    def base_url(self) -> str:
        scheme = "https" if self.use_https else "http"
        return f"{scheme}://{self.host}:{self.port}"


@dataclass
class DAServiceConfig:
    """Runtime configuration for the DA service.

    ``address`` receives the inscription output and change; the sequencer
    key signs every blob. Both are only needed to submit blobs, reading
    works without them.
    """

    rpc: RPCConfig
    rollup_name: str
    network: Network = Network.REGTEST
    address: str = ""
    sequencer_da_private_key: str = ""
    finality_depth: int = DEFAULT_FINALITY_DEPTH
    polling_interval_seconds: float = DEFAULT_POLLING_INTERVAL_SECONDS
    completeness_prefix_bytes: int = DEFAULT_COMPLETENESS_PREFIX_BYTES
    checkpoint_dir: Path = field(default_factory=lambda: Path(DEFAULT_CHECKPOINT_DIR))


def set_default_config_path(path: str | Path | None) -> None:
    """Remember a user-supplied config path for future loads."""

    global _CONFIG_PATH_OVERRIDE
    _CONFIG_PATH_OVERRIDE = Path(path).expanduser() if path else None


def _load_config_file(path: Path, *, required: bool) -> dict[str, Any]:
    if not path.exists():
        if required:
            raise ConfigurationError(f"Config file not found: {path}")
        return {}

    try:
        text = path.read_text()
    except OSError as exc:
        raise ConfigurationError(f"Cannot read config file {path}: {exc}") from exc
    try:
        loaded = yaml.safe_load(text) or {}
    except yaml.YAMLError as exc:  # pragma: no cover - delegated to PyYAML
        raise ConfigurationError(f"Invalid YAML in config file {path}: {exc}") from exc

    if not isinstance(loaded, dict):
        raise ConfigurationError(f"Expected {path} to contain a YAML object with 'rpc' and 'da' sections")
    return loaded


def _section(file_config: dict[str, Any], name: str, path: Path) -> dict[str, Any]:
    section = file_config.get(name) or {}
    if not isinstance(section, dict):
        raise ConfigurationError(f"Expected '{name}' to be a mapping in {path}")
    return section


def _coerce_bool(value: Any) -> bool | None:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        normalized = value.strip().lower()
        if normalized in {"1", "true", "yes", "y", "on"}:
            return True
        if normalized in {"0", "false", "no", "n", "off"}:
            return False
    return None


def _coerce_int(raw: Any, *, source: str) -> int | None:
    if raw is None:
        return None
    try:
        return int(raw)
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(f"Invalid integer in {source}: {raw}") from exc


def _coerce_float(raw: Any, *, source: str) -> float | None:
    if raw is None:
        return None
    try:
        return float(raw)
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(f"Invalid number in {source}: {raw}") from exc


def _first_value(*values: Any, default: Any = None) -> Any:
    for value in values:
        if value is not None:
            return value
    return default


def _parse_endpoint(raw: str | None) -> tuple[str | None, int | None, bool | None]:
    if not raw:
        return None, None, None
    parsed = urlparse(raw)
    if not parsed.scheme and not parsed.hostname:
        raise ConfigurationError(f"Invalid RPC endpoint URL: {raw}")
    host = parsed.hostname or None
    port = parsed.port
    use_https = parsed.scheme.lower() == "https" if parsed.scheme else None
    return host, port, use_https


def _resolve_config_path(config_path: str | Path | None) -> tuple[Path, bool]:
    explicit_path = config_path is not None or _CONFIG_PATH_OVERRIDE is not None
    path = (
        Path(config_path).expanduser()
        if config_path is not None
        else _CONFIG_PATH_OVERRIDE or DEFAULT_CONFIG_PATH
    )
    return path, explicit_path


def load_rpc_config(
    *,
    config_path: str | Path | None = None,
    env: Mapping[str, str] | None = None,
    overrides: Mapping[str, Any] | None = None,
) -> RPCConfig:
    """Load RPC configuration from environment variables and optional YAML."""

    env_map = os.environ if env is None else env
    path, explicit_path = _resolve_config_path(config_path)
    rpc_section = _section(_load_config_file(path, required=explicit_path), "rpc", path)
    override_map = dict(overrides or {})

    endpoint_host, endpoint_port, endpoint_use_https = _parse_endpoint(
        _first_value(
            override_map.get("endpoint"),
            env_map.get("BITCOIN_DA_RPC_URL"),
            rpc_section.get("endpoint"),
        )
    )

    resolved_user = _first_value(
        override_map.get("user"), env_map.get("BITCOIN_DA_RPC_USER"), rpc_section.get("user")
    )
    resolved_password = _first_value(
        override_map.get("password"),
        env_map.get("BITCOIN_DA_RPC_PASSWORD"),
        rpc_section.get("password"),
    )
    if not resolved_user or not resolved_password:
        raise ConfigurationError(
            "RPC credentials must be provided via BITCOIN_DA_RPC_* environment variables or a config file"
        )

    resolved_host = _first_value(
        override_map.get("host"),
        endpoint_host,
        env_map.get("BITCOIN_DA_RPC_HOST"),
        rpc_section.get("host"),
        "127.0.0.1",
    )
    resolved_port = _first_value(
        _coerce_int(override_map.get("port"), source="overrides"),
        endpoint_port,
        _coerce_int(env_map.get("BITCOIN_DA_RPC_PORT"), source="environment"),
        _coerce_int(rpc_section.get("port"), source=f"{path} rpc.port"),
        DEFAULT_RPC_PORT,
    )
    resolved_use_https = _first_value(
        _coerce_bool(override_map.get("use_https")),
        endpoint_use_https,
        _coerce_bool(env_map.get("BITCOIN_DA_RPC_USE_HTTPS")),
        _coerce_bool(rpc_section.get("use_https")),
        False,
    )
    resolved_wallet = _first_value(
        override_map.get("wallet"), env_map.get("BITCOIN_DA_RPC_WALLET"), rpc_section.get("wallet")
    )

    return RPCConfig(
        user=str(resolved_user),
        password=str(resolved_password),
        host=resolved_host,
        port=resolved_port,
        use_https=bool(resolved_use_https),
        wallet=resolved_wallet,
    )


def load_da_config(
    *,
    config_path: str | Path | None = None,
    env: Mapping[str, str] | None = None,
    overrides: Mapping[str, Any] | None = None,
) -> DAServiceConfig:
    """Load the full service configuration.

    Precedence is ``overrides`` > ``BITCOIN_DA_*`` environment variables >
    the ``da:`` section of the YAML file > defaults.
    """

    env_map = os.environ if env is None else env
    path, explicit_path = _resolve_config_path(config_path)
    da_section = _section(_load_config_file(path, required=explicit_path), "da", path)
    override_map = dict(overrides or {})

    rpc = load_rpc_config(config_path=config_path, env=env_map, overrides=override_map.get("rpc"))

    def pick(key: str, env_name: str) -> Any:
        return _first_value(override_map.get(key), env_map.get(env_name), da_section.get(key))

    rollup_name = pick("rollup_name", "BITCOIN_DA_ROLLUP_NAME")
    if not rollup_name:
        raise ConfigurationError("A rollup name must be configured (BITCOIN_DA_ROLLUP_NAME or da.rollup_name)")

    network_name = pick("network", "BITCOIN_DA_NETWORK") or Network.REGTEST.value
    try:
        network = Network.from_name(str(network_name))
    except ValueError as exc:
        raise ConfigurationError(str(exc)) from exc

    finality_depth = _first_value(
        _coerce_int(pick("finality_depth", "BITCOIN_DA_FINALITY_DEPTH"), source="finality_depth"),
        DEFAULT_FINALITY_DEPTH,
    )
    polling_interval = _first_value(
        _coerce_float(
            pick("polling_interval_seconds", "BITCOIN_DA_POLLING_INTERVAL"),
            source="polling_interval_seconds",
        ),
        DEFAULT_POLLING_INTERVAL_SECONDS,
    )
    prefix_bytes = _first_value(
        _coerce_int(
            pick("completeness_prefix_bytes", "BITCOIN_DA_COMPLETENESS_PREFIX_BYTES"),
            source="completeness_prefix_bytes",
        ),
        DEFAULT_COMPLETENESS_PREFIX_BYTES,
    )
    if finality_depth < 0 or polling_interval < 0 or not 0 <= prefix_bytes <= 32:
        raise ConfigurationError("finality_depth, polling_interval_seconds and completeness_prefix_bytes are out of range")

    checkpoint_dir = pick("checkpoint_dir", "BITCOIN_DA_CHECKPOINT_DIR") or DEFAULT_CHECKPOINT_DIR

    return DAServiceConfig(
        rpc=rpc,
        rollup_name=str(rollup_name),
        network=network,
        address=str(pick("address", "BITCOIN_DA_ADDRESS") or ""),
        sequencer_da_private_key=str(
            pick("sequencer_da_private_key", "BITCOIN_DA_SEQUENCER_PRIVATE_KEY") or ""
        ),
        finality_depth=finality_depth,
        polling_interval_seconds=polling_interval,
        completeness_prefix_bytes=prefix_bytes,
        checkpoint_dir=Path(checkpoint_dir).expanduser(),
    )
