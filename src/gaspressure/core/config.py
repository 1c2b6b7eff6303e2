"""
GasPressure configuration management.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from gaspressure.core.container import ContainerLimits


@dataclass
class ContainerConfig:
    """Initial container state and pressure thresholds."""

    initial_temperature: float = 293.0
    initial_mass: float = 10.0
    lower_limit: float = 100.0  # Input clients stop adding mass
    upper_limit: float = 150.0  # Output clients may start removing mass
    explosion_limit: float = 200.0
    implosion_limit: float = 10.0

    def limits(self) -> ContainerLimits:
        """Build validated limits (raises ValueError on bad ordering)."""
        return ContainerLimits(
            lower_limit=self.lower_limit,
            upper_limit=self.upper_limit,
            explosion_limit=self.explosion_limit,
            implosion_limit=self.implosion_limit,
        )


@dataclass
class DriverConfig:
    """Background temperature driver configuration."""

    period_seconds: float = 2.0
    min_delta: int = -15
    max_delta: int = 15


@dataclass
class BrokerConfig:
    """Message broker configuration."""

    backend: str = "memory"  # memory, redis
    redis_url: str = "redis://localhost:6379/0"
    key_prefix: str = "gaspressure"
    poll_interval: float = 1.0  # Consumer wake-up interval (seconds)
    exclusive_queue_ttl: int = 30  # Expiry of reply queue keys, refreshed while consumed (seconds)

    # Topology
    exchange: str = "GasPressure.Exchange"
    server_queue: str = "GasPressure.Service"


@dataclass
class RpcConfig:
    """Client RPC configuration."""

    call_timeout: float = 10.0  # seconds


@dataclass
class ServiceConfig:
    """Server-side service configuration."""

    consumer_count: int = 4  # Concurrent consumers on the server queue


@dataclass
class ClientConfig:
    """Input/output client loop configuration."""

    poll_interval_seconds: float = 2.0
    retry_delay_seconds: float = 2.0
    min_mass_step: int = 1
    max_mass_step: int = 4


@dataclass
class GasPressureConfig:
    """
    Complete GasPressure configuration.

    Loaded from a YAML file, with environment variable overrides.
    """

    container: ContainerConfig = field(default_factory=ContainerConfig)
    driver: DriverConfig = field(default_factory=DriverConfig)
    broker: BrokerConfig = field(default_factory=BrokerConfig)
    rpc: RpcConfig = field(default_factory=RpcConfig)
    service: ServiceConfig = field(default_factory=ServiceConfig)
    client: ClientConfig = field(default_factory=ClientConfig)

    @classmethod
    def from_file(cls, path: Path) -> "GasPressureConfig":
        """Load configuration from YAML file."""
        if not path.exists():
            return cls()

        with open(path) as f:
            data = yaml.safe_load(f) or {}

        return cls.from_dict(data.get("gaspressure", data))

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "GasPressureConfig":
        """Create config from dictionary."""
        config = cls()

        if "container" in data:
            c = data["container"]
            config.container = ContainerConfig(
                initial_temperature=float(c.get("initial_temperature", 293.0)),
                initial_mass=float(c.get("initial_mass", 10.0)),
                lower_limit=float(c.get("lower_limit", 100.0)),
                upper_limit=float(c.get("upper_limit", 150.0)),
                explosion_limit=float(c.get("explosion_limit", 200.0)),
                implosion_limit=float(c.get("implosion_limit", 10.0)),
            )

        if "driver" in data:
            d = data["driver"]
            config.driver = DriverConfig(
                period_seconds=float(d.get("period_seconds", 2.0)),
                min_delta=int(d.get("min_delta", -15)),
                max_delta=int(d.get("max_delta", 15)),
            )

        if "broker" in data:
            b = data["broker"]
            config.broker = BrokerConfig(
                backend=b.get("backend", "memory"),
                redis_url=b.get("redis_url", "redis://localhost:6379/0"),
                key_prefix=b.get("key_prefix", "gaspressure"),
                poll_interval=float(b.get("poll_interval", 1.0)),
                exclusive_queue_ttl=int(b.get("exclusive_queue_ttl", 30)),
                exchange=b.get("exchange", "GasPressure.Exchange"),
                server_queue=b.get("server_queue", "GasPressure.Service"),
            )

        if "rpc" in data:
            config.rpc = RpcConfig(
                call_timeout=float(data["rpc"].get("call_timeout", 10.0)),
            )

        if "service" in data:
            config.service = ServiceConfig(
                consumer_count=int(data["service"].get("consumer_count", 4)),
            )

        if "client" in data:
            c = data["client"]
            config.client = ClientConfig(
                poll_interval_seconds=float(c.get("poll_interval_seconds", 2.0)),
                retry_delay_seconds=float(c.get("retry_delay_seconds", 2.0)),
                min_mass_step=int(c.get("min_mass_step", 1)),
                max_mass_step=int(c.get("max_mass_step", 4)),
            )

        return config

    def apply_env(self) -> "GasPressureConfig":
        """Apply environment variable overrides in place."""
        backend = os.getenv("GASPRESSURE_BROKER")
        if backend:
            self.broker.backend = backend.lower()

        redis_url = os.getenv("GASPRESSURE_REDIS_URL")
        if redis_url:
            self.broker.redis_url = redis_url

        timeout = os.getenv("GASPRESSURE_RPC_TIMEOUT")
        if timeout:
            self.rpc.call_timeout = float(timeout)

        period = os.getenv("GASPRESSURE_DRIVER_PERIOD")
        if period:
            self.driver.period_seconds = float(period)

        return self

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "gaspressure": {
                "container": {
                    "initial_temperature": self.container.initial_temperature,
                    "initial_mass": self.container.initial_mass,
                    "lower_limit": self.container.lower_limit,
                    "upper_limit": self.container.upper_limit,
                    "explosion_limit": self.container.explosion_limit,
                    "implosion_limit": self.container.implosion_limit,
                },
                "driver": {
                    "period_seconds": self.driver.period_seconds,
                    "min_delta": self.driver.min_delta,
                    "max_delta": self.driver.max_delta,
                },
                "broker": {
                    "backend": self.broker.backend,
                    "redis_url": self.broker.redis_url,
                    "key_prefix": self.broker.key_prefix,
                    "poll_interval": self.broker.poll_interval,
                    "exclusive_queue_ttl": self.broker.exclusive_queue_ttl,
                    "exchange": self.broker.exchange,
                    "server_queue": self.broker.server_queue,
                },
                "rpc": {
                    "call_timeout": self.rpc.call_timeout,
                },
                "service": {
                    "consumer_count": self.service.consumer_count,
                },
                "client": {
                    "poll_interval_seconds": self.client.poll_interval_seconds,
                    "retry_delay_seconds": self.client.retry_delay_seconds,
                    "min_mass_step": self.client.min_mass_step,
                    "max_mass_step": self.client.max_mass_step,
                },
            }
        }

    def save(self, path: Path) -> None:
        """Save configuration to YAML file."""
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w") as f:
            yaml.dump(self.to_dict(), f, default_flow_style=False)


# Global config instance
_config: GasPressureConfig | None = None


def get_config(path: Path | None = None) -> GasPressureConfig:
    """
    Get GasPressure configuration.

    Loads from the given YAML file (default: ./gaspressure.yaml) and applies
    environment overrides. Falls back to defaults if the file is missing.
    """
    global _config

    if _config is not None:
        return _config

    if path is None:
        path = Path.cwd() / "gaspressure.yaml"

    _config = GasPressureConfig.from_file(path).apply_env()

    return _config


def reset_config() -> None:
    """Forget the cached configuration."""
    global _config
    _config = None
