"""
GasPressure core - container state, temperature driver and configuration.
"""

from gaspressure.core.config import (
    BrokerConfig,
    ClientConfig,
    ContainerConfig,
    DriverConfig,
    GasPressureConfig,
    RpcConfig,
    ServiceConfig,
    get_config,
    reset_config,
)
from gaspressure.core.container import (
    REASON_DESTROYED,
    REASON_PRESSURE_TOO_HIGH,
    REASON_PRESSURE_TOO_LOW,
    ContainerLimits,
    ContainerSnapshot,
    ContainerState,
    ContainerStateEngine,
    CycleOutcome,
    CycleReport,
    MassAdjustmentResult,
    compute_pressure,
)
from gaspressure.core.driver import TemperatureDriver

__all__ = [
    # Configuration
    "GasPressureConfig",
    "ContainerConfig",
    "DriverConfig",
    "BrokerConfig",
    "RpcConfig",
    "ServiceConfig",
    "ClientConfig",
    "get_config",
    "reset_config",
    # Container
    "ContainerLimits",
    "ContainerState",
    "ContainerSnapshot",
    "ContainerStateEngine",
    "CycleOutcome",
    "CycleReport",
    "MassAdjustmentResult",
    "compute_pressure",
    "REASON_DESTROYED",
    "REASON_PRESSURE_TOO_HIGH",
    "REASON_PRESSURE_TOO_LOW",
    # Driver
    "TemperatureDriver",
]
