"""
GasPressure - sealed gas container simulation over broker-mediated RPC.

One server process owns the container state and a background temperature
driver; any number of input and output clients observe pressure and
request mass changes through a direct exchange with correlated replies.
"""

__version__ = "1.2026.10.18"
__version_tuple__ = (1, 2026, 10, 18)
__author__ = "GasPressure Team"

from gaspressure.core.config import GasPressureConfig, get_config
from gaspressure.core.container import ContainerStateEngine, MassAdjustmentResult
from gaspressure.rpc.client import GasPressureClient
from gaspressure.service import GasPressureService

__all__ = [
    "__version__",
    "__version_tuple__",
    "get_config",
    "GasPressureConfig",
    "ContainerStateEngine",
    "MassAdjustmentResult",
    "GasPressureClient",
    "GasPressureService",
]
