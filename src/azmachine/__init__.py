"""azmachine - Azure compute-unit lifecycle driver.

Creates and tears down "compute units" (a VM plus its NIC, OS disk and data
disks) on Azure for a machine-controller reconciliation loop.
"""

__version__ = "0.1.0"

from azmachine.driver import CreateResult, Driver, MachineStatus
from azmachine.errors import (
    ConfigurationError,
    ConflictError,
    DependencyNotFoundError,
    DriverError,
    ErrorKind,
    MachineNotFoundError,
    ResourceExhaustedError,
)

__all__ = [
    "ConfigurationError",
    "ConflictError",
    "CreateResult",
    "DependencyNotFoundError",
    "Driver",
    "DriverError",
    "ErrorKind",
    "MachineNotFoundError",
    "MachineStatus",
    "ResourceExhaustedError",
    "__version__",
]
