"""Domain-specific errors for vfioswap."""


class VfioSwapError(Exception):
    """Base error for vfioswap."""


class ConfigError(VfioSwapError):
    """Raised when a config file does not conform to schema or semantics."""


class ValidationError(VfioSwapError):
    """Raised when a device identifier is malformed."""


class NotFoundError(VfioSwapError):
    """Raised when a device is absent from the PCI registry."""


class SecurityError(VfioSwapError):
    """Raised when the ledger path is a symlink."""


class PrivilegeError(VfioSwapError):
    """Raised when a mutating operation is attempted without root."""


class AlreadyIsolatedError(VfioSwapError):
    """Raised when a forward transfer would overwrite an active ledger."""


class NothingToRestoreError(VfioSwapError):
    """Raised when release is requested but no ledger is active."""


class ModuleLoadError(VfioSwapError):
    """Raised when the isolation driver kernel module cannot be loaded."""


class EvictionAbort(VfioSwapError):
    """Raised when device holders cannot or must not be terminated."""


class RebindFailure(VfioSwapError):
    """Raised when a device does not end up bound to an acceptable driver."""

    def __init__(self, device_id: str, message: str) -> None:
        super().__init__(message)
        self.device_id = device_id


class IsolationGroupError(VfioSwapError):
    """Raised when an isolated device has no IOMMU group."""


class PermissionSetupError(VfioSwapError):
    """Raised when a device handle cannot be handed to the consumer."""
