"""Move PCI devices between host drivers and vfio-pci."""

__version__ = "0.1.0"
