"""Load and merge multi-network CNI configurations and build delegate runtime configs."""

__version__ = "0.1.0"
__all__ = ["types", "delegate", "runtime", "netconf"]