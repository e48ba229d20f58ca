"""txnlab: concurrent transfer, deadlock and isolation-level harness."""

__version__ = "0.1.0"
