"""External integrations for the cash application system."""

from .erp_client import ErpClient

__all__ = ["ErpClient"]
