"""ERP posting."""

from .service import PostingService

__all__ = ["PostingService"]
