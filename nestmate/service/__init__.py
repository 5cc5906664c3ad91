"""Result-returning facade used by UI callers."""

from nestmate.service.marketplace import Marketplace

__all__ = ["Marketplace"]
