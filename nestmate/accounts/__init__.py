from nestmate.accounts.profiles import ProfileService

__all__ = ["ProfileService"]
