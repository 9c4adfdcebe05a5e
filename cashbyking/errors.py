class MarketplaceError(Exception):
    """Base error; ``status_code`` is what the API answers with."""
    status_code = 400

    def __init__(self, message=None):
        super().__init__(message or self.__doc__)
        self.message = message or self.__doc__


class ValidationError(MarketplaceError):
    """Invalid request"""
    status_code = 400


class InsufficientBalanceError(MarketplaceError):
    """Insufficient balance"""
    status_code = 400


class PermissionDeniedError(MarketplaceError):
    """Admin access required"""
    status_code = 403


class NotFoundError(MarketplaceError):
    """Not found"""
    status_code = 404


class ConflictError(MarketplaceError):
    """Already processed"""
    status_code = 409


class StoreError(MarketplaceError):
    """Storage operation failed"""
    status_code = 503
