"""Custom exceptions for the marketplace pricing and checkout engine."""
from decimal import Decimal


class MarketplaceError(Exception):
    """Base exception for all application errors."""
    def __init__(self, message="An internal error occurred", status_code=500, payload=None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.payload = payload

    def to_dict(self):
        rv = dict(self.payload or ())
        rv['message'] = self.message
        rv['status'] = 'error'
        rv['error'] = type(self).__name__
        return rv


class BusinessLogicError(MarketplaceError):
    """Exception raised for business logic violations."""
    def __init__(self, message, status_code=400, payload=None):
        super().__init__(message, status_code, payload)


class NotFoundError(MarketplaceError):
    """Exception raised when a resource is not found."""
    def __init__(self, message="Resource not found", payload=None):
        super().__init__(message, 404, payload)


class UnauthorizedError(MarketplaceError):
    """Raised when a seller acts on configuration owned by another seller."""
    def __init__(self, message="Not authorized", payload=None):
        super().__init__(message, 403, payload)


class ValidationError(BusinessLogicError):
    """Empty cart, missing or inactive product/seller, malformed input."""
    def __init__(self, message, payload=None):
        super().__init__(message, 400, payload)


class ConfigurationError(MarketplaceError):
    """
    A seller-configured discount rule is malformed.

    Never surfaced to the customer: the resolver logs it, records it on the
    resolution and treats the rule as ineligible.
    """
    def __init__(self, seller_id, rule, reason):
        message = f"Seller {seller_id}: discount rule '{rule}' is misconfigured ({reason})"
        super().__init__(message, 500, {'seller_id': seller_id, 'rule': rule, 'reason': reason})
        self.seller_id = seller_id
        self.rule = rule
        self.reason = reason


class StockConflictError(BusinessLogicError):
    """Raised when stock is insufficient, including a lost oversell race."""
    def __init__(self, product_id, requested, available):
        available = max(int(available), 0)
        message = (
            f"Insufficient stock for product {product_id}: "
            f"requested {int(requested)}, available {available}"
        )
        super().__init__(message, status_code=409, payload={
            'product_id': product_id,
            'requested': int(requested),
            'available': available,
            'suggested_quantity': available,
        })
        self.product_id = product_id
        self.requested = int(requested)
        self.available = available

    @property
    def suggested_quantity(self):
        """Clamped quantity offered to the client; never applied automatically."""
        return self.available


class PriceChangedError(BusinessLogicError):
    """Live price diverges from the price snapshotted in the cart."""
    def __init__(self, line_id, old_price: Decimal, new_price: Decimal):
        message = f"Price changed for cart line {line_id}: {old_price} -> {new_price}"
        super().__init__(message, status_code=409, payload={
            'line_id': line_id,
            'old_price': str(old_price),
            'new_price': str(new_price),
        })
        self.line_id = line_id
        self.old_price = old_price
        self.new_price = new_price
