"""
Domain errors raised by the marketplace services.

Routes let these propagate; the handler in main.py renders them as
{"title": ..., "detail": ...} with the error's status code.
"""


class MarketplaceError(Exception):
    status_code = 400
    title = "Error"

    def __init__(self, detail: str, title: str = None):
        super().__init__(detail)
        self.detail = detail
        if title:
            self.title = title


class ValidationFailed(MarketplaceError):
    status_code = 400
    title = "Validation Error"


class AuthenticationFailed(MarketplaceError):
    status_code = 401
    title = "Authentication Required"


class PermissionDenied(MarketplaceError):
    status_code = 403
    title = "Not Allowed"


class NotFound(MarketplaceError):
    status_code = 404
    title = "Not Found"


class ReferenceMismatch(MarketplaceError):
    status_code = 409
    title = "Payment Reference Mismatch"


class ReviewFlowHalted(MarketplaceError):
    status_code = 409
    title = "Review Error"


class SessionExpired(MarketplaceError):
    status_code = 410
    title = "Session Expired"


class BackendError(MarketplaceError):
    status_code = 502
    title = "Service Error"


class MediaUploadError(BackendError):
    title = "Upload Error"


class PaymentVerificationFailed(MarketplaceError):
    status_code = 402
    title = "Verification Failed"
