"""Custom exceptions for the geometry capture service"""


class GeoCaptureError(Exception):
    """Base exception for the geometry capture service"""
    pass


class ConversionError(GeoCaptureError, ValueError):
    """Raised when a coordinate cannot be converted between CRSs"""
    pass


class GeolocationError(GeoCaptureError):
    """Raised when the client could not provide a current position"""

    def __init__(self, code: str, message: str = ""):
        super().__init__(message or code)
        self.code = code
        self.message = message or code


class UnknownVariantError(GeoCaptureError, ValueError):
    """Raised when a widget variant key is not registered"""
    pass


class SessionNotFoundError(GeoCaptureError):
    """Raised when a widget session does not exist"""
    pass
