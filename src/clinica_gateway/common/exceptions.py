"""Clinica-Gateway exception hierarchy."""


class GatewayError(Exception):
    """Base exception for all gateway errors."""

    def __init__(self, message: str = "", code: str = "GATEWAY_ERROR"):
        self.message = message
        self.code = code
        super().__init__(message)


class NotFoundError(GatewayError):
    """Raised when a requested record does not exist."""

    def __init__(self, message: str = "Not found"):
        super().__init__(message, code="NOT_FOUND")


class SoapError(GatewayError):
    """Base for failures on the LibreClinica SOAP path."""

    def __init__(self, message: str = "SOAP request failed", code: str = "SOAP_ERROR"):
        super().__init__(message, code=code)


class SoapTransportError(SoapError):
    """Raised on connection errors, timeouts and non-2xx HTTP responses."""

    def __init__(self, message: str = "SOAP endpoint unreachable"):
        super().__init__(message, code="SOAP_TRANSPORT")


class SoapFaultError(SoapError):
    """Raised when the SOAP response body carries a Fault element."""

    def __init__(self, message: str = "SOAP fault", fault_code: str = ""):
        self.fault_code = fault_code
        super().__init__(message, code="SOAP_FAULT")


class OdmParseError(SoapError):
    """Raised when an ODM or SOAP payload cannot be parsed."""

    def __init__(self, message: str = "Malformed ODM payload"):
        super().__init__(message, code="ODM_PARSE")
