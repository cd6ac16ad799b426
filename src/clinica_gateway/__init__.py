"""Clinica-Gateway: REST gateway reconciling LibreClinica SOAP and database access."""

from clinica_gateway.common.schemas import ApiResponse, ServiceStatus
from clinica_gateway.hybrid.policy import DualPathPolicy, service_status

__all__ = [
    "ApiResponse",
    "ServiceStatus",
    "DualPathPolicy",
    "service_status",
]
__version__ = "0.1.0"
