"""Dual-path orchestration shared by the hybrid services.

Every hybrid operation is one of three kinds:

* SOAP-primary, database-fallback: ``try_soap`` returns a usable result or
  ``None``, and on ``None`` the caller runs its database path.
* Database-primary, SOAP-mirrored: the caller writes to the database first
  and then hands the SOAP call to ``mirror``, which never raises.
* Database-only: the policy is not consulted.

SOAP is attempted exactly once per logical call.
"""

import logging
from typing import Any, Awaitable, Callable, Sequence

from clinica_gateway.common.schemas import Pagination, ServiceStatus
from clinica_gateway.soap.client import SoapResult

logger = logging.getLogger(__name__)

_DESCRIPTIONS = {
    "soap_primary": "SOAP primary with database backup (GxP compliant mode)",
    "database_only": "Database only mode (SOAP disabled)",
}


SoapCall = Callable[[], Awaitable[SoapResult]]


def is_usable(result: SoapResult | None, payload_required: bool) -> bool:
    """A SOAP result counts only if it succeeded and, where the endpoint
    expects one, carried a non-empty payload."""
    if result is None or not result.success:
        return False
    if not payload_required:
        return True
    data = result.data
    if data is None:
        return False
    if isinstance(data, (list, tuple, dict, str)):
        return len(data) > 0
    return True


def service_status(soap_enabled: bool) -> ServiceStatus:
    mode = "soap_primary" if soap_enabled else "database_only"
    return ServiceStatus(soap_enabled=soap_enabled, mode=mode, description=_DESCRIPTIONS[mode])


class DualPathPolicy:
    """Decides, per call, whether SOAP is attempted and contains its failures."""

    def __init__(self, soap_enabled: bool):
        self.soap_enabled = soap_enabled

    def status(self) -> ServiceStatus:
        return service_status(self.soap_enabled)

    async def try_soap(
        self,
        operation: str,
        resource: Any,
        call: SoapCall,
        payload_required: bool = True,
    ) -> SoapResult | None:
        """Run the preferred SOAP path; ``None`` means take the fallback."""
        if not self.soap_enabled:
            return None
        try:
            result = await call()
        except Exception as e:
            self._warn_fallback(operation, resource, str(e) or type(e).__name__)
            return None
        if is_usable(result, payload_required):
            return result
        reason = result.message if result and not result.success else "empty result"
        self._warn_fallback(operation, resource, reason or "unsuccessful result")
        return None

    async def mirror(self, operation: str, resource: Any, call: SoapCall) -> bool:
        """Best-effort secondary write; reports the outcome only through logs."""
        if not self.soap_enabled:
            return False
        try:
            result = await call()
        except Exception as e:
            error = str(e) or type(e).__name__
        else:
            if result.success:
                logger.debug(
                    "SOAP mirror succeeded",
                    extra={"context": {"operation": operation, "resource": resource}},
                )
                return True
            error = result.message or "unsuccessful result"
        logger.warning(
            "SOAP mirror failed; database record stands",
            extra={"context": {"operation": operation, "resource": resource, "error": error}},
        )
        return False

    @staticmethod
    def _warn_fallback(operation: str, resource: Any, error: str) -> None:
        logger.warning(
            "SOAP unavailable, falling back to database",
            extra={"context": {"operation": operation, "resource": resource, "error": error}},
        )


def paginate(items: Sequence[Any], page: int, limit: int) -> tuple[list[Any], Pagination]:
    """Slice an already merged list in memory."""
    start = (page - 1) * limit
    return list(items[start:start + limit]), Pagination.build(page, limit, len(items))
