"""Study web service: study listing and ODM metadata."""

import logging

from clinica_gateway.common.exceptions import OdmParseError
from clinica_gateway.soap.client import SoapAccessor, SoapResponse, SoapResult
from clinica_gateway.soap.odm import extract_odm, parse_study_list, parse_study_metadata

logger = logging.getLogger(__name__)


def _metadata(response: SoapResponse) -> dict:
    odm = extract_odm(response.payload)
    if odm is None:
        raise OdmParseError("getMetadata response carried no ODM document")
    return parse_study_metadata(odm)


class StudySoap(SoapAccessor):

    async def list_studies(self, user_id: int, username: str) -> SoapResult:
        """Every study and site visible to the service account."""
        logger.info(
            "Listing studies via SOAP",
            extra={"context": {"user_id": user_id, "username": username}},
        )
        return await self._call(
            "study", "listAll", None, lambda r: parse_study_list(r.payload),
        )

    async def get_study_metadata(self, oid: str, user_id: int, username: str) -> SoapResult:
        logger.info(
            "Fetching study metadata via SOAP",
            extra={"context": {"study_oid": oid, "user_id": user_id}},
        )
        return await self._call(
            "study", "getMetadata", {"studyOid": oid}, _metadata,
        )
