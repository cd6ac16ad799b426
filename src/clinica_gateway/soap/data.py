"""Data web service: clinical data import."""

import logging
from typing import Any, Mapping

from clinica_gateway.common.exceptions import SoapError
from clinica_gateway.soap.client import SoapAccessor, SoapResult
from clinica_gateway.soap.odm import build_clinical_data_odm, parse_import_errors

logger = logging.getLogger(__name__)


class DataSoap(SoapAccessor):

    async def import_data(
        self,
        study_oid: str,
        subject_key: str,
        event_oid: str,
        form_oid: str,
        form_data: Mapping[str, Mapping[str, Any]],
        user_id: int,
        username: str,
    ) -> SoapResult:
        """Import one form's item data.

        ODM validation errors are a successful exchange whose data lists
        ``validationErrors``; the caller rejects the save rather than
        falling back.
        """
        odm = build_clinical_data_odm(study_oid, subject_key, event_oid, form_oid, form_data)
        try:
            response = await self.client.execute("data", "importODM", {"odm": odm})
        except SoapError as e:
            return SoapResult(False, message=e.message)

        errors = parse_import_errors(response.payload)
        if errors:
            logger.warning(
                "SOAP data import rejected by validation",
                extra={"context": {"subject": subject_key, "form": form_oid, "errors": len(errors)}},
            )
            return SoapResult(True, data={"imported": False, "validationErrors": errors})
        if not response.ok:
            return SoapResult(False, message=response.error_message)
        return SoapResult(True, data={"imported": True, "validationErrors": []})
