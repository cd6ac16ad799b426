"""Audit records and electronic signatures over the data web service."""

import logging
import re
from datetime import datetime

from clinica_gateway.soap.client import SoapAccessor, SoapResponse, SoapResult
from clinica_gateway.soap.odm import (
    build_audit_odm,
    build_form_audit_query,
    build_signature_odm,
    build_subject_audit_query,
    extract_odm,
    parse_audit_trail,
    study_oid,
    to_string,
)

logger = logging.getLogger(__name__)

_AUDIT_ID = re.compile(r"AuditID[=\"']+(\d+)", re.IGNORECASE)


def _audit_id(response: SoapResponse) -> int | None:
    for elem in response.payload.iter():
        if elem.tag.rsplit("}", 1)[-1] in ("auditId", "AuditID") and elem.text and elem.text.strip().isdigit():
            return int(elem.text.strip())
    match = _AUDIT_ID.search(to_string(response.payload))
    return int(match.group(1)) if match else None


def _trail(response: SoapResponse) -> list[dict]:
    odm = extract_odm(response.payload)
    return parse_audit_trail(odm) if odm is not None else []


class AuditSoap(SoapAccessor):

    async def record_audit_event(
        self,
        audit_table: str,
        entity_id: int,
        event_type_id: int,
        user_id: int,
        username: str,
        audit_date: datetime | None = None,
        old_value: str | None = None,
        new_value: str | None = None,
        reason_for_change: str | None = None,
        entity_name: str | None = None,
    ) -> SoapResult:
        odm = build_audit_odm(
            username, audit_table, entity_id, event_type_id, audit_date,
            old_value, new_value, reason_for_change, entity_name=entity_name,
        )
        return await self._call(
            "data", "importODM", {"odm": odm}, lambda r: {"auditId": _audit_id(r)},
        )

    async def record_electronic_signature(
        self,
        entity_type: str,
        entity_id: int,
        signer_username: str,
        password: str,
        meaning: str,
        user_id: int,
        username: str,
        signed_at: datetime | None = None,
    ) -> SoapResult:
        logger.info(
            "Recording electronic signature via SOAP",
            extra={"context": {
                "entity_type": entity_type, "entity_id": entity_id,
                "signer": signer_username, "meaning": meaning, "user_id": user_id,
            }},
        )
        odm = build_signature_odm(entity_type, entity_id, signer_username, password, meaning, signed_at)
        return await self._call(
            "data", "importODM", {"odm": odm}, lambda r: {"signatureId": entity_id},
        )

    async def get_subject_audit_trail(
        self, study_id: int, subject_id: int, user_id: int, username: str,
    ) -> SoapResult:
        query = build_subject_audit_query(study_oid(study_id), f"SS_{subject_id}")
        return await self._call(
            "data", "extractODM", {"odm": query, "includeAudit": "true"}, _trail,
        )

    async def get_form_audit_trail(
        self, event_crf_id: int, user_id: int, username: str,
    ) -> SoapResult:
        query = build_form_audit_query(event_crf_id)
        return await self._call(
            "data", "extractODM",
            {"odm": query, "eventCrfId": event_crf_id, "includeAudit": "true"},
            _trail,
        )
