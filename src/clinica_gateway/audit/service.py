"""Audit reconciliation: Part 11 trail and electronic signatures.

The database is the durability boundary for every write here. SOAP is a
mirror for audit events and the preferred recorder for signatures, but a
SOAP failure never fails an operation whose database write succeeded.
"""

import csv
import hashlib
import hmac as hmac_mod
import io
import json
import logging
from datetime import datetime, timedelta, timezone
from typing import Any

from clinica_gateway.audit.models import AuditEventType
from clinica_gateway.audit.schemas import (
    AuditEventCreate,
    AuditQuery,
    ExportQuery,
    SignatureCredentials,
)
from clinica_gateway.audit.store import AuditStore
from clinica_gateway.common.config import GatewaySettings
from clinica_gateway.common.database import DatabaseManager
from clinica_gateway.common.schemas import ApiResponse, Pagination, ServiceStatus
from clinica_gateway.common.security import verify_password
from clinica_gateway.hybrid.policy import DualPathPolicy, paginate
from clinica_gateway.soap.audit import AuditSoap

logger = logging.getLogger(__name__)

# Audited table for each signable entity type
SIGNED_TABLES = {
    "study": "study",
    "subject": "study_subject",
    "event": "study_event",
    "crf": "event_crf",
}

EXPORT_COLUMNS = (
    "audit_id", "audit_date", "audit_table", "entity_id", "entity_name",
    "user_id", "user_name", "event_type_id", "event_type_name",
    "old_value", "new_value", "reason_for_change",
)


def _soap_filter(records: list[dict[str, Any]], query: AuditQuery) -> list[dict[str, Any]]:
    """Apply event-type and date filters to an ODM-shaped trail."""
    start = query.start_date.isoformat() if query.start_date else None
    end = query.end_date.isoformat() if query.end_date else None
    kept = []
    for r in records:
        if query.event_type_id is not None and r.get("eventTypeId") != query.event_type_id:
            continue
        day = (r.get("auditDate") or "")[:10]
        if start and (not day or day < start):
            continue
        if end and (not day or day > end):
            continue
        kept.append(r)
    return kept


class HybridAuditService:
    """SOAP and database reconciliation for the audit family."""

    def __init__(
        self,
        settings: GatewaySettings,
        db: DatabaseManager,
        soap: AuditSoap,
        policy: DualPathPolicy,
        store: AuditStore | None = None,
    ):
        self.settings = settings
        self.db = db
        self.soap = soap
        self.policy = policy
        self.store = store or AuditStore()

    # ── Write ──

    async def record_audit_event(self, record: AuditEventCreate) -> ApiResponse:
        """Insert one audit row, then mirror it to SOAP.

        Database errors propagate. The mirror's outcome is only logged.
        """
        async with self.db.get_session() as session:
            event = await self.store.insert_event(session, record)
            audit_id = event.audit_id
            audit_date = event.audit_date

        await self.policy.mirror(
            "record_audit_event",
            f"{record.audit_table}:{record.entity_id}",
            lambda: self.soap.record_audit_event(
                record.audit_table, record.entity_id, record.event_type_id,
                record.user_id, record.username, audit_date,
                record.old_value, record.new_value, record.reason_for_change,
                entity_name=record.entity_name,
            ),
        )
        return ApiResponse.ok({"auditId": audit_id}, message="Audit event recorded")

    async def record_electronic_signature(
        self,
        entity_type: str,
        entity_id: int,
        signature: SignatureCredentials,
        acting_user_id: int,
        acting_username: str,
    ) -> ApiResponse:
        """SOAP preferred, database required.

        Both paths leave exactly one entity_signature row plus one
        "electronic signature added" audit row.
        """
        if entity_type not in SIGNED_TABLES:
            return ApiResponse.fail(f"Unsupported entity type: {entity_type}")
        resource = f"{entity_type}:{entity_id}"
        signed_at = datetime.now(timezone.utc)

        soap_result = await self.policy.try_soap(
            "record_electronic_signature",
            resource,
            lambda: self.soap.record_electronic_signature(
                entity_type, entity_id, signature.username, signature.password,
                signature.meaning, acting_user_id, acting_username, signed_at,
            ),
            payload_required=False,
        )
        if soap_result is not None:
            record_id = await self._store_signature(
                entity_type, entity_id, signature, acting_user_id, signed_at, "soap",
            )
            data = dict(soap_result.data or {})
            data.setdefault("signatureId", entity_id)
            data.update(recordId=record_id, source="soap")
            return ApiResponse.ok(data, message="Electronic signature recorded")

        if self.settings.verify_signer_credentials:
            async with self.db.get_session() as session:
                signer = await self.store.active_user(session, signature.username)
            if signer is None or not verify_password(signature.password, signer.passwd):
                logger.warning(
                    "Electronic signature rejected: invalid credentials",
                    extra={"context": {"signer": signature.username, "resource": resource,
                                       "requested_by": acting_username}},
                )
                return ApiResponse.fail("Invalid electronic signature credentials")

        record_id = await self._store_signature(
            entity_type, entity_id, signature, acting_user_id, signed_at, "database",
        )
        return ApiResponse.ok(
            {"signatureId": entity_id, "recordId": record_id, "source": "database"},
            message="Electronic signature recorded (database)",
        )

    async def _store_signature(
        self,
        entity_type: str,
        entity_id: int,
        signature: SignatureCredentials,
        acting_user_id: int,
        signed_at: datetime,
        source: str,
    ) -> int:
        manifest_hash = self._manifest_hash(
            entity_type, entity_id, signature.username, signature.meaning,
            signature.reason_for_change, signed_at, acting_user_id,
        )
        async with self.db.get_session() as session:
            row = await self.store.insert_signature(
                session,
                entity_type=entity_type,
                entity_id=entity_id,
                signer_username=signature.username,
                meaning=signature.meaning,
                reason_for_change=signature.reason_for_change,
                signed_at=signed_at,
                recorded_by=acting_user_id,
                source=source,
                manifest_hash=manifest_hash,
                manifest_hmac=self._sign(manifest_hash),
            )
            await self.store.insert_event(session, AuditEventCreate(
                audit_table=SIGNED_TABLES[entity_type],
                entity_id=entity_id,
                entity_name="Electronic signature",
                user_id=acting_user_id,
                username=signature.username,
                event_type_id=AuditEventType.ESIGNATURE_ADDED,
                new_value=signature.meaning,
                reason_for_change=signature.reason_for_change,
                audit_date=signed_at,
            ))
            return row.signature_id

    # ── Read ──

    async def get_audit_logs(
        self, query: AuditQuery, user_id: int = 0, username: str = "",
    ) -> ApiResponse:
        """Filtered, paginated audit rows.

        A subject or form-instance filter can be answered by the SOAP trail;
        with a date range an empty SOAP answer is a valid result. Other
        filters (user, table, study-wide) only exist on the database path.
        """
        call = None
        resource: Any = None
        if query.user_id is None and not query.audit_table:
            if query.event_crf_id is not None:
                resource = f"event_crf:{query.event_crf_id}"
                call = lambda: self.soap.get_form_audit_trail(query.event_crf_id, user_id, username)
            elif query.study_id is not None and query.subject_id is not None:
                resource = f"study:{query.study_id}/subject:{query.subject_id}"
                call = lambda: self.soap.get_subject_audit_trail(
                    query.study_id, query.subject_id, user_id, username,
                )
        if call is not None:
            result = await self.policy.try_soap(
                "get_audit_logs", resource, call,
                payload_required=not query.has_date_range,
            )
            if result is not None:
                records = _soap_filter(list(result.data or []), query)
                page, pagination = paginate(records, query.page, query.limit)
                return ApiResponse.ok(page, pagination=pagination)

        async with self.db.get_session() as session:
            rows, total = await self.store.query_events(session, query)
        return ApiResponse.ok(rows, pagination=Pagination.build(query.page, query.limit, total))

    async def get_subject_audit_trail(
        self, study_id: int, subject_id: int, user_id: int, username: str,
    ) -> ApiResponse:
        result = await self.policy.try_soap(
            "get_subject_audit_trail",
            f"study:{study_id}/subject:{subject_id}",
            lambda: self.soap.get_subject_audit_trail(study_id, subject_id, user_id, username),
        )
        if result is not None:
            return ApiResponse.ok(result.data)
        async with self.db.get_session() as session:
            rows = await self.store.subject_trail(session, subject_id)
        return ApiResponse.ok(rows)

    async def get_form_audit_trail(
        self, event_crf_id: int, user_id: int, username: str,
    ) -> ApiResponse:
        result = await self.policy.try_soap(
            "get_form_audit_trail",
            f"event_crf:{event_crf_id}",
            lambda: self.soap.get_form_audit_trail(event_crf_id, user_id, username),
        )
        if result is not None:
            return ApiResponse.ok(result.data)
        async with self.db.get_session() as session:
            rows = await self.store.form_trail(session, event_crf_id)
        return ApiResponse.ok(rows)

    async def get_entity_signatures(self, entity_type: str, entity_id: int) -> ApiResponse:
        """Recorded signatures with their manifest seal re-verified."""
        async with self.db.get_session() as session:
            rows = await self.store.signatures_for(session, entity_type, entity_id)
        data = []
        for s in rows:
            expected = self._manifest_hash(
                s.entity_type, s.entity_id, s.signer_username, s.meaning,
                s.reason_for_change, s.signed_at, s.recorded_by,
            )
            intact = (
                hmac_mod.compare_digest(expected, s.manifest_hash)
                and hmac_mod.compare_digest(self._sign(expected), s.manifest_hmac)
            )
            data.append({
                "signature_id": s.signature_id,
                "entity_type": s.entity_type,
                "entity_id": s.entity_id,
                "signer_username": s.signer_username,
                "meaning": s.meaning,
                "reason_for_change": s.reason_for_change,
                "signed_at": s.signed_at.isoformat(),
                "source": s.source,
                "intact": intact,
            })
        return ApiResponse.ok(data)

    async def get_audit_event_types(self) -> ApiResponse:
        async with self.db.get_session() as session:
            return ApiResponse.ok(await self.store.event_types(session))

    async def get_audit_stats(self, days: int = 30) -> ApiResponse:
        since = datetime.now(timezone.utc) - timedelta(days=days)
        async with self.db.get_session() as session:
            stats = await self.store.statistics(session, since)
        stats["period_days"] = days
        return ApiResponse.ok(stats)

    async def export_audit_logs(self, query: ExportQuery) -> ApiResponse:
        """Render the filtered trail as CSV text or a JSON document."""
        fmt = query.format
        async with self.db.get_session() as session:
            rows, total = await self.store.query_events(session, query)

        stamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%SZ")
        if fmt == "json":
            content = json.dumps({"exported_at": stamp, "total": total, "records": rows}, indent=2)
        else:
            buffer = io.StringIO()
            writer = csv.DictWriter(buffer, fieldnames=EXPORT_COLUMNS, extrasaction="ignore")
            writer.writeheader()
            writer.writerows(rows)
            content = buffer.getvalue()
        return ApiResponse.ok({
            "format": fmt,
            "filename": f"audit_trail_{stamp}.{fmt}",
            "count": len(rows),
            "content": content,
        })

    async def get_compliance_report(
        self, study_id: int | None = None, start_date=None, end_date=None,
    ) -> ApiResponse:
        query = AuditQuery(study_id=study_id, start_date=start_date, end_date=end_date)
        async with self.db.get_session() as session:
            report = await self.store.compliance(session, query)
        report["period"] = {
            "study_id": study_id,
            "start_date": start_date.isoformat() if start_date else None,
            "end_date": end_date.isoformat() if end_date else None,
        }
        report["generated_at"] = datetime.now(timezone.utc).isoformat()
        report["mode"] = self.policy.status().mode
        return ApiResponse.ok(report)

    def get_service_status(self) -> ServiceStatus:
        return self.policy.status()

    # ── Internal helpers ──

    @staticmethod
    def _manifest_hash(
        entity_type: str,
        entity_id: int,
        signer: str,
        meaning: str,
        reason: str | None,
        signed_at: datetime,
        recorded_by: int,
    ) -> str:
        """SHA-256 of the canonical JSON signature manifest."""
        if signed_at.tzinfo is None:
            signed_at = signed_at.replace(tzinfo=timezone.utc)
        canonical = json.dumps(
            {
                "entity_type": entity_type,
                "entity_id": entity_id,
                "signer": signer,
                "meaning": meaning,
                "reason": reason,
                "signed_at": signed_at.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S"),
                "recorded_by": recorded_by,
            },
            sort_keys=True,
            separators=(",", ":"),
        )
        return hashlib.sha256(canonical.encode()).hexdigest()

    def _sign(self, manifest_hash: str) -> str:
        return hmac_mod.new(
            self.settings.hmac_key.encode(), manifest_hash.encode(), hashlib.sha256,
        ).hexdigest()
