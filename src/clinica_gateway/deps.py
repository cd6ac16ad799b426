"""Dependency injection singletons for Clinica-Gateway."""

from clinica_gateway.audit.service import HybridAuditService
from clinica_gateway.common.config import get_settings
from clinica_gateway.common.database import DatabaseManager
from clinica_gateway.events.service import HybridEventService
from clinica_gateway.forms.service import HybridFormService
from clinica_gateway.hybrid.policy import DualPathPolicy
from clinica_gateway.soap.audit import AuditSoap
from clinica_gateway.soap.client import SoapClient
from clinica_gateway.soap.data import DataSoap
from clinica_gateway.soap.event import EventSoap
from clinica_gateway.soap.study import StudySoap
from clinica_gateway.soap.subject import SubjectSoap
from clinica_gateway.studies.service import HybridStudyService
from clinica_gateway.subjects.service import HybridSubjectService

_db: DatabaseManager | None = None
_soap: SoapClient | None = None
_policy: DualPathPolicy | None = None
_audit: HybridAuditService | None = None
_studies: HybridStudyService | None = None
_subjects: HybridSubjectService | None = None
_forms: HybridFormService | None = None
_events: HybridEventService | None = None


def get_db() -> DatabaseManager:
    global _db
    if _db is None:
        _db = DatabaseManager(get_settings())
    return _db


def get_soap_client() -> SoapClient:
    global _soap
    if _soap is None:
        _soap = SoapClient(get_settings())
    return _soap


def get_policy() -> DualPathPolicy:
    global _policy
    if _policy is None:
        _policy = DualPathPolicy(get_settings().soap_enabled)
    return _policy


def get_audit_service() -> HybridAuditService:
    global _audit
    if _audit is None:
        _audit = HybridAuditService(
            get_settings(), get_db(), AuditSoap(get_soap_client()), get_policy(),
        )
    return _audit


def get_study_service() -> HybridStudyService:
    global _studies
    if _studies is None:
        _studies = HybridStudyService(
            get_settings(), get_db(), StudySoap(get_soap_client()), get_policy(),
        )
    return _studies


def get_subject_service() -> HybridSubjectService:
    global _subjects
    if _subjects is None:
        _subjects = HybridSubjectService(
            get_settings(), get_db(), SubjectSoap(get_soap_client()), get_policy(),
        )
    return _subjects


def get_form_service() -> HybridFormService:
    global _forms
    if _forms is None:
        _forms = HybridFormService(
            get_settings(), get_db(), DataSoap(get_soap_client()), get_policy(),
        )
    return _forms


def get_event_service() -> HybridEventService:
    global _events
    if _events is None:
        _events = HybridEventService(
            get_settings(), get_db(), EventSoap(get_soap_client()), get_policy(),
        )
    return _events


def reset_singletons() -> None:
    """Reset all singletons (for testing)."""
    global _db, _soap, _policy, _audit, _studies, _subjects, _forms, _events
    _db = None
    _soap = None
    _policy = None
    _audit = None
    _studies = None
    _subjects = None
    _forms = None
    _events = None
