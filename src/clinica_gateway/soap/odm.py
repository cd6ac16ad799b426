"""CDISC ODM 1.3 documents exchanged with the LibreClinica web services.

Builders return ``Element`` trees; parsers accept either an element or raw
XML text and match on local names, so namespaced and bare documents parse
the same way.
"""

import time
import xml.etree.ElementTree as ET
from datetime import date, datetime, timezone
from typing import Any, Iterator, Mapping

from clinica_gateway.common.exceptions import OdmParseError

ODM_NS = "http://www.cdisc.org/ns/odm/v1.3"
OC_NS = "http://www.openclinica.org/ns/odm_ext_v130/v3.1"

ET.register_namespace("", ODM_NS)
ET.register_namespace("OpenClinica", OC_NS)


# ── XML helpers ──

def local(tag: str) -> str:
    return tag.rsplit("}", 1)[-1]


def child(elem: ET.Element | None, name: str) -> ET.Element | None:
    if elem is None:
        return None
    for c in elem:
        if local(c.tag) == name:
            return c
    return None


def children(elem: ET.Element | None, name: str) -> list[ET.Element]:
    if elem is None:
        return []
    return [c for c in elem if local(c.tag) == name]


def descendants(elem: ET.Element | None, name: str) -> Iterator[ET.Element]:
    if elem is None:
        return
    for e in elem.iter():
        if local(e.tag) == name:
            yield e


def text(elem: ET.Element | None, name: str, default: str = "") -> str:
    found = child(elem, name)
    if found is None or found.text is None:
        return default
    return found.text.strip()


def attr(elem: ET.Element | None, name: str, default: str = "") -> str:
    """Attribute lookup that ignores any namespace prefix on the key."""
    if elem is None:
        return default
    for key, value in elem.attrib.items():
        if local(key) == name:
            return value
    return default


def parse_xml(payload: str | bytes | ET.Element) -> ET.Element:
    if isinstance(payload, ET.Element):
        return payload
    try:
        return ET.fromstring(payload)
    except ET.ParseError as e:
        raise OdmParseError(f"Malformed XML: {e}") from e


def to_string(elem: ET.Element) -> str:
    return ET.tostring(elem, encoding="unicode")


def extract_odm(payload: ET.Element) -> ET.Element | None:
    """Locate the ODM document in a SOAP response body.

    LibreClinica either nests the document inline or returns it as
    escaped text inside an ``odm`` element.
    """
    if local(payload.tag) == "ODM":
        return payload
    for e in payload.iter():
        if local(e.tag) == "ODM":
            return e
    holder = child(payload, "odm")
    if holder is not None and holder.text and holder.text.strip():
        return parse_xml(holder.text.strip())
    return None


def _q(tag: str, ns: str = ODM_NS) -> str:
    return f"{{{ns}}}{tag}"


def _sub(parent: ET.Element, tag: str, value: Any = None, ns: str = ODM_NS, **attrs: str) -> ET.Element:
    elem = ET.SubElement(parent, _q(tag, ns), {k: str(v) for k, v in attrs.items()})
    if value is not None:
        elem.text = str(value)
    return elem


def _iso(ts: datetime | None) -> str:
    return (ts or datetime.now(timezone.utc)).isoformat()


def _odm_root(file_type: str, file_prefix: str, created: datetime | None = None) -> ET.Element:
    return ET.Element(_q("ODM"), {
        "ODMVersion": "1.3",
        "FileType": file_type,
        "FileOID": f"{file_prefix}-{int(time.time() * 1000)}",
        "CreationDateTime": _iso(created),
    })


# ── OIDs ──

def study_oid(study_id: int) -> str:
    return f"S_{study_id}"


def study_subject_oid(label: str) -> str:
    return f"SS_{label}"


def event_oid(study_event_definition_id: int) -> str:
    return f"SE_{study_event_definition_id}"


def form_oid(crf_id: int) -> str:
    return f"F_{crf_id}"


# ── Builders ──

def build_audit_odm(
    username: str,
    audit_table: str,
    entity_id: int,
    event_type_id: int,
    audit_date: datetime | None = None,
    old_value: str | None = None,
    new_value: str | None = None,
    reason_for_change: str | None = None,
    entity_name: str | None = None,
) -> ET.Element:
    root = _odm_root("Transactional", "AUDIT", audit_date)
    records = _sub(_sub(root, "AdminData"), "AuditRecords")
    record = _sub(records, "AuditRecord")
    _sub(record, "UserRef", UserOID=username)
    _sub(record, "LocationRef", LocationOID="API")
    _sub(record, "DateTimeStamp", _iso(audit_date))
    _sub(record, "EntityRef", EntityOID=f"{audit_table}_{entity_id}")
    if entity_name:
        _sub(record, "EntityName", entity_name, ns=OC_NS)
    _sub(record, "AuditEventType", int(event_type_id))
    if old_value:
        _sub(record, "OldValue", old_value)
    if new_value:
        _sub(record, "NewValue", new_value)
    if reason_for_change:
        _sub(record, "ReasonForChange", reason_for_change)
    _sub(record, "SourceID", username)
    return root


def build_signature_odm(
    entity_type: str,
    entity_id: int,
    signer_username: str,
    password: str,
    meaning: str,
    signed_at: datetime | None = None,
) -> ET.Element:
    root = _odm_root("Transactional", "ESIG", signed_at)
    admin = _sub(root, "AdminData")
    signature = _sub(admin, "Signature", ID=f"SIG_{int(time.time() * 1000)}")
    _sub(signature, "UserRef", UserOID=signer_username)
    _sub(signature, "LocationRef", LocationOID="API")
    _sub(signature, "SignatureRef", SignatureOID=f"{entity_type.upper()}_{entity_id}")
    _sub(signature, "DateTimeStamp", _iso(signed_at))
    manifest = _sub(signature, "CryptoBindingManifest")
    _sub(manifest, "SignatureMethod", "digital",
         Algorithm="http://www.w3.org/2000/09/xmldsig#dsa-sha1")
    _sub(manifest, "Meaning", meaning)
    user = _sub(admin, "User", OID=signer_username)
    _sub(user, "UserRef", UserOID=signer_username)
    _sub(user, "Password", password, ns=OC_NS)
    return root


def build_subject_audit_query(study_oid_: str, subject_key: str) -> ET.Element:
    root = _odm_root("Snapshot", "AUDIT-QUERY")
    clinical = _sub(root, "ClinicalData", StudyOID=study_oid_, MetaDataVersionOID="v1.0.0")
    subject = _sub(clinical, "SubjectData", SubjectKey=subject_key)
    _sub(subject, "AuditTrail", ns=OC_NS, Include="Yes")
    return root


def build_form_audit_query(event_crf_id: int) -> ET.Element:
    root = _odm_root("Snapshot", "FORM-AUDIT")
    query = _sub(_sub(root, "AdminData"), "AuditQuery")
    _sub(query, "EventCRFRef", EventCRFOID=f"EC_{event_crf_id}")
    _sub(query, "IncludeAudit", "true")
    return root


def build_subject_odm(
    study_oid_: str,
    label: str,
    enrollment_date: date | None = None,
    secondary_label: str | None = None,
    gender: str | None = None,
    date_of_birth: date | None = None,
) -> ET.Element:
    root = _odm_root("Snapshot", "SUBJECT")
    clinical = _sub(root, "ClinicalData", StudyOID=study_oid_, MetaDataVersionOID="v1.0.0")
    subject = _sub(clinical, "SubjectData", SubjectKey=study_subject_oid(label))
    _sub(subject, "StudySubjectID", label)
    if secondary_label:
        _sub(subject, "SecondaryID", secondary_label)
    _sub(subject, "EnrollmentDate", (enrollment_date or date.today()).isoformat())
    if gender:
        _sub(subject, "Sex", gender)
    if date_of_birth:
        _sub(subject, "DateOfBirth", date_of_birth.isoformat())
    return root


def build_event_schedule_odm(
    study_oid_: str,
    subject_key: str,
    event_oid_: str,
    start_date: date | None = None,
    end_date: date | None = None,
    location: str | None = None,
    repeat_key: int = 1,
) -> ET.Element:
    root = _odm_root("Transactional", "EVENT")
    clinical = _sub(root, "ClinicalData", StudyOID=study_oid_, MetaDataVersionOID="v1.0.0")
    subject = _sub(clinical, "SubjectData", SubjectKey=subject_key)
    event = _sub(subject, "StudyEventData", StudyEventOID=event_oid_,
                 StudyEventRepeatKey=str(repeat_key))
    _sub(event, "StartDate", (start_date or date.today()).isoformat(), ns=OC_NS)
    if end_date:
        _sub(event, "EndDate", end_date.isoformat(), ns=OC_NS)
    if location:
        _sub(event, "Location", location, ns=OC_NS)
    return root


def build_clinical_data_odm(
    study_oid_: str,
    subject_key: str,
    event_oid_: str,
    form_oid_: str,
    form_data: Mapping[str, Mapping[str, Any]],
    event_repeat_key: int = 1,
) -> ET.Element:
    """ItemGroupData per group key, ItemData per item OID."""
    root = _odm_root("Transactional", "ODM")
    clinical = _sub(root, "ClinicalData", StudyOID=study_oid_, MetaDataVersionOID="v1.0.0")
    subject = _sub(clinical, "SubjectData", SubjectKey=subject_key)
    event = _sub(subject, "StudyEventData", StudyEventOID=event_oid_,
                 StudyEventRepeatKey=str(event_repeat_key))
    form = _sub(event, "FormData", FormOID=form_oid_)
    for group_oid, items in form_data.items():
        group = _sub(form, "ItemGroupData", ItemGroupOID=group_oid, ItemGroupRepeatKey="1")
        for item_oid, value in items.items():
            _sub(group, "ItemData", ItemOID=item_oid, Value="" if value is None else str(value))
    return root


# ── Parsers ──

def _study_entry(elem: ET.Element, parent_oid: str | None) -> dict[str, Any]:
    oid = text(elem, "oid") or text(elem, "OID") or attr(elem, "OID")
    parent = parent_oid or text(elem, "parentStudyOID") or text(elem, "parentStudyOid") or None
    return {
        "oid": oid,
        "identifier": text(elem, "identifier"),
        "name": text(elem, "name"),
        "status": text(elem, "status").lower() or None,
        "parentStudyOid": parent,
        "isParent": parent is None,
    }


def parse_study_list(payload: ET.Element) -> list[dict[str, Any]]:
    """Flatten ``studies/study`` with nested ``sites/site`` entries."""
    studies: list[dict[str, Any]] = []
    for container in descendants(payload, "studies"):
        for study in children(container, "study"):
            entry = _study_entry(study, None)
            studies.append(entry)
            for site in children(child(study, "sites"), "site"):
                site_entry = _study_entry(site, entry["oid"])
                site_entry["isSite"] = True
                studies.append(site_entry)
        break
    return studies


def _oid_number(oid: str, prefix: str) -> int:
    tail = oid[len(prefix):] if oid.startswith(prefix) else oid
    return int(tail) if tail.isdigit() else 0


def parse_study_metadata(odm: ET.Element) -> dict[str, Any]:
    """Reduce an ODM Study definition to ``{study, events, crfs}``."""
    study_elem = next(descendants(odm, "Study"), None)
    if study_elem is None:
        raise OdmParseError("ODM document has no Study element")
    oid = attr(study_elem, "OID")
    study_id = _oid_number(oid, "S_")
    globals_ = child(study_elem, "GlobalVariables")
    study = {
        "study_id": study_id,
        "oc_oid": oid,
        "unique_identifier": text(globals_, "ProtocolName") or oid,
        "name": text(globals_, "StudyName"),
        "summary": text(globals_, "StudyDescription"),
    }
    mdv = child(study_elem, "MetaDataVersion")
    events = []
    for ordinal, ev in enumerate(children(mdv, "StudyEventDef"), start=1):
        ev_oid = attr(ev, "OID")
        events.append({
            "study_event_definition_id": _oid_number(ev_oid, "SE_"),
            "study_id": study_id,
            "oc_oid": ev_oid,
            "name": attr(ev, "Name"),
            "repeating": attr(ev, "Repeating") == "Yes",
            "type": attr(ev, "Type", "Common"),
            "ordinal": ordinal,
        })
    crfs = []
    for form in children(mdv, "FormDef"):
        f_oid = attr(form, "OID")
        crfs.append({
            "crf_id": _oid_number(f_oid, "F_"),
            "study_id": study_id,
            "oc_oid": f_oid,
            "name": attr(form, "Name"),
        })
    return {"study": study, "events": events, "crfs": crfs}


def _audit_entry(record: ET.Element, inline: bool) -> dict[str, Any]:
    entity = attr(child(record, "EntityRef"), "EntityOID")
    table, _, entity_id = entity.rpartition("_") if entity else ("", "", "")
    user_oid = attr(child(record, "UserRef"), "UserOID")
    event_type = text(record, "AuditEventType")
    audit_id = attr(record, "AuditID") or attr(record, "ID")
    return {
        "auditId": (int(audit_id) if audit_id.isdigit() else 0) if not inline else None,
        "auditDate": text(record, "DateTimeStamp") or None,
        "auditTable": "inline" if inline else (table or "unknown"),
        "entityId": int(entity_id) if entity_id.isdigit() else 0,
        "entityName": text(record, "EntityName") or None,
        "username": user_oid or text(record, "SourceID") or "unknown",
        "eventTypeId": int(event_type) if event_type.isdigit() else 0,
        "oldValue": text(record, "OldValue") or None,
        "newValue": text(record, "NewValue") or None,
        "reasonForChange": text(record, "ReasonForChange") or None,
    }


def parse_audit_trail(odm: ET.Element) -> list[dict[str, Any]]:
    """AdminData audit records first, then records inlined in ClinicalData."""
    records = []
    for admin in descendants(odm, "AdminData"):
        for container in children(admin, "AuditRecords"):
            records.extend(_audit_entry(r, inline=False) for r in children(container, "AuditRecord"))
    for clinical in descendants(odm, "ClinicalData"):
        for subject in children(clinical, "SubjectData"):
            records.extend(_audit_entry(r, inline=True) for r in descendants(subject, "AuditRecord"))
    return records


def parse_subject_list(payload: ET.Element) -> list[dict[str, Any]]:
    subjects = []
    for ss in descendants(payload, "studySubject"):
        label = text(ss, "label")
        if not label:
            continue
        person = child(ss, "subject")
        subjects.append({
            "label": label,
            "secondaryLabel": text(ss, "secondaryLabel") or None,
            "enrollmentDate": text(ss, "enrollmentDate") or None,
            "uniqueIdentifier": text(person, "uniqueIdentifier") or None,
            "gender": text(person, "gender") or None,
            "dateOfBirth": text(person, "dateOfBirth") or None,
        })
    return subjects


def parse_import_errors(payload: ET.Element) -> list[dict[str, str]]:
    """Validation failures reported by ``data/import``."""
    errors = []
    for e in descendants(payload, "ValidationError"):
        message = (e.text or "").strip() or attr(e, "Message")
        if message:
            errors.append({"field": attr(e, "ItemOID") or attr(e, "OID"), "message": message})
    return errors
