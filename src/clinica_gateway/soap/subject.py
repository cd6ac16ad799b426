"""StudySubject web service: enrolment and per-study subject listing."""

import logging
import xml.etree.ElementTree as ET
from datetime import date

from clinica_gateway.soap.client import SoapAccessor, SoapResult
from clinica_gateway.soap.odm import build_subject_odm, parse_subject_list

logger = logging.getLogger(__name__)


def _study_ref(identifier: str) -> ET.Element:
    ref = ET.Element("studyRef")
    ET.SubElement(ref, "identifier").text = identifier
    return ref


class SubjectSoap(SoapAccessor):

    async def create_subject(
        self,
        study_oid: str,
        label: str,
        user_id: int,
        username: str,
        enrollment_date: date | None = None,
        secondary_label: str | None = None,
        gender: str | None = None,
        date_of_birth: date | None = None,
    ) -> SoapResult:
        logger.info(
            "Creating subject via SOAP",
            extra={"context": {"study_oid": study_oid, "label": label, "user_id": user_id}},
        )
        odm = build_subject_odm(
            study_oid, label, enrollment_date, secondary_label, gender, date_of_birth,
        )
        return await self._call(
            "studySubject", "create", {"odm": odm}, lambda r: {"label": label},
        )

    async def list_subjects(self, study_identifier: str, user_id: int, username: str) -> SoapResult:
        return await self._call(
            "studySubject", "listAllByStudy", {"studyRef": _study_ref(study_identifier)},
            lambda r: parse_subject_list(r.payload),
        )
