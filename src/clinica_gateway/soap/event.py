"""Event web service: scheduling study events for enrolled subjects."""

import logging
from datetime import date

from clinica_gateway.soap.client import SoapAccessor, SoapResult
from clinica_gateway.soap.odm import build_event_schedule_odm

logger = logging.getLogger(__name__)


class EventSoap(SoapAccessor):

    async def schedule_event(
        self,
        study_oid: str,
        subject_key: str,
        event_oid: str,
        user_id: int,
        username: str,
        start_date: date | None = None,
        end_date: date | None = None,
        location: str | None = None,
        repeat_key: int = 1,
    ) -> SoapResult:
        logger.info(
            "Scheduling event via SOAP",
            extra={"context": {"subject_key": subject_key, "event_oid": event_oid,
                               "user_id": user_id}},
        )
        odm = build_event_schedule_odm(
            study_oid, subject_key, event_oid, start_date, end_date, location, repeat_key,
        )
        return await self._call(
            "event", "schedule", {"odm": odm},
            lambda r: {"subjectKey": subject_key, "studyEventOid": event_oid,
                       "repeatKey": repeat_key},
        )
