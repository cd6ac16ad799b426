"""HTTP transport for the LibreClinica SOAP web services."""

import logging
import xml.etree.ElementTree as ET
from dataclasses import dataclass, field
from typing import Any, Callable, Mapping

import httpx

from clinica_gateway.common.config import GatewaySettings
from clinica_gateway.common.exceptions import SoapError, SoapFaultError, SoapTransportError
from clinica_gateway.soap.odm import child, children, local, parse_xml, text

logger = logging.getLogger(__name__)

SOAP_ENV_NS = "http://schemas.xmlsoap.org/soap/envelope/"
WSSE_NS = "http://docs.oasis-open.org/wss/2004/01/oasis-200401-wss-wssecurity-secext-1.0.xsd"
PASSWORD_TEXT = (
    "http://docs.oasis-open.org/wss/2004/01/"
    "oasis-200401-wss-username-token-profile-1.0#PasswordText"
)

SERVICES = ("study", "studySubject", "data", "event")

ParamValue = str | int | ET.Element


@dataclass(frozen=True)
class SoapResult:
    """Outcome of one accessor call, as seen by the hybrid services."""
    success: bool
    data: Any = None
    message: str = ""


@dataclass
class SoapResponse:
    """Body payload of a successful HTTP exchange.

    ``result`` is LibreClinica's ``<result>`` flag (``Success``/``Fail``)
    when the response carries one.
    """
    payload: ET.Element
    result: str | None = None
    errors: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.result is None or self.result.lower() == "success"

    @property
    def error_message(self) -> str:
        return "; ".join(self.errors) or f"LibreClinica returned result={self.result}"


class SoapClient:
    """Posts WS-Security authenticated SOAP 1.1 envelopes.

    Holds only read-only configuration; each call opens its own
    ``httpx.AsyncClient`` with the configured timeout and makes one attempt.
    """

    def __init__(
        self,
        settings: GatewaySettings,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = settings.soap_url.rstrip("/")
        self.username = settings.soap_username
        self.password = settings.soap_password
        self.timeout = settings.soap_timeout
        self._transport = transport

    def endpoint(self, service: str) -> str:
        if service not in SERVICES:
            raise ValueError(f"Unknown SOAP service: {service}")
        return f"{self.base_url}/{service}/v1"

    def build_envelope(
        self, service: str, method: str, params: Mapping[str, ParamValue] | None = None,
    ) -> bytes:
        envelope = ET.Element(f"{{{SOAP_ENV_NS}}}Envelope")
        header = ET.SubElement(envelope, f"{{{SOAP_ENV_NS}}}Header")
        security = ET.SubElement(header, f"{{{WSSE_NS}}}Security")
        token = ET.SubElement(security, f"{{{WSSE_NS}}}UsernameToken")
        ET.SubElement(token, f"{{{WSSE_NS}}}Username").text = self.username
        ET.SubElement(token, f"{{{WSSE_NS}}}Password", {"Type": PASSWORD_TEXT}).text = self.password

        body = ET.SubElement(envelope, f"{{{SOAP_ENV_NS}}}Body")
        ns = f"http://openclinica.org/ws/{service}/v1"
        request = ET.SubElement(body, f"{{{ns}}}{method}Request")
        for name, value in (params or {}).items():
            if isinstance(value, ET.Element):
                holder = ET.SubElement(request, f"{{{ns}}}{name}")
                holder.append(value)
            else:
                ET.SubElement(request, f"{{{ns}}}{name}").text = str(value)
        return ET.tostring(envelope, encoding="utf-8", xml_declaration=True)

    async def execute(
        self, service: str, method: str, params: Mapping[str, ParamValue] | None = None,
    ) -> SoapResponse:
        """Send one request.

        Raises SoapTransportError on network failure, timeout or a non-2xx
        status without a fault; SoapFaultError on a SOAP Fault; OdmParseError
        on an unparseable body.
        """
        url = self.endpoint(service)
        envelope = self.build_envelope(service, method, params)
        headers = {"Content-Type": "text/xml; charset=utf-8", "SOAPAction": '""'}

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                resp = await client.post(url, content=envelope, headers=headers)
        except httpx.TimeoutException as e:
            raise SoapTransportError(
                f"{service}/{method} timed out after {self.timeout}s"
            ) from e
        except httpx.HTTPError as e:
            raise SoapTransportError(f"{service}/{method}: {e}") from e

        if resp.status_code >= 400:
            fault = self._find_fault(resp.content)
            if fault is not None:
                raise fault
            raise SoapTransportError(f"{service}/{method}: HTTP {resp.status_code}")

        root = parse_xml(resp.content)
        body = child(root, "Body")
        if body is None:
            raise SoapTransportError(f"{service}/{method}: response has no SOAP Body")
        fault = child(body, "Fault")
        if fault is not None:
            raise self._fault_error(fault)

        payload = next(iter(body), None)
        if payload is None:
            raise SoapTransportError(f"{service}/{method}: empty SOAP Body")

        result = child(payload, "result")
        response = SoapResponse(
            payload=payload,
            result=result.text.strip() if result is not None and result.text else None,
            errors=[e.text.strip() for e in children(payload, "error") if e.text],
        )
        logger.debug(
            "SOAP request completed",
            extra={"context": {"service": service, "method": method, "result": response.result}},
        )
        return response

    def _find_fault(self, content: bytes) -> SoapFaultError | None:
        try:
            root = parse_xml(content)
        except Exception:
            return None
        body = child(root, "Body")
        fault = child(body, "Fault")
        return self._fault_error(fault) if fault is not None else None

    @staticmethod
    def _fault_error(fault: ET.Element) -> SoapFaultError:
        message = text(fault, "faultstring") or text(fault, "Reason") or "SOAP fault"
        code = text(fault, "faultcode") or text(fault, "Code")
        return SoapFaultError(message, fault_code=code)

    async def ping(self, service: str = "study") -> bool:
        """Fetch the WSDL as a connectivity check."""
        try:
            async with httpx.AsyncClient(
                timeout=self.timeout, transport=self._transport,
                auth=(self.username, self.password),
            ) as client:
                resp = await client.get(self.endpoint(service), params={"wsdl": ""})
            return resp.status_code == 200 and local(parse_xml(resp.content).tag) == "definitions"
        except Exception as e:
            logger.warning(
                "SOAP ping failed",
                extra={"context": {"service": service, "error": str(e)}},
            )
            return False


class SoapAccessor:
    """Base for the per-service accessors.

    Accessors never raise for SOAP-side trouble: transport errors, faults,
    ``result=Fail`` and unparseable payloads all come back as an
    unsuccessful ``SoapResult``.
    """

    def __init__(self, client: SoapClient):
        self.client = client

    async def _call(
        self,
        service: str,
        method: str,
        params: Mapping[str, ParamValue] | None,
        parse: Callable[[SoapResponse], Any],
    ) -> SoapResult:
        try:
            response = await self.client.execute(service, method, params)
            if not response.ok:
                return SoapResult(False, message=response.error_message)
            data = parse(response)
        except SoapError as e:
            return SoapResult(False, message=e.message)
        return SoapResult(True, data=data)
