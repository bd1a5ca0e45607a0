# Overview: Async HTTP client for the fiscal gateway (numbering, XML generation, SUNAT submission, void).

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

import httpx

from ..errors import GatewayError, UnknownOutcome
from ..models.documents import SUNAT_DOCUMENT_CODES

logger = logging.getLogger(__name__)

# Failures where the request provably never left this process
_NOT_SENT = (httpx.ConnectError, httpx.ConnectTimeout, httpx.PoolTimeout, httpx.UnsupportedProtocol)


@dataclass(frozen=True)
class SubmitResult:
    document_id: str
    hash: Optional[str] = None
    xml_url: Optional[str] = None
    pdf_url: Optional[str] = None
    cdr_url: Optional[str] = None
    message: Optional[str] = None


def _error_message(response: httpx.Response, fallback: str) -> str:
    """Upstream text verbatim: respuesta.mensaje, then message, then error."""
    try:
        data = response.json()
    except ValueError:
        data = None
    if isinstance(data, dict):
        respuesta = data.get("respuesta")
        if isinstance(respuesta, dict) and respuesta.get("mensaje"):
            return str(respuesta["mensaje"])
        for key in ("message", "error"):
            if data.get(key):
                return str(data[key])
    return f"{fallback} (HTTP {response.status_code})"


class FiscalGatewayClient:
    """Cliente del gateway de facturación electrónica (MiAPI-style JSON API)."""

    def __init__(
        self,
        base_url: str,
        token: str = "",
        secret: str = "",
        timeout: float = 20.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = (base_url or "").rstrip("/")
        self.token = token
        self.secret = secret
        self.timeout = timeout
        self.transport = transport

    @classmethod
    def from_config(cls, config) -> "FiscalGatewayClient":
        return cls(
            base_url=config.get("FISCAL_GATEWAY_URL", ""),
            token=config.get("FISCAL_GATEWAY_TOKEN", ""),
            secret=config.get("FISCAL_GATEWAY_SECRET", ""),
            timeout=config.get("GATEWAY_TIMEOUT_SECONDS", 20.0),
        )

    def _get_headers(self, idempotency_key: str | None = None) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        if idempotency_key:
            headers["Idempotency-Key"] = idempotency_key
        return headers

    async def _post(self, path: str, body: Dict[str, Any], *, idempotency_key: str | None = None) -> httpx.Response:
        if not self.base_url:
            raise GatewayError("Fiscal gateway is not configured")
        async with httpx.AsyncClient(
            base_url=self.base_url,
            timeout=self.timeout,
            transport=self.transport,
        ) as client:
            return await client.post(path, json=body, headers=self._get_headers(idempotency_key))

    async def _call(self, path: str, body: Dict[str, Any], *, what: str, idempotency_key: str | None = None) -> Dict[str, Any]:
        """Request whose failure is always definite (nothing was issued)."""
        try:
            response = await self._post(path, body, idempotency_key=idempotency_key)
        except httpx.TimeoutException:
            logger.error("Timeout calling fiscal gateway %s", path)
            raise GatewayError(f"Timeout calling fiscal gateway ({what})")
        except httpx.HTTPError as e:
            logger.error("Error calling fiscal gateway %s: %s", path, e)
            raise GatewayError(f"Could not reach fiscal gateway ({what}): {e}")

        if response.status_code >= 400:
            message = _error_message(response, f"Fiscal gateway rejected {what}")
            logger.error("Fiscal gateway %s failed: %s", path, message)
            raise GatewayError(message, details={"status_code": response.status_code})
        try:
            return response.json()
        except ValueError:
            raise GatewayError(f"Invalid response from fiscal gateway ({what})")

    async def suggest_number(self, document_type: str, serie: str, *, idempotency_key: str | None = None) -> str:
        """Next correlativo for the serie, as the gateway sees it."""
        data = await self._call(
            "/apifact/invoice/next-number",
            {
                "claveSecreta": self.secret,
                "tipoDoc": SUNAT_DOCUMENT_CODES[document_type],
                "serie": serie,
            },
            what="next number",
            idempotency_key=idempotency_key,
        )
        number = data.get("correlativo") or data.get("suggestedNumber")
        if not number:
            raise GatewayError("Could not obtain the next correlativo from the fiscal gateway")
        return str(number)

    async def generate_document(self, comprobante: Dict[str, Any], *, idempotency_key: str | None = None) -> Dict[str, Any]:
        """Ask the gateway to build and sign the XML for the comprobante."""
        body = dict(comprobante)
        body["claveSecreta"] = self.secret
        return await self._call(
            "/apifact/invoice/create",
            body,
            what="XML generation",
            idempotency_key=idempotency_key,
        )

    async def submit_document(
        self,
        document_type: str,
        serie: str,
        correlativo: str,
        *,
        idempotency_key: str,
        customer_email: str | None = None,
    ) -> SubmitResult:
        """
        Send the generated XML to SUNAT.

        A timeout or broken connection after the request went out, or a 2xx
        answer that cannot be read, raises UnknownOutcome: SUNAT may have
        accepted the document.
        """
        body: Dict[str, Any] = {
            "claveSecreta": self.secret,
            "comprobante": {
                "tipoDoc": SUNAT_DOCUMENT_CODES[document_type],
                "serie": serie,
                "correlativo": correlativo,
            },
        }
        if customer_email:
            body["customerEmail"] = customer_email

        try:
            response = await self._post("/apifact/invoice/send", body, idempotency_key=idempotency_key)
        except _NOT_SENT as e:
            logger.error("Could not connect to fiscal gateway for submission: %s", e)
            raise GatewayError(f"Could not reach fiscal gateway (submission): {e}")
        except httpx.HTTPError as e:
            raise UnknownOutcome(
                "Submission outcome unknown; check SUNAT before retrying",
                details={"serie": serie, "correlativo": correlativo, "idempotency_key": idempotency_key},
            ) from e

        if response.status_code >= 400:
            message = _error_message(response, "Error sending XML to SUNAT")
            logger.error("SUNAT submission %s-%s rejected: %s", serie, correlativo, message)
            raise GatewayError(message, details={"status_code": response.status_code})

        # The gateway took the submission; an unreadable answer says nothing about SUNAT
        try:
            data = response.json()
        except ValueError:
            data = None
        respuesta = data.get("respuesta") if isinstance(data, dict) else None
        if not isinstance(respuesta, dict):
            logger.error(
                "Unreadable fiscal gateway answer for %s-%s (HTTP %s)",
                serie,
                correlativo,
                response.status_code,
            )
            raise UnknownOutcome(
                "Invalid response from fiscal gateway after submission; check SUNAT before retrying",
                details={
                    "serie": serie,
                    "correlativo": correlativo,
                    "idempotency_key": idempotency_key,
                    "status_code": response.status_code,
                },
            )
        if not respuesta.get("success"):
            raise GatewayError(respuesta.get("mensaje") or "SUNAT rejected the document")

        return SubmitResult(
            document_id=str(data.get("documentId") or f"{serie}-{correlativo}"),
            hash=respuesta.get("hash"),
            xml_url=respuesta.get("xml-firmado"),
            pdf_url=respuesta.get("pdf-a4"),
            cdr_url=respuesta.get("cdr"),
            message=respuesta.get("mensaje"),
        )

    async def void_document(self, document_type: str, serie: str, correlativo: str, reason: str) -> Dict[str, Any]:
        """Comunicación de baja for an accepted document."""
        return await self._call(
            "/apifact/invoice/void",
            {
                "claveSecreta": self.secret,
                "comprobante": {
                    "tipoDoc": SUNAT_DOCUMENT_CODES[document_type],
                    "serie": serie,
                    "correlativo": correlativo,
                },
                "motivo": reason,
            },
            what="void",
        )
