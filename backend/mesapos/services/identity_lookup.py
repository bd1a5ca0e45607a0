# Overview: RUC/DNI lookup proxy client; failures are logged and reported as "not found".

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import httpx

from .customer_service import normalize_document

logger = logging.getLogger(__name__)


def _full_name(datos: Dict[str, Any]) -> str | None:
    for key in ("razon_social", "nombre_completo", "nombre"):
        if datos.get(key):
            return str(datos[key]).strip()
    parts = [datos.get(k) for k in ("nombres", "apellido_paterno", "apellido_materno")]
    joined = " ".join(str(p).strip() for p in parts if p)
    return joined or None


class IdentityLookupClient:
    def __init__(
        self,
        base_url: str,
        token: str = "",
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = (base_url or "").rstrip("/")
        self.token = token
        self.timeout = timeout
        self.transport = transport

    @classmethod
    def from_config(cls, config) -> "IdentityLookupClient":
        return cls(
            base_url=config.get("IDENTITY_LOOKUP_URL", ""),
            token=config.get("IDENTITY_LOOKUP_TOKEN", ""),
        )

    async def lookup_by_document(self, document_type: str, document_number) -> Optional[Dict[str, Any]]:
        """
        {document_type, document_number, name, address} or None.

        Malformed numbers raise ValidationError; anything upstream (timeouts,
        HTTP errors, unsuccessful answers) is logged and returns None.
        """
        doc_type, number = normalize_document(document_type, document_number)
        if not self.base_url:
            logger.warning("Identity lookup is not configured")
            return None

        headers = {"Content-Type": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"

        path = f"/v1/{doc_type.lower()}/{number}"
        try:
            async with httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
                transport=self.transport,
            ) as client:
                response = await client.get(path, headers=headers)
            if response.status_code != 200:
                logger.warning("Identity lookup %s returned HTTP %s", path, response.status_code)
                return None
            data = response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.warning("Identity lookup %s failed: %s", path, e)
            return None

        if not isinstance(data, dict) or not data.get("success") or not isinstance(data.get("datos"), dict):
            logger.info("Identity lookup %s found nothing", path)
            return None

        datos = data["datos"]
        name = _full_name(datos)
        if not name:
            return None
        return {
            "document_type": doc_type,
            "document_number": number,
            "name": name,
            "address": (datos.get("direccion") or datos.get("domicilio") or None),
        }
