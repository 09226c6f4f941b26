"""Cliente REST de la plataforma de mensajería (envíos y consultas request/response)."""

from __future__ import annotations

from typing import Any
from urllib.parse import quote

import httpx

from app.core.config import settings
from app.core.logging import get_logger

logger = get_logger(__name__)


class GatewayError(RuntimeError):
    """Errores derivados de llamadas REST a la plataforma."""


class GatewayClient:
    """Pequeña capa sobre los endpoints `/api/whatsapp/*`."""

    def __init__(
        self,
        *,
        base_url: str | None = None,
        token: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        base = base_url or settings.upstream_base_url
        if not base:
            raise GatewayError("URL de la plataforma no configurada")
        self._base_url = base.rstrip("/")
        self._token = token if token is not None else settings.upstream_api_token
        self._timeout = timeout or settings.gateway_timeout_seconds
        self._transport = transport

    async def send_message(self, *, to: str, body: str) -> str | None:
        """Envía texto libre; retorna el id asignado por la plataforma cuando lo informa."""
        response = await self._request(
            "POST", "/api/whatsapp/send", json={"to": to, "body": body}
        )
        payload = self._json_dict(response)
        return payload.get("messageId")

    async def send_template(
        self,
        *,
        number: str,
        template: str,
        customer_name: str | None = None,
        context: str | None = None,
    ) -> str | None:
        """Envía una plantilla aprobada (fuera de la ventana de texto libre)."""
        body: dict[str, Any] = {"number": number, "template": template}
        if customer_name:
            body["customerName"] = customer_name
        if context:
            body["context"] = context
        response = await self._request("POST", "/api/whatsapp/send-template", json=body)
        payload = self._json_dict(response)
        return payload.get("sid") or payload.get("messageId")

    async def can_send_freeform(self, identity: str) -> bool:
        response = await self._request(
            "GET", f"/api/whatsapp/can-freeform/{quote(identity, safe='')}"
        )
        payload = self._json_dict(response)
        return bool(payload.get("canFreeform"))

    async def mark_read(self, conversation_id: str) -> None:
        await self._request(
            "POST", f"/api/whatsapp/conversations/{quote(conversation_id, safe='')}/read"
        )

    async def _request(
        self,
        method: str,
        path: str,
        *,
        json: Any = None,
    ) -> httpx.Response:
        url = f"{self._base_url}{path}"
        headers: dict[str, str] = {"Accept": "application/json"}
        if json is not None:
            headers["Content-Type"] = "application/json"
        if self._token:
            headers["Authorization"] = f"Bearer {self._token}"
        try:
            async with httpx.AsyncClient(
                timeout=self._timeout, transport=self._transport
            ) as client:
                response = await client.request(method, url, json=json, headers=headers)
        except httpx.RequestError as exc:
            logger.exception(
                "gateway.request_failed",
                extra={"method": method, "path": path, "error": str(exc)},
            )
            raise GatewayError(f"Error al conectar con la plataforma: {exc}") from exc
        if response.status_code >= 400:
            logger.error(
                "gateway.response_error",
                extra={
                    "method": method,
                    "path": path,
                    "status": response.status_code,
                    "body": response.text,
                },
            )
            raise GatewayError(self._error_detail(response))
        return response

    @staticmethod
    def _error_detail(response: httpx.Response) -> str:
        try:
            payload = response.json()
        except ValueError:
            payload = None
        if isinstance(payload, dict) and payload.get("error"):
            return str(payload["error"])
        return f"La plataforma respondió {response.status_code}"

    @staticmethod
    def _json_dict(response: httpx.Response) -> dict[str, Any]:
        if not response.content:
            return {}
        try:
            payload = response.json()
        except ValueError as exc:
            raise GatewayError("Respuesta inesperada de la plataforma") from exc
        if not isinstance(payload, dict):
            raise GatewayError("Respuesta inesperada de la plataforma")
        return payload
