# Overview: HTTP client for the electronic invoicing gateway (AFIP via a third-party API).

"""
Fiscal gateway client.

Services build a gateway-neutral payload (cents, basis points, voucher
letters); this module maps it onto the provider's wire format (AFIP voucher,
document and VAT codes, decimal amounts) and classifies failures.

FAILURE CLASSIFICATION:
- No response (transport error, timeout): retryable
- HTTP 5xx / 429: retryable
- Other HTTP 4xx: not retryable
- 2xx with success=false: explicit rejection, not retryable
"""

from __future__ import annotations

import base64
import json
from dataclasses import dataclass, field
from datetime import date
from typing import Any

import httpx
from flask import current_app

from fiscalpos.time_utils import parse_iso_date


# =============================================================================
# AFIP CODE TABLES
# =============================================================================

VOUCHER_TYPE_CODES = {
    "A": 1,     # Factura A
    "B": 6,     # Factura B
    "C": 11,    # Factura C
    "NC_A": 3,  # Nota de Crédito A
    "NC_B": 8,  # Nota de Crédito B
    "NC_C": 13, # Nota de Crédito C
}

DOCUMENT_TYPE_CODES = {
    "DNI": 96,
    "CUIT": 80,
    "CUIL": 86,
    "PASSPORT": 94,
    "OTHER": 99,
}

# VAT rate (basis points) -> AFIP alicuota code
VAT_RATE_CODES = {
    0: 3,
    1050: 4,
    2100: 5,
    2700: 6,
}

UNIT_CODE_UNITS = 7
CONCEPT_PRODUCTS = 1


class ExternalGatewayError(Exception):
    """Gateway call failed; `retryable` tells the state machine what to do next."""

    def __init__(self, message: str, *, retryable: bool, status_code: int | None = None, response: Any = None):
        super().__init__(message)
        self.retryable = retryable
        self.status_code = status_code
        self.response = response


@dataclass
class GatewayResult:
    success: bool
    cae: str | None = None
    cae_expiration: date | None = None
    gateway_id: str | None = None
    raw_response: Any = None
    error: str | None = None
    retryable: bool = False

    @classmethod
    def from_error(cls, exc: ExternalGatewayError) -> "GatewayResult":
        return cls(success=False, error=str(exc), retryable=exc.retryable, raw_response=exc.response)


@dataclass
class GatewayStatus:
    connected: bool
    detail: Any = field(default=None)
    error: str | None = None


def _amount(cents: int) -> float:
    return round(cents / 100, 2)


def vat_code(rate_bps: int) -> int:
    return VAT_RATE_CODES.get(rate_bps, VAT_RATE_CODES[2100])


def format_wire_payload(payload: dict) -> dict:
    """Gateway-neutral document payload -> provider JSON body."""
    voucher_type = payload["voucher_type"]
    customer = payload.get("customer") or {}
    totals = payload["totals"]
    tax_by_rate = {int(k): v for k, v in (totals.get("tax_by_rate") or {}).items()}

    body = {
        "tipo_comprobante": VOUCHER_TYPE_CODES.get(voucher_type, VOUCHER_TYPE_CODES["B"]),
        "punto_venta": int(payload.get("point_of_sale") or 1),
        "numero": payload.get("number"),
        "fecha": payload.get("issue_date"),
        "concepto": CONCEPT_PRODUCTS,
        "tipo_documento": DOCUMENT_TYPE_CODES.get(customer.get("document_type"), DOCUMENT_TYPE_CODES["OTHER"]),
        "documento": customer.get("document_number") or "0",
        "nombre": customer.get("name") or "Consumidor Final",
        "items": [
            {
                "descripcion": item["description"],
                "cantidad": item["quantity"],
                "unidad": UNIT_CODE_UNITS,
                "precio_unitario": _amount(item["unit_price_cents"]),
                "iva": vat_code(item["tax_rate_bps"]),
                "importe": _amount(item["total_cents"]),
            }
            for item in payload.get("items", [])
        ],
        "subtotal": _amount(totals["net_cents"]),
        "iva_21": _amount(tax_by_rate.get(2100, 0)),
        "iva_10_5": _amount(tax_by_rate.get(1050, 0)),
        "iva_27": _amount(tax_by_rate.get(2700, 0)),
        "total": _amount(totals["total_cents"]),
        "moneda": "PES",
        "cotizacion": 1,
    }

    if voucher_type in ("A", "NC_A"):
        body["domicilio"] = customer.get("address") or ""
        body["condicion_iva"] = customer.get("tax_condition")

    original = payload.get("original_invoice")
    if original:
        body["comprobante_asociado"] = {
            "tipo_comprobante": VOUCHER_TYPE_CODES.get(original["voucher_type"], VOUCHER_TYPE_CODES["B"]),
            "punto_venta": int(original["point_of_sale"]),
            "numero": original["number"],
            "cae": original.get("cae"),
        }

    return body


def build_qr_url(*, issue_date: str, seller_tax_id: str | None, point_of_sale: int, voucher_type: str,
                 number: int, total_cents: int, customer_document_type: str | None,
                 customer_document_number: str | None, cae: str) -> str:
    """AFIP receipt QR: base64 JSON appended to the verification URL."""
    data = {
        "ver": 1,
        "fecha": issue_date,
        "cuit": int(seller_tax_id) if seller_tax_id and seller_tax_id.isdigit() else 0,
        "ptoVta": point_of_sale,
        "tipoCmp": VOUCHER_TYPE_CODES.get(voucher_type, VOUCHER_TYPE_CODES["B"]),
        "nroCmp": number,
        "importe": _amount(total_cents),
        "moneda": "PES",
        "ctz": 1,
        "tipoDocRec": DOCUMENT_TYPE_CODES.get(customer_document_type, DOCUMENT_TYPE_CODES["OTHER"]),
        "nroDocRec": int(customer_document_number) if customer_document_number and customer_document_number.isdigit() else 0,
        "tipoCodAut": "E",
        "codAut": int(cae) if cae.isdigit() else cae,
    }
    encoded = base64.b64encode(json.dumps(data, separators=(",", ":")).encode("utf-8")).decode("ascii")
    return f"https://www.afip.gob.ar/fe/qr/?p={encoded}"


class FiscalGatewayClient:
    """
    Synchronous httpx client. One short-lived connection per call so the
    client can be shared across the request threads and the retry sweep.
    """

    def __init__(
        self,
        base_url: str,
        api_key: str | None = None,
        timeout: float = 30.0,
        transport: httpx.BaseTransport | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout
        self._transport = transport

    @classmethod
    def from_config(cls, config) -> "FiscalGatewayClient":
        return cls(
            base_url=config["FISCAL_GATEWAY_URL"],
            api_key=config.get("FISCAL_GATEWAY_API_KEY"),
            timeout=float(config.get("FISCAL_GATEWAY_TIMEOUT_SECONDS", 30)),
        )

    def _client(self) -> httpx.Client:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return httpx.Client(
            base_url=self.base_url,
            headers=headers,
            timeout=self.timeout,
            transport=self._transport,
        )

    def _request(self, method: str, path: str, body: dict | None = None) -> Any:
        try:
            with self._client() as client:
                response = client.request(method, path, json=body)
        except httpx.TimeoutException as exc:
            raise ExternalGatewayError(f"Gateway timeout: {exc}", retryable=True) from exc
        except httpx.TransportError as exc:
            raise ExternalGatewayError(f"Gateway unreachable: {exc}", retryable=True) from exc

        try:
            data = response.json()
        except ValueError:
            data = None

        if response.status_code >= 400:
            retryable = response.status_code >= 500 or response.status_code == 429
            message = None
            if isinstance(data, dict):
                message = data.get("message") or data.get("error")
            raise ExternalGatewayError(
                message or f"Gateway returned HTTP {response.status_code}",
                retryable=retryable,
                status_code=response.status_code,
                response=data,
            )

        if not isinstance(data, dict):
            raise ExternalGatewayError(
                "Gateway returned a non-JSON response",
                retryable=False,
                status_code=response.status_code,
            )
        return data

    def _submit(self, path: str, payload: dict) -> GatewayResult:
        body = format_wire_payload(payload)
        try:
            data = self._request("POST", path, body)
        except ExternalGatewayError as exc:
            current_app.logger.warning(
                "Fiscal gateway error on %s (retryable=%s, status=%s): %s",
                path, exc.retryable, exc.status_code, exc,
            )
            return GatewayResult.from_error(exc)

        if not data.get("success"):
            return GatewayResult(
                success=False,
                error=data.get("error") or "Unknown error from fiscal gateway",
                raw_response=data,
                retryable=False,
            )

        if not data.get("cae"):
            # Without a CAE the voucher is not fiscally valid
            current_app.logger.error("Fiscal gateway reported success on %s without a CAE: %s", path, data)
            return GatewayResult(
                success=False,
                error="Gateway reported success without a CAE",
                raw_response=data,
                retryable=False,
            )

        number = data.get("numero_comprobante")
        return GatewayResult(
            success=True,
            cae=str(data["cae"]),
            cae_expiration=parse_iso_date(data.get("cae_vencimiento")),
            gateway_id=str(number) if number is not None else None,
            raw_response=data,
        )

    def submit_invoice(self, payload: dict) -> GatewayResult:
        return self._submit("/invoices", payload)

    def submit_credit_note(self, payload: dict) -> GatewayResult:
        return self._submit("/credit-notes", payload)

    def check_status(self) -> GatewayStatus:
        try:
            data = self._request("GET", "/status")
        except ExternalGatewayError as exc:
            return GatewayStatus(connected=False, error=str(exc))
        return GatewayStatus(connected=True, detail=data)


def get_gateway():
    return current_app.extensions["fiscalpos.fiscal_gateway"]
