"""
Fiscal gateway client tests (httpx.MockTransport, no network).
"""

import base64
import json
from datetime import date

import httpx
import pytest

from fiscalpos.services.fiscal_gateway import (
    FiscalGatewayClient,
    build_qr_url,
    format_wire_payload,
    vat_code,
)


def _payload(voucher_type="B", **extra):
    payload = {
        "voucher_type": voucher_type,
        "point_of_sale": 3,
        "number": 42,
        "issue_date": "2026-10-19",
        "seller": {"tax_id": "30712345674", "tax_condition": "RESPONSABLE_INSCRIPTO"},
        "customer": {
            "name": "Distribuidora del Sur SRL",
            "document_type": "CUIT",
            "document_number": "30709876543",
            "tax_condition": "RESPONSABLE_INSCRIPTO",
            "tax_id": "30709876543",
            "address": "Calle Falsa 123",
        },
        "items": [
            {
                "description": "Yerba Mate 1kg",
                "quantity": 2,
                "unit_price_cents": 12100,
                "tax_rate_bps": 2100,
                "total_cents": 24200,
            },
        ],
        "totals": {
            "net_cents": 20000,
            "tax_cents": 4200,
            "total_cents": 24200,
            "discount_cents": 0,
            "tax_by_rate": {2100: 4200},
        },
    }
    payload.update(extra)
    return payload


def _client(handler, api_key="secret-key"):
    return FiscalGatewayClient(
        base_url="http://gateway.test/v1/",
        api_key=api_key,
        timeout=5,
        transport=httpx.MockTransport(handler),
    )


# =============================================================================
# WIRE FORMAT
# =============================================================================


class TestWireFormat:
    def test_invoice_b_mapping(self):
        body = format_wire_payload(_payload())

        assert body["tipo_comprobante"] == 6
        assert body["punto_venta"] == 3
        assert body["numero"] == 42
        assert body["tipo_documento"] == 80
        assert body["documento"] == "30709876543"
        assert body["subtotal"] == 200.0
        assert body["iva_21"] == 42.0
        assert body["iva_10_5"] == 0.0
        assert body["total"] == 242.0
        assert body["items"][0]["precio_unitario"] == 121.0
        assert body["items"][0]["iva"] == 5
        assert "domicilio" not in body
        assert "comprobante_asociado" not in body

    def test_invoice_a_carries_address_and_condition(self):
        body = format_wire_payload(_payload("A"))
        assert body["tipo_comprobante"] == 1
        assert body["domicilio"] == "Calle Falsa 123"
        assert body["condicion_iva"] == "RESPONSABLE_INSCRIPTO"

    def test_credit_note_references_original(self):
        body = format_wire_payload(_payload(
            "NC_B",
            original_invoice={"voucher_type": "B", "point_of_sale": 3, "number": 41, "cae": "74000000000001"},
        ))
        assert body["tipo_comprobante"] == 8
        assert body["comprobante_asociado"] == {
            "tipo_comprobante": 6,
            "punto_venta": 3,
            "numero": 41,
            "cae": "74000000000001",
        }

    def test_anonymous_customer_defaults(self):
        body = format_wire_payload(_payload(customer={"name": None, "document_type": "DNI", "document_number": None}))
        assert body["tipo_documento"] == 96
        assert body["documento"] == "0"
        assert body["nombre"] == "Consumidor Final"

    def test_vat_codes(self):
        assert vat_code(2100) == 5
        assert vat_code(1050) == 4
        assert vat_code(2700) == 6
        assert vat_code(0) == 3
        assert vat_code(1234) == 5


class TestQrUrl:
    def test_encodes_receipt_data(self):
        url = build_qr_url(
            issue_date="2026-10-19",
            seller_tax_id="30712345674",
            point_of_sale=3,
            voucher_type="B",
            number=42,
            total_cents=24200,
            customer_document_type="DNI",
            customer_document_number="30111222",
            cae="74000000000001",
        )

        prefix = "https://www.afip.gob.ar/fe/qr/?p="
        assert url.startswith(prefix)
        data = json.loads(base64.b64decode(url[len(prefix):]))
        assert data["cuit"] == 30712345674
        assert data["ptoVta"] == 3
        assert data["tipoCmp"] == 6
        assert data["nroCmp"] == 42
        assert data["importe"] == 242.0
        assert data["tipoDocRec"] == 96
        assert data["nroDocRec"] == 30111222
        assert data["codAut"] == 74000000000001


# =============================================================================
# HTTP CLIENT
# =============================================================================


class TestSubmit:
    def test_success(self, app):
        seen = {}

        def handler(request):
            seen["url"] = str(request.url)
            seen["auth"] = request.headers.get("Authorization")
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={
                "success": True,
                "cae": 74000000000123,
                "cae_vencimiento": "2026-10-29",
                "numero_comprobante": 42,
            })

        with app.app_context():
            result = _client(handler).submit_invoice(_payload())

        assert seen["url"] == "http://gateway.test/v1/invoices"
        assert seen["auth"] == "Bearer secret-key"
        assert seen["body"]["tipo_comprobante"] == 6
        assert result.success is True
        assert result.cae == "74000000000123"
        assert result.cae_expiration == date(2026, 10, 29)
        assert result.gateway_id == "42"

    def test_credit_note_endpoint(self, app):
        seen = {}

        def handler(request):
            seen["path"] = request.url.path
            return httpx.Response(200, json={"success": True, "cae": "1"})

        with app.app_context():
            result = _client(handler, api_key=None).submit_credit_note(_payload("NC_B"))

        assert seen["path"] == "/v1/credit-notes"
        assert result.success is True
        assert result.cae_expiration is None

    def test_explicit_rejection_not_retryable(self, app):
        def handler(request):
            return httpx.Response(200, json={"success": False, "error": "CUIT inválido"})

        with app.app_context():
            result = _client(handler).submit_invoice(_payload())

        assert result.success is False
        assert result.retryable is False
        assert result.error == "CUIT inválido"
        assert result.raw_response == {"success": False, "error": "CUIT inválido"}

    @pytest.mark.parametrize("body", [
        {"success": True, "numero_comprobante": 42},
        {"success": True, "cae": "", "numero_comprobante": 42},
        {"success": True, "cae": None},
    ])
    def test_success_without_cae_is_a_rejection(self, app, body):
        def handler(request):
            return httpx.Response(200, json=body)

        with app.app_context():
            result = _client(handler).submit_invoice(_payload())

        assert result.success is False
        assert result.retryable is False
        assert result.cae is None
        assert result.error == "Gateway reported success without a CAE"
        assert result.raw_response == body

    @pytest.mark.parametrize("status,retryable", [
        (500, True),
        (502, True),
        (503, True),
        (429, True),
        (400, False),
        (401, False),
        (422, False),
    ])
    def test_http_errors(self, app, status, retryable):
        def handler(request):
            return httpx.Response(status, json={"message": f"status {status}"})

        with app.app_context():
            result = _client(handler).submit_invoice(_payload())

        assert result.success is False
        assert result.retryable is retryable
        assert result.error == f"status {status}"

    def test_http_error_without_body(self, app):
        def handler(request):
            return httpx.Response(504, text="upstream timeout")

        with app.app_context():
            result = _client(handler).submit_invoice(_payload())

        assert result.retryable is True
        assert result.error == "Gateway returned HTTP 504"

    def test_timeout_is_retryable(self, app):
        def handler(request):
            raise httpx.ReadTimeout("read timed out", request=request)

        with app.app_context():
            result = _client(handler).submit_invoice(_payload())

        assert result.success is False
        assert result.retryable is True
        assert result.error.startswith("Gateway timeout")

    def test_connection_error_is_retryable(self, app):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        with app.app_context():
            result = _client(handler).submit_invoice(_payload())

        assert result.retryable is True
        assert result.error.startswith("Gateway unreachable")

    def test_non_json_success_not_retryable(self, app):
        def handler(request):
            return httpx.Response(200, text="<html>ok</html>")

        with app.app_context():
            result = _client(handler).submit_invoice(_payload())

        assert result.success is False
        assert result.retryable is False


class TestCheckStatus:
    def test_connected(self, app):
        def handler(request):
            assert request.url.path == "/v1/status"
            return httpx.Response(200, json={"status": "ok", "afip": "up"})

        with app.app_context():
            status = _client(handler).check_status()

        assert status.connected is True
        assert status.detail == {"status": "ok", "afip": "up"}

    def test_unreachable(self, app):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        with app.app_context():
            status = _client(handler).check_status()

        assert status.connected is False
        assert status.error.startswith("Gateway unreachable")

    def test_from_config(self, app):
        client = FiscalGatewayClient.from_config(app.config)
        assert client.base_url == "http://gateway.test/v1"
        assert client.timeout == app.config["FISCAL_GATEWAY_TIMEOUT_SECONDS"]
