import base64
import json
from urllib.parse import parse_qs, quote, urlparse
from unittest.mock import patch

import pytest

from app.models import AdPromotion, PaymentTransaction
from app.payments.gateways.esewa import EsewaGateway
from helpers import auth_headers, fake_response

pytestmark = pytest.mark.payment

ESEWA_GET = "app.payments.gateways.esewa.requests.get"
CALLBACK_FIELDS = "transaction_code,status,total_amount,transaction_uuid,product_code,signed_field_names"


def _initiate(client, user):
    resp = client.post("/api/payments/initiate", json={
        "gateway": "esewa",
        "amount": 500,
        "paymentType": "ad_promotion",
        "relatedId": 42,
        "metadata": {"promotionType": "urgent", "durationDays": 7},
    }, headers=auth_headers(user))
    assert resp.status_code == 200
    return resp.get_json()["data"]


def _callback_blob(gateway, order_id, *, status="COMPLETE", total="500.0", forge=False):
    data = {
        "transaction_code": "000AWEO",
        "status": status,
        "total_amount": total,
        "transaction_uuid": order_id,
        "product_code": "EPAYTEST",
        "signed_field_names": CALLBACK_FIELDS,
    }
    message = ",".join(f"{f}={data[f]}" for f in CALLBACK_FIELDS.split(","))
    data["signature"] = "Zm9yZ2VkLXNpZ25hdHVyZQ==" if forge else gateway._sign_message(message)
    return base64.b64encode(json.dumps(data).encode("utf-8")).decode("ascii")


def test_initiate_returns_redirect_page_url(client, customer, ad):
    data = _initiate(client, customer)

    url = urlparse(data["paymentUrl"])
    assert f"{url.scheme}://{url.netloc}{url.path}" == "http://api.test/api/payments/esewa/redirect"
    query = parse_qs(url.query)
    assert query["total_amount"] == ["500"]
    assert query["transaction_uuid"] == [data["transactionId"]]
    assert query["formUrl"] == ["https://rc-epay.esewa.com.np/api/epay/main/v2/form"]


def test_redirect_page_renders_auto_submitting_form(client, customer, ad):
    data = _initiate(client, customer)
    url = urlparse(data["paymentUrl"])

    resp = client.get(f"{url.path}?{url.query}")

    assert resp.status_code == 200
    html = resp.get_data(as_text=True)
    assert 'action="https://rc-epay.esewa.com.np/api/epay/main/v2/form"' in html
    assert f'name="transaction_uuid" value="{data["transactionId"]}"' in html
    assert 'name="signature"' in html
    assert 'name="formUrl"' not in html


def test_redirect_page_refuses_foreign_form_url(client):
    resp = client.get("/api/payments/esewa/redirect", query_string={
        "formUrl": "https://evil.example/collect",
        "transaction_uuid": "TB_AD_1_abcdef",
        "signature": "x",
    })
    assert resp.status_code == 400
    assert resp.get_json()["success"] is False


def test_signed_complete_callback_is_trusted_without_status_api(app, client, customer, ad):
    order_id = _initiate(client, customer)["transactionId"]
    blob = _callback_blob(EsewaGateway.from_config(app.config), order_id)

    with patch(ESEWA_GET) as status_api:
        resp = client.get("/api/payments/callback", query_string={
            "gateway": "esewa", "orderId": order_id, "paymentType": "ad_promotion", "relatedId": "42", "data": blob,
        })

    status_api.assert_not_called()
    assert "/en/payment/success" in resp.headers["Location"]
    tx = PaymentTransaction.query.filter_by(order_id=order_id).one()
    assert tx.status == "verified"
    assert tx.reference_id == "000AWEO"
    assert ad.is_urgent is True


def test_data_appended_to_existing_query_is_recovered(app, client, customer, ad):
    order_id = _initiate(client, customer)["transactionId"]
    blob = _callback_blob(EsewaGateway.from_config(app.config), order_id)

    resp = client.get(
        f"/api/payments/callback?gateway=esewa&orderId={order_id}&paymentType=ad_promotion&relatedId=42?data={quote(blob)}"
    )

    assert "/en/payment/success" in resp.headers["Location"]
    assert "relatedId=42" in resp.headers["Location"]


def test_forged_callback_falls_back_to_status_api(app, client, customer, ad):
    order_id = _initiate(client, customer)["transactionId"]
    blob = _callback_blob(EsewaGateway.from_config(app.config), order_id, forge=True)

    with patch(ESEWA_GET, return_value=fake_response(200, {
        "product_code": "EPAYTEST",
        "transaction_uuid": order_id,
        "total_amount": 500.0,
        "status": "NOT_FOUND",
        "ref_id": None,
    })) as status_api:
        resp = client.get("/api/payments/callback", query_string={
            "gateway": "esewa", "orderId": order_id, "data": blob,
        })

    status_api.assert_called_once()
    assert status_api.call_args.kwargs["params"]["transaction_uuid"] == order_id
    assert "/en/payment/failure" in resp.headers["Location"]
    assert PaymentTransaction.query.filter_by(order_id=order_id).one().status == "failed"
    assert AdPromotion.query.count() == 0


def test_status_api_completion_verifies(app, client, customer, ad):
    order_id = _initiate(client, customer)["transactionId"]

    with patch(ESEWA_GET, return_value=fake_response(200, {
        "product_code": "EPAYTEST",
        "transaction_uuid": order_id,
        "total_amount": "500.0",
        "status": "COMPLETE",
        "ref_id": "0007G36",
    })):
        resp = client.post("/api/payments/verify", json={"transactionId": order_id}, headers=auth_headers(customer))

    assert resp.get_json()["success"] is True
    tx = PaymentTransaction.query.filter_by(order_id=order_id).one()
    assert tx.reference_id == "0007G36"
    assert AdPromotion.query.count() == 1
