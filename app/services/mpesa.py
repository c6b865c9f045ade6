# FILE: app/services/mpesa.py
from __future__ import annotations

import base64
import logging
from datetime import datetime
from decimal import Decimal, ROUND_CEILING
from typing import Any, Dict, Optional

import requests
from sqlalchemy import update
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.errors import BusinessRuleError, NotFoundError, PaymentGatewayError
from app.models.billing import Invoice, InvoiceStatus, MpesaStatus, MpesaTransaction, PaymentMethod
from app.services.billing import add_payment, lock_invoice
from app.services.billing_calc import _d

logger = logging.getLogger(__name__)

RESULT_OK = 0
RESULT_CANCELLED = 1032


# -------------------------------------------------------------------
#  Daraja HTTP client
# -------------------------------------------------------------------
def format_phone(phone: str) -> str:
    """+254712345678 / 0712345678 -> 254712345678"""
    p = (phone or "").strip().replace(" ", "")
    if p.startswith("+"):
        p = p[1:]
    if p.startswith("0"):
        p = "254" + p[1:]
    return p


def daraja_timestamp(now: Optional[datetime] = None) -> str:
    return (now or datetime.now()).strftime("%Y%m%d%H%M%S")


def stk_password(shortcode: str, passkey: str, timestamp: str) -> str:
    raw = f"{shortcode}{passkey}{timestamp}".encode("utf-8")
    return base64.b64encode(raw).decode("ascii")


class DarajaClient:
    """Safaricom Daraja API (OAuth + STK push). One attempt per call, no retries."""

    def __init__(
        self,
        *,
        consumer_key: str,
        consumer_secret: str,
        shortcode: str,
        passkey: str,
        base_url: str,
        callback_url: str,
        timeout: float = 30,
    ):
        self.consumer_key = consumer_key
        self.consumer_secret = consumer_secret
        self.shortcode = shortcode
        self.passkey = passkey
        self.base_url = base_url.rstrip("/")
        self.callback_url = callback_url
        self.timeout = timeout

    @classmethod
    def from_settings(cls) -> "DarajaClient":
        return cls(
            consumer_key=settings.MPESA_CONSUMER_KEY,
            consumer_secret=settings.MPESA_CONSUMER_SECRET,
            shortcode=settings.MPESA_SHORTCODE,
            passkey=settings.MPESA_PASSKEY,
            base_url=settings.MPESA_BASE_URL,
            callback_url=settings.MPESA_CALLBACK_URL,
            timeout=settings.MPESA_TIMEOUT_SECONDS,
        )

    def get_access_token(self) -> str:
        url = f"{self.base_url}/oauth/v1/generate"
        try:
            resp = requests.get(
                url,
                params={"grant_type": "client_credentials"},
                auth=(self.consumer_key, self.consumer_secret),
                timeout=self.timeout,
            )
            resp.raise_for_status()
            token = resp.json().get("access_token")
        except (requests.RequestException, ValueError) as e:
            logger.error("M-Pesa token request failed: %s", e)
            raise PaymentGatewayError("Failed to get M-Pesa access token") from e

        if not token:
            raise PaymentGatewayError("Failed to get M-Pesa access token")
        return token

    def stk_push(
        self,
        *,
        phone_number: str,
        amount: int,
        account_reference: str,
        description: str,
    ) -> Dict[str, Any]:
        token = self.get_access_token()
        ts = daraja_timestamp()
        phone = format_phone(phone_number)

        body = {
            "BusinessShortCode": self.shortcode,
            "Password": stk_password(self.shortcode, self.passkey, ts),
            "Timestamp": ts,
            "TransactionType": "CustomerPayBillOnline",
            "Amount": int(amount),
            "PartyA": phone,
            "PartyB": self.shortcode,
            "PhoneNumber": phone,
            "CallBackURL": self.callback_url,
            "AccountReference": account_reference,
            "TransactionDesc": description,
        }
        headers = {
            "Authorization": f"Bearer {token}",
            "Content-Type": "application/json",
        }

        try:
            logger.info("STK push %s amount=%s ref=%s", phone, amount, account_reference)
            resp = requests.post(
                f"{self.base_url}/mpesa/stkpush/v1/processrequest",
                json=body,
                headers=headers,
                timeout=self.timeout,
            )
            resp.raise_for_status()
            data = resp.json()
        except (requests.RequestException, ValueError) as e:
            logger.error("STK push failed: %s", e)
            raise PaymentGatewayError("Failed to initiate M-Pesa payment") from e

        if not data.get("CheckoutRequestID"):
            logger.error("STK push rejected: %s", str(data)[:500])
            raise PaymentGatewayError(data.get("errorMessage") or "Failed to initiate M-Pesa payment")
        return data


# -------------------------------------------------------------------
#  Transactions
# -------------------------------------------------------------------
def _whole_shillings(amount: Any) -> Decimal:
    return _d(amount).quantize(Decimal("1"), rounding=ROUND_CEILING)


def initiate_stk_push(
    db: Session,
    client: DarajaClient,
    *,
    invoice_id: int,
    phone_number: str,
    amount: Any,
    account_reference: Optional[str] = None,
    description: Optional[str] = None,
) -> MpesaTransaction:
    inv = db.get(Invoice, invoice_id)
    if not inv:
        raise NotFoundError("Invoice not found")
    if inv.status == InvoiceStatus.PAID.value:
        raise BusinessRuleError("Invoice is already paid")

    amt = _whole_shillings(amount)
    if amt <= 0:
        raise BusinessRuleError("Amount must be greater than zero")

    ref = (account_reference or inv.invoice_number)[:12]
    desc = description or f"Payment for {inv.invoice_number}"
    phone = format_phone(phone_number)

    data = client.stk_push(
        phone_number=phone,
        amount=int(amt),
        account_reference=ref,
        description=desc,
    )

    txn = MpesaTransaction(
        transaction_type="stk_push",
        merchant_request_id=data.get("MerchantRequestID"),
        checkout_request_id=data["CheckoutRequestID"],
        phone_number=phone,
        amount=amt,
        account_reference=ref,
        transaction_desc=desc,
        invoice_id=inv.id,
        status=MpesaStatus.PENDING.value,
    )
    try:
        db.add(txn)
        db.commit()
    except Exception:
        db.rollback()
        raise

    db.refresh(txn)
    logger.info("STK push pending checkout=%s invoice=%s", txn.checkout_request_id, inv.invoice_number)
    return txn


def parse_callback(payload: Any) -> Dict[str, Any]:
    """Pull the fields we need out of Body.stkCallback."""
    try:
        cb = payload["Body"]["stkCallback"]
        checkout_id = str(cb["CheckoutRequestID"])
        result_code = int(cb["ResultCode"])
    except (KeyError, TypeError, ValueError) as e:
        raise BusinessRuleError("Malformed M-Pesa callback payload") from e

    if result_code == RESULT_OK:
        status = MpesaStatus.SUCCESS.value
    elif result_code == RESULT_CANCELLED:
        status = MpesaStatus.CANCELLED.value
    else:
        status = MpesaStatus.FAILED.value

    receipt = None
    transaction_id = None
    if status == MpesaStatus.SUCCESS.value:
        items = (cb.get("CallbackMetadata") or {}).get("Item") or []
        for it in items:
            if not isinstance(it, dict):
                continue
            if it.get("Name") == "MpesaReceiptNumber":
                receipt = it.get("Value")
            elif it.get("Name") == "TransactionId":
                transaction_id = it.get("Value")

    return {
        "merchant_request_id": cb.get("MerchantRequestID"),
        "checkout_request_id": checkout_id,
        "result_code": result_code,
        "result_desc": cb.get("ResultDesc"),
        "status": status,
        "receipt_number": str(receipt) if receipt is not None else None,
        "transaction_id": str(transaction_id) if transaction_id is not None else None,
    }


def handle_callback(db: Session, payload: Any) -> Dict[str, Any]:
    """
    Move a pending transaction to its terminal status exactly once.
    Duplicate deliveries and unknown ids change nothing.
    """
    cb = parse_callback(payload)
    cid = cb["checkout_request_id"]

    try:
        res = db.execute(
            update(MpesaTransaction)
            .where(
                MpesaTransaction.checkout_request_id == cid,
                MpesaTransaction.status == MpesaStatus.PENDING.value,
            )
            .values(
                status=cb["status"],
                result_code=str(cb["result_code"]),
                result_desc=cb["result_desc"],
                receipt_number=cb["receipt_number"],
                transaction_id=cb["transaction_id"],
                updated_at=datetime.utcnow(),
            )
        )
        if res.rowcount == 0:
            db.rollback()
            logger.info("M-Pesa callback ignored (unknown or already processed) checkout=%s", cid)
            return {"checkout_request_id": cid, "status": cb["status"], "applied": False}

        payment_id = None
        if cb["status"] == MpesaStatus.SUCCESS.value:
            txn = (db.query(MpesaTransaction)
                   .populate_existing()
                   .filter(MpesaTransaction.checkout_request_id == cid)
                   .one())
            if txn.invoice_id:
                inv = lock_invoice(db, txn.invoice_id)
                pay = add_payment(
                    db,
                    inv,
                    amount=txn.amount,
                    method=PaymentMethod.MPESA.value,
                    payment_reference=cb["receipt_number"],
                    mpesa_receipt=cb["receipt_number"],
                    mpesa_transaction_id=cb["transaction_id"],
                    notes=f"M-Pesa STK push {cid}",
                    received_by=None,
                )
                payment_id = pay.id
            else:
                logger.warning("M-Pesa success for checkout=%s has no invoice", cid)

        db.commit()
    except Exception:
        db.rollback()
        raise

    logger.info("M-Pesa callback checkout=%s -> %s", cid, cb["status"])
    return {
        "checkout_request_id": cid,
        "status": cb["status"],
        "applied": True,
        "payment_id": payment_id,
    }


def get_transaction_status(db: Session, checkout_request_id: str) -> MpesaTransaction:
    txn = (db.query(MpesaTransaction)
           .filter(MpesaTransaction.checkout_request_id == checkout_request_id)
           .first())
    if not txn:
        raise NotFoundError("Transaction not found")
    return txn
