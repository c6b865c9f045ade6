# FILE: app/core/errors.py
from __future__ import annotations


class ClinicError(RuntimeError):
    """Base for domain errors raised by services and mapped to HTTP by the API layer."""

    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class NotFoundError(ClinicError):
    status_code = 404


class ConflictError(ClinicError):
    status_code = 409


class BusinessRuleError(ClinicError):
    status_code = 400


class PaymentGatewayError(ClinicError):
    status_code = 502
