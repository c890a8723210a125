"""Boundary to the payment provider.

The core never handles card data; it asks the configured gateway to capture,
release or refund an escrow payment and keeps only the opaque reference the
gateway returns. Every call is bounded by ``EXTERNAL_CALL_TIMEOUT_SECONDS``.
"""
from __future__ import annotations

import logging
import uuid
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from typing import Any, Callable, Optional

from django.conf import settings
from django.utils.module_loading import import_string

from .exceptions import ExternalServiceError, ExternalServiceTimeout

logger = logging.getLogger(__name__)

_executor = ThreadPoolExecutor(max_workers=4, thread_name_prefix='payment-gateway')


class PaymentGateway:
    """Interface a payment provider adapter implements.

    Every call carries an idempotency key that is stable for the operation
    (``refund:<payment id>`` and so on). A call retried after a timeout sends the
    same key, so an adapter can forward it to the processor and avoid moving the
    money twice.
    """

    name = 'gateway'

    def capture(self, payment, idempotency_key: str) -> str:
        """Take the customer's funds into escrow, returning a transaction reference."""
        raise NotImplementedError

    def release(self, payment, idempotency_key: str) -> None:
        raise NotImplementedError

    def refund(self, payment, idempotency_key: str) -> None:
        raise NotImplementedError


def gateway_key(operation: str, payment) -> str:
    return f'{operation}:{payment.pk}'


class LedgerOnlyGateway(PaymentGateway):
    """Records movements in the ledger only; no money leaves the platform."""

    name = 'ledger-only'

    def capture(self, payment, idempotency_key: str) -> str:
        return f'txn_{uuid.uuid4().hex[:12]}'

    def release(self, payment, idempotency_key: str) -> None:
        return None

    def refund(self, payment, idempotency_key: str) -> None:
        return None


def get_gateway() -> PaymentGateway:
    return import_string(settings.PAYMENT_GATEWAY)()


def call_with_timeout(func: Callable[..., Any], *args: Any, timeout: Optional[float] = None) -> Any:
    """Run a collaborator call, translating hangs and failures into domain errors."""
    timeout = settings.EXTERNAL_CALL_TIMEOUT_SECONDS if timeout is None else timeout
    future = _executor.submit(func, *args)
    name = getattr(func, '__qualname__', repr(func))
    try:
        return future.result(timeout=timeout)
    except FutureTimeout as exc:
        future.cancel()
        logger.warning('%s timed out after %ss', name, timeout)
        raise ExternalServiceTimeout() from exc
    except ExternalServiceError:
        raise
    except Exception as exc:
        logger.warning('%s failed: %s', name, exc)
        raise ExternalServiceError() from exc
