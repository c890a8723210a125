import threading

from django.test import SimpleTestCase, override_settings

from servicemarket import payments
from servicemarket.exceptions import ExternalServiceError, ExternalServiceTimeout


class CallWithTimeoutTests(SimpleTestCase):
    def test_returns_result(self):
        self.assertEqual(payments.call_with_timeout(lambda x: x * 2, 21, timeout=1), 42)

    def test_hung_call_times_out(self):
        release = threading.Event()
        try:
            with self.assertRaises(ExternalServiceTimeout):
                payments.call_with_timeout(release.wait, 5, timeout=0.05)
        finally:
            release.set()

    def test_failures_become_external_service_errors(self):
        def broken():
            raise ConnectionError('reset by peer')

        with self.assertRaises(ExternalServiceError) as ctx:
            payments.call_with_timeout(broken, timeout=1)
        self.assertIsInstance(ctx.exception.__cause__, ConnectionError)

    @override_settings(PAYMENT_GATEWAY='servicemarket.payments.LedgerOnlyGateway')
    def test_configured_gateway(self):
        gateway = payments.get_gateway()
        self.assertIsInstance(gateway, payments.LedgerOnlyGateway)
        self.assertTrue(gateway.capture(None, 'capture:1').startswith('txn_'))
