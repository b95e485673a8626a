import logging
import uuid

logger = logging.getLogger(__name__)

# Idempotency key -> previous result, so a retried refund is not paid twice
_processed_refunds = {}


def create_payment(order_id, amount):
    # Mock implementation: every charge succeeds
    payment_id = f'pay_{uuid.uuid4().hex[:24]}'
    logger.info(
        f"Payment (Mock): order={order_id} amount={amount} id={payment_id}")
    return {
        'success': True,
        'payment_id': payment_id,
        'amount': float(amount),
    }


def create_refund(payment_id, amount, idempotency_key,
                  reason='requested_by_customer'):
    # Mock implementation: succeeds unless the payment id is missing
    if idempotency_key in _processed_refunds:
        logger.info(f"Refund (Mock): replaying {idempotency_key}")
        return _processed_refunds[idempotency_key]

    if not payment_id:
        return {'success': False, 'error': 'Missing payment reference'}

    result = {
        'success': True,
        'refund_id': f're_{uuid.uuid4().hex[:24]}',
        'amount': float(amount),
    }
    _processed_refunds[idempotency_key] = result
    logger.info(
        f"Refund (Mock): payment={payment_id} amount={amount} "
        f"reason={reason} key={idempotency_key}")
    return result


def reset():
    _processed_refunds.clear()
