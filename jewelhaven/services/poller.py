# jewelhaven/services/poller.py
# Опрос статуса push-оплаты до успеха, отказа или исчерпания попыток.

import asyncio
import logging
from typing import Awaitable, Callable, Optional

from jewelhaven.core.config import settings
from jewelhaven.core.errors import PaymentGatewayError
from jewelhaven.services.payments import (
    AttemptStatus,
    OutcomeKind,
    PaymentAttempt,
    classify_status,
)

logger = logging.getLogger(__name__)

TIMEOUT_MESSAGE = "Payment confirmation timed out. Please check your M-Pesa messages."

StatusQuery = Callable[[str], Awaitable[dict]]


class ConfirmationPoller:
    """
    Раз в interval секунд спрашивает шлюз о статусе, не более max_attempts раз.

    - успех: попытка succeeded, сохраняем квитанцию, опрос сразу прекращается;
    - отказ (отмена, нет средств, таймаут шлюза): failed с причиной от шлюза;
    - pending или любой сбой запроса: ждём следующий тик;
    - попытки кончились: timed_out.

    Отмена задачи, в которой идёт опрос, останавливает его на ближайшем await.
    """

    def __init__(
        self,
        query: StatusQuery,
        interval: Optional[float] = None,
        max_attempts: Optional[int] = None,
        query_timeout: Optional[float] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.query = query
        self.interval = settings.PAYMENT_POLL_INTERVAL if interval is None else interval
        self.max_attempts = settings.PAYMENT_POLL_MAX_ATTEMPTS if max_attempts is None else max_attempts
        self.query_timeout = settings.GATEWAY_TIMEOUT if query_timeout is None else query_timeout
        self.sleep = sleep

    async def poll(
        self,
        attempt: PaymentAttempt,
        on_attempt: Optional[Callable[[int], None]] = None,
    ) -> PaymentAttempt:
        if not attempt.correlation_id:
            raise ValueError("Payment attempt has no CheckoutRequestID to poll")

        for number in range(1, self.max_attempts + 1):
            await self.sleep(self.interval)
            if on_attempt is not None:
                on_attempt(number)

            try:
                payload = await asyncio.wait_for(self.query(attempt.correlation_id), timeout=self.query_timeout)
            except (PaymentGatewayError, asyncio.TimeoutError) as e:
                logger.warning(f"Status query {number}/{self.max_attempts} for "
                               f"{attempt.correlation_id} failed, will retry: {e}")
                continue
            except Exception as e:
                # сбой подтверждения на нашей стороне (БД, ответ без полей) тоже повторяем
                logger.warning(f"Status query {number}/{self.max_attempts} for "
                               f"{attempt.correlation_id} crashed, will retry: {e!r}", exc_info=True)
                continue

            outcome = classify_status(payload)
            if outcome.kind is OutcomeKind.succeeded:
                attempt.status = AttemptStatus.succeeded
                attempt.receipt_number = outcome.receipt_number
                logger.info(f"Payment {attempt.correlation_id} confirmed on attempt {number}: "
                            f"{outcome.receipt_number}")
                return attempt
            if outcome.kind is OutcomeKind.failed:
                attempt.status = AttemptStatus.failed
                attempt.failure_reason = outcome.reason
                logger.info(f"Payment {attempt.correlation_id} failed on attempt {number}: {outcome.reason}")
                return attempt

        attempt.status = AttemptStatus.timed_out
        attempt.failure_reason = TIMEOUT_MESSAGE
        logger.info(f"Payment {attempt.correlation_id} not confirmed after {self.max_attempts} attempts")
        return attempt
