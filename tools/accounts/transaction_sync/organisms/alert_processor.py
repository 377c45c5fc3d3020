"""
Alert Processor Organism - React to reconciled transactions

Subscribes to ``transaction_created`` events on the EventBus and sends a
large-transaction alert through a Notifier when an expense exceeds the
configured threshold. Also home of the Notifier contract and the notification
texts used by the background sync orchestrator.

Part of Layer 3: Organisms (complete features)
"""

import logging
from decimal import Decimal
from typing import Any, Dict, List, Optional, Protocol, Union

from common.models import Platform
from tools.accounts.transaction_sync.atoms.event_bus import EventBus, TRANSACTION_CREATED

logger = logging.getLogger(__name__)

DEFAULT_LARGE_TRANSACTION_THRESHOLD = 1000


class Notifier(Protocol):
    """Delivery channel for user notifications (push, email, ...)."""

    async def send(self, user_id: str, title: str, message: str,
                   data: Optional[Dict[str, Any]] = None) -> bool: ...


class LoggingNotifier:
    """Notifier that records notifications in the log and in memory"""

    def __init__(self):
        self.sent: List[Dict[str, Any]] = []

    async def send(self, user_id: str, title: str, message: str,
                   data: Optional[Dict[str, Any]] = None) -> bool:
        logger.info(f"Notification for {user_id}: {title} - {message}")
        self.sent.append({'user_id': user_id, 'title': title, 'message': message,
                          'data': data or {}})
        return True


def reauth_notification(account_name: str, platform: Union[Platform, str]) -> Dict[str, str]:
    """Title/message asking the user to re-link an account"""
    if Platform(platform) == Platform.BANK:
        return {
            'title': 'Bank Account Re-authentication Required',
            'message': f'Your bank account "{account_name}" needs to be re-linked '
                       f'for automatic transaction syncing.',
        }
    return {
        'title': 'MTN MoMo Re-authentication Required',
        'message': f'Your MTN MoMo account "{account_name}" needs to be re-linked '
                   f'for automatic transaction syncing.',
    }


def sync_completion_notification(account_name: str, platform: Union[Platform, str],
                                 count: int) -> Dict[str, str]:
    """Title/message announcing newly synced transactions"""
    if Platform(platform) == Platform.BANK:
        title, prefix = 'Bank Transactions Synced', 'Bank'
    else:
        title, prefix = 'MoMo Transactions Synced', 'MoMo'
    plural = 's' if count > 1 else ''
    return {
        'title': title,
        'message': f'{prefix}: {count} new transaction{plural} synced from {account_name}.',
    }


class AlertProcessor:
    """
    Large-expense alerts driven by reconciliation events.

    Example:
        >>> processor = AlertProcessor(LoggingNotifier(), threshold=1000)
        >>> processor.subscribe(event_bus)
    """

    def __init__(self, notifier: Notifier,
                 threshold: Union[int, Decimal] = DEFAULT_LARGE_TRANSACTION_THRESHOLD):
        self.notifier = notifier
        self.threshold = Decimal(str(threshold))
        self.alerts_sent = 0

    def subscribe(self, event_bus: EventBus) -> None:
        event_bus.subscribe(TRANSACTION_CREATED, self.on_transaction_created)

    async def on_transaction_created(self, payload: Dict[str, Any]) -> None:
        if payload.get('type') != 'expense':
            return

        amount = Decimal(str(payload.get('amount', 0)))
        if amount <= self.threshold:
            return

        merchant = payload.get('merchant_name') or payload.get('description') or 'a merchant'
        delivered = await self.notifier.send(
            payload['user_id'],
            'Large Transaction Alert',
            f'A transaction of {amount:,.2f} at {merchant} was recorded on your account.',
            {
                'type': 'large_transaction',
                'transaction_id': payload.get('transaction_id'),
                'account_id': payload.get('account_id'),
            },
        )
        if delivered:
            self.alerts_sent += 1
        else:
            logger.warning(f"Large transaction alert not delivered for {payload.get('transaction_id')}")
