"""
Webhook system for sending inventory event notifications.

Allows external systems (ERP, dashboards) to subscribe to stock and
transaction events.
"""
import asyncio
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional
import httpx

from . import config

logger = logging.getLogger(__name__)

TRANSACTION_CREATED = "transaction.created"
TRANSACTION_STATUS_CHANGED = "transaction.status_changed"
ITEM_STOCK_CHANGED = "item.stock_changed"
ITEM_LOW_STOCK = "item.low_stock"


async def send_webhook(event_type: str, data: Dict[str, Any], urls: Optional[List[str]] = None) -> None:
    """
    Send webhook notifications to all registered URLs.

    Args:
        event_type: Type of event (e.g., "transaction.created", "item.low_stock")
        data: Event data payload
        urls: Override for the configured WEBHOOK_URLS
    """
    targets = config.WEBHOOK_URLS if urls is None else urls
    if not targets:
        return

    payload = {
        "event": event_type,
        "data": data,
        "timestamp": datetime.utcnow().isoformat() + "Z",
    }

    async with httpx.AsyncClient(timeout=5.0) as client:
        tasks = [send_single_webhook(client, url, payload) for url in targets]
        # Send all webhooks concurrently
        await asyncio.gather(*tasks)


async def send_single_webhook(client: httpx.AsyncClient, url: str, payload: Dict[str, Any]) -> bool:
    """
    Send a webhook to a single URL.

    Args:
        client: HTTP client
        url: Webhook URL
        payload: Event payload

    Returns:
        True if the receiver accepted the event
    """
    try:
        response = await client.post(url, json=payload)
    except httpx.HTTPError as e:
        logger.warning(f"Webhook error for {url}: {e}")
        return False

    if response.status_code >= 400:
        logger.warning(f"Webhook failed for {url}: HTTP {response.status_code}")
        return False
    return True


def transaction_payload(transaction) -> Dict[str, Any]:
    return {
        "transaction_id": transaction.id,
        "transaction_number": transaction.transaction_number,
        "transaction_type": transaction.transaction_type,
        "status": transaction.status,
        "inventory_item_id": transaction.inventory_item_id,
        "quantity": transaction.quantity,
        "quantity_change": transaction.quantity_change,
    }


async def notify_transaction_created(transaction_data: Dict[str, Any]) -> None:
    await send_webhook(TRANSACTION_CREATED, transaction_data)


async def notify_transaction_status_changed(transaction_id: str, old_status: str, new_status: str) -> None:
    """
    Notify that a transaction moved through its workflow.

    Args:
        transaction_id: Transaction ID
        old_status: Previous status
        new_status: New status
    """
    data = {
        "transaction_id": transaction_id,
        "old_status": old_status,
        "new_status": new_status,
    }
    await send_webhook(TRANSACTION_STATUS_CHANGED, data)


def stock_payload(item) -> Dict[str, Any]:
    return {
        "item_id": item.id,
        "part_number": item.part_number,
        "current_stock": item.current_stock,
        "minimum_stock": item.minimum_stock,
        "is_low_stock": item.is_low_stock,
    }


async def notify_stock_changed(item_data: Dict[str, Any]) -> None:
    """
    Notify that an item's stock changed, plus a low stock event when it fell to its minimum.

    Args:
        item_data: Payload built with stock_payload() while the session was open
    """
    await send_webhook(ITEM_STOCK_CHANGED, item_data)
    if item_data.get("is_low_stock"):
        await send_webhook(ITEM_LOW_STOCK, item_data)
