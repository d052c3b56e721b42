"""
Store settings: hard-coded defaults with persisted ``setting`` rows merged on top.

Rows are ``{group, key, value}`` with string values. ``resolve_settings`` is a
pure merge; ``load_settings`` is the per-request FastAPI dependency that reads
the rows and hands handlers an explicit ``SiteSettings`` object.
"""

import copy
import logging
from typing import Any, Dict, Iterable, Mapping

from fastapi import Depends

from database import get_db, utcnow
from errors import RuleViolation
from schemas import PaymentMethod, Setting

logger = logging.getLogger(__name__)

DEFAULT_SETTINGS: Dict[str, Dict[str, str]] = {
    "general": {
        "site_name": "PakAutoSe",
        "site_description": "Your trusted source for generators and parts in Pakistan",
        "site_email": "info@pakautose.com",
        "site_phone": "+92 300 1234567",
        "site_address": "Lahore, Pakistan",
        "currency": "PKR",
        "timezone": "Asia/Karachi",
        "maintenance_mode": "false",
    },
    "shipping": {
        "free_shipping_threshold": "50000",
        "default_shipping_cost": "500",
        "express_shipping_cost": "1500",
        "estimated_delivery_days": "3-5",
        "enable_cod": "true",
        "cod_fee": "100",
    },
    "payment": {
        "enable_bank_transfer": "true",
        "bank_name": "",
        "bank_account_title": "",
        "bank_account_number": "",
        "bank_iban": "",
        "enable_easypaisa": "true",
        "easypaisa_number": "",
        "enable_jazzcash": "true",
        "jazzcash_number": "",
    },
    "inventory": {
        "low_stock_threshold": "5",
        "out_of_stock_behavior": "hide",
        "enable_backorders": "false",
    },
    "orders": {
        "order_prefix": "PAK",
        "min_order_amount": "1000",
        "max_order_amount": "10000000",
        "auto_confirm_orders": "false",
        "order_cancellation_time": "24",
        "tax_rate": "0",
    },
    "social": {
        "facebook_url": "",
        "instagram_url": "",
        "twitter_url": "",
        "youtube_url": "",
        "whatsapp_number": "",
    },
}


def resolve_settings(rows: Iterable[Mapping[str, Any]]) -> Dict[str, Dict[str, str]]:
    """Overlay stored rows on the defaults. Rows for unknown groups are ignored."""
    merged = copy.deepcopy(DEFAULT_SETTINGS)
    for row in rows:
        group = row.get("group")
        key = row.get("key")
        if group and key and group in merged:
            merged[group][key] = str(row.get("value", ""))
    return merged


def _as_bool(value: str) -> bool:
    return str(value).strip().lower() in ("true", "1", "yes", "on")


def _as_float(value: str, fallback: float) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return fallback


class SiteSettings:
    """Typed view over the merged settings groups."""

    def __init__(self, values: Dict[str, Dict[str, str]]):
        self.values = values

    def get(self, group: str, key: str) -> str:
        return self.values.get(group, {}).get(key, DEFAULT_SETTINGS.get(group, {}).get(key, ""))

    def number(self, group: str, key: str) -> float:
        fallback = _as_float(DEFAULT_SETTINGS.get(group, {}).get(key, "0"), 0.0)
        return _as_float(self.get(group, key), fallback)

    def flag(self, group: str, key: str) -> bool:
        return _as_bool(self.get(group, key))

    @property
    def free_shipping_threshold(self) -> float:
        return self.number("shipping", "free_shipping_threshold")

    @property
    def default_shipping_cost(self) -> float:
        return self.number("shipping", "default_shipping_cost")

    @property
    def cod_enabled(self) -> bool:
        return self.flag("shipping", "enable_cod")

    @property
    def cod_fee(self) -> float:
        return self.number("shipping", "cod_fee")

    @property
    def tax_rate(self) -> float:
        return self.number("orders", "tax_rate")

    @property
    def min_order_amount(self) -> float:
        return self.number("orders", "min_order_amount")

    @property
    def max_order_amount(self) -> float:
        return self.number("orders", "max_order_amount")

    def shipping_cost_for(self, subtotal: float) -> float:
        if subtotal >= self.free_shipping_threshold:
            return 0.0
        return self.default_shipping_cost

    def payment_method_enabled(self, method: PaymentMethod) -> bool:
        if method == PaymentMethod.CASH_ON_DELIVERY:
            return self.cod_enabled
        if method == PaymentMethod.BANK_TRANSFER:
            return self.flag("payment", "enable_bank_transfer")
        return True


def read_settings(db) -> SiteSettings:
    try:
        rows = list(db["setting"].find({}, {"_id": 0, "group": 1, "key": 1, "value": 1}))
    except Exception:
        logger.exception("Failed to read settings, falling back to defaults")
        rows = []
    return SiteSettings(resolve_settings(rows))


def load_settings(db=Depends(get_db)) -> SiteSettings:
    return read_settings(db)


def save_settings(db, updates: Dict[str, Dict[str, Any]]) -> Dict[str, Dict[str, str]]:
    """Upsert rows for each ``{group: {key: value}}`` pair and return the merged result."""
    unknown = [group for group in updates if group not in DEFAULT_SETTINGS]
    if unknown:
        raise RuleViolation(f"Unknown settings group: {unknown[0]}")

    now = utcnow()
    for group, values in updates.items():
        for key, value in values.items():
            row = Setting(key=key, value=str(value), group=group)
            db["setting"].update_one(
                {"group": row.group, "key": row.key},
                {
                    "$set": {**row.model_dump(), "updated_at": now},
                    "$setOnInsert": {"created_at": now},
                },
                upsert=True,
            )
    return read_settings(db).values
