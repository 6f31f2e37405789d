"""Operator-tunable settings, grouped by category and stored by the backend.

Reads and writes go through two RPCs; the backend records who changed what.
"""
from typing import Any, List, Optional
from . import baas
from .errors import ActionRejected, RecordNotFound, reported
import logging

logger = logging.getLogger(__name__)

CATEGORIES = ("business_rules", "features", "operations", "notifications", "payments")


def check_value(setting: dict, value: Any):
    """Reject a value that does not match the setting's declared type. `json` takes anything."""
    setting_type = setting.get("setting_type")
    if setting_type == "boolean":
        ok = isinstance(value, bool)
    elif setting_type == "number":
        ok = isinstance(value, (int, float)) and not isinstance(value, bool)
    elif setting_type == "string":
        ok = isinstance(value, str)
    else:
        ok = True
    if not ok:
        raise ActionRejected(f"{setting.get('display_name') or setting['setting_key']} must be a {setting_type}")


async def list_settings(category: str) -> List[dict]:
    if category not in CATEGORIES:
        raise RecordNotFound(f"unknown settings category: {category}")
    with reported("Failed to fetch settings"):
        return await baas.client.rpc("get_settings_by_category", {"category_name": category}) or []


async def update_setting(category: str, key: str, value: Any, admin_id: Optional[str]) -> List[dict]:
    """Write one setting and return the category as it now reads."""
    if not admin_id:
        raise ActionRejected("User not authenticated")
    current = {s["setting_key"]: s for s in await list_settings(category)}
    if key not in current:
        raise RecordNotFound(f"setting not found: {key}")
    check_value(current[key], value)
    with reported("Failed to update setting"):
        await baas.client.rpc("update_admin_setting", {
            "p_category": category,
            "p_setting_key": key,
            "p_setting_value": value,
            "p_updated_by": admin_id,
        })
    logger.info("setting_updated: category=%s key=%s admin=%s", category, key, admin_id)
    return await list_settings(category)
