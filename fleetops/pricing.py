"""Pricing rules, rental packages, zone pricing and the one fare function.

`estimate_fare` is used both by the what-if calculator and by booking
creation, so the estimate an operator sees is the fare a booking gets.
"""
from math import radians, cos, sin, asin, sqrt, isfinite
from datetime import datetime, timezone
from typing import Any, Dict, Mapping, Optional, Tuple
from sqlalchemy import select, insert, update, and_
from . import models
from .db import as_dict
from .errors import ActionRejected, RecordNotFound, reported
import logging

logger = logging.getLogger(__name__)


def haversine_km(a: Tuple[float, float], b: Tuple[float, float]) -> float:
    lat1, lon1 = a
    lat2, lon2 = b
    # convert decimal degrees to radians
    lon1, lat1, lon2, lat2 = map(radians, [lon1, lat1, lon2, lat2])
    dlon = lon2 - lon1
    dlat = lat2 - lat1
    a = sin(dlat / 2) ** 2 + cos(lat1) * cos(lat2) * sin(dlon / 2) ** 2
    c = 2 * asin(sqrt(a))
    return 6371 * c


def parse_number(value: Any) -> Optional[float]:
    """Parse operator input ("10", 10, " 2.5 ") into a finite float, else None."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, str):
        value = value.strip()
        if not value:
            return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if isfinite(number) else None


def rule_fare(rule: Mapping[str, Any], distance_km: float, duration_min: Optional[float] = None) -> float:
    fare = rule["base_fare"] + distance_km * rule["per_km_rate"]
    # per-minute charge only when the rule has a rate and a duration was given
    if rule.get("per_minute_rate") and duration_min:
        fare += duration_min * rule["per_minute_rate"]
    fare *= rule.get("surge_multiplier") or 1.0
    return round(max(fare, rule["minimum_fare"]), 2)


def rental_fare(package: Mapping[str, Any], distance_km: float) -> float:
    extra_km = max(0.0, distance_km - package["included_kilometers"])
    return round(package["base_price"] + extra_km * package["extra_km_rate"], 2)


def zone_fare(zone: Mapping[str, Any], distance_km: float) -> float:
    if zone.get("fixed_price") is not None:
        return round(zone["fixed_price"], 2)
    return round((zone.get("base_price") or 0.0) + distance_km * (zone.get("per_km_rate") or 0.0), 2)


async def get_service_type(conn, name: str) -> Optional[dict]:
    sel = select(models.service_types).where(
        and_(models.service_types.c.name == name, models.service_types.c.is_active.is_(True))
    )
    return as_dict((await conn.execute(sel)).first())


async def estimate_fare(conn, service_type: str, vehicle_type: str, distance_km: float,
                        duration_min: Optional[float] = None, rental_package_id: Optional[str] = None,
                        zone_pricing_id: Optional[str] = None) -> Dict[str, Any]:
    """Price a trip from the active pricing tables.

    Car rentals use a rental package, an explicit zone uses zone pricing,
    every other service uses the pricing rule for (service, vehicle type).
    """
    if not service_type or not vehicle_type:
        raise ActionRejected("Please select service type and vehicle type")
    if distance_km < 0 or (duration_min is not None and duration_min < 0):
        raise ActionRejected("Distance and duration must not be negative")

    result = {
        "service_type": service_type,
        "vehicle_type": vehicle_type,
        "distance_km": distance_km,
        "duration_minutes": duration_min,
    }
    with reported("Failed to load pricing"):
        if service_type == models.SERVICE_CAR_RENTAL:
            conds = [models.rental_packages.c.vehicle_type == vehicle_type,
                     models.rental_packages.c.is_active.is_(True)]
            if rental_package_id:
                conds.append(models.rental_packages.c.id == rental_package_id)
            sel = select(models.rental_packages).where(and_(*conds)).order_by(models.rental_packages.c.base_price)
            package = as_dict((await conn.execute(sel)).first())
            if not package:
                raise ActionRejected(f"No active rental package for {vehicle_type}")
            result.update(fare=rental_fare(package, distance_km), basis="rental_package", source_id=package["id"])
            return result

        st = await get_service_type(conn, service_type)
        if not st:
            raise ActionRejected(f"Unknown or inactive service type: {service_type}")

        if zone_pricing_id:
            sel = select(models.zone_pricing).where(and_(
                models.zone_pricing.c.id == zone_pricing_id,
                models.zone_pricing.c.service_type_id == st["id"],
                models.zone_pricing.c.vehicle_type == vehicle_type,
                models.zone_pricing.c.is_active.is_(True),
            ))
            zone = as_dict((await conn.execute(sel)).first())
            if not zone:
                raise ActionRejected("Zone pricing does not apply to this service and vehicle type")
            result.update(fare=zone_fare(zone, distance_km), basis="zone_pricing", source_id=zone["id"])
            return result

        sel = select(models.pricing_rules).where(and_(
            models.pricing_rules.c.service_type_id == st["id"],
            models.pricing_rules.c.vehicle_type == vehicle_type,
            models.pricing_rules.c.is_active.is_(True),
        ))
        rule = as_dict((await conn.execute(sel)).first())
    if not rule:
        raise ActionRejected(f"No active pricing rule for {service_type} / {vehicle_type}")
    result.update(fare=rule_fare(rule, distance_km, duration_min), basis="pricing_rule", source_id=rule["id"])
    logger.debug("estimate_fare: service=%s vehicle=%s km=%s fare=%s", service_type, vehicle_type, distance_km, result["fare"])
    return result


async def list_pricing(conn, service_name: Optional[str] = None) -> Dict[str, Any]:
    """Everything the pricing page shows, optionally narrowed to one service tab."""
    with reported("Failed to load pricing data"):
        service_rows = (await conn.execute(
            select(models.service_types).where(models.service_types.c.is_active.is_(True)).order_by(models.service_types.c.display_name)
        )).all()
        rules = [as_dict(r) for r in (await conn.execute(
            select(models.pricing_rules).where(models.pricing_rules.c.is_active.is_(True))
        )).all()]
        packages = [as_dict(r) for r in (await conn.execute(
            select(models.rental_packages).where(models.rental_packages.c.is_active.is_(True))
        )).all()]
        zones = [as_dict(r) for r in (await conn.execute(
            select(models.zone_pricing).where(models.zone_pricing.c.is_active.is_(True))
        )).all()]
    services = [as_dict(r) for r in service_rows]

    summaries = []
    for service in services:
        service_rules = [r for r in rules if r["service_type_id"] == service["id"]]
        avg_base = sum(r["base_fare"] for r in service_rules) / len(service_rules) if service_rules else 0.0
        summaries.append({"service": service["name"], "rules": len(service_rules), "average_base_fare": round(avg_base, 2)})

    if service_name:
        active = next((s for s in services if s["name"] == service_name), None)
        if not active:
            raise RecordNotFound(f"service type {service_name} not found")
        rules = [r for r in rules if r["service_type_id"] == active["id"]]
        zones = [z for z in zones if z["service_type_id"] == active["id"]]
        if service_name != models.SERVICE_CAR_RENTAL:
            packages = []

    return {
        "service_types": services,
        "pricing_rules": rules,
        "rental_packages": packages,
        "zone_pricing": zones,
        "summaries": summaries,
    }


async def get_rule(conn, rule_id: str) -> dict:
    with reported("Failed to load pricing rule"):
        row = (await conn.execute(select(models.pricing_rules).where(models.pricing_rules.c.id == rule_id))).first()
    if not row:
        raise RecordNotFound("pricing rule not found")
    return as_dict(row)


async def create_rule(conn, values: Dict[str, Any]) -> dict:
    now = datetime.now(timezone.utc)
    with reported("Failed to create pricing rule"):
        res = await conn.execute(
            insert(models.pricing_rules).returning(models.pricing_rules.c.id).values(
                **values, is_active=True, created_at=now, updated_at=now
            )
        )
        rule_id = res.scalar_one()
        await conn.commit()
    logger.info("pricing_rule_created: id=%s service_type=%s vehicle=%s", rule_id, values.get("service_type_id"), values.get("vehicle_type"))
    return await get_rule(conn, rule_id)


async def update_rule(conn, rule_id: str, values: Dict[str, Any]) -> dict:
    await get_rule(conn, rule_id)
    with reported("Failed to update pricing rule"):
        await conn.execute(
            update(models.pricing_rules).where(models.pricing_rules.c.id == rule_id).values(
                **values, updated_at=datetime.now(timezone.utc)
            )
        )
        await conn.commit()
    logger.info("pricing_rule_updated: id=%s", rule_id)
    return await get_rule(conn, rule_id)


async def deactivate_rule(conn, rule_id: str) -> dict:
    """Soft delete: the rule stays in the table with is_active=false."""
    await get_rule(conn, rule_id)
    with reported("Failed to delete pricing rule"):
        await conn.execute(
            update(models.pricing_rules).where(models.pricing_rules.c.id == rule_id).values(
                is_active=False, updated_at=datetime.now(timezone.utc)
            )
        )
        await conn.commit()
    logger.info("pricing_rule_deactivated: id=%s", rule_id)
    return await get_rule(conn, rule_id)
