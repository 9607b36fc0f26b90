"""Record factories for the inventory domain's test entities."""

import random
import uuid
from datetime import datetime, timedelta, timezone
from typing import Dict, Any, List, Callable, Optional


def _id(prefix: str) -> str:
    return f"test-{prefix}-{uuid.uuid4().hex[:12]}"


def _now() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def create_inventory_item(**overrides: Any) -> Dict[str, Any]:
    now = _now()
    item = {
        "id": _id("item"),
        "sku": f"TEST-SKU-{uuid.uuid4().hex[:6].upper()}",
        "name": "Test Product",
        "description": "Test product description",
        "category_id": "test-category-id",
        "location_id": "test-location-id",
        "price": 100,
        "cost": 50,
        "margin": 50,
        "current_stock": 25,
        "minimum_level": 10,
        "status": "active",
        "tags": ["test", "product"],
        "auto_reorder": False,
        "created_at": now,
        "updated_at": now,
        "created_by": "test-user-id",
        "updated_by": "test-user-id",
    }
    item.update(overrides)
    return item


def create_category(**overrides: Any) -> Dict[str, Any]:
    now = _now()
    category = {
        "id": _id("category"),
        "name": "Test Category",
        "description": "Test category description",
        "level": 0,
        "path": [],
        "is_active": True,
        "sort_order": 1,
        "created_at": now,
        "updated_at": now,
    }
    category.update(overrides)
    return category


def create_location(**overrides: Any) -> Dict[str, Any]:
    location = {
        "id": _id("location"),
        "name": "Test Location",
        "description": "Test location description",
        "item_quantity": 10,
    }
    location.update(overrides)
    return location


def create_user(**overrides: Any) -> Dict[str, Any]:
    suffix = uuid.uuid4().hex[:6]
    user = {
        "id": _id("user"),
        "email": f"test-{suffix}@example.com",
        "name": "Test User",
        "role": "admin",
        "is_active": True,
        "created_at": _now(),
    }
    user.update(overrides)
    return user


def create_transaction(**overrides: Any) -> Dict[str, Any]:
    transaction = {
        "id": _id("transaction"),
        "type": "adjustment",
        "item_id": "test-item-id",
        "quantity": 10,
        "reason": "Test transaction",
        "user_id": "test-user-id",
        "previous_stock": 15,
        "new_stock": 25,
        "timestamp": _now(),
    }
    transaction.update(overrides)
    return transaction


def create_audit_entry(**overrides: Any) -> Dict[str, Any]:
    entry = {
        "id": _id("audit"),
        "table_name": "inventory",
        "record_id": "test-item-id",
        "action": "UPDATE",
        "old_values": {"current_stock": 15},
        "new_values": {"current_stock": 25},
        "user_id": "test-user-id",
        "created_at": _now(),
    }
    entry.update(overrides)
    return entry


def create_bulk(
    factory: Callable[..., Dict[str, Any]],
    count: int,
    overrides: Optional[List[Dict[str, Any]]] = None,
) -> List[Dict[str, Any]]:
    """Build ``count`` records, applying ``overrides[i]`` to the i-th one."""
    overrides = overrides or []
    return [
        factory(**(overrides[index] if index < len(overrides) else {}))
        for index in range(count)
    ]


def create_data_set() -> Dict[str, List[Dict[str, Any]]]:
    """A small, fully related entity graph."""
    users = [create_user(role="admin", name="Admin User"), create_user(role="staff")]
    categories = [
        create_category(name="Electronics"),
        create_category(name="Office Supplies", sort_order=2),
    ]
    locations = [
        create_location(name="Main Warehouse"),
        create_location(name="Retail Floor"),
    ]

    items = []
    for index in range(4):
        items.append(
            create_inventory_item(
                name=f"Product {index + 1}",
                category_id=categories[index % 2]["id"],
                location_id=locations[index % 2]["id"],
                created_by=users[0]["id"],
                updated_by=users[0]["id"],
            )
        )

    transactions = []
    audit_entries = []
    for item in items:
        quantity = random.randint(1, 10)
        transactions.append(
            create_transaction(
                item_id=item["id"],
                user_id=users[1]["id"],
                quantity=quantity,
                previous_stock=item["current_stock"] - quantity,
                new_stock=item["current_stock"],
            )
        )
        audit_entries.append(
            create_audit_entry(record_id=item["id"], user_id=users[1]["id"])
        )

    return {
        "users": users,
        "categories": categories,
        "locations": locations,
        "items": items,
        "transactions": transactions,
        "audit_entries": audit_entries,
    }


def recent_timestamp(minutes_ago: int) -> str:
    moment = datetime.now(timezone.utc) - timedelta(minutes=minutes_ago)
    return moment.strftime("%Y-%m-%dT%H:%M:%SZ")
