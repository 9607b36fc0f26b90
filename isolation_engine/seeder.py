"""Seeding of related inventory entity graphs for scenario setup."""

import logging
from typing import Dict, Any, List, Optional, Callable

from . import factories

logger = logging.getLogger(__name__)

USERS = "users"
CATEGORIES = "categories"
LOCATIONS = "locations"
INVENTORY = "inventory"
TRANSACTIONS = "transactions"
AUDIT_LOGS = "audit_logs"


class Seeder:
    """
    Builds baseline data through bulk ``insert`` calls.

    The target is anything exposing ``insert(table, rows)`` and
    ``truncate(table)``: a TableStore for untracked setup, or an open
    TransactionContext so the seeded rows are undone on rollback.
    """

    def __init__(self, target):
        """
        Initialize the seeder with an insert target.

        Args:
            target: TableStore or TransactionContext instance
        """
        self.target = target
        self.seeded_data: Dict[str, List[Dict[str, Any]]] = {}

    def _seed(self, table: str, rows: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        inserted = self.target.insert(table, rows)
        self.seeded_data.setdefault(table, []).extend(inserted)
        logger.info("Seeded %d record(s) into %s", len(inserted), table)
        return inserted

    def seed_inventory_items(
        self, count: int = 5, overrides: Optional[List[Dict[str, Any]]] = None
    ) -> List[Dict[str, Any]]:
        return self._seed(
            INVENTORY, factories.create_bulk(factories.create_inventory_item, count, overrides)
        )

    def seed_categories(
        self, count: int = 3, overrides: Optional[List[Dict[str, Any]]] = None
    ) -> List[Dict[str, Any]]:
        return self._seed(
            CATEGORIES, factories.create_bulk(factories.create_category, count, overrides)
        )

    def seed_locations(
        self, count: int = 3, overrides: Optional[List[Dict[str, Any]]] = None
    ) -> List[Dict[str, Any]]:
        return self._seed(
            LOCATIONS, factories.create_bulk(factories.create_location, count, overrides)
        )

    def seed_users(
        self, count: int = 3, overrides: Optional[List[Dict[str, Any]]] = None
    ) -> List[Dict[str, Any]]:
        return self._seed(
            USERS, factories.create_bulk(factories.create_user, count, overrides)
        )

    def seed_transactions(
        self, count: int = 5, overrides: Optional[List[Dict[str, Any]]] = None
    ) -> List[Dict[str, Any]]:
        return self._seed(
            TRANSACTIONS,
            factories.create_bulk(factories.create_transaction, count, overrides),
        )

    def seed_audit_entries(
        self, count: int = 5, overrides: Optional[List[Dict[str, Any]]] = None
    ) -> List[Dict[str, Any]]:
        return self._seed(
            AUDIT_LOGS,
            factories.create_bulk(factories.create_audit_entry, count, overrides),
        )

    def seed_minimal_dataset(self) -> Dict[str, Dict[str, Any]]:
        """One user, category, location and an item referencing all three."""
        user = factories.create_user(role="admin")
        category = factories.create_category(name="Test Category")
        location = factories.create_location(name="Test Location")
        item = factories.create_inventory_item(
            category_id=category["id"],
            location_id=location["id"],
            created_by=user["id"],
            updated_by=user["id"],
        )

        self._seed(USERS, [user])
        self._seed(CATEGORIES, [category])
        self._seed(LOCATIONS, [location])
        self._seed(INVENTORY, [item])
        return {"user": user, "category": category, "location": location, "item": item}

    def seed_complete_dataset(self) -> Dict[str, List[Dict[str, Any]]]:
        """Every entity type, with foreign keys pointing at each other."""
        dataset = factories.create_data_set()

        self._seed(USERS, dataset["users"])
        self._seed(CATEGORIES, dataset["categories"])
        self._seed(LOCATIONS, dataset["locations"])
        self._seed(INVENTORY, dataset["items"])
        self._seed(TRANSACTIONS, dataset["transactions"])
        self._seed(AUDIT_LOGS, dataset["audit_entries"])
        return dataset

    def seed_low_stock_items(self, count: int = 3) -> List[Dict[str, Any]]:
        """Active items whose stock sits below their minimum level."""
        overrides = [
            {
                "name": f"Low Stock Item {index + 1}",
                "current_stock": 5,
                "minimum_level": 10,
                "status": "active",
            }
            for index in range(count)
        ]
        return self.seed_inventory_items(count, overrides)

    def seed_inactive_items(self, count: int = 2) -> List[Dict[str, Any]]:
        overrides = [
            {"name": f"Inactive Item {index + 1}", "status": "inactive"}
            for index in range(count)
        ]
        return self.seed_inventory_items(count, overrides)

    def seed_recent_transactions(self, count: int = 10) -> List[Dict[str, Any]]:
        """Transactions spread over the last ``count`` hours, newest first."""
        overrides = [
            {"timestamp": factories.recent_timestamp(minutes_ago=index * 60)}
            for index in range(count)
        ]
        return self.seed_transactions(count, overrides)

    def get_seeded_data(self, table: str) -> List[Dict[str, Any]]:
        return list(self.seeded_data.get(table, []))

    def get_all_seeded_data(self) -> Dict[str, List[Dict[str, Any]]]:
        return {table: list(rows) for table, rows in self.seeded_data.items()}

    def clear_all_tables(self) -> None:
        """Truncate every table this seeder populated."""
        for table in list(self.seeded_data):
            self.target.truncate(table)
        self.seeded_data.clear()
        logger.info("Cleared all seeded tables")


def _inventory_management(seeder: Seeder) -> Dict[str, List[Dict[str, Any]]]:
    seeder.seed_users(2)
    seeder.seed_categories(3)
    seeder.seed_locations(2)
    seeder.seed_inventory_items(10)
    seeder.seed_low_stock_items(3)
    seeder.seed_inactive_items(2)
    return seeder.get_all_seeded_data()


def _audit_testing(seeder: Seeder) -> Dict[str, Any]:
    minimal = seeder.seed_minimal_dataset()
    seeder.seed_audit_entries(15)
    seeder.seed_transactions(10)
    return dict(minimal, audit_entries=seeder.get_seeded_data(AUDIT_LOGS))


SEEDING_SCENARIOS: Dict[str, Callable[[Seeder], Any]] = {
    "minimal": lambda seeder: seeder.seed_minimal_dataset(),
    "complete": lambda seeder: seeder.seed_complete_dataset(),
    "low_stock": lambda seeder: seeder.seed_low_stock_items(5),
    "inactive": lambda seeder: seeder.seed_inactive_items(3),
    "recent_activity": lambda seeder: seeder.seed_recent_transactions(10),
    "inventory_management": _inventory_management,
    "audit_testing": _audit_testing,
}


def seed_scenario(target, name: str) -> Any:
    """Run a named seeding scenario against ``target``."""
    try:
        scenario = SEEDING_SCENARIOS[name]
    except KeyError:
        raise ValueError(f"Unknown seeding scenario: {name}") from None
    return scenario(Seeder(target))
