import unittest
from decimal import Decimal

from finbook.errors import ValidationError
from finbook.recurring_registry import RecurringExpenseRegistry
from finbook.settlement_ledger import SettlementLedger
from finbook.storage import DocumentStore, build_engine


class RecurringExpenseRegistryTests(unittest.TestCase):
    def setUp(self) -> None:
        self.store = DocumentStore(build_engine("sqlite://"))
        self.store.create_all()
        self.registry = RecurringExpenseRegistry(self.store)

    def test_create_returns_active_definition(self) -> None:
        expense_id = self.registry.create("  Alquiler ", "hogar", 5, "user-1", amount="1200")

        definition = self.registry.get("user-1", expense_id)

        self.assertIsNotNone(definition)
        self.assertEqual(definition.description, "Alquiler")
        self.assertEqual(definition.category, "hogar")
        self.assertEqual(definition.due_day, 5)
        self.assertEqual(definition.amount, Decimal("1200"))
        self.assertTrue(definition.active)

    def test_create_rejects_invalid_input(self) -> None:
        invalid_calls = [
            ("   ", "hogar", 5),
            ("Rent", "hogar", 0),
            ("Rent", "hogar", 32),
            ("Rent", "unknown", 5),
        ]
        for description, category, due_day in invalid_calls:
            with self.subTest(description=description, category=category, due_day=due_day):
                with self.assertRaises(ValidationError):
                    self.registry.create(description, category, due_day, "user-1")

        self.assertEqual(self.registry.list_all("user-1"), [])

    def test_list_active_orders_by_due_day_and_hides_inactive(self) -> None:
        late = self.registry.create("Netflix", "entretenimiento", 15, "user-1")
        early = self.registry.create("Rent", "hogar", 1, "user-1")
        paused = self.registry.create("Gym", "salud", 10, "user-1")
        self.registry.create("Other user", "otros", 2, "user-2")
        self.registry.set_active("user-1", paused, False)

        active_ids = [definition.id for definition in self.registry.list_active("user-1")]
        all_ids = [definition.id for definition in self.registry.list_all("user-1")]

        self.assertEqual(active_ids, [early, late])
        self.assertEqual(all_ids, [early, paused, late])

    def test_same_due_day_keeps_insertion_order(self) -> None:
        first = self.registry.create("Internet", "hogar", 10, "user-1")
        second = self.registry.create("Phone", "hogar", 10, "user-1")

        ids = [definition.id for definition in self.registry.list_active("user-1")]

        self.assertEqual(ids, [first, second])

    def test_update_changes_fields_and_permits_duplicates(self) -> None:
        first = self.registry.create("Rent", "hogar", 1, "user-1")
        second = self.registry.create("Power", "hogar", 20, "user-1")

        updated = self.registry.update("user-1", second, description="Rent", due_day=1)

        self.assertEqual(updated.description, "Rent")
        self.assertEqual(updated.due_day, 1)
        descriptions = [d.description for d in self.registry.list_active("user-1")]
        self.assertEqual(descriptions, ["Rent", "Rent"])
        self.assertEqual(self.registry.get("user-1", first).due_day, 1)

    def test_update_rejects_unknown_fields_and_bad_values(self) -> None:
        expense_id = self.registry.create("Rent", "hogar", 1, "user-1")

        with self.assertRaises(ValidationError):
            self.registry.update("user-1", expense_id, user_id="user-2")
        with self.assertRaises(ValidationError):
            self.registry.update("user-1", expense_id, due_day=40)
        with self.assertRaises(ValidationError):
            self.registry.update("user-1", expense_id, definition_id="other")

        self.assertEqual(self.registry.get("user-1", expense_id).due_day, 1)
        self.assertIsNone(self.registry.get("user-2", expense_id))

    def test_update_is_scoped_to_owner(self) -> None:
        expense_id = self.registry.create("Rent", "hogar", 1, "user-1")

        self.assertIsNone(self.registry.update("user-2", expense_id, description="Mine"))
        self.assertIsNone(self.registry.get("user-2", expense_id))
        self.assertEqual(self.registry.get("user-1", expense_id).description, "Rent")

    def test_delete_is_soft_and_keeps_settlement_records(self) -> None:
        ledger = SettlementLedger(self.store)
        expense_id = self.registry.create("Rent", "hogar", 1, "user-1")
        ledger.mark_paid(expense_id, "user-1", 8, 2024, Decimal("1200"), "2024-08-01")

        self.registry.delete("user-1", expense_id)

        self.assertEqual(self.registry.list_active("user-1"), [])
        self.assertFalse(self.registry.get("user-1", expense_id).active)
        record = ledger.find_record(expense_id, "user-1", 8, 2024)
        self.assertTrue(record.is_paid)
        self.assertEqual(record.amount_paid, Decimal("1200"))

    def test_reactivation_restores_visibility(self) -> None:
        expense_id = self.registry.create("Rent", "hogar", 1, "user-1")
        self.registry.set_active("user-1", expense_id, False)

        self.registry.set_active("user-1", expense_id, True)

        ids = [definition.id for definition in self.registry.list_active("user-1")]
        self.assertEqual(ids, [expense_id])


if __name__ == "__main__":
    unittest.main()
