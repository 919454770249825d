import os
import unittest
import uuid

os.environ.setdefault("DATABASE_URL", "sqlite://")

from fastapi.testclient import TestClient

from finbook.main import app


class ApiTests(unittest.TestCase):
    @classmethod
    def setUpClass(cls) -> None:
        cls.client_context = TestClient(app)
        cls.client = cls.client_context.__enter__()

    @classmethod
    def tearDownClass(cls) -> None:
        cls.client_context.__exit__(None, None, None)

    def setUp(self) -> None:
        response = self.client.post(
            "/auth/signup",
            json={"email": f"{uuid.uuid4().hex}@example.com", "password": "secret"},
        )
        self.assertEqual(response.status_code, 200)
        self.headers = {"x-user-id": response.json()["id"]}

    def create_fixed_expense(self, description: str, due_day: int, **extra) -> dict:
        response = self.client.post(
            "/fixed-expenses",
            json={"description": description, "due_day": due_day, **extra},
            headers=self.headers,
        )
        self.assertEqual(response.status_code, 200, response.text)
        return response.json()

    def test_login_round_trip(self) -> None:
        email = f"{uuid.uuid4().hex}@example.com"
        signup = self.client.post("/auth/signup", json={"email": email, "password": "pw"})

        ok = self.client.post("/auth/login", json={"email": email.upper(), "password": "pw"})
        bad = self.client.post("/auth/login", json={"email": email, "password": "nope"})
        duplicate = self.client.post("/auth/signup", json={"email": email, "password": "pw"})

        self.assertEqual(ok.status_code, 200)
        self.assertEqual(ok.json()["id"], signup.json()["id"])
        self.assertEqual(bad.status_code, 401)
        self.assertEqual(duplicate.status_code, 409)

    def test_requires_known_user(self) -> None:
        self.assertEqual(self.client.get("/fixed-expenses").status_code, 401)
        response = self.client.get("/fixed-expenses", headers={"x-user-id": "nobody"})
        self.assertEqual(response.status_code, 404)

    def test_fixed_expense_defaults_and_validation(self) -> None:
        created = self.create_fixed_expense("Rent", 1, amount="1200")

        self.assertEqual(created["category"], "hogar")
        self.assertTrue(created["active"])
        bad_day = self.client.post(
            "/fixed-expenses",
            json={"description": "Rent", "due_day": 32},
            headers=self.headers,
        )
        blank = self.client.post(
            "/fixed-expenses",
            json={"description": "  ", "due_day": 3},
            headers=self.headers,
        )
        self.assertEqual(bad_day.status_code, 400)
        self.assertEqual(blank.status_code, 400)

    def test_settlement_flow_and_summary(self) -> None:
        rent = self.create_fixed_expense("Rent", 1)
        netflix = self.create_fixed_expense("Netflix", 15, category="entretenimiento")
        summary_url = "/fixed-expenses/summary?month=8&year=2024"

        initial = self.client.get(summary_url, headers=self.headers).json()
        self.assertEqual(initial["paid_count"], 0)
        self.assertEqual(initial["pending_count"], 2)

        paid = self.client.post(
            f"/fixed-expenses/{rent['id']}/payments/paid",
            json={"month": 8, "year": 2024, "amount_paid": "1200.00", "payment_date": "2024-08-01"},
            headers=self.headers,
        )
        self.assertEqual(paid.status_code, 200, paid.text)
        self.assertTrue(paid.json()["is_paid"])

        after_payment = self.client.get(summary_url, headers=self.headers).json()
        self.assertEqual(float(after_payment["total_paid"]), 1200.0)
        self.assertEqual(after_payment["paid_count"], 1)
        self.assertEqual(after_payment["pending_count"], 1)

        toggled = self.client.put(
            f"/fixed-expenses/{netflix['id']}/active",
            json={"active": False},
            headers=self.headers,
        )
        self.assertEqual(toggled.status_code, 200)
        after_pause = self.client.get(summary_url, headers=self.headers).json()
        self.assertEqual(after_pause["pending_count"], 0)

    def test_mark_pending_keeps_amount(self) -> None:
        rent = self.create_fixed_expense("Rent", 1)
        base = f"/fixed-expenses/{rent['id']}/payments"
        self.client.post(
            f"{base}/paid",
            json={"month": 8, "year": 2024, "amount_paid": "1350", "payment_date": "2024-08-02"},
            headers=self.headers,
        )

        pending = self.client.post(
            f"{base}/pending", json={"month": 8, "year": 2024}, headers=self.headers
        )
        history = self.client.get(base, headers=self.headers).json()

        self.assertEqual(pending.status_code, 200)
        self.assertFalse(pending.json()["is_paid"])
        self.assertEqual(float(pending.json()["amount_paid"]), 1350.0)
        self.assertEqual(pending.json()["payment_date"], "2024-08-02")
        self.assertEqual(len(history), 1)

    def test_mark_paid_rejects_zero_amount(self) -> None:
        rent = self.create_fixed_expense("Rent", 1)

        response = self.client.post(
            f"/fixed-expenses/{rent['id']}/payments/paid",
            json={"month": 8, "year": 2024, "amount_paid": "0"},
            headers=self.headers,
        )
        payments = self.client.get(
            "/fixed-expenses/payments?month=8&year=2024", headers=self.headers
        ).json()

        self.assertEqual(response.status_code, 400)
        self.assertEqual(payments, [])

    def test_payment_for_unknown_expense_is_not_found(self) -> None:
        response = self.client.post(
            "/fixed-expenses/missing/payments/pending",
            json={"month": 8, "year": 2024},
            headers=self.headers,
        )

        self.assertEqual(response.status_code, 404)

    def test_delete_is_soft(self) -> None:
        rent = self.create_fixed_expense("Rent", 1)

        deleted = self.client.delete(f"/fixed-expenses/{rent['id']}", headers=self.headers)
        active = self.client.get("/fixed-expenses", headers=self.headers).json()
        everything = self.client.get(
            "/fixed-expenses?include_inactive=true", headers=self.headers
        ).json()

        self.assertEqual(deleted.json(), {"status": "deactivated"})
        self.assertEqual(active, [])
        self.assertEqual([item["id"] for item in everything], [rent["id"]])
        self.assertFalse(everything[0]["active"])

    def test_status_reports_next_due_date(self) -> None:
        self.create_fixed_expense("Rent", 31)

        response = self.client.get(
            "/fixed-expenses/status?month=2&year=2025&as_of=2025-02-10",
            headers=self.headers,
        )

        entry = response.json()[0]
        self.assertEqual(entry["next_due_date"], "2025-02-28")
        self.assertEqual(entry["days_until_due"], 18)
        self.assertFalse(entry["is_paid"])
        self.assertIsNone(entry["payment"])

    def test_expenses_and_dashboard(self) -> None:
        self.client.put(
            "/users/me/settings", json={"monthly_budget": "1000"}, headers=self.headers
        )
        self.create_fixed_expense("Rent", 1, amount="500")
        for description, amount, day in (("Lunch", "100", "2024-08-05"), ("Bus", "50", "2024-08-06")):
            response = self.client.post(
                "/expenses",
                json={"description": description, "amount": amount, "date": day},
                headers=self.headers,
            )
            self.assertEqual(response.status_code, 200, response.text)
            self.assertEqual(response.json()["category"], "otros")
        self.client.post(
            "/expenses",
            json={"description": "Old", "amount": "70", "date": "2024-07-30"},
            headers=self.headers,
        )

        month = self.client.get("/expenses/month?month=8&year=2024", headers=self.headers).json()
        dashboard = self.client.get("/dashboard?month=8&year=2024", headers=self.headers).json()

        self.assertEqual([item["description"] for item in month], ["Bus", "Lunch"])
        self.assertEqual(float(dashboard["variable_total"]), 150.0)
        self.assertEqual(float(dashboard["fixed_total"]), 500.0)
        self.assertEqual(float(dashboard["available"]), 350.0)
        self.assertEqual(dashboard["status"], "ok")
        self.assertEqual(len(dashboard["recent_expenses"]), 2)
        self.assertEqual(dashboard["fixed_summary"]["pending_count"], 1)

    def test_monthly_budget_overrides_settings(self) -> None:
        default = self.client.get("/budgets/2024/8", headers=self.headers).json()
        self.assertTrue(default["is_default"])

        self.client.put("/budgets/2024/8", json={"limit": "200"}, headers=self.headers)
        self.client.put("/budgets/2024/8", json={"limit": "250"}, headers=self.headers)
        override = self.client.get("/budgets/2024/8", headers=self.headers).json()
        invalid = self.client.put("/budgets/2024/13", json={"limit": "10"}, headers=self.headers)

        self.assertFalse(override["is_default"])
        self.assertEqual(float(override["limit"]), 250.0)
        self.assertEqual(invalid.status_code, 400)

    def test_settings_validation(self) -> None:
        settings = self.client.get("/users/me/settings", headers=self.headers).json()
        rejected = self.client.put(
            "/users/me/settings",
            json={"notify_budget_percentage": 150},
            headers=self.headers,
        )

        self.assertEqual(settings["notify_before_due_date"], 3)
        self.assertEqual(settings["default_fixed_expense_category"], "hogar")
        self.assertEqual(rejected.status_code, 400)


if __name__ == "__main__":
    unittest.main()
