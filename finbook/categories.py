from finbook.errors import ValidationError

CATEGORY_CATALOGUE = [
    {"id": "alimentacion", "name": "Alimentación", "emoji": "🍽️"},
    {"id": "transporte", "name": "Transporte", "emoji": "🚗"},
    {"id": "entretenimiento", "name": "Entretenimiento", "emoji": "🎬"},
    {"id": "salud", "name": "Salud", "emoji": "⚕️"},
    {"id": "educacion", "name": "Educación", "emoji": "📚"},
    {"id": "hogar", "name": "Hogar", "emoji": "🏠"},
    {"id": "ropa", "name": "Ropa", "emoji": "👕"},
    {"id": "otros", "name": "Otros", "emoji": "📦"},
]

DEFAULT_EXPENSE_CATEGORY = "otros"
DEFAULT_FIXED_EXPENSE_CATEGORY = "hogar"


class ExpenseCategory:
    values = {entry["id"] for entry in CATEGORY_CATALOGUE}

    @classmethod
    def validate(cls, value: str) -> str:
        normalized = (value or "").strip().lower()
        if normalized not in cls.values:
            raise ValidationError("Invalid category.")
        return normalized
