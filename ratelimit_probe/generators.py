"""
Workload generators: randomized but realistic request payloads.

All randomness flows from the ``random.Random`` handed to ``PayloadFactory``;
the Faker instance is seeded from it, so a seeded run produces the same
names, phone numbers and accounts every time.
"""

import random
from typing import Any, Dict

from faker import Faker

from .config import Credentials

REGISTER_FIRST_NAMES = [
    "Alice", "Bob", "Charlie", "Diana", "Eva", "Frank", "Grace", "Henry", "Ivy", "Jack",
]
PAGE_SIZES = [5, 10, 20]
INVESTMENT_AMOUNTS = [1000, 5000, 10000]


class PayloadFactory:
    """Builds request bodies, path parameters and query strings for endpoints."""

    def __init__(
        self,
        rng: random.Random,
        credentials: Credentials = Credentials(),
        locale: str = "id_ID",
    ):
        self.rng = rng
        self.credentials = credentials
        self.fake = Faker(locale)
        self.fake.seed_instance(rng.getrandbits(32))

    # =========================================================================
    # PRIMITIVE VALUES
    # =========================================================================

    def phone_number(self) -> str:
        """Mobile number without country prefix: ``81`` + 9 digits."""
        return f"81{self.rng.randint(100000000, 999999999)}"

    def display_name(self) -> str:
        return f"{self.rng.choice(REGISTER_FIRST_NAMES)}{self.rng.randrange(1000)}"

    def account_number(self) -> str:
        return str(self.rng.randint(1000000000, 9999999999))

    def account_name(self) -> str:
        return f"{self.fake.first_name()} {self.fake.last_name()}"

    def invoice_id(self) -> str:
        return f"INV-{self.rng.randint(1000000000, 9999999999)}"

    # =========================================================================
    # REQUEST BODIES
    # =========================================================================

    def register_payload(self) -> Dict[str, Any]:
        password = self.credentials.password
        return {
            "name": self.display_name(),
            "number": self.phone_number(),
            "password": password,
            "password_confirmation": password,
            "referral_code": self.credentials.referral_code,
        }

    def login_payload(self) -> Dict[str, Any]:
        return {
            "number": self.credentials.phone,
            "password": self.credentials.password,
        }

    def bank_payload(self) -> Dict[str, Any]:
        return {
            "id": 1,
            "bank_id": self.rng.randint(1, 10),
            "account_number": self.account_number(),
            "account_name": self.account_name(),
        }

    def investment_payload(self) -> Dict[str, Any]:
        return {
            "product_id": self.rng.randint(1, 5),
            "amount": self.rng.choice(INVESTMENT_AMOUNTS),
            "payment_method": "QRIS",
        }

    def change_password_payload(self) -> Dict[str, Any]:
        # Rotates to the same password so the fixed account stays usable.
        password = self.credentials.password
        return {
            "current_password": password,
            "password": password,
            "confirmation_password": password,
        }

    def empty_payload(self) -> Dict[str, Any]:
        return {}

    # =========================================================================
    # PATH AND QUERY PARAMETERS
    # =========================================================================

    def transaction_query(self) -> Dict[str, Any]:
        return {
            "limit": self.rng.choice(PAGE_SIZES),
            "page": self.rng.randint(1, 3),
        }

    def team_level_params(self) -> Dict[str, Any]:
        return {"level": self.rng.randint(1, 3)}

    def payment_params(self) -> Dict[str, Any]:
        return {"invoice_id": self.invoice_id()}
