"""
Endpoint table.

Every API surface the workload touches is one ``EndpointSpec``. The probe is
generic; what differs between endpoints (method, path, activation
probability, payload, accepted statuses, backoff, nested follow-up calls)
is data in ``DEFAULT_ENDPOINTS``.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, FrozenSet, Optional, Tuple

from .generators import PayloadFactory

PayloadBuilder = Callable[[PayloadFactory], Dict[str, Any]]


class Category(Enum):
    """Rate-limit budget an endpoint counts against."""
    AUTH = "auth"
    READ = "read"
    WRITE = "write"


# Nominal per-minute budgets enforced by the target API.
CATEGORY_BUDGETS: Dict[Category, int] = {
    Category.AUTH: 10,
    Category.READ: 120,
    Category.WRITE: 60,
}


# Backoff after a rate-limited response, as [low, high) time-units.
# Costlier operations shed load longer.
BACKOFF_RANGES: Dict[Category, Tuple[float, float]] = {
    Category.AUTH: (2.0, 7.0),
    Category.READ: (1.0, 4.0),
    Category.WRITE: (2.0, 6.0),
}


@dataclass(frozen=True)
class FollowUp:
    """A nested probe issued after a normal (not rate-limited) primary call."""
    endpoint: str
    condition: Callable[[Any], bool]
    pause: float = 0.0


@dataclass(frozen=True)
class EndpointSpec:
    """Static configuration for one API surface."""
    name: str
    method: str
    path: str
    category: Category
    probability: float
    expected_status: FrozenSet[int] = frozenset({200})
    payload: Optional[PayloadBuilder] = None
    path_params: Optional[PayloadBuilder] = None
    query: Optional[PayloadBuilder] = None
    requires_auth: bool = True
    max_latency_ms: Optional[float] = None
    trend: Optional[str] = None
    response_validator: Optional[Callable[[Any], bool]] = None
    follow_ups: Tuple[FollowUp, ...] = ()
    backoff: Optional[Tuple[float, float]] = None

    def __post_init__(self):
        if not 0 <= self.probability <= 1:
            raise ValueError(f"{self.name}: probability must be within [0, 1]")

    @property
    def backoff_range(self) -> Tuple[float, float]:
        return self.backoff or BACKOFF_RANGES[self.category]

    def build_path(self, params: Optional[Dict[str, Any]] = None) -> str:
        path = self.path
        for key, value in (params or {}).items():
            path = path.replace(f"{{{key}}}", str(value))
        return path


def has_access_token(response) -> bool:
    """Login/register success bodies carry ``data.access_token``."""
    return bool(response.json_path("data.access_token"))


def _normal(outcome) -> bool:
    return outcome.success and not outcome.rate_limited


def _created(outcome) -> bool:
    return _normal(outcome) and outcome.http_status in (200, 201)


DEFAULT_ENDPOINTS: Dict[str, EndpointSpec] = {spec.name: spec for spec in (
    # -------------------------------------------------------------------------
    # AUTH (unauthenticated)
    # -------------------------------------------------------------------------
    EndpointSpec(
        "register", "POST", "/register", Category.AUTH, 0.05,
        expected_status=frozenset({200, 201}),
        payload=PayloadFactory.register_payload,
        requires_auth=False,
        max_latency_ms=2000,
        trend="register_duration",
        response_validator=has_access_token,
    ),
    EndpointSpec(
        "login", "POST", "/login", Category.AUTH, 0.03,
        payload=PayloadFactory.login_payload,
        requires_auth=False,
        max_latency_ms=1000,
        trend="login_duration",
        response_validator=has_access_token,
    ),

    # -------------------------------------------------------------------------
    # READ
    # -------------------------------------------------------------------------
    EndpointSpec("products", "GET", "/products", Category.READ, 0.70, max_latency_ms=500),
    EndpointSpec("user_info", "GET", "/users/info", Category.READ, 0.60, max_latency_ms=400),
    EndpointSpec(
        "team_invited", "GET", "/users/team-invited", Category.READ, 0.40,
        follow_ups=(FollowUp("team_level", _normal),),
    ),
    EndpointSpec(
        "team_level", "GET", "/users/team-invited/{level}", Category.READ, 0.20,
        path_params=PayloadFactory.team_level_params,
    ),
    EndpointSpec(
        "spin_prize_list", "GET", "/spin-prize-list", Category.READ, 0.30,
        follow_ups=(FollowUp("spin", _normal, pause=1.0),),
    ),
    EndpointSpec("tasks", "GET", "/users/task", Category.READ, 0.40),
    EndpointSpec(
        "transactions", "GET", "/users/transaction", Category.READ, 0.50,
        query=PayloadFactory.transaction_query,
        max_latency_ms=1000,
    ),
    EndpointSpec(
        "payment_lookup", "GET", "/users/payments/{invoice_id}", Category.READ, 1.0,
        expected_status=frozenset({200, 404}),
        path_params=PayloadFactory.payment_params,
    ),

    # -------------------------------------------------------------------------
    # WRITE
    # -------------------------------------------------------------------------
    EndpointSpec(
        "spin", "POST", "/users/spin", Category.WRITE, 0.30,
        expected_status=frozenset({200, 400, 403}),
        payload=PayloadFactory.empty_payload,
    ),
    EndpointSpec(
        "bank_update", "PUT", "/users/bank", Category.WRITE, 0.10,
        expected_status=frozenset({200, 400, 422}),
        payload=PayloadFactory.bank_payload,
    ),
    EndpointSpec(
        "create_investment", "POST", "/users/investments", Category.WRITE, 0.08,
        expected_status=frozenset({200, 201, 400, 422}),
        payload=PayloadFactory.investment_payload,
        follow_ups=(FollowUp("payment_lookup", _created, pause=2.0),),
    ),
    EndpointSpec(
        "change_password", "POST", "/users/change-password", Category.WRITE, 0.03,
        expected_status=frozenset({200, 400, 422}),
        payload=PayloadFactory.change_password_payload,
    ),
)}
