"""Result records returned by the routing pipeline."""

from dataclasses import asdict, dataclass, field


@dataclass
class JobOutcome:
    """What happened to one (event, webhook) dispatch job.

    ``status`` is one of ``success``, ``failed``, ``retry_scheduled``,
    ``exhausted``, ``replayed`` or ``pending``.
    """

    webhook_id: str
    status: str
    log_id: str | None = None
    note: str | None = None
    delivery_id: str | None = None

    def as_dict(self) -> dict:
        return asdict(self)


@dataclass
class RouteResult:
    event_type: str
    idempotency_key: str
    order_id: str | None = None
    reconciliation: str | None = None
    jobs: list[JobOutcome] = field(default_factory=list)

    def as_dict(self) -> dict:
        return asdict(self)
