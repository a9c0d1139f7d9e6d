"""Process-wide collaborators and their per-session wiring."""

from dataclasses import dataclass

from sqlalchemy.ext.asyncio import AsyncSession

from orderbridge.integrations.decoders.registry import DecoderRegistry, default_decoders
from orderbridge.integrations.providers.registry import ProviderRegistry, default_providers
from orderbridge.services.dispatcher import Dispatcher
from orderbridge.services.forwarder import Forwarder
from orderbridge.services.integrations import IntegrationService
from orderbridge.services.locks import KeyedLock
from orderbridge.services.orders import OrderService
from orderbridge.services.receiver import Receiver
from orderbridge.services.reconciler import Reconciler
from orderbridge.services.registry import WebhookRegistry
from orderbridge.services.retry import RetryManager, RetryPolicy
from orderbridge.services.router import Router
from orderbridge.services.webhook_log import WebhookLogService


@dataclass
class BoundServices:
    """Every component for one unit of work, sharing one session."""

    session: AsyncSession
    registry: WebhookRegistry
    logs: WebhookLogService
    retry: RetryManager
    orders: OrderService
    integrations: IntegrationService
    reconciler: Reconciler
    dispatcher: Dispatcher
    router: Router
    receiver: Receiver


class OrderBridge:
    """Long-lived state owned by the application lifespan.

    Nothing here touches the database directly; ``bind`` builds the
    session-scoped components on top of it.
    """

    def __init__(
        self,
        decoders: DecoderRegistry,
        providers: ProviderRegistry,
        forwarder: Forwarder,
        locks: KeyedLock,
        policy: RetryPolicy,
        provider_timeout: float = 10.0,
        public_base_url: str = "",
        rng=None,
    ):
        self.decoders = decoders
        self.providers = providers
        self.forwarder = forwarder
        self.locks = locks
        self.policy = policy
        self.provider_timeout = provider_timeout
        self.public_base_url = public_base_url
        self.rng = rng

    @classmethod
    def from_settings(cls, settings, redis=None) -> "OrderBridge":
        timeout = settings.provider_timeout_seconds
        return cls(
            decoders=default_decoders(),
            providers=default_providers(timeout=timeout),
            forwarder=Forwarder(timeout=timeout),
            locks=KeyedLock(redis),
            policy=RetryPolicy.from_settings(settings),
            provider_timeout=timeout,
            public_base_url=settings.public_base_url,
        )

    def bind(self, session: AsyncSession) -> BoundServices:
        logs = WebhookLogService(session)
        retry = RetryManager(session, self.policy, logs, rng=self.rng)
        orders = OrderService(session, self.locks)
        reconciler = Reconciler(session, self.locks, logs)
        dispatcher = Dispatcher(
            session, self.providers, self.locks, logs, retry, reconciler, timeout=self.provider_timeout
        )
        router = Router(session, orders, reconciler, dispatcher, self.forwarder, retry, logs)
        return BoundServices(
            session=session,
            registry=WebhookRegistry(session, self.public_base_url),
            logs=logs,
            retry=retry,
            orders=orders,
            integrations=IntegrationService(session),
            reconciler=reconciler,
            dispatcher=dispatcher,
            router=router,
            receiver=Receiver(session, self.decoders, router, logs),
        )
