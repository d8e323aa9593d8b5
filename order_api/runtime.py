"""
Composition root: builds the kernel's collaborators from configuration.

Shared by the FastAPI app and the operator scripts so both run the same
services with the same settings.  Nothing here holds module-level state;
every caller gets its own ``Runtime``.
"""

from dataclasses import dataclass

import httpx
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from order_config.bridges import kernel_settings_from_config
from order_config.schema import OrderKernelConfig
from order_kernel.db.engine import create_engine_from_url, create_session_factory, create_tables
from order_kernel.domain.clock import Clock, SystemClock
from order_kernel.logging_config import get_logger
from order_kernel.producers.email import DryRunMailer, HttpMailer, Mailer
from order_kernel.producers.registry import ProducerRegistry
from order_kernel.services.fulfillment_dispatcher import FulfillmentDispatcher
from order_kernel.services.notification import (
    LoggingNotificationChannel,
    NotificationChannel,
    OperatorEmailChannel,
)
from order_kernel.services.operator_service import OperatorService
from order_kernel.services.webhook_processor import WebhookProcessor
from order_kernel.services.webhook_verifier import WebhookVerifier
from order_kernel.settings import KernelSettings

logger = get_logger("api.runtime")


@dataclass
class Runtime:
    config: OrderKernelConfig
    settings: KernelSettings
    engine: Engine
    session_factory: sessionmaker[Session]
    clock: Clock
    mailer: Mailer
    registry: ProducerRegistry
    dispatcher: FulfillmentDispatcher
    notifications: NotificationChannel
    processor: WebhookProcessor
    operator: OperatorService
    verifier: WebhookVerifier


def build_mailer(config: OrderKernelConfig, http_client: httpx.Client | None = None) -> Mailer:
    """HTTP mailer when an API key is configured, otherwise a dry run."""
    if config.mail.api_key:
        return HttpMailer(
            api_url=config.mail.api_url,
            api_key=config.mail.api_key,
            from_address=config.mail.from_address,
            timeout_seconds=config.fulfillment.producer_http_timeout_seconds,
            client=http_client,
        )
    logger.warning("mail_dry_run_enabled")
    return DryRunMailer()


def build_runtime(
    config: OrderKernelConfig,
    clock: Clock | None = None,
    engine: Engine | None = None,
    http_client: httpx.Client | None = None,
    create_schema: bool = False,
) -> Runtime:
    settings = kernel_settings_from_config(config)
    clock = clock or SystemClock()
    engine = engine or create_engine_from_url(config.database.url)
    if create_schema:
        create_tables(engine)
    session_factory = create_session_factory(engine)

    mailer = build_mailer(config, http_client)
    registry = ProducerRegistry(settings, mailer, clock=clock, http_client=http_client)
    dispatcher = FulfillmentDispatcher(session_factory, settings, registry, clock)

    notifications: NotificationChannel
    if settings.operator_alert_email:
        notifications = OperatorEmailChannel(
            mailer, settings.operator_alert_email, settings.mail_subject_tag
        )
    else:
        notifications = LoggingNotificationChannel()

    return Runtime(
        config=config,
        settings=settings,
        engine=engine,
        session_factory=session_factory,
        clock=clock,
        mailer=mailer,
        registry=registry,
        dispatcher=dispatcher,
        notifications=notifications,
        processor=WebhookProcessor(session_factory, settings, dispatcher, notifications, clock),
        operator=OperatorService(session_factory, settings, dispatcher, notifications, clock),
        verifier=WebhookVerifier(
            config.webhooks.signing_secret or "",
            tolerance_seconds=config.webhooks.tolerance_seconds,
            clock=clock,
        ),
    )
