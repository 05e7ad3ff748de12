"""Application context.

Owns every long-lived resource: the database engine and session factory, the
request store, the notification dispatcher and the services built on them.
Create one per process (or per test) and close it when done.
"""

from datetime import datetime
from typing import Callable, Iterable, List, Optional

from sqlalchemy.engine import Engine

from kanban.common.logger import configure_logging, get_logger
from kanban.db.seed import load_department_seed, seed_departments
from kanban.db.session import create_db_engine, create_session_factory, init_db
from kanban.db.store import RequestStore
from kanban.services.audit import AuditLogSubscriber
from kanban.services.notifications import (
    EventSubscriber,
    LoggingSubscriber,
    NotificationDispatcher,
    WebhookSubscriber,
)

from .access.policy import AccessPolicy
from .approval.engine import ApprovalEngine
from .config import Settings, get_settings
from .reports.aggregator import ReportAggregator
from .reports.export import ExportFormatter
from .timeutil import utcnow

logger = get_logger(__name__)


def default_subscribers(settings: Settings, session_factory) -> List[EventSubscriber]:
    """Logging, then audit, then webhook (each when enabled)."""
    subscribers: List[EventSubscriber] = [LoggingSubscriber()]
    if settings.audit_events_enabled:
        subscribers.append(AuditLogSubscriber(session_factory))
    if settings.webhook_url:
        subscribers.append(WebhookSubscriber(
            settings.webhook_url,
            timeout=settings.webhook_timeout,
            payload_template=settings.webhook_payload_template,
            app_name=settings.app_name,
        ))
    return subscribers


class KanbanContext:
    """Wiring of the approval engine, reports and their resources."""

    def __init__(
        self,
        settings: Settings,
        db_engine: Engine,
        *,
        subscribers: Optional[Iterable[EventSubscriber]] = None,
        clock: Callable[[], datetime] = utcnow,
        owns_engine: bool = True,
    ):
        self.settings = settings
        self.db_engine = db_engine
        self.session_factory = create_session_factory(db_engine)
        self.store = RequestStore(self.session_factory)
        self.policy = AccessPolicy()
        self.dispatcher = NotificationDispatcher(
            subscribers if subscribers is not None else default_subscribers(settings, self.session_factory),
            workers=settings.notification_workers,
        )
        self.approvals = ApprovalEngine(
            self.store, self.policy, self.dispatcher, settings=settings, clock=clock
        )
        self.reports = ReportAggregator(self.store, self.policy, settings=settings, clock=clock)
        self.exporter = ExportFormatter()
        self._owns_engine = owns_engine
        self._closed = False

    @classmethod
    def create(
        cls,
        settings: Optional[Settings] = None,
        *,
        subscribers: Optional[Iterable[EventSubscriber]] = None,
        db_engine: Optional[Engine] = None,
        clock: Callable[[], datetime] = utcnow,
        seed: bool = True,
    ) -> "KanbanContext":
        """
        Build a ready-to-use context.

        Configures logging, creates the schema and seeds departments from
        ``settings.department_seed_file`` (or the defaults).

        Args:
            settings: Settings (the cached environment settings when omitted)
            subscribers: Event subscribers replacing the configured defaults
            db_engine: Existing engine to use instead of ``database_url``
            clock: Time source shared by the engine and reports
            seed: Seed departments on startup
        """
        settings = settings or get_settings()
        configure_logging(settings)

        owns_engine = db_engine is None
        engine = db_engine or create_db_engine(settings.database_url, echo=settings.database_echo)
        init_db(engine)

        context = cls(settings, engine, subscribers=subscribers, clock=clock, owns_engine=owns_engine)
        if seed:
            context.seed_departments()
        logger.info(f"{settings.app_name} context ready ({engine.url.render_as_string(hide_password=True)})")
        return context

    def seed_departments(self) -> None:
        definitions = None
        if self.settings.department_seed_file:
            definitions = load_department_seed(self.settings.department_seed_file)
        with self.store.session_scope() as session:
            seed_departments(
                session,
                definitions,
                pc_department_code=self.settings.pc_department_code,
            )

    def close(self) -> None:
        """Drain pending events and release the database engine."""
        if self._closed:
            return
        self._closed = True
        self.dispatcher.close()
        if self._owns_engine:
            self.db_engine.dispose()

    def __enter__(self) -> "KanbanContext":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
