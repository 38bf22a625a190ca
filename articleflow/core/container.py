"""
Service container.

Built once from Settings and attached to the FastAPI app (app.state.services)
or held by the worker. Every component receives its clients through its
constructor; nothing here is module-level state.
"""
from dataclasses import dataclass
from typing import Optional

from fastapi import Request
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker

from articleflow.core.config import Settings
from articleflow.core.database import (
    create_all_tables,
    create_db_engine,
    create_session_factory,
    get_database_url,
)
from articleflow.features.billing.plans import PlanCatalog
from articleflow.features.billing.provider import BillingProvider
from articleflow.features.billing.reconciler import SubscriptionReconciler
from articleflow.features.billing.store import BillingEventLog, SubscriptionStore
from articleflow.features.drafts.entities import EntityStore
from articleflow.features.drafts.service import DraftAccumulator
from articleflow.features.drafts.store import DraftStore
from articleflow.features.ledger.dispatch import (
    LedgerSyncScheduler,
    RQDispatcher,
    SyncDispatcher,
    SyncJobRunner,
    ThreadDispatcher,
)
from articleflow.features.ledger.jobs import SyncJobStore
from articleflow.features.ledger.references import ReferenceLedger
from articleflow.features.ledger.sheets import LedgerClient
from articleflow.features.ledger.sync import LedgerSync
from articleflow.features.styles.service import ArticleStyleService


@dataclass
class ServiceContainer:
    engine: Engine
    session_factory: sessionmaker
    drafts: DraftAccumulator
    styles: ArticleStyleService
    entities: EntityStore
    references: ReferenceLedger
    ledger_sync: LedgerSync
    sync_jobs: SyncJobStore
    sync_runner: SyncJobRunner
    sync_scheduler: LedgerSyncScheduler
    reconciler: SubscriptionReconciler
    plans: PlanCatalog


def _build_billing_provider(settings: Settings) -> Optional[BillingProvider]:
    if not settings.STRIPE_SECRET_KEY:
        return None
    from articleflow.features.billing.stripe_provider import StripeProvider

    return StripeProvider(settings.STRIPE_SECRET_KEY, settings.STRIPE_WEBHOOK_SECRET)


def _build_ledger_client(settings: Settings) -> Optional[LedgerClient]:
    if not settings.GOOGLE_CREDENTIALS_PATH:
        return None
    from articleflow.features.ledger.sheets import GoogleSheetsClient

    return GoogleSheetsClient(settings.GOOGLE_CREDENTIALS_PATH)


def _build_dispatcher(settings: Settings, runner: SyncJobRunner) -> SyncDispatcher:
    if settings.LEDGER_SYNC_BACKEND == "thread":
        return ThreadDispatcher(runner, max_workers=settings.LEDGER_SYNC_MAX_WORKERS)
    from redis import Redis
    from rq import Queue

    queue = Queue(settings.LEDGER_SYNC_QUEUE, connection=Redis.from_url(settings.REDIS_URL))
    return RQDispatcher(queue, job_timeout=settings.LEDGER_SYNC_JOB_TIMEOUT)


def build_services(
    settings: Settings,
    engine: Optional[Engine] = None,
    billing_provider: Optional[BillingProvider] = None,
    ledger_client: Optional[LedgerClient] = None,
    dispatcher: Optional[SyncDispatcher] = None,
    create_tables: bool = False,
) -> ServiceContainer:
    """Wire every component. Explicit arguments override what settings would build."""
    if engine is None:
        engine = create_db_engine(get_database_url(settings.DATABASE_URL))
    if create_tables:
        create_all_tables(engine)
    session_factory = create_session_factory(engine)

    if billing_provider is None:
        billing_provider = _build_billing_provider(settings)
    if ledger_client is None:
        ledger_client = _build_ledger_client(settings)

    entities = EntityStore(session_factory)
    references = ReferenceLedger(session_factory)
    ledger_sync = LedgerSync(
        ledger_client,
        references,
        config_spreadsheet_id=settings.GOOGLE_SHEETS_CUSTOMER_CONFIG_ID,
        articles_spreadsheet_id=settings.GOOGLE_SHEETS_ARTICLES_ID,
        main_sheet=settings.LEDGER_MAIN_SHEET,
        customers_sheet=settings.LEDGER_CUSTOMERS_SHEET,
    )
    sync_jobs = SyncJobStore(session_factory)
    runner = SyncJobRunner(sync_jobs, entities, ledger_sync)
    if dispatcher is None:
        dispatcher = _build_dispatcher(settings, runner)
    scheduler = LedgerSyncScheduler(sync_jobs, dispatcher)

    plans = PlanCatalog(
        session_factory,
        price_map={
            settings.STRIPE_PRICE_PRO_ID: "pro",
            settings.STRIPE_PRICE_ENTERPRISE_ID: "enterprise",
        },
        default_plan=settings.DEFAULT_PAID_PLAN,
        free_articles_per_month=settings.FREE_ARTICLES_PER_MONTH,
    )
    reconciler = SubscriptionReconciler(
        billing_provider,
        SubscriptionStore(session_factory),
        BillingEventLog(session_factory),
        plans,
        app_url=settings.APP_URL,
        trial_days=settings.STRIPE_TRIAL_DAYS,
    )

    return ServiceContainer(
        engine=engine,
        session_factory=session_factory,
        drafts=DraftAccumulator(DraftStore(session_factory), entities, scheduler),
        styles=ArticleStyleService(entities, scheduler),
        entities=entities,
        references=references,
        ledger_sync=ledger_sync,
        sync_jobs=sync_jobs,
        sync_runner=runner,
        sync_scheduler=scheduler,
        reconciler=reconciler,
        plans=plans,
    )


def get_services(request: Request) -> ServiceContainer:
    """FastAPI dependency returning the app's container."""
    return request.app.state.services
