"""
Service wiring — one set of services per DB session (request or worker task).
"""
from dataclasses import dataclass

from workloom.connectors import get_connector
from workloom.services.accounts import AccountRegistry
from workloom.services.mapping_runs import MappingRunEngine
from workloom.services.mappings import MappingService
from workloom.services.rate_limiter import RateLimiter
from workloom.services.scheduler import ScrapingJobScheduler, enqueue_job
from workloom.services.sync import SyncReconciler
from workloom.services.validator import ConnectionValidator
from workloom.services.vault import get_vault


@dataclass
class Services:
    registry: AccountRegistry
    limiter: RateLimiter
    scheduler: ScrapingJobScheduler
    runs: MappingRunEngine
    mappings: MappingService
    sync: SyncReconciler
    validator: ConnectionValidator


def build_services(session, redis_client=None, vault=None, enqueue=None,
                   connector_factory=None, limiter=None) -> Services:
    if redis_client is None:
        from workloom.extensions import redis_client
    registry = AccountRegistry(
        session, vault or get_vault(), redis_client,
        connector_factory=connector_factory or get_connector,
    )
    limiter = limiter or RateLimiter(redis_client)
    scheduler = ScrapingJobScheduler(session, registry, limiter, enqueue=enqueue or enqueue_job)
    runs = MappingRunEngine(session, registry, scheduler)
    # jobs that belong to a mapping run close that run when they finish
    scheduler.on_finished = runs.on_job_finished
    return Services(
        registry=registry,
        limiter=limiter,
        scheduler=scheduler,
        runs=runs,
        mappings=MappingService(session),
        sync=SyncReconciler(session, registry),
        validator=ConnectionValidator(registry, limiter),
    )
