# Worker modules for queue job processing

from .job_router import JobRouter
from .worker_pool import WorkerPool, create_worker
from .import_worker import ImportJobHandlers, create_import_worker
from .report_worker import ReportJobHandlers, create_report_worker
from .campaign_worker import CampaignJobHandlers, create_campaign_worker
from .lifecycle import (
    DomainOptions,
    WorkerLifecycleManager,
    WorkerRegistry,
    default_factories,
    get_workers_status,
    initialize_workers,
    options_from_settings,
    pause_workers,
    resume_workers,
    shutdown_workers,
)

__all__ = [
    'JobRouter',
    'WorkerPool',
    'create_worker',
    'ImportJobHandlers',
    'create_import_worker',
    'ReportJobHandlers',
    'create_report_worker',
    'CampaignJobHandlers',
    'create_campaign_worker',
    'DomainOptions',
    'WorkerLifecycleManager',
    'WorkerRegistry',
    'default_factories',
    'get_workers_status',
    'initialize_workers',
    'options_from_settings',
    'pause_workers',
    'resume_workers',
    'shutdown_workers',
]
