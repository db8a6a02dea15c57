from .metrics import get_metrics, record_batches, record_job

__all__ = ['get_metrics', 'record_batches', 'record_job']
