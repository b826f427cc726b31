from suitebook.tasks.celery_app import celery
from suitebook.tasks import worker_jobs


@celery.task(name="suitebook.tasks.jobs.process_email_queue")
def process_email_queue(limit: int = 50):
    return worker_jobs.process_email_queue(limit=limit)


@celery.task(name="suitebook.tasks.jobs.reconcile_pending_transactions")
def reconcile_pending_transactions(limit: int = 100):
    return worker_jobs.reconcile_pending_transactions(limit=limit)
