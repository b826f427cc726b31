from urllib.parse import urlparse, urlunparse, parse_qs, urlencode

from celery import Celery
from celery.signals import worker_init
from suitebook.core.config import settings


def _redis_url_for_celery(url: str) -> str:
    """Celery requires ssl_cert_reqs for rediss:// (e.g. Upstash TLS)."""
    if not url or not url.strip().lower().startswith("rediss://"):
        return url
    parsed = urlparse(url)
    qs = parse_qs(parsed.query)
    if "ssl_cert_reqs" not in qs:
        qs["ssl_cert_reqs"] = ["CERT_NONE"]
        new_query = urlencode(qs, doseq=True)
        return urlunparse(parsed._replace(query=new_query))
    return url


_redis_url = _redis_url_for_celery(settings.REDIS_URL)

celery = Celery(
    "suitebook",
    broker=_redis_url,
    backend=_redis_url,
    include=["suitebook.tasks.jobs"],
)

celery.conf.timezone = "Africa/Lagos"


# Reconciliation talks to both gateways; refuse to start without their secrets
@worker_init.connect
def on_worker_init(sender, **kwargs):
    settings.require_gateway_secrets()


celery.conf.beat_schedule = {
    "process-email-queue-every-2-minutes": {
        "task": "suitebook.tasks.jobs.process_email_queue",
        "schedule": 120.0,
        "kwargs": {"limit": 50},
    },
    "reconcile-pending-transactions-every-10-minutes": {
        "task": "suitebook.tasks.jobs.reconcile_pending_transactions",
        "schedule": 600.0,
        "kwargs": {"limit": 100},
    },
}
