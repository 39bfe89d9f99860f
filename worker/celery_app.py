import os
from celery import Celery

celery_app = Celery(
    "taskscore",
    broker=os.getenv("REDIS_URL", "redis://localhost:6379/0"),
    backend=os.getenv("REDIS_URL", "redis://localhost:6379/0"),
)

@celery_app.task(name="run_pipeline")
def run_pipeline(run_id: int) -> dict:
    from taskscore.services.analyzer import run_stored
    from taskscore.storage.repo import Repo
    final = run_stored(run_id, Repo())
    return {"run_id": final.run_id, "status": final.status.value}
