#!/usr/bin/env python3
# backend/run_celery_worker.py
"""
Development Celery worker runner for notification delivery and settlement.
"""
import os
from pathlib import Path
import subprocess
import sys

# Add backend to path
backend_dir = Path(__file__).parent
sys.path.insert(0, str(backend_dir))
os.chdir(backend_dir)

os.environ.setdefault("ENVIRONMENT", "development")

if __name__ == "__main__":
    # Allow both CELERY_QUEUE and CELERY_QUEUES; prefer CELERY_QUEUES if provided
    queues = os.getenv("CELERY_QUEUES") or os.getenv("CELERY_QUEUE") or "celery,notifications,payments"
    print(f"🚀 Starting Celery worker (ENVIRONMENT={os.environ['ENVIRONMENT']})…")
    print(f"📦 Consuming queues: {queues}")

    cmd = [
        sys.executable,
        "-m",
        "celery",
        "-A",
        "home_services.tasks.celery_app:celery_app",
        "worker",
        "--loglevel=info",
        "--concurrency=2",
        "--max-tasks-per-child=100",
        "--pool=prefork",
        "-Q",
        queues,
    ]

    subprocess.run(cmd)
