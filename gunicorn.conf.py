"""Gunicorn settings for the billing API.

Usage:
    gunicorn -c gunicorn.conf.py mealplan_billing.main:app
"""
from __future__ import annotations

import multiprocessing
import os

bind = os.getenv("GUNICORN_BIND", "0.0.0.0:8001")

# Checkout handlers block on Stripe, so size for I/O-bound work.
workers = int(os.getenv("GUNICORN_WORKERS", str(multiprocessing.cpu_count() * 2 + 1)))
worker_class = "uvicorn.workers.UvicornWorker"
worker_tmp_dir = "/dev/shm"

# A checkout makes about a dozen sequential Stripe calls, each bounded by
# STRIPE_API_TIMEOUT_SECONDS.
timeout = int(os.getenv("GUNICORN_TIMEOUT", "60"))
graceful_timeout = int(os.getenv("GUNICORN_GRACEFUL_TIMEOUT", "30"))

# ObservabilityMiddleware already logs every request as JSON.
accesslog = os.getenv("GUNICORN_ACCESSLOG") or None
errorlog = "-"
loglevel = os.getenv("GUNICORN_LOGLEVEL", "info")

proc_name = "mealplan_billing"
