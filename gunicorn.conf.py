"""
Gunicorn configuration for the analytics API (Uvicorn workers).
"""

import multiprocessing
import os

# Server socket
bind = os.getenv("BIND", "0.0.0.0:8000")
backlog = 2048

# Worker processes
workers = int(os.getenv("WORKERS", multiprocessing.cpu_count() * 2 + 1))
worker_class = "uvicorn.workers.UvicornWorker"
worker_connections = 1000
max_requests = 10000
max_requests_jitter = 1000
# Trial conversion can fan out to many billing lookups
timeout = 120
keepalive = 5
graceful_timeout = 30

proc_name = "subscription-analytics-api"

# Server mechanics
daemon = False
pidfile = "/tmp/gunicorn.pid"

# Logging; application logs go through structlog
errorlog = "-"
loglevel = os.getenv("LOG_LEVEL", "info").lower()
accesslog = "-"
access_log_format = '%(h)s %(l)s %(u)s %(t)s "%(r)s" %(s)s %(b)s %(D)s'


def post_fork(server, worker):
    """Each worker keeps its own in-memory rate limit window."""
    server.log.info("Worker spawned (pid: %s)", worker.pid)
