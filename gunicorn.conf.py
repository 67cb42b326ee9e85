"""Gunicorn configuration for the stock ledger service."""
import os

bind = os.getenv("GUNICORN_BIND", "0.0.0.0:5000")

# Each worker holds its own connection pool; keep the default small.
workers = int(os.getenv("GUNICORN_WORKERS", "2"))

accesslog = os.getenv("GUNICORN_ACCESS_LOGFILE", "-")
errorlog = os.getenv("GUNICORN_ERROR_LOGFILE", "-")

forwarded_allow_ips = os.getenv("GUNICORN_FORWARDED_ALLOW_IPS", "*")
