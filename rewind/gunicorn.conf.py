import os

port = os.environ.get("PORT", "8080")
bind = os.environ.get("GUNICORN_BIND", f"0.0.0.0:{port}")

# Requests are I/O bound (OAuth server, PDS); scale with threads, not processes.
worker_class = "gthread"
workers = int(os.environ.get("WEB_CONCURRENCY", "2"))
threads = int(os.environ.get("GUNICORN_THREADS", "8"))

# Must stay above OAUTH_HTTP_TIMEOUT + PDS_HTTP_TIMEOUT
timeout = int(os.environ.get("GUNICORN_TIMEOUT", "30"))
graceful_timeout = 10
keepalive = 5

# Behind a proxy that terminates TLS
forwarded_allow_ips = os.environ.get("FORWARDED_ALLOW_IPS", "127.0.0.1")

accesslog = "-"
errorlog = "-"
loglevel = os.environ.get("GUNICORN_LOGLEVEL", "info")
