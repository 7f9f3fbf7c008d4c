# backend/wsgi.py
import os

from fiscalpos import create_app

app = create_app()

# Under a WSGI server the retry sweep runs in-process. Flask CLI commands
# (including `flask run`) leave it off; use `flask invoices run-scheduler`.
if not os.environ.get("FLASK_RUN_FROM_CLI") and os.environ.get("FISCALPOS_DISABLE_SCHEDULER") != "1":
    app.extensions["fiscalpos.invoice_retry_scheduler"].start()
