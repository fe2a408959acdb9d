"""PSP operator console backend.

Receives signed PSP core webhooks into a bounded inbox and serves invoice
state (list filters, derived UI axes, live polling) to the dashboard.
"""

__version__ = "0.1.0"
