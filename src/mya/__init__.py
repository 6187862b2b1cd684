"""MYA - market-analysis CLI and edge gateway.

The gateway authenticates callers with emailed one-time passcodes, rate-limits
them, and forwards analysis requests to an external backend, queueing the heavy
ones per user. The CLI is the client side of that contract.
"""

import logging

# Quiet third-party request logs before anything else configures logging
logging.getLogger("httpx").setLevel(logging.WARNING)
logging.getLogger("httpcore").setLevel(logging.WARNING)
logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
logging.getLogger("arq.jobs").setLevel(logging.WARNING)

__version__ = "0.1.0"
__all__ = ["__version__"]
