"""Rishvan - ask a human from inside an agent.

Agent processes (one per IDE integration) ask a question and block until a
human answers it through a shared local web UI. The first process to bind
the well-known port becomes the primary and owns the UI; every other process
proxies its questions through the primary over HTTP.
"""

__version__ = "0.1.0"
