"""Core module - ERP-neutral infrastructure.

Configuration, the error taxonomy, logging, credential storage and the
throttling/retry primitives live here. ERP-specific logic (Bling) belongs
in /connectors/.
"""

__version__ = "1.0.0"
