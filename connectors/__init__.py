"""ERP Connectors.

Each ERP lives in its own subpackage and owns its authentication, HTTP
client and wire models. Only Bling is implemented.
"""
