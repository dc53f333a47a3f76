"""Storefront catalog and order intake service.

The storage layer targets a hosted relational backend when one is configured
and always keeps a local durable copy it can fall back to.
"""

__version__ = "1.0.0"
