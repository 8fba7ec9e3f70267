"""
ipampa_shared — configuration, storage and models shared by the IPAMPA mirror.

Usage:
    from ipampa_shared.config import settings
    from ipampa_shared.store import get_store
    from ipampa_shared.export import build_export_csv
    from ipampa_shared.models import IndexSeries
"""

__version__ = "0.1.0"
