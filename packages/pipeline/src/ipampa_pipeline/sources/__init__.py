"""
ipampa_pipeline.sources — data source adapters.

  InseeIpampaSource — INSEE BDM "famille" zip bundle (semicolon CSV)
"""

from ipampa_pipeline.sources.insee import InseeIpampaSource

__all__ = ["InseeIpampaSource"]
