"""
ipampa_pipeline — ingestion pipeline for the IPAMPA mirror.

Architecture:
  sources/     — INSEE download, archive reader, tabular parser
  transforms/  — year-column inference, record normalization, diagnostics
  loaders/     — full-replace loader (delete all, bulk insert, attach ids)
  pipelines/   — refresh() orchestrator plus list_indices() / export_csv()
  utils/       — structlog configuration, exponential-backoff retry decorator

Quick start:
    from ipampa_pipeline.pipelines.ipampa import refresh
    import asyncio
    result = asyncio.run(refresh(dry_run=True))

CLI:
    ipampa refresh --dry-run
    ipampa export --query engrais
    ipampa list
"""

__version__ = "0.1.0"
