"""
ipampa_pipeline.pipelines — End-to-end pipeline orchestrators.

    from ipampa_pipeline.pipelines import ipampa

    result = await ipampa.refresh()
    rows = ipampa.list_indices(query="engrais")
    payload = ipampa.export_csv()
"""
