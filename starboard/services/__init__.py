"""Store gateway, classification and LLM enrichment services."""
