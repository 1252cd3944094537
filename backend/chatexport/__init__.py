"""LobeChat backup exporter: Markdown archives and Notion sync."""
