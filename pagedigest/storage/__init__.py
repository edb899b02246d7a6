from pagedigest.storage.summary_store import LocalSummaryStore, SummaryStore, render_markdown, slugify

__all__ = ["LocalSummaryStore", "SummaryStore", "render_markdown", "slugify"]
