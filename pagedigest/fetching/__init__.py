from pagedigest.fetching.page_fetcher import PageFetcher, extract_page_text

__all__ = ["PageFetcher", "extract_page_text"]
