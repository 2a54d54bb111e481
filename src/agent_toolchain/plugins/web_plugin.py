import logging
import os
import urllib.error
import urllib.request
from typing import Dict, Optional, Tuple
from urllib.parse import unquote, urlparse

from markdownify import markdownify as md

logger = logging.getLogger(__name__)

# Suppress the oauth2client file_cache warning
logging.getLogger("googleapiclient.discovery_cache").setLevel(logging.ERROR)

from googleapiclient.discovery import build

USER_AGENT = "Mozilla/5.0 (X11; Linux x86_64; rv:119.0) Gecko/20100101 Firefox/119.0"


class WebPlugin:
    """Plugin providing web search and page reading tools."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        engine_id: Optional[str] = None,
        num_results: int = 10,
        max_page_chars: int = 20000,
        search_service=None,
    ):
        self.api_key = api_key or os.environ.get("GOOGLE_SEARCH_API_KEY")
        self.engine_id = engine_id or os.environ.get("GOOGLE_SEARCH_ENGINE_ID")
        self.num_results = num_results
        self.max_page_chars = max_page_chars
        self._service = search_service
        self.search_results: Dict[int, Dict[str, str]] = {}  # {link_id: {'url': ..., 'title': ...}}
        self.next_link_id = 1

    def _search_service(self):
        if self._service is None:
            self._service = build("customsearch", "v1", developerKey=self.api_key)
        return self._service

    def _display_url(self, url: str, max_length: int = 80) -> str:
        """Decode and truncate a URL for display."""
        decoded = unquote(url)
        if len(decoded) <= max_length:
            return decoded
        keep = max_length // 2 - 3
        return decoded[:keep] + "..." + decoded[-keep:]

    def _resolve_source(self, source: str) -> Tuple[Optional[str], str]:
        """Resolve 'link_id:N' or a URL.

        Returns:
            tuple: (url, source_info) on success, (None, error_message) on error
        """
        source = (source or "").strip()
        if source.startswith("link_id:"):
            try:
                link_id = int(source[len("link_id:"):])
            except ValueError:
                return None, f"Error: Invalid link ID format. Use 'link_id:1'. Got: '{source}'"
            if link_id not in self.search_results:
                available = [f"link_id:{i}" for i in self.search_results]
                return (
                    None,
                    f"Error: Link ID {link_id} not found. Available: {available}. Run web_search first.",
                )
            result = self.search_results[link_id]
            return result["url"], f"Link [{link_id}]: {result['title']}"

        parsed = urlparse(source)
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            return None, f"Error: Expected 'link_id:N' or an http(s) URL. Got: '{source}'"
        return source, source

    def _fetch(self, url: str) -> str:
        """Fetch a page and convert it to markdown."""
        if url.startswith("http://"):
            url = url.replace("http://", "https://", 1)
        request = urllib.request.Request(url, headers={"User-Agent": USER_AGENT})
        with urllib.request.urlopen(request, timeout=30) as response:
            content_type = response.headers.get("Content-Type", "")
            body = response.read().decode("utf-8", errors="replace")
        if "html" in content_type:
            return md(body, heading_style="ATX")
        return body

    def web_search(self, query: str) -> str:
        """Search the web for current information. Results are numbered and can be read with web_read_page.

        Args:
            query: The search query, Google operators such as site: are supported
        """
        if not self.api_key:
            return "Error: GOOGLE_SEARCH_API_KEY environment variable not set"
        if not self.engine_id:
            return "Error: GOOGLE_SEARCH_ENGINE_ID environment variable not set"

        resp = (
            self._search_service()
            .cse()
            .list(q=query, cx=self.engine_id, num=self.num_results)
            .execute()
        )

        lines = []
        for item in resp.get("items", []):
            link_id = self.next_link_id
            self.next_link_id += 1
            self.search_results[link_id] = {
                "url": item.get("link", ""),
                "title": item.get("title", "No title"),
                "description": item.get("snippet", ""),
            }
            lines.append(f"[{link_id}] {self.search_results[link_id]['title']}")
            lines.append(f"    {self._display_url(self.search_results[link_id]['url'])}")
            lines.append(f"    {self.search_results[link_id]['description']}")
            lines.append("")

        if not lines:
            return f"No search results found for query: {query}"
        logger.info(f"web_search returned {len(lines) // 4} results for {query!r}")
        return f"Search results for '{query}':\n\n" + "\n".join(lines)

    def web_read_page(self, source: str) -> str:
        """Read the content of a web page as markdown.

        Args:
            source: Either 'link_id:N' for a search result or an 'https://...' URL
        """
        url, source_info = self._resolve_source(source)
        if url is None:
            return source_info

        try:
            content = self._fetch(url)
        except (urllib.error.URLError, TimeoutError) as e:
            return f"Error reading page {source_info}: {e}"

        if len(content) > self.max_page_chars:
            content = content[: self.max_page_chars] + "\n\n[content truncated]"
        return f"Content from {source_info}:\n\n{content}"

    def hook_provide_tools(self):
        """Return tools this plugin provides for auto-registration."""
        return [self.web_search, self.web_read_page]

    def hook_provide_system_prompt(self):
        return """
## Web Tools

- **web_search(query)**: find current information online; results are numbered [1], [2], ...
- **web_read_page(source)**: read a page, where source is "link_id:N" from a search or a URL

Link IDs keep growing across searches and stay valid for the whole conversation.
Cite pages you relied on.
""".strip()
