from unittest.mock import MagicMock, patch

from agent_toolchain.plugins.web_plugin import WebPlugin
from agent_toolchain.tool_registry import Tool


def search_service(items):
    service = MagicMock()
    service.cse.return_value.list.return_value.execute.return_value = {"items": items}
    return service


ITEMS = [
    {"link": "https://example.com/a", "title": "Page A", "snippet": "About A"},
    {"link": "https://example.com/b", "title": "Page B", "snippet": "About B"},
]


class TestWebPlugin:
    def test_missing_credentials(self):
        plugin = WebPlugin(api_key="", engine_id="")
        plugin.api_key = None
        assert "GOOGLE_SEARCH_API_KEY" in plugin.web_search("anything")

    def test_search_numbers_results(self):
        service = search_service(ITEMS)
        plugin = WebPlugin(api_key="key", engine_id="cx", search_service=service)

        output = plugin.web_search("example")

        assert "[1] Page A" in output
        assert "[2] Page B" in output
        assert plugin.search_results[2]["url"] == "https://example.com/b"
        service.cse.return_value.list.assert_called_once_with(q="example", cx="cx", num=10)

    def test_link_ids_keep_growing(self):
        plugin = WebPlugin(api_key="key", engine_id="cx", search_service=search_service(ITEMS))
        plugin.web_search("first")
        output = plugin.web_search("second")
        assert "[3] Page A" in output

    def test_no_results(self):
        plugin = WebPlugin(api_key="key", engine_id="cx", search_service=search_service([]))
        assert plugin.web_search("nothing") == "No search results found for query: nothing"

    def test_read_page_by_link_id(self):
        plugin = WebPlugin(api_key="key", engine_id="cx", search_service=search_service(ITEMS))
        plugin.web_search("example")

        with patch.object(plugin, "_fetch", return_value="# Page A\n\nbody") as fetch:
            output = plugin.web_read_page("link_id:1")

        fetch.assert_called_once_with("https://example.com/a")
        assert output.startswith("Content from Link [1]: Page A")
        assert "# Page A" in output

    def test_read_page_unknown_link(self):
        plugin = WebPlugin(api_key="key", engine_id="cx")
        assert "not found" in plugin.web_read_page("link_id:7")

    def test_read_page_rejects_other_sources(self):
        plugin = WebPlugin(api_key="key", engine_id="cx")
        assert plugin.web_read_page("file:///etc/passwd").startswith("Error:")

    def test_long_pages_are_truncated(self):
        plugin = WebPlugin(api_key="key", engine_id="cx", max_page_chars=10)
        with patch.object(plugin, "_fetch", return_value="x" * 50):
            output = plugin.web_read_page("https://example.com")
        assert output.endswith("[content truncated]")

    def test_tools_have_schemas(self):
        plugin = WebPlugin(api_key="key", engine_id="cx")
        tools = [Tool.from_callable(method) for method in plugin.hook_provide_tools()]

        assert [t.name for t in tools] == ["web_search", "web_read_page"]
        assert tools[0].parameters["required"] == ["query"]
        assert tools[1].parameters["properties"]["source"]["type"] == "string"
