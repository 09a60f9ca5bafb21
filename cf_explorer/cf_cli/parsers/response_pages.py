"""
ResponsePageParser: recover API response pages from `cf <cmd> -v` output.

With `-v` the cf CLI traces every API call it makes:

    REQUEST: [2024-01-01T10:00:00Z]
    GET /v3/organizations?order_by=name HTTP/1.1
    ...
    RESPONSE: [2024-01-01T10:00:01Z]
    HTTP/1.1 200 OK
    ...
    { "pagination": {...}, "resources": [...] }

This is an undocumented trace format, not a schema. The JSON body is taken
as everything from the first `{` to the last `}` of a response block; any
brace-bearing noise around the body breaks that assumption and the whole
parse fails rather than returning partial pages.
"""

import json
import logging
import re
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)

REQUEST_MARKER = "REQUEST"
RESPONSE_MARKER = "RESPONSE"

_REQUEST_SPLIT = re.compile(f"(?={REQUEST_MARKER})")
_RESPONSE_SPLIT = re.compile(f"(?={RESPONSE_MARKER})")


class ResponsePageParser:
    """
    Extracts JSON response bodies for one request path from cf trace output.

    `parse` returns the decoded pages in order, `[]` when the only page is an
    empty collection, or None when nothing trustworthy could be recovered.
    Callers treat None as a parsing failure, never as "no resources".
    """

    def parse(self, content: str, request_filter: str) -> Optional[List[Dict[str, Any]]]:
        """
        Parse trace output.

        Args:
            content: Raw stdout of a `-v` cf command
            request_filter: Substring identifying the relevant requests,
                e.g. "GET /v3/organizations"

        Returns:
            Decoded response pages, or None on failure
        """
        if not content or not request_filter:
            return None

        if (
            REQUEST_MARKER not in content
            or RESPONSE_MARKER not in content
            or request_filter not in content
        ):
            logger.debug(f"No traced request matching '{request_filter}' in cf output")
            return None

        pages: List[Dict[str, Any]] = []

        segments = [s for s in _REQUEST_SPLIT.split(content) if request_filter in s]
        for segment in segments:
            if not segment.strip():
                continue

            parts = _RESPONSE_SPLIT.split(segment, maxsplit=1)
            if len(parts) < 2:
                logger.debug(f"Request for '{request_filter}' has no traced response")
                return None

            page = self._decode_body(parts[1])
            if page is None:
                return None
            pages.append(page)

        if not pages:
            return None

        if len(pages) == 1 and self.is_empty_page(pages[0]):
            return []

        return pages

    def parse_resources(
        self,
        content: str,
        request_filter: str,
        items_field: str = "resources",
    ) -> Optional[List[Dict[str, Any]]]:
        """
        Parse trace output and flatten every page's item array.

        Returns:
            All items in page order, or None on failure
        """
        pages = self.parse(content, request_filter)
        if pages is None:
            return None

        items: List[Dict[str, Any]] = []
        for page in pages:
            page_items = page.get(items_field)
            if page_items is None:
                continue
            if not isinstance(page_items, list):
                logger.debug(f"Field '{items_field}' is not a list")
                return None
            items.extend(page_items)
        return items

    def _decode_body(self, response_block: str) -> Optional[Dict[str, Any]]:
        start = response_block.find("{")
        end = response_block.rfind("}")
        if start == -1 or end == -1 or end < start:
            logger.debug("Traced response has no JSON body")
            return None

        try:
            page = json.loads(response_block[start : end + 1])
        except json.JSONDecodeError as e:
            logger.debug(f"Traced response body is not valid JSON: {e}")
            return None

        if not isinstance(page, dict):
            return None
        return page

    @staticmethod
    def is_empty_page(page: Dict[str, Any]) -> bool:
        """
        True for an envelope describing an empty collection.

        Understands both the v3 `pagination` object and the flat v2 fields.
        """
        pagination = page.get("pagination")
        if isinstance(pagination, dict):
            next_ref = pagination.get("next")
            previous_ref = pagination.get("previous")
            total_pages = pagination.get("total_pages") or 0
            total_results = pagination.get("total_results") or 0
        else:
            next_ref = page.get("next_url")
            previous_ref = page.get("prev_url")
            total_pages = page.get("total_pages") or 0
            total_results = page.get("total_results") or 0

        return (
            next_ref is None
            and previous_ref is None
            and total_pages == 0
            and total_results == 0
        )
