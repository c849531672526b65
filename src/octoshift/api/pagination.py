"""Pagination strategies.

Every paginator is a single-pass async generator. Pages are fetched strictly
one after another because each continuation (next link, token, cursor) is
only known once the previous page has arrived. Each page fetch runs through
the client's full retry cycle, so a retried page never re-fetches or drops
earlier pages.
"""

import copy
from abc import ABC, abstractmethod
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, List, Optional
from urllib.parse import unquote_plus, urlencode, urlsplit, urlunsplit

from requests.utils import parse_header_links

from .classifier import AttemptOutcome
from .exceptions import MalformedResponseError

CONTINUATION_TOKEN_HEADER = 'x-ms-continuationtoken'
CONTINUATION_TOKEN_PARAM = 'continuationToken'

PageFetcher = Callable[..., Awaitable[AttemptOutcome]]
Selector = Callable[[Any], Any]


def with_query_params(url: str, params: Dict[str, Any]) -> str:
    """Merge ``params`` into the query string of ``url``, replacing duplicates.

    Segments of the original query that are not replaced are kept verbatim.
    """
    parts = urlsplit(url)
    kept = [
        segment
        for segment in parts.query.split('&')
        if segment and unquote_plus(segment.split('=', 1)[0]) not in params
    ]
    added = urlencode([(key, str(value)) for key, value in params.items()], safe='$')
    query = '&'.join(kept + [added]) if added else '&'.join(kept)
    return urlunsplit(parts._replace(query=query))


def next_link(link_header: Optional[str]) -> Optional[str]:
    """Return the ``rel="next"`` URL of a Link header, if any."""
    if not link_header:
        return None
    for link in parse_header_links(link_header):
        if link.get('rel') == 'next' and link.get('url'):
            return link['url']
    return None


def path_selector(path: str) -> Selector:
    """Build a selector from a dotted path such as ``data.org.repos.nodes``."""
    keys = [key for key in path.split('.') if key]

    def select(payload: Any) -> Any:
        current = payload
        for key in keys:
            if not isinstance(current, dict):
                return None
            current = current.get(key)
        return current

    return select


def _as_items(value: Any, outcome: AttemptOutcome) -> List[Any]:
    if value is None:
        return []
    if not isinstance(value, list):
        raise MalformedResponseError(
            f'Expected a JSON array of results but got {type(value).__name__}',
            status_code=outcome.status_code,
            response_data=outcome.body,
        )
    return value


def _value_array(outcome: AttemptOutcome, key: str) -> List[Any]:
    data = outcome.data
    if not isinstance(data, dict):
        raise MalformedResponseError(
            f'Expected a JSON object with a "{key}" array',
            status_code=outcome.status_code,
            response_data=outcome.body,
        )
    return _as_items(data.get(key), outcome)


class Paginator(ABC):
    """Produces the items of every page reachable from an initial request."""

    def __init__(self, fetch: PageFetcher):
        """Initialize paginator.

        Args:
            fetch: Coroutine returning the parsed outcome of one page request
        """
        self.fetch = fetch

    @abstractmethod
    def paginate(self, url: str, body: Any = None) -> AsyncIterator[Any]:
        """Yield items across all pages, in server order."""


class LinkHeaderPaginator(Paginator):
    """REST paging that follows ``Link: <...>; rel="next"``."""

    def __init__(self, fetch: PageFetcher, result_selector: Optional[Selector] = None):
        super().__init__(fetch)
        self.result_selector = result_selector

    async def paginate(self, url: str, body: Any = None) -> AsyncIterator[Any]:
        next_url = url
        while next_url:
            outcome = await self.fetch(next_url)
            results = (
                self.result_selector(outcome.data)
                if self.result_selector
                else outcome.data
            )
            for item in _as_items(results, outcome):
                yield item

            next_url = next_link(outcome.header('Link'))


class OffsetPaginator(Paginator):
    """ADO ``$skip``/``$top`` paging; an empty ``value`` page ends it."""

    def __init__(
        self,
        fetch: PageFetcher,
        page_size: int = 1000,
        selector: Optional[Selector] = None,
    ):
        super().__init__(fetch)
        self.page_size = page_size
        self.selector = selector

    async def paginate(self, url: str, body: Any = None) -> AsyncIterator[Any]:
        skip = 0
        while True:
            outcome = await self.fetch(
                with_query_params(url, {'$skip': skip, '$top': self.page_size})
            )
            values = _value_array(outcome, 'value')
            if not values:
                return

            for item in values:
                yield self.selector(item) if self.selector else item

            skip += self.page_size


class ContinuationTokenPaginator(Paginator):
    """ADO paging driven by the ``x-ms-continuationtoken`` response header."""

    def __init__(
        self, fetch: PageFetcher, header_name: str = CONTINUATION_TOKEN_HEADER
    ):
        super().__init__(fetch)
        self.header_name = header_name

    async def paginate(self, url: str, body: Any = None) -> AsyncIterator[Any]:
        request_url = url
        while True:
            outcome = await self.fetch(request_url)
            for item in _value_array(outcome, 'value'):
                yield item

            token = outcome.header(self.header_name)
            if not token:
                return
            request_url = with_query_params(url, {CONTINUATION_TOKEN_PARAM: token})


class StartLimitPaginator(Paginator):
    """Bitbucket Server ``start``/``limit`` paging."""

    def __init__(self, fetch: PageFetcher, limit: int = 100):
        super().__init__(fetch)
        self.limit = limit

    async def paginate(self, url: str, body: Any = None) -> AsyncIterator[Any]:
        start = 0
        while True:
            outcome = await self.fetch(
                with_query_params(url, {'start': start, 'limit': self.limit})
            )
            for item in _value_array(outcome, 'values'):
                yield item

            data = outcome.data
            next_start = data.get('nextPageStart')
            if data.get('isLastPage', True) or next_start is None:
                return
            start = next_start


class GraphQLCursorPaginator(Paginator):
    """GraphQL ``first``/``after`` cursor paging."""

    def __init__(
        self,
        fetch: PageFetcher,
        result_selector: Selector,
        page_info_selector: Selector,
        first: int = 100,
    ):
        """Initialize paginator.

        Args:
            fetch: Coroutine posting a body to a URL and returning the outcome
            result_selector: Picks the item array out of a whole response
            page_info_selector: Picks ``{endCursor, hasNextPage}`` out of a whole response
            first: Page size used when the query variables do not set one
        """
        if result_selector is None:
            raise ValueError('result_selector is required')
        if page_info_selector is None:
            raise ValueError('page_info_selector is required')
        super().__init__(fetch)
        self.result_selector = result_selector
        self.page_info_selector = page_info_selector
        self.first = first

    def prepare_body(
        self, body: Any, first: Optional[int] = None, after: Optional[str] = None
    ) -> Dict[str, Any]:
        """Copy the request body with ``variables.first``/``after`` in place.

        Explicit arguments win; otherwise values already in the query
        variables are kept and missing ones are filled in.
        """
        payload = copy.deepcopy(dict(body or {}))
        variables = payload.get('variables')
        if not isinstance(variables, dict):
            variables = {}
        payload['variables'] = variables

        if first is not None:
            variables['first'] = first
        else:
            variables.setdefault('first', self.first)

        if after is not None:
            variables['after'] = after
        else:
            variables.setdefault('after', None)

        return payload

    async def paginate(
        self,
        url: str,
        body: Any = None,
        first: Optional[int] = None,
        after: Optional[str] = None,
    ) -> AsyncIterator[Any]:
        payload = self.prepare_body(body, first=first, after=after)

        while True:
            outcome = await self.fetch(url, payload)
            for item in _as_items(self.result_selector(outcome.data), outcome):
                yield item

            page_info = self.page_info_selector(outcome.data)
            if page_info is None:
                return
            if not isinstance(page_info, dict):
                raise MalformedResponseError(
                    f'Expected a pageInfo object but got {type(page_info).__name__}',
                    status_code=outcome.status_code,
                    response_data=outcome.body,
                )

            if not page_info.get('hasNextPage'):
                return

            end_cursor = page_info.get('endCursor')
            # A missing cursor would restart from the first page
            if not end_cursor:
                raise MalformedResponseError(
                    'pageInfo reports hasNextPage but has no endCursor',
                    status_code=outcome.status_code,
                    response_data=outcome.body,
                )
            payload['variables']['after'] = end_cursor
