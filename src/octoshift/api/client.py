"""API clients for GitHub, Azure DevOps and Bitbucket Server."""

import asyncio
import base64
import json
import time
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, Optional, Tuple
from urllib.parse import urljoin

import aiohttp

from ..config.config import ClientSettings, Config
from ..utils.logging import OctoLogger
from ..utils.version import PRODUCT_NAME, VersionChecker
from .classifier import AttemptOutcome
from .exceptions import AuthenticationError
from .graphql import inspect_outcome
from .pagination import (
    ContinuationTokenPaginator,
    GraphQLCursorPaginator,
    LinkHeaderPaginator,
    OffsetPaginator,
    Selector,
    StartLimitPaginator,
    with_query_params,
)
from .rate_limiter import DEFAULT_WARNING, RateLimitGate
from .retry import Inspector, RetryPolicy

Headers = Optional[Dict[str, str]]


class ApiClient:
    """Base client: header plumbing, single-attempt sends, retries.

    Every verb builds a fresh header dict, so per-call headers never outlive
    the call that supplied them.
    """

    DEFAULT_HEADERS: Dict[str, str] = {'Accept': 'application/json'}
    REQUEST_ID_HEADER: Optional[str] = None
    REQUEST_ID_LABEL = 'REQUEST ID'
    RATE_LIMIT_WARNING = DEFAULT_WARNING

    def __init__(
        self,
        logger: Optional[OctoLogger] = None,
        version_provider: Optional[VersionChecker] = None,
        settings: Optional[ClientSettings] = None,
        base_url: Optional[str] = None,
        session: Optional[aiohttp.ClientSession] = None,
        retry_policy: Optional[RetryPolicy] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.time,
    ):
        """Initialize API client.

        Args:
            logger: Logger collaborator
            version_provider: Supplies version and comments for the User-Agent
            settings: Retry, rate limit and paging settings
            base_url: Prefix for relative endpoints
            session: aiohttp session to use; one is created (and owned) if omitted
            retry_policy: Retry policy to use instead of one built from settings
            sleep: Awaitable sleep, replaced in tests
            clock: Unix time source, replaced in tests
        """
        self.logger = logger or OctoLogger()
        self.version_provider = version_provider
        self.settings = settings or ClientSettings()
        self.base_url = base_url.rstrip('/') if base_url else None
        self.session = session
        self._owns_session = session is None

        if retry_policy is None:
            gate = RateLimitGate(
                logger=self.logger,
                sleep=sleep,
                clock=clock,
                warning_template=self.RATE_LIMIT_WARNING,
            )
            retry_policy = RetryPolicy(
                settings=self.settings,
                logger=self.logger,
                gate=gate,
                sleep=sleep,
                clock=clock,
            )
        self.retry_policy = retry_policy

    @property
    def user_agent(self) -> str:
        if self.version_provider is None:
            return PRODUCT_NAME

        version = self.version_provider.get_current_version()
        user_agent = f'{PRODUCT_NAME}/{version}' if version else PRODUCT_NAME
        comments = self.version_provider.get_version_comments()
        if comments:
            user_agent = f'{user_agent} {comments}'
        return user_agent

    def _auth_headers(self) -> Dict[str, str]:
        return {}

    def _build_headers(self, custom_headers: Headers = None) -> Dict[str, str]:
        headers = dict(self.DEFAULT_HEADERS)
        headers.update(self._auth_headers())
        headers['User-Agent'] = self.user_agent
        if custom_headers:
            headers.update(custom_headers)
        return headers

    def _build_url(self, endpoint: str) -> str:
        """Build full URL from an absolute URL or an endpoint path.

        Args:
            endpoint: Absolute URL, or path relative to ``base_url``

        Returns:
            Full URL
        """
        if endpoint.startswith(('http://', 'https://')) or not self.base_url:
            return endpoint
        return urljoin(self.base_url + '/', endpoint.lstrip('/'))

    async def _get_session(self) -> aiohttp.ClientSession:
        if self.session is None or self.session.closed:
            self.session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.settings.timeout)
            )
            self._owns_session = True
        return self.session

    async def _send_once(
        self,
        method: str,
        url: str,
        body: Any = None,
        custom_headers: Headers = None,
        expect_json: bool = False,
        expected_status: Optional[int] = None,
    ) -> AttemptOutcome:
        """Perform exactly one physical send and capture what happened."""
        headers = self._build_headers(custom_headers)
        self.logger.log_verbose(f'HTTP {method}: {url}')

        payload = None
        if body is not None:
            if isinstance(body, (bytes, bytearray)):
                self.logger.log_verbose('HTTP BODY: BLOB')
                payload = body
            else:
                payload = json.dumps(body)
                self.logger.log_verbose(f'HTTP BODY: {payload}')
                headers.setdefault('Content-Type', 'application/json')

        session = await self._get_session()
        try:
            async with session.request(
                method, url, headers=headers, data=payload
            ) as response:
                status = response.status
                response_headers = dict(response.headers)
                raw = await response.read()
                charset = response.charset or 'utf-8'
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            self.logger.log_verbose(f'HTTP {method} {url} failed: {e!r}')
            return AttemptOutcome(
                method=method,
                url=url,
                exception=e,
                expected_status=expected_status,
            )

        decode_error = None
        try:
            content = raw.decode(charset)
        except (UnicodeDecodeError, LookupError) as e:
            decode_error = e
            content = raw.decode('utf-8', errors='replace')

        outcome = AttemptOutcome(
            method=method,
            url=url,
            status_code=status,
            body=content,
            headers=response_headers,
            expected_status=expected_status,
            parse_error=decode_error,
        )

        if self.REQUEST_ID_HEADER:
            self.logger.log_verbose(
                f'{self.REQUEST_ID_LABEL}: {outcome.header(self.REQUEST_ID_HEADER)}'
            )
        self.logger.log_verbose(f'RESPONSE ({status}): {content}')
        for key, value in response_headers.items():
            self.logger.log_debug(f'RESPONSE HEADER: {key} = {value}')

        if expect_json and decode_error is None:
            try:
                outcome.data = json.loads(content)
            except ValueError as e:
                outcome.parse_error = e

        return outcome

    async def _send(
        self,
        method: str,
        endpoint: str,
        body: Any = None,
        custom_headers: Headers = None,
        expect_json: bool = False,
        expected_status: Optional[int] = None,
        inspect: Optional[Inspector] = None,
    ) -> AttemptOutcome:
        url = self._build_url(endpoint)

        async def send_once() -> AttemptOutcome:
            return await self._send_once(
                method,
                url,
                body=body,
                custom_headers=custom_headers,
                expect_json=expect_json,
                expected_status=expected_status,
            )

        return await self.retry_policy.execute(send_once, inspect=inspect)

    async def _fetch_json_page(
        self, url: str, custom_headers: Headers = None
    ) -> AttemptOutcome:
        return await self._send('GET', url, custom_headers=custom_headers, expect_json=True)

    async def get(self, endpoint: str, custom_headers: Headers = None) -> str:
        """Make GET request.

        Args:
            endpoint: URL or API endpoint
            custom_headers: Headers added to this call only

        Returns:
            Response body
        """
        return (await self._send('GET', endpoint, custom_headers=custom_headers)).body

    async def get_json(self, endpoint: str, custom_headers: Headers = None) -> Any:
        """Make GET request and parse the JSON body."""
        outcome = await self._fetch_json_page(endpoint, custom_headers)
        return outcome.data

    async def post(
        self, endpoint: str, body: Any = None, custom_headers: Headers = None
    ) -> str:
        """Make POST request.

        Args:
            endpoint: URL or API endpoint
            body: JSON-serializable body, or raw bytes
            custom_headers: Headers added to this call only

        Returns:
            Response body
        """
        return (
            await self._send('POST', endpoint, body=body, custom_headers=custom_headers)
        ).body

    async def post_with_full_response(
        self, endpoint: str, body: Any = None, custom_headers: Headers = None
    ) -> Tuple[str, Dict[str, str]]:
        outcome = await self._send(
            'POST', endpoint, body=body, custom_headers=custom_headers
        )
        return outcome.body, outcome.headers

    async def put(
        self, endpoint: str, body: Any = None, custom_headers: Headers = None
    ) -> str:
        return (
            await self._send('PUT', endpoint, body=body, custom_headers=custom_headers)
        ).body

    async def patch(
        self, endpoint: str, body: Any = None, custom_headers: Headers = None
    ) -> str:
        return (
            await self._send('PATCH', endpoint, body=body, custom_headers=custom_headers)
        ).body

    async def patch_with_full_response(
        self, endpoint: str, body: Any = None, custom_headers: Headers = None
    ) -> Tuple[str, Dict[str, str]]:
        outcome = await self._send(
            'PATCH', endpoint, body=body, custom_headers=custom_headers
        )
        return outcome.body, outcome.headers

    async def delete(self, endpoint: str, custom_headers: Headers = None) -> str:
        return (
            await self._send('DELETE', endpoint, custom_headers=custom_headers)
        ).body

    async def close(self) -> None:
        """Close the aiohttp session if this client created it."""
        if self._owns_session and self.session is not None and not self.session.closed:
            await self.session.close()

    async def __aenter__(self):
        """Async context manager entry."""
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Async context manager exit."""
        await self.close()


class GithubClient(ApiClient):
    """GitHub REST and GraphQL client authenticated with a bearer token."""

    DEFAULT_HEADERS = {
        'Accept': 'application/vnd.github.v3+json',
        'GraphQL-Features': 'import_api,mannequin_claiming_emu,org_import_api',
    }
    REQUEST_ID_HEADER = 'X-GitHub-Request-Id'
    REQUEST_ID_LABEL = 'GITHUB REQUEST ID'
    RATE_LIMIT_WARNING = (
        'GitHub rate limit exceeded. Waiting {delay} seconds before continuing'
    )

    def __init__(self, personal_access_token: str, **kwargs):
        """Initialize GitHub client.

        Args:
            personal_access_token: GitHub PAT
            **kwargs: Arguments for ``ApiClient``
        """
        super().__init__(**kwargs)
        self.personal_access_token = personal_access_token
        self.logger.register_secret(personal_access_token)

    def _auth_headers(self) -> Dict[str, str]:
        return {'Authorization': f'Bearer {self.personal_access_token}'}

    async def get_non_success(self, endpoint: str, status: int) -> str:
        """GET that succeeds only when the server answers with ``status``."""
        return (await self._send('GET', endpoint, expected_status=status)).body

    def get_all(
        self,
        endpoint: str,
        result_selector: Optional[Selector] = None,
        custom_headers: Headers = None,
    ) -> AsyncIterator[Any]:
        """Iterate over every item of a Link-header paginated endpoint.

        Args:
            endpoint: URL or API endpoint of the first page
            result_selector: Picks the item array out of each page body
            custom_headers: Headers added to every page request

        Returns:
            Async iterator over items in page order
        """
        paginator = LinkHeaderPaginator(
            lambda url: self._fetch_json_page(url, custom_headers),
            result_selector=result_selector,
        )
        return paginator.paginate(self._build_url(endpoint))

    async def _post_graphql_page(
        self, url: str, body: Any, custom_headers: Headers = None
    ) -> AttemptOutcome:
        return await self._send(
            'POST',
            url,
            body=body,
            custom_headers=custom_headers,
            expect_json=True,
            inspect=inspect_outcome,
        )

    async def post_graphql(
        self, endpoint: str, body: Any, custom_headers: Headers = None
    ) -> Dict[str, Any]:
        """POST a GraphQL query and return the whole response envelope.

        Raises:
            GraphQLApplicationError: The response carried a non-retryable error
        """
        outcome = await self._post_graphql_page(endpoint, body, custom_headers)
        return outcome.data

    def post_graphql_with_pagination(
        self,
        endpoint: str,
        body: Any,
        result_selector: Selector,
        page_info_selector: Selector,
        first: Optional[int] = None,
        after: Optional[str] = None,
        custom_headers: Headers = None,
    ) -> AsyncIterator[Any]:
        """Iterate over every item of a cursor paginated GraphQL query.

        Args:
            endpoint: GraphQL URL
            body: ``{query, variables, operationName}`` request body
            result_selector: Picks the item array out of each whole response
            page_info_selector: Picks ``pageInfo`` out of each whole response
            first: Page size, overriding the query variables
            after: Starting cursor, overriding the query variables
            custom_headers: Headers added to every page request

        Returns:
            Async iterator over items in page order
        """
        paginator = GraphQLCursorPaginator(
            lambda url, payload: self._post_graphql_page(url, payload, custom_headers),
            result_selector=result_selector,
            page_info_selector=page_info_selector,
            first=self.settings.graphql_page_size,
        )
        return paginator.paginate(
            self._build_url(endpoint), body, first=first, after=after
        )


class AdoClient(ApiClient):
    """Azure DevOps client authenticated with Basic ``:<PAT>``."""

    RATE_LIMIT_WARNING = 'THROTTLING IN EFFECT. Waiting {delay} seconds'

    def __init__(self, personal_access_token: str, **kwargs):
        """Initialize Azure DevOps client.

        Args:
            personal_access_token: ADO PAT
            **kwargs: Arguments for ``ApiClient``
        """
        super().__init__(**kwargs)
        self.personal_access_token = personal_access_token
        self.logger.register_secret(personal_access_token)

    def _auth_headers(self) -> Dict[str, str]:
        token = base64.b64encode(
            f':{self.personal_access_token}'.encode('ascii')
        ).decode('ascii')
        return {'Authorization': f'Basic {token}'}

    def get_with_paging(self, endpoint: str) -> AsyncIterator[Any]:
        """Iterate over a continuation-token paginated ``value`` collection."""
        if not endpoint or not endpoint.strip():
            raise ValueError('endpoint is required')

        paginator = ContinuationTokenPaginator(self._fetch_json_page)
        return paginator.paginate(self._build_url(endpoint))

    def get_with_paging_top_skip(
        self, endpoint: str, selector: Optional[Selector] = None
    ) -> AsyncIterator[Any]:
        """Iterate over a ``$skip``/``$top`` paginated ``value`` collection."""
        if not endpoint or not endpoint.strip():
            raise ValueError('endpoint is required')

        paginator = OffsetPaginator(
            self._fetch_json_page,
            page_size=self.settings.ado_page_size,
            selector=selector,
        )
        return paginator.paginate(self._build_url(endpoint))

    async def get_count_using_skip(self, endpoint: str) -> int:
        """Count items of an endpoint that has no count API.

        Checks ``$top=1&$skip=N``: doubles N until a page is empty, then
        binary searches the boundary.
        """
        if not await self._does_skip_exist(endpoint, 0):
            return 0

        min_count = 1
        max_count = 500

        while await self._does_skip_exist(endpoint, max_count):
            max_count *= 2

        skip = 500
        while min_count < max_count:
            if await self._does_skip_exist(endpoint, skip):
                min_count = skip + 1
            else:
                max_count = skip
            skip = (max_count - min_count) // 2 + min_count

        return min_count

    async def _does_skip_exist(self, endpoint: str, skip: int) -> bool:
        if not endpoint or not endpoint.strip():
            raise ValueError('endpoint is required')

        data = await self.get_json(with_query_params(endpoint, {'$top': 1, '$skip': skip}))
        return int((data or {}).get('count', 0)) > 0


class BbsClient(ApiClient):
    """Bitbucket Server client with optional Basic authentication."""

    def __init__(
        self, username: Optional[str] = None, password: Optional[str] = None, **kwargs
    ):
        """Initialize Bitbucket Server client.

        Args:
            username: Bitbucket username; no auth header without it
            password: Bitbucket password or HTTP access token
            **kwargs: Arguments for ``ApiClient``
        """
        super().__init__(**kwargs)
        self.username = username
        self.password = password
        self.logger.register_secret(password)

    def _auth_headers(self) -> Dict[str, str]:
        if not self.username or not self.password:
            return {}
        credentials = base64.b64encode(
            f'{self.username}:{self.password}'.encode('ascii')
        ).decode('ascii')
        return {'Authorization': f'Basic {credentials}'}

    def get_all(self, endpoint: str) -> AsyncIterator[Any]:
        """Iterate over a ``start``/``limit`` paginated ``values`` collection."""
        paginator = StartLimitPaginator(
            self._fetch_json_page, limit=self.settings.bbs_page_size
        )
        return paginator.paginate(self._build_url(endpoint))


class ClientFactory:
    """Factory for creating API clients from configuration."""

    def __init__(
        self,
        config: Config,
        logger: Optional[OctoLogger] = None,
        version_provider: Optional[VersionChecker] = None,
    ):
        self.config = config
        self.logger = logger or OctoLogger()
        self.version_provider = version_provider

    def _common(self) -> Dict[str, Any]:
        return {
            'logger': self.logger,
            'version_provider': self.version_provider,
            'settings': self.config.client,
        }

    def create_github_client(self, source: bool = False) -> GithubClient:
        """Create GitHub client for the target (or source) organization.

        Raises:
            AuthenticationError: If no PAT is configured
        """
        github = self.config.github_source if source else self.config.github
        if github is None or not github.pat:
            raise AuthenticationError(
                'A GitHub personal access token must be provided'
            )
        return GithubClient(github.pat, base_url=github.api_url, **self._common())

    def create_ado_client(self) -> AdoClient:
        """Create Azure DevOps client.

        Raises:
            AuthenticationError: If no PAT is configured
        """
        if not self.config.ado.pat:
            raise AuthenticationError(
                'An Azure DevOps personal access token must be provided'
            )
        return AdoClient(
            self.config.ado.pat, base_url=self.config.ado.server_url, **self._common()
        )

    def create_bbs_client(self) -> BbsClient:
        """Create Bitbucket Server client."""
        return BbsClient(
            username=self.config.bbs.username,
            password=self.config.bbs.password,
            base_url=self.config.bbs.server_url,
            **self._common(),
        )

    def create(self, backend: str) -> ApiClient:
        creators = {
            'github': self.create_github_client,
            'ado': self.create_ado_client,
            'bbs': self.create_bbs_client,
        }
        if backend not in creators:
            raise ValueError(f'Unknown backend: {backend}')
        return creators[backend]()
