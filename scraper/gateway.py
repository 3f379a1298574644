"""Fetch gateway trying an ordered chain of transport strategies."""
import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple, TypeVar
from urllib.parse import quote

import requests

from processor.exceptions import AllTransportsFailed, FetchError, ScrapeError

logger = logging.getLogger(__name__)

DEFAULT_USER_AGENT = (
    'Mozilla/5.0 (Macintosh; Intel Mac OS X 9_3_4; en-US) AppleWebKit/533.23 '
    '(KHTML, like Gecko) Chrome/49.0.1461.334 Safari/602'
)

T = TypeVar('T')


@dataclass
class FetchResult:
    """Content returned by the first transport that succeeded."""
    content: str
    status_code: int
    transport: str
    failures: List[Tuple[str, str]] = field(default_factory=list)

    def json(self) -> Any:
        return json.loads(self.content)


class TransportStrategy(ABC):
    """One way of reaching a source URL."""

    name = 'transport'
    methods: Tuple[str, ...] = ('GET',)

    def supports(self, method: str) -> bool:
        return method.upper() in self.methods

    @abstractmethod
    def build_url(self, url: str) -> str:
        """Return the URL actually requested for a target URL."""

    def unwrap(self, response: requests.Response) -> Tuple[str, int]:
        """Extract (content, target status) from a transport response."""
        return response.text, response.status_code

    def request(
        self,
        session: requests.Session,
        url: str,
        method: str = 'GET',
        data: Optional[Dict[str, Any]] = None,
        json_body: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
        timeout: float = 30
    ) -> Tuple[str, int]:
        """
        Perform one attempt.

        Returns:
            Tuple of (content, status code)

        Raises:
            requests.RequestException: On network errors or non-2xx responses
            FetchError: If the response carries no usable content
        """
        response = session.request(
            method,
            self.build_url(url),
            data=data,
            json=json_body,
            headers=headers,
            timeout=timeout
        )
        response.raise_for_status()
        content, status = self.unwrap(response)
        if not content or not content.strip():
            raise FetchError(f"{self.name} returned an empty body")
        return content, status


class DirectTransport(TransportStrategy):
    name = 'direct'
    methods = ('GET', 'POST')

    def build_url(self, url: str) -> str:
        return url


class AllOriginsRelay(TransportStrategy):
    """Relay answering with a JSON envelope around the target body."""

    name = 'allorigins'
    BASE_URL = 'https://api.allorigins.win/get?url='

    def build_url(self, url: str) -> str:
        return self.BASE_URL + quote(url, safe='')

    def unwrap(self, response: requests.Response) -> Tuple[str, int]:
        try:
            envelope = response.json()
        except ValueError:
            raise FetchError(f"{self.name} returned a non-JSON envelope")

        status = envelope.get('status') or {}
        http_code = status.get('http_code')
        if http_code is not None and not 200 <= int(http_code) < 300:
            raise FetchError(f"{self.name} reported target status {http_code}")

        contents = envelope.get('contents')
        if not contents:
            raise FetchError(status.get('error_message') or f"{self.name} returned no contents")

        return contents, int(http_code or response.status_code)


class CodeTabsRelay(TransportStrategy):
    """Relay passing the target body through unchanged."""

    name = 'codetabs'
    BASE_URL = 'https://api.codetabs.com/v1/proxy?quest='

    def build_url(self, url: str) -> str:
        return self.BASE_URL + quote(url, safe='')


def default_strategies(use_relays: bool = True) -> List[TransportStrategy]:
    strategies: List[TransportStrategy] = [DirectTransport()]
    if use_relays:
        strategies.extend([AllOriginsRelay(), CodeTabsRelay()])
    return strategies


def try_in_order(
    strategies: Sequence[TransportStrategy],
    attempt: Callable[[TransportStrategy], T],
    target: str = ''
) -> Tuple[T, List[Tuple[str, str]]]:
    """
    Run ``attempt`` against each strategy until one succeeds.

    Args:
        strategies: Strategies in fallback order
        attempt: Callable performing one attempt with a strategy
        target: URL being fetched, used in the aggregated error

    Returns:
        Tuple of (first successful result, failures recorded before it)

    Raises:
        AllTransportsFailed: If every strategy failed
    """
    failures: List[Tuple[str, str]] = []

    for strategy in strategies:
        try:
            return attempt(strategy), failures
        except (requests.RequestException, ScrapeError, ValueError) as e:
            logger.warning(f"Transport {strategy.name} failed for {target}: {e}")
            failures.append((strategy.name, str(e)))

    raise AllTransportsFailed(target, failures)


class FetchGateway:
    """HTTP client shared by all source adapters."""

    def __init__(
        self,
        session: Optional[requests.Session] = None,
        strategies: Optional[Sequence[TransportStrategy]] = None,
        timeout: float = 30,
        user_agent: str = DEFAULT_USER_AGENT,
        use_relays: bool = True
    ):
        """
        Initialize the gateway.

        Args:
            session: requests session to reuse (a new one is created otherwise)
            strategies: Transport strategies in fallback order
            timeout: Per-attempt timeout in seconds
            user_agent: User-Agent header sent with every attempt
            use_relays: Append relay strategies after the direct transport
        """
        self.session = session or requests.Session()
        self.strategies = list(strategies) if strategies is not None else default_strategies(use_relays)
        self.timeout = timeout
        self.user_agent = user_agent

    def fetch(
        self,
        url: str,
        method: str = 'GET',
        data: Optional[Dict[str, Any]] = None,
        json_body: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
        expect_json: bool = False
    ) -> FetchResult:
        """
        Fetch a URL through the first transport that succeeds.

        Args:
            url: Target URL
            method: HTTP method
            data: Form fields for POST requests
            json_body: JSON document sent as the POST body
            headers: Extra request headers
            expect_json: Count bodies that are not valid JSON as failures

        Returns:
            FetchResult with content, status code and the winning transport

        Raises:
            AllTransportsFailed: If every applicable strategy failed
        """
        method = method.upper()
        candidates = [strategy for strategy in self.strategies if strategy.supports(method)]
        if not candidates:
            raise FetchError(f"No transport supports {method} requests")

        request_headers = {'User-Agent': self.user_agent}
        if headers:
            request_headers.update(headers)

        def attempt(strategy: TransportStrategy) -> FetchResult:
            logger.info(f"Fetching {url} via {strategy.name}")
            content, status = strategy.request(
                self.session,
                url,
                method=method,
                data=data,
                json_body=json_body,
                headers=request_headers,
                timeout=self.timeout
            )
            if expect_json:
                json.loads(content)
            return FetchResult(content=content, status_code=status, transport=strategy.name)

        result, failures = try_in_order(candidates, attempt, target=url)
        result.failures = failures
        return result
