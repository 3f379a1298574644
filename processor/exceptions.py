"""Exception types raised while scraping and normalizing schedules."""
from typing import List, Tuple


class ScrapeError(Exception):
    """Base class for every ingestion failure."""


class FetchError(ScrapeError):
    """Network or HTTP failure while reaching a source."""


class AllTransportsFailed(FetchError):
    """Every transport strategy failed for a single request."""

    def __init__(self, url: str, failures: List[Tuple[str, str]]):
        """
        Args:
            url: Target URL that could not be fetched
            failures: (transport name, error message) per attempt, in order
        """
        self.url = url
        self.failures = list(failures)
        details = '; '.join(f"{name}: {message}" for name, message in self.failures)
        super().__init__(f"All transports failed for {url}: {details}")

    @property
    def messages(self) -> List[str]:
        return [message for _, message in self.failures]


class ParseError(ScrapeError):
    """Source content could not be understood."""


class InvalidTimeFormat(ParseError):
    """A time string matched none of the recognized patterns."""

    def __init__(self, value: str):
        self.value = value
        super().__init__(f"Unrecognized time format: {value!r}")


class FacilityTimeout(ScrapeError):
    """A facility task ran past its time bound."""

    def __init__(self, facility_id: str, timeout_seconds: float):
        self.facility_id = facility_id
        self.timeout_seconds = timeout_seconds
        super().__init__(
            f"Facility {facility_id} did not finish within {timeout_seconds:g} seconds"
        )


class UnknownFacility(ScrapeError):
    """A facility id is not present in the configured catalog."""


class UnknownTimeZone(ParseError):
    """A zone name is neither an IANA key nor a known Windows zone name."""

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Unknown time zone: {name!r}")
