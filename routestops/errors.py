from typing import Optional


class RouteStopsError(Exception):
    """Base class for errors raised by the search pipeline"""


class ProviderError(RouteStopsError):
    """An upstream provider call failed (transport error or HTTP error status)"""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code

    def __str__(self):
        if self.status_code is not None:
            return f"{self.message} (status {self.status_code})"
        return self.message


class GeocodeProviderError(ProviderError):
    pass


class RoutingProviderError(ProviderError):
    pass


class PlacesProviderError(ProviderError):
    pass


class RatingsProviderError(ProviderError):
    pass


class RateLimitedError(RatingsProviderError):
    """Ratings provider kept answering 429 after all retries"""


class NoGeocodeResult(RouteStopsError):
    def __init__(self, address: str):
        super().__init__(f"No results found for address: {address}")
        self.address = address


class NoRouteFound(RouteStopsError):
    pass


class InsufficientRouteData(RouteStopsError):
    pass


class ConfigurationError(RouteStopsError):
    pass


class InvalidSearchParams(RouteStopsError):
    pass
