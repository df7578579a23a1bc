"""
Error taxonomy for the community context engine.

ValidationError   -> caller supplied a bad ZIP / unresolvable location. Not retried.
DependencyError   -> a provider failed, timed out or returned garbage. Triggers fallback.
CacheUnavailable  -> the cache backend is unreachable. Callers degrade to fetch-fresh.
"""


class CommunityContextError(Exception):
    """Base class for all engine errors"""


class ValidationError(CommunityContextError):
    """Missing or invalid location input"""

    def __init__(self, message: str, zip_code: str | None = None):
        super().__init__(message)
        self.zip_code = zip_code


class DependencyError(CommunityContextError):
    """An external provider was unreachable, timed out or returned malformed data"""

    def __init__(self, provider: str, message: str):
        super().__init__(f"{provider}: {message}")
        self.provider = provider


class CacheUnavailable(CommunityContextError):
    """The cache backend could not be reached"""
