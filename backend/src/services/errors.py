from __future__ import annotations


class SearchError(Exception):
    pass


class InvalidQuery(SearchError, ValueError):
    """Client error: the request can never succeed as written."""


class InvalidCoordinate(InvalidQuery):
    pass


class InvalidRadius(InvalidQuery):
    pass


class CandidateSourceUnavailable(SearchError, RuntimeError):
    """Vendor provider failed or timed out. Retryable."""


class SearchCancelled(SearchError):
    pass
