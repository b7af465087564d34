"""GitHub infrastructure package."""

from .github_source_provider import (
    GitHubLocation,
    GitHubSourceProvider,
    github_provider_factory,
    parse_github_url,
)

__all__ = [
    "GitHubLocation",
    "GitHubSourceProvider",
    "github_provider_factory",
    "parse_github_url",
]
