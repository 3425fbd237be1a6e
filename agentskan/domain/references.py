from urllib.parse import urlparse

from agentskan.domain.exceptions import InvalidReferenceException
from agentskan.domain.models import RepoReference

GITHUB_HOSTS = {"github.com", "www.github.com"}


def parse_repo_reference(reference: str) -> RepoReference:
    """
    Resolves a GitHub repository URL such as https://github.com/owner/repo(.git)
    into an owner/repository pair. Extra path segments (tree/main, issues, ...)
    are ignored.

    Raises:
        InvalidReferenceException: If the reference is not a github.com repository URL.
    """
    if not reference or not isinstance(reference, str):
        raise InvalidReferenceException(str(reference), "Repository URL is required")

    try:
        parsed = urlparse(reference.strip())
        hostname = parsed.hostname
    except ValueError:
        raise InvalidReferenceException(reference)

    if parsed.scheme not in {"http", "https"} or hostname not in GITHUB_HOSTS:
        raise InvalidReferenceException(reference)

    path_parts = [part for part in parsed.path.split("/") if part]
    if len(path_parts) < 2:
        raise InvalidReferenceException(reference)

    owner = path_parts[0]
    repo = path_parts[1]
    if repo.endswith(".git"):
        repo = repo[: -len(".git")]

    if not owner or not repo:
        raise InvalidReferenceException(reference)

    return RepoReference(owner=owner, repo=repo)
