class AgentSkanException(Exception):
    """Base exception for all scanner-related errors."""
    pass

class InvalidReferenceException(AgentSkanException):
    """Raised when a repository reference cannot be resolved into owner/repo."""
    def __init__(self, reference: str, message: str = "Invalid GitHub URL. Please provide a valid GitHub repository URL."):
        self.reference = reference
        super().__init__(message)

class UpstreamException(AgentSkanException):
    """Raised when the metadata collaborator fails (network, malformed response, ...)."""
    pass

class UpstreamNotFoundException(UpstreamException):
    """Raised when GitHub reports that the repository does not exist."""
    def __init__(self, owner: str, repo: str, message: str = "Repository not found"):
        self.owner = owner
        self.repo = repo
        super().__init__(message)

class RateLimitExceededException(UpstreamException):
    """Raised when the GitHub REST rate limit is hit."""
    def __init__(self, reset_at: str, message: str = "GitHub API rate limit exceeded."):
        self.reset_at = reset_at
        super().__init__(f"{message} Resets at: {reset_at}")

class FlagAnalysisUnavailableException(AgentSkanException):
    """Raised when README analysis cannot be performed. Never surfaced to callers."""
    pass

class PersistenceUnavailableException(AgentSkanException):
    """Raised by ledger stores when the backend is unreachable. Never surfaced to callers."""
    pass
