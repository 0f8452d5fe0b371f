class RepositoryError(Exception):
    """Base repository error."""


class RepositoryUnavailableError(RepositoryError):
    """Raised when the database is unavailable or not configured."""


class RepositoryNotFoundError(RepositoryError):
    """Raised when the requested entity does not exist."""


class RepositoryValidationError(RepositoryError):
    """Raised when input validation fails before persistence."""


class UnknownRegistryError(RepositoryValidationError):
    """Raised when a registry has no configured routing key."""


class BrokerUnavailableError(Exception):
    """Raised when the message broker cannot be reached or refuses a publish."""


class StorageError(Exception):
    """Base object storage error."""


class ObjectNotFoundError(StorageError):
    """Raised when the requested object key does not exist."""


class StorageUnavailableError(StorageError):
    """Raised on transient object storage failures."""


class InvalidJobMessageError(Exception):
    """Raised when a delivery body is not a valid job message."""


class InvalidScrapeOutputError(StorageError):
    """Raised when a stored scrape output does not decode to a package."""
