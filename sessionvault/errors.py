class VaultError(Exception):
    """Base class for sessionvault errors."""


# Loading
class DataNotAvailable(VaultError):
    """Bundle could not be read at all."""


class InvalidDataFormat(VaultError):
    """Header or envelope failed to parse, or the format version is unknown."""


class CompressionNotSupported(VaultError):
    """Unknown codec or corrupt compressed stream."""


# Content
class DecryptionFailed(VaultError):
    """Key missing or content failed authentication."""


class ChecksumMismatch(DecryptionFailed):
    pass


# Search
class RealDataFailed(VaultError):
    """Real data was mandatory but the search could not produce results."""


class SessionNotFound(VaultError):
    pass


# Build / configuration
class KeyConfigError(VaultError):
    """Key absent or not exactly 32 bytes."""


class BuildError(VaultError):
    pass
