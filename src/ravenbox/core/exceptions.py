"""
Exceptions for RavenBox
Everything raised on purpose derives from RavenBoxError so the CLI has one catch point
"""


class RavenBoxError(Exception):
    # general container for errors
    pass


class KeyDerivationError(RavenBoxError):
    # raised on a malformed salt or out-of-range KDF parameters
    pass


class AuthError(RavenBoxError):
    # raised when a chunk tag does not verify
    # (tampering, corruption and wrong password are deliberately indistinguishable)
    pass


class FormatError(RavenBoxError):
    # raised on bad magic, unsupported version/algorithm or a header out of bounds
    pass


class PasswordRequiredError(RavenBoxError):
    # raised when an encrypted container is opened without a password
    pass


class StorageError(RavenBoxError):
    # raised if the storage backend fails in some way
    pass


class ObjectNotFoundError(StorageError):
    # raised if a key does not exist in the backend
    pass


class InvalidKeyError(StorageError):
    # raised when an object key is empty or escapes the storage root
    pass


class ConfigError(RavenBoxError):
    # raised when the configuration file is missing or incomplete
    pass
