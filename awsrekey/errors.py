"""
Exceptions raised by aws-rekey.

Store location and load failures are fatal for the whole run. Everything else is
scoped to the profile being rotated.
"""


class RekeyError(Exception):
    """Base class for all aws-rekey errors."""

    def __init__(self, message, code=None):
        super().__init__(message)
        self.code = code


class StoreLocateError(RekeyError):
    """No credentials file path could be derived from the environment."""


class StoreLoadError(RekeyError):
    """The credentials file is missing, unreadable or malformed."""


class CredentialReadError(RekeyError):
    """A profile has no usable access key pair on file."""


class IdentityLookupError(RekeyError):
    """The caller identity for a profile could not be resolved."""


class KeyCreationError(RekeyError):
    """IAM refused to create a new access key."""


class StoreWriteError(RekeyError):
    """The credentials file could not be rewritten."""


class KeyDeletionError(RekeyError):
    """IAM refused to delete the retired access key."""


class SealingError(RekeyError):
    """A sealed credential could not be opened, or a new one sealed."""


def aws_error_code(exc):
    """Return the AWS error code carried by a botocore ClientError, if any."""
    response = getattr(exc, "response", None) or {}
    return response.get("Error", {}).get("Code")
