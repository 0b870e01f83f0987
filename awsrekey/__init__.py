"""
aws-rekey: rotate long-lived AWS access keys stored in a shared credentials file.

For every requested profile a new access key is created, written over the old one
in the credentials file, and only then is the old key deleted in IAM. A failure for
one profile is reported and the run moves on to the next.

Key features:
- Rotate several profiles in one run (``--profile a,b,c``)
- Old key is never deleted before the new key is saved
- Unsaved new keys are printed so they are never lost
- Profiles sealed with an SSH key stay sealed after rotation
"""

__version__ = "0.1.0"
__license__ = "MIT"

from .core import (
    CredentialPair,
    IamKeyService,
    create_session,
    get_aws_credentials_path,
    load_credentials,
    read_profile_credentials,
    save_credentials,
    set_profile_credentials,
)
from .errors import (
    CredentialReadError,
    IdentityLookupError,
    KeyCreationError,
    KeyDeletionError,
    RekeyError,
    SealingError,
    StoreLoadError,
    StoreLocateError,
    StoreWriteError,
)
from .rotation import (
    KeyRotator,
    RotationResult,
    RotationState,
    resolve_profiles,
)

__all__ = [
    # Rotation
    "KeyRotator",
    "RotationResult",
    "RotationState",
    "resolve_profiles",
    # Credentials file
    "CredentialPair",
    "get_aws_credentials_path",
    "load_credentials",
    "save_credentials",
    "read_profile_credentials",
    "set_profile_credentials",
    # AWS
    "IamKeyService",
    "create_session",
    # Errors
    "RekeyError",
    "StoreLocateError",
    "StoreLoadError",
    "CredentialReadError",
    "IdentityLookupError",
    "KeyCreationError",
    "StoreWriteError",
    "KeyDeletionError",
    "SealingError",
]
