"""
Access key rotation for profiles in a shared credentials file.

For each profile the order is fixed: read the current pair, resolve the IAM user,
create a new key, record it in the credentials file, and only then delete the old key.
Until the new key is on disk the old key stays valid, so no failure can leave a
profile without a working recorded key.
"""

import enum
import logging
import sys
from collections import Counter

from .core import (
    ACCESS_KEY_ID,
    SECRET_ACCESS_KEY,
    default_service_factory,
    profile_is_sealed,
    read_profile_credentials,
    save_credentials,
    set_profile_credentials,
)
from .errors import RekeyError, SealingError, StoreWriteError
from .sealing import get_ssh_key_path

DEFAULT_PROFILE = "default"
PROFILE_SEPARATOR = ","


def resolve_profiles(raw=DEFAULT_PROFILE):
    """
    Turn a comma separated profile argument into the list of profiles to rotate.

    Leading and trailing commas are dropped, order and duplicates are kept:

        >>> resolve_profiles("a,b,")
        ['a', 'b']
    """
    return raw.strip(PROFILE_SEPARATOR).split(PROFILE_SEPARATOR)


def find_duplicates(profiles):
    """Return profiles listed more than once, in first-seen order."""
    counts = Counter(profiles)
    return [name for name in counts if counts[name] > 1]


class RotationState(enum.Enum):
    """
    Rotation progress: START -> IDENTITY_RESOLVED -> KEY_CREATED -> PERSISTED ->
    OLD_KEY_DELETED. KEY_CREATED may end in PERSIST_FAILED; any step may end in FAILED.
    """

    START = "start"
    IDENTITY_RESOLVED = "identity-resolved"
    KEY_CREATED = "key-created"
    PERSISTED = "persisted"
    OLD_KEY_DELETED = "old-key-deleted"
    PERSIST_FAILED = "persist-failed"
    FAILED = "failed"


class RotationResult:
    """Outcome of rotating one profile."""

    def __init__(self, profile):
        self.profile = profile
        self.state = RotationState.START
        self.username = None
        self.old_key_id = None
        self.new_key_id = None
        self.error = None
        # Last state reached before FAILED
        self.failed_after = None

    @property
    def succeeded(self):
        return self.state is RotationState.OLD_KEY_DELETED

    @property
    def degraded(self):
        """New key exists but the old one is still active."""
        return self.state is RotationState.PERSIST_FAILED or (
            self.state is RotationState.FAILED
            and self.failed_after is RotationState.PERSISTED
        )

    def fail(self, error):
        self.failed_after = self.state
        self.state = RotationState.FAILED
        self.error = error

    def __repr__(self):
        return f"RotationResult(profile={self.profile!r}, state={self.state.value})"


class KeyRotator:
    """
    Rotates access keys for profiles of one loaded credentials file.

    Args:
        creds_file: Path the credentials file is rewritten to after each profile
        config: The loaded ConfigParser, shared by every rotation in the run
        logger: Logger receiving progress and per-profile failures
        out: Stream for operator output (recovery of unsaved keys)
        service_factory: Callable ``(CredentialPair, region) -> IamKeyService``
        ssh_key_path: Key used to open and re-seal sealed profiles
        region: AWS region for the STS and IAM clients
    """

    def __init__(
        self,
        creds_file,
        config,
        logger=None,
        out=None,
        service_factory=None,
        ssh_key_path=None,
        region=None,
    ):
        self.creds_file = creds_file
        self.config = config
        self.logger = logger or logging.getLogger(__name__)
        self.out = out or sys.stdout
        self.service_factory = service_factory or default_service_factory
        self.ssh_key_path = ssh_key_path or get_ssh_key_path()
        self.region = region

    def rotate_many(self, profiles):
        """Rotate profiles one after another; returns their results in order."""
        return [self.rotate(profile) for profile in profiles]

    def rotate(self, profile):
        """
        Rotate the access key of a single profile.

        Profile-local failures are logged and recorded on the result, never raised.
        """
        result = RotationResult(profile)
        try:
            self._rotate(profile, result)
        except RekeyError as e:
            self.logger.error(
                "Profile '%s': rotation failed at %s: %s", profile, result.state.value, e
            )
            result.fail(e)
        return result

    def _rotate(self, profile, result):
        old_credentials = read_profile_credentials(self.config, profile, self.ssh_key_path)
        result.old_key_id = old_credentials.access_key_id
        sealed = profile_is_sealed(self.config, profile)

        service = self.service_factory(old_credentials, self.region)

        username = service.get_current_identity()
        result.username = username
        result.state = RotationState.IDENTITY_RESOLVED
        self.logger.info("Profile '%s': IAM user is '%s'", profile, username)

        new_credentials = service.create_access_key(username)
        result.new_key_id = new_credentials.access_key_id
        result.state = RotationState.KEY_CREATED
        self.logger.info(
            "Profile '%s': created access key %s", profile, mask_key_id(result.new_key_id)
        )

        if not self._persist(profile, old_credentials, new_credentials, sealed):
            result.state = RotationState.PERSIST_FAILED
            return
        result.state = RotationState.PERSISTED

        service.delete_access_key(username, old_credentials.access_key_id)
        result.state = RotationState.OLD_KEY_DELETED
        self.logger.info(
            "Profile '%s': deleted old access key %s",
            profile,
            mask_key_id(old_credentials.access_key_id),
        )

    def _persist(self, profile, old_credentials, new_credentials, sealed):
        """
        Record the new pair and rewrite the credentials file.

        Returns False when the file could not be written. In that case the new
        pair is printed for the operator and the section is put back to the old
        pair, which is still active.
        """
        section = self.config[profile]
        previous = {key: section[key] for key in (ACCESS_KEY_ID, SECRET_ACCESS_KEY)}
        try:
            set_profile_credentials(
                self.config,
                profile,
                new_credentials,
                seal_with=self.ssh_key_path if sealed else None,
            )
            save_credentials(self.creds_file, self.config)
        except (StoreWriteError, SealingError) as e:
            section.update(previous)
            self.logger.error(
                "Profile '%s': could not save new access key, old key %s left active: %s",
                profile,
                mask_key_id(old_credentials.access_key_id),
                e,
            )
            self._surface_unsaved_key(profile, new_credentials)
            return False

        self.logger.info("Profile '%s': new access key saved to %s", profile, self.creds_file)
        return True

    def _surface_unsaved_key(self, profile, credentials):
        print(f"New access key for profile '{profile}' could NOT be saved:", file=self.out)
        print(f"  aws_access_key_id = {credentials.access_key_id}", file=self.out)
        print(f"  aws_secret_access_key = {credentials.secret_access_key}", file=self.out)
        print(
            "Store it manually, then delete the old key in IAM.",
            file=self.out,
        )


def mask_key_id(access_key_id):
    """Shorten an access key id for log output."""
    if not access_key_id:
        return "<none>"
    return f"{access_key_id[:10]}***"
