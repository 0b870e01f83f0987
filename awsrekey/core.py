"""
Credentials file handling and the IAM access key service used by aws-rekey.
"""

import configparser
import logging
import os
import tempfile
from collections import namedtuple
from pathlib import Path

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from .errors import (
    CredentialReadError,
    IdentityLookupError,
    KeyCreationError,
    KeyDeletionError,
    StoreLoadError,
    StoreLocateError,
    StoreWriteError,
    aws_error_code,
)
from .sealing import get_ssh_key_path, is_sealed, seal_value, unseal_value

logger = logging.getLogger(__name__)

ACCESS_KEY_ID = "aws_access_key_id"
SECRET_ACCESS_KEY = "aws_secret_access_key"

DEFAULT_REGION = "us-east-1"

CredentialPair = namedtuple("CredentialPair", ["access_key_id", "secret_access_key"])


def get_aws_credentials_path(environ=None):
    """
    Locate the shared credentials file.

    Lookup order: ``AWS_SHARED_CREDENTIALS_FILE``, then ``$HOME/.aws/credentials``
    (*nix), then ``$USERPROFILE/.aws/credentials`` (Windows).

    Raises:
        StoreLocateError: If none of the variables are set
    """
    environ = os.environ if environ is None else environ

    override = environ.get("AWS_SHARED_CREDENTIALS_FILE")
    if override:
        return override

    home_dir = environ.get("HOME") or environ.get("USERPROFILE")
    if not home_dir:
        raise StoreLocateError(
            "Unable to find AWS shared credentials file: "
            "set AWS_SHARED_CREDENTIALS_FILE or HOME"
        )
    return os.path.join(home_dir, ".aws", "credentials")


def new_credentials_config():
    """Create an empty parser configured the way credentials files are read."""
    config = configparser.ConfigParser(interpolation=None)
    # Preserve case sensitivity for AWS credentials
    config.optionxform = str
    return config


def load_credentials(creds_file):
    """
    Read the AWS credentials file.

    Args:
        creds_file: Path to credentials file

    Returns:
        ConfigParser object with credentials

    Raises:
        StoreLoadError: If the file does not exist or cannot be parsed
    """
    if not os.path.isfile(creds_file):
        raise StoreLoadError(f"Credentials file not found: {creds_file}")

    config = new_credentials_config()
    try:
        with open(creds_file, "r") as f:
            config.read_file(f, source=creds_file)
    except (OSError, UnicodeDecodeError, configparser.Error) as e:
        raise StoreLoadError(f"Cannot load credentials file {creds_file}: {e}")

    logger.debug("Loaded %d profile(s) from %s", len(config.sections()), creds_file)
    return config


def save_credentials(creds_file, config):
    """
    Rewrite the whole credentials file with owner-only permissions.

    The new contents go to a temporary file in the same directory which then
    replaces the original, so a failed write leaves the old file intact.

    Raises:
        StoreWriteError: If the directory or file cannot be written
    """
    tmp_path = None
    try:
        directory = Path(creds_file).parent
        directory.mkdir(parents=True, exist_ok=True)
        # mkstemp creates the file 0600, secrets are never world-readable
        fd, tmp_path = tempfile.mkstemp(dir=directory, prefix=".credentials.", suffix=".tmp")
        try:
            f = os.fdopen(fd, "w")
        except Exception:
            os.close(fd)
            raise
        with f:
            config.write(f)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_path, creds_file)
    except OSError as e:
        if tmp_path is not None and os.path.exists(tmp_path):
            os.unlink(tmp_path)
        raise StoreWriteError(f"Cannot write credentials file {creds_file}: {e}")

    logger.debug("Wrote credentials file %s", creds_file)


def read_profile_credentials(config, profile_name, ssh_key_path=None):
    """
    Get the plaintext access key pair stored for a profile.

    Sealed values are opened with ``ssh_key_path`` (or the default SSH key).

    Raises:
        CredentialReadError: If the profile or either half of the pair is missing
        SealingError: If a sealed value cannot be opened
    """
    if not config.has_section(profile_name):
        raise CredentialReadError(f"Profile '{profile_name}' not found")

    section = config[profile_name]
    access_key = section.get(ACCESS_KEY_ID)
    secret_key = section.get(SECRET_ACCESS_KEY)
    if not access_key or not secret_key:
        raise CredentialReadError(f"Profile '{profile_name}' missing credentials")

    if is_sealed(access_key) or is_sealed(secret_key):
        key_path = ssh_key_path or get_ssh_key_path()
        access_key = unseal_value(access_key, key_path)
        secret_key = unseal_value(secret_key, key_path)

    return CredentialPair(access_key, secret_key)


def profile_is_sealed(config, profile_name):
    """Check whether a profile keeps its secret sealed at rest."""
    if not config.has_section(profile_name):
        return False
    return is_sealed(config[profile_name].get(SECRET_ACCESS_KEY))


def set_profile_credentials(config, profile_name, credentials, seal_with=None):
    """
    Store an access key pair in a profile section (in memory only).

    Args:
        config: ConfigParser holding the credentials file
        profile_name: Section to update, created if missing
        credentials: CredentialPair to store
        seal_with: SSH key path; when given, both values are sealed
    """
    access_key, secret_key = credentials
    if seal_with:
        access_key = seal_value(access_key, seal_with)
        secret_key = seal_value(secret_key, seal_with)

    if not config.has_section(profile_name):
        config.add_section(profile_name)
    config[profile_name][ACCESS_KEY_ID] = access_key
    config[profile_name][SECRET_ACCESS_KEY] = secret_key


def create_session(credentials, region=None):
    """
    Create a boto3 session bound to exactly one access key pair.

    The default credential chain (env vars, shared files, instance roles) is never
    consulted, so calls always act as the profile being rotated.
    """
    return boto3.Session(
        aws_access_key_id=credentials.access_key_id,
        aws_secret_access_key=credentials.secret_access_key,
        region_name=region or DEFAULT_REGION,
    )


def username_from_arn(arn):
    """
    Extract the IAM username from a caller identity ARN.

    Raises:
        IdentityLookupError: If the ARN does not belong to an IAM user
    """
    # IAM User: arn:aws:iam::ACCOUNT_ID:user/USERNAME (may include a path)
    if ":user/" in arn:
        return arn.split(":user/", 1)[1].rsplit("/", 1)[-1]

    if ":assumed-role/" in arn:
        kind = "an assumed role"
    elif ":federated-user/" in arn:
        kind = "federated credentials"
    elif arn.endswith(":root"):
        kind = "root account credentials"
    else:
        kind = "an unrecognized identity"
    raise IdentityLookupError(
        f"Credentials belong to {kind}, not an IAM user with access keys. ARN: {arn}"
    )


class IamKeyService:
    """
    The remote side of a rotation: who am I, create a key, delete a key.

    Every call goes through the session the service was built with.
    """

    def __init__(self, session):
        self.session = session
        self._sts = None
        self._iam = None

    @property
    def sts(self):
        if self._sts is None:
            self._sts = self.session.client("sts")
        return self._sts

    @property
    def iam(self):
        if self._iam is None:
            self._iam = self.session.client("iam")
        return self._iam

    def get_current_identity(self):
        """
        Get the IAM username owning the session's access key.

        Raises:
            IdentityLookupError: On transport or auth failure, or a non-user identity
        """
        try:
            response = self.sts.get_caller_identity()
        except ClientError as e:
            code = aws_error_code(e)
            if code == "InvalidClientTokenId":
                raise IdentityLookupError(
                    "Access key is invalid or has been deleted (InvalidClientTokenId)",
                    code=code,
                )
            raise IdentityLookupError(f"Failed to get caller identity: {e}", code=code)
        except BotoCoreError as e:
            raise IdentityLookupError(f"AWS connection failed: {e}")

        return username_from_arn(response["Arn"])

    def create_access_key(self, username):
        """
        Create a new access key for an IAM user.

        Raises:
            KeyCreationError: If IAM rejects the request (e.g. LimitExceeded)
        """
        try:
            response = self.iam.create_access_key(UserName=username)
        except ClientError as e:
            code = aws_error_code(e)
            if code == "LimitExceeded":
                raise KeyCreationError(
                    f"User '{username}' already has the maximum of two access keys; "
                    f"delete the unused one first",
                    code=code,
                )
            raise KeyCreationError(
                f"Failed to create access key for user '{username}': {e}", code=code
            )
        except BotoCoreError as e:
            raise KeyCreationError(f"AWS connection failed: {e}")

        access_key = response["AccessKey"]
        return CredentialPair(access_key["AccessKeyId"], access_key["SecretAccessKey"])

    def delete_access_key(self, username, access_key_id):
        """
        Delete an access key of an IAM user.

        Raises:
            KeyDeletionError: If IAM rejects the request
        """
        try:
            self.iam.delete_access_key(UserName=username, AccessKeyId=access_key_id)
        except ClientError as e:
            raise KeyDeletionError(
                f"Failed to delete access key {access_key_id} of user '{username}': {e}",
                code=aws_error_code(e),
            )
        except BotoCoreError as e:
            raise KeyDeletionError(f"AWS connection failed: {e}")


def default_service_factory(credentials, region=None):
    """Build an IamKeyService scoped to one profile's credentials."""
    return IamKeyService(create_session(credentials, region=region))
