"""
OpenPGP commit signing.

The signing secret holds one ASCII-armored private key under ``git.asc`` and,
for an encrypted key, its passphrase under ``passphrase``. The key is loaded
and unlocked once per cycle; signatures are detached and armored, as git
stores them in the commit's ``gpgsig`` header.
"""

from __future__ import annotations

import logging

import pgpy
from pgpy.errors import PGPDecryptionError, PGPError

from imgauto.core.errors import SecretNotFoundError, SigningKeyError
from imgauto.core.secrets import SecretStore
from imgauto.core.source.models import AutomationSpec

logger = logging.getLogger(__name__)

SIGNING_SECRET_KEY = "git.asc"
SIGNING_PASSPHRASE_KEY = "passphrase"


class SigningEntity:
    """A private key able to sign commits, unlocked for each signature."""

    def __init__(self, key: pgpy.PGPKey, passphrase: str | None = None):
        self.key = key
        self.passphrase = passphrase

    def __repr__(self) -> str:
        return f"SigningEntity(fingerprint={self.fingerprint!r})"

    @property
    def fingerprint(self) -> str:
        return str(self.key.fingerprint)

    def sign(self, payload: bytes) -> str:
        """Return an armored detached signature over payload."""
        try:
            if self.key.is_protected:
                with self.key.unlock(self.passphrase or ""):
                    signature = self.key.sign(payload)
            else:
                signature = self.key.sign(payload)
        except (PGPError, ValueError) as e:
            raise SigningKeyError(f"failed to sign commit: {e}") from e
        return str(signature)

    def verify(self, payload: bytes, signature: str) -> bool:
        """Return True if signature is a valid signature over payload by this key."""
        sig = pgpy.PGPSignature.from_blob(signature)
        return bool(self.key.pubkey.verify(payload, sig))


def load_signing_entity(armored: bytes, passphrase: str | None = None) -> SigningEntity:
    """
    Parse an armored key and check it can sign.

    Raises:
        SigningKeyError: If the data holds no key, more than one key, only a
            public key, or an encrypted key that the passphrase does not unlock.
    """
    try:
        key, others = pgpy.PGPKey.from_blob(armored)
    except (PGPError, ValueError, TypeError) as e:
        raise SigningKeyError(f"failed to read signing key: {e}") from e

    extra = [k for k in others.values() if k.is_primary and k.fingerprint != key.fingerprint]
    if extra:
        raise SigningKeyError(
            f"signing key secret must contain exactly one key, found {len(extra) + 1}"
        )
    if key.is_public:
        raise SigningKeyError("signing key secret contains a public key, a private key is required")

    if key.is_protected:
        if not passphrase:
            raise SigningKeyError("signing key is encrypted but no passphrase was provided")
        try:
            with key.unlock(passphrase):
                pass
        except PGPDecryptionError as e:
            raise SigningKeyError(f"failed to decrypt signing key: {e}") from e

    return SigningEntity(key=key, passphrase=passphrase)


def get_signing_entity(automation: AutomationSpec, secrets: SecretStore) -> SigningEntity | None:
    """
    Load the automation's signing key, or None if signing is not configured.

    The secret is looked up in the automation's namespace.
    """
    git_spec = automation.git
    if git_spec is None or git_spec.commit.signing_key is None:
        return None

    name = git_spec.commit.signing_key.secret_ref.name
    try:
        data = secrets.get(name, automation.namespace)
    except SecretNotFoundError as e:
        raise SigningKeyError(
            f"could not find signing key secret '{automation.namespace}/{name}'"
        ) from e

    armored = data.get(SIGNING_SECRET_KEY)
    if not armored:
        raise SigningKeyError(
            f"signing key secret '{automation.namespace}/{name}' has no '{SIGNING_SECRET_KEY}' key"
        )
    passphrase = data.get(SIGNING_PASSPHRASE_KEY)
    entity = load_signing_entity(armored, passphrase.decode() if passphrase else None)
    logger.debug("Loaded signing key %s for %s", entity.fingerprint, automation.key)
    return entity
