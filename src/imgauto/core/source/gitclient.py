"""
Git working copy operations for one cycle.

The client drives the ``git`` CLI through GitPython. The working copy is
initialised empty and populated with explicit fetches so every network call
can be bounded by the remaining cycle deadline (GitPython's
``kill_after_timeout``).

Credentials never touch the working copy or the remote URL: HTTP auth and
proxy settings are injected as ``GIT_CONFIG_*`` environment entries, SSH
keys are written to a private temporary directory that close() removes.
"""

from __future__ import annotations

import base64
import logging
import os
import shutil
import stat
import tempfile
import time
from datetime import datetime
from io import BytesIO
from pathlib import Path

from cryptography.hazmat.primitives import serialization
from git import Actor, GitCommandError, Repo
from git.objects.commit import Commit as GitCommit
from gitdb import IStream
from pydantic import BaseModel, ConfigDict

from imgauto.core.auth.models import AuthOptions, TransportKind, redact_url
from imgauto.core.errors import (
    AuthenticationError,
    BranchNotFoundError,
    GitOperationError,
    GitTimeoutError,
)
from imgauto.core.signing import SigningEntity
from imgauto.core.source.config import ClientOptions
from imgauto.core.source.models import GitReference
from imgauto.core.source.semver import select_tag

logger = logging.getLogger(__name__)

REMOTE_NAME = "origin"
HEADS_PREFIX = "refs/heads/"
TAGS_PREFIX = "refs/tags/"


class Signature(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    email: str
    when: datetime


class Commit(BaseModel):
    """
    A commit checked out from the remote.

    A non-concrete commit is the sentinel returned when the remote tip still
    matches the last observed commit: it carries only hash and reference,
    and nothing was downloaded.
    """

    model_config = ConfigDict(frozen=True)

    hash: str
    reference: str
    message: str = ""
    author: Signature | None = None
    concrete: bool = True

    @classmethod
    def non_concrete(cls, hash: str, reference: str) -> Commit:
        return cls(hash=hash, reference=reference, concrete=False)

    def short(self) -> str:
        return self.hash[:7]


class CloneConfig(BaseModel):
    """What to check out. Precedence: tag > semver > commit > branch > remote HEAD."""

    model_config = ConfigDict(frozen=True)

    branch: str = ""
    tag: str = ""
    semver: str = ""
    commit: str = ""
    shallow_clone: bool = False
    last_observed_commit: str = ""

    @classmethod
    def from_reference(cls, ref: GitReference | None, **kwargs) -> CloneConfig:
        if ref is None:
            return cls(**kwargs)
        return cls(branch=ref.branch, tag=ref.tag, semver=ref.semver, commit=ref.commit, **kwargs)


class Deadline:
    """Shared time budget for the network calls of one operation."""

    def __init__(self, timeout: float, operation: str):
        self.timeout = timeout
        self.operation = operation
        self._expires = time.monotonic() + timeout

    def remaining(self) -> float:
        left = self._expires - time.monotonic()
        if left <= 0:
            raise GitTimeoutError(f"{self.operation} timed out after {self.timeout}s")
        return left


def _decrypt_identity(identity: bytes, passphrase: str) -> bytes:
    """Re-encode a passphrase-protected SSH key without encryption for ssh -i."""
    try:
        if b"OPENSSH PRIVATE KEY" in identity:
            key = serialization.load_ssh_private_key(identity, passphrase.encode())
        else:
            key = serialization.load_pem_private_key(identity, passphrase.encode())
    except (ValueError, TypeError) as e:
        raise AuthenticationError(f"failed to decrypt SSH identity: {e}") from e
    return key.private_bytes(
        serialization.Encoding.PEM,
        serialization.PrivateFormat.OpenSSH,
        serialization.NoEncryption(),
    )


class GitClient:
    """
    Git operations on an ephemeral working copy.

    Example:
        >>> with GitClient(workdir, auth, ClientOptions()) as client:
        ...     commit = client.clone(url, CloneConfig(branch="main"), timeout=60)
        ...     client.switch_branch("auto-updates", create_missing=True)
    """

    def __init__(self, workdir: Path, auth: AuthOptions, options: ClientOptions):
        self.workdir = Path(workdir)
        self.auth = auth
        self.options = options
        self.repo: Repo | None = None
        self._creds_dir: str | None = None
        self._env: dict[str, str] | None = None

    def __enter__(self) -> GitClient:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def close(self) -> None:
        """Remove temporary credential files."""
        if self._creds_dir is not None:
            shutil.rmtree(self._creds_dir, ignore_errors=True)
            self._creds_dir = None

    # ------------------------------------------------------------------
    # Environment
    # ------------------------------------------------------------------

    def _write_secret_file(self, name: str, data: bytes) -> str:
        if self._creds_dir is None:
            self._creds_dir = tempfile.mkdtemp(prefix="imgauto-creds-")
        path = os.path.join(self._creds_dir, name)
        with open(path, "wb") as f:
            f.write(data)
        os.chmod(path, stat.S_IRUSR | stat.S_IWUSR)
        return path

    def _http_config(self) -> list[tuple[str, str]]:
        auth = self.auth
        entries: list[tuple[str, str]] = []
        has_secret = bool(auth.password or auth.bearer_token)
        if (
            has_secret
            and auth.transport is TransportKind.HTTP
            and not self.options.insecure_http_credentials
        ):
            raise AuthenticationError("refusing to send credentials over plain HTTP")

        if auth.bearer_token:
            entries.append(("http.extraHeader", f"Authorization: Bearer {auth.bearer_token}"))
        elif auth.username and auth.password:
            token = base64.b64encode(f"{auth.username}:{auth.password}".encode()).decode()
            entries.append(("http.extraHeader", f"Authorization: Basic {token}"))

        if auth.ca_file:
            entries.append(("http.sslCAInfo", self._write_secret_file("ca.crt", auth.ca_file)))
        if self.options.proxy is not None:
            entries.append(("http.proxy", self.options.proxy.url))
        return entries

    def _ssh_command(self) -> str | None:
        auth = self.auth
        if not auth.identity and not auth.known_hosts:
            return None
        parts = ["ssh", "-o", "BatchMode=yes"]
        if auth.username:
            parts += ["-o", f"User={auth.username}"]
        if auth.identity:
            identity = auth.identity
            if auth.password:
                identity = _decrypt_identity(identity, auth.password)
            parts += ["-i", self._write_secret_file("identity", identity), "-o", "IdentitiesOnly=yes"]
        if auth.known_hosts:
            known_hosts = self._write_secret_file("known_hosts", auth.known_hosts)
            parts += ["-o", f"UserKnownHostsFile={known_hosts}", "-o", "StrictHostKeyChecking=yes"]
        return " ".join(parts)

    def _environment(self) -> dict[str, str]:
        if self._env is not None:
            return self._env
        env = {"GIT_TERMINAL_PROMPT": "0"}
        if self.auth.transport in (TransportKind.HTTP, TransportKind.HTTPS):
            entries = self._http_config()
            env["GIT_CONFIG_COUNT"] = str(len(entries))
            for i, (key, value) in enumerate(entries):
                env[f"GIT_CONFIG_KEY_{i}"] = key
                env[f"GIT_CONFIG_VALUE_{i}"] = value
        elif self.auth.transport is TransportKind.SSH:
            command = self._ssh_command()
            if command:
                env["GIT_SSH_COMMAND"] = command
        self._env = env
        return env

    # ------------------------------------------------------------------
    # Command helpers
    # ------------------------------------------------------------------

    def _require_repo(self) -> Repo:
        if self.repo is None:
            raise GitOperationError("working copy has not been cloned")
        return self.repo

    def _git(self, *args: str, deadline: Deadline | None = None) -> str:
        repo = self._require_repo()
        command = ["git", *args]
        timeout = deadline.remaining() if deadline is not None else None
        logger.debug("Running %s", " ".join(command[:3]))
        try:
            return repo.git.execute(command, kill_after_timeout=timeout)
        except GitCommandError as e:
            stderr = str(e.stderr or "").strip()
            if deadline is not None and "did not complete in" in stderr:
                raise GitTimeoutError(
                    f"{deadline.operation} timed out after {deadline.timeout}s",
                    command=command,
                    stderr=stderr,
                ) from e
            raise GitOperationError(
                f"git {args[0]} failed: {stderr or e}", command=command, stderr=stderr
            ) from e

    def _ls_remote(self, *patterns: str, deadline: Deadline) -> dict[str, str]:
        """Map remote ref names to hashes; peeled tags resolve to their commit."""
        output = self._git("ls-remote", REMOTE_NAME, *patterns, deadline=deadline)
        refs: dict[str, str] = {}
        for line in output.splitlines():
            if "\t" not in line:
                continue
            sha, ref = line.split("\t", 1)
            if ref.endswith("^{}"):
                refs[ref[:-3]] = sha
            else:
                refs.setdefault(ref, sha)
        return refs

    def _ref_exists(self, ref: str) -> bool:
        try:
            self._git("rev-parse", "--verify", "--quiet", f"{ref}^{{commit}}")
        except GitOperationError:
            return False
        return True

    def _all_heads_refspec(self) -> str:
        return f"+{HEADS_PREFIX}*:refs/remotes/{REMOTE_NAME}/*"

    def _fetch(self, refspecs: list[str], depth: int | None, deadline: Deadline) -> None:
        args = ["fetch", "--no-tags", REMOTE_NAME, *refspecs]
        if depth:
            args.insert(1, f"--depth={depth}")
        self._git(*args, deadline=deadline)

    def _head_commit(self, reference: str) -> Commit:
        head = self._require_repo().head.commit
        return Commit(
            hash=head.hexsha,
            reference=reference,
            message=head.message,
            author=Signature(
                name=head.author.name or "",
                email=head.author.email or "",
                when=head.authored_datetime,
            ),
        )

    # ------------------------------------------------------------------
    # Clone
    # ------------------------------------------------------------------

    def clone(self, url: str, cfg: CloneConfig, timeout: float) -> Commit:
        """
        Populate the working copy from url.

        Returns the checked-out commit, or a non-concrete commit when the
        remote tip equals ``cfg.last_observed_commit``.

        Raises:
            GitTimeoutError: If the clone exceeds timeout.
            GitOperationError: If a ref cannot be fetched or checked out.
        """
        deadline = Deadline(timeout, f"clone of {redact_url(url)}")
        self.workdir.mkdir(parents=True, exist_ok=True)
        self.repo = Repo.init(self.workdir)
        self.repo.git.update_environment(**self._environment())
        self.repo.create_remote(REMOTE_NAME, url)

        if cfg.tag:
            commit = self._clone_tag(cfg.tag, cfg, deadline)
        elif cfg.semver:
            commit = self._clone_semver(cfg.semver, cfg, deadline)
        elif cfg.commit:
            commit = self._clone_commit(cfg.commit, cfg.branch, deadline)
        else:
            commit = self._clone_branch(cfg.branch, cfg, deadline)

        if commit.concrete:
            logger.info("Cloned %s at %s (%s)", redact_url(url), commit.reference, commit.short())
        else:
            logger.info("Remote %s unchanged at %s", redact_url(url), commit.short())
        return commit

    def _default_branch(self, deadline: Deadline) -> str:
        output = self._git("ls-remote", "--symref", REMOTE_NAME, "HEAD", deadline=deadline)
        for line in output.splitlines():
            if line.startswith("ref: ") and line.endswith("\tHEAD"):
                ref = line[len("ref: "):].split("\t", 1)[0]
                return ref[len(HEADS_PREFIX):]
        raise GitOperationError("unable to determine the remote default branch")

    def _clone_branch(self, branch: str, cfg: CloneConfig, deadline: Deadline) -> Commit:
        if not branch:
            branch = self._default_branch(deadline)
        ref = HEADS_PREFIX + branch

        if cfg.last_observed_commit:
            tip = self._ls_remote(ref, deadline=deadline).get(ref)
            if tip == cfg.last_observed_commit:
                return Commit.non_concrete(tip, ref)

        if self.options.single_branch is False:
            refspecs = [self._all_heads_refspec()]
        else:
            refspecs = [f"+{ref}:refs/remotes/{REMOTE_NAME}/{branch}"]
        self._fetch(refspecs, 1 if cfg.shallow_clone else None, deadline)

        if not self._ref_exists(f"refs/remotes/{REMOTE_NAME}/{branch}"):
            raise GitOperationError(f"unable to clone: branch '{branch}' not found on remote")
        self._git("checkout", "-B", branch, f"refs/remotes/{REMOTE_NAME}/{branch}")
        return self._head_commit(ref)

    def _clone_tag(self, tag: str, cfg: CloneConfig, deadline: Deadline) -> Commit:
        ref = TAGS_PREFIX + tag
        if cfg.last_observed_commit:
            tip = self._ls_remote(ref, deadline=deadline).get(ref)
            if tip == cfg.last_observed_commit:
                return Commit.non_concrete(tip, ref)

        refspecs = [f"+{ref}:{ref}"]
        if self.options.single_branch is False:
            # the push branch may be switched to after checking out the tag
            refspecs.append(self._all_heads_refspec())
        self._fetch(refspecs, 1 if cfg.shallow_clone else None, deadline)
        self._git("checkout", "--detach", f"{ref}^{{commit}}")
        return self._head_commit(ref)

    def _clone_semver(self, expression: str, cfg: CloneConfig, deadline: Deadline) -> Commit:
        refs = self._ls_remote("--tags", deadline=deadline)
        tags = [ref[len(TAGS_PREFIX):] for ref in refs if ref.startswith(TAGS_PREFIX)]
        tag = select_tag(tags, expression)
        if tag is None:
            raise GitOperationError(f"no tag on the remote matches semver range '{expression}'")
        logger.debug("Semver range %s selected tag %s", expression, tag)
        return self._clone_tag(tag, cfg, deadline)

    def _clone_commit(self, sha: str, branch: str, deadline: Deadline) -> Commit:
        # full history: the commit need not be a branch tip
        if branch and self.options.single_branch is not False:
            refspecs = [f"+{HEADS_PREFIX}{branch}:refs/remotes/{REMOTE_NAME}/{branch}"]
        else:
            refspecs = [self._all_heads_refspec()]
        self._fetch(refspecs, None, deadline)
        if not self._ref_exists(sha):
            raise GitOperationError(f"unable to clone: commit '{sha}' not found")
        if branch:
            self._git("checkout", "-B", branch, sha)
            return self._head_commit(HEADS_PREFIX + branch)
        self._git("checkout", "--detach", sha)
        return self._head_commit(sha)

    # ------------------------------------------------------------------
    # Branch, commit, push
    # ------------------------------------------------------------------

    def switch_branch(self, branch: str, create_missing: bool = True) -> None:
        """
        Check out branch from the already-fetched references.

        Raises:
            BranchNotFoundError: If branch was not fetched and create_missing is False.
        """
        remote_ref = f"refs/remotes/{REMOTE_NAME}/{branch}"
        if self._ref_exists(remote_ref):
            self._git("checkout", "-B", branch, remote_ref)
            logger.info("Switched to branch %s from %s", branch, remote_ref)
        elif self._ref_exists(HEADS_PREFIX + branch):
            self._git("checkout", branch)
        elif create_missing:
            self._git("checkout", "-B", branch)
            logger.info("Created branch %s from HEAD", branch)
        else:
            raise BranchNotFoundError(f"branch '{branch}' not found in fetched references")

    def commit(
        self,
        author_name: str,
        author_email: str,
        message: str,
        when: datetime,
        signer: SigningEntity | None = None,
    ) -> str:
        """
        Stage all changes and commit them on HEAD.

        The commit is signed over its encoding without the ``gpgsig``
        header when a signer is given.

        Returns:
            The new commit hash, or "" if nothing was staged.
        """
        repo = self._require_repo()
        self._git("add", "--all")
        if not self._git("diff", "--cached", "--name-only").strip():
            logger.info("No staged changes, skipping commit")
            return ""

        tree = repo.tree(self._git("write-tree").strip())
        actor = Actor(author_name, author_email)
        timestamp = int(when.timestamp())
        new_commit = GitCommit(
            repo,
            GitCommit.NULL_BIN_SHA,
            tree,
            actor,
            timestamp,
            0,
            actor,
            timestamp,
            0,
            message,
            [repo.head.commit],
            GitCommit.default_encoding,
        )
        new_commit.gpgsig = None

        stream = BytesIO()
        new_commit._serialize(stream)
        if signer is not None:
            new_commit.gpgsig = signer.sign(stream.getvalue())
            stream = BytesIO()
            new_commit._serialize(stream)

        data = stream.getvalue()
        istream = repo.odb.store(IStream(GitCommit.type, len(data), BytesIO(data)))
        stored = GitCommit(repo, istream.binsha)
        repo.head.set_commit(stored, logmsg=f"commit: {message.splitlines()[0] if message else ''}")
        logger.info("Created commit %s", stored.hexsha[:7])
        return stored.hexsha

    def push(
        self,
        branch: str,
        timeout: float,
        *,
        refspec: str = "",
        force: bool = False,
        options: dict[str, str] | None = None,
    ) -> None:
        """
        Push HEAD to branch, then push refspec as an additional push.

        Raises:
            GitTimeoutError: If a push exceeds timeout.
            GitOperationError: If the remote rejects a push.
        """
        deadline = Deadline(timeout, f"push to {branch}")
        extra: list[str] = []
        for key, value in sorted((options or {}).items()):
            extra += ["-o", f"{key}={value}"]

        args = ["push", *extra]
        if force:
            args.append("--force")
        self._git(*args, REMOTE_NAME, f"HEAD:{HEADS_PREFIX}{branch}", deadline=deadline)
        logger.info("Pushed to branch %s%s", branch, " (forced)" if force else "")

        if refspec:
            self._git("push", *extra, REMOTE_NAME, refspec, deadline=deadline)
            logger.info("Pushed refspec %s", refspec)
