"""
IMAP Session Layer
==================

Timeout-bounded wrapper around ``imapclient.IMAPClient``.

Every tool call opens its own authenticated session, issues a bounded sequence
of verbs, and closes it. Sessions are never pooled or shared across calls.

INVARIANTS:
- TLS only: accounts with ``secure=False`` are rejected before any network I/O
  because credentials are sent during LOGIN.
- Every verb runs under the socket timeout; a timeout abandons the session and
  no further verbs are issued on it.
- Read paths use EXAMINE and BODY.PEEK so they never alter message state.
- Credentials and message bodies are never logged.
"""

from __future__ import annotations

import logging
import socket
import ssl
from collections.abc import Callable
from typing import Any, TypeVar

from imapclient import IMAPClient
from imapclient.exceptions import IMAPClientAbortError, IMAPClientError, LoginError
from imapclient.imapclient import SocketTimeout
from imapclient.tls import IMAP4_TLS, wrap_socket

from mail_imap_mcp.config import AccountConfig, ServerConfig
from mail_imap_mcp.contracts import (
    AuthFailedError,
    InternalError,
    InvalidInputError,
    MailboxInfo,
    NotFoundError,
    OperationTimeoutError,
)

logger = logging.getLogger("mail-imap-mcp.imap")

HEADER_FIELDS_QUERY = "BODY.PEEK[HEADER.FIELDS (DATE FROM TO CC SUBJECT)]"
RAW_QUERY = "BODY.PEEK[]"

T = TypeVar("T")

# Text markers that identify a credential rejection in a non-LoginError failure
_AUTH_MARKERS = ("AUTHENTICATIONFAILED", "AUTHENTICATION FAILED", "AUTHORIZATIONFAILED", "INVALID CREDENTIALS")


class _GreetingDeadlineIMAP4(IMAP4_TLS):
    """
    IMAP4 over TLS with two connection deadlines.

    ``socket.create_connection`` is bounded by the connect timeout; the TLS
    handshake and greeting read that follow are bounded by the greeting
    timeout.
    """

    def __init__(self, host, port, ssl_context, connect_timeout, greeting_timeout):
        self._greeting_timeout = greeting_timeout
        super().__init__(host, port, ssl_context, connect_timeout)

    def _create_socket(self, timeout=None):
        sock = socket.create_connection((self.host, self.port), timeout=self._timeout)
        sock.settimeout(self._greeting_timeout)
        try:
            return wrap_socket(sock, self.ssl_context, self.host)
        except BaseException:
            sock.close()
            raise


class TLSIMAPClient(IMAPClient):
    """
    ``IMAPClient`` that always uses TLS and applies the greeting deadline.

    ``timeout.read`` stays in force after the greeting, so LOGIN shares the
    greeting deadline until the caller switches to the per-verb timeout.
    """

    def __init__(self, host: str, *, port: int, ssl_context: ssl.SSLContext, timeout: SocketTimeout) -> None:
        super().__init__(host, port=port, ssl=True, ssl_context=ssl_context, timeout=timeout)

    def _create_IMAP4(self):
        return _GreetingDeadlineIMAP4(
            self.host,
            self.port,
            self.ssl_context,
            self._timeout.connect,
            self._timeout.read,
        )


def connect_authenticated(config: ServerConfig, account: AccountConfig) -> ImapSession:
    """
    Connect over TLS and authenticate.

    Deadlines: TCP connect uses ``connect_timeout_ms``; TLS handshake, greeting
    and LOGIN share ``greeting_timeout_ms``. Afterwards the socket switches to
    ``socket_timeout_ms`` for every verb.

    ERRORS:
    - InvalidInputError: account is not secure, or host unusable for TLS SNI
    - OperationTimeoutError: any connection phase timed out
    - AuthFailedError: server rejected the credentials
    - InternalError: TCP or greeting failure, TLS handshake or certificate failure
    """
    if not account.secure:
        raise InvalidInputError(
            "insecure IMAP is not supported; set MAIL_IMAP_<ACCOUNT>_SECURE=true"
        )
    _validate_tls_hostname(account.host)

    timeout = SocketTimeout(
        connect=config.connect_timeout_ms / 1000,
        read=config.greeting_timeout_ms / 1000,
    )
    try:
        client = TLSIMAPClient(
            account.host,
            port=account.port,
            ssl_context=ssl.create_default_context(),
            timeout=timeout,
        )
    except TimeoutError as e:
        raise OperationTimeoutError("IMAP connect timeout") from e
    except ssl.SSLError as e:
        # SSLCertVerificationError is also a ValueError
        raise InternalError(f"IMAP TLS handshake failed: {e}") from e
    except ValueError as e:
        raise InvalidInputError("invalid IMAP host for TLS SNI") from e
    except (IMAPClientError, OSError) as e:
        raise InternalError(f"IMAP connect failed: {e}") from e

    try:
        client.login(account.user, account.password)
    except TimeoutError as e:
        _shutdown_quietly(client)
        raise OperationTimeoutError("IMAP login timeout") from e
    except LoginError as e:
        _shutdown_quietly(client)
        raise AuthFailedError(str(e)) from e
    except (IMAPClientError, OSError) as e:
        _shutdown_quietly(client)
        message = str(e)
        if any(marker in message.upper() for marker in _AUTH_MARKERS):
            raise AuthFailedError(message) from e
        raise InternalError(message) from e

    client.socket().settimeout(config.socket_timeout_ms / 1000)
    logger.info(f"Connected to IMAP server {account.host}:{account.port} as account {account.account_id}")
    return ImapSession(client)


def _validate_tls_hostname(host: str) -> None:
    if not host or host.startswith(".") or any(ch.isspace() for ch in host):
        raise InvalidInputError("invalid IMAP host for TLS SNI")
    try:
        host.encode("idna")
    except UnicodeError:
        raise InvalidInputError("invalid IMAP host for TLS SNI") from None


def _shutdown_quietly(client: IMAPClient) -> None:
    try:
        client.shutdown()
    except (IMAPClientError, OSError) as e:
        logger.debug(f"Ignoring shutdown failure: {e}")


class ImapSession:
    """
    One authenticated IMAP connection, used by a single tool call.

    Verbs are issued strictly in call order. After a timeout the session is
    abandoned: partial protocol state is not trusted, so later verbs fail fast
    and ``close`` skips LOGOUT.
    """

    def __init__(self, client: IMAPClient) -> None:
        self._client = client
        self._abandoned = False
        self._closed = False

    @property
    def abandoned(self) -> bool:
        return self._abandoned

    def __enter__(self) -> ImapSession:
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def close(self) -> None:
        """Log out, or drop the socket if the session was abandoned."""
        if self._closed:
            return
        self._closed = True
        if self._abandoned:
            _shutdown_quietly(self._client)
            return
        try:
            self._client.logout()
        except (IMAPClientError, OSError) as e:
            logger.debug(f"Ignoring logout failure: {e}")

    def _call(self, verb: str, func: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        if self._abandoned:
            raise InternalError(f"{verb} not issued: session abandoned after timeout")
        try:
            return func(*args, **kwargs)
        except TimeoutError as e:
            self._abandoned = True
            raise OperationTimeoutError(f"{verb} timed out") from e
        except IMAPClientAbortError as e:
            self._abandoned = True
            if "timed out" in str(e).lower():
                raise OperationTimeoutError(f"{verb} timed out") from e
            raise InternalError(f"{verb} failed: {e}") from e
        except IMAPClientError as e:
            raise InternalError(f"{verb} failed: {e}") from e
        except OSError as e:
            self._abandoned = True
            raise InternalError(f"{verb} failed: {e}") from e

    # -------------------------------------------------------------------------
    # Session verbs
    # -------------------------------------------------------------------------

    def noop(self) -> None:
        self._call("NOOP", self._client.noop)

    def capabilities(self) -> list[str]:
        caps = self._call("CAPABILITY", self._client.capabilities)
        return [_to_str(cap).upper() for cap in caps]

    def list_mailboxes(self) -> list[MailboxInfo]:
        folders = self._call("LIST", self._client.list_folders)
        return [
            MailboxInfo(
                name=_to_str(name),
                delimiter=_to_str(delimiter) if delimiter is not None else None,
            )
            for _flags, delimiter, name in folders
        ]

    def select(self, mailbox: str, *, readonly: bool) -> int:
        """
        Select a mailbox and return its UIDVALIDITY.

        ``readonly=True`` issues EXAMINE, which never alters message state.
        Read-write selection is required before any mutating verb.
        """
        verb = "EXAMINE" if readonly else "SELECT"
        try:
            info = self._call(verb, self._client.select_folder, mailbox, readonly=readonly)
        except InternalError as e:
            if self._abandoned:
                raise
            raise NotFoundError(f"cannot {verb.lower()} mailbox '{mailbox}': {e.message}") from e

        uidvalidity = info.get(b"UIDVALIDITY")
        if uidvalidity is None:
            raise InternalError("mailbox missing UIDVALIDITY")
        return int(uidvalidity)

    def search(self, criteria: list[Any]) -> list[int]:
        """Run UID SEARCH and return UIDs newest first."""
        charset = "UTF-8" if any(isinstance(c, str) and not c.isascii() for c in criteria) else None
        uids = self._call("UID SEARCH", self._client.search, criteria, charset=charset)
        return sorted((int(uid) for uid in uids), reverse=True)

    def _fetch_one(self, uid: int, query: list[str]) -> dict[bytes, Any]:
        response = self._call("UID FETCH", self._client.fetch, [uid], query)
        try:
            return response[uid]
        except KeyError:
            raise NotFoundError(f"message uid {uid} not found") from None

    def fetch_headers_and_flags(self, uid: int) -> tuple[bytes, list[str]]:
        data = self._fetch_one(uid, ["FLAGS", HEADER_FIELDS_QUERY])
        header_bytes = _body_section(data)
        if header_bytes is None:
            raise InternalError("message headers not available")
        return header_bytes, _flags_to_strings(data)

    def fetch_flags(self, uid: int) -> list[str]:
        return _flags_to_strings(self._fetch_one(uid, ["FLAGS"]))

    def fetch_raw(self, uid: int) -> bytes:
        raw = _body_section(self._fetch_one(uid, [RAW_QUERY]))
        if raw is None:
            raise InternalError("message has no RFC822 body")
        return raw

    def add_flags(self, uid: int, flags: list[str]) -> None:
        self._call("UID STORE", self._client.add_flags, [uid], flags, silent=True)

    def remove_flags(self, uid: int, flags: list[str]) -> None:
        self._call("UID STORE", self._client.remove_flags, [uid], flags, silent=True)

    def copy(self, uid: int, mailbox: str) -> None:
        self._call("UID COPY", self._client.copy, [uid], mailbox)

    def move(self, uid: int, mailbox: str) -> None:
        self._call("UID MOVE", self._client.move, [uid], mailbox)

    def expunge(self, uid: int) -> None:
        self._call("UID EXPUNGE", self._client.expunge, [uid])

    def append(self, mailbox: str, raw: bytes) -> None:
        # APPENDUID is not requested, so the new UID is never known here.
        self._call("APPEND", self._client.append, mailbox, raw)


SessionFactory = Callable[[ServerConfig, AccountConfig], ImapSession]


def _to_str(value: bytes | str) -> str:
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return str(value)


def _flags_to_strings(data: dict[bytes, Any]) -> list[str]:
    return [_to_str(flag) for flag in data.get(b"FLAGS", ())]


def _body_section(data: dict[bytes, Any]) -> bytes | None:
    for key, value in data.items():
        if isinstance(key, bytes) and key.startswith((b"BODY[", b"RFC822")):
            return value
    return None
