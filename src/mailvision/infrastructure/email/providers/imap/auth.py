from __future__ import annotations
from dataclasses import dataclass

from imapclient import IMAPClient
from imapclient.exceptions import LoginError

from mailvision.domain.errors import AuthenticationError


@dataclass(frozen=True)
class ImapCredentials:
    """
    Represents credentials for a single mailbox.
    """
    login: str
    password: str

    def __repr__(self) -> str:
        return f"ImapCredentials(login={self.login!r}, password='***')"


class ImapAuthenticator:
    """
    Responsible ONLY for authenticating an already connected IMAP session.
    No folder logic, no fetching, no parsing.
    """

    def __init__(self, creds: ImapCredentials) -> None:
        self.creds = creds

    def login(self, client: IMAPClient) -> None:
        """
        Rejected credentials raise AuthenticationError; any other failure
        is left to the caller's connectivity handling.
        """
        try:
            client.login(self.creds.login, self.creds.password)
        except LoginError as e:
            raise AuthenticationError(f"IMAP login rejected for {self.creds.login}: {e}") from e
