"""Watch a mailbox's Sent folder and analyse the images sent from it."""

__version__ = "0.1.0"
