"""Clients for external collaborators (mailbox, SMS)."""
