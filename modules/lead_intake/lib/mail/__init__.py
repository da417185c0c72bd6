# lead_intake/mail/__init__.py
"""IMAP job-alert mail: session handling, MIME decoding and the LinkedIn digest parser."""
