"""
Mail Module - Black Box Interface

Purpose: Deliver account mail (verification, reset, change confirmations)
Interface: MailService.send_*(), Mailer protocol, OutboxMailer
Hidden: Transport, message wording, link construction

Swap OutboxMailer for an SMTP or provider-backed Mailer without touching
the flows that send mail.
"""

from .service import MailMessage, Mailer, MailService, OutboxMailer

__all__ = ["MailMessage", "MailService", "Mailer", "OutboxMailer"]
