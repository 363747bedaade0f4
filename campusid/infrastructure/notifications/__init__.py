# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Outbound notifications."""

from campusid.infrastructure.notifications.notifier import (
    EmailInvitationNotifier,
    InvitationNotifier,
    RenderedMessage,
    TemplateKind,
    render_template,
)

__all__ = [
    "EmailInvitationNotifier",
    "InvitationNotifier",
    "RenderedMessage",
    "TemplateKind",
    "render_template",
]
