# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Relationship domain: parent-student links and parent invitations."""

from campusid.domains.relationship.service import RelationshipService

__all__ = ["RelationshipService"]
