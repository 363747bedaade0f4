# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""CampusID - identity and parent-student relationship verification service."""

__version__ = "1.0.0"
