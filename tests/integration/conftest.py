# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Fixtures for API integration tests.

The application runs with its real routers, middleware and stores over an
in-memory SQLite database; only the identity provider, the notifier and
the clock are replaced.
"""

from collections.abc import Iterator
from typing import Any

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from campusid.api.app import create_app
from campusid.core.config import Settings
from campusid.domains.auth.password import PasswordHasher


@pytest.fixture
def app(
    app_settings: Settings,
    provider: Any,
    notifier: Any,
    clock: Any,
) -> FastAPI:
    """Create the application with test collaborators."""
    return create_app(
        app_settings,
        identity_provider=provider,
        notifier=notifier,
        clock=clock,
        password_hasher=PasswordHasher(rounds=4),
    )


@pytest.fixture
def client(app: FastAPI) -> Iterator[TestClient]:
    """Create a test client running the application lifespan."""
    with TestClient(app) as client:
        yield client

