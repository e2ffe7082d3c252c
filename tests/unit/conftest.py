"""Unit test configuration.

Unit tests run against the in-memory Redis from the root conftest and never
need Docker.
"""

import pytest


pytestmark = pytest.mark.unit
