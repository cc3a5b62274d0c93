"""
Testing utilities for rolodex.

Provides an in-process SSH server for integration testing.
"""
from rolodex.testing.mock_server import MockServerConfig, MockSSHServer, generate_test_key

__all__ = ["MockServerConfig", "MockSSHServer", "generate_test_key"]
