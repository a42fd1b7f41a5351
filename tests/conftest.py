"""
Pytest configuration and fixtures for termrelay tests.
"""

import pytest
from pathlib import Path

from termrelay.config import Config


@pytest.fixture
def test_config_path(tmp_path: Path) -> Path:
    """Create a temporary config file for testing."""
    config_content = f"""
server:
  host: "127.0.0.1"
  port: 8088

authentication:
  tokens:
    - token: "alice-token"
      user_id: 1
      username: "alice"
    - token: "bob-token"
      user_id: 2
      username: "bob"
    - token: "admin-token"
      user_id: 99
      username: "root"
      role: "admin"

targets:
  - id: "web-1"
    name: "Web server"
    host: "10.0.0.5"
    username: "deploy"
    password: "secret"
    allowed_user_ids: [1]

transport:
  heartbeat_interval: 30

recording:
  enabled: true
  output_dir: "{tmp_path / 'recordings'}"

monitor:
  check_interval: 60
  session_timeout: 600
"""
    config_file = tmp_path / "test_config.yaml"
    config_file.write_text(config_content)
    return config_file


@pytest.fixture
def test_config(test_config_path: Path) -> Config:
    """Load a test configuration."""
    return Config.from_file(test_config_path)
