"""Tests for application startup checks and validation."""

from unittest.mock import MagicMock, patch

import pytest

from pairlog.startup import (
    StartupCheckError,
    check_database_connection,
    check_database_schema,
    check_log_directory,
    check_readiness,
    check_required_environment,
    run_all_startup_checks,
    startup_metrics,
)


class TestDatabaseConnectionCheck:
    """Tests for database connection validation."""

    def test_check_database_connection_success(self):
        """Test successful database connection check."""

        with patch("pairlog.startup.SessionLocal") as mock_session:
            mock_ctx = MagicMock()
            mock_ctx.__enter__ = MagicMock(return_value=mock_ctx)
            mock_ctx.__exit__ = MagicMock(return_value=False)
            result = MagicMock()
            result.scalar = MagicMock(return_value=1)
            mock_ctx.execute = MagicMock(return_value=result)
            mock_session.return_value = mock_ctx

            # Should not raise
            check_database_connection()

    def test_check_database_connection_raises_on_connection_failure(self):
        """Test database connection check raises on connection failure."""
        with patch(
            "pairlog.startup.SessionLocal",
            side_effect=Exception("Connection refused"),
        ):
            with pytest.raises(StartupCheckError) as exc_info:
                check_database_connection()

            assert "Cannot connect" in str(exc_info.value)
            assert "PostgreSQL is not running" in str(exc_info.value)

    def test_check_database_connection_raises_on_auth_failure(self):
        """Test database connection check raises on authentication failure."""
        with patch(
            "pairlog.startup.SessionLocal",
            side_effect=Exception("password authentication failed"),
        ):
            with pytest.raises(StartupCheckError) as exc_info:
                check_database_connection()

            assert "authentication failed" in str(exc_info.value)


class TestEnvironmentCheck:
    """Tests for environment configuration validation."""

    def test_database_url_is_enough(self):
        with patch("pairlog.startup.settings") as mock_settings:
            mock_settings.database_url_override = "sqlite:///./x.db"

            check_required_environment()

    def test_detects_missing_vars(self):
        """Test that environment check detects missing variables."""
        with patch("pairlog.startup.settings") as mock_settings:
            mock_settings.database_url_override = ""
            mock_settings.postgres_host = ""
            mock_settings.postgres_db = "pairlog"
            mock_settings.postgres_user = ""

            with pytest.raises(StartupCheckError) as exc_info:
                check_required_environment()

            assert "POSTGRES_HOST" in str(exc_info.value)
            assert "POSTGRES_USER" in str(exc_info.value)
            assert "POSTGRES_DB" not in str(exc_info.value)


class TestSchemaCheck:
    """Tests for schema validation."""

    def test_complete_schema(self, test_engine):
        with patch("pairlog.startup.engine", test_engine):
            check_database_schema()

    def test_missing_tables(self):
        inspector = MagicMock()
        inspector.get_table_names.return_value = ["users"]
        with patch("pairlog.startup.inspect", return_value=inspector):
            with pytest.raises(StartupCheckError) as exc_info:
                check_database_schema()

        assert "analytics_events" in str(exc_info.value)
        assert "pairlog init-db" in str(exc_info.value)


class TestLogDirectoryCheck:
    """Tests for log directory validation."""

    def test_skipped_without_file_logging(self):
        with patch("pairlog.startup.settings") as mock_settings:
            mock_settings.log_file_enabled = False

            check_log_directory()

            mock_settings.log_directory.mkdir.assert_not_called()

    def test_writable_directory(self, tmp_path):
        with patch("pairlog.startup.settings") as mock_settings:
            mock_settings.log_file_enabled = True
            mock_settings.log_directory = tmp_path / "logs"

            check_log_directory()

        assert (tmp_path / "logs").is_dir()


class TestRunAllStartupChecks:
    """Tests for the check runner."""

    def _patched_checks(self, failing=None):
        def make(name):
            def check():
                if name == failing:
                    raise StartupCheckError(f"{name} broken")

            return check

        return [
            ("Environment Variables", make("env"), "environment_check_ms"),
            ("Database Connection", make("db"), "database_check_ms"),
            ("Database Schema", make("schema"), "schema_check_ms"),
            ("Log Directory", make("logs"), "log_directory_check_ms"),
        ]

    def test_all_pass(self):
        with patch("pairlog.startup.STARTUP_CHECKS", self._patched_checks()):
            run_all_startup_checks(exit_on_failure=False)

        assert startup_metrics.checks_passed is True
        assert startup_metrics.total_duration_ms is not None

    def test_failure_raises(self):
        with patch("pairlog.startup.STARTUP_CHECKS", self._patched_checks("schema")):
            with pytest.raises(StartupCheckError):
                run_all_startup_checks(exit_on_failure=False)

    def test_failure_exits(self):
        with patch("pairlog.startup.STARTUP_CHECKS", self._patched_checks("db")):
            with pytest.raises(SystemExit):
                run_all_startup_checks(exit_on_failure=True)


class TestReadiness:
    """Tests for the readiness probe."""

    def test_not_ready_when_database_is_down(self):
        with patch("pairlog.startup.SessionLocal", side_effect=Exception("down")):
            ready, details = check_readiness()

        assert ready is False
        assert details["database"] == "unhealthy"
        assert "uptime_seconds" in details
