"""
Configuration manager for trivia battle settings and parameters.
"""
import dataclasses
import logging
import os
from pathlib import Path
from typing import Any, Dict, List, Optional

from .models import GameSettings


class ConfigManager:
    """Manages game settings with validation."""

    DEFAULT_QUESTION_DIRECTORY = "./questions/"
    DEFAULT_DATA_DIRECTORY = "./data/"

    # Validation limits: (minimum, maximum)
    LIMITS = {
        'question_timeout': (5, 300),
        'settle_delay': (0, 30),
        'challenge_expiry': (10, 3600),
        'default_question_count': (1, 50),
        'max_question_count': (1, 50),
        'challenge_question_count': (3, 20),
        'challenge_min_questions': (1, 20),
    }
    INTEGER_SETTINGS = {
        'default_question_count',
        'max_question_count',
        'challenge_question_count',
        'challenge_min_questions',
    }

    def __init__(self):
        """Initialize ConfigManager with default settings."""
        self.logger = logging.getLogger(__name__)
        self._settings = GameSettings()
        self._question_directory = self.DEFAULT_QUESTION_DIRECTORY
        self._data_directory = self.DEFAULT_DATA_DIRECTORY

    def get_game_settings(self) -> GameSettings:
        """
        Get a copy of the current game settings.

        Returns:
            GameSettings object with current configuration
        """
        return dataclasses.replace(self._settings, admin_ids=list(self._settings.admin_ids))

    def set_value(self, name: str, value: Any) -> Dict[str, Any]:
        """
        Set a numeric setting with type and range validation.

        Args:
            name: GameSettings field name, one of ``LIMITS``
            value: New value

        Returns:
            Dictionary with success status, error message, and user-friendly message
        """
        label = name.replace('_', ' ')
        if name not in self.LIMITS:
            error_msg = f"Unknown setting: {name}"
            self.logger.error(error_msg)
            return {'success': False, 'error': error_msg, 'user_message': f"❌ Unknown setting: {label}"}

        integer_only = name in self.INTEGER_SETTINGS
        allowed_types = (int,) if integer_only else (int, float)
        if isinstance(value, bool) or not isinstance(value, allowed_types):
            error_msg = f"{label.capitalize()} must be a number, got {type(value).__name__}"
            self.logger.error(error_msg)
            return {
                'success': False,
                'error': error_msg,
                'user_message': f"❌ Invalid input: Expected a number, got {type(value).__name__}"
            }

        minimum, maximum = self.LIMITS[name]
        if value < minimum:
            error_msg = f"{label.capitalize()} must be at least {minimum}"
            self.logger.error(error_msg)
            return {'success': False, 'error': error_msg, 'user_message': f"❌ Too low: Minimum {label} is {minimum}"}

        if value > maximum:
            error_msg = f"{label.capitalize()} cannot exceed {maximum}"
            self.logger.error(error_msg)
            return {'success': False, 'error': error_msg, 'user_message': f"❌ Too high: Maximum {label} is {maximum}"}

        setattr(self._settings, name, value)
        self.logger.info(f"{label.capitalize()} set to {value}")
        return {
            'success': True,
            'message': f"{label.capitalize()} set to {value}",
            'user_message': f"✅ {label.capitalize()} set to {value}"
        }

    def set_question_timeout(self, seconds: float) -> Dict[str, Any]:
        return self.set_value('question_timeout', seconds)

    def set_settle_delay(self, seconds: float) -> Dict[str, Any]:
        return self.set_value('settle_delay', seconds)

    def set_challenge_expiry(self, seconds: float) -> Dict[str, Any]:
        return self.set_value('challenge_expiry', seconds)

    def set_default_question_count(self, count: int) -> Dict[str, Any]:
        return self.set_value('default_question_count', count)

    def set_admin_ids(self, admin_ids: List[Any]) -> Dict[str, Any]:
        """Replace the administrator list. Ids are stored as strings."""
        if not isinstance(admin_ids, (list, tuple, set)):
            error_msg = f"Admin ids must be a list, got {type(admin_ids).__name__}"
            self.logger.error(error_msg)
            return {'success': False, 'error': error_msg, 'user_message': "❌ Admin ids must be a list"}

        self._settings.admin_ids = [str(a).strip() for a in admin_ids if str(a).strip()]
        self.logger.info(f"Configured {len(self._settings.admin_ids)} administrators")
        return {
            'success': True,
            'message': f"Configured {len(self._settings.admin_ids)} administrators",
            'user_message': "✅ Administrators updated"
        }

    def is_admin(self, user_id: str) -> bool:
        return str(user_id) in self._settings.admin_ids

    def _set_directory(self, attribute: str, directory: str, label: str) -> Dict[str, Any]:
        if not isinstance(directory, str) or not directory.strip():
            error_msg = f"{label} must be a non-empty path string"
            self.logger.error(error_msg)
            return {'success': False, 'error': error_msg, 'user_message': f"❌ Invalid {label.lower()}"}

        try:
            normalized_path = str(Path(directory).resolve())
        except (OSError, ValueError) as e:
            error_msg = f"Invalid directory path format: {e}"
            self.logger.error(error_msg)
            return {'success': False, 'error': error_msg, 'user_message': f"❌ Invalid path format: {directory}"}

        setattr(self, attribute, normalized_path)
        self.logger.info(f"{label} set to {normalized_path}")
        return {
            'success': True,
            'message': f"{label} set to {normalized_path}",
            'user_message': f"✅ {label} set to {normalized_path}"
        }

    def set_question_directory(self, directory: str) -> Dict[str, Any]:
        return self._set_directory('_question_directory', directory, "Question directory")

    def get_question_directory(self) -> str:
        return self._question_directory

    def set_data_directory(self, directory: str) -> Dict[str, Any]:
        return self._set_directory('_data_directory', directory, "Data directory")

    def get_data_directory(self) -> str:
        return self._data_directory

    def apply_config(self, config: Optional[Dict[str, Any]]) -> List[Dict[str, Any]]:
        """
        Apply the ``quiz`` section of a parsed config.json.

        Invalid entries are logged and left at their defaults. The
        BOT_ADMINS environment variable (comma separated) adds administrators.

        Returns:
            List of failed setting results
        """
        quiz_config = (config or {}).get('quiz', {})
        failures = []

        for name in self.LIMITS:
            if name in quiz_config:
                result = self.set_value(name, quiz_config[name])
                if not result['success']:
                    failures.append(result)

        admin_ids = list(quiz_config.get('admin_ids', []))
        env_admins = os.getenv('BOT_ADMINS')
        if env_admins:
            admin_ids.extend(a for a in env_admins.split(',') if a.strip())
        if admin_ids:
            result = self.set_admin_ids(admin_ids)
            if not result['success']:
                failures.append(result)

        for key, setter in (('question_directory', self.set_question_directory),
                            ('data_directory', self.set_data_directory)):
            if key in quiz_config:
                result = setter(quiz_config[key])
                if not result['success']:
                    failures.append(result)

        validation = self.validate_settings()
        if not validation['valid']:
            self.logger.warning(f"Configuration issues: {validation['issues']}")

        return failures

    def validate_settings(self) -> Dict[str, Any]:
        """
        Validate cross-field constraints of the current settings.

        Returns:
            Dictionary with validation results and any issues found
        """
        issues = []
        s = self._settings
        if s.default_question_count > s.max_question_count:
            issues.append(
                f"Default question count {s.default_question_count} exceeds maximum {s.max_question_count}"
            )
        if s.challenge_min_questions > s.challenge_question_count:
            issues.append(
                f"Challenge minimum {s.challenge_min_questions} exceeds challenge size {s.challenge_question_count}"
            )
        return {'valid': not issues, 'issues': issues}

    def reset_to_defaults(self) -> None:
        """Reset all settings to their default values."""
        self._settings = GameSettings()
        self._question_directory = self.DEFAULT_QUESTION_DIRECTORY
        self._data_directory = self.DEFAULT_DATA_DIRECTORY
        self.logger.info("All settings reset to default values")

    def get_settings_summary(self) -> str:
        """
        Get a formatted summary of current settings.

        Returns:
            Human-readable string describing current settings
        """
        s = self._settings
        return (
            f"Trivia Settings:\n"
            f"• Questions per quiz: {s.default_question_count} (max {s.max_question_count})\n"
            f"• Question timer: {s.question_timeout} seconds\n"
            f"• Challenge: {s.challenge_question_count} questions, expires after {s.challenge_expiry} seconds\n"
            f"• Question Directory: {self._question_directory}"
        )
