"""
Unit tests for configuration loading and validation.
"""

import json
import os
import shutil
import tempfile
import unittest
from pathlib import Path
from unittest.mock import patch

import pytest
import yaml
from pydantic import ValidationError

from filecleanup.retention_config import (
    CONFIG_ENV_VAR, DEFAULT_CONFIG_PATH, CleanupConfig, RetentionConfigManager,
    TargetConfig, resolve_config_path
)
from filecleanup.retention_models import ConfigError


class TestTargetConfig(unittest.TestCase):
    """Test target validation rules."""

    def test_defaults_to_absolute_mode(self):
        target = TargetConfig(path='/srv/uploads')

        self.assertFalse(target.percent_mode_enabled)
        self.assertEqual(target.size_limit, target.max_size_mb)
        self.assertEqual(target.size_unit, 'MB')

    def test_percent_mode_selects_percent_limit(self):
        target = TargetConfig(path='/srv/uploads', percent_mode_enabled=True, max_size_percent=20)

        self.assertEqual(target.size_limit, 20)
        self.assertEqual(target.size_unit, '%')

    def test_path_is_made_absolute(self):
        target = TargetConfig(path='relative/folder')

        self.assertTrue(os.path.isabs(target.path))

    def test_rejects_percent_above_100(self):
        with self.assertRaises(ValidationError):
            TargetConfig(path='/srv', percent_mode_enabled=True, max_size_percent=150)

    def test_rejects_non_positive_interval(self):
        with self.assertRaises(ValidationError):
            TargetConfig(path='/srv', size_check_interval_seconds=0)

    def test_rejects_negative_retention(self):
        with self.assertRaises(ValidationError):
            TargetConfig(path='/srv', retention_days=-1)

    def test_rejects_empty_path(self):
        with self.assertRaises(ValidationError):
            TargetConfig(path='  ')

    def test_uses_percent_mode(self):
        config = CleanupConfig(targets=[
            TargetConfig(path='/a'),
            TargetConfig(path='/b', percent_mode_enabled=True, max_size_percent=5),
        ])

        self.assertTrue(config.uses_percent_mode)


class TestRetentionConfigManager(unittest.TestCase):
    """Test loading configuration files."""

    def setUp(self):
        self.temp_dir = tempfile.mkdtemp()

    def tearDown(self):
        shutil.rmtree(self.temp_dir)

    def test_load_yaml(self):
        config_path = Path(self.temp_dir) / "cleanup.yaml"
        with open(config_path, 'w') as f:
            yaml.dump({
                'detailed_log': True,
                'targets': [
                    {
                        'path': '/var/spool/frames',
                        'retention_days': 2.5,
                        'retention_check_interval_seconds': 600,
                        'max_size_percent': 15,
                        'percent_mode_enabled': True,
                        'percent_relative_to_available': True,
                        'size_check_interval_seconds': 120,
                    }
                ],
            }, f)

        config = RetentionConfigManager(str(config_path)).config

        self.assertTrue(config.detailed_log)
        self.assertEqual(len(config.targets), 1)
        target = config.targets[0]
        self.assertEqual(target.path, '/var/spool/frames')
        self.assertEqual(target.retention_days, 2.5)
        self.assertTrue(target.percent_relative_to_available)
        self.assertEqual(target.size_limit, 15)

    def test_load_legacy_json(self):
        config_path = Path(self.temp_dir) / ".fileCleanup.json"
        with open(config_path, 'w') as f:
            json.dump({
                'delete_config': [
                    {
                        'target_folder': '/data/junk',
                        'retention_days': 30,
                        'delete_interval_seconds': 3600,
                        'max_folder_size_mb': 256,
                        'max_folder_size_percent': 0,
                        'max_folder_percent_enabled': False,
                        'max_folder_percent_from_available_size': False,
                        'check_size_interval_secs': 600,
                    }
                ],
                'detailed_log': False,
                'log_file_path': '/tmp/logs',
            }, f)

        config = RetentionConfigManager(str(config_path)).config

        target = config.targets[0]
        self.assertEqual(target.path, '/data/junk')
        self.assertEqual(target.retention_check_interval_seconds, 3600)
        self.assertEqual(target.max_size_mb, 256)
        self.assertEqual(target.size_check_interval_seconds, 600)
        self.assertEqual(config.log_file_path, '/tmp/logs')

    def test_missing_file_writes_defaults(self):
        config_path = Path(self.temp_dir) / "nested" / "cleanup.yaml"

        manager = RetentionConfigManager(str(config_path))

        self.assertTrue(config_path.exists())
        self.assertEqual(len(manager.get_targets()), 1)
        with open(config_path) as f:
            written = yaml.safe_load(f)
        self.assertEqual(written['targets'][0]['retention_days'], 5)

    def test_invalid_target_raises_config_error(self):
        config_path = Path(self.temp_dir) / "bad.yaml"
        with open(config_path, 'w') as f:
            yaml.dump({'targets': [{'path': '/x', 'retention_check_interval_seconds': -5}]}, f)

        with self.assertRaises(ConfigError):
            RetentionConfigManager(str(config_path))

    def test_malformed_yaml_raises_config_error(self):
        config_path = Path(self.temp_dir) / "broken.yaml"
        config_path.write_text("targets: [unclosed")

        with self.assertRaises(ConfigError):
            RetentionConfigManager(str(config_path))

    def test_non_mapping_raises_config_error(self):
        config_path = Path(self.temp_dir) / "list.yaml"
        config_path.write_text("- just\n- a list\n")

        with self.assertRaises(ConfigError):
            RetentionConfigManager(str(config_path))

    def test_get_target(self):
        config_path = Path(self.temp_dir) / "cleanup.yaml"
        with open(config_path, 'w') as f:
            yaml.dump({'targets': [{'path': '/srv/a'}, {'path': '/srv/b'}]}, f)

        manager = RetentionConfigManager(str(config_path))

        self.assertEqual(manager.get_target('/srv/b').path, '/srv/b')
        self.assertIsNone(manager.get_target('/srv/c'))


class TestResolveConfigPath:
    """Test config path precedence."""

    def test_explicit_path_wins(self):
        with patch.dict(os.environ, {CONFIG_ENV_VAR: '/from/env.yaml'}):
            assert resolve_config_path('/explicit.yaml') == Path('/explicit.yaml')

    def test_environment_variable(self):
        with patch('filecleanup.retention_config.load_dotenv'):
            with patch.dict(os.environ, {CONFIG_ENV_VAR: '/from/env.yaml'}):
                assert resolve_config_path() == Path('/from/env.yaml')

    def test_default_location(self):
        with patch('filecleanup.retention_config.load_dotenv'):
            with patch.dict(os.environ, {}, clear=True):
                assert resolve_config_path() == DEFAULT_CONFIG_PATH

    @pytest.mark.parametrize('level', ['debug', 'INFO', 'Warning'])
    def test_log_level_is_normalised(self, level):
        assert CleanupConfig(log_level=level).log_level == level.upper()

    def test_unknown_log_level_rejected(self):
        with pytest.raises(ValidationError):
            CleanupConfig(log_level='chatty')
