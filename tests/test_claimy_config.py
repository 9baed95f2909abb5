"""Tests for loading and validating ClaimyConfig."""

import os
import unittest
from unittest.mock import patch

from claimy import constants
from claimy.claimy_error import ClaimyError
from claimy.config.claimy_config import ClaimyConfig, get_config, set_config

VALID_ENV = {
    constants.CLAIMY_PANEL_URL: "https://panel.example.com/",
    constants.CLAIMY_PANEL_API_KEY: "ptla_abcdef",
    constants.CLAIMY_INTERNAL_SECRET: "s3cret",
}


class CustomConfig(ClaimyConfig):
    pass


class TestClaimyConfig(unittest.TestCase):

    def tearDown(self):
        set_config(None)

    @patch.dict(os.environ, {}, clear=True)
    def test_defaults(self):
        config = ClaimyConfig.from_env()
        self.assertEqual(config.node_id, 1)
        self.assertEqual(config.fallback_node_ids, [])
        self.assertEqual(config.grace_period_hours, 4)
        self.assertEqual(config.rate_limit_ip_per_min, 20)
        self.assertEqual(config.rate_limit_jid_per_min, 5)
        self.assertFalse(config.status_require_token)
        self.assertEqual(config.data_dir, constants.DEFAULT_DATA_DIR)
        self.assertIsNone(config.redis_url)
        self.assertIsNone(config.database_url)
        self.assertFalse(config.is_production)

    @patch.dict(
        os.environ,
        {
            **VALID_ENV,
            constants.CLAIMY_NODE_ID: "3",
            constants.CLAIMY_FALLBACK_NODE_IDS: "4, 3,5",
            constants.CLAIMY_ADMIN_JIDS: "6281234567890@s.whatsapp.net",
            constants.CLAIMY_GRACE_PERIOD_HOURS: "0.5",
            constants.CLAIMY_STATUS_REQUIRE_TOKEN: "true",
            constants.CLAIMY_ENV: "production",
        },
        clear=True,
    )
    def test_from_env(self):
        config = ClaimyConfig.from_env()
        self.assertEqual(config.panel_url, "https://panel.example.com")
        self.assertEqual(config.get_node_ids(), [3, 4, 5])
        self.assertTrue(config.is_privileged("6281234567890@s.whatsapp.net"))
        self.assertFalse(config.is_privileged("6289876543210@s.whatsapp.net"))
        self.assertEqual(config.grace_period_hours, 0.5)
        self.assertTrue(config.status_require_token)
        self.assertTrue(config.is_production)
        config.validate()

    def test_validate_lists_problems(self):
        config = ClaimyConfig(panel_api_key="ptlc_client_key", grace_period_hours=-1)
        with self.assertRaises(ClaimyError) as context:
            config.validate()
        message = str(context.exception)
        self.assertIn(constants.CLAIMY_PANEL_URL, message)
        self.assertIn(constants.CLAIMY_PANEL_API_KEY, message)
        self.assertIn(constants.CLAIMY_INTERNAL_SECRET, message)
        self.assertIn(constants.CLAIMY_GRACE_PERIOD_HOURS, message)

    @patch.dict(os.environ, VALID_ENV, clear=True)
    def test_get_config_is_cached(self):
        config = get_config()
        self.assertIs(get_config(), config)
        set_config(None)
        self.assertIsNot(get_config(), config)

    @patch.dict(
        os.environ,
        {constants.CLAIMY_CONFIG: "test_claimy_config.CustomConfig"},
        clear=True,
    )
    def test_custom_config_type(self):
        self.assertIsInstance(get_config(), CustomConfig)

    def test_set_config(self):
        config = ClaimyConfig(panel_url="https://other.example.com")
        set_config(config)
        self.assertIs(get_config(), config)
