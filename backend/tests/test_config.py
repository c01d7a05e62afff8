import os
import unittest
from unittest.mock import patch

from pydantic import ValidationError

from invoice_ledger.core.config import Settings


class SettingsParsingTests(unittest.TestCase):
    @patch.dict(
        os.environ,
        {
            "CORS_ALLOW_ORIGINS": "http://localhost:3000, https://ledger.example.com",
            "AI_ALLOWED_PROVIDERS": '["mock"]',
        },
        clear=False,
    )
    def test_list_settings_accept_csv_and_json(self):
        settings = Settings()
        self.assertEqual(settings.cors_allow_origins, ["http://localhost:3000", "https://ledger.example.com"])
        self.assertEqual(settings.ai_allowed_providers, ["mock"])

    @patch.dict(os.environ, {"CORS_ALLOW_ORIGINS": ""}, clear=False)
    def test_empty_list_setting(self):
        self.assertEqual(Settings().cors_allow_origins, [])

    @patch.dict(os.environ, {"RAG_REINDEX_MODE": " FULL "}, clear=False)
    def test_reindex_mode_is_normalised(self):
        self.assertEqual(Settings().rag_reindex_mode, "full")

    @patch.dict(os.environ, {"RAG_REINDEX_MODE": "nightly"}, clear=False)
    def test_reindex_mode_rejects_unknown_values(self):
        with self.assertRaises(ValidationError):
            Settings()

    def test_defaults(self):
        settings = Settings(_env_file=None)
        self.assertEqual(settings.rag_top_k, 5)
        self.assertEqual(settings.ai_max_retries, 3)
        self.assertEqual(settings.max_upload_bytes, 15 * 1024 * 1024)


class GeminiKeyTests(unittest.TestCase):
    @patch.dict(os.environ, {"GEMINI_API_KEY": "   ", "GOOGLE_API_KEY": ""}, clear=False)
    def test_blank_key_is_not_configured(self):
        self.assertFalse(Settings().gemini_configured)

    @patch.dict(os.environ, {"GEMINI_API_KEY": "", "GOOGLE_API_KEY": "g-key"}, clear=False)
    def test_google_api_key_alias(self):
        os.environ.pop("GEMINI_API_KEY")
        settings = Settings()
        self.assertTrue(settings.gemini_configured)
        self.assertEqual(settings.gemini_api_key, "g-key")
