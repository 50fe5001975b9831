"""Telegram to Discord chat bridge."""
