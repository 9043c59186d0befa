"""
SDK for AI Quota Router.

Provides a chat client that routes requests across quota-limited backends.
"""

from .openai_client import RoutedCompletion, RoutedOpenAI

__all__ = ["RoutedCompletion", "RoutedOpenAI"]
