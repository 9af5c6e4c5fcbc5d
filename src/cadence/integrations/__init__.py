from .anthropic_client import AnthropicCompletionClient
from .smtp import SMTPEmailSender
from .scraper import HttpWebScraper

__all__ = [
    "AnthropicCompletionClient",
    "SMTPEmailSender",
    "HttpWebScraper",
]
