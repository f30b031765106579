"""threadkeeper - conversation history engine for tool-using LLM agents."""

__version__ = "0.1.0"
__logo__ = "🧵"
