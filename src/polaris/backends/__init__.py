"""Generation backend implementations (Anthropic, Ollama, OpenAI).

Lazy imports to avoid pulling in optional dependencies at package level.
"""


def get_anthropic_backend():
    """Import and return the AnthropicBackend class."""
    from polaris.backends.anthropic import AnthropicBackend

    return AnthropicBackend


def get_ollama_backend():
    """Import and return the OllamaBackend class."""
    from polaris.backends.ollama import OllamaBackend

    return OllamaBackend


def get_openai_backend():
    """Import and return the OpenAIBackend class."""
    from polaris.backends.openai_adapter import OpenAIBackend

    return OpenAIBackend


__all__ = ["get_anthropic_backend", "get_ollama_backend", "get_openai_backend"]
