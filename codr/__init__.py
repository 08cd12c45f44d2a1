"""codr: command-line agent that edits project files through an OpenAI-compatible model."""

__version__ = "0.1.0"

_EXPORTS = {
    "Config": "codr.config",
    "load_config": "codr.config",
    "Conversation": "codr.messages",
    "AgentLoop": "codr.agent",
    "Session": "codr.session",
    "TransportClient": "codr.transport",
    "FileOperationExecutor": "codr.tool_handlers",
}


def __getattr__(name):
    # Lazy so `import codr.hooks` does not pull in the transport and agent loop
    module_name = _EXPORTS.get(name)
    if module_name is None:
        raise AttributeError(f"module 'codr' has no attribute '{name}'")
    import importlib
    return getattr(importlib.import_module(module_name), name)


def __dir__():
    return sorted(set(globals()) | set(_EXPORTS))
