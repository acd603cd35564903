# Call Bridge
# Ponte Twilio Media Streams <-> ElevenLabs Conversational AI
#
# Lazy imports: `python -m callbridge` carrega este __init__ antes do
# __main__, e imports diretos aqui puxariam FastAPI/twilio sem necessidade.
# Use: from callbridge.session import SessionBridge
# Ou:  from callbridge import SessionBridge

__all__ = [
    "CallBridgeRuntime",
    "CallOrchestrator",
    "SessionBridge",
    "Settings",
]


def __getattr__(name: str):
    """Lazy import dos pontos de entrada do pacote."""
    if name == "CallBridgeRuntime":
        from .runtime import CallBridgeRuntime
        return CallBridgeRuntime
    elif name == "CallOrchestrator":
        from .orchestrator import CallOrchestrator
        return CallOrchestrator
    elif name == "SessionBridge":
        from .session import SessionBridge
        return SessionBridge
    elif name == "Settings":
        from .config.settings import Settings
        return Settings
    raise AttributeError(f"module 'callbridge' has no attribute {name!r}")
