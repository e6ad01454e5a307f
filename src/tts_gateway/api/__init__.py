"""
tts-gateway HTTP API Layer.

Modules:
    - routes.py: /tts, /voices, /modes, /translation_languages, /health, /metrics
    - schemas.py: Pydantic response models
    - dependencies.py: Settings and service singletons for Depends()
"""
