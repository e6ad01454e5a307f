"""
Synthesis and Cache Components.

This package holds everything between a validated request and audio bytes:
    - backend.py: Backend contract, formats, errors and the mode registry
    - backends/: eSpeak, gTTS, Polly and gCloud adapters
    - cache.py: Encrypted content-addressed cache with singleflight
    - singleflight.py: Sharded in-flight claim table
    - store.py: Redis and in-process key-value stores
    - crypto.py: Fernet payload encryption
    - fingerprint.py: Canonical request hashing
    - chunker.py: Text splitting for length-limited providers
    - egress.py: IPv6 source-address rotation
"""
