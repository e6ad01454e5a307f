"""
Utility Modules for tts-gateway.

    - audio.py: WAV header repair for piped encoder output
    - timeit.py: Timing and per-request deadline monitoring
"""
