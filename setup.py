"""Setup script for the voice chat client."""

from setuptools import setup, find_packages

setup(
    name="voice-chat",
    version="1.0.0",
    description="Voice and text chat with an AI assistant",
    author="Your Name",
    packages=find_packages(include=['voice_chat', 'voice_chat.*']),
    python_requires=">=3.11",
    install_requires=[
        "python-dotenv>=1.0.0",
        "httpx>=0.25.0",
        "pygame>=2.5.0",
        "sounddevice>=0.4.6",
        "soundfile>=0.12.0",
        "numpy>=1.24.0",
        "structlog>=23.0.0",
        "click>=8.0.0",
    ],
    extras_require={
        "test": [
            "pytest>=7.0.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "voice-chat=voice_chat.cli.main:cli",
        ],
    },
)
