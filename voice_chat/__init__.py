"""
Voice Chat - talk to an AI assistant by voice or text.

Records speech from the microphone, transcribes it, sends it to a chat
completion model and speaks the reply, keeping a running transcript of the
conversation.
"""

__version__ = "1.0.0"
